"""Read-only inspection of the AEM instances behind an environment.

Each resource is exposed per instance under
``/runtime/{target}/status/{resource}``, as a filtered list or as a single
item addressed by its id.  Items are returned as plain dicts since their
shape is owned by the instance and differs per resource.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from rde_engine.api import CloudSdkAPI
from rde_engine.errors import unexpected_api_error

logger = logging.getLogger(__name__)

SCOPES: tuple[str, ...] = ("custom", "product")


class InspectResource(str, Enum):
    INVENTORY = "inventory"
    OSGI_BUNDLES = "osgi-bundles"
    OSGI_COMPONENTS = "osgi-components"
    OSGI_CONFIGURATIONS = "osgi-configurations"
    OSGI_SERVICES = "osgi-services"
    SLING_REQUESTS = "sling-requests"

    @property
    def scoped(self) -> bool:
        """Whether the list accepts a ``scope`` filter."""
        return self.value.startswith("osgi-")


def list_runtime_items(
    api: CloudSdkAPI,
    target: str,
    resource: InspectResource,
    *,
    scope: str = "custom",
    include: str | None = None,
) -> list[dict[str, Any]]:
    """Return the items of *resource* on the *target* instance.

    ``scope`` is only sent for OSGi resources; ``include`` is a free-text
    filter evaluated by the instance.
    """
    params: dict[str, str] = {}
    if resource.scoped:
        params["scope"] = scope
    if include:
        params["filter"] = include

    response = api.get_runtime_status(target, resource.value, params=params or None)
    if response.status_code != 200:
        raise unexpected_api_error(response)
    payload = response.json()
    if isinstance(payload, dict):
        items = payload.get("items") or []
    else:
        items = payload
    logger.debug("%d %s on %s", len(items), resource.value, target)
    return items


def get_runtime_item(
    api: CloudSdkAPI,
    target: str,
    resource: InspectResource,
    item_id: str,
) -> dict[str, Any]:
    """Return one item of *resource* on the *target* instance."""
    response = api.get_runtime_status(target, resource.value, item_id)
    if response.status_code != 200:
        raise unexpected_api_error(response)
    return response.json()
