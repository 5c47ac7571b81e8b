"""Discovery of the RDE API endpoint of an environment.

The RDE API lives next to the environment's developer console, whose URL is
published by Cloud Manager.  Looking it up costs an extra round trip, so the
derived URLs are cached for a day per program/environment pair.
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import httpx
from pydantic import BaseModel, ConfigDict, Field

from rde_engine.api import CloudSdkAPI
from rde_engine.config import Settings
from rde_engine.errors import ErrorKind, fail, unexpected_api_error
from rde_engine.request import RequestClient

logger = logging.getLogger(__name__)

DEVELOPER_CONSOLE_REL = "http://ns.adobe.com/adobecloud/rel/developerConsole"
RDE_API_PATH = "/api/rde"


def cache_key(program_id: str, environment_id: str) -> str:
    return f"aem-rde.dev-console-url-cache.cm-p{program_id}-e{environment_id}"


class DevConsoleEntry(BaseModel):
    """Cached endpoints of one environment."""

    model_config = ConfigDict(populate_by_name=True)

    expiry: datetime
    rde_api_url: str = Field(alias="rdeApiUrl")
    dev_console_url: str = Field(alias="devConsoleUrl")

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expiry <= (now or datetime.now(UTC))


class DevConsoleCache:
    """Expiring key/value cache over a caller-supplied mapping.

    The mapping stores plain JSON-compatible dicts so that the CLI can
    persist it in its config file.  Each instance is independent.
    """

    def __init__(self, store: MutableMapping[str, Any] | None = None) -> None:
        self._store: MutableMapping[str, Any] = store if store is not None else {}

    @property
    def store(self) -> MutableMapping[str, Any]:
        return self._store

    def get(self, key: str, now: datetime | None = None) -> DevConsoleEntry | None:
        raw = self._store.get(key)
        if not raw:
            return None
        try:
            entry = DevConsoleEntry.model_validate(raw)
        except ValueError:
            logger.debug("Discarding malformed cache entry %s", key)
            return None
        if entry.is_expired(now) or not entry.dev_console_url:
            return None
        return entry

    def set(self, key: str, entry: DevConsoleEntry) -> None:
        self._store[key] = entry.model_dump(mode="json", by_alias=True)

    def prune(self, now: datetime | None = None) -> int:
        """Drop expired entries; return how many were removed."""
        expired = [key for key in list(self._store) if key.startswith("aem-rde.") and self.get(key, now) is None]
        for key in expired:
            del self._store[key]
        return len(expired)


def derive_urls(developer_console_url: str) -> tuple[str, str]:
    """Return ``(dev_console_url, rde_api_url)`` for a developer console link."""
    parts = urlsplit(developer_console_url)
    dev_console = urlunsplit((parts.scheme, parts.netloc, parts.path, parts.query, ""))
    rde_api = urlunsplit((parts.scheme, parts.netloc, RDE_API_PATH, parts.query, ""))
    return dev_console, rde_api


def fetch_developer_console_url(
    cloud_manager: RequestClient,
    program_id: str,
    environment_id: str,
) -> str:
    """Read the developer console link from the Cloud Manager environment resource."""
    response = cloud_manager.get(f"/api/program/{program_id}/environment/{environment_id}")
    if response.status_code == 404:
        raise fail(ErrorKind.PROGRAM_OR_ENVIRONMENT_NOT_FOUND, status_code=404)
    if response.status_code != 200:
        raise unexpected_api_error(response)

    links = response.json().get("_links", {})
    link = links.get(DEVELOPER_CONSOLE_REL) or {}
    href = link.get("href")
    if not href:
        raise fail(ErrorKind.DIFFERENT_ENVIRONMENT_TYPE)
    return href


def resolve_rde_api_url(
    cloud_manager: RequestClient,
    program_id: str,
    environment_id: str,
    cache: DevConsoleCache,
    ttl: timedelta = timedelta(days=1),
) -> DevConsoleEntry:
    """Return the cached endpoints of an environment, refreshing them when stale."""
    key = cache_key(program_id, environment_id)
    entry = cache.get(key)
    if entry is not None:
        logger.debug("Using cached RDE API URL for %s", key)
        return entry

    dev_console, rde_api = derive_urls(fetch_developer_console_url(cloud_manager, program_id, environment_id))
    entry = DevConsoleEntry(
        expiry=datetime.now(UTC) + ttl,
        rde_api_url=rde_api,
        dev_console_url=dev_console,
    )
    cache.set(key, entry)
    logger.info("Discovered RDE API at %s", rde_api)
    return entry


def auth_headers(settings: Settings) -> dict[str, str]:
    """Headers sent with every Cloud Manager and RDE API request."""
    if settings.access_token is None:
        raise fail(ErrorKind.MISSING_ACCESS_TOKEN)
    headers = {"Authorization": f"Bearer {settings.access_token.get_secret_value()}"}
    if settings.api_key:
        headers["x-api-key"] = settings.api_key
    if settings.org_id:
        headers["x-gw-ims-org-id"] = settings.org_id
    return headers


def build_api(
    settings: Settings,
    cache: DevConsoleCache,
    transport: httpx.BaseTransport | None = None,
) -> CloudSdkAPI:
    """Build a :class:`CloudSdkAPI` for the configured program and environment."""
    if not settings.program_id:
        raise fail(ErrorKind.MISSING_PROGRAM_ID)
    if not settings.environment_id:
        raise fail(ErrorKind.MISSING_ENVIRONMENT_ID)
    headers = auth_headers(settings)

    with RequestClient(
        settings.cloud_manager_url,
        headers,
        timeout=settings.request_timeout,
        get_retry=settings.get_retry,
        transport=transport,
    ) as cloud_manager:
        entry = resolve_rde_api_url(
            cloud_manager,
            settings.program_id,
            settings.environment_id,
            cache,
            timedelta(hours=settings.dev_console_cache_ttl_hours),
        )

    request = RequestClient(
        f"{entry.rde_api_url}/program/{settings.program_id}/environment/{settings.environment_id}",
        headers,
        timeout=settings.request_timeout,
        get_retry=settings.get_retry,
        transport=transport,
    )
    return CloudSdkAPI(
        request,
        retry_after_max_delay=settings.retry_after_max_delay,
        retry_after_max_iterations=settings.retry_after_max_iterations,
    )
