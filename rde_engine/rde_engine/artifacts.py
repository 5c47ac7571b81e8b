"""Artifact inventory: paginated loading, grouping and the readiness gate."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence

from rde_engine.api import CloudSdkAPI
from rde_engine.errors import ErrorKind, fail, unexpected_api_error
from rde_engine.models.artifact import (
    ARTIFACT_TYPES,
    SERVICES,
    Artifact,
    ArtifactInventory,
    GroupedArtifacts,
)
from rde_engine.retry import retry_until

logger = logging.getLogger(__name__)


def load_all_artifacts(api: CloudSdkAPI) -> ArtifactInventory:
    """Follow the ``cursor`` chain and collect every artifact in page order.

    The environment status of the last page wins.  Any non-200 page aborts
    the whole load.
    """
    items: list[Artifact] = []
    status: str | None = None
    cursor: str | None = None
    pages = 0

    while True:
        response = api.get_artifacts(cursor)
        if response.status_code != 200:
            raise unexpected_api_error(response)
        payload = response.json()
        pages += 1

        status = payload.get("status")
        items.extend(Artifact.model_validate(item) for item in payload.get("items", []))
        cursor = payload.get("cursor")
        if cursor is None:
            break

    logger.debug("Loaded %d artifacts in %d page(s), status=%s", len(items), pages, status)
    return ArtifactInventory(status=status, items=items)


def group_artifacts(items: Iterable[Artifact]) -> GroupedArtifacts:
    """Partition *items* into the four ``service x type`` buckets.

    Artifacts with an unknown service or type land in ``unmatched``.
    """
    grouped = GroupedArtifacts()
    for artifact in items:
        if artifact.service in SERVICES and artifact.type in ARTIFACT_TYPES:
            grouped.bucket(artifact.service, artifact.type).append(artifact)
        else:
            grouped.unmatched.append(artifact)

    if grouped.unmatched:
        logger.warning(
            "%d artifact(s) with unrecognised service or type were not grouped",
            grouped.unmatched_count,
        )
    return grouped


def find_artifacts(
    grouped: GroupedArtifacts,
    identifier: str,
    services: Sequence[str] = SERVICES,
    types: Sequence[str] = ARTIFACT_TYPES,
) -> list[Artifact]:
    """Select the artifacts named *identifier* within the given services and types."""
    selected: list[Artifact] = []
    for service in services:
        for artifact_type in types:
            selected.extend(a for a in grouped.bucket(service, artifact_type) if a.matches(identifier))
    return selected


def wait_until_ready(
    api: CloudSdkAPI,
    interval: float = 10.0,
    max_attempts: int | None = None,
    ready: Callable[[ArtifactInventory], bool] | None = None,
) -> ArtifactInventory:
    """Reload the inventory every *interval* seconds until *ready* accepts it.

    By default the gate waits for the ``Ready`` status and never gives up.
    With *max_attempts* set, exhaustion raises ``PollingLimitReached``.
    """
    accept = ready or (lambda inventory: inventory.is_ready)
    inventory = retry_until(lambda: load_all_artifacts(api), accept, interval, max_attempts)
    if inventory is None:
        raise fail(ErrorKind.POLLING_LIMIT_REACHED, "the environment to become ready", max_attempts)
    logger.info("Environment status is %s", inventory.status)
    return inventory
