"""Coordination of long-running snapshot operations.

Creating or applying a snapshot runs through four sequential phases:

1. ``requesting``  - the create/apply call is posted once and its status
   code is mapped to a closed set of outcomes.
2. ``backend``     - the progress resource is polled until the backend
   reports a percentage above zero.
3. ``processing``  - polling continues until the percentage reaches 100.
   A percentage of ``-2`` means the operation failed on the server.
4. ``restart``     - the artifact inventory is reloaded until the
   environment reports ``Ready`` again.

A failure in any phase aborts the remaining ones.  Nothing is rolled back
locally.  Each phase boundary is reported through an optional ``on_event``
callback together with the seconds spent in that phase; the timings are for
display only.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum

import httpx

from rde_engine.api import CloudSdkAPI
from rde_engine.artifacts import wait_until_ready
from rde_engine.config import Settings
from rde_engine.errors import ErrorKind, RDEError, fail, reraise_or_wrap
from rde_engine.models.snapshot import (
    Snapshot,
    SnapshotAction,
    SnapshotProgress,
    SnapshotResult,
)
from rde_engine.retry import retry_until

logger = logging.getLogger(__name__)


class SnapshotPhase(str, Enum):
    REQUESTING = "requesting"
    BACKEND = "backend"
    PROCESSING = "processing"
    RESTART = "restart"


# (phase, message, seconds spent in the phase)
EventCallback = Callable[[SnapshotPhase, str, float], None]

_PHASE_MESSAGES: dict[SnapshotAction, dict[SnapshotPhase, str]] = {
    SnapshotAction.CREATE: {
        SnapshotPhase.REQUESTING: "Requested to create the snapshot successfully.",
        SnapshotPhase.BACKEND: "Backend picked up the job to create the snapshot.",
        SnapshotPhase.PROCESSING: "Created snapshot successfully.",
        SnapshotPhase.RESTART: "Environment is ready again.",
    },
    SnapshotAction.APPLY: {
        SnapshotPhase.REQUESTING: "Requested to apply the snapshot successfully.",
        SnapshotPhase.BACKEND: "Backend picked up the job to apply the snapshot.",
        SnapshotPhase.PROCESSING: "Applied snapshot successfully.",
        SnapshotPhase.RESTART: "Environment is ready again.",
    },
}

# Substrings of the ``details`` field of a 404 answer, checked in order.
_NOT_FOUND_DETAILS: tuple[tuple[str, ErrorKind], ...] = (
    ("environment or program does not exist", ErrorKind.PROGRAM_OR_ENVIRONMENT_NOT_FOUND),
    ("snapshot does not exist", ErrorKind.SNAPSHOT_NOT_FOUND),
    ("snapshot is deleted", ErrorKind.SNAPSHOT_DELETED),
)


def _details(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return ""
    if isinstance(payload, dict):
        return str(payload.get("details", ""))
    return ""


def classify_not_found(response: httpx.Response, allow_deleted: bool = True) -> RDEError:
    """Map a 404 answer to a failure using its ``details`` text."""
    details = _details(response).lower()
    for fragment, kind in _NOT_FOUND_DETAILS:
        if fragment in details:
            if kind is ErrorKind.SNAPSHOT_DELETED and not allow_deleted:
                break
            return fail(kind, status_code=404, detail=details)
    return fail(ErrorKind.UNKNOWN, 404, status_code=404, detail=details)


def classify_request_response(response: httpx.Response, action: SnapshotAction) -> None:
    """Raise the failure matching a create/apply request status, if any."""
    status = response.status_code
    if status in (200, 201):
        return
    if status == 400:
        raise fail(ErrorKind.DIFFERENT_ENVIRONMENT_TYPE, status_code=status)
    if status == 404:
        raise classify_not_found(response, allow_deleted=action is SnapshotAction.APPLY)
    if status in (406, 503):
        raise fail(ErrorKind.SNAPSHOT_INVALID_STATE, status_code=status)
    if status == 409 and action is SnapshotAction.CREATE:
        raise fail(ErrorKind.SNAPSHOT_ALREADY_EXISTS, status_code=status)
    if status == 507:
        raise fail(ErrorKind.SNAPSHOT_LIMIT, status_code=status)
    raise fail(ErrorKind.UNKNOWN, status, status_code=status)


class _PhaseClock:
    """Measures the time between phase boundaries."""

    def __init__(self) -> None:
        self._last = time.monotonic()

    def lap(self) -> float:
        now = time.monotonic()
        elapsed, self._last = now - self._last, now
        return elapsed


class SnapshotCoordinator:
    """Run snapshot operations against one environment."""

    def __init__(
        self,
        api: CloudSdkAPI,
        settings: Settings,
        on_event: EventCallback | None = None,
    ) -> None:
        self._api = api
        self._settings = settings
        self._on_event = on_event

    # -- Long-running operations ----------------------------------------------

    def create(self, name: str, description: str | None = None) -> SnapshotResult:
        """Create snapshot *name* and wait until the environment is ready again."""
        return self._run(
            SnapshotAction.CREATE,
            name,
            lambda: self._api.create_snapshot(name, description),
        )

    def apply(
        self,
        name: str,
        keep_deployment: bool = False,
        status_only: bool = False,
    ) -> SnapshotResult:
        """Apply snapshot *name*.

        With *status_only* the apply request is not sent; the coordinator
        only follows an apply that was started earlier.
        """
        request = None if status_only else (lambda: self._api.apply_snapshot(name, keep_deployment))
        return self._run(SnapshotAction.APPLY, name, request)

    def _run(
        self,
        action: SnapshotAction,
        name: str,
        request: Callable[[], httpx.Response] | None,
    ) -> SnapshotResult:
        result = SnapshotResult(snapshot_name=name, action=action, start_time=_now())
        clock = _PhaseClock()
        started = time.monotonic()

        if request is not None:
            try:
                response = request()
            except Exception as exc:
                reraise_or_wrap(exc, ErrorKind.UNEXPECTED_SNAPSHOT_ERROR)
            classify_request_response(response, action)
            result.request_accepted_at = _now()
            self._emit(action, SnapshotPhase.REQUESTING, clock)
        else:
            result.request_accepted_at = result.start_time

        def _poll() -> SnapshotProgress:
            progress = self._poll_progress(action, name)
            if progress.progress_percentage > 0 and result.processing_started_at is None:
                result.processing_started_at = _now()
                self._emit(action, SnapshotPhase.BACKEND, clock)
            return progress

        progress = retry_until(
            _poll,
            lambda p: p.done,
            self._settings.snapshot_progress_interval,
            self._settings.snapshot_progress_max_attempts,
        )
        if progress is None:
            raise fail(
                ErrorKind.POLLING_LIMIT_REACHED,
                f"the {action.value} progress",
                self._settings.snapshot_progress_max_attempts,
            )
        result.processing_ended_at = _now()
        self._emit(action, SnapshotPhase.PROCESSING, clock)

        wait_until_ready(
            self._api,
            self._settings.readiness_interval,
            self._settings.readiness_max_attempts,
        )
        result.ready_at = _now()
        self._emit(action, SnapshotPhase.RESTART, clock)

        result.total_seconds = time.monotonic() - started
        logger.info("%s of snapshot %s finished in %.1fs", action.value, name, result.total_seconds)
        return result

    def _poll_progress(self, action: SnapshotAction, name: str) -> SnapshotProgress:
        try:
            response = self._api.get_snapshot_progress(action.value, name)
        except Exception as exc:
            reraise_or_wrap(exc, ErrorKind.UNEXPECTED_SNAPSHOT_ERROR)

        if response.status_code == 404:
            raise fail(ErrorKind.SNAPSHOT_NOT_FOUND, status_code=404)
        if response.status_code != 200:
            raise fail(ErrorKind.UNKNOWN, response.status_code, status_code=response.status_code)

        progress = SnapshotProgress.model_validate(response.json())
        logger.debug("%s %s progress %d%%", action.value, name, progress.progress_percentage)
        if progress.failed:
            kind = (
                ErrorKind.SNAPSHOT_CREATION_FAILED
                if action is SnapshotAction.CREATE
                else ErrorKind.SNAPSHOT_APPLY_FAILED
            )
            raise fail(kind, name)
        return progress

    def _emit(self, action: SnapshotAction, phase: SnapshotPhase, clock: _PhaseClock) -> None:
        elapsed = clock.lap()
        message = _PHASE_MESSAGES[action][phase]
        logger.info("%s (%.1fs)", message, elapsed)
        if self._on_event is not None:
            self._on_event(phase, message, elapsed)

    # -- Single-shot operations -----------------------------------------------

    def list_snapshots(self) -> list[Snapshot]:
        response = self._api.get_snapshots()
        if response.status_code == 404:
            raise classify_not_found(response, allow_deleted=False)
        if response.status_code != 200:
            raise fail(ErrorKind.UNKNOWN, response.status_code, status_code=response.status_code)
        payload = response.json()
        items = payload.get("items", []) if isinstance(payload, dict) else payload
        return [Snapshot.model_validate(item) for item in items]

    def delete(self, name: str, wipe: bool = False) -> None:
        """Mark *name* as deleted, or purge it for good with *wipe*."""
        response = self._api.delete_snapshot(name, wipe)
        status = response.status_code
        if status in (200, 202, 204):
            logger.info("Snapshot %s %s", name, "wiped" if wipe else "marked as deleted")
            return
        if status == 404:
            raise classify_not_found(response, allow_deleted=False)
        if status == 409 and wipe:
            raise fail(ErrorKind.SNAPSHOT_WRONG_STATE, status_code=status)
        if status in (406, 503):
            raise fail(ErrorKind.SNAPSHOT_INVALID_STATE, status_code=status)
        raise fail(ErrorKind.UNKNOWN, status, status_code=status)

    def undelete(self, name: str) -> None:
        """Bring a deleted snapshot back while it is still within retention."""
        response = self._api.undelete_snapshot(name)
        status = response.status_code
        if status in (200, 204):
            logger.info("Snapshot %s undeleted", name)
            return
        if status == 404:
            raise classify_not_found(response, allow_deleted=False)
        if status in (406, 409):
            raise fail(ErrorKind.SNAPSHOT_WRONG_STATE, status_code=status)
        if status == 507:
            raise fail(ErrorKind.SNAPSHOT_LIMIT, status_code=status)
        raise fail(ErrorKind.UNKNOWN, status, status_code=status)

    def restore(self, name: str) -> None:
        """Restore snapshot *name* from its archived copy."""
        response = self._api.restore_snapshot(name)
        status = response.status_code
        if status in (200, 202, 204):
            logger.info("Snapshot %s restored", name)
            return
        if status == 404:
            raise classify_not_found(response, allow_deleted=True)
        if status == 410:
            raise fail(ErrorKind.SNAPSHOT_NOT_FOUND, status_code=status)
        if status == 507:
            raise fail(ErrorKind.SNAPSHOT_LIMIT, status_code=status)
        raise fail(ErrorKind.UNKNOWN, status, status_code=status)


def _now() -> datetime:
    return datetime.now(UTC)
