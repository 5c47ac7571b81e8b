"""Tracking of asynchronous environment updates until they reach a terminal state.

An update moves ``waiting -> processing -> completed|failed|staged`` on the
server.  While it is still moving, the change resource answers with a
``Retry-After`` header; :class:`ChangeTracker` drains those responses and
then classifies the final status:

* ``failed`` raises :attr:`ErrorKind.DEPLOYMENT_FAILURE`;
* ``staged`` raises :attr:`ErrorKind.DEPLOYMENT_WARNING`, a terminal but
  non-fatal outcome with its own exit code;
* anything else (normally ``completed``) is returned.

Fetching the logs of an update is a separate step with a retry budget that
depends on the artifact type, since some types take much longer before their
logs are queryable.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from rde_engine.api import CloudSdkAPI
from rde_engine.config import Settings
from rde_engine.errors import ErrorKind, fail, unexpected_api_error
from rde_engine.models.change import Change
from rde_engine.retry import retry_until

logger = logging.getLogger(__name__)

# Called with a short description of what is being waited on.
ProgressCallback = Callable[[str], None]


class HistoryOutcome(str, Enum):
    LOGS = "logs"
    LOGS_UNAVAILABLE = "logs_unavailable"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass
class UpdateHistory:
    """Result of :meth:`ChangeTracker.load_update_history`.

    Only ``LOGS`` carries a change and its log lines.  ``LOGS_UNAVAILABLE``
    is a soft failure: the update exists but its logs did not appear within
    ``retry_seconds``.
    """

    update_id: str
    outcome: HistoryOutcome
    change: Change | None = None
    lines: list[str] = field(default_factory=list)
    retry_seconds: float | None = None
    status_code: int | None = None
    reason: str | None = None


def validate_update_id(value: str | int) -> str:
    """Return *value* as a normalised update id or raise ``InvalidUpdateId``."""
    text = str(value).strip()
    # str.isdigit also accepts superscripts and other non-ASCII digits
    if not (text.isascii() and text.isdigit()):
        raise fail(ErrorKind.INVALID_UPDATE_ID, value)
    return str(int(text))


def parse_log_lines(body: str) -> list[str]:
    """Split a log body into lines.

    Bodies that look like a JSON array are parsed as one; anything else,
    including a bracketed body that fails to parse, is split on newlines
    with blank lines dropped.
    """
    trimmed = body.strip()
    if trimmed.startswith("[") and trimmed.endswith("]"):
        try:
            parsed = json.loads(trimmed)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return [str(line) for line in parsed]
    return [line for line in body.split("\n") if line.strip()]


def classify_change(change: Change) -> Change:
    """Raise for a failed or staged update, otherwise return it unchanged."""
    logger.info(
        "Update %s finished with status %s",
        change.update_id,
        change.status,
        extra={"update_id": change.update_id},
    )
    if change.lifecycle is None:
        logger.warning("Update %s reported an unrecognised status %r", change.update_id, change.status)
    if change.is_failed:
        raise fail(ErrorKind.DEPLOYMENT_FAILURE, change.update_id)
    if change.is_staged:
        raise fail(ErrorKind.DEPLOYMENT_WARNING, change.update_id)
    return change


def format_change(change: Change) -> str:
    """One-line summary of an update, e.g. ``#3: install completed for osgi-bundle x on author``."""
    text = f"#{change.update_id}: {change.action} {change.status}"
    if change.deleted_artifact is not None:
        text += f" for {change.deleted_artifact.type} {change.deleted_artifact.display_name}"
    elif change.metadata.get("name"):
        text += f" for {change.type} {change.metadata['name']}"

    target = change.target_label
    if target:
        text += f" on {target}"
    if change.user or change.timestamps.get("received"):
        text += f" - done by {change.user} at {change.timestamps.get('received')}"
    return text


class ChangeTracker:
    """Follow updates of one environment through the control-plane API."""

    def __init__(self, api: CloudSdkAPI, settings: Settings) -> None:
        self._api = api
        self._settings = settings

    def track_change(
        self,
        update_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> Change:
        """Wait for *update_id* to settle and classify its final status."""
        response = self._api.drain_retry_after(
            None,
            lambda _previous: self._api.get_change(update_id),
            _notify(on_progress, "update is in progress"),
        )
        if response.status_code != 200:
            raise unexpected_api_error(response)

        return classify_change(Change.model_validate(response.json()))

    def load_update_history(
        self,
        update_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> UpdateHistory:
        """Fetch an update and its logs.

        A missing update and a failed log fetch are reported through the
        returned outcome rather than raised.
        """
        if on_progress is not None:
            on_progress("retrieving update status")
        response = self._api.drain_retry_after(
            None,
            lambda _previous: self._api.get_change(update_id),
            _notify(on_progress, "update is in progress"),
        )

        if response.status_code == 404:
            return UpdateHistory(update_id=update_id, outcome=HistoryOutcome.NOT_FOUND, status_code=404)
        if response.status_code != 200:
            return UpdateHistory(
                update_id=update_id,
                outcome=HistoryOutcome.ERROR,
                status_code=response.status_code,
                reason=response.reason_phrase,
            )

        change = Change.model_validate(response.json())
        budget = self._settings.log_retry_budget_for(change.type)

        if on_progress is not None:
            on_progress("retrieving update logs")
        # Logs of a freshly finished update may 404 for a while.
        logs = retry_until(
            lambda: self._api.get_logs(update_id),
            lambda r: r.status_code != 404,
            budget.wait_seconds,
            budget.retries,
        )

        if logs is None:
            logger.warning(
                "Logs of update %s not available within %.0f seconds",
                update_id,
                budget.total_seconds,
            )
            return UpdateHistory(
                update_id=update_id,
                outcome=HistoryOutcome.LOGS_UNAVAILABLE,
                change=change,
                retry_seconds=budget.total_seconds,
            )
        if logs.status_code != 200:
            return UpdateHistory(
                update_id=update_id,
                outcome=HistoryOutcome.ERROR,
                change=change,
                status_code=logs.status_code,
                reason=logs.reason_phrase,
            )
        return UpdateHistory(
            update_id=update_id,
            outcome=HistoryOutcome.LOGS,
            change=change,
            lines=parse_log_lines(logs.text),
            status_code=200,
        )

    def list_changes(self) -> list[Change]:
        """Return every update recorded for the environment."""
        response = self._api.get_changes()
        if response.status_code != 200:
            raise unexpected_api_error(response)
        payload = response.json()
        items = payload.get("items", []) if isinstance(payload, dict) else payload
        return [Change.model_validate(item) for item in items]


def _notify(on_progress: ProgressCallback | None, message: str) -> Callable[[], None] | None:
    if on_progress is None:
        return None
    return lambda: on_progress(message)
