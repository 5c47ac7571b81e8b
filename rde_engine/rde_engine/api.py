"""Thin wrapper over the environment-scoped RDE control-plane API.

Every path is relative to ``<rde-api>/program/{p}/environment/{e}``.  Most
methods return the raw :class:`httpx.Response` so that each call site can
map status codes to its own failure kinds.  The two mutating update calls
(:meth:`CloudSdkAPI.deploy` and :meth:`CloudSdkAPI.delete_artifact`) drain
the server's ``Retry-After`` responses and return the resulting change
document.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

import httpx

from rde_engine.errors import ErrorKind, fail, unexpected_api_error
from rde_engine.request import FormData, RequestClient
from rde_engine.retry import DEFAULT_RETRY_AFTER_MAX_DELAY, retry_while_retry_after

logger = logging.getLogger(__name__)


class CloudSdkAPI:
    """Control-plane calls for one program/environment pair."""

    def __init__(
        self,
        request: RequestClient,
        *,
        retry_after_max_delay: float = DEFAULT_RETRY_AFTER_MAX_DELAY,
        retry_after_max_iterations: int | None = None,
    ) -> None:
        self._request = request
        self._max_delay = retry_after_max_delay
        self._max_iterations = retry_after_max_iterations

    @property
    def request(self) -> RequestClient:
        return self._request

    def close(self) -> None:
        self._request.close()

    def __enter__(self) -> CloudSdkAPI:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- Updates ---------------------------------------------------------------

    def get_changes(self) -> httpx.Response:
        return self._request.get("/runtime/updates")

    def get_change(self, update_id: str) -> httpx.Response:
        return self._request.get(f"/runtime/updates/{update_id}")

    def get_logs(self, update_id: str) -> httpx.Response:
        return self._request.get(f"/runtime/updates/{update_id}/logs")

    def get_artifacts(self, cursor: str | None = None) -> httpx.Response:
        params = {"cursor": cursor} if cursor is not None else None
        return self._request.get("/runtime/updates/artifacts", params=params)

    def deploy(
        self,
        form: FormData,
        on_progress: Callable[[], None] | None = None,
    ) -> dict[str, Any]:
        """Upload an artifact and wait until the server stops asking to retry.

        Returns the change document of the created update.  Classifying its
        final status is left to the change tracker.
        """
        accepted = self._request.post("/runtime/updates", form)
        if accepted.status_code == 409:
            raise fail(ErrorKind.CONCURRENT_MODIFICATION, status_code=409)
        if accepted.status_code == 503:
            raise fail(ErrorKind.DEPLOYMENT_IN_PROGRESS, status_code=503)
        if accepted.status_code not in (200, 201, 202):
            raise unexpected_api_error(accepted)

        update_id = accepted.json()["updateId"]
        logger.info("Deployment accepted as update %s", update_id)

        change = self.drain_retry_after(
            None,
            lambda _previous: self.get_change(update_id),
            on_progress,
        )
        if change.status_code != 200:
            raise unexpected_api_error(change)
        return change.json()

    def delete_artifact(self, artifact_id: str, force: bool = False) -> dict[str, Any]:
        """Delete one artifact and return the change document of the delete update."""
        params = {"force": "true"} if force else None

        def _follow(previous: httpx.Response | None) -> httpx.Response:
            update_id = previous.json()["updateId"] if previous is not None else None
            return self.get_change(update_id)

        change = self.drain_retry_after(
            lambda: self._request.delete(f"/runtime/updates/artifacts/{artifact_id}", params=params),
            _follow,
        )
        if change.status_code != 200:
            raise unexpected_api_error(change)
        return change.json()

    # -- Environment -----------------------------------------------------------

    def reset_env(self, keep_mutable_content: bool = False, force: bool = False) -> httpx.Response:
        params: dict[str, str] = {}
        if keep_mutable_content:
            params["keepMutableContent"] = "true"
        if force:
            params["force"] = "true"
        return self._request.post("/runtime/reset", params=params or None)

    def restart_env(self) -> httpx.Response:
        return self._request.post("/runtime/restart")

    # -- Runtime status --------------------------------------------------------

    def get_runtime_status(
        self,
        target: str,
        resource: str,
        item_id: str | None = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        path = f"/runtime/{target}/status/{resource}"
        if item_id is not None:
            path = f"{path}/{quote(item_id, safe='')}"
        return self._request.get(path, params=params)

    # -- Snapshots -------------------------------------------------------------

    def get_snapshots(self) -> httpx.Response:
        return self._request.get("/snapshots")

    def create_snapshot(self, name: str, description: str | None = None) -> httpx.Response:
        body: dict[str, str] = {"name": name}
        if description:
            body["description"] = description
        return self._request.post("/snapshots", body)

    def apply_snapshot(self, name: str, keep_deployment: bool = False) -> httpx.Response:
        return self._request.post(f"/snapshots/{name}/apply", {"keepDeployment": keep_deployment})

    def get_snapshot_progress(self, action: str, name: str) -> httpx.Response:
        return self._request.get(f"/snapshots/{name}/progress/{action}")

    def delete_snapshot(self, name: str, wipe: bool = False) -> httpx.Response:
        params = {"wipe": "true"} if wipe else None
        return self._request.delete(f"/snapshots/{name}", params=params)

    def undelete_snapshot(self, name: str) -> httpx.Response:
        return self._request.post(f"/snapshots/{name}/undelete")

    def restore_snapshot(self, name: str) -> httpx.Response:
        return self._request.post(f"/snapshots/{name}/restore")

    # -- Helpers ---------------------------------------------------------------

    def drain_retry_after(
        self,
        initial: Callable[[], httpx.Response] | None,
        subsequent: Callable[[httpx.Response | None], httpx.Response],
        before_sleep: Callable[[], None] | None = None,
    ) -> httpx.Response:
        """Run :func:`retry_while_retry_after` with this API's configured limits."""
        return retry_while_retry_after(
            initial,
            subsequent,
            before_sleep,
            max_delay=self._max_delay,
            max_iterations=self._max_iterations,
        )
