"""Shared fixtures for engine tests.

HTTP traffic is simulated with ``httpx.MockTransport`` routed through a
small in-memory fake of the control plane, and every polling pause is
patched out so that tests never actually sleep.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any
from unittest.mock import MagicMock, patch

import httpx
import pytest
from rde_engine.api import CloudSdkAPI
from rde_engine.config import Settings
from rde_engine.request import RequestClient
from rde_engine.retry import RetryConfig

BASE_URL = "https://rde.test/api/rde/program/1/environment/2"
BASE_PATH = "/api/rde/program/1/environment/2"


class FakeControlPlane:
    """Answers requests from per-route response queues.

    Each route holds a list of responses consumed in order; the last one
    is repeated once the queue is drained.  Unknown routes raise so that
    unexpected calls fail loudly.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, *responses: httpx.Response) -> None:
        self.routes[(method, path)] = list(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix(BASE_PATH)
        queue = self.routes.get((request.method, path))
        if not queue:
            raise AssertionError(f"Unexpected request {request.method} {path}")
        template = queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(template.status_code, headers=template.headers, content=template.content)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.removeprefix(BASE_PATH) == path]


def _reply(
    status: int = 200,
    body: Any = None,
    *,
    text: str | None = None,
    retry_after: int | str | None = None,
) -> httpx.Response:
    headers = {"Retry-After": str(retry_after)} if retry_after is not None else {}
    if text is not None:
        return httpx.Response(status, text=text, headers=headers)
    if body is None:
        return httpx.Response(status, headers=headers)
    return httpx.Response(status, json=body, headers=headers)


@pytest.fixture(autouse=True)
def sleep() -> Iterator[MagicMock]:
    """Patch the single sleep used by every polling loop."""
    with patch("rde_engine.retry.time.sleep") as mock_sleep:
        yield mock_sleep


@pytest.fixture
def reply() -> Callable[..., httpx.Response]:
    """Factory for canned responses: ``reply(status, body, text=..., retry_after=...)``."""
    return _reply


@pytest.fixture
def server() -> FakeControlPlane:
    return FakeControlPlane()


@pytest.fixture
def make_api(server: FakeControlPlane) -> Callable[..., CloudSdkAPI]:
    def _make(**kwargs: Any) -> CloudSdkAPI:
        request = RequestClient(
            BASE_URL,
            {"Authorization": "Bearer test-token"},
            get_retry=RetryConfig(interval=1.0, max_attempts=5),
            transport=httpx.MockTransport(server.handler),
        )
        return CloudSdkAPI(request, **kwargs)

    return _make


@pytest.fixture
def api(make_api: Callable[..., CloudSdkAPI]) -> Iterator[CloudSdkAPI]:
    client = make_api()
    yield client
    client.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        program_id="1",
        environment_id="2",
        access_token="test-token",
        snapshot_progress_interval=5.0,
        readiness_interval=10.0,
        _env_file=None,
    )
