"""Shared fixtures for CLI tests.

Commands run through ``typer.testing.CliRunner`` against an in-memory
control plane: ``rde_cli.app.build_api`` is patched to return an API whose
transport is an ``httpx.MockTransport``, the config file lives in a
temporary directory, and polling pauses are patched out.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import httpx
import pytest
from rde_engine.api import CloudSdkAPI
from rde_engine.request import RequestClient
from rde_engine.retry import RetryConfig

RDE_BASE = "https://rde.test/api/rde/program/1/environment/2"
RDE_PATH = "/api/rde/program/1/environment/2"


class ControlPlane:
    """Per-route response queues; the last response of a route repeats."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[tuple[int, Any, dict[str, str]]]] = {}
        self.requests: list[httpx.Request] = []
        self.settings: list[Any] = []

    def add(self, method: str, path: str, *responses: tuple[int, Any] | tuple[int, Any, dict[str, str]]) -> None:
        self.routes[(method, path)] = [(r[0], r[1], r[2] if len(r) > 2 else {}) for r in responses]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix(RDE_PATH)
        queue = self.routes.get((request.method, path))
        if not queue:
            raise AssertionError(f"Unexpected request {request.method} {path}")
        status, body, headers = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(body, str):
            return httpx.Response(status, text=body, headers=headers)
        if body is None:
            return httpx.Response(status, headers=headers)
        return httpx.Response(status, json=body, headers=headers)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.removeprefix(RDE_PATH) == path]


@pytest.fixture(autouse=True)
def config_file(tmp_path: Path) -> Iterator[Path]:
    """Point the CLI config file at a temporary location."""
    path = tmp_path / ".rde" / "config.toml"
    with patch("rde_cli.cloud._CONFIG_FILE", path):
        yield path


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Drop ``RDE_*`` variables and keep the root logger untouched."""
    for name in [
        "RDE_PROGRAM_ID",
        "RDE_ENVIRONMENT_ID",
        "RDE_ORG_ID",
        "RDE_ACCESS_TOKEN",
        "RDE_API_KEY",
        "RDE_CLOUD_MANAGER_URL",
        "RDE_STRUCTURED_LOGGING",
    ]:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    with patch("rde_cli.app.configure_logging"):
        yield


@pytest.fixture(autouse=True)
def sleep() -> Iterator[MagicMock]:
    with patch("rde_engine.retry.time.sleep") as mock_sleep:
        yield mock_sleep


@pytest.fixture
def control_plane() -> Iterator[ControlPlane]:
    """Route every command's API calls to an in-memory control plane."""
    plane = ControlPlane()

    def _build(settings, cache, transport=None) -> CloudSdkAPI:
        plane.settings.append(settings)
        request = RequestClient(
            RDE_BASE,
            {"Authorization": "Bearer test-token"},
            get_retry=RetryConfig(interval=1.0, max_attempts=3),
            transport=httpx.MockTransport(plane.handler),
        )
        return CloudSdkAPI(request)

    with patch("rde_cli.app.build_api", side_effect=_build):
        yield plane
