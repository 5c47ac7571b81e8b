"""Synchronous HTTP client bound to one base URL and a fixed header set.

``GET`` requests are retried on a fixed interval until they return a 2xx
or a 404 (for some resources "not found yet" is a legitimate answer); any
other status is handed back to the caller once the budget is spent.
Mutating verbs are sent exactly once.  When no response can be obtained at
all, the call fails with :attr:`ErrorKind.NETWORK_ERROR` naming the URL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import IO, Any

import httpx

from rde_engine.errors import ErrorKind, fail
from rde_engine.retry import RetryConfig, retry_until

logger = logging.getLogger(__name__)

FileSpec = tuple[str, bytes | IO[bytes], str]


@dataclass
class FormData:
    """A multipart body, sent as-is instead of being JSON-encoded."""

    fields: dict[str, str] = field(default_factory=dict)
    files: dict[str, FileSpec] = field(default_factory=dict)


def _is_get_success(response: httpx.Response | None) -> bool:
    if response is None:
        return False
    return response.is_success or response.status_code == 404


class RequestClient:
    """Issue requests against ``base_url`` with a fixed set of headers.

    Parameters
    ----------
    base_url:
        Root URL every request path is appended to.
    headers:
        Headers sent with every request (authorization, API key, org id...).
    timeout:
        Per-request timeout in seconds.
    get_retry:
        Fixed-interval retry budget applied to ``GET`` requests.
    transport:
        Optional ``httpx`` transport, used by tests to simulate the server.
    """

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        *,
        timeout: float = 30.0,
        get_retry: RetryConfig | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._get_retry = get_retry or RetryConfig(interval=1.0, max_attempts=5)
        default_headers: dict[str, str] = {"accept": "application/json"}
        default_headers.update(headers or {})
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout),
            headers=default_headers,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def url_for(self, path: str) -> str:
        return f"{self._base_url}{path}"

    # -- Verbs -----------------------------------------------------------------

    def get(self, path: str, *, params: dict[str, Any] | None = None) -> httpx.Response:
        """Send a ``GET``, retrying until a 2xx or a 404 comes back.

        When the budget runs out, the last response the server gave is
        returned so that callers can classify its status.  Only when no
        attempt produced a response at all is ``NetworkError`` raised.
        """
        url = self.url_for(path)
        last: httpx.Response | None = None

        def _attempt() -> httpx.Response | None:
            nonlocal last
            response = self._send("GET", url, params=params)
            if response is not None:
                last = response
            return response

        response = retry_until(
            _attempt,
            _is_get_success,
            self._get_retry.interval,
            self._get_retry.max_attempts,
        )
        if response is not None:
            return response
        if last is None:
            raise fail(ErrorKind.NETWORK_ERROR, url)
        logger.warning("GET %s still answered %d after retries", url, last.status_code)
        return last

    def post(self, path: str, body: Any = None, *, params: dict[str, Any] | None = None) -> httpx.Response:
        return self._send_once("POST", path, body, params)

    def put(self, path: str, body: Any = None, *, params: dict[str, Any] | None = None) -> httpx.Response:
        return self._send_once("PUT", path, body, params)

    def delete(self, path: str, *, params: dict[str, Any] | None = None) -> httpx.Response:
        return self._send_once("DELETE", path, None, params)

    # -- Lifecycle -------------------------------------------------------------

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RequestClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- Internal helpers ------------------------------------------------------

    def _send_once(
        self,
        method: str,
        path: str,
        body: Any,
        params: dict[str, Any] | None,
    ) -> httpx.Response:
        url = self.url_for(path)
        response = self._send(method, url, body=body, params=params)
        if response is None:
            raise fail(ErrorKind.NETWORK_ERROR, url)
        return response

    def _send(
        self,
        method: str,
        url: str,
        *,
        body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response | None:
        """Send one request; return ``None`` when no response was obtained."""
        kwargs: dict[str, Any] = {"params": params}
        if isinstance(body, FormData):
            kwargs["data"] = body.fields
            kwargs["files"] = body.files
        elif body is not None:
            kwargs["json"] = body
            kwargs["headers"] = {"content-type": "application/json"}

        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            return None
        logger.debug("%s %s -> %d", method, url, response.status_code)
        return response
