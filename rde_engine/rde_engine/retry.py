"""Polling and backoff primitives shared by every long-running operation.

Two strategies are provided:

* :func:`retry_until` re-invokes a callable on a fixed interval until its
  result satisfies a predicate, and gives up quietly (returns ``None``) when
  the attempt budget is exhausted.
* :func:`retry_while_retry_after` lets the server drive the pacing: it keeps
  re-requesting for as long as responses carry a ``Retry-After`` header,
  capping each individual pause at ``max_delay`` seconds.

All pauses go through :func:`time.sleep` in this module.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, Field

from rde_engine.errors import ErrorKind, fail

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_AFTER_MAX_DELAY = 5.0


class RetryConfig(BaseModel):
    """Fixed-interval retry budget."""

    interval: float = Field(
        default=1.0,
        ge=0.0,
        description="Seconds to sleep after each unsuccessful attempt.",
    )
    max_attempts: int | None = Field(
        default=5,
        ge=1,
        description="Maximum number of attempts; ``None`` retries forever.",
    )

    @property
    def total_seconds(self) -> float | None:
        """Worst-case time spent sleeping, or ``None`` when unbounded."""
        if self.max_attempts is None:
            return None
        return self.interval * self.max_attempts


def retry_until(
    fn: Callable[[], T],
    success: Callable[[T], bool],
    interval: float,
    max_attempts: int | None,
) -> T | None:
    """Invoke *fn* until *success* accepts its result.

    Parameters
    ----------
    fn:
        Zero-argument callable; invoked from scratch on every attempt.
    success:
        Predicate applied to each result.  The first accepted result is
        returned immediately.
    interval:
        Seconds to sleep after every rejected result.
    max_attempts:
        Attempt budget.  ``None`` means no limit.

    Returns
    -------
    T | None
        The first accepted result, or ``None`` when every attempt was
        rejected.  Exhaustion is not an exception; callers decide what it
        means.
    """
    attempt = 0
    while max_attempts is None or attempt < max_attempts:
        attempt += 1
        result = fn()
        if success(result):
            return result
        logger.debug(
            "Attempt %d/%s rejected, retrying in %.1fs",
            attempt,
            max_attempts if max_attempts is not None else "unbounded",
            interval,
        )
        time.sleep(interval)
    return None


def parse_retry_after(value: str | None) -> int | None:
    """Return the ``Retry-After`` delay in whole seconds, or ``None`` if absent or invalid."""
    if value is None:
        return None
    try:
        delay = int(value.strip())
    except ValueError:
        return None
    if delay < 0:
        return None
    return delay


def retry_while_retry_after(
    initial: Callable[[], httpx.Response] | None,
    subsequent: Callable[[httpx.Response | None], httpx.Response],
    before_sleep: Callable[[], None] | None = None,
    *,
    max_delay: float = DEFAULT_RETRY_AFTER_MAX_DELAY,
    max_iterations: int | None = None,
) -> httpx.Response:
    """Keep requesting while the server answers with a ``Retry-After`` header.

    The first request is ``initial()`` when given, otherwise
    ``subsequent(None)``; every following request is
    ``subsequent(previous_response)`` so that callers can chain on the prior
    body (e.g. to pick up an update id).  Each pause is
    ``min(retry_after, max_delay)`` seconds and is preceded by
    ``before_sleep()``.  A missing, zero, negative or unparseable header ends
    the loop.

    There is no limit on the number of iterations unless *max_iterations* is
    given, in which case :attr:`ErrorKind.POLLING_LIMIT_REACHED` is raised once
    that many responses have all asked for a retry.
    """
    response: httpx.Response | None = None
    iterations = 0
    while True:
        if response is None and initial is not None:
            response = initial()
        else:
            response = subsequent(response)
        iterations += 1

        delay = parse_retry_after(response.headers.get("Retry-After"))
        if not delay:
            return response

        if max_iterations is not None and iterations >= max_iterations:
            raise fail(ErrorKind.POLLING_LIMIT_REACHED, "the server to finish", iterations)

        if before_sleep is not None:
            before_sleep()
        pause = min(delay, max_delay)
        logger.debug("Server asked to retry after %ds, sleeping %.1fs", delay, pause)
        time.sleep(pause)
