"""Unit tests for rde_engine.retry."""

from __future__ import annotations

from unittest.mock import MagicMock, call

import httpx
import pytest
from pydantic import ValidationError
from rde_engine.errors import ErrorKind, RDEError
from rde_engine.retry import (
    RetryConfig,
    parse_retry_after,
    retry_until,
    retry_while_retry_after,
)


def _response(retry_after: str | None = None, status: int = 200) -> httpx.Response:
    headers = {"Retry-After": retry_after} if retry_after is not None else {}
    return httpx.Response(status, headers=headers)


# ---------------------------------------------------------------------------
# RetryConfig
# ---------------------------------------------------------------------------


class TestRetryConfig:
    def test_default_values(self):
        config = RetryConfig()
        assert config.interval == 1.0
        assert config.max_attempts == 5
        assert config.total_seconds == 5.0

    def test_unbounded(self):
        config = RetryConfig(max_attempts=None)
        assert config.total_seconds is None

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValidationError):
            RetryConfig(max_attempts=0)

    def test_rejects_negative_interval(self):
        with pytest.raises(ValidationError):
            RetryConfig(interval=-1)


# ---------------------------------------------------------------------------
# retry_until
# ---------------------------------------------------------------------------


class TestRetryUntil:
    def test_returns_first_accepted_result(self, sleep: MagicMock):
        fn = MagicMock(side_effect=[1, 2, 3])
        result = retry_until(fn, lambda v: v == 2, 1.0, 5)
        assert result == 2
        assert fn.call_count == 2
        sleep.assert_called_once_with(1.0)

    def test_success_on_first_attempt_does_not_sleep(self, sleep: MagicMock):
        assert retry_until(lambda: "ok", lambda v: v == "ok", 1.0, 3) == "ok"
        sleep.assert_not_called()

    def test_exhaustion_returns_none(self, sleep: MagicMock):
        fn = MagicMock(return_value=404)
        result = retry_until(fn, lambda v: v == 200, 2.0, 4)
        assert result is None
        assert fn.call_count == 4
        assert sleep.call_args_list == [call(2.0)] * 4

    def test_unbounded_keeps_going(self, sleep: MagicMock):
        values = iter(range(50))
        result = retry_until(lambda: next(values), lambda v: v == 42, 0.5, None)
        assert result == 42
        assert sleep.call_count == 42

    def test_exceptions_propagate(self):
        def boom():
            raise RuntimeError("nope")

        with pytest.raises(RuntimeError):
            retry_until(boom, lambda v: True, 1.0, 3)


# ---------------------------------------------------------------------------
# parse_retry_after
# ---------------------------------------------------------------------------


class TestParseRetryAfter:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("3", 3),
            (" 7 ", 7),
            ("0", 0),
            (None, None),
            ("", None),
            ("soon", None),
            ("-1", None),
            ("1.5", None),
        ],
    )
    def test_values(self, value, expected):
        assert parse_retry_after(value) == expected


# ---------------------------------------------------------------------------
# retry_while_retry_after
# ---------------------------------------------------------------------------


class TestRetryWhileRetryAfter:
    def test_sleeps_as_instructed_and_stops_without_header(self, sleep: MagicMock):
        responses = iter([_response("3"), _response("2"), _response()])
        before_sleep = MagicMock()

        final = retry_while_retry_after(None, lambda _prev: next(responses), before_sleep)

        assert final.headers.get("Retry-After") is None
        assert sleep.call_args_list == [call(3), call(2)]
        assert before_sleep.call_count == 2

    def test_zero_header_ends_the_loop(self, sleep: MagicMock):
        responses = iter([_response("3"), _response("2"), _response("0")])
        before_sleep = MagicMock()

        final = retry_while_retry_after(None, lambda _prev: next(responses), before_sleep)

        assert final.headers["Retry-After"] == "0"
        assert sleep.call_count == 2
        assert before_sleep.call_count == 2

    def test_caps_each_pause(self, sleep: MagicMock):
        responses = iter([_response("120"), _response()])
        retry_while_retry_after(None, lambda _prev: next(responses))
        sleep.assert_called_once_with(5.0)

    def test_custom_max_delay(self, sleep: MagicMock):
        responses = iter([_response("120"), _response()])
        retry_while_retry_after(None, lambda _prev: next(responses), max_delay=1.0)
        sleep.assert_called_once_with(1.0)

    def test_initial_is_used_once_then_chains_on_previous(self):
        first = _response("1")
        second = _response()
        seen: list[httpx.Response | None] = []

        def subsequent(previous):
            seen.append(previous)
            return second

        initial = MagicMock(return_value=first)
        final = retry_while_retry_after(initial, subsequent)

        assert final is second
        initial.assert_called_once()
        assert seen == [first]

    def test_without_initial_first_call_gets_none(self):
        seen: list[httpx.Response | None] = []

        def subsequent(previous):
            seen.append(previous)
            return _response()

        retry_while_retry_after(None, subsequent)
        assert seen == [None]

    def test_invalid_header_ends_the_loop(self, sleep: MagicMock):
        final = retry_while_retry_after(None, lambda _prev: _response("later"))
        assert final.headers["Retry-After"] == "later"
        sleep.assert_not_called()

    def test_iteration_cap_raises(self, sleep: MagicMock):
        subsequent = MagicMock(return_value=_response("1"))
        with pytest.raises(RDEError) as exc_info:
            retry_while_retry_after(None, subsequent, max_iterations=3)
        assert exc_info.value.kind is ErrorKind.POLLING_LIMIT_REACHED
        assert subsequent.call_count == 3
        assert sleep.call_count == 2
