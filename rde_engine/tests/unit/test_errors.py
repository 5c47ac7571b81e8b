"""Unit tests for rde_engine.errors."""

from __future__ import annotations

import httpx
import pytest
from rde_engine.errors import (
    KIND_CATEGORIES,
    ErrorCategory,
    ErrorKind,
    ExitCode,
    Failure,
    RDEError,
    fail,
    reraise_or_wrap,
    unexpected_api_error,
)

# ---------------------------------------------------------------------------
# Classification table
# ---------------------------------------------------------------------------


class TestClassification:
    def test_every_kind_has_a_category(self):
        assert set(KIND_CATEGORIES) == set(ErrorKind)

    def test_every_kind_has_an_exit_code(self):
        for kind in ErrorKind:
            assert isinstance(Failure(kind, "x").exit_code, ExitCode)

    def test_exit_code_contract(self):
        assert ExitCode.GENERAL == 1
        assert ExitCode.CONFIGURATION == 2
        assert ExitCode.VALIDATION == 3
        assert ExitCode.DEPLOYMENT_ERROR == 4
        assert ExitCode.INTERNAL == 5
        assert ExitCode.DEPLOYMENT_WARNING == 40

    def test_deployment_failure_and_warning_are_distinct(self):
        failure = Failure(ErrorKind.DEPLOYMENT_FAILURE, "x")
        warning = Failure(ErrorKind.DEPLOYMENT_WARNING, "x")
        assert failure.exit_code == 4
        assert warning.exit_code == 40
        assert warning.is_warning
        assert not failure.is_warning

    def test_validation_kinds(self):
        assert Failure(ErrorKind.INVALID_UPDATE_ID, "x").category is ErrorCategory.VALIDATION
        assert Failure(ErrorKind.SNAPSHOT_ALREADY_EXISTS, "x").exit_code == 3

    def test_configuration_kinds(self):
        assert Failure(ErrorKind.MISSING_ACCESS_TOKEN, "x").exit_code == 2
        assert Failure(ErrorKind.DIFFERENT_ENVIRONMENT_TYPE, "x").exit_code == 2


# ---------------------------------------------------------------------------
# fail()
# ---------------------------------------------------------------------------


class TestFail:
    def test_fills_message_template(self):
        err = fail(ErrorKind.NETWORK_ERROR, "https://example.test/x")
        assert isinstance(err, RDEError)
        assert err.kind is ErrorKind.NETWORK_ERROR
        assert "https://example.test/x" in err.failure.message
        assert str(err) == err.failure.message

    def test_missing_values_are_blank(self):
        err = fail(ErrorKind.UNEXPECTED_API_ERROR, 500)
        assert "500" in err.failure.message
        assert "%s" not in err.failure.message

    def test_extra_values_are_ignored(self):
        err = fail(ErrorKind.SNAPSHOT_NOT_FOUND, "unused")
        assert err.failure.message == "The snapshot does not exist."

    def test_carries_detail_and_status(self):
        err = fail(ErrorKind.SNAPSHOT_LIMIT, detail="quota", status_code=507)
        assert err.failure.detail == "quota"
        assert err.failure.status_code == 507

    def test_repr_names_kind(self):
        assert "SnapshotLimit" in repr(fail(ErrorKind.SNAPSHOT_LIMIT))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestUnexpectedApiError:
    def test_uses_status_and_reason(self):
        err = unexpected_api_error(httpx.Response(502))
        assert err.kind is ErrorKind.UNEXPECTED_API_ERROR
        assert err.failure.status_code == 502
        assert "502" in err.failure.message
        assert "Bad Gateway" in err.failure.message


class TestReraiseOrWrap:
    def test_classified_error_passes_through(self):
        original = fail(ErrorKind.SNAPSHOT_NOT_FOUND)
        with pytest.raises(RDEError) as exc_info:
            reraise_or_wrap(original, ErrorKind.UNEXPECTED_SNAPSHOT_ERROR)
        assert exc_info.value is original

    def test_other_errors_are_wrapped(self):
        with pytest.raises(RDEError) as exc_info:
            reraise_or_wrap(ValueError("boom"), ErrorKind.UNEXPECTED_SNAPSHOT_ERROR)
        err = exc_info.value
        assert err.kind is ErrorKind.UNEXPECTED_SNAPSHOT_ERROR
        assert "boom" in err.failure.message
        assert isinstance(err.__cause__, ValueError)

    def test_internal_error_names_command(self):
        with pytest.raises(RDEError) as exc_info:
            reraise_or_wrap(RuntimeError("kaput"), ErrorKind.INTERNAL_ERROR, "reset")
        assert "reset" in exc_info.value.failure.message
        assert "kaput" in exc_info.value.failure.message
