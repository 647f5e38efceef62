"""Unit tests for network/errors.py."""

import pytest

from pms_sync.network.errors import ErrorCode, Result, classify_status, unsupported


@pytest.mark.unit
@pytest.mark.parametrize(
    "status,expected",
    [
        (401, ErrorCode.AUTH_FAILED),
        (403, ErrorCode.AUTH_FAILED),
        (429, ErrorCode.RATE_LIMIT),
        (404, ErrorCode.NOT_FOUND),
        (500, ErrorCode.UNKNOWN),
        (502, ErrorCode.UNKNOWN),
        (400, ErrorCode.UNKNOWN),
    ],
)
def test_classify_status(status: int, expected: ErrorCode) -> None:
    """Test HTTP status to error code mapping."""
    assert classify_status(status) == expected


@pytest.mark.unit
def test_only_transient_codes_are_retryable() -> None:
    """Test that RATE_LIMIT, TIMEOUT and NETWORK are the only retryable codes."""
    retryable = {code for code in ErrorCode if Result.fail(code, "x").retryable}

    assert retryable == {ErrorCode.RATE_LIMIT, ErrorCode.TIMEOUT, ErrorCode.NETWORK}


@pytest.mark.unit
def test_with_data_carries_failures_through() -> None:
    """Test that with_data replaces payloads on success and leaves failures alone."""
    failure = Result.fail(ErrorCode.NOT_FOUND, "missing", status_code=404)

    assert failure.with_data([1]) is failure
    assert Result.ok({"data": [1]}).with_data([1]).data == [1]


@pytest.mark.unit
def test_unsupported_names_operation() -> None:
    """Test that capability gaps are explicit results."""
    result = unsupported("smoobu", "update_availability")

    assert result.code == ErrorCode.UNSUPPORTED
    assert "update_availability" in (result.message or "")
    assert not result.retryable
