"""
Tagged results and the uniform error taxonomy for PMS API calls.

Adapter methods never raise for expected failures (auth, throttling, missing
records, timeouts, network faults). They return a ``Result`` so callers can
decide per category whether to continue, retry or give up.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

import requests

T = TypeVar("T")


class ErrorCode(str, Enum):
    AUTH_FAILED = "AUTH_FAILED"
    RATE_LIMIT = "RATE_LIMIT"
    NOT_FOUND = "NOT_FOUND"
    TIMEOUT = "TIMEOUT"
    NETWORK = "NETWORK"
    UNKNOWN = "UNKNOWN"
    # Capability gap on the adapter side, never produced by the classifier
    UNSUPPORTED = "UNSUPPORTED"


RETRYABLE_CODES = frozenset({ErrorCode.RATE_LIMIT, ErrorCode.TIMEOUT, ErrorCode.NETWORK})


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Outcome of an adapter operation.

    Attributes:
        success: True when ``data`` holds a usable value
        data: Payload on success (canonical entity, list of entities, raw JSON)
        code: Error classification on failure
        message: Human-readable failure reason, provider text when available
        status_code: HTTP status of the failing response, if any
        details: Provider error body, surfaced unchanged
        errors: Per-item mapping failures on an otherwise successful call
    """

    success: bool
    data: T | None = None
    code: ErrorCode | None = None
    message: str | None = None
    status_code: int | None = None
    details: Any = None
    errors: tuple[str, ...] = ()

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES

    @classmethod
    def ok(cls, data: T, errors: tuple[str, ...] = ()) -> "Result[T]":
        return cls(success=True, data=data, errors=errors)

    @classmethod
    def fail(
        cls,
        code: ErrorCode,
        message: str,
        status_code: int | None = None,
        details: Any = None,
    ) -> "Result[T]":
        return cls(
            success=False,
            code=code,
            message=message,
            status_code=status_code,
            details=details,
        )

    def with_data(self, data: Any) -> "Result[Any]":
        """Carry a failure through unchanged, or replace the payload on success."""
        if not self.success:
            return self  # type: ignore[return-value]
        return Result.ok(data)


def unsupported(adapter: str, operation: str) -> Result[Any]:
    return Result.fail(ErrorCode.UNSUPPORTED, f"{operation} is not supported by {adapter}")


def _provider_message(body: Any) -> str | None:
    if isinstance(body, dict):
        for key in ("message", "error", "error_description", "detail", "title"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return str(value["message"])
    if isinstance(body, str) and body:
        return body[:300]
    return None


def classify_status(status_code: int) -> ErrorCode:
    """
    Map an HTTP status code onto the error taxonomy.

    Args:
        status_code: HTTP status of a failed response

    Returns:
        ErrorCode: AUTH_FAILED for 401/403, RATE_LIMIT for 429, NOT_FOUND for
        404 and UNKNOWN for everything else (including 5xx).
    """
    if status_code in (401, 403):
        return ErrorCode.AUTH_FAILED
    if status_code == 429:
        return ErrorCode.RATE_LIMIT
    if status_code == 404:
        return ErrorCode.NOT_FOUND
    return ErrorCode.UNKNOWN


def classify_response(adapter: str, endpoint: str, res: requests.Response) -> Result[Any]:
    """
    Build a failure result from a non-2xx response.

    The provider's own error text is preferred over a generic message so that
    broker adapters surface downstream PMS errors unchanged.
    """
    try:
        body: Any = res.json()
    except ValueError:
        body = res.text

    code = classify_status(res.status_code)
    default_messages = {
        ErrorCode.AUTH_FAILED: f"{adapter} authentication failed",
        ErrorCode.RATE_LIMIT: f"{adapter} rate limit exceeded",
        ErrorCode.NOT_FOUND: f"Resource not found: {endpoint}",
    }
    message = _provider_message(body) or default_messages.get(
        code, f"{adapter} request failed with HTTP {res.status_code}"
    )
    return Result.fail(code, message, status_code=res.status_code, details=body)


def classify_exception(adapter: str, endpoint: str, err: Exception) -> Result[Any]:
    """
    Build a failure result from a transport-level exception.

    ``requests.Timeout`` maps to TIMEOUT and ``requests.ConnectionError`` to
    NETWORK; both are retryable. Any other exception maps to UNKNOWN.
    """
    if isinstance(err, requests.Timeout):
        return Result.fail(ErrorCode.TIMEOUT, f"Request to {endpoint} timed out")
    if isinstance(err, requests.ConnectionError):
        return Result.fail(ErrorCode.NETWORK, f"Network connection to {adapter} failed: {err}")
    return Result.fail(ErrorCode.UNKNOWN, f"{adapter} request to {endpoint} failed: {err}")
