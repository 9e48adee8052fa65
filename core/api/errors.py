"""
Error taxonomy for the Chatwoot API client.

Every failure the executor can surface is one of these types, so callers can
branch on the class instead of parsing messages.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Machine-readable error codes."""
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION = "validation_failed"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    CIRCUIT_OPEN = "circuit_open"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in (
            ErrorCode.RATE_LIMITED,
            ErrorCode.SERVER_ERROR,
            ErrorCode.TIMEOUT,
            ErrorCode.CIRCUIT_OPEN,
        )

    @property
    def suggestion(self) -> str:
        return _SUGGESTIONS.get(self, "")

    @classmethod
    def from_status(cls, status_code: int) -> "ErrorCode":
        if status_code in _STATUS_CODES:
            return _STATUS_CODES[status_code]
        if status_code >= 500:
            return cls.SERVER_ERROR
        return cls.UNKNOWN


_STATUS_CODES = {
    400: ErrorCode.BAD_REQUEST,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    408: ErrorCode.TIMEOUT,
    409: ErrorCode.CONFLICT,
    422: ErrorCode.VALIDATION,
    429: ErrorCode.RATE_LIMITED,
}

_SUGGESTIONS = {
    ErrorCode.UNAUTHORIZED: "Check CHATWOOT_API_TOKEN",
    ErrorCode.FORBIDDEN: "Check your account permissions",
    ErrorCode.NOT_FOUND: "Verify the resource ID exists",
    ErrorCode.RATE_LIMITED: "Wait a moment and retry",
    ErrorCode.VALIDATION: "Check the input values",
    ErrorCode.BAD_REQUEST: "Check the request format and parameters",
    ErrorCode.CONFLICT: "The resource state may have changed; refresh and retry",
    ErrorCode.SERVER_ERROR: "The server encountered an error; try again later",
    ErrorCode.TIMEOUT: "The request timed out; check network connectivity and retry",
    ErrorCode.CIRCUIT_OPEN: "Too many recent failures; wait before retrying",
}


class ChatwootError(Exception):
    """Base class for client errors."""

    code: ErrorCode = ErrorCode.UNKNOWN


class CircuitBreakerError(ChatwootError):
    """The breaker is open; no request was attempted."""

    code = ErrorCode.CIRCUIT_OPEN

    def __init__(self, retry_in: float = 0.0):
        self.retry_in = retry_in
        super().__init__("circuit breaker is open, too many recent failures")


class RateLimitError(ChatwootError):
    """429 that could not (or must not) be retried."""

    code = ErrorCode.RATE_LIMITED

    def __init__(self, retry_after: float, request_id: str = ""):
        self.retry_after = retry_after
        self.request_id = request_id
        super().__init__(f"rate limit exceeded, retry after {retry_after:g}s")


class APIError(ChatwootError):
    """Non-2xx response. ``body`` is already sanitized."""

    def __init__(self, status_code: int, body: str, request_id: str = ""):
        self.status_code = status_code
        self.body = body
        self.request_id = request_id
        self.code = ErrorCode.from_status(status_code)
        super().__init__(f"API error (status {status_code}): {body}")

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class TransportError(ChatwootError):
    """Connection-level failure (DNS, refused, reset, timeout)."""

    def __init__(self, method: str, url: str, cause: Exception):
        self.method = method
        self.url = url
        self.cause = cause
        self.code = ErrorCode.TIMEOUT if "timeout" in type(cause).__name__.lower() else ErrorCode.UNKNOWN
        super().__init__(f"{method} {url} failed: {cause}")


class DecodeError(ChatwootError):
    """Request body could not be encoded or response body decoded."""


class AsyncWaitError(ChatwootError):
    """A 202 operation could not be polled to completion."""

    code = ErrorCode.TIMEOUT


def error_code_of(exc: BaseException) -> Optional[ErrorCode]:
    """ErrorCode of a client error, None for foreign exceptions."""
    if isinstance(exc, ChatwootError):
        return exc.code
    return None
