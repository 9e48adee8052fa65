"""
Error taxonomy: codes, messages, retryability.
"""

from core.api.errors import (
    APIError,
    CircuitBreakerError,
    ErrorCode,
    RateLimitError,
    TransportError,
    error_code_of,
)


class TestErrorCodes:

    def test_from_status(self):
        assert ErrorCode.from_status(401) == ErrorCode.UNAUTHORIZED
        assert ErrorCode.from_status(404) == ErrorCode.NOT_FOUND
        assert ErrorCode.from_status(422) == ErrorCode.VALIDATION
        assert ErrorCode.from_status(502) == ErrorCode.SERVER_ERROR
        assert ErrorCode.from_status(418) == ErrorCode.UNKNOWN

    def test_retryable(self):
        assert ErrorCode.RATE_LIMITED.retryable
        assert ErrorCode.CIRCUIT_OPEN.retryable
        assert not ErrorCode.NOT_FOUND.retryable

    def test_error_code_of(self):
        assert error_code_of(APIError(403, "nope")) == ErrorCode.FORBIDDEN
        assert error_code_of(CircuitBreakerError()) == ErrorCode.CIRCUIT_OPEN
        assert error_code_of(ValueError("x")) is None


class TestMessages:

    def test_rate_limit(self):
        err = RateLimitError(2.5, "req-1")
        assert str(err) == "rate limit exceeded, retry after 2.5s"
        assert err.request_id == "req-1"

    def test_circuit(self):
        assert str(CircuitBreakerError(12)) == "circuit breaker is open, too many recent failures"

    def test_transport_keeps_cause(self):
        cause = ConnectionResetError("reset")
        err = TransportError("GET", "https://x/y", cause)
        assert err.cause is cause
        assert "GET https://x/y failed" in str(err)
