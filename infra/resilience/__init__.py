"""
Resilience module

Retry budgets, circuit breaking and timeouts for the Chatwoot API client.
"""

from infra.resilience.timeout import TimeoutConfig, OperationTimeoutError, run_with_timeout
from infra.resilience.retry import RetryConfig, calculate_delay, parse_duration, parse_retry_after
from infra.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)

__all__ = [
    "TimeoutConfig",
    "OperationTimeoutError",
    "run_with_timeout",
    "RetryConfig",
    "calculate_delay",
    "parse_duration",
    "parse_retry_after",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
]
