"""
Timeout control module

Timeout budgets for HTTP calls, async-operation polling, snapshot/metadata
fetches and WebSocket liveness, plus a helper that bounds an awaitable.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Optional, TypeVar

from logger import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


@dataclass
class TimeoutConfig:
    """Timeout configuration (seconds)"""
    http_timeout: float = 30.0        # single HTTP request
    wait_timeout: float = 300.0       # total budget for polling a 202 operation
    wait_interval: float = 2.0        # poll interval when Retry-After is absent
    snapshot_timeout: float = 10.0    # conversation snapshot / metadata fetch
    ping_timeout: float = 15.0        # silence before the socket is considered dead
    presence_interval: float = 30.0   # update_presence cadence


class OperationTimeoutError(TimeoutError):
    """Raised by run_with_timeout; carries the operation name."""

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout:g}s")


async def run_with_timeout(awaitable: Awaitable[T], timeout: Optional[float], operation: str = "operation") -> T:
    """
    Await ``awaitable`` for at most ``timeout`` seconds.

    Args:
        awaitable: coroutine to run
        timeout: seconds, None or <= 0 for no limit
        operation: name used in the log line and the error

    Raises:
        OperationTimeoutError: the deadline passed
    """
    if timeout is None or timeout <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Operation timed out", extra={"operation": operation, "timeout": timeout})
        raise OperationTimeoutError(operation, timeout) from None
