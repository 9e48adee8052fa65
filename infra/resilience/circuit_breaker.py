"""
Circuit breaker module

Two-state breaker shared by every request of one API client. While OPEN and
inside the reset window, callers must not touch the network.
"""

import threading
import time
from enum import Enum
from typing import Callable, Optional
from dataclasses import dataclass

from logger import get_logger

logger = get_logger(__name__)

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RESET_TIME = 30.0


class CircuitState(Enum):
    """Breaker state"""
    CLOSED = "closed"  # normal operation
    OPEN = "open"      # tripped


@dataclass
class CircuitBreakerConfig:
    """Breaker configuration"""
    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD  # consecutive failures that trip the breaker
    reset_time: float = DEFAULT_RESET_TIME            # seconds an open breaker rejects calls

    def __post_init__(self):
        # non-positive values fall back to the defaults
        if self.failure_threshold <= 0:
            self.failure_threshold = DEFAULT_FAILURE_THRESHOLD
        if self.reset_time <= 0:
            self.reset_time = DEFAULT_RESET_TIME


class CircuitBreaker:
    """
    Circuit breaker

    There is no explicit half-open state: once ``reset_time`` has elapsed the
    next call goes through and its own outcome decides what happens. A failure
    after an expired window re-arms the breaker; a success closes it.

    Usage:
        breaker = CircuitBreaker("chatwoot-api")

        if breaker.is_open():
            raise CircuitBreakerError()
        ...
        breaker.record_success()  # or record_failure()
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None

        # record_* may be called from executor threads as well as the loop
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def is_open(self) -> bool:
        """True while OPEN and the reset window has not elapsed."""
        with self._lock:
            return self._window_active()

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            now = self._clock()

            if self._state == CircuitState.CLOSED:
                if self._failure_count >= self.config.failure_threshold:
                    self._state = CircuitState.OPEN
                    self._opened_at = now
                    logger.error(
                        "Circuit breaker opened",
                        extra={
                            "breaker": self.name,
                            "failure_count": self._failure_count,
                            "reset_time": self.config.reset_time,
                        },
                    )
            elif not self._window_active():
                # probe after the window failed: start a new window
                self._opened_at = now
                logger.warning(
                    "Circuit breaker probe failed, re-opened",
                    extra={"breaker": self.name, "failure_count": self._failure_count},
                )

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.OPEN:
                logger.info("Circuit breaker closed", extra={"breaker": self.name})
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._opened_at = None

    def reset(self) -> None:
        """Return to a fresh CLOSED state."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._opened_at = None

    def configure(self, failure_threshold: int, reset_time: float) -> None:
        """Apply new thresholds to a running breaker."""
        with self._lock:
            self.config = CircuitBreakerConfig(
                failure_threshold=failure_threshold,
                reset_time=reset_time,
            )

    def time_until_retry(self) -> float:
        with self._lock:
            if not self._window_active():
                return 0.0
            return max(0.0, self._opened_at + self.config.reset_time - self._clock())

    def _window_active(self) -> bool:
        # caller holds the lock
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return False
        return self._clock() < self._opened_at + self.config.reset_time

    def get_stats(self) -> dict:
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "threshold": self.config.failure_threshold,
            "time_until_retry": self.time_until_retry(),
        }
