"""
CircuitBreaker unit tests

Time is injected through a fake clock, so nothing here sleeps.

Run:
    python -m pytest tests/infra/resilience/test_circuit_breaker.py -v
"""

from infra.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _breaker(threshold: int = 5, reset_time: float = 30.0, clock=None) -> CircuitBreaker:
    return CircuitBreaker(
        "test",
        CircuitBreakerConfig(failure_threshold=threshold, reset_time=reset_time),
        clock=clock or FakeClock(),
    )


# ===========================================================================
# Tripping
# ===========================================================================


class TestTripping:
    """Consecutive failures open the breaker at the threshold"""

    def test_starts_closed(self):
        breaker = _breaker()
        assert breaker.state == CircuitState.CLOSED
        assert not breaker.is_open()

    def test_opens_exactly_at_threshold(self):
        breaker = _breaker(threshold=5)
        for _ in range(4):
            breaker.record_failure()
        assert not breaker.is_open()
        breaker.record_failure()
        assert breaker.is_open()
        assert breaker.state == CircuitState.OPEN

    def test_success_resets_failure_count(self):
        breaker = _breaker(threshold=3)
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        breaker.record_failure()
        assert not breaker.is_open()
        assert breaker.failure_count == 2

    def test_threshold_of_one(self):
        breaker = _breaker(threshold=1)
        breaker.record_failure()
        assert breaker.is_open()


# ===========================================================================
# Reset window
# ===========================================================================


class TestResetWindow:
    """Open breaker rejects until reset_time, then lets one call probe"""

    def test_open_until_window_elapses(self):
        clock = FakeClock()
        breaker = _breaker(threshold=1, reset_time=30.0, clock=clock)
        breaker.record_failure()

        clock.advance(29.9)
        assert breaker.is_open()
        clock.advance(0.1)
        assert not breaker.is_open()

    def test_time_until_retry(self):
        clock = FakeClock()
        breaker = _breaker(threshold=1, reset_time=30.0, clock=clock)
        assert breaker.time_until_retry() == 0.0
        breaker.record_failure()
        clock.advance(10)
        assert breaker.time_until_retry() == 20.0

    def test_probe_success_closes(self):
        clock = FakeClock()
        breaker = _breaker(threshold=1, reset_time=5.0, clock=clock)
        breaker.record_failure()
        clock.advance(6)
        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_probe_failure_reopens_with_fresh_window(self):
        clock = FakeClock()
        breaker = _breaker(threshold=2, reset_time=5.0, clock=clock)
        breaker.record_failure()
        breaker.record_failure()
        clock.advance(6)
        assert not breaker.is_open()

        breaker.record_failure()
        assert breaker.is_open()
        clock.advance(4.9)
        assert breaker.is_open()
        clock.advance(0.2)
        assert not breaker.is_open()

    def test_failure_inside_window_does_not_extend_it(self):
        clock = FakeClock()
        breaker = _breaker(threshold=1, reset_time=10.0, clock=clock)
        breaker.record_failure()
        clock.advance(5)
        breaker.record_failure()
        clock.advance(5)
        assert not breaker.is_open()


# ===========================================================================
# Runtime changes
# ===========================================================================


class TestConfigure:

    def test_configure_changes_threshold(self):
        breaker = _breaker(threshold=5)
        breaker.configure(failure_threshold=2, reset_time=1.0)
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.is_open()

    def test_reset_closes_open_breaker(self):
        breaker = _breaker(threshold=1)
        breaker.record_failure()
        breaker.reset()
        assert not breaker.is_open()
        assert breaker.get_stats()["state"] == "closed"

    def test_non_positive_values_use_defaults(self):
        breaker = _breaker(threshold=0, reset_time=-1)
        assert breaker.config.failure_threshold == 5
        assert breaker.config.reset_time == 30.0

        breaker.configure(failure_threshold=-3, reset_time=0)
        for _ in range(4):
            breaker.record_failure()
        assert not breaker.is_open()
        breaker.record_failure()
        assert breaker.is_open()
        assert breaker.time_until_retry() == 30.0
