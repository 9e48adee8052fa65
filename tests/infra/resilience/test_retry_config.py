"""
RetryConfig, duration parsing, backoff math and Retry-After parsing.
"""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import pytest

from infra.resilience.retry import (
    RetryConfig,
    calculate_delay,
    parse_duration,
    parse_retry_after,
    read_env_overrides,
)


# ===========================================================================
# Durations
# ===========================================================================


class TestParseDuration:

    @pytest.mark.parametrize("value,expected", [
        (2, 2.0),
        (1.5, 1.5),
        ("1.5", 1.5),
        ("500ms", 0.5),
        ("2s", 2.0),
        ("1m", 60.0),
        ("1h", 3600.0),
        ("1h30m", 5400.0),
        ("1m30s", 90.0),
    ])
    def test_valid(self, value, expected):
        assert parse_duration(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["", "abc", "5x", "-1s", -1, True, "1s garbage"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


# ===========================================================================
# Environment overrides
# ===========================================================================


class TestEnvOverrides:

    def test_defaults(self):
        config = RetryConfig.from_env({})
        assert config.max_rate_limit_retries == 3
        assert config.max_5xx_retries == 1
        assert config.rate_limit_base_delay == 1.0
        assert config.server_error_retry_delay == 1.0
        assert config.circuit_breaker_threshold == 5
        assert config.circuit_breaker_reset_time == 30.0

    def test_env_values_applied(self):
        config = RetryConfig.from_env({
            "CHATWOOT_MAX_RATE_LIMIT_RETRIES": "7",
            "CHATWOOT_MAX_5XX_RETRIES": "0",
            "CHATWOOT_RATE_LIMIT_DELAY": "250ms",
            "CHATWOOT_SERVER_ERROR_DELAY": "2s",
            "CHATWOOT_CIRCUIT_BREAKER_THRESHOLD": "9",
            "CHATWOOT_CIRCUIT_BREAKER_RESET_TIME": "1m",
        })
        assert config.max_rate_limit_retries == 7
        assert config.max_5xx_retries == 0
        assert config.rate_limit_base_delay == 0.25
        assert config.server_error_retry_delay == 2.0
        assert config.circuit_breaker_threshold == 9
        assert config.circuit_breaker_reset_time == 60.0

    def test_invalid_values_are_ignored(self):
        overrides = read_env_overrides({
            "CHATWOOT_MAX_RATE_LIMIT_RETRIES": "many",
            "CHATWOOT_RATE_LIMIT_DELAY": "soon",
            "CHATWOOT_MAX_5XX_RETRIES": "4",
        })
        assert overrides == {"max_5xx_retries": 4}

    def test_with_overrides_ignores_unknown_keys(self):
        config = RetryConfig().with_overrides({"max_5xx_retries": 3, "nope": 1, "rate_limit_base_delay": None})
        assert config.max_5xx_retries == 3
        assert config.rate_limit_base_delay == 1.0


# ===========================================================================
# Backoff
# ===========================================================================


class TestCalculateDelay:

    def test_exponential(self):
        assert [calculate_delay(n, 1.0) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self):
        assert calculate_delay(10, 2.0, max_delay=30.0) == 30.0


# ===========================================================================
# Retry-After
# ===========================================================================


class TestParseRetryAfter:

    def test_seconds(self):
        assert parse_retry_after("5") == 5.0

    def test_negative_seconds_clamped(self):
        assert parse_retry_after("-3") == 0.0

    def test_missing_or_garbage(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None
        assert parse_retry_after("soon") is None

    def test_http_date(self):
        now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        header = format_datetime(now + timedelta(seconds=10), usegmt=True)
        assert parse_retry_after(header, now) == pytest.approx(10.0)

    def test_http_date_in_past(self):
        now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        header = format_datetime(now - timedelta(seconds=10), usegmt=True)
        assert parse_retry_after(header, now) == 0.0
