"""
Retry configuration module

Retry budgets for the request executor, exponential backoff math (shared
with the reconnect supervisor) and Retry-After parsing.
"""

import os
import re
from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Mapping, Optional

from logger import get_logger

logger = get_logger(__name__)


# Environment variables that override RetryConfig fields
ENV_OVERRIDES = {
    "max_rate_limit_retries": "CHATWOOT_MAX_RATE_LIMIT_RETRIES",
    "max_5xx_retries": "CHATWOOT_MAX_5XX_RETRIES",
    "rate_limit_base_delay": "CHATWOOT_RATE_LIMIT_DELAY",
    "server_error_retry_delay": "CHATWOOT_SERVER_ERROR_DELAY",
    "circuit_breaker_threshold": "CHATWOOT_CIRCUIT_BREAKER_THRESHOLD",
    "circuit_breaker_reset_time": "CHATWOOT_CIRCUIT_BREAKER_RESET_TIME",
}


@dataclass
class RetryConfig:
    """Retry configuration (durations in seconds)"""
    max_rate_limit_retries: int = 3         # retries on 429 for idempotent calls
    max_5xx_retries: int = 1                # retries on 5xx for idempotent calls
    rate_limit_base_delay: float = 1.0      # base for 429 exponential backoff
    server_error_retry_delay: float = 1.0   # fixed delay between 5xx retries
    circuit_breaker_threshold: int = 5      # consecutive 5xx before opening
    circuit_breaker_reset_time: float = 30.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RetryConfig":
        """
        Build a config from defaults plus CHATWOOT_* environment overrides.

        Unparseable values are ignored with a warning.
        """
        environ = os.environ if environ is None else environ
        return cls().with_overrides(read_env_overrides(environ))

    def with_overrides(self, values: Mapping[str, object]) -> "RetryConfig":
        """Return a copy with known fields replaced; unknown keys are ignored."""
        known = {f.name for f in fields(self)}
        updates = {}
        for key, value in values.items():
            if key not in known or value is None:
                continue
            if key.endswith(("_delay", "_time")):
                updates[key] = parse_duration(value)
            else:
                updates[key] = int(value)
        return replace(self, **updates)


def read_env_overrides(environ: Mapping[str, str]) -> dict:
    overrides = {}
    for field_name, env_name in ENV_OVERRIDES.items():
        raw = environ.get(env_name, "").strip()
        if not raw:
            continue
        try:
            if field_name.endswith(("_delay", "_time")):
                overrides[field_name] = parse_duration(raw)
            else:
                overrides[field_name] = int(raw)
        except ValueError:
            logger.warning(
                "Ignoring invalid retry override",
                extra={"env": env_name, "value": raw},
            )
    return overrides


_DURATION_NUMBER_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*$")
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {"ns": 1e-9, "us": 1e-6, "µs": 1e-6, "ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value) -> float:
    """
    Parse a duration into seconds.

    Accepts numbers (seconds) and Go-style strings such as ``500ms``, ``2s``
    or ``1h30m``.

    Raises:
        ValueError: unparseable or negative value
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"negative duration: {value!r}")
        return float(value)
    text = str(value).strip()
    match = _DURATION_NUMBER_RE.match(text)
    if match:
        return float(match.group(1))
    if not text or _DURATION_PART_RE.sub("", text):
        raise ValueError(f"invalid duration: {value!r}")
    return sum(float(n) * _DURATION_UNITS[unit] for n, unit in _DURATION_PART_RE.findall(text))


def calculate_delay(attempt: int, base_delay: float, exponential_base: float = 2.0,
                    max_delay: Optional[float] = None) -> float:
    """
    Exponential backoff delay.

    Args:
        attempt: retry number, starting at 0
        base_delay: delay for attempt 0
        exponential_base: growth factor
        max_delay: cap (None for uncapped)

    Returns:
        delay in seconds
    """
    delay = base_delay * (exponential_base ** attempt)
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Parse a Retry-After header (delta seconds or HTTP date).

    Returns:
        seconds to wait (never negative), or None when absent or unparseable
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if re.fullmatch(r"-?\d+", value):
        return float(max(0, int(value)))
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())
