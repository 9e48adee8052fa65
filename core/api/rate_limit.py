"""
Rate-limit header parsing.

Reads ``X-RateLimit-*`` (falling back to ``RateLimit-*``) into a snapshot the
executor keeps from the most recent response.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Mapping, Optional

# Reset values above this are unix timestamps, below are seconds from now
UNIX_TIMESTAMP_THRESHOLD = 1_000_000_000


@dataclass(frozen=True)
class RateLimitInfo:
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset_at: Optional[datetime] = None
    reset_raw: str = ""

    def meta(self) -> Optional[Dict[str, Any]]:
        """JSON-ready summary, None when nothing is known."""
        meta: Dict[str, Any] = {}
        if self.limit is not None:
            meta["limit"] = self.limit
        if self.remaining is not None:
            meta["remaining"] = self.remaining
        if self.reset_at is not None:
            meta["reset_at"] = self.reset_at.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        elif self.reset_raw:
            meta["reset"] = self.reset_raw
        return meta or None


def _first_header(headers: Mapping[str, str], *names: str) -> str:
    for name in names:
        value = (headers.get(name) or "").strip()
        if value:
            return value
    return ""


def _parse_int(value: str) -> Optional[int]:
    if re.fullmatch(r"-?\d+", value):
        return int(value)
    return None


def parse_rate_limit_reset(value: str, now: datetime) -> Optional[datetime]:
    value = value.strip()
    if not value:
        return None
    seconds = _parse_int(value)
    if seconds is not None:
        if seconds > UNIX_TIMESTAMP_THRESHOLD:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        if seconds >= 0:
            return now + timedelta(seconds=seconds)
        return None
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when


def parse_rate_limit_info(headers: Optional[Mapping[str, str]], now: Optional[datetime] = None) -> Optional[RateLimitInfo]:
    """
    Parse rate-limit headers.

    Args:
        headers: case-insensitive mapping (httpx.Headers)
        now: reference time for relative resets

    Returns:
        RateLimitInfo, or None when no rate-limit header is present
    """
    if headers is None:
        return None
    limit_val = _first_header(headers, "X-RateLimit-Limit", "RateLimit-Limit")
    remaining_val = _first_header(headers, "X-RateLimit-Remaining", "RateLimit-Remaining")
    reset_val = _first_header(headers, "X-RateLimit-Reset", "RateLimit-Reset")
    if not (limit_val or remaining_val or reset_val):
        return None

    now = now or datetime.now(timezone.utc)
    return RateLimitInfo(
        limit=_parse_int(limit_val) if limit_val else None,
        remaining=_parse_int(remaining_val) if remaining_val else None,
        reset_at=parse_rate_limit_reset(reset_val, now) if reset_val else None,
        reset_raw=reset_val,
    )
