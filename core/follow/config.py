"""
Follow options

FollowConfig carries every ``follow`` option after CLI parsing and
normalization. The helpers here turn raw flag values into the normalized
form (event allow-list, validated filters, --since-time thresholds).
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Set

from core.follow.hooks import DEFAULT_EXEC_TIMEOUT
from core.follow.meta import FollowFilters
from infra.resilience.retry import parse_duration

DEFAULT_EVENTS = ["message.created"]
TYPING_EVENTS = ["conversation.typing_on", "conversation.typing_off"]
KNOWN_EVENTS = [
    "message.created",
    "message.updated",
    "conversation.created",
    "conversation.updated",
    "conversation.status_changed",
    "assignee.changed",
    "label.added",
    "label.removed",
    *TYPING_EVENTS,
]
VALID_STATUSES = ("open", "resolved", "pending", "snoozed")
VALID_PRIORITIES = ("urgent", "high", "medium", "low", "none")
MILLISECONDS_THRESHOLD = 1_000_000_000_000

_INT_RE = re.compile(r"^[+-]?\d+$")


class FollowOptionError(ValueError):
    """Invalid combination or value of follow options."""


@dataclass
class FollowConfig:
    conversation_id: int = 0            # 0 follows the whole account
    incoming_only: bool = True
    tail: int = 20
    allowed_events: Optional[Set[str]] = field(default_factory=lambda: set(DEFAULT_EVENTS))  # None allows all
    debounce: float = 0.0
    max_batch: int = 50
    include_raw: bool = False
    context: bool = False
    context_messages: int = 10
    cursor_file: Optional[str] = None
    since_id: int = 0
    min_created_at: int = 0
    filters: FollowFilters = field(default_factory=FollowFilters)
    queue_size: int = 1024
    drop_when_full: bool = False
    exec_command: Optional[str] = None
    exec_timeout: float = DEFAULT_EXEC_TIMEOUT
    exec_fatal: bool = False
    json_mode: bool = False

    @property
    def follow_all(self) -> bool:
        return self.conversation_id == 0


def dedupe(values: Iterable[str]) -> List[str]:
    """Trimmed, non-empty, first occurrence wins."""
    seen = set()
    out = []
    for value in values:
        value = value.strip()
        if value and value not in seen:
            seen.add(value)
            out.append(value)
    return out


def split_csv(values: Optional[Iterable[str]]) -> List[str]:
    """Flatten repeated and comma-separated flag values."""
    out: List[str] = []
    for value in values or []:
        out.extend(value.split(","))
    return out


def resolve_events(events: Optional[List[str]], follow_all: bool = False,
                   typing: bool = False) -> Optional[Set[str]]:
    """
    Event allow-list from --events/--all/--typing.

    ``events`` is None when --events was not given. Returns None when
    ``all`` or ``*`` is present.
    """
    explicit = events is not None
    values = list(events) if explicit else list(DEFAULT_EVENTS)
    if typing or (follow_all and not explicit):
        values.extend(TYPING_EVENTS)
    values = dedupe(values)
    if any(v in ("all", "*") for v in values):
        return None
    return set(values)


def validate_status(value: str) -> str:
    status = value.strip().lower()
    if status not in VALID_STATUSES:
        raise FollowOptionError(f"invalid status {value!r} (use {'|'.join(VALID_STATUSES)})")
    return status


def validate_priority(value: str) -> str:
    priority = value.strip().lower()
    if priority not in VALID_PRIORITIES:
        raise FollowOptionError(f"invalid priority {value!r} (use {'|'.join(VALID_PRIORITIES)})")
    return priority


def parse_conversation_ref(value: str) -> int:
    """
    Conversation id from ``123``, ``#123``, ``conv:123`` or a conversation URL.

    Raises:
        FollowOptionError: not a positive id
    """
    text = value.strip().lstrip("#")
    if "://" in text:
        match = re.search(r"/conversations/(\d+)", text)
        if not match:
            raise FollowOptionError(f"invalid conversation ID {value!r}: URL has no conversation id")
        text = match.group(1)
    elif ":" in text:
        prefix, _, rest = text.partition(":")
        if prefix.strip().lower() not in ("conversation", "conversations", "conv", "c"):
            raise FollowOptionError(f"invalid conversation ID {value!r}: expected a conversation")
        text = rest.strip()
    if not text.isdigit() or int(text) <= 0:
        raise FollowOptionError(f"invalid conversation ID {value!r}")
    return int(text)


def parse_since_time(value: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Threshold for --since-time.

    Accepts a look-back duration (``24h``, ``90m``; sign ignored), unix
    seconds or milliseconds, RFC3339, ``YYYY-MM-DD HH:MM:SS`` or
    ``YYYY-MM-DD`` (local time). Empty input is None.

    Raises:
        FollowOptionError: none of the formats matched
    """
    text = (value or "").strip()
    if not text:
        return None
    now = now or datetime.now(timezone.utc)

    if not _INT_RE.match(text):
        try:
            return now - timedelta(seconds=parse_duration(text.lstrip("+-")))
        except ValueError:
            pass
    else:
        number = int(text)
        if number > 0:
            if number > MILLISECONDS_THRESHOLD:
                return datetime.fromtimestamp(number / 1000, timezone.utc)
            return datetime.fromtimestamp(number, timezone.utc)

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if "T" in text and parsed.tzinfo is not None:
            return parsed
    except ValueError:
        pass

    for layout in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(text, layout).astimezone()
        except ValueError:
            continue

    raise FollowOptionError(
        f"invalid --since-time {text!r} (use RFC3339, unix seconds, or duration like 24h)"
    )


def min_created_at_from(since: Optional[datetime]) -> int:
    return int(since.timestamp()) if since is not None else 0
