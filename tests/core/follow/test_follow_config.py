"""
Follow option parsing: events, conversation refs, --since-time.
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.follow.config import (
    DEFAULT_EVENTS,
    TYPING_EVENTS,
    FollowConfig,
    FollowOptionError,
    dedupe,
    min_created_at_from,
    parse_conversation_ref,
    parse_since_time,
    resolve_events,
    split_csv,
    validate_priority,
    validate_status,
)

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


# ===========================================================================
# Events
# ===========================================================================


class TestResolveEvents:

    def test_default(self):
        assert resolve_events(None) == set(DEFAULT_EVENTS)

    def test_all_adds_typing_without_explicit_events(self):
        assert resolve_events(None, follow_all=True) == set(DEFAULT_EVENTS + TYPING_EVENTS)

    def test_explicit_events_with_all(self):
        assert resolve_events(["label.added"], follow_all=True) == {"label.added"}

    def test_typing_flag(self):
        assert resolve_events(["label.added"], typing=True) == {"label.added", *TYPING_EVENTS}

    def test_wildcard(self):
        assert resolve_events(["message.created", "*"]) is None
        assert resolve_events(["all"]) is None

    def test_split_and_dedupe(self):
        assert dedupe(split_csv(["a,b", " a ", "", "c"])) == ["a", "b", "c"]
        assert split_csv(None) == []


# ===========================================================================
# Validation
# ===========================================================================


class TestValidation:

    def test_status(self):
        assert validate_status(" Open ") == "open"
        with pytest.raises(FollowOptionError):
            validate_status("closed")

    def test_priority(self):
        assert validate_priority("NONE") == "none"
        with pytest.raises(FollowOptionError):
            validate_priority("critical")

    @pytest.mark.parametrize("ref,expected", [
        ("123", 123),
        ("#123", 123),
        ("conv:45", 45),
        ("https://chat.example.com/app/accounts/1/conversations/99?x=1", 99),
    ])
    def test_conversation_ref(self, ref, expected):
        assert parse_conversation_ref(ref) == expected

    @pytest.mark.parametrize("ref", ["0", "abc", "contact:5", "https://chat.example.com/app"])
    def test_bad_conversation_ref(self, ref):
        with pytest.raises(FollowOptionError):
            parse_conversation_ref(ref)

    def test_follow_all(self):
        assert FollowConfig().follow_all
        assert not FollowConfig(conversation_id=3).follow_all


# ===========================================================================
# --since-time
# ===========================================================================


class TestSinceTime:

    def test_empty(self):
        assert parse_since_time("") is None
        assert parse_since_time(None) is None
        assert min_created_at_from(None) == 0

    def test_duration(self):
        assert parse_since_time("24h", NOW) == NOW - timedelta(hours=24)
        assert parse_since_time("-90m", NOW) == NOW - timedelta(minutes=90)

    def test_unix_seconds_and_millis(self):
        assert parse_since_time("1700000000", NOW) == datetime.fromtimestamp(1700000000, timezone.utc)
        assert parse_since_time("1700000000123", NOW) == datetime.fromtimestamp(1700000000.123, timezone.utc)

    def test_rfc3339(self):
        parsed = parse_since_time("2024-05-01T10:00:00Z", NOW)
        assert parsed == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
        assert min_created_at_from(parsed) == int(parsed.timestamp())

    def test_local_date_forms(self):
        expected = datetime(2024, 5, 1, 10, 30, 0).astimezone()
        assert parse_since_time("2024-05-01 10:30:00", NOW) == expected
        assert parse_since_time("2024-05-01", NOW) == datetime(2024, 5, 1).astimezone()

    @pytest.mark.parametrize("value", ["yesterday", "2024-05-01T10:00:00", "0"])
    def test_invalid(self, value):
        with pytest.raises(FollowOptionError) as exc_info:
            parse_since_time(value, NOW)
        assert "invalid --since-time" in str(exc_info.value)
