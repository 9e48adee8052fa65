"""
CLI argument handling and exit codes.
"""

import pytest

from core.api.errors import APIError, CircuitBreakerError, RateLimitError
from core.api.types import Conversation
from core.config import ConfigError
from core.follow import FollowOptionError
from core.follow.config import TYPING_EVENTS
from main import (
    EXIT_AUTH,
    EXIT_ERROR,
    EXIT_INTERRUPTED,
    EXIT_NOT_FOUND,
    EXIT_RATE_LIMITED,
    EXIT_SERVER,
    EXIT_USAGE,
    build_follow_config,
    build_parser,
    exit_code_for,
    main,
)


def follow_args(*argv):
    return build_parser().parse_args(["follow", *argv])


# ===========================================================================
# follow options
# ===========================================================================


class TestBuildFollowConfig:

    def test_single_conversation_defaults(self):
        config = build_follow_config(follow_args("#42"))
        assert config.conversation_id == 42
        assert config.tail == 20
        assert config.incoming_only
        assert config.allowed_events == {"message.created"}
        assert not config.json_mode

    def test_all_conversations(self):
        config = build_follow_config(follow_args("--all", "--json"))
        assert config.follow_all
        assert config.tail == 0
        assert config.allowed_events == {"message.created", *TYPING_EVENTS}
        assert config.json_mode

    def test_tail_with_all_rejected(self):
        with pytest.raises(FollowOptionError) as exc_info:
            build_follow_config(follow_args("-A", "--tail", "5"))
        assert "--tail requires a single conversation" in str(exc_info.value)

    def test_missing_conversation(self):
        with pytest.raises(FollowOptionError):
            build_follow_config(follow_args())

    def test_filters(self):
        config = build_follow_config(follow_args(
            "7", "--inbox", "3", "-s", "Open", "--label", "vip,billing", "--label", "vip",
            "--priority", "high", "--exclude-private", "--no-incoming-only",
        ))
        assert config.filters.inbox_id == 3
        assert config.filters.status == "open"
        assert config.filters.labels == ["vip", "billing"]
        assert config.filters.priority == "high"
        assert config.filters.exclude_private
        assert not config.incoming_only

    def test_events_and_durations(self):
        config = build_follow_config(follow_args(
            "7", "--events", "message.created,label.added", "--debounce", "1500ms", "--exec-timeout", "5",
        ))
        assert config.allowed_events == {"message.created", "label.added"}
        assert config.debounce == 1.5
        assert config.exec_timeout == 5

    def test_invalid_status(self):
        with pytest.raises(FollowOptionError):
            build_follow_config(follow_args("7", "--status", "closed"))

    def test_file_defaults_fill_unset_options(self):
        defaults = {"debounce": "2s", "max_batch": 5, "tail": 3, "events": ["all"], "queue": 10}
        config = build_follow_config(follow_args("7", "--max-batch", "8"), defaults)
        assert config.debounce == 2
        assert config.max_batch == 8
        assert config.tail == 3
        assert config.allowed_events is None
        assert config.queue_size == 10

    def test_bad_duration_is_usage_error(self):
        with pytest.raises(SystemExit) as exc_info:
            follow_args("7", "--debounce", "soon")
        assert exc_info.value.code == 2


# ===========================================================================
# exit codes
# ===========================================================================


class TestExitCodes:

    @pytest.mark.parametrize("exc,code", [
        (FollowOptionError("x"), EXIT_USAGE),
        (ConfigError("x"), EXIT_USAGE),
        (RateLimitError(1.0), EXIT_RATE_LIMITED),
        (CircuitBreakerError(), EXIT_SERVER),
        (APIError(401, "x"), EXIT_AUTH),
        (APIError(404, "x"), EXIT_NOT_FOUND),
        (APIError(503, "x"), EXIT_SERVER),
        (APIError(422, "x"), EXIT_ERROR),
        (KeyboardInterrupt(), EXIT_INTERRUPTED),
        (RuntimeError("x"), EXIT_ERROR),
    ])
    def test_exit_code_for(self, exc, code):
        assert exit_code_for(exc) == code

    def test_main_reports_missing_credentials(self, monkeypatch, tmp_path, capsys):
        for name in ("CHATWOOT_BASE_URL", "CHATWOOT_API_TOKEN", "CHATWOOT_ACCOUNT_ID"):
            monkeypatch.delenv(name, raising=False)
        code = main(["api", "GET", "/conversations", "--config", str(tmp_path / "none.yaml")])
        assert code == EXIT_USAGE
        assert capsys.readouterr().err.startswith("Error: ")

    def test_main_rejects_bad_json_body(self, tmp_path, capsys):
        code = main(["api", "POST", "/x", "-d", "{nope", "--config", str(tmp_path / "none.yaml")])
        assert code == EXIT_USAGE
        assert "--data is not valid JSON" in capsys.readouterr().err


class FakeFollowClient:
    base_url = "https://chat.example.com"
    account_id = 1

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def get_conversation(self, conversation_id):
        return Conversation(id=conversation_id)

    async def get_conversation_labels(self, conversation_id):
        return []

    async def list_messages(self, conversation_id, limit, max_pages):
        return []


class TestFollowCommand:

    def test_fatal_exec_failure_on_snapshot_is_reported(self, monkeypatch, tmp_path, capsys):
        async def fake_make_client(loader, **kwargs):
            return FakeFollowClient()

        monkeypatch.setattr("main._make_client", fake_make_client)
        code = main([
            "follow", "7", "--json", "--context", "--exec", "exit 3", "--exec-fatal",
            "--config", str(tmp_path / "none.yaml"),
        ])

        assert code == EXIT_ERROR
        assert "Error: --exec failed: exit status 3" in capsys.readouterr().err
