"""
chatwoot - Chatwoot command line client

Commands:
    follow [CONVERSATION]   stream conversation events in real time
    api METHOD PATH         call an account-scoped API endpoint

Credentials come from CHATWOOT_BASE_URL, CHATWOOT_API_TOKEN and
CHATWOOT_ACCOUNT_ID.
"""

# ==================== standard library ====================
import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

# ==================== local modules ====================
from core.api import (
    APIError,
    ChatwootClient,
    ChatwootError,
    CircuitBreakerError,
    RateLimitError,
    new_idempotency_key,
)
from core.config import ConfigError, ConfigLoader
from core.follow import (
    FatalFollowError,
    FollowConfig,
    FollowFilters,
    FollowOptionError,
    parse_conversation_ref,
    parse_since_time,
    resolve_events,
    run_follow,
)
from core.follow.config import dedupe, min_created_at_from, split_csv, validate_priority, validate_status
from core.follow.hooks import DEFAULT_EXEC_TIMEOUT
from infra.resilience.retry import parse_duration
from infra.storage.cursor_store import CursorError
from logger import get_logger, set_level
from utils.app_paths import get_default_cursor_file

logger = get_logger("cli")

# ==================== exit codes ====================

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_AUTH = 3
EXIT_NOT_FOUND = 4
EXIT_RATE_LIMITED = 5
EXIT_SERVER = 6
EXIT_INTERRUPTED = 130


def exit_code_for(exc: BaseException) -> int:
    if isinstance(exc, (FollowOptionError, ConfigError)):
        return EXIT_USAGE
    if isinstance(exc, RateLimitError):
        return EXIT_RATE_LIMITED
    if isinstance(exc, CircuitBreakerError):
        return EXIT_SERVER
    if isinstance(exc, APIError):
        if exc.status_code in (401, 403):
            return EXIT_AUTH
        if exc.status_code == 404:
            return EXIT_NOT_FOUND
        if exc.status_code >= 500:
            return EXIT_SERVER
    if isinstance(exc, (KeyboardInterrupt, asyncio.CancelledError)):
        return EXIT_INTERRUPTED
    return EXIT_ERROR


# ==================== argument parsing ====================

def _duration(value: str) -> float:
    try:
        return parse_duration(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--json", action="store_true", help="JSON output (one object per line)")
    common.add_argument("--debug", action="store_true", help="Debug logging to stderr")
    common.add_argument("--config", type=Path, default=None, help="Config file (default: ~/.config/chatwoot-cli/config.yaml)")

    parser = argparse.ArgumentParser(prog="chatwoot", description="Chatwoot command line client")
    sub = parser.add_subparsers(dest="command", required=True)

    # ---------- follow ----------
    follow = sub.add_parser("follow", aliases=["fw"], parents=[common],
                            help="Follow a conversation (or the whole account) in real time")
    follow.add_argument("conversation", nargs="?", help="Conversation id or URL")
    follow.add_argument("-A", "--all", dest="follow_all", action="store_true",
                        help="Follow all conversations (no conversation id required)")
    follow.add_argument("--incoming-only", dest="incoming_only", action=argparse.BooleanOptionalAction,
                        default=True, help="Only show incoming (customer) messages")
    follow.add_argument("--tail", type=int, default=None,
                        help="Print the last N messages before following (default 20, 0 to disable)")
    follow.add_argument("--events", action="append", default=None,
                        help="Event types to show, comma-separated or repeated (or 'all')")
    follow.add_argument("--typing", action="store_true", help="Show typing indicators")
    follow.add_argument("--debounce", type=_duration, default=0.0,
                        help="Batch rapid messages from the same conversation (e.g. 2s)")
    follow.add_argument("--max-batch", type=int, default=50,
                        help="Maximum messages per debounced batch (0 = unlimited)")
    follow.add_argument("--raw", action="store_true", help="Include the raw WebSocket payload (JSON only)")
    follow.add_argument("--context", action="store_true",
                        help="Emit a conversation snapshot before the first event of each conversation")
    follow.add_argument("--context-messages", type=int, default=10,
                        help="Recent messages included in snapshots")
    follow.add_argument("--cursor-file", default=None,
                        help="Persist the last seen message id for resume ('auto' uses the config dir)")
    follow.add_argument("--since-id", type=int, default=0, help="Skip messages with id <= this value")
    follow.add_argument("--since-time", default="",
                        help="Skip messages created before this time (RFC3339, unix seconds, or duration like 24h)")
    follow.add_argument("--inbox", type=int, default=0, help="Only conversations in this inbox")
    follow.add_argument("-s", "--status", default="", help="Only conversations with this status (open|resolved|pending|snoozed)")
    follow.add_argument("--assignee", type=int, default=0, help="Only conversations assigned to this agent id")
    follow.add_argument("--label", action="append", default=None, help="Only conversations having all of these labels")
    follow.add_argument("--priority", default="", help="Only conversations with this priority (urgent|high|medium|low|none)")
    follow.add_argument("--contact", type=int, default=0, help="Only conversations with this contact id")
    follow.add_argument("--only-unassigned", action="store_true", help="Only conversations with no assignee")
    follow.add_argument("--exclude-private", action="store_true", help="Exclude private messages")
    follow.add_argument("--queue", type=int, default=1024, help="Output queue size (0 disables queueing)")
    follow.add_argument("--drop", action="store_true", help="Drop events when the output queue is full (otherwise block)")
    follow.add_argument("--exec", dest="exec_command", default=None,
                        help="Run a command for each JSON record (record on stdin)")
    follow.add_argument("--exec-timeout", type=_duration, default=DEFAULT_EXEC_TIMEOUT,
                        help="Timeout per --exec invocation")
    follow.add_argument("--exec-fatal", action="store_true", help="Treat --exec failures as fatal")

    # ---------- api ----------
    api = sub.add_parser("api", parents=[common], help="Call an account-scoped API endpoint")
    api.add_argument("method", help="HTTP method")
    api.add_argument("path", help="Path below /api/v1/accounts/{id}, e.g. /conversations/42")
    api.add_argument("-d", "--data", default=None, help="JSON request body")
    api.add_argument("--wait", action="store_true", help="Poll 202 Accepted responses until done")
    api.add_argument("--idempotency-key", default=None,
                     help="Idempotency-Key header ('auto' generates one); makes the call retryable")
    api.add_argument("-i", "--include", action="store_true", help="Print status and rate-limit info to stderr")
    return parser


def build_follow_config(args: argparse.Namespace, defaults: Optional[Dict[str, Any]] = None) -> FollowConfig:
    """
    FollowConfig from parsed ``follow`` arguments.

    ``defaults`` (the config file's ``follow`` section) fill in values the
    command line left at their defaults.

    Raises:
        FollowOptionError: invalid combination or value
    """
    defaults = defaults or {}

    def pick(name: str, parser_default: Any) -> Any:
        value = getattr(args, name)
        if value == parser_default and name in defaults:
            return defaults[name]
        return value

    if args.follow_all and args.tail not in (None, 0):
        raise FollowOptionError("--tail requires a single conversation")

    conversation_id = 0
    tail = 0
    if not args.follow_all:
        if not args.conversation:
            raise FollowOptionError("missing conversation id (or use --all)")
        conversation_id = parse_conversation_ref(args.conversation)
        tail = args.tail if args.tail is not None else int(defaults.get("tail", 20))

    events = split_csv(args.events) if args.events is not None else defaults.get("events")
    allowed_events = resolve_events(events, follow_all=args.follow_all, typing=args.typing)

    status = validate_status(args.status) if args.status else ""
    priority = validate_priority(args.priority) if args.priority else ""
    labels = dedupe(split_csv(args.label))

    since = parse_since_time(args.since_time)
    context_messages = pick("context_messages", 10)

    return FollowConfig(
        conversation_id=conversation_id,
        incoming_only=args.incoming_only,
        tail=tail,
        allowed_events=allowed_events,
        debounce=parse_duration(pick("debounce", 0.0)),
        max_batch=int(pick("max_batch", 50)),
        include_raw=args.raw,
        context=bool(pick("context", False)),
        context_messages=int(context_messages) if int(context_messages) > 0 else 10,
        cursor_file=pick("cursor_file", None),
        since_id=args.since_id,
        min_created_at=min_created_at_from(since),
        filters=FollowFilters(
            inbox_id=args.inbox,
            status=status,
            assignee_id=args.assignee,
            labels=labels,
            priority=priority,
            contact_id=args.contact,
            only_unassigned=args.only_unassigned,
            exclude_private=args.exclude_private,
        ),
        queue_size=int(pick("queue", 1024)),
        drop_when_full=bool(pick("drop", False)),
        exec_command=pick("exec_command", None),
        exec_timeout=parse_duration(pick("exec_timeout", DEFAULT_EXEC_TIMEOUT)),
        exec_fatal=bool(pick("exec_fatal", False)),
        json_mode=args.json,
    )


# ==================== commands ====================

async def _make_client(loader: ConfigLoader, **executor_kwargs) -> ChatwootClient:
    retry, timeout = await loader.get_resilience_configs()
    try:
        return ChatwootClient.from_env(retry_config=retry, timeout_config=timeout, **executor_kwargs)
    except ValueError as e:
        raise FollowOptionError(str(e)) from e


async def cmd_follow(args: argparse.Namespace) -> int:
    loader = ConfigLoader(args.config)
    config = build_follow_config(args, await loader.get_follow_defaults())
    reconnect = await loader.get_reconnect_config()
    _, timeouts = await loader.get_resilience_configs()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # platforms without loop signal handlers fall back to KeyboardInterrupt
            pass

    async with await _make_client(loader) as client:
        if config.cursor_file == "auto":
            config.cursor_file = str(get_default_cursor_file(client.account_id))
        await run_follow(client, config, stop=stop, timeouts=timeouts, reconnect=reconnect)
    return EXIT_OK


async def cmd_api(args: argparse.Namespace) -> int:
    body = None
    if args.data is not None:
        try:
            body = json.loads(args.data)
        except ValueError as e:
            raise FollowOptionError(f"--data is not valid JSON: {e}") from e

    key = args.idempotency_key or ""
    if key == "auto":
        key = new_idempotency_key()

    loader = ConfigLoader(args.config)
    async with await _make_client(loader, idempotency_key=key, wait_for_async=args.wait) as client:
        response = await client.raw(args.method.upper(), args.path, body)
        if args.include:
            info = {"status": response.status_code, "request_id": response.request_id}
            if client.executor.last_rate_limit is not None:
                info["rate_limit"] = client.executor.last_rate_limit.meta()
            print(json.dumps(info), file=sys.stderr)

    data = response.json()
    if data is None:
        return EXIT_OK
    if args.json:
        print(json.dumps(data, ensure_ascii=False))
    else:
        print(json.dumps(data, ensure_ascii=False, indent=2))
    return EXIT_OK


COMMANDS = {
    "follow": cmd_follow,
    "fw": cmd_follow,
    "api": cmd_api,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.debug:
        set_level("DEBUG")

    try:
        return asyncio.run(COMMANDS[args.command](args))
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except (ChatwootError, FatalFollowError, FollowOptionError, ConfigError, CursorError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        code = getattr(e, "code", None)
        if code is not None and code.suggestion:
            print(f"Hint: {code.suggestion}", file=sys.stderr)
        return exit_code_for(e)


if __name__ == "__main__":
    sys.exit(main())
