"""
``follow`` orchestration: resume point, optional snapshot and history,
then the reconnecting WebSocket follow.
"""

import asyncio
from typing import Optional

from core.api.client import ChatwootClient
from core.api.errors import ChatwootError
from core.follow.config import FollowConfig
from core.follow.hooks import ExecHook, ExecHookError
from core.follow.meta import fetch_conversation_meta
from core.follow.records import RecordWriter
from core.follow.router import EventRouter, FollowState
from core.follow.session import FatalFollowError, FollowSession
from core.follow.snapshot import emit_snapshot
from core.follow.supervisor import ReconnectConfig, ReconnectSupervisor
from core.realtime.transport import ChannelID, build_cable_url
from infra.resilience.timeout import TimeoutConfig
from infra.storage.cursor_store import CursorError, CursorWriter, resolve_start_id
from logger import clear_request_context, get_logger, set_request_context

logger = get_logger(__name__)

HISTORY_MAX_PAGES = 10


class FollowSetupError(ChatwootError):
    """follow could not start (profile, token or cursor problems)."""


async def print_history(client: ChatwootClient, config: FollowConfig, router: EventRouter,
                        writer: RecordWriter, cursor: Optional[CursorWriter]) -> int:
    """
    Print the last ``config.tail`` messages oldest first. History lines never
    reach the --exec hook. Failures to fetch history are logged and skipped.

    Returns:
        number of messages printed
    """
    meta = None
    if config.filters.meta_filters_enabled():
        try:
            meta = await fetch_conversation_meta(client, config.conversation_id, config.filters.labels)
        except Exception as e:
            logger.debug("History meta unavailable", extra={"error": str(e)})

    try:
        messages = await client.list_messages(config.conversation_id, config.tail, HISTORY_MAX_PAGES)
    except ChatwootError as e:
        logger.warning("Could not load message history", extra={"error": str(e)})
        return 0

    writer = writer.without_hook()
    printed = 0
    for message in sorted(messages, key=lambda m: m.id):
        if not router.accepts_history(message, meta):
            continue
        await writer.message("message.created", message, "history")
        router.state.last_seen_id = message.id
        if cursor is not None:
            await cursor.update(message.id)
        printed += 1
    return printed


async def run_follow(
    client: ChatwootClient,
    config: FollowConfig,
    *,
    stop: Optional[asyncio.Event] = None,
    writer: Optional[RecordWriter] = None,
    timeouts: Optional[TimeoutConfig] = None,
    reconnect: Optional[ReconnectConfig] = None,
    connector=None,
) -> FollowState:
    """
    Run ``follow`` until stop is set.

    Raises:
        FollowSetupError: no usable profile / pubsub token
        FatalFollowError: output or --exec-fatal failure
        CursorError: unreadable cursor file
    """
    stop = stop or asyncio.Event()
    timeouts = timeouts or TimeoutConfig()
    hook = ExecHook.from_options(config.exec_command, config.exec_timeout, config.exec_fatal)
    writer = writer or RecordWriter(json_mode=config.json_mode, hook=hook, include_raw=config.include_raw)
    set_request_context(account_id=str(client.account_id),
                        conversation_id=str(config.conversation_id or ""))

    state = FollowState(last_seen_id=await resolve_start_id(
        config.cursor_file, config.since_id, client.base_url, client.account_id
    ))
    cursor = None
    if config.cursor_file:
        cursor = CursorWriter(config.cursor_file, client.base_url, client.account_id, state.last_seen_id)

    try:
        if config.context and config.conversation_id and config.tail > 0:
            try:
                await emit_snapshot(writer, client, config.conversation_id,
                                    config.context_messages, timeouts.snapshot_timeout)
            except ExecHookError as e:
                raise FatalFollowError(str(e)) from e

        if config.conversation_id and config.tail > 0:
            history_router = EventRouter(
                state,
                conversation_id=config.conversation_id,
                incoming_only=config.incoming_only,
                min_created_at=config.min_created_at,
                filters=config.filters,
            )
            await print_history(client, config, history_router, writer, cursor)

        if not config.json_mode:
            if config.follow_all:
                writer.write_line("Following all conversations (press Ctrl+C to stop)...")
            else:
                writer.write_line(
                    f"Following conversation {config.conversation_id} (press Ctrl+C to stop)..."
                )

        try:
            profile = await client.get_profile()
        except ChatwootError as e:
            raise FollowSetupError(f"failed to get profile (needed for WebSocket auth): {e}") from e
        if not profile.pubsub_token:
            raise FollowSetupError("profile has no pubsub_token; cannot connect to WebSocket")

        cable_url = build_cable_url(client.base_url)
        channel_id = ChannelID(
            pubsub_token=profile.pubsub_token,
            account_id=client.account_id,
            user_id=profile.id,
        )

        def new_session() -> FollowSession:
            return FollowSession(
                config,
                cable_url=cable_url,
                channel_id=channel_id,
                state=state,
                writer=writer,
                client=client,
                cursor=cursor,
                timeouts=timeouts,
                stop=stop,
                connector=connector,
            )

        def on_disconnect(error: BaseException, delay: float) -> None:
            if not config.json_mode:
                logger.warning(f"disconnected: {error}, reconnecting in {delay:g}s...")

        supervisor = ReconnectSupervisor(
            lambda: new_session().run(),
            stop,
            config=reconnect,
            cursor=cursor,
            on_disconnect=on_disconnect,
        )
        await supervisor.run()
    finally:
        if cursor is not None:
            try:
                await cursor.flush()
            except CursorError as e:
                logger.warning("Cursor flush failed", extra={"error": str(e)})
        clear_request_context()

    logger.debug("Follow finished", extra={"last_seen_id": state.last_seen_id, "decisions": state.decisions})
    return state
