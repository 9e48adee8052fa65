"""
Follow session

One WebSocket connection's worth of following: connect, subscribe, keep
presence, then route frames and debounce wake-ups until the stream fails
or stop is requested. Pending debounce buffers are flushed on every exit
path and the output emitter is drained before returning.
"""

import asyncio
from functools import partial
from typing import Any, Optional, Set

from core.follow.config import FollowConfig
from core.follow.debounce import DebounceAggregator
from core.follow.meta import fetch_conversation_meta
from core.follow.records import RecordWriter
from core.follow.router import EventRouter, FollowState, RoutedMessage
from core.follow.snapshot import emit_snapshot
from core.realtime.transport import ActionCableClient, ChannelID
from infra.resilience.timeout import TimeoutConfig
from infra.storage.cursor_store import CursorWriter
from infra.storage.output_emitter import OutputEmitter
from logger import get_logger

logger = get_logger(__name__)

DROP_REPORT_INTERVAL = 5.0


class FatalFollowError(Exception):
    """An error that reconnecting cannot fix (output or --exec-fatal failure)."""


class FollowSession:
    def __init__(
        self,
        config: FollowConfig,
        *,
        cable_url: str,
        channel_id: ChannelID,
        state: FollowState,
        writer: RecordWriter,
        client=None,
        cursor: Optional[CursorWriter] = None,
        timeouts: Optional[TimeoutConfig] = None,
        stop: Optional[asyncio.Event] = None,
        connector=None,
    ):
        self.config = config
        self.cable_url = cable_url
        self.channel_id = channel_id
        self.state = state
        self.writer = writer
        self.client = client
        self.cursor = cursor
        self.timeouts = timeouts or TimeoutConfig()
        self.stop = stop or asyncio.Event()
        self._connector = connector

        self.router = EventRouter(
            state,
            conversation_id=config.conversation_id,
            allowed_events=config.allowed_events,
            incoming_only=config.incoming_only,
            min_created_at=config.min_created_at,
            filters=config.filters,
            meta_fetcher=self._fetch_meta if client is not None else None,
            on_last_seen=cursor.update if cursor is not None else None,
        )
        self.debounce = DebounceAggregator(config.debounce, config.max_batch)
        self.emitter = OutputEmitter(config.queue_size, config.drop_when_full)
        self._snapshotted: Set[int] = set()

    async def run(self) -> None:
        """
        Follow until the connection fails (raises) or stop is set (returns).

        Raises:
            CableError: connect, subscribe or read failure
            FatalFollowError: output could not be written
        """
        cable = await ActionCableClient.connect(
            self.cable_url, connector=self._connector, handshake_timeout=self.timeouts.ping_timeout
        )
        try:
            await cable.subscribe(self.channel_id, timeout=self.timeouts.ping_timeout)
            cable.start_presence(
                self.timeouts.presence_interval,
                on_error=lambda e: logger.debug("Presence update failed", extra={"error": str(e)}),
            )
            await self.emitter.start()
            try:
                await self._pump(cable)
            finally:
                error = await self.emitter.close_and_drain()
                self.debounce.cancel_all()
            if error is not None:
                raise FatalFollowError(str(error)) from error
        finally:
            await cable.close()

    async def _pump(self, cable: ActionCableClient) -> None:
        frames = cable.listen(self.timeouts.ping_timeout)
        frame_task = asyncio.ensure_future(frames.__anext__())
        wake_task = asyncio.ensure_future(self.debounce.wakeups.get())
        stop_task = asyncio.ensure_future(self.stop.wait())
        loop = asyncio.get_running_loop()
        next_report = loop.time() + DROP_REPORT_INTERVAL

        try:
            while True:
                done, _ = await asyncio.wait(
                    {frame_task, wake_task, stop_task},
                    timeout=max(next_report - loop.time(), 0),
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if loop.time() >= next_report:
                    self.emitter.maybe_report_drops()
                    next_report = loop.time() + DROP_REPORT_INTERVAL

                if stop_task in done:
                    await self._flush_all()
                    return

                # wake-ups first so a due batch is not overtaken by newer frames
                if wake_task in done:
                    conv_id, generation = wake_task.result()
                    wake_task = asyncio.ensure_future(self.debounce.wakeups.get())
                    await self._flush_batch(conv_id, self.debounce.take(conv_id, generation))

                if frame_task in done:
                    try:
                        payload = frame_task.result()
                    except Exception:
                        await self._flush_all()
                        raise
                    frame_task = asyncio.ensure_future(frames.__anext__())
                    await self._handle(payload)
        finally:
            for task in (frame_task, wake_task, stop_task):
                task.cancel()
            await asyncio.gather(frame_task, wake_task, stop_task, return_exceptions=True)
            await frames.aclose()

    async def _handle(self, payload: Any) -> None:
        routed = await self.router.route(payload)
        if routed is None:
            return

        if isinstance(routed, RoutedMessage):
            if self.config.debounce > 0 and routed.event == "message.created":
                batch = self.debounce.add(routed.conversation_id, routed.message, routed.raw)
                if batch is not None:
                    await self._flush_batch(routed.conversation_id, batch)
                return
            await self._maybe_snapshot(routed.conversation_id)
            await self._emit(partial(self.writer.message, routed.event, routed.message, "ws", routed.raw))
            return

        await self._maybe_snapshot(routed.conversation_id)
        await self._emit(partial(self.writer.event, routed.event, routed.data, "ws", routed.raw))

    async def _flush_batch(self, conversation_id: int, items) -> None:
        if not items:
            return
        await self._maybe_snapshot(conversation_id)
        await self._emit(partial(self.writer.batch, items, "ws"))

    async def _flush_all(self) -> None:
        for conversation_id, items in self.debounce.drain_all():
            try:
                await self._flush_batch(conversation_id, items)
            except FatalFollowError as e:
                logger.warning("Flush on shutdown failed", extra={"error": str(e)})
                return

    async def _maybe_snapshot(self, conversation_id: int) -> None:
        """First record of a conversation gets a snapshot when --context is on."""
        if not self.config.context or conversation_id <= 0 or conversation_id in self._snapshotted:
            return
        self._snapshotted.add(conversation_id)
        if self.client is None:
            return
        await self._emit(partial(
            emit_snapshot,
            self.writer,
            self.client,
            conversation_id,
            self.config.context_messages,
            self.timeouts.snapshot_timeout,
        ))

    async def _emit(self, unit) -> None:
        error = await self.emitter.emit(unit)
        if error is not None:
            raise FatalFollowError(str(error)) from error

    async def _fetch_meta(self, conversation_id: int, labels):
        return await fetch_conversation_meta(
            self.client, conversation_id, labels, self.timeouts.snapshot_timeout
        )
