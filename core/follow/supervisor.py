"""
Reconnect supervisor

Runs follow sessions until stop is requested. After each session the
cursor is flushed; a session that lasted longer than the stability
threshold resets the backoff, otherwise it doubles up to the cap.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from core.follow.session import FatalFollowError
from infra.storage.cursor_store import CursorError, CursorWriter
from logger import get_logger

logger = get_logger(__name__)


@dataclass
class ReconnectConfig:
    """Backoff between sessions (seconds)"""
    initial_delay: float = 2.0
    max_delay: float = 30.0
    stable_threshold: float = 60.0     # session length that resets the backoff


class ReconnectSupervisor:
    """
    Usage:
        supervisor = ReconnectSupervisor(lambda: FollowSession(...).run(), stop)
        await supervisor.run()
    """

    def __init__(
        self,
        run_session: Callable[[], Awaitable[None]],
        stop: asyncio.Event,
        config: Optional[ReconnectConfig] = None,
        cursor: Optional[CursorWriter] = None,
        on_disconnect: Optional[Callable[[BaseException, float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self._run_session = run_session
        self.stop = stop
        self.config = config or ReconnectConfig()
        self.cursor = cursor
        self._on_disconnect = on_disconnect
        self._clock = clock
        self._sleep = sleep or self._sleep_until_stop

        self.backoff = self.config.initial_delay
        self.delays: List[float] = []
        self.sessions = 0

    async def run(self) -> None:
        """
        Returns when stop is set.

        Raises:
            FatalFollowError: a session failed in a way reconnecting cannot fix
        """
        while True:
            started = self._clock()
            self.sessions += 1
            error: Optional[BaseException] = None
            try:
                await self._run_session()
            except FatalFollowError:
                await self._flush_cursor()
                raise
            except Exception as e:
                error = e

            if self.stop.is_set():
                await self._flush_cursor()
                return
            duration = self._clock() - started
            await self._flush_cursor()

            if duration > self.config.stable_threshold:
                self.backoff = self.config.initial_delay

            delay = self.backoff
            self.delays.append(delay)
            reason = error if error is not None else ConnectionError("connection closed")
            logger.info(
                f"disconnected: {reason}, reconnecting in {delay:g}s...",
                extra={"session_seconds": round(duration, 3), "attempt": self.sessions},
            )
            if self._on_disconnect is not None:
                self._on_disconnect(reason, delay)

            await self._sleep(delay)
            if self.stop.is_set():
                return
            self.backoff = min(self.backoff * 2, self.config.max_delay)

    async def _sleep_until_stop(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self.stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _flush_cursor(self) -> None:
        if self.cursor is None:
            return
        try:
            await self.cursor.flush()
        except CursorError as e:
            logger.warning("Cursor flush failed", extra={"error": str(e)})
