"""
Output emitter

Bounded queue between the follow pipeline and stdout (and exec hooks), so a
slow reader can't stall WebSocket reads.

- drop mode: a full queue discards the unit and counts it
- block mode: the producer waits for space, or for the consumer to stop
- the first failing unit stops execution; remaining units are discarded and
  the error is returned to every later emit
- queue_size == 0 runs every unit inline
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from logger import get_logger

logger = get_logger(__name__)

# A unit writes one record. It may be sync or return an awaitable.
OutputUnit = Callable[[], Union[None, Awaitable[Any]]]

_STOP = object()


class OutputWriterStopped(RuntimeError):
    """The consumer stopped without a stored error."""


class OutputEmitter:
    """
    Single-consumer bounded output queue.

    Usage:
        emitter = OutputEmitter(queue_size=1024, drop_when_full=False)
        await emitter.start()
        await emitter.emit(lambda: print(line))
        ...
        err = await emitter.close_and_drain()
    """

    def __init__(self, queue_size: int = 1024, drop_when_full: bool = False):
        self.queue_size = max(0, queue_size)
        self.drop_when_full = drop_when_full

        self._queue: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None
        self._error: Optional[BaseException] = None
        self._dropped = 0
        self._closed = False

        # Stats
        self.stats = {
            "emitted": 0,
            "completed": 0,
            "dropped_total": 0,
        }

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def dropped(self) -> int:
        """Drops since the last report."""
        return self._dropped

    async def start(self) -> None:
        if self.queue_size == 0 or self._consumer is not None:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._consumer = asyncio.create_task(self._consume(), name="output-emitter")

    async def emit(self, unit: OutputUnit) -> Optional[BaseException]:
        """
        Queue (or run) one unit.

        Returns:
            the stored error once any unit has failed, else None
        """
        if self._error is not None:
            return self._error
        if self._closed:
            return OutputWriterStopped("output writer stopped")

        self.stats["emitted"] += 1

        if self._queue is None:
            try:
                await _run_unit(unit)
            except Exception as e:
                self._error = e
                return e
            self.stats["completed"] += 1
            return None

        if self.drop_when_full:
            try:
                self._queue.put_nowait(unit)
            except asyncio.QueueFull:
                self._dropped += 1
                self.stats["dropped_total"] += 1
            return None

        if self._consumer.done():
            return self._error or OutputWriterStopped("output writer stopped")

        put = asyncio.ensure_future(self._queue.put(unit))
        try:
            await asyncio.wait({put, self._consumer}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            put.cancel()
            raise
        if put.done():
            return None
        put.cancel()
        return self._error or OutputWriterStopped("output writer stopped")

    def maybe_report_drops(self) -> int:
        """Log and reset the drop counter (drop mode only)."""
        if not self.drop_when_full:
            return 0
        n, self._dropped = self._dropped, 0
        if n > 0:
            logger.warning(f"dropped {n} events (output queue full)", extra={"dropped": n})
        return n

    async def close_and_drain(self) -> Optional[BaseException]:
        """
        Report drops, stop accepting units, wait for the consumer.

        Returns:
            the first unit error, if any
        """
        self.maybe_report_drops()
        if self._closed:
            return self._error
        self._closed = True
        if self._consumer is not None:
            if not self._consumer.done():
                await self._queue.put(_STOP)
            await self._consumer
        logger.debug("Output emitter drained", extra=dict(self.stats))
        return self._error

    async def _consume(self) -> None:
        while True:
            unit = await self._queue.get()
            if unit is _STOP:
                return
            if self._error is not None:
                # discard after the first failure so producers never block
                continue
            try:
                await _run_unit(unit)
                self.stats["completed"] += 1
            except Exception as e:
                self._error = e
                logger.error("Output write failed", extra={"error": str(e)})


async def _run_unit(unit: OutputUnit) -> None:
    result = unit()
    if inspect.isawaitable(result):
        await result
