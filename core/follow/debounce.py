"""
Per-conversation debounce for message.created.

Messages are buffered per conversation. The timer is armed by the first
message of a buffer and is not extended by later ones; a buffer reaching
``max_batch`` is handed back immediately. Timer wake-ups are delivered on
``wakeups`` as ``(conversation_id, generation)`` so the session loop owns
every flush; a wake-up whose generation no longer matches is stale.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from core.api.types import Message


@dataclass
class BufferedMessage:
    message: Message
    raw: Any = None


@dataclass
class _Buffer:
    generation: int
    items: List[BufferedMessage] = field(default_factory=list)
    timer: Optional[asyncio.TimerHandle] = None


class DebounceAggregator:
    def __init__(self, delay: float, max_batch: int = 50):
        self.delay = delay
        self.max_batch = max_batch
        self.wakeups: asyncio.Queue = asyncio.Queue()
        self._buffers: Dict[int, _Buffer] = {}
        self._generation = 0

    @property
    def pending(self) -> int:
        return sum(len(b.items) for b in self._buffers.values())

    def add(self, conversation_id: int, message: Message, raw: Any = None) -> Optional[List[BufferedMessage]]:
        """
        Buffer one message.

        Returns:
            the full batch when ``max_batch`` was reached, else None
        """
        buf = self._buffers.get(conversation_id)
        if buf is None:
            self._generation += 1
            buf = _Buffer(generation=self._generation)
            self._buffers[conversation_id] = buf
            loop = asyncio.get_running_loop()
            buf.timer = loop.call_later(
                self.delay, self.wakeups.put_nowait, (conversation_id, buf.generation)
            )
        buf.items.append(BufferedMessage(message=message, raw=raw))

        if self.max_batch > 0 and len(buf.items) >= self.max_batch:
            return self._take(conversation_id)
        return None

    def take(self, conversation_id: int, generation: int) -> Optional[List[BufferedMessage]]:
        """Batch for a timer wake-up, or None when the wake-up is stale."""
        buf = self._buffers.get(conversation_id)
        if buf is None or buf.generation != generation:
            return None
        return self._take(conversation_id)

    def drain_all(self) -> List[Tuple[int, List[BufferedMessage]]]:
        """Every pending batch, ordered by conversation id."""
        batches = []
        for conversation_id in sorted(self._buffers):
            items = self._take(conversation_id)
            if items:
                batches.append((conversation_id, items))
        return batches

    def cancel_all(self) -> None:
        for buf in self._buffers.values():
            if buf.timer is not None:
                buf.timer.cancel()
        self._buffers.clear()

    def _take(self, conversation_id: int) -> List[BufferedMessage]:
        buf = self._buffers.pop(conversation_id)
        if buf.timer is not None:
            buf.timer.cancel()
        return buf.items
