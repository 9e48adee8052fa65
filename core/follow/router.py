"""
Event router

Decides, per incoming Chatwoot event, whether it reaches the output and in
what shape. Message events are parsed into Message and pass, in order: the
conversation scope, the --since-time threshold, id dedup (which advances
the last-seen id even for messages filtered out later), the incoming-only
and private filters, then conversation meta filters. Other events are
scoped by conversation id, folded into the meta cache, then meta-filtered.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from pydantic import ValidationError

from core.api.types import Message, MessageType
from core.follow.meta import ConversationMeta, FollowFilters, conversation_id_from_event
from logger import get_logger

logger = get_logger(__name__)

MESSAGE_EVENTS = ("message.created", "message.updated")

MetaFetcher = Callable[[int, List[str]], Awaitable[ConversationMeta]]
LastSeenCallback = Callable[[int], Awaitable[None]]


@dataclass
class RoutedMessage:
    event: str
    message: Message
    raw: Any = None

    @property
    def conversation_id(self) -> int:
        return self.message.conversation_id


@dataclass
class RoutedEvent:
    event: str
    data: Any
    conversation_id: int
    raw: Any = None


Routed = Union[RoutedMessage, RoutedEvent]


@dataclass
class FollowState:
    """State that outlives a single connection."""
    last_seen_id: int = 0
    decisions: Dict[str, int] = field(default_factory=dict)


class EventRouter:
    """
    Per-connection router with its own metadata cache.

    Usage:
        router = EventRouter(state, conversation_id=42, filters=filters,
                             meta_fetcher=fetch, on_last_seen=cursor.update)
        routed = await router.route(payload)
    """

    def __init__(
        self,
        state: FollowState,
        *,
        conversation_id: int = 0,
        allowed_events: Optional[Set[str]] = None,
        incoming_only: bool = True,
        min_created_at: int = 0,
        filters: Optional[FollowFilters] = None,
        meta_fetcher: Optional[MetaFetcher] = None,
        on_last_seen: Optional[LastSeenCallback] = None,
    ):
        self.state = state
        self.conversation_id = conversation_id
        self.allowed_events = allowed_events
        self.incoming_only = incoming_only
        self.min_created_at = min_created_at
        self.filters = filters or FollowFilters()
        self._meta_fetcher = meta_fetcher
        self._on_last_seen = on_last_seen
        self.cache: Dict[int, ConversationMeta] = {}

    async def route(self, payload: Any) -> Optional[Routed]:
        """Routed event, or None when the event is filtered out."""
        if not isinstance(payload, dict):
            return self._drop("malformed")
        event = payload.get("event")
        if not isinstance(event, str):
            return self._drop("malformed")
        data = payload.get("data")

        if self.allowed_events is not None and event not in self.allowed_events:
            return self._drop("event_type")

        if event in MESSAGE_EVENTS:
            return await self._route_message(event, data, payload)
        return await self._route_event(event, data, payload)

    async def _route_message(self, event: str, data: Any, raw: Any) -> Optional[RoutedMessage]:
        try:
            message = Message.model_validate(data)
        except ValidationError:
            return self._drop("malformed")

        if self.conversation_id and message.conversation_id != self.conversation_id:
            return self._drop("conversation")
        if self.min_created_at > 0 and message.created_at < self.min_created_at:
            return self._drop("since_time")
        if message.id <= self.state.last_seen_id:
            return self._drop("duplicate")

        self.state.last_seen_id = message.id
        if self._on_last_seen is not None:
            await self._on_last_seen(message.id)

        if self.incoming_only and message.message_type != MessageType.INCOMING:
            return self._drop("not_incoming")
        if self.filters.exclude_private and message.private:
            return self._drop("private")
        if self.filters.meta_filters_enabled():
            meta = await self.ensure_meta(message.conversation_id)
            if not self.filters.match_meta(meta):
                return self._drop("meta")

        self._count("emitted")
        return RoutedMessage(event=event, message=message, raw=raw)

    async def _route_event(self, event: str, data: Any, raw: Any) -> Optional[RoutedEvent]:
        conv_id = conversation_id_from_event(data)
        if self.conversation_id and conv_id and conv_id != self.conversation_id:
            return self._drop("conversation")

        self.update_meta_from_event(event, data)
        if self.filters.meta_filters_enabled():
            if conv_id <= 0:
                return self._drop("meta")
            meta = await self.ensure_meta(conv_id)
            if not self.filters.match_meta(meta):
                return self._drop("meta")

        self._count("emitted")
        return RoutedEvent(event=event, data=data, conversation_id=conv_id, raw=raw)

    def accepts_history(self, message: Message, meta: Optional[ConversationMeta] = None) -> bool:
        """
        Filters for --tail history. ``meta`` is the conversation's meta when
        it could be fetched; without it meta filters are skipped.
        """
        if self.min_created_at > 0 and message.created_at < self.min_created_at:
            return False
        if message.id <= self.state.last_seen_id:
            return False
        if self.filters.exclude_private and message.private:
            return False
        if self.incoming_only and message.message_type != MessageType.INCOMING:
            return False
        if self.filters.meta_filters_enabled() and meta is not None:
            return self.filters.match_meta(meta)
        return True

    async def ensure_meta(self, conversation_id: int) -> Optional[ConversationMeta]:
        """Cached hydrated meta, fetching it when missing; None on failure."""
        if conversation_id <= 0 or self._meta_fetcher is None:
            return None
        cached = self.cache.get(conversation_id)
        if cached is not None and cached.hydrated:
            return cached
        try:
            meta = await self._meta_fetcher(conversation_id, self.filters.labels)
        except Exception as e:
            logger.debug(
                "Conversation meta fetch failed",
                extra={"conversation_id": conversation_id, "error": str(e)},
            )
            return None
        self.cache[conversation_id] = meta
        return meta

    def update_meta_from_event(self, event: str, data: Any) -> None:
        conv_id = conversation_id_from_event(data)
        if conv_id <= 0:
            return
        meta = self.cache.get(conv_id)
        if meta is None:
            meta = ConversationMeta(id=conv_id)
            self.cache[conv_id] = meta
        meta.apply_event(event, data)

    def _drop(self, reason: str) -> None:
        self._count(f"dropped_{reason}")
        return None

    def _count(self, key: str) -> None:
        self.state.decisions[key] = self.state.decisions.get(key, 0) + 1
