"""
Event routing: dedup, scoping, message and meta filters.
"""

import pytest

from core.api.types import Message, MessageType
from core.follow.meta import ConversationMeta, FollowFilters
from core.follow.router import EventRouter, FollowState, RoutedEvent, RoutedMessage


def msg(msg_id, conversation_id=7, message_type=MessageType.INCOMING, private=False, created_at=1000):
    return {
        "event": "message.created",
        "data": {
            "id": msg_id,
            "conversation_id": conversation_id,
            "message_type": int(message_type),
            "private": private,
            "content": f"m{msg_id}",
            "created_at": created_at,
        },
    }


# ===========================================================================
# Messages
# ===========================================================================


class TestMessageRouting:

    @pytest.mark.asyncio
    async def test_dedup_against_last_seen(self):
        state = FollowState(last_seen_id=4)
        router = EventRouter(state)
        emitted = []
        for msg_id in [5, 3, 7, 3, 7, 9]:
            routed = await router.route(msg(msg_id))
            if routed is not None:
                emitted.append(routed.message.id)

        assert emitted == [5, 7, 9]
        assert state.last_seen_id == 9
        assert state.decisions == {"emitted": 3, "dropped_duplicate": 3}

    @pytest.mark.asyncio
    async def test_last_seen_advances_for_filtered_messages(self):
        seen = []

        async def on_last_seen(msg_id):
            seen.append(msg_id)

        state = FollowState()
        router = EventRouter(state, on_last_seen=on_last_seen)
        assert await router.route(msg(10, message_type=MessageType.OUTGOING)) is None
        assert state.last_seen_id == 10
        assert seen == [10]
        assert state.decisions["dropped_not_incoming"] == 1

    @pytest.mark.asyncio
    async def test_conversation_scope_does_not_advance_last_seen(self):
        state = FollowState()
        router = EventRouter(state, conversation_id=7)
        assert await router.route(msg(10, conversation_id=8)) is None
        assert state.last_seen_id == 0

    @pytest.mark.asyncio
    async def test_since_time(self):
        router = EventRouter(FollowState(), min_created_at=2000)
        assert await router.route(msg(1, created_at=1999)) is None
        assert await router.route(msg(2, created_at=2000)) is not None

    @pytest.mark.asyncio
    async def test_outgoing_allowed_when_not_incoming_only(self):
        router = EventRouter(FollowState(), incoming_only=False)
        routed = await router.route(msg(1, message_type=MessageType.OUTGOING))
        assert isinstance(routed, RoutedMessage)
        assert routed.conversation_id == 7

    @pytest.mark.asyncio
    async def test_exclude_private(self):
        router = EventRouter(FollowState(), filters=FollowFilters(exclude_private=True))
        assert await router.route(msg(1, private=True)) is None
        assert await router.route(msg(2)) is not None

    @pytest.mark.asyncio
    async def test_event_allow_list_and_malformed(self):
        state = FollowState()
        router = EventRouter(state, allowed_events={"message.created"})
        assert await router.route({"event": "conversation.created", "data": {"id": 1}}) is None
        assert await router.route({"event": "message.created", "data": {"no": "id"}}) is None
        assert await router.route("garbage") is None
        assert state.decisions == {"dropped_event_type": 1, "dropped_malformed": 2}

    @pytest.mark.asyncio
    async def test_raw_is_whole_payload(self):
        payload = msg(1)
        routed = await EventRouter(FollowState()).route(payload)
        assert routed.raw is payload


# ===========================================================================
# Meta filters
# ===========================================================================


class TestMetaFilters:

    def _fetcher(self, metas, calls):
        async def fetch(conversation_id, labels):
            calls.append(conversation_id)
            meta = metas.get(conversation_id)
            if meta is None:
                raise RuntimeError("not found")
            return meta
        return fetch

    @pytest.mark.asyncio
    async def test_message_meta_filter_and_cache(self):
        calls = []
        metas = {7: ConversationMeta(id=7, inbox_id=2, hydrated=True),
                 8: ConversationMeta(id=8, inbox_id=3, hydrated=True)}
        router = EventRouter(FollowState(), filters=FollowFilters(inbox_id=2),
                             meta_fetcher=self._fetcher(metas, calls))

        assert await router.route(msg(1, conversation_id=7)) is not None
        assert await router.route(msg(2, conversation_id=7)) is not None
        assert await router.route(msg(3, conversation_id=8)) is None
        assert calls == [7, 8]

    @pytest.mark.asyncio
    async def test_fetch_failure_filters_out(self):
        router = EventRouter(FollowState(), filters=FollowFilters(inbox_id=2),
                             meta_fetcher=self._fetcher({}, []))
        assert await router.route(msg(1)) is None

    @pytest.mark.asyncio
    async def test_events_update_cache(self):
        calls = []
        metas = {7: ConversationMeta(id=7, status="open", hydrated=True)}
        router = EventRouter(FollowState(), filters=FollowFilters(status="open"),
                             meta_fetcher=self._fetcher(metas, calls))

        routed = await router.route({"event": "conversation.status_changed", "data": {"id": 7, "status": "open"}})
        assert isinstance(routed, RoutedEvent)
        assert routed.conversation_id == 7

        await router.route({"event": "conversation.status_changed", "data": {"id": 7, "status": "resolved"}})
        assert router.cache[7].status == "resolved"
        assert await router.route(msg(1)) is None
        assert calls == [7]

    @pytest.mark.asyncio
    async def test_event_without_conversation_dropped_under_meta_filters(self):
        router = EventRouter(FollowState(), filters=FollowFilters(inbox_id=1),
                             meta_fetcher=self._fetcher({}, []))
        assert await router.route({"event": "conversation.typing_on", "data": {}}) is None

    @pytest.mark.asyncio
    async def test_event_scope(self):
        router = EventRouter(FollowState(), conversation_id=7)
        assert await router.route({"event": "label.added", "data": {"id": 8, "label": "x"}}) is None
        assert await router.route({"event": "label.added", "data": {"id": 7, "label": "x"}}) is not None
        # events without an id are not scoped out
        assert await router.route({"event": "presence.update", "data": {}}) is not None


# ===========================================================================
# History
# ===========================================================================


class TestAcceptsHistory:

    def test_history_filters(self):
        router = EventRouter(FollowState(last_seen_id=5), filters=FollowFilters(inbox_id=2))
        incoming = Message(id=6, conversation_id=7)
        assert router.accepts_history(incoming)
        assert not router.accepts_history(Message(id=5, conversation_id=7))
        assert not router.accepts_history(Message(id=7, message_type=1))
        assert not router.accepts_history(incoming, ConversationMeta(id=7, inbox_id=3))
