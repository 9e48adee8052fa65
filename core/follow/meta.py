"""
Conversation metadata cache entries and filters.

ConversationMeta holds just enough conversation state (inbox, status,
priority, assignee, contact, labels) to evaluate FollowFilters. Entries are
created lazily from events and hydrated from the API on demand.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Set

from core.api.types import Conversation
from infra.resilience.timeout import run_with_timeout
from logger import get_logger

logger = get_logger(__name__)

META_FETCH_TIMEOUT = 10.0


def any_to_int(value: Any) -> int:
    """Best-effort int from JSON numbers or numeric strings (0 otherwise)."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return 0


def conversation_id_from_event(data: Any) -> int:
    """
    Conversation id of a non-message event payload.

    Tries ``id``, then ``conversation_id``, then ``conversation.id``.
    """
    if not isinstance(data, dict):
        return 0
    for candidate in (data.get("id"), data.get("conversation_id")):
        conv_id = any_to_int(candidate)
        if conv_id > 0:
            return conv_id
    conversation = data.get("conversation")
    if isinstance(conversation, dict):
        conv_id = any_to_int(conversation.get("id"))
        if conv_id > 0:
            return conv_id
    return 0


def _clean_labels(labels: Iterable[Any]) -> Set[str]:
    return {str(label).strip() for label in labels if isinstance(label, str) and label.strip()}


@dataclass
class ConversationMeta:
    id: int
    inbox_id: int = 0
    status: str = ""
    priority: str = ""
    assignee_id: Optional[int] = None
    contact_id: int = 0
    labels: Set[str] = field(default_factory=set)
    hydrated: bool = False

    def has_label(self, label: str) -> bool:
        return label in self.labels

    def set_labels(self, labels: Iterable[Any]) -> None:
        self.labels = _clean_labels(labels)

    def apply_conversation(self, conversation: Conversation) -> None:
        """Overwrite from a full conversation and mark hydrated."""
        self.id = conversation.id
        self.inbox_id = conversation.inbox_id
        self.status = conversation.status
        self.priority = conversation.priority if conversation.priority is not None else "none"
        self.assignee_id = conversation.resolved_assignee_id()
        self.contact_id = conversation.resolved_contact_id()
        if conversation.labels:
            self.set_labels(conversation.labels)
        self.hydrated = True

    def apply_event(self, event: str, data: Any) -> None:
        """Incremental update from a real-time event payload."""
        if not isinstance(data, dict):
            return

        if event == "conversation.status_changed":
            status = data.get("status")
            if isinstance(status, str) and status.strip():
                self.status = status

        elif event == "assignee.changed":
            assignee = data.get("assignee")
            if assignee is None:
                self.assignee_id = None
            elif isinstance(assignee, dict):
                assignee_id = any_to_int(assignee.get("id"))
                if assignee_id > 0:
                    self.assignee_id = assignee_id

        elif event == "label.added":
            label = data.get("label")
            if isinstance(label, str) and label.strip():
                self.labels.add(label.strip())

        elif event == "label.removed":
            label = data.get("label")
            if isinstance(label, str) and label.strip():
                self.labels.discard(label.strip())

        elif event in ("conversation.created", "conversation.updated"):
            if any_to_int(data.get("id")) > 0:
                try:
                    self.apply_conversation(Conversation.model_validate(data))
                    return
                except ValueError:
                    pass
            # partial payload
            inbox_id = any_to_int(data.get("inbox_id"))
            if inbox_id > 0:
                self.inbox_id = inbox_id
            status = data.get("status")
            if isinstance(status, str) and status.strip():
                self.status = status
            priority = data.get("priority")
            if isinstance(priority, str) and priority.strip():
                self.priority = priority
            contact_id = any_to_int(data.get("contact_id"))
            if contact_id > 0:
                self.contact_id = contact_id
            labels = data.get("labels")
            if isinstance(labels, list) and labels:
                self.set_labels(labels)


@dataclass
class FollowFilters:
    """Conversation-level filters (all must match) plus message privacy."""
    inbox_id: int = 0
    status: str = ""
    assignee_id: int = 0
    labels: List[str] = field(default_factory=list)
    priority: str = ""
    contact_id: int = 0
    only_unassigned: bool = False
    exclude_private: bool = False

    def meta_filters_enabled(self) -> bool:
        return bool(
            self.inbox_id > 0
            or self.status
            or self.assignee_id > 0
            or self.labels
            or self.priority
            or self.contact_id > 0
            or self.only_unassigned
        )

    def match_meta(self, meta: Optional[ConversationMeta]) -> bool:
        if meta is None:
            return False
        if self.inbox_id > 0 and meta.inbox_id != self.inbox_id:
            return False
        if self.status and meta.status.strip() != self.status:
            return False
        if self.priority and meta.priority.strip() != self.priority:
            return False
        if self.contact_id > 0 and meta.contact_id != self.contact_id:
            return False
        if self.assignee_id > 0 and meta.assignee_id != self.assignee_id:
            return False
        if self.only_unassigned and meta.assignee_id:
            return False
        return all(meta.has_label(label) for label in self.labels if label)


async def fetch_conversation_meta(client, conversation_id: int, want_labels: List[str],
                                  timeout: float = META_FETCH_TIMEOUT) -> ConversationMeta:
    """
    Hydrated meta from the API, bounded by ``timeout``.

    When label filters are active the label list is fetched explicitly
    (best-effort), since the show endpoint may omit labels.
    """
    async def _fetch() -> ConversationMeta:
        conversation = await client.get_conversation(conversation_id)
        meta = ConversationMeta(id=conversation_id)
        meta.apply_conversation(conversation)
        if want_labels:
            try:
                meta.set_labels(await client.get_conversation_labels(conversation_id))
            except Exception as e:
                # keep labels from the conversation payload
                logger.debug("Conversation labels unavailable",
                             extra={"conversation_id": conversation_id, "error": str(e)})
        return meta

    return await run_with_timeout(_fetch(), timeout, "conversation meta fetch")
