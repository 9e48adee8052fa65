"""
Chatwoot resource types

Pydantic models for the resources the follower reads. Unknown fields are
ignored so server upgrades do not break decoding.
"""

from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class MessageType(IntEnum):
    INCOMING = 0
    OUTGOING = 1
    ACTIVITY = 2
    TEMPLATE = 3


class MessageSender(BaseModel):
    id: int = 0
    name: str = ""
    type: str = Field("", description="contact / user / agent_bot")


class Attachment(BaseModel):
    id: int = 0
    file_type: str = ""
    data_url: str = ""
    thumb_url: str = ""
    file_size: int = 0


class Message(BaseModel):
    """A conversation message."""
    id: int
    conversation_id: int = 0
    content: Optional[str] = None
    content_type: str = ""
    message_type: int = Field(0, description="0 incoming, 1 outgoing, 2 activity, 3 template")
    private: bool = False
    sender_id: Optional[int] = None
    sender_type: str = ""
    sender: Optional[MessageSender] = None
    created_at: int = Field(0, description="Epoch seconds")
    attachments: List[Attachment] = Field(default_factory=list)

    @property
    def created_at_time(self) -> datetime:
        return datetime.fromtimestamp(self.created_at)

    @property
    def message_type_name(self) -> str:
        try:
            return MessageType(self.message_type).name.lower()
        except ValueError:
            return "unknown"

    @property
    def sender_name(self) -> str:
        if self.sender and self.sender.name:
            return self.sender.name
        return "-"


class Conversation(BaseModel):
    """A conversation as returned by GET /conversations/{id}."""
    id: int
    account_id: int = 0
    inbox_id: int = 0
    status: str = ""
    priority: Optional[str] = None
    assignee_id: Optional[int] = None
    team_id: Optional[int] = None
    contact_id: int = 0
    display_id: Optional[int] = None
    muted: bool = False
    unread_count: int = 0
    created_at: int = 0
    last_activity_at: int = 0
    labels: List[str] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)
    custom_attributes: Dict[str, Any] = Field(default_factory=dict)

    def resolved_contact_id(self) -> int:
        """contact_id, falling back to meta.sender.id."""
        if self.contact_id:
            return self.contact_id
        sender = self.meta.get("sender") if isinstance(self.meta, dict) else None
        if isinstance(sender, dict) and isinstance(sender.get("id"), int):
            return sender["id"]
        return 0

    def resolved_assignee_id(self) -> Optional[int]:
        """assignee_id, falling back to meta.assignee.id."""
        if self.assignee_id is not None:
            return self.assignee_id
        assignee = self.meta.get("assignee") if isinstance(self.meta, dict) else None
        if isinstance(assignee, dict) and isinstance(assignee.get("id"), int):
            return assignee["id"]
        return None


class Contact(BaseModel):
    id: int
    name: str = ""
    email: Optional[str] = None
    phone_number: Optional[str] = None
    identifier: Optional[str] = None
    thumbnail: str = ""
    custom_attributes: Dict[str, Any] = Field(default_factory=dict)
    created_at: int = 0
    last_activity_at: Optional[int] = None


class Account(BaseModel):
    id: int
    name: str = ""
    role: str = ""


class Profile(BaseModel):
    """The authenticated user (GET /api/v1/profile)."""
    id: int
    name: str = ""
    email: str = ""
    pubsub_token: str = ""
    accounts: List[Account] = Field(default_factory=list)
