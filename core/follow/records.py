"""
Follow output records

Builds the JSON records (one object per line) and the human text lines
written by ``follow``. JSON records go through the --exec hook first.
"""

import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TextIO

from core.api.types import Message
from core.follow.debounce import BufferedMessage
from core.follow.hooks import ExecHook, ExecHookError
from core.follow.meta import any_to_int, conversation_id_from_event
from logger import get_logger

logger = get_logger(__name__)

RECORD_KIND = "conversations.follow"


def format_ts(epoch: int) -> str:
    """RFC3339 UTC for an epoch-seconds timestamp."""
    return datetime.fromtimestamp(epoch, timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def now_ts() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _clock(epoch: Optional[int] = None) -> str:
    if epoch is None:
        return datetime.now().strftime("%H:%M:%S")
    return datetime.fromtimestamp(epoch).strftime("%H:%M:%S")


def _dump(message: Message) -> Dict[str, Any]:
    return message.model_dump(mode="json")


# ============================================================
# JSON records
# ============================================================

def message_record(event: str, message: Message, source: str,
                   raw: Any = None, include_raw: bool = False) -> Dict[str, Any]:
    record = {
        "kind": RECORD_KIND,
        "source": source,
        "type": "message",
        "event": event,
        "conversation_id": message.conversation_id,
        "ts": format_ts(message.created_at),
        "item": _dump(message),
    }
    if include_raw and raw is not None:
        record["raw"] = raw
    return record


def batch_record(items: List[BufferedMessage], source: str, include_raw: bool = False) -> Dict[str, Any]:
    """A multi-message batch; ts is taken from the newest message."""
    record = {
        "kind": RECORD_KIND,
        "type": "message_batch",
        "event": "message.batch",
        "source": source,
        "conversation_id": items[0].message.conversation_id,
        "ts": format_ts(items[-1].message.created_at),
        "items": [_dump(item.message) for item in items],
    }
    if include_raw:
        record["raw_items"] = [item.raw for item in items]
    return record


def event_record(event: str, data: Any, source: str,
                 raw: Any = None, include_raw: bool = False) -> Dict[str, Any]:
    record = {
        "kind": RECORD_KIND,
        "type": "event",
        "event": event,
        "source": source,
        "conversation_id": conversation_id_from_event(data),
        "ts": now_ts(),
        "data": data,
    }
    if include_raw and raw is not None:
        record["raw"] = raw
    return record


# ============================================================
# Text lines
# ============================================================

def format_message_line(message: Message, content: Optional[str] = None,
                        created_at: Optional[int] = None) -> str:
    """``[HH:MM:SS] sender (kind)[ [private]]: content``"""
    ts = _clock(message.created_at if created_at is None else created_at)
    privacy = " [private]" if message.private else ""
    if content is None:
        content = (message.content or "").strip()
    sender = message.sender_name.strip() or "-"
    return f"[{ts}] {sender} ({message.message_type_name}){privacy}: {content}"


def format_batch_line(items: List[BufferedMessage]) -> str:
    """Sender, kind and privacy of the first message; contents joined by newlines."""
    first = items[0].message
    content = "\n".join((item.message.content or "").strip() for item in items).strip()
    return format_message_line(first, content=content, created_at=items[-1].message.created_at)


def summarize_event(event: str, data: Any) -> str:
    """Human summary of a non-message event (without the time prefix)."""
    data = data if isinstance(data, dict) else {}

    if event == "conversation.created":
        conv_id = any_to_int(data.get("id"))
        if conv_id == 0:
            return event
        text = f"New conversation #{conv_id}"
        contact = data.get("contact")
        name = contact.get("name") if isinstance(contact, dict) else None
        if isinstance(name, str) and name.strip():
            text += f" from {name}"
        inbox_id = any_to_int(data.get("inbox_id"))
        if inbox_id:
            text += f" (inbox: {inbox_id})"
        return text

    if event == "conversation.status_changed":
        conv_id = any_to_int(data.get("id"))
        if conv_id == 0:
            return event
        status = data.get("status")
        if not isinstance(status, str) or not status.strip():
            return f"Conversation #{conv_id} status changed"
        return f"Conversation #{conv_id} status changed to {status}"

    if event == "assignee.changed":
        conv_id = any_to_int(data.get("id"))
        if conv_id == 0:
            return event
        assignee = data.get("assignee")
        if not isinstance(assignee, dict):
            return f"Conversation #{conv_id} unassigned"
        name = assignee.get("name")
        name = name if isinstance(name, str) and name.strip() else ""
        return f"Conversation #{conv_id} assigned to {name}"

    if event in ("conversation.typing_on", "conversation.typing_off"):
        conversation = data.get("conversation")
        conv_id = any_to_int(conversation.get("id")) if isinstance(conversation, dict) else 0
        if conv_id == 0:
            return event
        user = data.get("user")
        name = user.get("name") if isinstance(user, dict) else None
        name = name.strip() if isinstance(name, str) and name.strip() else "Someone"
        if event == "conversation.typing_on":
            return f"{name} is typing in #{conv_id}..."
        return f"{name} stopped typing in #{conv_id}"

    return event


# ============================================================
# Writer
# ============================================================

class RecordWriter:
    """
    Writes follow output to ``stream`` in JSON-lines or text mode.

    In JSON mode every record is first handed to the exec hook; a fatal hook
    turns a hook failure into an error for the caller, a non-fatal one logs.
    """

    def __init__(self, json_mode: bool = False, stream: Optional[TextIO] = None,
                 hook: Optional[ExecHook] = None, include_raw: bool = False):
        self.json_mode = json_mode
        self.hook = hook
        self.include_raw = include_raw
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stdout

    def without_hook(self) -> "RecordWriter":
        """Same output settings, no --exec hook."""
        return RecordWriter(self.json_mode, self._stream, None, self.include_raw)

    def write_line(self, line: str) -> None:
        self.stream.write(line + "\n")
        self.stream.flush()

    async def write_record(self, record: Dict[str, Any]) -> None:
        """
        Raises:
            ExecHookError: the hook failed and is fatal
        """
        if self.hook is not None and self.json_mode:
            try:
                await self.hook.run(record)
            except ExecHookError as e:
                if self.hook.fatal:
                    raise ExecHookError(f"--exec failed: {e}") from e
                logger.warning(f"exec hook error: {e}", extra={"command": self.hook.command})
        self.write_line(json.dumps(record, ensure_ascii=False))

    async def message(self, event: str, message: Message, source: str, raw: Any = None) -> None:
        if self.json_mode:
            await self.write_record(message_record(event, message, source, raw, self.include_raw))
        else:
            self.write_line(format_message_line(message))

    async def batch(self, items: List[BufferedMessage], source: str) -> None:
        if not items:
            return
        if len(items) == 1:
            await self.message("message.created", items[0].message, source, items[0].raw)
            return
        if self.json_mode:
            await self.write_record(batch_record(items, source, self.include_raw))
        else:
            self.write_line(format_batch_line(items))

    async def event(self, event: str, data: Any, source: str, raw: Any = None) -> None:
        if self.json_mode:
            await self.write_record(event_record(event, data, source, raw, self.include_raw))
        else:
            self.write_line(f"[{_clock()}] {summarize_event(event, data)}")
