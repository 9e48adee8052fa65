"""
Conversation snapshots (``--context``)

A snapshot is one record holding the conversation, its contact and recent
messages, emitted before the first streamed record of that conversation.
All fetches share one deadline; a failed conversation fetch becomes a
``conversation.snapshot_error`` record, everything else is best-effort.
"""

import asyncio
from typing import Any, Dict, Optional

from core.follow.records import RECORD_KIND, RecordWriter, now_ts
from infra.resilience.timeout import run_with_timeout
from logger import get_logger, log_execution_time

logger = get_logger(__name__)

DEFAULT_SNAPSHOT_TIMEOUT = 10.0
SNAPSHOT_MAX_PAGES = 10


async def build_snapshot(client, conversation_id: int, max_messages: int,
                         timeout: float = DEFAULT_SNAPSHOT_TIMEOUT) -> Dict[str, Any]:
    """Snapshot (or snapshot_error) record for one conversation."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    def remaining() -> float:
        # a spent deadline still needs a positive timeout to fail fast
        return max(deadline - loop.time(), 0.001)

    base = {
        "kind": RECORD_KIND,
        "source": "api",
        "conversation_id": conversation_id,
    }

    try:
        conversation = await run_with_timeout(
            client.get_conversation(conversation_id), remaining(), "snapshot conversation"
        )
    except Exception as e:
        logger.debug("Snapshot fetch failed", extra={"conversation_id": conversation_id, "error": str(e)})
        return {**base, "event": "conversation.snapshot_error", "ts": now_ts(), "error": str(e)}

    try:
        labels = await run_with_timeout(
            client.get_conversation_labels(conversation_id), remaining(), "snapshot labels"
        )
        if labels:
            conversation.labels = labels
    except Exception as e:
        logger.debug("Snapshot labels skipped", extra={"conversation_id": conversation_id, "error": str(e)})

    contact: Optional[Any] = None
    contact_id = conversation.resolved_contact_id()
    if contact_id > 0:
        try:
            contact = await run_with_timeout(client.get_contact(contact_id), remaining(), "snapshot contact")
        except Exception as e:
            logger.debug("Snapshot contact skipped", extra={"contact_id": contact_id, "error": str(e)})

    messages = []
    if max_messages > 0:
        try:
            messages = await run_with_timeout(
                client.list_messages(conversation_id, max_messages, SNAPSHOT_MAX_PAGES),
                remaining(),
                "snapshot messages",
            )
            messages.sort(key=lambda m: m.id)
        except Exception as e:
            logger.debug("Snapshot messages skipped", extra={"conversation_id": conversation_id, "error": str(e)})

    record = {
        **base,
        "event": "conversation.snapshot",
        "ts": now_ts(),
        "conversation": conversation.model_dump(mode="json"),
        "messages": [m.model_dump(mode="json") for m in messages],
    }
    if contact is not None:
        record["contact"] = contact.model_dump(mode="json")
    return record


async def emit_snapshot(writer: RecordWriter, client, conversation_id: int, max_messages: int,
                        timeout: float = DEFAULT_SNAPSHOT_TIMEOUT) -> None:
    """Write a snapshot record; silent in text mode."""
    if client is None or conversation_id <= 0 or not writer.json_mode:
        return
    with log_execution_time("snapshot fetch", logger):
        record = await build_snapshot(client, conversation_id, max_messages, timeout)
    await writer.write_record(record)
