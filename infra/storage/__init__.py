"""
Storage layer

Bounded output queue and follow cursor persistence.
"""

from infra.storage.output_emitter import OutputEmitter, OutputWriterStopped
from infra.storage.cursor_store import (
    CursorError,
    CursorWriter,
    FollowCursor,
    load_cursor,
    resolve_start_id,
    save_cursor,
)

__all__ = [
    "OutputEmitter",
    "OutputWriterStopped",
    "CursorError",
    "CursorWriter",
    "FollowCursor",
    "load_cursor",
    "resolve_start_id",
    "save_cursor",
]
