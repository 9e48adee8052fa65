"""
Follow cursor store
------------------------------------------------------------
Persists the last seen message id so ``follow`` can resume after a restart.

- one small JSON file per cursor, pretty-printed
- atomic writes: temp file in the target directory + os.replace
- CursorWriter coalesces updates (at most one write per min_interval)
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Union

import aiofiles
from pydantic import BaseModel, ValidationError

from logger import get_logger

logger = get_logger(__name__)

CURSOR_VERSION = 1
TEMP_PREFIX = ".chatwoot-follow-cursor-"

PathLike = Union[str, Path]


class CursorError(Exception):
    """Cursor file could not be read, parsed or written."""


class FollowCursor(BaseModel):
    version: int = 0
    base_url: str = ""
    account_id: int = 0
    last_seen_message_id: int = 0
    updated_at: str = ""

    def applies_to(self, base_url: str, account_id: int) -> bool:
        """Empty identity fields match any client."""
        return (self.account_id == 0 or self.account_id == account_id) and (
            self.base_url == "" or self.base_url == base_url
        )


async def load_cursor(path: Optional[PathLike]) -> FollowCursor:
    """
    Read a cursor file.

    A missing file (or an empty path) is a zero cursor.

    Raises:
        CursorError: unreadable or malformed file
    """
    if path is None or not str(path).strip():
        return FollowCursor()
    path = Path(path)
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            raw = await f.read()
    except FileNotFoundError:
        return FollowCursor()
    except OSError as e:
        raise CursorError(f"read cursor file: {e}") from e
    try:
        return FollowCursor.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as e:
        raise CursorError(f"parse cursor file: {e}") from e


async def save_cursor(path: PathLike, cursor: FollowCursor) -> FollowCursor:
    """
    Atomically write ``cursor`` (version and updated_at are stamped here).

    Returns:
        the cursor as written

    Raises:
        CursorError: the directory, temp file or rename failed
    """
    path = Path(path)
    stamped = cursor.model_copy(update={
        "version": CURSOR_VERSION,
        "updated_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    })
    payload = json.dumps(stamped.model_dump(), indent=2) + "\n"

    directory = path.parent
    try:
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=directory)
        os.close(fd)
    except OSError as e:
        raise CursorError(f"create cursor temp file: {e}") from e

    try:
        async with aiofiles.open(tmp_name, "w", encoding="utf-8") as f:
            await f.write(payload)
        await asyncio.to_thread(os.replace, tmp_name, path)
    except OSError as e:
        raise CursorError(f"replace cursor file: {e}") from e
    finally:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
    return stamped


async def resolve_start_id(
    path: Optional[PathLike],
    since_id: int,
    base_url: str,
    account_id: int,
) -> int:
    """
    Starting last-seen id for a follow run.

    ``since_id`` > 0 wins and the cursor file is not read. Otherwise the
    cursor is used only when it belongs to this base URL and account.
    """
    last_seen = max(0, since_id)
    if since_id > 0 or path is None or not str(path).strip():
        return last_seen
    cursor = await load_cursor(path)
    if cursor.last_seen_message_id > 0 and cursor.applies_to(base_url, account_id):
        last_seen = max(last_seen, cursor.last_seen_message_id)
    elif cursor.last_seen_message_id > 0:
        logger.info(
            "Ignoring cursor from another account",
            extra={"cursor_account_id": cursor.account_id, "cursor_base_url": cursor.base_url},
        )
    return last_seen


class CursorWriter:
    """
    Coalescing cursor writer.

    update() persists only forward progress, at most once per min_interval;
    flush() writes whatever is pending.
    """

    def __init__(
        self,
        path: PathLike,
        base_url: str,
        account_id: int,
        initial_last_seen: int = 0,
        min_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.path = Path(path)
        self.base_url = base_url
        self.account_id = account_id
        self.min_interval = min_interval
        self._clock = clock

        self.last_seen_id = initial_last_seen
        self.last_flushed = 0
        self.last_flush_at: Optional[float] = None

    async def update(self, last_seen_id: int) -> None:
        if last_seen_id <= self.last_seen_id:
            return
        self.last_seen_id = last_seen_id
        if (
            self.min_interval <= 0
            or self.last_flush_at is None
            or self._clock() - self.last_flush_at >= self.min_interval
        ):
            try:
                await self.flush()
            except CursorError as e:
                logger.warning("Cursor write failed", extra={"path": str(self.path), "error": str(e)})

    async def flush(self) -> None:
        """
        Raises:
            CursorError: write failed
        """
        if self.last_seen_id <= 0 or self.last_seen_id == self.last_flushed:
            return
        await save_cursor(self.path, FollowCursor(
            base_url=self.base_url,
            account_id=self.account_id,
            last_seen_message_id=self.last_seen_id,
        ))
        self.last_flushed = self.last_seen_id
        self.last_flush_at = self._clock()
