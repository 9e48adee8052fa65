"""
--exec hook: pipe each JSON record to a shell command.
"""

import asyncio
import json
import sys
from typing import Any, Optional, TextIO

from logger import get_logger

logger = get_logger(__name__)

DEFAULT_EXEC_TIMEOUT = 30.0


class ExecHookError(Exception):
    """The hook command failed, timed out or could not be started."""


class ExecHook:
    """
    Runs ``sh -c command`` once per record with the record (one JSON line)
    on stdin. Hook stdout and stderr are copied to ``stderr`` so the event
    stream on stdout stays clean.
    """

    def __init__(self, command: str, timeout: float = DEFAULT_EXEC_TIMEOUT,
                 fatal: bool = False, stderr: Optional[TextIO] = None):
        self.command = command.strip()
        self.timeout = timeout if timeout and timeout > 0 else DEFAULT_EXEC_TIMEOUT
        self.fatal = fatal
        self._stderr = stderr

    @classmethod
    def from_options(cls, command: Optional[str], timeout: float = DEFAULT_EXEC_TIMEOUT,
                     fatal: bool = False) -> Optional["ExecHook"]:
        """None when no command was given."""
        if not command or not command.strip():
            return None
        return cls(command, timeout=timeout, fatal=fatal)

    async def run(self, record: Any) -> None:
        """
        Raises:
            ExecHookError: non-zero exit, timeout or spawn failure
        """
        payload = (json.dumps(record, ensure_ascii=False) + "\n").encode("utf-8")
        try:
            proc = await asyncio.create_subprocess_exec(
                "sh", "-c", self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExecHookError(f"start: {e}") from e

        try:
            out, err = await asyncio.wait_for(proc.communicate(payload), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ExecHookError(f"timed out after {self.timeout:g}s") from None

        stream = self._stderr or sys.stderr
        for chunk in (out, err):
            if chunk:
                stream.write(chunk.decode("utf-8", errors="replace"))
        stream.flush()

        if proc.returncode != 0:
            raise ExecHookError(f"exit status {proc.returncode}")
