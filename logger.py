"""
Logging module

Unified logging interface with context tracking and timing helpers.

Quick start:
============

```python
from logger import get_logger, set_request_context, log_execution_time

logger = get_logger(__name__)

# Set once at the entry point of a follow session
set_request_context(account_id="1", conversation_id="42")

logger.info("Subscribed")
logger.error("Request failed", exc_info=True)

with log_execution_time("snapshot fetch", logger):
    snapshot = await build_snapshot(...)
```

Log output:
===========
- Console: colored human-readable lines on stderr (stdout carries the event stream)
- File: JSON lines in a rotating file, enabled with CHATWOOT_LOG_FILE=1
"""
import json
import logging
import os
import sys
import time
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# ============================================================
# Configuration
# ============================================================

ROOT_LOGGER = "chatwoot"


def _get_log_dir() -> Path:
    from utils.app_paths import get_logs_dir
    return get_logs_dir()


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


LOG_CONFIG = {
    "level": os.getenv("CHATWOOT_LOG_LEVEL", "WARNING").upper(),
    "console_enabled": True,
    "file_enabled": _env_flag("CHATWOOT_LOG_FILE"),
    "file_name": "chatwoot-cli.log",
    "max_size": 10 * 1024 * 1024,  # 10MB
    "backup_count": 5,
}

# ============================================================
# Context variables (request tracking)
# ============================================================
_account_id: ContextVar[str] = ContextVar('account_id', default='')
_conversation_id: ContextVar[str] = ContextVar('conversation_id', default='')


def set_request_context(account_id: str = '', conversation_id: str = '') -> None:
    """
    Set the logging context (call at the entry point of a command).

    Args:
        account_id: Chatwoot account id
        conversation_id: conversation being followed, if any
    """
    if account_id:
        _account_id.set(str(account_id))
    if conversation_id:
        _conversation_id.set(str(conversation_id))


def clear_request_context() -> None:
    _account_id.set('')
    _conversation_id.set('')


@contextmanager
def log_execution_time(operation: str, logger: Optional[logging.Logger] = None):
    """
    Log how long an operation took, at debug level.

    Usage:
        with log_execution_time("snapshot fetch", logger):
            await build_snapshot(...)
    """
    if logger is None:
        logger = logging.getLogger(ROOT_LOGGER)

    start = time.perf_counter()
    try:
        yield
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"{operation} finished", extra={
            "operation": operation,
            "duration_ms": round(duration_ms, 2)
        })


# ============================================================
# Formatters
# ============================================================

class _ContextFilter(logging.Filter):
    """Attach context vars to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.account_id = _account_id.get() or '-'
        record.conversation_id = _conversation_id.get() or '-'
        return True


class _ConsoleFormatter(logging.Formatter):
    """Console formatter (colored when stderr is a TTY)."""

    COLORS = {
        'DEBUG': '\033[36m',     # cyan
        'INFO': '\033[32m',      # green
        'WARNING': '\033[33m',   # yellow
        'ERROR': '\033[31m',     # red
        'CRITICAL': '\033[35m',  # magenta
    }
    RESET = '\033[0m'

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s [%(levelname)s] [%(account_id)s:%(conversation_id)s] %(name)s: %(message)s',
            datefmt='%H:%M:%S'
        )
        self.use_colors = sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        if self.use_colors:
            record = logging.makeLogRecord(record.__dict__)
            color = self.COLORS.get(record.levelname, '')
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


class _JsonFormatter(logging.Formatter):
    """
    JSON formatter for the log file.

    Example:
    {"ts":"2024-01-01T12:00:00.123Z","level":"WARNING","account":"1","conv":"42","logger":"follow.supervisor","msg":"...","backoff_seconds":4.0}
    """

    _RESERVED = {
        'name', 'msg', 'args', 'created', 'levelname', 'levelno',
        'pathname', 'filename', 'module', 'exc_info', 'exc_text',
        'stack_info', 'lineno', 'funcName', 'msecs', 'relativeCreated',
        'thread', 'threadName', 'processName', 'process', 'message',
        'taskName', 'account_id', 'conversation_id'
    }

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec='milliseconds'),
            "level": record.levelname,
            "account": getattr(record, 'account_id', '-'),
            "conv": getattr(record, 'conversation_id', '-'),
            "logger": record.name.replace(f'{ROOT_LOGGER}.', ''),
            "file": f"{record.filename}:{record.lineno}",
            "msg": record.getMessage(),
        }

        if record.exc_info:
            log["error"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "msg": str(record.exc_info[1]) if record.exc_info[1] else None,
                "trace": ''.join(traceback.format_exception(*record.exc_info)).strip()
            }

        # extra fields
        for key, value in record.__dict__.items():
            if key not in self._RESERVED:
                try:
                    json.dumps(value)
                    log[key] = value
                except (TypeError, ValueError):
                    log[key] = str(value)

        return json.dumps(log, ensure_ascii=False, default=str)


# ============================================================
# Logger management
# ============================================================

class _LoggerManager:
    """Logger manager (singleton)."""

    _initialized = False
    _loggers: dict[str, logging.Logger] = {}

    @classmethod
    def setup(cls) -> None:
        if cls._initialized:
            return

        root = logging.getLogger(ROOT_LOGGER)
        root.setLevel(LOG_CONFIG["level"])
        root.handlers.clear()
        root.propagate = False

        context_filter = _ContextFilter()

        if LOG_CONFIG["console_enabled"]:
            console = logging.StreamHandler(sys.stderr)
            console.setFormatter(_ConsoleFormatter())
            console.addFilter(context_filter)
            root.addHandler(console)

        if LOG_CONFIG["file_enabled"]:
            try:
                log_dir = _get_log_dir()
                log_dir.mkdir(parents=True, exist_ok=True)
                file_handler = RotatingFileHandler(
                    log_dir / LOG_CONFIG["file_name"],
                    maxBytes=LOG_CONFIG["max_size"],
                    backupCount=LOG_CONFIG["backup_count"],
                    encoding="utf-8"
                )
            except OSError as e:
                # Read-only filesystem: keep console logging only
                root.warning("File logging disabled", extra={"error": str(e)})
            else:
                file_handler.setFormatter(_JsonFormatter())
                file_handler.addFilter(context_filter)
                root.addHandler(file_handler)

        cls._initialized = True

    @classmethod
    def get(cls, name: Optional[str] = None) -> logging.Logger:
        if not cls._initialized:
            cls.setup()

        name = name or ROOT_LOGGER
        full_name = name if name == ROOT_LOGGER else f"{ROOT_LOGGER}.{name}"
        if full_name not in cls._loggers:
            cls._loggers[full_name] = logging.getLogger(full_name)

        return cls._loggers[full_name]


# ============================================================
# Public API
# ============================================================

def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger under the ``chatwoot`` root.

    Args:
        name: logger name, usually ``__name__``

    Usage:
        logger = get_logger(__name__)
        logger.warning("Reconnecting", extra={"backoff_seconds": 2.0})
    """
    return _LoggerManager.get(name)


def set_level(level: str) -> None:
    """
    Set the log level ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL').
    """
    LOG_CONFIG["level"] = level.upper()
    logging.getLogger(ROOT_LOGGER).setLevel(level.upper())
