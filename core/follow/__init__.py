"""
Real-time conversation following

Usage:
    from core.follow import FollowConfig, run_follow
    await run_follow(client, FollowConfig(conversation_id=42), stop=stop_event)
"""

from core.follow.config import (
    FollowConfig,
    FollowOptionError,
    parse_conversation_ref,
    parse_since_time,
    resolve_events,
)
from core.follow.debounce import BufferedMessage, DebounceAggregator
from core.follow.hooks import ExecHook, ExecHookError
from core.follow.meta import ConversationMeta, FollowFilters
from core.follow.records import RecordWriter
from core.follow.router import EventRouter, FollowState, RoutedEvent, RoutedMessage
from core.follow.runner import FollowSetupError, run_follow
from core.follow.session import FatalFollowError, FollowSession
from core.follow.supervisor import ReconnectConfig, ReconnectSupervisor

__all__ = [
    "FollowConfig",
    "FollowOptionError",
    "parse_conversation_ref",
    "parse_since_time",
    "resolve_events",
    "BufferedMessage",
    "DebounceAggregator",
    "ExecHook",
    "ExecHookError",
    "ConversationMeta",
    "FollowFilters",
    "RecordWriter",
    "EventRouter",
    "FollowState",
    "RoutedEvent",
    "RoutedMessage",
    "FollowSetupError",
    "run_follow",
    "FatalFollowError",
    "FollowSession",
    "ReconnectConfig",
    "ReconnectSupervisor",
]
