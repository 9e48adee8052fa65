"""
Chatwoot REST API

Architecture:
    ChatwootClient (paths + typed resources)
        → RequestExecutor (breaker, 429/5xx retries, idempotency, 202 polling)
            → httpx.AsyncClient

Usage:
    from core.api import ChatwootClient

    async with ChatwootClient.from_env() as client:
        conversation = await client.get_conversation(42)
"""

from core.api.client import ChatwootClient
from core.api.errors import (
    APIError,
    AsyncWaitError,
    ChatwootError,
    CircuitBreakerError,
    DecodeError,
    ErrorCode,
    RateLimitError,
    TransportError,
)
from core.api.executor import RawResponse, RequestExecutor, new_idempotency_key
from core.api.rate_limit import RateLimitInfo
from core.api.types import Contact, Conversation, Message, MessageSender, MessageType, Profile

__all__ = [
    "ChatwootClient",
    "APIError",
    "AsyncWaitError",
    "ChatwootError",
    "CircuitBreakerError",
    "DecodeError",
    "ErrorCode",
    "RateLimitError",
    "TransportError",
    "RawResponse",
    "RequestExecutor",
    "new_idempotency_key",
    "RateLimitInfo",
    "Contact",
    "Conversation",
    "Message",
    "MessageSender",
    "MessageType",
    "Profile",
]
