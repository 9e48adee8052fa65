"""
Real-time transport (ActionCable over WebSocket)

Usage:
    from core.realtime import ActionCableClient, ChannelID, build_cable_url
"""

from core.realtime.transport import (
    ActionCableClient,
    CableError,
    ChannelID,
    DisconnectedError,
    PingTimeoutError,
    SubscriptionRejectedError,
    build_cable_url,
)

__all__ = [
    "ActionCableClient",
    "CableError",
    "ChannelID",
    "DisconnectedError",
    "PingTimeoutError",
    "SubscriptionRejectedError",
    "build_cable_url",
]
