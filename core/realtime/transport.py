"""
ActionCable WebSocket transport

Connects to Chatwoot's ``/cable`` endpoint, subscribes to the RoomChannel and
yields Chatwoot event payloads. Server pings, confirmations and malformed
frames never reach the caller; silence longer than the ping timeout is
treated as a dead connection.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Optional
from urllib.parse import urlsplit, urlunsplit

import websockets
import websockets.exceptions
from pydantic import BaseModel

from logger import get_logger

logger = get_logger(__name__)

SUBPROTOCOL = "actioncable-v1-json"
MAX_READ_SIZE = 1 << 20  # 1 MiB; ActionCable frames are small JSON
# ActionCable pings every ~3s, so 15s is ~5 missed pings
DEFAULT_PING_TIMEOUT = 15.0
DEFAULT_PRESENCE_INTERVAL = 30.0
PRESENCE_DATA = '{"action":"update_presence"}'

Connector = Callable[..., Awaitable[Any]]


class CableError(Exception):
    """Connection-level failure of the ActionCable stream."""


class SubscriptionRejectedError(CableError):
    def __init__(self):
        super().__init__("subscription rejected (check pubsub_token)")


class PingTimeoutError(CableError):
    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"ping timeout: no frames received in {timeout:g}s")


class DisconnectedError(CableError):
    """Server sent a ``disconnect`` frame."""

    def __init__(self, reason: str = "", reconnect: bool = False):
        self.reason = reason
        self.reconnect = reconnect
        super().__init__(f"disconnect (reason={reason}, reconnect={str(reconnect).lower()})")


class ChannelID(BaseModel):
    """Subscription identifier, JSON-encoded into the ``identifier`` string."""
    channel: str = "RoomChannel"
    pubsub_token: str
    account_id: int
    user_id: int = 0

    def identifier(self) -> str:
        data = self.model_dump()
        if not data["user_id"]:
            data.pop("user_id")
        return json.dumps(data, separators=(",", ":"))


def build_cable_url(base_url: str) -> str:
    """https -> wss, anything else -> ws; path becomes /cable."""
    parts = urlsplit(base_url)
    scheme = "wss" if parts.scheme == "https" else "ws"
    return urlunsplit((scheme, parts.netloc, "/cable", "", ""))


class ActionCableClient:
    """
    One ActionCable connection.

    Usage:
        client = await ActionCableClient.connect(build_cable_url(base_url))
        await client.subscribe(ChannelID(pubsub_token=token, account_id=1, user_id=7))
        client.start_presence()
        async for payload in client.listen():
            ...
        await client.close()
    """

    def __init__(self, connection: Any, url: str):
        self._conn = connection
        self.url = url
        self.identifier = ""
        self._presence_task: Optional[asyncio.Task] = None

    @classmethod
    async def connect(
        cls,
        url: str,
        *,
        connector: Optional[Connector] = None,
        handshake_timeout: float = DEFAULT_PING_TIMEOUT,
    ) -> "ActionCableClient":
        """
        Dial and wait for the ``welcome`` frame.

        Raises:
            CableError: dial failed or the first frame was not a welcome
        """
        connector = connector or websockets.connect
        try:
            conn = await connector(
                url,
                subprotocols=[SUBPROTOCOL],
                max_size=MAX_READ_SIZE,
                ping_interval=None,
                open_timeout=handshake_timeout,
            )
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            raise CableError(f"dial: {e}") from e

        client = cls(conn, url)
        try:
            frame = await client._read_frame(handshake_timeout, "read welcome")
            if frame.get("type") != "welcome":
                raise CableError(
                    f"expected welcome, got {frame.get('type', '')!r} (reason: {frame.get('reason', '')})"
                )
        except BaseException:
            await client.close()
            raise
        logger.debug("Cable connected", extra={"url": url})
        return client

    async def subscribe(self, channel_id: ChannelID, timeout: float = DEFAULT_PING_TIMEOUT) -> None:
        """
        Send ``subscribe`` and wait for confirmation, skipping pings.

        Raises:
            SubscriptionRejectedError: server rejected the identifier
            CableError: write/read failure or unexpected frame
        """
        identifier = channel_id.identifier()
        await self._send({"command": "subscribe", "identifier": identifier}, "write subscribe")

        while True:
            frame = await self._read_frame(timeout, "read subscription response")
            frame_type = frame.get("type", "")
            if frame_type == "confirm_subscription":
                self.identifier = identifier
                return
            if frame_type == "reject_subscription":
                raise SubscriptionRejectedError()
            if frame_type == "ping":
                continue
            raise CableError(f"unexpected response type: {frame_type!r}")

    def start_presence(
        self,
        interval: float = DEFAULT_PRESENCE_INTERVAL,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> asyncio.Task:
        """
        Send ``update_presence`` every ``interval`` seconds until close().

        ``on_error`` is called once with the first write failure; the task
        then exits.
        """
        async def _presence_loop():
            message = {"command": "message", "identifier": self.identifier, "data": PRESENCE_DATA}
            while True:
                await asyncio.sleep(interval)
                try:
                    await self._send(message, "presence write")
                except CableError as e:
                    if on_error is not None:
                        on_error(e)
                    return

        self._presence_task = asyncio.create_task(_presence_loop(), name="cable-presence")
        return self._presence_task

    async def listen(self, ping_timeout: float = DEFAULT_PING_TIMEOUT) -> AsyncIterator[Any]:
        """
        Yield the ``message`` payload of each data frame.

        Raises:
            PingTimeoutError: no frame at all within ``ping_timeout``
            DisconnectedError: server sent ``disconnect``
            CableError: the connection dropped
        """
        while True:
            raw = await self._recv(ping_timeout)
            try:
                frame = json.loads(raw)
            except ValueError:
                continue
            if not isinstance(frame, dict):
                continue

            frame_type = frame.get("type", "")
            if frame_type == "ping":
                continue
            if frame_type == "disconnect":
                raise DisconnectedError(str(frame.get("reason", "")), bool(frame.get("reconnect")))
            if frame_type in ("confirm_subscription", "reject_subscription"):
                continue
            message = frame.get("message")
            if message is not None and message != "":
                yield message

    async def close(self) -> None:
        if self._presence_task is not None:
            self._presence_task.cancel()
            try:
                await self._presence_task
            except asyncio.CancelledError:
                pass
            self._presence_task = None
        try:
            await self._conn.close()
        except (OSError, websockets.exceptions.WebSocketException) as e:
            logger.debug("Cable close failed", extra={"error": str(e)})

    async def _send(self, frame: dict, what: str) -> None:
        try:
            await self._conn.send(json.dumps(frame))
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise CableError(f"{what}: {e}") from e

    async def _recv(self, timeout: Optional[float]) -> Any:
        try:
            if timeout and timeout > 0:
                return await asyncio.wait_for(self._conn.recv(), timeout=timeout)
            return await self._conn.recv()
        except asyncio.TimeoutError:
            raise PingTimeoutError(timeout) from None
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise CableError(f"read: {e}") from e

    async def _read_frame(self, timeout: float, what: str) -> dict:
        try:
            raw = await self._recv(timeout)
        except CableError as e:
            raise CableError(f"{what}: {e}") from e
        try:
            frame = json.loads(raw)
        except ValueError as e:
            raise CableError(f"{what}: parse response: {e}") from e
        if not isinstance(frame, dict):
            raise CableError(f"{what}: unexpected frame {raw!r}")
        return frame
