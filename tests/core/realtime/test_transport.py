"""
ActionCable transport over a fake WebSocket connection.
"""

import asyncio
import json

import pytest

from core.realtime.transport import (
    SUBPROTOCOL,
    ActionCableClient,
    CableError,
    ChannelID,
    DisconnectedError,
    PingTimeoutError,
    SubscriptionRejectedError,
    build_cable_url,
)


class FakeConnection:
    """Frames queued by the test; sends recorded."""

    def __init__(self, frames=()):
        self.incoming: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self.push(frame)
        self.sent = []
        self.closed = False

    def push(self, frame) -> None:
        self.incoming.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    async def recv(self):
        frame = await self.incoming.get()
        if isinstance(frame, Exception):
            raise frame
        return frame

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True


def _connector(conn, calls=None):
    async def connect(url, **kwargs):
        if calls is not None:
            calls.append((url, kwargs))
        return conn
    return connect


CHANNEL = ChannelID(pubsub_token="tok", account_id=1, user_id=7)


# ===========================================================================
# URL / identifier
# ===========================================================================


class TestIdentity:

    def test_cable_url(self):
        assert build_cable_url("https://chat.example.com/app") == "wss://chat.example.com/cable"
        assert build_cable_url("http://localhost:3000") == "ws://localhost:3000/cable"

    def test_identifier(self):
        assert json.loads(CHANNEL.identifier()) == {
            "channel": "RoomChannel", "pubsub_token": "tok", "account_id": 1, "user_id": 7,
        }

    def test_identifier_without_user(self):
        assert "user_id" not in json.loads(ChannelID(pubsub_token="t", account_id=1).identifier())


# ===========================================================================
# Handshake
# ===========================================================================


class TestHandshake:

    @pytest.mark.asyncio
    async def test_connect_and_subscribe(self):
        conn = FakeConnection([{"type": "welcome"}, {"type": "ping", "message": 1}, {"type": "confirm_subscription"}])
        calls = []
        client = await ActionCableClient.connect("wss://x/cable", connector=_connector(conn, calls))
        await client.subscribe(CHANNEL, timeout=1)

        url, kwargs = calls[0]
        assert url == "wss://x/cable"
        assert kwargs["subprotocols"] == [SUBPROTOCOL]
        assert kwargs["max_size"] == 1 << 20
        assert conn.sent == [{"command": "subscribe", "identifier": CHANNEL.identifier()}]
        assert client.identifier == CHANNEL.identifier()

    @pytest.mark.asyncio
    async def test_missing_welcome(self):
        conn = FakeConnection([{"type": "disconnect", "reason": "unauthorized"}])
        with pytest.raises(CableError):
            await ActionCableClient.connect("wss://x/cable", connector=_connector(conn))
        assert conn.closed

    @pytest.mark.asyncio
    async def test_rejected(self):
        conn = FakeConnection([{"type": "welcome"}, {"type": "reject_subscription"}])
        client = await ActionCableClient.connect("wss://x/cable", connector=_connector(conn))
        with pytest.raises(SubscriptionRejectedError):
            await client.subscribe(CHANNEL, timeout=1)

    @pytest.mark.asyncio
    async def test_dial_failure(self):
        async def refuse(url, **kwargs):
            raise OSError("connection refused")

        with pytest.raises(CableError) as exc_info:
            await ActionCableClient.connect("wss://x/cable", connector=refuse)
        assert "dial" in str(exc_info.value)


# ===========================================================================
# Listening
# ===========================================================================


class TestListen:

    async def _client(self, conn) -> ActionCableClient:
        conn.push({"type": "welcome"})
        conn.push({"type": "confirm_subscription"})
        client = await ActionCableClient.connect("wss://x/cable", connector=_connector(conn))
        await client.subscribe(CHANNEL, timeout=1)
        return client

    @pytest.mark.asyncio
    async def test_yields_payloads_and_skips_noise(self):
        conn = FakeConnection()
        client = await self._client(conn)
        conn.push({"type": "ping", "message": 123})
        conn.push("not json")
        conn.push({"identifier": "x", "message": {"event": "message.created", "data": {"id": 1}}})
        conn.push({"type": "confirm_subscription"})
        conn.push({"identifier": "x", "message": {"event": "typing_on", "data": {}}})

        received = []
        stream = client.listen(ping_timeout=1)
        async for payload in stream:
            received.append(payload["event"])
            if len(received) == 2:
                break
        await stream.aclose()
        assert received == ["message.created", "typing_on"]

    @pytest.mark.asyncio
    async def test_disconnect_frame(self):
        conn = FakeConnection()
        client = await self._client(conn)
        conn.push({"type": "disconnect", "reason": "server_restart", "reconnect": True})
        with pytest.raises(DisconnectedError) as exc_info:
            async for _ in client.listen(ping_timeout=1):
                pass
        assert exc_info.value.reconnect is True
        assert "server_restart" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_ping_timeout(self):
        conn = FakeConnection()
        client = await self._client(conn)
        with pytest.raises(PingTimeoutError):
            async for _ in client.listen(ping_timeout=0.02):
                pass

    @pytest.mark.asyncio
    async def test_presence_sent(self):
        conn = FakeConnection()
        client = await self._client(conn)
        client.start_presence(interval=0.01)
        await asyncio.sleep(0.05)
        await client.close()

        presence = [f for f in conn.sent if f.get("command") == "message"]
        assert presence
        assert presence[0]["data"] == '{"action":"update_presence"}'
        assert presence[0]["identifier"] == CHANNEL.identifier()
        assert conn.closed
