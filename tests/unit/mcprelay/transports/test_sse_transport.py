# -*- coding: utf-8 -*-
"""

Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Tests for the relay SSE transport: liveness flags, framing, heartbeat and close callbacks.

"""

# Standard
import asyncio
import json
from unittest.mock import Mock

# Third-Party
from fastapi import Request
import pytest
from sse_starlette.sse import EventSourceResponse

# First-Party
from mcprelay.transports.sse_transport import PING_FRAME, SSETransport

SESSION_ID = "8d7d4ad4-2f0e-4e5a-9a59-3f6f2a7c1e11"


@pytest.fixture
def sse_transport():
    """Create an SSE transport instance without heartbeat."""
    return SSETransport(session_id=SESSION_ID, endpoint=f"/sales/message?sessionId={SESSION_ID}", keepalive_interval=0)


class TestSSETransport:
    """Tests for the SSETransport class."""

    @pytest.mark.asyncio
    async def test_connect_disconnect(self, sse_transport):
        """Connecting makes the channel live; disconnecting ends it."""
        assert sse_transport.is_live() is False

        await sse_transport.connect()
        assert sse_transport.is_live()

        await sse_transport.disconnect()
        assert sse_transport.is_live() is False
        assert sse_transport.ended is True
        assert sse_transport._client_gone.is_set()

    @pytest.mark.asyncio
    async def test_send_message(self, sse_transport):
        """Messages are queued for the stream."""
        await sse_transport.connect()
        message = {"jsonrpc": "2.0", "id": 1, "result": {}}

        await sse_transport.send_message(message)

        assert sse_transport._message_queue.qsize() == 1
        assert await sse_transport._message_queue.get() == message

    @pytest.mark.asyncio
    async def test_send_message_not_live(self, sse_transport):
        """Writes to a channel that is not live raise."""
        with pytest.raises(RuntimeError, match="Transport not connected"):
            await sse_transport.send_message({"id": 1})

        await sse_transport.connect()
        sse_transport.mark_destroyed("test")
        with pytest.raises(RuntimeError):
            await sse_transport.send_message({"id": 1})

    @pytest.mark.asyncio
    async def test_mark_destroyed(self, sse_transport):
        await sse_transport.connect()
        sse_transport.mark_destroyed("write failed")

        assert sse_transport.destroyed is True
        assert sse_transport.is_live() is False

    @pytest.mark.asyncio
    async def test_event_stream_frames(self, sse_transport):
        """First frame announces the endpoint; replies follow as message events."""
        await sse_transport.connect()
        stream = sse_transport.event_stream()

        endpoint = await stream.__anext__()
        assert endpoint["event"] == "endpoint"
        assert endpoint["data"] == f"/sales/message?sessionId={SESSION_ID}"

        await sse_transport.send_message({"jsonrpc": "2.0", "id": 2, "result": {"ok": True}})
        frame = await stream.__anext__()
        assert frame["event"] == "message"
        assert json.loads(frame["data"]) == {"jsonrpc": "2.0", "id": 2, "result": {"ok": True}}

        await sse_transport.send_ping()
        assert await stream.__anext__() == PING_FRAME

        await sse_transport.disconnect()
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()
        assert sse_transport.finished is True
        assert sse_transport.destroyed is False

    @pytest.mark.asyncio
    async def test_client_disconnect_marks_destroyed(self, sse_transport):
        """Closing the stream from the client side sets the destroyed flag."""
        closed = []
        sse_transport._on_close = closed.append
        await sse_transport.connect()
        stream = sse_transport.event_stream()
        await stream.__anext__()

        await stream.aclose()

        assert sse_transport.destroyed is True
        assert sse_transport.finished is True
        assert sse_transport.is_live() is False
        assert closed == [sse_transport]

    @pytest.mark.asyncio
    async def test_on_close_fires_once(self):
        on_close = Mock()
        transport = SSETransport(session_id=SESSION_ID, keepalive_interval=0, on_close=on_close)
        await transport.connect()

        transport.mark_destroyed()
        await transport.disconnect()

        on_close.assert_called_once_with(transport)

    @pytest.mark.asyncio
    async def test_on_close_errors_are_absorbed(self):
        transport = SSETransport(session_id=SESSION_ID, keepalive_interval=0, on_close=Mock(side_effect=RuntimeError("boom")))
        await transport.connect()
        await transport.disconnect()
        assert transport.ended

    @pytest.mark.asyncio
    async def test_heartbeat_writes_ping_frames(self):
        transport = SSETransport(session_id=SESSION_ID, keepalive_interval=0.01)
        await transport.connect()
        assert transport.heartbeat_running

        await asyncio.sleep(0.05)
        assert transport._message_queue.qsize() >= 1
        assert transport._message_queue.get_nowait() is not None

        await transport.disconnect()
        assert not transport.heartbeat_running

    @pytest.mark.asyncio
    async def test_heartbeat_stops_when_channel_dies(self):
        transport = SSETransport(session_id=SESSION_ID, keepalive_interval=0.01)
        await transport.connect()
        # Simulate the stream finishing without the close path running
        transport._finished = True

        await asyncio.sleep(0.05)
        assert not transport.heartbeat_running
        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_heartbeat_cancelled_on_client_disconnect(self):
        transport = SSETransport(session_id=SESSION_ID, keepalive_interval=60)
        await transport.connect()
        stream = transport.event_stream()
        await stream.__anext__()

        await stream.aclose()
        await asyncio.sleep(0)

        assert not transport.heartbeat_running

    @pytest.mark.asyncio
    async def test_generated_session_and_endpoint(self):
        transport = SSETransport(keepalive_interval=0)
        assert len(transport.session_id) == 36
        assert transport.endpoint == f"/message?sessionId={transport.session_id}"

    @pytest.mark.asyncio
    async def test_create_sse_response(self, sse_transport):
        await sse_transport.connect()
        response = await sse_transport.create_sse_response(Mock(spec=Request))

        assert isinstance(response, EventSourceResponse)
        assert response.status_code == 200
        assert response.headers["Cache-Control"] == "no-cache"
        assert response.headers["X-Accel-Buffering"] == "no"
        await sse_transport.disconnect()
