# -*- coding: utf-8 -*-
"""Location: ./mcprelay/transports/sse_transport.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

SSE Transport Implementation.
This module implements the Server-Sent Events push channel of the relay. Each
transport owns a message queue drained by the streaming response, a set of
liveness flags mirroring the HTTP stream state and a heartbeat task that keeps
idle connections open through buffering proxies.

Frames written to the client:
- ``event: endpoint`` once, carrying the POST path for this session
- ``event: message`` for every reply envelope
- ``:ping`` comment frames from the heartbeat
"""

# Standard
import asyncio
from datetime import datetime
import json
from typing import Any, AsyncIterator, Callable, Dict, Optional, Union
from urllib.parse import quote
import uuid

# Third-Party
from fastapi import Request
from sse_starlette.sse import EventSourceResponse

# First-Party
from mcprelay.config import settings
from mcprelay.services.logging_service import LoggingService
from mcprelay.transports.base import Transport

# Initialize logging service first
logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

PING_FRAME = b":ping\n\n"

# Keepalive frames come from the transport heartbeat, not from sse-starlette
_STREAM_PING_INTERVAL = 24 * 60 * 60

# Queue marker for heartbeat frames
_PING = object()


def _json_default(obj: Any) -> Any:
    """Serialize values json does not know about.

    Args:
        obj: Value to serialize.

    Returns:
        A JSON-compatible representation.

    Examples:
        >>> _json_default(datetime(2025, 1, 2, 3, 4, 5))
        '2025-01-02 03:04:05'
        >>> _json_default({1, 2})
        '{1, 2}'
    """
    if isinstance(obj, datetime):
        return obj.strftime("%Y-%m-%d %H:%M:%S")
    return str(obj)


class SSETransport(Transport):
    """Push channel implemented with Server-Sent Events.

    Liveness is tracked with three flags, any of which makes the channel
    unwritable:

    - ``ended``: the relay tore the channel down (``disconnect``)
    - ``finished``: the streaming response completed
    - ``destroyed``: the client went away or a write failed

    Examples:
        >>> transport = SSETransport(session_id="abc", endpoint="/message?sessionId=abc")
        >>> transport.session_id
        'abc'
        >>> transport.is_live()
        False
        >>> import asyncio
        >>> async def lifecycle():
        ...     await transport.connect()
        ...     live = transport.is_live()
        ...     await transport.disconnect()
        ...     return live, transport.is_live(), transport.ended
        >>> asyncio.run(lifecycle())
        (True, False, True)
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        endpoint: Optional[str] = None,
        keepalive_interval: Optional[float] = None,
        on_close: Optional[Callable[["SSETransport"], None]] = None,
    ):
        """Initialize SSE transport.

        Args:
            session_id: Identifier of the session this channel serves; generated when omitted
            endpoint: POST path announced to the client in the ``endpoint`` event
            keepalive_interval: Seconds between heartbeat frames, ``settings.sse_keepalive_interval`` by default
            on_close: Called once, synchronously, when the stream ends for any reason

        Examples:
            >>> t = SSETransport()
            >>> len(t.session_id)
            36
            >>> t.endpoint
            '/message?sessionId=...'
        """
        self._session_id = session_id or str(uuid.uuid4())
        self._endpoint = endpoint or f"/message?sessionId={quote(self._session_id, safe='')}"
        self._keepalive_interval = keepalive_interval if keepalive_interval is not None else settings.sse_keepalive_interval
        self._on_close = on_close
        self._connected = False
        self._ended = False
        self._finished = False
        self._destroyed = False
        self._closed = False
        self._message_queue: asyncio.Queue = asyncio.Queue()
        self._client_gone = asyncio.Event()
        self._heartbeat_task: Optional[asyncio.Task] = None

        logger.info(f"Creating SSE transport with endpoint={self._endpoint}, session_id={self._session_id}")

    @property
    def session_id(self) -> str:
        """Session identifier served by this channel.

        Returns:
            str: session_id
        """
        return self._session_id

    @property
    def endpoint(self) -> str:
        """POST path announced to the client.

        Returns:
            str: endpoint path
        """
        return self._endpoint

    @property
    def ended(self) -> bool:
        """Whether the relay tore the channel down.

        Returns:
            bool: ended flag
        """
        return self._ended

    @property
    def finished(self) -> bool:
        """Whether the streaming response completed.

        Returns:
            bool: finished flag
        """
        return self._finished

    @property
    def destroyed(self) -> bool:
        """Whether the client went away or a write failed.

        Returns:
            bool: destroyed flag
        """
        return self._destroyed

    @property
    def heartbeat_running(self) -> bool:
        """Whether the heartbeat task is still scheduled.

        Returns:
            bool: True while the heartbeat loop has not exited
        """
        return self._heartbeat_task is not None and not self._heartbeat_task.done()

    async def connect(self) -> None:
        """Mark the channel open and start the heartbeat.

        Examples:
            >>> import asyncio
            >>> async def run():
            ...     t = SSETransport(keepalive_interval=60)
            ...     await t.connect()
            ...     running = t.heartbeat_running
            ...     await t.disconnect()
            ...     return running, t.heartbeat_running
            >>> asyncio.run(run())
            (True, False)
        """
        self._connected = True
        if settings.sse_keepalive_enabled and self._keepalive_interval > 0:
            self._heartbeat_task = asyncio.create_task(self._heartbeat())
        logger.info(f"SSE transport connected: {self._session_id}")

    async def disconnect(self) -> None:
        """Tear the channel down and wait for the heartbeat to stop."""
        task = self._heartbeat_task
        self._ended = True
        self._close()
        if task is not None and not task.done():
            try:
                await task
            except asyncio.CancelledError:
                pass

    def mark_destroyed(self, reason: str = "client disconnected") -> None:
        """Record that the underlying stream is unusable.

        Args:
            reason: Why the stream is gone, for the log.
        """
        if not self._destroyed:
            logger.info(f"SSE transport destroyed: {self._session_id} ({reason})")
        self._destroyed = True
        self._close()

    def is_live(self) -> bool:
        """Check whether a write to this channel would be attempted.

        Returns:
            True if connected and not ended, finished or destroyed
        """
        return self._connected and not (self._ended or self._finished or self._destroyed)

    async def send_message(self, message: Dict[str, Any]) -> None:
        """Queue a reply envelope for the stream.

        Args:
            message: Message to send

        Raises:
            RuntimeError: If transport is not live

        Examples:
            >>> import asyncio
            >>> async def run():
            ...     t = SSETransport(keepalive_interval=0)
            ...     await t.connect()
            ...     await t.send_message({"jsonrpc": "2.0", "id": 1, "result": {}})
            ...     return t._message_queue.qsize()
            >>> asyncio.run(run())
            1
            >>> try:
            ...     asyncio.run(SSETransport().send_message({"x": 1}))
            ... except RuntimeError as e:
            ...     print(e)
            Transport not connected
        """
        if not self.is_live():
            raise RuntimeError("Transport not connected")

        self._message_queue.put_nowait(message)
        logger.debug(f"Message queued for SSE: {self._session_id}, id={message.get('id')}")

    async def send_ping(self) -> None:
        """Queue a heartbeat comment frame.

        Raises:
            RuntimeError: If transport is not live
        """
        if not self.is_live():
            raise RuntimeError("Transport not connected")
        self._message_queue.put_nowait(_PING)

    async def _heartbeat(self) -> None:
        """Write a ``:ping`` frame every keepalive interval until the channel closes.

        Write failures stop the loop; they are logged and never propagated.
        """
        try:
            while True:
                await asyncio.sleep(self._keepalive_interval)
                try:
                    await self.send_ping()
                except Exception as e:
                    logger.warning(f"Heartbeat stopped for session {self._session_id}: {e}")
                    return
        except asyncio.CancelledError:
            logger.debug(f"Heartbeat cancelled for session {self._session_id}")
            raise

    def _close(self) -> None:
        """Synchronous teardown shared by every exit path.

        Safe to call more than once; ``on_close`` fires only on the first call.
        """
        self._client_gone.set()
        if self._heartbeat_task is not None and not self._heartbeat_task.done():
            self._heartbeat_task.cancel()
        if self._closed:
            return
        self._closed = True
        logger.info(f"SSE transport disconnected: {self._session_id}")
        if self._on_close is not None:
            try:
                self._on_close(self)
            except Exception as e:
                logger.error(f"Error running close callback for session {self._session_id}: {e}")

    def _encode(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """Turn a queued envelope into an sse-starlette event dict.

        Args:
            message: Reply envelope.

        Returns:
            Event dict.

        Examples:
            >>> SSETransport(session_id="s")._encode({"id": 1})
            {'event': 'message', 'data': '{"id": 1}'}
        """
        return {"event": "message", "data": json.dumps(message, default=_json_default)}

    async def event_stream(self) -> AsyncIterator[Union[Dict[str, Any], bytes]]:
        """Produce the frames of this channel until it closes.

        Yields:
            The endpoint event, then reply events and heartbeat frames.
        """
        try:
            yield {"event": "endpoint", "data": self._endpoint, "retry": settings.sse_retry_timeout}

            while not self._client_gone.is_set():
                getter = asyncio.ensure_future(self._message_queue.get())
                gone = asyncio.ensure_future(self._client_gone.wait())
                try:
                    done, _ = await asyncio.wait({getter, gone}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    gone.cancel()
                    if not getter.done():
                        getter.cancel()
                if getter not in done:
                    break

                item = getter.result()
                if item is _PING:
                    yield PING_FRAME
                    continue

                data = self._encode(item)
                logger.debug(f"Sending SSE message: {data['data']}")
                yield data
        finally:
            # Anything other than a relay-side teardown means the client side went away
            if not self._ended:
                self._destroyed = True
            self._finished = True
            self._close()
            logger.info(f"SSE event generator completed: {self._session_id}")

    async def create_sse_response(self, _request: Request) -> EventSourceResponse:
        """Create the streaming response for this channel.

        Args:
            _request: FastAPI request

        Returns:
            SSE response object
        """
        return EventSourceResponse(
            self.event_stream(),
            status_code=200,
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
            ping=_STREAM_PING_INTERVAL,
            sep="\n",
        )
