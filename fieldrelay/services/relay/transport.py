"""
Transport

Frame-level view of the duplex connection to the collector, and the
aiohttp WebSocket implementation of it. The session and supervisor only
see `Transport`, so tests can substitute an in-memory fake.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

import aiohttp

from fieldrelay.common.exceptions import (
    ReadFailedError,
    SendFailedError,
    TransportConnectError,
)
from fieldrelay.common.logging_setup import get_service_logger

logger = get_service_logger("relay.transport")


class FrameType(str, Enum):
    """Kinds of frame surfaced by a transport"""
    TEXT = "text"
    BINARY = "binary"
    PING = "ping"
    PONG = "pong"
    CLOSE = "close"
    ERROR = "error"


@dataclass(frozen=True)
class Frame:
    """One frame read from the transport"""
    type: FrameType
    data: Any = None

    @classmethod
    def text(cls, data: str) -> "Frame":
        return cls(FrameType.TEXT, data)

    @classmethod
    def ping(cls, payload: bytes = b"") -> "Frame":
        return cls(FrameType.PING, payload)

    @classmethod
    def close(cls, code: int | None = None) -> "Frame":
        return cls(FrameType.CLOSE, code)


class Transport(Protocol):
    """Duplex message connection owned by one session"""

    async def send_text(self, text: str) -> None: ...
    async def pong(self, payload: bytes) -> None: ...
    async def receive(self) -> Frame: ...
    async def close(self) -> None: ...


TransportFactory = Callable[[str], Awaitable[Transport]]


_MSG_TYPES = {
    aiohttp.WSMsgType.TEXT: FrameType.TEXT,
    aiohttp.WSMsgType.BINARY: FrameType.BINARY,
    aiohttp.WSMsgType.PING: FrameType.PING,
    aiohttp.WSMsgType.PONG: FrameType.PONG,
    aiohttp.WSMsgType.CLOSE: FrameType.CLOSE,
    aiohttp.WSMsgType.CLOSING: FrameType.CLOSE,
    aiohttp.WSMsgType.CLOSED: FrameType.CLOSE,
    aiohttp.WSMsgType.ERROR: FrameType.ERROR,
}


class WebSocketTransport:
    """
    aiohttp client WebSocket wrapped as a Transport.

    Automatic ping answering is disabled so that pings surface as frames
    and the session answers them itself. Writes are serialized so a pong
    never interleaves with a data frame.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        ws: aiohttp.ClientWebSocketResponse,
        url: str,
    ):
        self._session = session
        self._ws = ws
        self.url = url
        self._write_lock = asyncio.Lock()

    async def send_text(self, text: str) -> None:
        async with self._write_lock:
            if self._ws.closed:
                raise SendFailedError("connection is closed")
            try:
                await self._ws.send_str(text)
            except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
                raise SendFailedError(str(e) or type(e).__name__)

    async def pong(self, payload: bytes) -> None:
        async with self._write_lock:
            if self._ws.closed:
                raise SendFailedError("connection is closed")
            try:
                await self._ws.pong(payload)
            except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
                raise SendFailedError(str(e) or type(e).__name__)

    async def receive(self) -> Frame:
        try:
            msg = await self._ws.receive()
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            raise ReadFailedError(str(e) or type(e).__name__)

        frame_type = _MSG_TYPES.get(msg.type, FrameType.ERROR)
        if frame_type == FrameType.CLOSE:
            return Frame(FrameType.CLOSE, self._ws.close_code)
        if frame_type == FrameType.ERROR:
            return Frame(FrameType.ERROR, str(self._ws.exception() or msg.data))
        return Frame(frame_type, msg.data)

    async def close(self) -> None:
        try:
            if not self._ws.closed:
                await self._ws.close()
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            logger.debug(f"Error closing WebSocket to {self.url}: {e}")
        finally:
            await self._session.close()


async def connect_websocket(url: str, timeout_s: float = 10.0) -> WebSocketTransport:
    """
    Open a WebSocket to the collector.

    Args:
        url: ws:// or wss:// endpoint
        timeout_s: Connect timeout in seconds

    Returns:
        Connected WebSocketTransport

    Raises:
        TransportConnectError: If the connection cannot be established
    """
    session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None, connect=timeout_s))
    try:
        ws = await session.ws_connect(url, autoping=False, heartbeat=None)
    except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
        await session.close()
        raise TransportConnectError(str(e) or type(e).__name__, url)
    except BaseException:
        await session.close()
        raise

    return WebSocketTransport(session, ws, url)
