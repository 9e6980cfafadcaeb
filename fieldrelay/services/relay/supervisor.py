"""
Connection Supervisor

Owns the connection lifecycle: connect, authenticate, run a session,
back off, reconnect. It never gives up; the only way out of run() is
cancellation from outside.

Data is never written on a connection before the collector has
explicitly acknowledged the auth frame.
"""

import asyncio
from typing import Awaitable, Callable

from fieldrelay.common.exceptions import (
    AuthRejectedError,
    AuthTimeoutError,
    MalformedFrameError,
    PeerClosedError,
    ReadFailedError,
    SendFailedError,
    TransportError,
)
from fieldrelay.common.logging_setup import get_service_logger
from fieldrelay.common.state import ConnectionState, ReconnectState

from .channel import DataChannel
from .protocol import AuthMessage, ServerResponse, decode_server_frame, encode
from .session import CommandSink, Session, TerminationReason
from .transport import Frame, FrameType, Transport, TransportFactory, connect_websocket

logger = get_service_logger("relay.supervisor")

StateListener = Callable[[ConnectionState, ConnectionState], None]


async def _await_reply(transport: Transport) -> Frame:
    """Read frames until the first text frame, answering pings"""
    while True:
        frame = await transport.receive()

        if frame.type == FrameType.PING:
            await transport.pong(frame.data)
        elif frame.type == FrameType.CLOSE:
            raise PeerClosedError(frame.data)
        elif frame.type == FrameType.ERROR:
            raise ReadFailedError(str(frame.data))
        elif frame.type == FrameType.TEXT:
            return frame


async def authenticate(transport: Transport, api_key: str, timeout_s: float) -> None:
    """
    Send the auth frame and wait for a successful acknowledgment.

    Pings that arrive before the reply are answered; the first text frame
    is taken as the reply.

    Raises:
        AuthTimeoutError: No reply within timeout_s
        AuthRejectedError: Reply malformed or unsuccessful
        PeerClosedError: Connection closed before the reply
        SendFailedError / ReadFailedError: Transport failure
    """
    await transport.send_text(encode(AuthMessage(api_key=api_key)))

    try:
        frame = await asyncio.wait_for(_await_reply(transport), timeout_s)
    except asyncio.TimeoutError:
        raise AuthTimeoutError(timeout_s)

    try:
        reply = decode_server_frame(frame.data)
    except MalformedFrameError as e:
        raise AuthRejectedError(f"unreadable reply ({e.message})")

    if not isinstance(reply, ServerResponse) or not reply.is_auth_success:
        reason = reply.error if isinstance(reply, ServerResponse) else None
        raise AuthRejectedError(reason or f"unexpected reply type '{getattr(reply, 'type', 'command')}'")


class ConnectionSupervisor:
    """
    Reconnect loop around Session.

    Features:
    - Auth-confirmed sessions only
    - Exponential backoff 1, 2, 4, ... capped, reset after each authenticated connect
    - Transport is created and destroyed here and used only by the session
    """

    def __init__(
        self,
        server_url: str,
        api_key: str,
        channel: DataChannel,
        command_sink: CommandSink,
        reconnect: ReconnectState | None = None,
        connect: TransportFactory = connect_websocket,
        auth_timeout_s: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_state_change: StateListener | None = None,
    ):
        self.server_url = server_url
        self.api_key = api_key
        self.channel = channel
        self.command_sink = command_sink
        self.reconnect = reconnect or ReconnectState()
        self.auth_timeout_s = auth_timeout_s
        self._connect = connect
        self._sleep = sleep
        self._on_state_change = on_state_change

    @property
    def state(self) -> ConnectionState:
        return self.reconnect.state

    def _set_state(self, new_state: ConnectionState) -> None:
        old_state = self.reconnect.state
        if old_state == new_state:
            return
        self.reconnect.state = new_state
        logger.debug(f"Connection state {old_state.value} -> {new_state.value}")
        if self._on_state_change:
            self._on_state_change(old_state, new_state)

    async def run(self) -> None:
        """Connect, serve and reconnect forever"""
        logger.info(f"Connection supervisor started for {self.server_url}")
        while True:
            await self.run_cycle()

    async def run_cycle(self) -> TerminationReason | None:
        """
        One connect -> auth -> session -> backoff cycle.

        Returns:
            Session termination reason, or None if no session was established
        """
        reason = None
        error = None
        transport = None

        self._set_state(ConnectionState.CONNECTING)
        logger.info(f"Connecting to {self.server_url}...")

        try:
            transport = await self._connect(self.server_url)

            self._set_state(ConnectionState.AUTHENTICATING)
            await authenticate(transport, self.api_key, self.auth_timeout_s)

            logger.info("Authenticated successfully")
            self.reconnect.record_success()
            self._set_state(ConnectionState.CONNECTED)

            reason = await Session(transport, self.command_sink, self.channel).run()
            self.reconnect.last_termination = reason.value
            error = f"session ended: {reason.value}"

        except AuthTimeoutError as e:
            error = e.message
            logger.error(f"Authentication failed: {e.message}")
        except AuthRejectedError as e:
            error = e.message
            logger.error(f"Authentication failed: {e.reason}")
        except (PeerClosedError, SendFailedError, ReadFailedError) as e:
            error = e.message
            logger.error(f"Connection failed during authentication: {e.message}")
        except TransportError as e:
            error = e.message
            logger.error(f"Connection failed: {e.message}")
        except Exception as e:
            # Never fatal; treated as a failed cycle
            error = f"{type(e).__name__}: {e}"
            logger.exception(f"Unexpected connection error: {error}")
        finally:
            if transport is not None:
                await self._close_transport(transport)
            self._set_state(ConnectionState.DISCONNECTED)

        delay = self.reconnect.record_failure(error)
        logger.warning(f"Reconnecting in {delay:g}s...", extra={"delay_s": delay})
        await self._sleep(delay)
        return reason

    async def _close_transport(self, transport: Transport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.debug(f"Error closing transport: {e}")
