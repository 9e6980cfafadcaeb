"""
Session

The active, authenticated connection. Runs two directions concurrently
over one transport until either side ends:

- Outbound: data channel batch -> data envelope -> transport
- Inbound: transport frame -> pong / command dispatch / ignore

Whichever direction ends first ends the session; the other direction's
in-flight operation is abandoned.
"""

import asyncio
from enum import Enum
from typing import Protocol

from fieldrelay.common.exceptions import (
    MalformedFrameError,
    ReadFailedError,
    SendFailedError,
)
from fieldrelay.common.logging_setup import get_service_logger

from .channel import DataChannel
from .protocol import Command, decode_server_frame, encode_readings
from .transport import FrameType, Transport

logger = get_service_logger("relay.session")


class TerminationReason(str, Enum):
    """Why a session ended"""
    SEND_FAILED = "send_failed"
    READ_FAILED = "read_failed"
    PEER_CLOSED = "peer_closed"
    CHANNEL_CLOSED = "channel_closed"


class CommandSink(Protocol):
    """Receives inbound commands; must return without waiting on device I/O"""

    def dispatch(self, command: Command) -> object: ...


class Session:
    """
    One authenticated session over an exclusively owned transport.

    Usage:
        reason = await Session(transport, dispatcher, channel).run()
    """

    def __init__(
        self,
        transport: Transport,
        command_sink: CommandSink,
        channel: DataChannel,
    ):
        self.transport = transport
        self.command_sink = command_sink
        self.channel = channel

        self.batches_sent = 0
        self.readings_sent = 0
        self.commands_received = 0
        self.pings_answered = 0

    async def run(self) -> TerminationReason:
        """
        Service both directions until one of them ends.

        Returns:
            Reason the session ended
        """
        outbound = asyncio.create_task(self._outbound_loop(), name="session-outbound")
        inbound = asyncio.create_task(self._inbound_loop(), name="session-inbound")

        try:
            done, pending = await asyncio.wait(
                {outbound, inbound},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            outbound.cancel()
            inbound.cancel()
            await asyncio.gather(outbound, inbound, return_exceptions=True)
            raise

        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        # Both may finish in the same iteration; prefer the outbound reason
        finished = outbound if outbound in done else inbound
        reason = finished.result()

        logger.info(
            f"Session ended: {reason.value} "
            f"(sent {self.batches_sent} batches / {self.readings_sent} readings, "
            f"received {self.commands_received} commands)",
            extra={"reason": reason.value},
        )
        return reason

    async def _outbound_loop(self) -> TerminationReason:
        """Drain the data channel onto the transport"""
        while True:
            batch = await self.channel.recv()
            if batch is None:
                return TerminationReason.CHANNEL_CLOSED

            try:
                await self.transport.send_text(encode_readings(batch))
            except SendFailedError as e:
                logger.error(f"Failed to send data: {e}")
                return TerminationReason.SEND_FAILED

            self.batches_sent += 1
            self.readings_sent += len(batch)
            logger.info(f"Sent {len(batch)} readings to server")

    async def _inbound_loop(self) -> TerminationReason:
        """Read frames until the peer closes or the read fails"""
        while True:
            try:
                frame = await self.transport.receive()
            except ReadFailedError as e:
                logger.error(f"WebSocket error: {e}")
                return TerminationReason.READ_FAILED

            if frame.type == FrameType.PING:
                try:
                    await self.transport.pong(frame.data)
                except SendFailedError as e:
                    logger.error(f"Failed to answer ping: {e}")
                    return TerminationReason.SEND_FAILED
                self.pings_answered += 1
                continue

            if frame.type == FrameType.CLOSE:
                logger.info(f"Server closed connection (code={frame.data})")
                return TerminationReason.PEER_CLOSED

            if frame.type == FrameType.ERROR:
                logger.error(f"WebSocket error: {frame.data}")
                return TerminationReason.READ_FAILED

            if frame.type == FrameType.TEXT:
                self._handle_text(frame.data)

            # Binary and pong frames are ignored

    def _handle_text(self, text: str) -> None:
        try:
            message = decode_server_frame(text)
        except MalformedFrameError as e:
            logger.debug(f"Ignoring frame: {e}")
            return

        if isinstance(message, Command):
            self.commands_received += 1
            logger.info(
                f"[Command] Received: device={message.device}, "
                f"action={message.action}, value={message.value}"
            )
            # Fire-and-forget: the sink spawns the device action
            self.command_sink.dispatch(message)
            return

        if message.type == "error":
            logger.warning(f"Server error: {message.error}")
        else:
            logger.debug(f"Ignoring '{message.type}' message")
