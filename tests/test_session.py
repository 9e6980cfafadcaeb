"""Session: both directions over one authenticated transport"""

import asyncio

from fieldrelay.common.exceptions import ReadFailedError
from fieldrelay.services.relay.channel import DataChannel
from fieldrelay.services.relay.protocol import Command, Reading
from fieldrelay.services.relay.session import Session, TerminationReason
from fieldrelay.services.relay.transport import Frame, FrameType

from fakes import FakeTransport, RecordingSink, text


def run_session(frames, batches=(), fail_send=False, close_channel=False):
    async def scenario():
        transport = FakeTransport(frames, fail_send=fail_send)
        sink = RecordingSink()
        channel = DataChannel()
        for b in batches:
            channel.try_send(b)
        if close_channel:
            channel.close()
        session = Session(transport, sink, channel)
        reason = await asyncio.wait_for(session.run(), 2.0)
        return reason, session, transport, sink

    return asyncio.run(scenario())


def test_ping_is_answered_and_not_dispatched():
    reason, session, transport, sink = run_session([Frame.ping(b"hb-42"), Frame.close(1000)])

    assert reason == TerminationReason.PEER_CLOSED
    assert transport.pongs == [b"hb-42"]
    assert session.pings_answered == 1
    assert sink.commands == []


def test_command_is_handed_to_sink():
    reason, session, _, sink = run_session([
        text({"type": "command", "device": "plug-a", "action": "set_state", "value": 1}),
        Frame.close(),
    ])

    assert reason == TerminationReason.PEER_CLOSED
    assert sink.commands == [Command(device="plug-a", action="set_state", value=1)]
    assert session.commands_received == 1


def test_other_frames_are_ignored():
    reason, _, transport, sink = run_session([
        Frame.text("{not json"),
        text({"type": "ack"}),
        text({"type": "error", "error": "rate limited"}),
        Frame(FrameType.BINARY, b"\x00\x01"),
        Frame(FrameType.PONG, b""),
        Frame.close(),
    ])

    assert reason == TerminationReason.PEER_CLOSED
    assert sink.commands == []
    assert transport.sent == []


def test_read_error_ends_session():
    reason, *_ = run_session([ReadFailedError("connection reset")])
    assert reason == TerminationReason.READ_FAILED


def test_error_frame_ends_session():
    reason, *_ = run_session([Frame(FrameType.ERROR, "protocol violation")])
    assert reason == TerminationReason.READ_FAILED


def test_batches_are_sent_as_data_envelopes():
    batches = [
        (Reading(device="a", channel="co2", value=400),),
        (Reading(device="b", channel="power", value=3.5), Reading(device="b", channel="state", value=1)),
    ]

    reason, session, transport, _ = run_session([], batches=batches, close_channel=True)

    assert reason == TerminationReason.CHANNEL_CLOSED
    assert [m["type"] for m in transport.sent_messages] == ["data", "data"]
    assert transport.sent_messages[1]["readings"][0] == {"device": "b", "channel": "power", "value": 3.5}
    assert session.batches_sent == 2
    assert session.readings_sent == 3


def test_send_failure_ends_session():
    reason, session, _, _ = run_session(
        [], batches=[(Reading(device="a", channel="co2", value=400),)], fail_send=True
    )

    assert reason == TerminationReason.SEND_FAILED
    assert session.batches_sent == 0


def test_failed_pong_ends_session():
    reason, *_ = run_session([Frame.ping(b"x")], fail_send=True)
    assert reason == TerminationReason.SEND_FAILED
