"""Connection supervisor: connect, auth, session, backoff"""

import asyncio

import pytest

from fieldrelay.common.exceptions import PeerClosedError, TransportConnectError
from fieldrelay.common.state import ConnectionState, ReconnectState
from fieldrelay.services.relay.channel import DataChannel
from fieldrelay.services.relay.protocol import Reading
from fieldrelay.services.relay.session import TerminationReason
from fieldrelay.services.relay.supervisor import ConnectionSupervisor, authenticate
from fieldrelay.services.relay.transport import Frame

from fakes import (
    AUTH_OK,
    AUTH_REJECTED,
    AuthGuardTransport,
    FakeTransport,
    RecordingSink,
    RecordingSleep,
    transport_factory,
)

URL = "ws://collector.test/agent"


def make_supervisor(connect, channel=None, auth_timeout_s=1.0, transitions=None):
    sleep = RecordingSleep()

    def on_change(old, new):
        if transitions is not None:
            transitions.append((old, new))

    supervisor = ConnectionSupervisor(
        server_url=URL,
        api_key="secret-key",
        channel=channel or DataChannel(),
        command_sink=RecordingSink(),
        reconnect=ReconnectState(initial_delay=1, max_delay=60),
        connect=connect,
        auth_timeout_s=auth_timeout_s,
        sleep=sleep,
        on_state_change=on_change,
    )
    return supervisor, sleep


def test_connect_failures_back_off_exponentially():
    async def scenario():
        errors = [TransportConnectError("refused", URL) for _ in range(8)]
        supervisor, sleep = make_supervisor(transport_factory(*errors))
        for _ in range(8):
            assert await supervisor.run_cycle() is None
        return supervisor, sleep

    supervisor, sleep = asyncio.run(scenario())

    assert sleep.delays == [1, 2, 4, 8, 16, 32, 60, 60]
    assert supervisor.state == ConnectionState.DISCONNECTED
    assert "refused" in supervisor.reconnect.last_error


def test_auth_frame_is_first_and_carries_api_key():
    async def scenario():
        transport = FakeTransport([Frame.text(AUTH_OK), Frame.close()])
        supervisor, _ = make_supervisor(transport_factory(transport))
        await supervisor.run_cycle()
        return transport

    transport = asyncio.run(scenario())

    assert transport.sent_messages[0] == {"type": "auth", "apiKey": "secret-key"}
    assert transport.closed


def test_rejected_auth_sends_no_data():
    async def scenario():
        channel = DataChannel()
        channel.try_send((Reading(device="a", channel="co2", value=400),))
        transport = AuthGuardTransport([Frame.text(AUTH_REJECTED)])
        supervisor, sleep = make_supervisor(transport_factory(transport), channel=channel)
        reason = await supervisor.run_cycle()
        return reason, transport, supervisor, sleep, channel

    reason, transport, supervisor, sleep, channel = asyncio.run(scenario())

    assert reason is None
    assert [m["type"] for m in transport.sent_messages] == ["auth"]
    assert transport.closed
    assert len(channel) == 1
    assert supervisor.reconnect.sessions == 0
    assert "invalid api key" in supervisor.reconnect.last_error
    assert sleep.delays == [1]


def test_data_only_after_auth_success():
    async def scenario():
        channel = DataChannel()
        channel.try_send((Reading(device="a", channel="co2", value=400),))
        channel.close()
        # Ping arrives before the auth reply
        transport = AuthGuardTransport([Frame.ping(b"p1"), Frame.text(AUTH_OK)])
        supervisor, _ = make_supervisor(transport_factory(transport), channel=channel)
        reason = await supervisor.run_cycle()
        return reason, transport

    reason, transport = asyncio.run(scenario())

    assert reason == TerminationReason.CHANNEL_CLOSED
    assert [m["type"] for m in transport.sent_messages] == ["auth", "data"]
    assert transport.pongs == [b"p1"]


def test_missing_auth_reply_times_out():
    async def scenario():
        transport = FakeTransport()
        supervisor, sleep = make_supervisor(transport_factory(transport), auth_timeout_s=0.05)
        reason = await supervisor.run_cycle()
        return reason, transport, supervisor, sleep

    reason, transport, supervisor, sleep = asyncio.run(scenario())

    assert reason is None
    assert transport.closed
    assert "No authentication reply" in supervisor.reconnect.last_error
    assert sleep.delays == [1]


def test_unreadable_or_unexpected_auth_reply_is_a_failure():
    async def scenario():
        transports = [
            FakeTransport([Frame.text("garbage")]),
            FakeTransport([Frame.text('{"type":"command","device":"a","action":"set_state"}')]),
            FakeTransport([Frame.close(4001)]),
        ]
        supervisor, sleep = make_supervisor(transport_factory(*transports))
        reasons = [await supervisor.run_cycle() for _ in transports]
        return reasons, supervisor, sleep

    reasons, supervisor, sleep = asyncio.run(scenario())

    assert reasons == [None, None, None]
    assert supervisor.reconnect.sessions == 0
    assert sleep.delays == [1, 2, 4]


def test_peer_close_then_reconnect_resets_backoff():
    async def scenario():
        transitions = []
        first = FakeTransport([Frame.text(AUTH_OK), Frame.close(1001)])
        second = FakeTransport([Frame.text(AUTH_OK), Frame.close(1001)])
        connect = transport_factory(
            TransportConnectError("refused", URL),
            TransportConnectError("refused", URL),
            first,
            TransportConnectError("refused", URL),
            second,
        )
        supervisor, sleep = make_supervisor(connect, transitions=transitions)
        reasons = [await supervisor.run_cycle() for _ in range(5)]
        return reasons, transitions, supervisor, sleep

    reasons, transitions, supervisor, sleep = asyncio.run(scenario())

    assert reasons == [None, None, TerminationReason.PEER_CLOSED, None, TerminationReason.PEER_CLOSED]
    # Backoff restarts from the floor after each authenticated connect
    assert sleep.delays == [1, 2, 1, 2, 1]
    assert supervisor.reconnect.sessions == 2
    assert supervisor.reconnect.last_termination == "peer_closed"

    connected = [t for t in transitions if ConnectionState.CONNECTED in t]
    assert connected == [
        (ConnectionState.AUTHENTICATING, ConnectionState.CONNECTED),
        (ConnectionState.CONNECTED, ConnectionState.DISCONNECTED),
        (ConnectionState.AUTHENTICATING, ConnectionState.CONNECTED),
        (ConnectionState.CONNECTED, ConnectionState.DISCONNECTED),
    ]


def test_unexpected_errors_are_not_fatal():
    async def scenario():
        connect = transport_factory(RuntimeError("boom"), FakeTransport([Frame.text(AUTH_OK), Frame.close()]))
        supervisor, sleep = make_supervisor(connect)
        first = await supervisor.run_cycle()
        second = await supervisor.run_cycle()
        return first, second, sleep

    first, second, sleep = asyncio.run(scenario())

    assert first is None
    assert second == TerminationReason.PEER_CLOSED
    assert sleep.delays == [1, 1]


def test_run_keeps_cycling_until_cancelled():
    async def scenario():
        sleeps = RecordingSleep()
        attempts = []

        async def connect(url):
            attempts.append(url)
            if len(attempts) >= 5:
                await asyncio.Event().wait()
            raise TransportConnectError("refused", url)

        supervisor = ConnectionSupervisor(
            server_url=URL,
            api_key="k",
            channel=DataChannel(),
            command_sink=RecordingSink(),
            connect=connect,
            sleep=sleeps,
        )
        task = asyncio.create_task(supervisor.run())
        while len(attempts) < 5:
            await asyncio.sleep(0)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return sleeps.delays, task

    delays, task = asyncio.run(scenario())

    assert delays == [1, 2, 4, 8]
    assert task.cancelled()


def test_close_before_auth_reply_is_peer_close():
    async def scenario():
        transport = FakeTransport([Frame.ping(b"hb"), Frame.close(4001)])
        with pytest.raises(PeerClosedError) as exc:
            await authenticate(transport, "secret-key", 1.0)
        return exc.value, transport

    error, transport = asyncio.run(scenario())

    assert error.code == 4001
    assert transport.pongs == [b"hb"]


def test_connected_since_cleared_after_session_ends():
    async def scenario():
        transport = FakeTransport([Frame.text(AUTH_OK), Frame.close(1001)])
        supervisor, _ = make_supervisor(transport_factory(transport))
        await supervisor.run_cycle()
        return supervisor

    supervisor = asyncio.run(scenario())

    assert supervisor.reconnect.sessions == 1
    assert supervisor.reconnect.connected_since is None
    assert supervisor.reconnect.to_dict()["connected_since"] is None
