"""Command dispatcher: fire-and-forget device actions"""

import asyncio

from fieldrelay.common.config import DeviceConfig, DeviceType
from fieldrelay.services.device.adapters import DeviceAdapter
from fieldrelay.services.device.device_manager import DeviceRegistry
from fieldrelay.services.device.dispatcher import CommandDispatcher
from fieldrelay.services.relay.channel import DataChannel
from fieldrelay.services.relay.protocol import Command
from fieldrelay.services.relay.session import Session
from fieldrelay.services.relay.transport import Frame

from fakes import FakeBackend, FakeTransport, text

PLUG_A = DeviceConfig(name="plug-a", device_type=DeviceType.P110, address="10.0.0.20")


def make_dispatcher(backend):
    registry = DeviceRegistry([PLUG_A])
    return CommandDispatcher(registry, DeviceAdapter(tapo=backend))


def test_unknown_device_is_discarded():
    async def scenario():
        backend = FakeBackend()
        dispatcher = make_dispatcher(backend)
        task = dispatcher.dispatch(Command(device="ghost", action="set_state", value=1))
        await dispatcher.drain()
        return task, backend, dispatcher

    task, backend, dispatcher = asyncio.run(scenario())

    assert task is None
    assert backend.set_calls == []
    assert dispatcher.get_stats()["discarded"] == 1


def test_device_name_must_match_exactly():
    async def scenario():
        backend = FakeBackend()
        dispatcher = make_dispatcher(backend)
        dispatcher.dispatch(Command(device="PLUG-A", action="set_state", value=1))
        return backend

    assert asyncio.run(scenario()).set_calls == []


def test_unknown_action_is_discarded():
    async def scenario():
        backend = FakeBackend()
        dispatcher = make_dispatcher(backend)
        task = dispatcher.dispatch(Command(device="plug-a", action="reboot", value=1))
        return task, backend

    task, backend = asyncio.run(scenario())

    assert task is None
    assert backend.set_calls == []


def test_set_state_maps_value_to_on_off():
    async def scenario():
        backend = FakeBackend()
        dispatcher = make_dispatcher(backend)
        dispatcher.dispatch(Command(device="plug-a", action="set_state", value=1))
        dispatcher.dispatch(Command(device="plug-a", action="set_state", value=0))
        dispatcher.dispatch(Command(device="plug-a", action="set_state", value=7))
        await dispatcher.drain()
        return backend, dispatcher

    backend, dispatcher = asyncio.run(scenario())

    assert sorted(backend.set_calls) == [("plug-a", False), ("plug-a", True), ("plug-a", True)]
    assert dispatcher.get_stats()["succeeded"] == 3


def test_action_failure_is_only_logged():
    async def scenario():
        backend = FakeBackend(fail_actions=True)
        dispatcher = make_dispatcher(backend)
        task = dispatcher.dispatch(Command(device="plug-a", action="set_state", value=1))
        await task
        return task, dispatcher

    task, dispatcher = asyncio.run(scenario())

    assert task.exception() is None
    assert dispatcher.get_stats()["failed"] == 1


def test_dispatch_returns_before_device_answers():
    async def scenario():
        backend = FakeBackend(block_actions=True)
        dispatcher = make_dispatcher(backend)
        dispatcher.dispatch(Command(device="plug-a", action="set_state", value=1))
        in_flight = dispatcher.in_flight
        await asyncio.sleep(0)
        started = list(backend.set_calls)
        await dispatcher.drain(timeout_s=0.01)
        return in_flight, started, dispatcher

    in_flight, started, dispatcher = asyncio.run(scenario())

    assert in_flight == 1
    assert started == [("plug-a", True)]
    assert dispatcher.in_flight == 0


def test_ghost_command_leaves_session_running():
    async def scenario():
        backend = FakeBackend()
        dispatcher = make_dispatcher(backend)
        transport = FakeTransport([
            text({"type": "command", "device": "ghost", "action": "set_state", "value": 1}),
            Frame.ping(b"after-ghost"),
        ])
        session_task = asyncio.create_task(Session(transport, dispatcher, DataChannel()).run())

        for _ in range(100):
            if transport.pongs:
                break
            await asyncio.sleep(0)
        still_running = not session_task.done()

        session_task.cancel()
        try:
            await session_task
        except asyncio.CancelledError:
            pass
        return still_running, transport, backend

    still_running, transport, backend = asyncio.run(scenario())

    assert still_running
    assert transport.pongs == [b"after-ghost"]
    assert backend.set_calls == []
