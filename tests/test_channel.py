"""Drop-on-full data channel"""

import asyncio

import pytest

from fieldrelay.services.relay.channel import DataChannel
from fieldrelay.services.relay.protocol import Reading


def batch(tag: str):
    return (Reading(device=tag, channel="co2", value=400),)


def test_batches_delivered_in_order():
    async def scenario():
        channel = DataChannel(capacity=3)
        for tag in ("a", "b", "c"):
            assert channel.try_send(batch(tag))
        return [await channel.recv() for _ in range(3)]

    received = asyncio.run(scenario())
    assert [b[0].device for b in received] == ["a", "b", "c"]


def test_full_channel_drops_without_latent_delivery():
    async def scenario():
        channel = DataChannel(capacity=2)
        assert channel.try_send(batch("a"))
        assert channel.try_send(batch("b"))
        assert not channel.try_send(batch("c"))

        first = await channel.recv()
        second = await channel.recv()
        channel.close()
        rest = await channel.recv()
        return channel, [first, second], rest

    channel, received, rest = asyncio.run(scenario())

    assert [b[0].device for b in received] == ["a", "b"]
    assert rest is None
    assert channel.get_stats()["dropped"] == 1
    assert channel.get_stats()["delivered"] == 2


def test_recv_waits_for_a_batch():
    async def scenario():
        channel = DataChannel()
        receiver = asyncio.create_task(channel.recv())
        await asyncio.sleep(0)
        assert not receiver.done()

        channel.try_send(batch("late"))
        return await asyncio.wait_for(receiver, 1.0)

    assert asyncio.run(scenario())[0].device == "late"


def test_close_wakes_waiting_receiver():
    async def scenario():
        channel = DataChannel()
        receiver = asyncio.create_task(channel.recv())
        await asyncio.sleep(0)
        channel.close()
        return await asyncio.wait_for(receiver, 1.0)

    assert asyncio.run(scenario()) is None


def test_closed_channel_drains_before_ending():
    async def scenario():
        channel = DataChannel()
        channel.try_send(batch("a"))
        channel.close()
        assert not channel.try_send(batch("b"))
        return await channel.recv(), await channel.recv()

    first, second = asyncio.run(scenario())
    assert first[0].device == "a"
    assert second is None


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        DataChannel(capacity=0)
