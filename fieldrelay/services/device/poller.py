"""
Poller

Queries every configured device once per tick and pushes the collected
readings into the data channel as one batch.

- Devices are queried one after another, in configuration order
- A device that fails contributes no readings for that tick
- A tick that yields no readings enqueues nothing
"""

import asyncio
import time
from typing import Any

from fieldrelay.common.exceptions import DeviceError
from fieldrelay.common.logging_setup import get_service_logger, log_readings_batch
from fieldrelay.common.scheduler import ScheduledLoop
from fieldrelay.services.relay.channel import DataChannel
from fieldrelay.services.relay.protocol import Reading

from .adapters import DeviceAdapter
from .device_manager import DeviceRegistry

logger = get_service_logger("device.poller")


class Poller:
    """Fixed-period device poller feeding the data channel"""

    def __init__(
        self,
        registry: DeviceRegistry,
        adapter: DeviceAdapter,
        channel: DataChannel,
        interval_s: float = 60.0,
    ):
        self.registry = registry
        self.adapter = adapter
        self.channel = channel
        self.scheduler = ScheduledLoop(interval_s, self.tick, name="poller")

        self._batches_enqueued = 0
        self._batches_dropped = 0
        self._empty_ticks = 0

    async def poll_once(self) -> list[Reading]:
        """
        Query every device once.

        Returns:
            Readings of all devices that answered, in configuration order
        """
        batch: list[Reading] = []

        for device in self.registry:
            try:
                readings = await self.adapter.get_readings(device)
            except asyncio.CancelledError:
                raise
            except DeviceError as e:
                logger.warning(f"Failed to query {device.name}: {e.message}")
                self.registry.record_failure(device.name, e.message)
                continue
            except Exception as e:
                logger.error(f"Unexpected error querying {device.name}: {e}")
                self.registry.record_failure(device.name, str(e))
                continue

            self.registry.record_success(device.name, len(readings))
            batch.extend(readings)

        return batch

    async def tick(self) -> None:
        """One scheduled poll: collect and enqueue"""
        start = time.monotonic()
        batch = await self.poll_once()
        elapsed_ms = (time.monotonic() - start) * 1000

        if not batch:
            self._empty_ticks += 1
            logger.warning("No readings collected this tick, nothing to send")
            return

        log_readings_batch(logger, batch, elapsed_ms)
        if self.channel.try_send(tuple(batch)):
            self._batches_enqueued += 1
        else:
            self._batches_dropped += 1

    async def run(self) -> None:
        """Poll until cancelled"""
        logger.info(
            f"Polling {len(self.registry)} devices every {self.scheduler.interval:g}s"
        )
        await self.scheduler.run()

    def stop(self) -> None:
        self.scheduler.stop()

    def get_stats(self) -> dict[str, Any]:
        return {
            "batches_enqueued": self._batches_enqueued,
            "batches_dropped": self._batches_dropped,
            "empty_ticks": self._empty_ticks,
            "online_devices": self.registry.get_online_count(),
            "scheduler": self.scheduler.get_stats(),
        }
