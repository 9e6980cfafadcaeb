"""
Data Channel

Bounded FIFO between the poller and the session. Sending never blocks:
when the channel is full the new batch is dropped (telemetry is best
effort, and a stalled network must not stall polling). Receiving waits
until a batch is available or the channel is closed.
"""

import asyncio
from collections import deque

from fieldrelay.common.logging_setup import get_service_logger

from .protocol import Reading

logger = get_service_logger("relay.channel")

Batch = tuple[Reading, ...]


class DataChannel:
    """Fixed-capacity, drop-on-full batch queue"""

    DEFAULT_CAPACITY = 100

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be positive")

        self.capacity = capacity
        self._batches: deque[Batch] = deque()
        self._available = asyncio.Event()
        self._closed = False

        # Counters
        self._sent = 0
        self._dropped = 0
        self._delivered = 0

    def __len__(self) -> int:
        return len(self._batches)

    @property
    def closed(self) -> bool:
        return self._closed

    def try_send(self, batch) -> bool:
        """
        Enqueue a batch without waiting.

        Returns:
            True if queued, False if dropped (channel full or closed)
        """
        if self._closed:
            self._dropped += 1
            logger.debug("Channel closed, dropping batch")
            return False

        if len(self._batches) >= self.capacity:
            self._dropped += 1
            logger.warning(
                f"Data channel full ({self.capacity} batches), dropping batch "
                f"of {len(batch)} readings",
                extra={"dropped_total": self._dropped},
            )
            return False

        self._batches.append(tuple(batch))
        self._sent += 1
        self._available.set()
        return True

    async def recv(self) -> Batch | None:
        """
        Wait for the oldest batch.

        Returns:
            The batch, or None once the channel is closed and drained
        """
        while not self._batches:
            if self._closed:
                return None
            self._available.clear()
            await self._available.wait()

        batch = self._batches.popleft()
        self._delivered += 1
        return batch

    def close(self) -> None:
        """Close the channel; pending receivers wake up"""
        self._closed = True
        self._available.set()

    def get_stats(self) -> dict:
        """Get channel statistics for observability."""
        return {
            "capacity": self.capacity,
            "queued": len(self._batches),
            "sent": self._sent,
            "dropped": self._dropped,
            "delivered": self._delivered,
            "closed": self._closed,
        }
