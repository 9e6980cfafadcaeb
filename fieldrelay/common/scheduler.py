"""
Fixed-Period Scheduler

Provides ScheduledLoop class that fires a callback on a fixed period.

Each tick is scheduled one interval after the previous tick's scheduled
time (not after the callback finished). A slow callback delays the
following ticks, which then fire back-to-back until the schedule is
caught up; no tick is ever skipped.

Usage:
    async def my_callback():
        # Do work...
        pass

    scheduler = ScheduledLoop(60.0, my_callback, name="poller")
    await scheduler.run()          # runs until cancelled or stop()
"""

import asyncio
import time
from typing import Awaitable, Callable

from .logging_setup import get_service_logger

logger = get_service_logger("scheduler")


class ScheduledLoop:
    """
    Fixed-period scheduler that never skips ticks.

    Attributes:
        interval: The interval in seconds between scheduled ticks
        callback: Async function to call each tick
        late_count: Number of ticks that fired after their scheduled time
    """

    # Ticks later than this are reported
    LATE_WARNING_S = 1.0

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
        name: str = "unnamed",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize a scheduled loop.

        Args:
            interval_seconds: Time between scheduled ticks (supports sub-second)
            callback: Async function to call each tick
            name: Name for logging/identification
            clock: Monotonic clock
            sleep: Coroutine used to wait for the next tick
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self.interval = interval_seconds
        self.callback = callback
        self.name = name
        self._clock = clock
        self._sleep = sleep

        self._next_run: float = 0
        self._running = False
        self._task: asyncio.Task | None = None

        # Observability metrics
        self._execution_count: int = 0
        self._error_count: int = 0
        self._late_count: int = 0
        self._last_execution_time: float = 0
        self._last_lateness: float = 0

    def start(self) -> asyncio.Task:
        """Start the scheduled loop in a background task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    def stop(self) -> None:
        """Stop the scheduled loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    async def run(self, max_ticks: int | None = None) -> None:
        """
        Fire the callback on schedule until stopped.

        The first tick fires immediately.

        Args:
            max_ticks: Stop after this many ticks (None = forever)
        """
        self._running = True
        self._next_run = self._clock()
        ticks = 0

        while self._running:
            sleep_duration = self._next_run - self._clock()
            if sleep_duration > 0:
                await self._sleep(sleep_duration)

            if not self._running:
                break

            lateness = self._clock() - self._next_run
            self._last_lateness = max(0.0, lateness)
            if lateness > self.LATE_WARNING_S:
                self._late_count += 1
                logger.warning(
                    f"Scheduler '{self.name}' tick {lateness:.1f}s late "
                    f"(last execution took {self._last_execution_time:.1f}s)"
                )

            start = self._clock()
            try:
                await self.callback()
                self._execution_count += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._error_count += 1
                logger.error(f"Scheduled callback '{self.name}' error: {e}")
            self._last_execution_time = self._clock() - start

            # Next tick is relative to the schedule, never skipped
            self._next_run += self.interval

            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break

        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def execution_count(self) -> int:
        """Total number of successful executions."""
        return self._execution_count

    @property
    def late_count(self) -> int:
        """Number of ticks that fired noticeably late."""
        return self._late_count

    @property
    def last_execution_time(self) -> float:
        """Duration of last callback execution in seconds."""
        return self._last_execution_time

    def get_stats(self) -> dict:
        """Get scheduler statistics for observability."""
        return {
            "name": self.name,
            "interval_s": self.interval,
            "execution_count": self._execution_count,
            "error_count": self._error_count,
            "late_count": self._late_count,
            "last_lateness_s": round(self._last_lateness, 3),
            "last_execution_s": round(self._last_execution_time, 3),
        }
