"""
Command Dispatcher

Turns inbound commands into device actions without ever making the
session wait: each accepted command runs as its own task, and its
outcome is only logged.
"""

import asyncio
from typing import Any

from fieldrelay.common.config import DeviceConfig
from fieldrelay.common.exceptions import DeviceError, UnknownActionError, UnknownDeviceError
from fieldrelay.common.logging_setup import get_service_logger
from fieldrelay.services.relay.protocol import ACTION_SET_STATE, Command

from .adapters import DeviceAdapter
from .device_manager import DeviceRegistry

logger = get_service_logger("device.dispatcher")


class CommandDispatcher:
    """Fire-and-forget command execution against the static device set"""

    def __init__(self, registry: DeviceRegistry, adapter: DeviceAdapter):
        self.registry = registry
        self.adapter = adapter
        self._tasks: set[asyncio.Task] = set()

        self._accepted = 0
        self._discarded = 0
        self._succeeded = 0
        self._failed = 0

    def dispatch(self, command: Command) -> asyncio.Task | None:
        """
        Start the action for a command and return immediately.

        Returns:
            The spawned task, or None if the command was discarded
        """
        try:
            device = self._resolve(command)
        except (UnknownDeviceError, UnknownActionError) as e:
            self._discarded += 1
            logger.warning(f"[Command] Discarded: {e.message}")
            return None

        self._accepted += 1
        task = asyncio.create_task(
            self._set_state(device, command.turn_on),
            name=f"command-{device.name}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _resolve(self, command: Command) -> DeviceConfig:
        device = self.registry.get(command.device)
        if device is None:
            raise UnknownDeviceError(command.device)
        if command.action != ACTION_SET_STATE:
            raise UnknownActionError(command.action)
        return device

    async def _set_state(self, device: DeviceConfig, on: bool) -> None:
        try:
            await self.adapter.set_state(device, on)
        except DeviceError as e:
            self._failed += 1
            logger.error(f"[Command] Failed to set {device.name} {'on' if on else 'off'}: {e.message}")
            return
        except Exception as e:
            self._failed += 1
            logger.exception(f"[Command] Unexpected error on {device.name}: {e}")
            return

        self._succeeded += 1
        logger.info(f"[Command] Set {device.name} {'on' if on else 'off'}")

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout_s: float | None = None) -> None:
        """Wait for in-flight commands; cancel whatever is left after timeout_s"""
        if not self._tasks:
            return

        tasks = set(self._tasks)
        done, pending = await asyncio.wait(tasks, timeout=timeout_s)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} unfinished commands")
            await asyncio.gather(*pending, return_exceptions=True)

    def get_stats(self) -> dict[str, Any]:
        return {
            "accepted": self._accepted,
            "discarded": self._discarded,
            "succeeded": self._succeeded,
            "failed": self._failed,
            "in_flight": len(self._tasks),
        }
