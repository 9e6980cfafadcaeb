"""
Device Adapter

Single entry point for device I/O. The backend is chosen by the device's
configured type; every backend offers the same three calls:

    get_readings(device) -> list[Reading]
    set_state(device, on)
    close()
"""

from typing import Protocol

from fieldrelay.common.config import DeviceConfig, DeviceType
from fieldrelay.common.logging_setup import get_service_logger
from fieldrelay.services.relay.protocol import Reading

logger = get_service_logger("device.adapter")


class DeviceBackend(Protocol):
    """Capability interface implemented by each backend"""

    async def get_readings(self, device: DeviceConfig) -> list[Reading]: ...
    async def set_state(self, device: DeviceConfig, on: bool) -> None: ...
    async def close(self) -> None: ...


class DeviceAdapter:
    """
    Dispatches device calls to the backend for the device type.

    Backends are imported and created on first use, so a config without
    Tapo plugs never imports the Tapo library. Tests pass their own backends.
    """

    def __init__(
        self,
        s88: DeviceBackend | None = None,
        tapo: DeviceBackend | None = None,
        acinfinity: DeviceBackend | None = None,
    ):
        self._s88 = s88
        self._tapo = tapo
        self._acinfinity = acinfinity

    def backend_for(self, device_type: DeviceType) -> DeviceBackend:
        if device_type == DeviceType.S88:
            if self._s88 is None:
                from .modbus_client import S88SensorBackend
                self._s88 = S88SensorBackend()
            return self._s88

        if device_type.is_tapo:
            if self._tapo is None:
                from .tapo_client import TapoBackend
                self._tapo = TapoBackend()
            return self._tapo

        if device_type == DeviceType.ACINFINITY:
            if self._acinfinity is None:
                from .acinfinity_client import ACInfinityBackend
                self._acinfinity = ACInfinityBackend()
            return self._acinfinity

        raise ValueError(f"No backend for device type {device_type!r}")

    async def get_readings(self, device: DeviceConfig) -> list[Reading]:
        """
        Query all metrics of a device.

        Raises:
            DeviceQueryError: If the device cannot be queried at all
        """
        return await self.backend_for(device.device_type).get_readings(device)

    async def set_state(self, device: DeviceConfig, on: bool) -> None:
        """
        Switch a device on or off.

        Raises:
            DeviceActionError: If the action fails
        """
        await self.backend_for(device.device_type).set_state(device, on)

    async def close(self) -> None:
        """Release every backend that was created"""
        for backend in (self._s88, self._tapo, self._acinfinity):
            if backend is None:
                continue
            try:
                await backend.close()
            except Exception as e:
                logger.warning(f"Error closing {type(backend).__name__}: {e}")
