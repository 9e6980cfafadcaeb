"""
Device Registry

Holds the static device set and tracks per-device status.

The device set is fixed at construction and shared read-only by the
poller and the command dispatcher. Status records are updated by the
poller only.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Iterator

from fieldrelay.common.config import DeviceConfig, DeviceType
from fieldrelay.common.logging_setup import get_service_logger

logger = get_service_logger("device.manager")


@dataclass
class DeviceStatus:
    """Current status of a device"""
    device_name: str
    device_type: DeviceType
    is_online: bool = False
    last_seen: datetime | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    last_reading_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.device_name,
            "type": self.device_type.value,
            "is_online": self.is_online,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
            "last_error": self.last_error,
            "consecutive_failures": self.consecutive_failures,
            "last_reading_count": self.last_reading_count,
        }


class DeviceRegistry:
    """
    Static device set with status tracking.

    Tracks:
    - Device lookup by exact name (configuration order preserved)
    - Online/offline status from poll results
    """

    # Number of failed polls before marking device offline
    OFFLINE_THRESHOLD = 3

    def __init__(self, devices: list[DeviceConfig] | tuple[DeviceConfig, ...]):
        by_name: dict[str, DeviceConfig] = {}
        for device in devices:
            if device.name in by_name:
                raise ValueError(f"Duplicate device name: {device.name}")
            by_name[device.name] = device

        self._devices = tuple(devices)
        self._by_name = MappingProxyType(by_name)
        self._status = {
            device.name: DeviceStatus(device_name=device.name, device_type=device.device_type)
            for device in self._devices
        }
        logger.debug(f"Registered {len(self._devices)} devices")

    def __iter__(self) -> Iterator[DeviceConfig]:
        return iter(self._devices)

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, name: str) -> bool:
        return name in self._by_name

    @property
    def devices(self) -> tuple[DeviceConfig, ...]:
        return self._devices

    def get(self, name: str) -> DeviceConfig | None:
        """Get a device by exact name"""
        return self._by_name.get(name)

    def get_status(self, name: str) -> DeviceStatus | None:
        return self._status.get(name)

    def record_success(self, name: str, reading_count: int) -> None:
        """Update status after a successful poll"""
        status = self._status.get(name)
        if status is None:
            return

        if not status.is_online:
            logger.info(f"Device {name} online")
        status.is_online = True
        status.last_seen = datetime.now(timezone.utc)
        status.consecutive_failures = 0
        status.last_error = None
        status.last_reading_count = reading_count

    def record_failure(self, name: str, error: str) -> None:
        """Update status after a failed poll"""
        status = self._status.get(name)
        if status is None:
            return

        status.consecutive_failures += 1
        status.last_error = error
        status.last_reading_count = 0

        if status.consecutive_failures >= self.OFFLINE_THRESHOLD and status.is_online:
            status.is_online = False
            logger.warning(
                f"Device {name} offline after {status.consecutive_failures} failed polls"
            )

    def get_online_count(self) -> int:
        return sum(1 for s in self._status.values() if s.is_online)

    def get_status_summary(self) -> list[dict[str, Any]]:
        """Status of every device, in configuration order"""
        return [self._status[device.name].to_dict() for device in self._devices]
