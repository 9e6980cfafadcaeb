"""
Device Service - Local Device I/O

Responsibilities:
- Hold the static device set and track device online/offline status
- Poll every device on a fixed period and batch the readings
- Execute inbound commands without blocking the collector connection
- Talk to the device backends (S88 serial sensor, Tapo plugs, AC Infinity)
"""

from .adapters import DeviceAdapter
from .device_manager import DeviceRegistry, DeviceStatus
from .dispatcher import CommandDispatcher
from .poller import Poller

__all__ = [
    "DeviceAdapter",
    "DeviceRegistry",
    "DeviceStatus",
    "CommandDispatcher",
    "Poller",
]
