"""
Common Utilities

Shared modules used across all services:
- config.py - Configuration dataclasses and YAML loading
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
- scheduler.py - Fixed-period tick scheduler
- state.py - Connection state and reconnect backoff
"""

from .config import (
    DeviceType,
    Credentials,
    DeviceConfig,
    HealthSettings,
    LoggingSettings,
    RelayConfig,
    load_relay_config,
    load_config_file,
    validate_config,
)
from .exceptions import (
    RelayError,
    ConfigError,
    TransportError,
    TransportConnectError,
    AuthRejectedError,
    AuthTimeoutError,
    SendFailedError,
    ReadFailedError,
    PeerClosedError,
    DeviceError,
    DeviceQueryError,
    DeviceActionError,
    UnknownDeviceError,
    UnknownActionError,
    MalformedFrameError,
)
from .logging_setup import (
    setup_logging,
    configure_logging,
    get_service_logger,
    log_device_read,
    log_device_write,
    log_readings_batch,
)
from .scheduler import ScheduledLoop
from .state import ConnectionState, ReconnectState

__all__ = [
    # Config
    "DeviceType",
    "Credentials",
    "DeviceConfig",
    "HealthSettings",
    "LoggingSettings",
    "RelayConfig",
    "load_relay_config",
    "load_config_file",
    "validate_config",
    # Exceptions
    "RelayError",
    "ConfigError",
    "TransportError",
    "TransportConnectError",
    "AuthRejectedError",
    "AuthTimeoutError",
    "SendFailedError",
    "ReadFailedError",
    "PeerClosedError",
    "DeviceError",
    "DeviceQueryError",
    "DeviceActionError",
    "UnknownDeviceError",
    "UnknownActionError",
    "MalformedFrameError",
    # Logging
    "setup_logging",
    "configure_logging",
    "get_service_logger",
    "log_device_read",
    "log_device_write",
    "log_readings_batch",
    # Scheduling / state
    "ScheduledLoop",
    "ConnectionState",
    "ReconnectState",
]
