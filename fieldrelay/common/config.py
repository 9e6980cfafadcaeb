"""
Configuration Dataclasses

Type-safe configuration structures for the relay.
Configuration is loaded once at startup from a YAML file and is
read-only for the life of the process.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError

DEFAULT_CONFIG_PATH = "config.yaml"

# Environment overrides (take precedence over the config file)
ENV_SERVER_URL = "FIELDRELAY_SERVER_URL"
ENV_API_KEY = "FIELDRELAY_API_KEY"
ENV_LOG_LEVEL = "FIELDRELAY_LOG_LEVEL"
ENV_LOG_FORMAT = "FIELDRELAY_LOG_FORMAT"


class DeviceType(str, Enum):
    """Device backends the relay can drive"""
    # Serial CO2 sensor
    S88 = "s88"
    # Tapo plugs (plain)
    P100 = "p100"
    P105 = "p105"
    # Tapo plugs (energy monitoring)
    P110 = "p110"
    P115 = "p115"
    # AC Infinity cloud controller
    ACINFINITY = "acinfinity"

    @property
    def is_tapo(self) -> bool:
        return self in TAPO_TYPES

    @property
    def has_energy_monitoring(self) -> bool:
        return self in (DeviceType.P110, DeviceType.P115)


TAPO_TYPES = frozenset({DeviceType.P100, DeviceType.P105, DeviceType.P110, DeviceType.P115})


@dataclass(frozen=True)
class Credentials:
    """Account credentials for a cloud-controlled device"""
    email: str = ""
    password: str = ""

    def __repr__(self) -> str:
        return f"Credentials(email={self.email!r}, password='***')"


@dataclass(frozen=True)
class DeviceConfig:
    """Device configuration"""
    name: str
    device_type: DeviceType
    address: str = ""
    credentials: Credentials = field(default_factory=Credentials)
    options: dict[str, Any] = field(default_factory=dict)

    def option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)


@dataclass(frozen=True)
class HealthSettings:
    """Local health endpoint"""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8090


@dataclass(frozen=True)
class LoggingSettings:
    """Log output configuration"""
    level: str = "INFO"
    format: str = "json"  # json, text

    @property
    def json_format(self) -> bool:
        return self.format.lower() == "json"


@dataclass(frozen=True)
class RelayConfig:
    """Complete relay configuration"""
    server_url: str
    api_key: str
    auth_timeout_s: float = 10.0
    backoff_initial_s: float = 1.0
    backoff_max_s: float = 60.0

    poll_interval_s: float = 60.0
    channel_capacity: int = 100

    health: HealthSettings = field(default_factory=HealthSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    devices: tuple[DeviceConfig, ...] = ()

    def get_device(self, name: str) -> DeviceConfig | None:
        """Get a device by exact name"""
        for device in self.devices:
            if device.name == name:
                return device
        return None


def _parse_device(data: dict) -> DeviceConfig:
    """Build a DeviceConfig from one entry of the `devices` list"""
    if not isinstance(data, dict):
        raise ConfigError(f"Device entry must be a mapping, got {type(data).__name__}")

    name = data.get("name")
    if not name:
        raise ConfigError("Device entry is missing 'name'")

    type_str = str(data.get("type") or data.get("device_type") or "").lower()
    try:
        device_type = DeviceType(type_str)
    except ValueError:
        raise ConfigError(f"Device {name}: unknown device type '{type_str}'")

    creds = data.get("credentials") or {}
    credentials = Credentials(
        email=creds.get("email", ""),
        password=creds.get("password", ""),
    )

    return DeviceConfig(
        name=str(name),
        device_type=device_type,
        address=str(data.get("address") or data.get("ip") or ""),
        credentials=credentials,
        options=dict(data.get("options") or {}),
    )


def load_relay_config(data: dict, environ: dict | None = None) -> RelayConfig:
    """
    Load RelayConfig from a dictionary (e.g., parsed YAML).

    Args:
        data: Configuration dictionary
        environ: Environment mapping for overrides (defaults to os.environ)

    Returns:
        RelayConfig

    Raises:
        ConfigError: If a section has the wrong shape or a device is invalid
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Top-level configuration must be a mapping")

    environ = os.environ if environ is None else environ

    server = data.get("server", {}) or {}
    polling = data.get("polling", {}) or {}
    health_data = data.get("health", {}) or {}
    logging_data = data.get("logging", {}) or {}

    health = HealthSettings(
        enabled=bool(health_data.get("enabled", True)),
        host=health_data.get("host", "127.0.0.1"),
        port=int(health_data.get("port", 8090)),
    )

    logging_settings = LoggingSettings(
        level=environ.get(ENV_LOG_LEVEL) or logging_data.get("level", "INFO"),
        format=environ.get(ENV_LOG_FORMAT) or logging_data.get("format", "json"),
    )

    devices = tuple(_parse_device(d) for d in data.get("devices", []) or [])

    try:
        return RelayConfig(
            server_url=environ.get(ENV_SERVER_URL) or server.get("url", ""),
            api_key=environ.get(ENV_API_KEY) or server.get("api_key", ""),
            auth_timeout_s=float(server.get("auth_timeout_s", 10.0)),
            backoff_initial_s=float(server.get("backoff_initial_s", 1.0)),
            backoff_max_s=float(server.get("backoff_max_s", 60.0)),
            poll_interval_s=float(polling.get("interval_s", 60.0)),
            channel_capacity=int(polling.get("channel_capacity", 100)),
            health=health,
            logging=logging_settings,
            devices=devices,
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid numeric setting: {e}")


def load_config_file(config_path: str | Path, environ: dict | None = None) -> RelayConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file
        environ: Environment mapping for overrides

    Returns:
        RelayConfig

    Raises:
        ConfigError: If the file is missing or cannot be parsed
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Error loading {config_path}: {e}")

    return load_relay_config(data, environ)


def validate_config(config: RelayConfig) -> list[str]:
    """
    Validate the configuration.

    Args:
        config: Loaded configuration

    Returns:
        List of error messages (empty when valid)
    """
    errors = []

    if not config.server_url:
        errors.append("Missing server.url")
    elif not config.server_url.startswith(("ws://", "wss://")):
        errors.append(f"server.url must be a ws:// or wss:// URL: {config.server_url}")

    if not config.api_key:
        errors.append("Missing server.api_key")

    if config.auth_timeout_s <= 0:
        errors.append("server.auth_timeout_s must be positive")

    if config.backoff_initial_s <= 0:
        errors.append("server.backoff_initial_s must be positive")
    elif config.backoff_initial_s > config.backoff_max_s:
        errors.append("server.backoff_initial_s cannot exceed server.backoff_max_s")

    if config.poll_interval_s <= 0:
        errors.append("polling.interval_s must be positive")

    if config.channel_capacity <= 0:
        errors.append("polling.channel_capacity must be positive")

    if not config.devices:
        errors.append("At least one device is required")

    seen = set()
    for device in config.devices:
        if device.name in seen:
            errors.append(f"Duplicate device name: {device.name}")
        seen.add(device.name)

        if device.device_type == DeviceType.S88 and not device.address:
            errors.append(f"Device {device.name}: serial port address is required")
        if device.device_type.is_tapo:
            if not device.address:
                errors.append(f"Device {device.name}: IP address is required")
            if not device.credentials.email or not device.credentials.password:
                errors.append(f"Device {device.name}: credentials are required")
        if device.device_type == DeviceType.ACINFINITY:
            if not device.credentials.email or not device.credentials.password:
                errors.append(f"Device {device.name}: credentials are required")

    return errors
