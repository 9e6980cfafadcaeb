"""
Structured Logging Setup

Consistent logging configuration across all services.
Uses JSON format for structured logs in production.
"""

import logging
import sys
import os
from datetime import datetime, timezone
from typing import Any
import json

# Fields of a LogRecord that are not forwarded as extras
_RESERVED_FIELDS = (
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "service",
    "message", "taskName",
)

# Process-wide defaults, changed once by configure_logging()
_defaults = {"level": "INFO", "json_format": True}


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_FIELDS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds service name to all logs"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs.setdefault("extra", {})
        kwargs["extra"]["service"] = self.extra.get("service", "unknown")
        return msg, kwargs


def _build_handler(numeric_level: int, json_format: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)

    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    return handler


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Set up structured logging for a service.

    Args:
        service_name: Name of the service (e.g., "relay.session", "device.poller")
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (True for production, False for dev)

    Returns:
        Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(f"fieldrelay.{service_name}")
    logger.setLevel(numeric_level)

    # Clear existing handlers
    logger.handlers.clear()
    logger.addHandler(_build_handler(numeric_level, json_format))

    # Don't propagate to root logger
    logger.propagate = False

    return logger


def configure_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """
    Reconfigure every fieldrelay logger created so far, and the defaults
    used by loggers created later.

    Called once by the entry point after the configuration file is read.
    """
    _defaults["level"] = log_level
    _defaults["json_format"] = json_format

    prefix = "fieldrelay."
    for name in list(logging.root.manager.loggerDict):
        if name.startswith(prefix):
            setup_logging(name[len(prefix):], log_level, json_format)


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Get a logger adapter with service context.

    Args:
        service_name: Name of the service

    Returns:
        Logger adapter with service name in all logs
    """
    # Environment variables override the process defaults
    log_level = os.environ.get("FIELDRELAY_LOG_LEVEL", _defaults["level"])
    log_format = os.environ.get("FIELDRELAY_LOG_FORMAT")
    if log_format:
        json_format = log_format.lower() == "json"
    else:
        json_format = _defaults["json_format"]

    logger = setup_logging(service_name, log_level, json_format)
    return ServiceLoggerAdapter(logger, {"service": service_name})


# Convenience loggers for common operations
def log_device_read(
    logger: logging.Logger | logging.LoggerAdapter,
    device_name: str,
    channel: str,
    value: Any,
    success: bool = True,
) -> None:
    """Log a device metric read"""
    if success:
        logger.debug(
            f"Read {device_name}.{channel} = {value}",
            extra={"device": device_name, "channel": channel, "value": value},
        )
    else:
        logger.debug(
            f"Failed to read {device_name}.{channel}: {value}",
            extra={"device": device_name, "channel": channel},
        )


def log_device_write(
    logger: logging.Logger | logging.LoggerAdapter,
    device_name: str,
    action: str,
    value: Any,
    success: bool = True,
) -> None:
    """Log a device action"""
    if success:
        logger.info(
            f"Action {device_name}.{action} = {value}",
            extra={"device": device_name, "action": action, "value": value},
        )
    else:
        logger.error(
            f"Failed action {device_name}.{action} = {value}",
            extra={"device": device_name, "action": action, "value": value},
        )


def log_readings_batch(
    logger: logging.Logger | logging.LoggerAdapter,
    readings: list,
    execution_time_ms: float,
) -> None:
    """Log one poll tick's batch, grouped by device"""
    devices: dict[str, int] = {}
    for reading in readings:
        devices[reading.device] = devices.get(reading.device, 0) + 1

    logger.info(
        f"Collected {len(readings)} readings from {len(devices)} devices "
        f"in {execution_time_ms:.0f}ms",
        extra={
            "reading_count": len(readings),
            "devices": devices,
            "execution_time_ms": execution_time_ms,
        },
    )
