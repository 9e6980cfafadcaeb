"""
Tapo Plug Client

Reads and switches Tapo smart plugs through the `tapo` client library.
P100/P105 use the plain plug handler, P110/P115 the energy-monitoring
handler. Each metric group is queried separately; a failing group is
omitted from the readings rather than failing the whole device.

Besides numeric metrics, every plug reports two structured readings:
`countdown` (the active timer) and `schedules` (the schedule rule list).
"""

from typing import Any, Awaitable, Callable

from tapo import ApiClient

from fieldrelay.common.config import DeviceConfig, DeviceType
from fieldrelay.common.exceptions import DeviceActionError, DeviceQueryError
from fieldrelay.common.logging_setup import (
    get_service_logger,
    log_device_read,
    log_device_write,
)
from fieldrelay.services.relay.protocol import Reading

logger = get_service_logger("device.tapo")

# (channel, attribute) per metric group
DEVICE_INFO_METRICS = (
    ("on_time", "on_time"),
    ("signal_level", "signal_level"),
    ("rssi", "rssi"),
)
ENERGY_USAGE_METRICS = (
    ("energy_today", "today_energy"),      # Wh
    ("runtime_today", "today_runtime"),    # minutes
    ("energy_month", "month_energy"),      # Wh
    ("runtime_month", "month_runtime"),    # minutes
)

# Reported when the plug has no active countdown timer
NO_TIMER = {"remain": 0, "action": None}


def _metric_readings(device_name: str, result: Any, metrics: tuple) -> list[Reading]:
    readings = []
    for channel, attribute in metrics:
        value = getattr(result, attribute, None)
        if value is None:
            continue
        readings.append(Reading(device=device_name, channel=channel, value=float(value)))
        log_device_read(logger, device_name, channel, value)
    return readings


def _as_dict(result: Any) -> dict[str, Any]:
    if result is None:
        return {}
    if hasattr(result, "to_dict"):
        return result.to_dict()
    return dict(result)


def countdown_data(timer: Any) -> dict[str, Any]:
    """
    Active countdown timer as {"remain": seconds, "action": "on"|"off"}.

    The timer result holds a list of countdown rules; the first enabled
    rule with time remaining is the active one. NO_TIMER if none is.
    """
    data = _as_dict(timer)
    rules = data["rules"] if "rules" in data else [data]
    for rule in rules or []:
        if not rule.get("enable", True) or not rule.get("remain"):
            continue
        desired_on = (rule.get("desired_states") or {}).get("on")
        action = None if desired_on is None else ("on" if desired_on else "off")
        return {"remain": int(rule["remain"]), "action": action}
    return dict(NO_TIMER)


class TapoBackend:
    """
    Tapo plug backend.

    One ApiClient is kept per account; a handler is opened per request,
    as the plug session may expire between polls.
    """

    def __init__(self, client_factory: Callable[[str, str], Any] = ApiClient):
        self._client_factory = client_factory
        self._clients: dict[tuple[str, str], Any] = {}

    def _client_for(self, device: DeviceConfig) -> Any:
        key = (device.credentials.email, device.credentials.password)
        client = self._clients.get(key)
        if client is None:
            client = self._client_factory(*key)
            self._clients[key] = client
        return client

    async def _open_handler(self, device: DeviceConfig, error_cls: type) -> Any:
        client = self._client_for(device)
        if device.device_type.has_energy_monitoring:
            open_handler: Callable[[str], Awaitable[Any]] = client.p110
        elif device.device_type in (DeviceType.P100, DeviceType.P105):
            open_handler = client.p100
        else:
            raise error_cls(f"not a Tapo plug type: {device.device_type.value}", device.name)

        try:
            return await open_handler(device.address)
        except Exception as e:
            raise error_cls(f"cannot reach plug at {device.address}: {e}", device.name)

    async def get_readings(self, device: DeviceConfig) -> list[Reading]:
        plug = await self._open_handler(device, DeviceQueryError)
        readings: list[Reading] = []

        try:
            info = await plug.get_device_info()
            readings.append(
                Reading(device=device.name, channel="state", value=1.0 if info.device_on else 0.0)
            )
            readings.extend(_metric_readings(device.name, info, DEVICE_INFO_METRICS))
        except Exception as e:
            logger.debug(f"get_device_info failed for {device.name}: {e}")

        if device.device_type.has_energy_monitoring:
            try:
                power = await plug.get_current_power()
                # API reports milliwatts
                readings.append(
                    Reading(device=device.name, channel="power", value=power.current_power / 1000.0)
                )
            except Exception as e:
                logger.debug(f"get_current_power failed for {device.name}: {e}")

            try:
                usage = await plug.get_energy_usage()
                readings.extend(_metric_readings(device.name, usage, ENERGY_USAGE_METRICS))
            except Exception as e:
                logger.debug(f"get_energy_usage failed for {device.name}: {e}")

        try:
            timer = await plug.get_timer()
            readings.append(Reading(device=device.name, channel="countdown", data=countdown_data(timer)))
        except Exception as e:
            logger.debug(f"get_timer failed for {device.name}: {e}")

        try:
            schedules = _as_dict(await plug.get_schedule_rules()).get("rules") or []
            readings.append(Reading(device=device.name, channel="schedules", data=list(schedules)))
        except Exception as e:
            logger.debug(f"get_schedule_rules failed for {device.name}: {e}")

        return readings

    async def set_state(self, device: DeviceConfig, on: bool) -> None:
        plug = await self._open_handler(device, DeviceActionError)
        try:
            if on:
                await plug.on()
            else:
                await plug.off()
        except Exception as e:
            log_device_write(logger, device.name, "set_state", on, success=False)
            raise DeviceActionError(f"switch {'on' if on else 'off'} failed: {e}", device.name)

        log_device_write(logger, device.name, "set_state", "ON" if on else "OFF")

    async def close(self) -> None:
        self._clients.clear()
