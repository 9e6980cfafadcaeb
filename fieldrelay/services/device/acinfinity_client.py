"""
AC Infinity Client

Cloud API client for AC Infinity grow-tent controllers.

- Login with the account email/password yields a token used on every call
- Sensor values are reported as integers scaled by 100
- Switching a port rewrites its mode settings (mode 1 = off, 2 = on)
"""

import re
from typing import Any

import httpx

from fieldrelay.common.config import DeviceConfig
from fieldrelay.common.exceptions import DeviceActionError, DeviceError, DeviceQueryError
from fieldrelay.common.logging_setup import (
    get_service_logger,
    log_device_read,
    log_device_write,
)
from fieldrelay.services.relay.protocol import Reading

logger = get_service_logger("device.acinfinity")

DEFAULT_HOST = "http://www.acinfinityserver.com"

API_URL_LOGIN = "/api/user/appUserLogin"
API_URL_DEVICE_LIST = "/api/user/devInfoListAll"
API_URL_MODE_SETTINGS = "/api/dev/getdevModeSettingList"
API_URL_ADD_MODE = "/api/dev/addDevMode"

USER_AGENT = "ACController/1.9.7 (com.acinfinity.humiture; build:533; iOS 18.5.0) Alamofire/5.10.2"

MODE_OFF = 1
MODE_ON = 2
MAX_LEVEL = 10

# Response codes
CODE_OK = 200
CODE_INVALID_AUTH = 10001
CODE_NOT_LOGGED_IN = 100001

# Device-level sensors: (channel, key)
SENSOR_KEYS = (
    ("temperature", "temperature"),
    ("humidity", "humidity"),
    ("vpd", "vpdnums"),
)

# Settings that must not be echoed back when rewriting a port mode
MODE_KEY_BLOCKLIST = {"devId", "port", "mode", "speak", "devName", "deviceInfo", "devType", "macAddr"}
MODE_DEFAULT_ZERO = ("surplus", "backup", "transitionType")


def slugify(name: str) -> str:
    """'Grow Tent #1' -> 'grow-tent-1'"""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


class ACInfinityAuthError(DeviceError):
    """Login rejected or session expired"""


class ACInfinityClient:
    """Client for one AC Infinity account"""

    def __init__(
        self,
        email: str,
        password: str,
        host: str = DEFAULT_HOST,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        self.email = email
        self.password = password
        self.host = host.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http_client is None
        self.user_id: str | None = None

    @property
    def is_logged_in(self) -> bool:
        return self.user_id is not None

    def _headers(self, authenticated: bool = True) -> dict[str, str]:
        headers = {
            "User-Agent": USER_AGENT,
            "Content-Type": "application/x-www-form-urlencoded; charset=utf-8",
        }
        if authenticated and self.user_id:
            headers.update({"token": self.user_id, "phoneType": "1", "appVersion": "1.9.7"})
        return headers

    async def _post(
        self,
        path: str,
        form: dict[str, Any],
        authenticated: bool = True,
        as_query: bool = False,
    ) -> Any:
        fields = {k: str(v) for k, v in form.items()}
        try:
            response = await self._http.post(
                f"{self.host}{path}",
                params=fields if as_query else None,
                data=None if as_query else fields,
                headers=self._headers(authenticated),
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DeviceError(f"AC Infinity request {path} failed: {e}")

        code = payload.get("code")
        if code in (CODE_INVALID_AUTH, CODE_NOT_LOGGED_IN):
            self.user_id = None
            raise ACInfinityAuthError(f"AC Infinity rejected credentials (code={code})")
        if code != CODE_OK:
            raise DeviceError(f"AC Infinity request {path} failed: {payload.get('msg', payload)}")
        return payload.get("data")

    async def login(self) -> str:
        """Log in and remember the session token"""
        data = await self._post(
            API_URL_LOGIN,
            # Field name typo is part of the API
            {"appEmail": self.email, "appPasswordl": self.password},
            authenticated=False,
        )
        self.user_id = str(data["appId"])
        logger.info("Logged in to AC Infinity API")
        return self.user_id

    async def _call(self, path: str, form: dict[str, Any], as_query: bool = False) -> Any:
        """Authenticated call; logs in first and retries once on an expired session"""
        if not self.is_logged_in:
            await self.login()
        try:
            return await self._post(path, self._with_user(form), as_query=as_query)
        except ACInfinityAuthError:
            logger.info("AC Infinity session expired, logging in again")
            await self.login()
            return await self._post(path, self._with_user(form), as_query=as_query)

    def _with_user(self, form: dict[str, Any]) -> dict[str, Any]:
        """Fill in the userId of the current login"""
        if "userId" in form:
            return {**form, "userId": self.user_id}
        return form

    async def get_devices(self) -> list[dict[str, Any]]:
        """All controllers on the account"""
        return await self._call(API_URL_DEVICE_LIST, {"userId": ""}) or []

    async def get_mode_settings(self, dev_id: str, port: int) -> dict[str, Any]:
        return await self._call(API_URL_MODE_SETTINGS, {"devId": dev_id, "port": port}) or {}

    async def set_port_level(self, dev_id: str, port: int, level: int) -> None:
        """Switch one port to level 0-10 (0 = off)"""
        settings = await self.get_mode_settings(dev_id, port)
        if not settings:
            raise DeviceError(f"no mode settings for {dev_id} port {port}")

        level = max(0, min(MAX_LEVEL, int(round(level))))
        mode = MODE_OFF if level == 0 else MODE_ON

        form: dict[str, Any] = {
            "userId": "",
            "devId": dev_id,
            "port": port,
            "mode": mode,
            "speak": 0 if mode == MODE_OFF else level,
            "atType": mode,
            "onSpead": level if mode == MODE_ON else MAX_LEVEL,
        }
        for key, value in settings.items():
            if key in form or key in MODE_KEY_BLOCKLIST:
                continue
            if isinstance(value, (dict, list)) or value is None:
                continue
            form[key] = value
        for key in MODE_DEFAULT_ZERO:
            form.setdefault(key, 0)

        # The mode endpoint takes its fields in the query string
        await self._call(API_URL_ADD_MODE, form, as_query=True)

    async def close(self) -> None:
        if self._owns_http:
            await self._http.aclose()


def find_controller(devices: list[dict[str, Any]], name: str) -> dict[str, Any] | None:
    """Find a controller whose name contains `name` (case-insensitive)"""
    wanted = name.lower()
    for device in devices:
        dev_name = (device.get("devName") or f"device-{device.get('devId')}").lower()
        if wanted in dev_name:
            return device
    return None


def _ports(controller: dict[str, Any]) -> list[dict[str, Any]]:
    info = controller.get("deviceInfo") or controller
    ports = info.get("ports") or controller.get("devPortList") or []
    return ports if isinstance(ports, list) else []


def _port_id(port: dict[str, Any]) -> int | None:
    value = port.get("port") or port.get("portId")
    return int(value) if value is not None else None


def controller_readings(device_name: str, controller: dict[str, Any]) -> list[Reading]:
    """Readings for one controller dict from the device list"""
    readings = []
    info = controller.get("deviceInfo") or controller
    settings = controller.get("devSettings") or info

    for channel, key in SENSOR_KEYS:
        raw = info.get(key)
        if raw is None:
            raw = settings.get(key)
        if raw is None:
            continue
        readings.append(Reading(device=device_name, channel=channel, value=raw / 100))
        log_device_read(logger, device_name, channel, raw / 100)

    for port in _ports(controller):
        port_id = _port_id(port)
        label = slugify(port.get("portName") or f"port{port_id}")
        for channel, key in SENSOR_KEYS[:2]:
            if port.get(key) is not None:
                readings.append(
                    Reading(device=device_name, channel=f"{label}_{channel}", value=port[key] / 100)
                )
        if port.get("speak") is not None:
            readings.append(
                Reading(device=device_name, channel=f"{label}_level", value=port["speak"])
            )

    return readings


class ACInfinityBackend:
    """AC Infinity backend (one API client per account)"""

    def __init__(self, http_client: httpx.AsyncClient | None = None):
        self._http = http_client
        self._clients: dict[tuple[str, str, str], ACInfinityClient] = {}

    def _client_for(self, device: DeviceConfig) -> ACInfinityClient:
        host = device.address or DEFAULT_HOST
        key = (host, device.credentials.email, device.credentials.password)
        client = self._clients.get(key)
        if client is None:
            client = ACInfinityClient(
                email=device.credentials.email,
                password=device.credentials.password,
                host=host,
                http_client=self._http,
            )
            self._clients[key] = client
        return client

    async def _controller(self, device: DeviceConfig, error_cls: type) -> tuple[ACInfinityClient, dict]:
        client = self._client_for(device)
        try:
            devices = await client.get_devices()
        except DeviceError as e:
            raise error_cls(e.detail, device.name)

        wanted = device.option("controller", device.name)
        controller = find_controller(devices, wanted)
        if controller is None:
            raise error_cls(f"controller '{wanted}' not found on account", device.name)
        return client, controller

    async def get_readings(self, device: DeviceConfig) -> list[Reading]:
        _, controller = await self._controller(device, DeviceQueryError)
        return controller_readings(device.name, controller)

    async def set_state(self, device: DeviceConfig, on: bool) -> None:
        client, controller = await self._controller(device, DeviceActionError)

        port = device.option("port")
        if port is None:
            ports = _ports(controller)
            port = _port_id(ports[0]) if ports else None
        if port is None:
            raise DeviceActionError("controller has no ports", device.name)

        level = MAX_LEVEL if on else 0
        try:
            await client.set_port_level(str(controller.get("devId")), int(port), level)
        except DeviceError as e:
            log_device_write(logger, device.name, f"port{port}", level, success=False)
            raise DeviceActionError(e.detail, device.name)

        log_device_write(logger, device.name, f"port{port}", level)

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
