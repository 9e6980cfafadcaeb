"""
Relay Wire Protocol

JSON envelopes exchanged with the collector over text frames:

    -> {"type": "auth", "apiKey": "<key>"}                     first frame
    <- {"type": "auth", "success": true|false, "error": "..."}
    -> {"type": "data", "readings": [{"device", "channel", "value"|"data"}, ...]}
    <- {"type": "command", "device": "<name>", "action": "set_state", "value": 1}

Field names are fixed by the collector.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Iterable

from fieldrelay.common.exceptions import MalformedFrameError

MSG_AUTH = "auth"
MSG_DATA = "data"
MSG_COMMAND = "command"

ACTION_SET_STATE = "set_state"


@dataclass(frozen=True)
class Reading:
    """
    One metric of one device.

    Exactly one of `value` (numeric) or `data` (structured) is set.
    """
    device: str
    channel: str
    value: float | None = None
    data: Any = None

    def __post_init__(self):
        if (self.value is None) == (self.data is None):
            raise ValueError(
                f"Reading {self.device}.{self.channel} needs exactly one of value/data"
            )
        if self.value is not None:
            if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
                raise ValueError(f"Reading {self.device}.{self.channel}: value must be numeric")
            if not math.isfinite(self.value):
                raise ValueError(f"Reading {self.device}.{self.channel}: value must be finite")
            object.__setattr__(self, "value", float(self.value))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"device": self.device, "channel": self.channel}
        if self.value is not None:
            result["value"] = self.value
        else:
            result["data"] = self.data
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Reading":
        if not isinstance(data, dict):
            raise MalformedFrameError("reading must be an object")
        try:
            return cls(
                device=str(data["device"]),
                channel=str(data["channel"]),
                value=data.get("value"),
                data=data.get("data"),
            )
        except KeyError as e:
            raise MalformedFrameError(f"reading is missing {e}")
        except ValueError as e:
            raise MalformedFrameError(str(e))


@dataclass(frozen=True)
class AuthMessage:
    """First frame of every session"""
    api_key: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": MSG_AUTH, "apiKey": self.api_key}


@dataclass(frozen=True)
class DataMessage:
    """One poll tick's readings"""
    readings: tuple[Reading, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": MSG_DATA,
            "readings": [r.to_dict() for r in self.readings],
        }


@dataclass(frozen=True)
class ServerResponse:
    """Non-command envelope sent by the collector (auth ack, ack, error)"""
    type: str
    success: bool | None = None
    error: str | None = None

    @property
    def is_auth_success(self) -> bool:
        return self.type == MSG_AUTH and self.success is True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerResponse":
        success = data.get("success")
        error = data.get("error")
        return cls(
            type=str(data.get("type")),
            success=success if isinstance(success, bool) else None,
            error=str(error) if error is not None else None,
        )


@dataclass(frozen=True)
class Command:
    """Control command addressed to one configured device"""
    device: str
    action: str
    value: int = 0

    @property
    def turn_on(self) -> bool:
        return self.value > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": MSG_COMMAND,
            "device": self.device,
            "action": self.action,
            "value": self.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Command":
        value = data.get("value", 0)
        if isinstance(value, bool):
            value = int(value)
        elif isinstance(value, float) and value.is_integer():
            value = int(value)
        elif not isinstance(value, int):
            value = 0

        device = data.get("device")
        action = data.get("action")
        return cls(
            device=device if isinstance(device, str) else "",
            action=action if isinstance(action, str) else "",
            value=value,
        )


def encode(message: AuthMessage | DataMessage | Command) -> str:
    """Serialize an envelope for a text frame"""
    return json.dumps(message.to_dict(), separators=(",", ":"))


def encode_readings(readings: Iterable[Reading]) -> str:
    """Serialize a reading batch as a data envelope"""
    return encode(DataMessage(readings=tuple(readings)))


def _load_object(text: str | bytes) -> dict[str, Any]:
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise MalformedFrameError(f"invalid JSON ({e})", raw=str(text)[:200])

    if not isinstance(data, dict):
        raise MalformedFrameError("frame is not a JSON object", raw=str(text)[:200])
    if not isinstance(data.get("type"), str):
        raise MalformedFrameError("frame has no 'type'", raw=str(text)[:200])
    return data


def decode_server_frame(text: str | bytes) -> Command | ServerResponse:
    """
    Decode a text frame received from the collector.

    Returns:
        Command for command envelopes, ServerResponse for anything else

    Raises:
        MalformedFrameError: If the frame is not a typed JSON object
    """
    data = _load_object(text)
    if data["type"] == MSG_COMMAND:
        return Command.from_dict(data)
    return ServerResponse.from_dict(data)


def decode_readings(text: str | bytes) -> list[Reading]:
    """
    Decode a data envelope back into its readings.

    Raises:
        MalformedFrameError: If the frame is not a well-formed data envelope
    """
    data = _load_object(text)
    if data["type"] != MSG_DATA:
        raise MalformedFrameError(f"expected data envelope, got '{data['type']}'")

    readings = data.get("readings")
    if not isinstance(readings, list):
        raise MalformedFrameError("data envelope has no readings list")
    return [Reading.from_dict(r) for r in readings]
