"""
Custom Exception Classes for the Field Relay

Hierarchical exception structure for error handling across services.
Connection-level errors end the current session attempt; device- and
frame-level errors are absorbed where they occur.
"""


class RelayError(Exception):
    """Base exception for all relay errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(RelayError):
    """Configuration-related errors"""

    def __init__(self, message: str):
        super().__init__(f"Config Error: {message}", recoverable=False)


class TransportError(RelayError):
    """Connection-level errors (terminate the current session attempt)"""

    def __init__(self, message: str, url: str | None = None):
        self.url = url
        super().__init__(message, recoverable=True)


class TransportConnectError(TransportError):
    """Could not open the transport to the collector"""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(f"Connect failed: {message}", url)


class AuthRejectedError(TransportError):
    """Collector answered the auth frame without success"""

    def __init__(self, reason: str | None = None):
        self.reason = reason
        super().__init__(f"Authentication rejected: {reason or 'no reason given'}")


class AuthTimeoutError(TransportError):
    """No auth reply within the configured wait"""

    def __init__(self, timeout_s: float):
        self.timeout_s = timeout_s
        super().__init__(f"No authentication reply within {timeout_s:.1f}s")


class SendFailedError(TransportError):
    """Writing a frame to the transport failed"""

    def __init__(self, message: str):
        super().__init__(f"Send failed: {message}")


class ReadFailedError(TransportError):
    """Reading a frame from the transport failed"""

    def __init__(self, message: str):
        super().__init__(f"Read failed: {message}")


class PeerClosedError(TransportError):
    """Collector closed the connection"""

    def __init__(self, code: int | None = None):
        self.code = code
        super().__init__(f"Peer closed connection (code={code})")


class DeviceError(RelayError):
    """Device communication errors"""

    def __init__(self, message: str, device_name: str | None = None):
        self.device_name = device_name
        self.detail = message
        prefix = f"Device Error [{device_name}]" if device_name else "Device Error"
        super().__init__(f"{prefix}: {message}", recoverable=True)


class DeviceQueryError(DeviceError):
    """Reading a device failed (isolated to that device for one poll)"""


class DeviceActionError(DeviceError):
    """Executing an action on a device failed (isolated to that command)"""


class UnknownDeviceError(DeviceError):
    """Command names a device that is not configured"""

    def __init__(self, device_name: str):
        super().__init__("device is not configured", device_name)


class UnknownActionError(RelayError):
    """Command carries an action the relay does not implement"""

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Unknown action: {action!r}")


class MalformedFrameError(RelayError):
    """Inbound frame could not be decoded"""

    def __init__(self, message: str, raw: str | None = None):
        self.raw = raw
        super().__init__(f"Malformed frame: {message}")
