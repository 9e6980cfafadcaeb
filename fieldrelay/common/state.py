"""
Connection State

The connection lifecycle enum and the reconnect/backoff record owned by
the connection supervisor. One ReconnectState exists per supervisor; it is
written only by that supervisor and read by everything else (health
endpoint, logs).
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ConnectionState(str, Enum):
    """Connection lifecycle states"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"


@dataclass
class ReconnectState:
    """
    Reconnect/backoff state for one supervisor.

    Delay starts at initial_delay, doubles after every failed cycle
    (failed connect, failed auth, or ended session) and is capped at
    max_delay. It resets to initial_delay after an authenticated connect.
    """
    initial_delay: float = 1.0
    max_delay: float = 60.0
    state: ConnectionState = ConnectionState.DISCONNECTED
    delay: float = 1.0
    consecutive_failures: int = 0
    sessions: int = 0
    last_error: str | None = None
    last_termination: str | None = None
    connected_since: datetime | None = None

    def __post_init__(self):
        self.delay = self.initial_delay

    def record_success(self) -> None:
        """Authenticated connect: reset backoff to its floor"""
        self.delay = self.initial_delay
        self.consecutive_failures = 0
        self.sessions += 1
        self.last_error = None
        self.connected_since = datetime.now(timezone.utc)

    def record_failure(self, error: str | None = None) -> float:
        """
        Register a failed cycle. The connection is down from here on.

        Returns:
            Seconds to wait before the next attempt
        """
        wait = self.delay
        self.delay = min(self.delay * 2, self.max_delay)
        self.consecutive_failures += 1
        self.connected_since = None
        if error is not None:
            self.last_error = error
        return wait

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for status reporting"""
        return {
            "state": self.state.value,
            "delay_s": self.delay,
            "consecutive_failures": self.consecutive_failures,
            "sessions": self.sessions,
            "last_error": self.last_error,
            "last_termination": self.last_termination,
            "connected_since": self.connected_since.isoformat() if self.connected_since else None,
        }
