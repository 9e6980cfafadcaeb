"""
Relay Service - Collector Connection

Responsibilities:
- Maintain the WebSocket connection to the collector (connect, auth, backoff)
- Forward reading batches from the data channel
- Answer pings and hand inbound commands to the dispatcher
"""

from .channel import DataChannel
from .protocol import Command, Reading
from .session import Session, TerminationReason
from .supervisor import ConnectionSupervisor

__all__ = [
    "DataChannel",
    "Command",
    "Reading",
    "Session",
    "TerminationReason",
    "ConnectionSupervisor",
]
