"""
Field Relay

Field agent that polls local and cloud-controlled devices, relays their
readings to a central collector over a persistent WebSocket connection,
and executes control commands sent back by the collector.
"""

__version__ = "1.0.0"
