"""
Field Relay Services

- device - Device backends, polling and command execution
- relay - Collector connection, session and data channel
"""
