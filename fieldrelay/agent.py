"""
Relay Agent

Wires the relay together and owns its lifecycle:

    Poller --(DataChannel)--> Session <--> collector
                                 |
                                 v
                          CommandDispatcher --> devices

The poller and the connection supervisor run as independent tasks and
share nothing but the data channel. A local aiohttp server exposes
/health and /status.
"""

import asyncio
import signal
from datetime import datetime, timezone
from functools import partial
from typing import Any

from aiohttp import web

from fieldrelay import __version__
from fieldrelay.common.config import RelayConfig
from fieldrelay.common.logging_setup import get_service_logger
from fieldrelay.common.state import ConnectionState, ReconnectState
from fieldrelay.services.device import CommandDispatcher, DeviceAdapter, DeviceRegistry, Poller
from fieldrelay.services.relay import ConnectionSupervisor, DataChannel
from fieldrelay.services.relay.transport import TransportFactory, connect_websocket

logger = get_service_logger("agent")

# Time allowed for in-flight commands on shutdown
COMMAND_DRAIN_TIMEOUT_S = 5.0


class RelayAgent:
    """
    Field relay agent.

    Components:
    - DeviceRegistry / DeviceAdapter: static device set and backends
    - Poller: fixed-period collection into the data channel
    - ConnectionSupervisor: collector connection with backoff
    - CommandDispatcher: inbound command execution
    """

    def __init__(
        self,
        config: RelayConfig,
        adapter: DeviceAdapter | None = None,
        connect: TransportFactory | None = None,
    ):
        self.config = config

        self.registry = DeviceRegistry(config.devices)
        self.adapter = adapter or DeviceAdapter()
        self.channel = DataChannel(config.channel_capacity)
        self.poller = Poller(
            registry=self.registry,
            adapter=self.adapter,
            channel=self.channel,
            interval_s=config.poll_interval_s,
        )
        self.dispatcher = CommandDispatcher(self.registry, self.adapter)
        self.reconnect = ReconnectState(
            initial_delay=config.backoff_initial_s,
            max_delay=config.backoff_max_s,
        )
        self.supervisor = ConnectionSupervisor(
            server_url=config.server_url,
            api_key=config.api_key,
            channel=self.channel,
            command_sink=self.dispatcher,
            reconnect=self.reconnect,
            connect=connect or partial(connect_websocket, timeout_s=config.auth_timeout_s),
            auth_timeout_s=config.auth_timeout_s,
            on_state_change=self._on_state_change,
        )

        self._start_time = datetime.now(timezone.utc)
        self._running = False
        self._poll_task: asyncio.Task | None = None
        self._connection_task: asyncio.Task | None = None
        self._health_runner: web.AppRunner | None = None
        self._shutdown_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start all components and wait for a shutdown signal"""
        logger.info(
            f"Starting field relay v{__version__} ({len(self.registry)} devices)",
            extra={"device_count": len(self.registry)},
        )
        self._running = True

        if self.config.health.enabled:
            await self._start_health_server()

        self._poll_task = asyncio.create_task(self.poller.run(), name="poller")
        self._connection_task = asyncio.create_task(self.supervisor.run(), name="supervisor")

        self._setup_signal_handlers()

        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def stop(self) -> None:
        """Stop all components"""
        logger.info("Stopping field relay")
        self._running = False

        self.poller.stop()
        self.channel.close()

        for task in (self._poll_task, self._connection_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        await self.dispatcher.drain(COMMAND_DRAIN_TIMEOUT_S)
        await self.adapter.close()
        await self._stop_health_server()

        stats = self.channel.get_stats()
        logger.info(
            f"Field relay stopped (sent {stats['delivered']} batches, dropped {stats['dropped']})"
        )

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown signal handlers"""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except NotImplementedError:
                signal.signal(sig, lambda s, f: self._handle_shutdown())

    def _handle_shutdown(self) -> None:
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    def _on_state_change(self, old: ConnectionState, new: ConnectionState) -> None:
        if new == ConnectionState.CONNECTED:
            logger.info("Connected to collector", extra={"sessions": self.reconnect.sessions})
        elif old == ConnectionState.CONNECTED:
            logger.warning("Disconnected from collector")

    # Health server

    async def _start_health_server(self) -> None:
        """Start the health check HTTP server"""
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/status", self._status_handler)

        self._health_runner = web.AppRunner(app)
        await self._health_runner.setup()

        host, port = self.config.health.host, self.config.health.port
        site = web.TCPSite(self._health_runner, host, port)
        await site.start()

        logger.info(f"Health server started on {host}:{port}")

    async def _stop_health_server(self) -> None:
        if self._health_runner:
            await self._health_runner.cleanup()
            self._health_runner = None

    def get_health(self) -> dict[str, Any]:
        uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
        connected = self.supervisor.state == ConnectionState.CONNECTED
        return {
            "status": "healthy" if connected else "degraded",
            "service": "fieldrelay",
            "version": __version__,
            "uptime": int(uptime),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "connection": self.supervisor.state.value,
            "devices_online": self.registry.get_online_count(),
            "devices": len(self.registry),
        }

    def get_status(self) -> dict[str, Any]:
        return {
            **self.get_health(),
            "reconnect": self.reconnect.to_dict(),
            "channel": self.channel.get_stats(),
            "poller": self.poller.get_stats(),
            "commands": self.dispatcher.get_stats(),
            "device_status": self.registry.get_status_summary(),
        }

    async def _health_handler(self, request: web.Request) -> web.Response:
        return web.json_response(self.get_health())

    async def _status_handler(self, request: web.Request) -> web.Response:
        return web.json_response(self.get_status())


async def run_agent(config: RelayConfig) -> None:
    """Run the agent until SIGINT/SIGTERM"""
    agent = RelayAgent(config)
    try:
        await agent.start()
    finally:
        await agent.stop()
