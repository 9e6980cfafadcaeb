"""
Async Modbus Serial Client

Wrapper around pymodbus for the S88 CO2 sensor on a direct serial line.
The sensor answers Modbus RTU on its "any address" slave id (0xFE);
input register 3 holds the CO2 concentration in ppm.
"""

import asyncio
from dataclasses import dataclass

from pymodbus.client import AsyncModbusSerialClient
from pymodbus.exceptions import ModbusException

from fieldrelay.common.config import DeviceConfig
from fieldrelay.common.exceptions import DeviceActionError, DeviceQueryError
from fieldrelay.common.logging_setup import get_service_logger, log_device_read
from fieldrelay.services.relay.protocol import Reading

logger = get_service_logger("device.modbus")

# S88 sensor register map
S88_ANY_ADDRESS = 0xFE
S88_CO2_REGISTER = 3


@dataclass
class ReadResult:
    """Result of a register read operation"""
    success: bool
    value: int | None = None
    raw_registers: list[int] | None = None
    error: str | None = None


class ModbusSerialClient:
    """
    Async Modbus RTU serial client for a direct RS232/RS485 connection.

    Access to one port is serialized with a lock, so overlapping polls
    never interleave request/response frames.
    """

    def __init__(
        self,
        port: str,
        baudrate: int = 9600,
        parity: str = "N",
        stopbits: int = 1,
        timeout: float = 1.0,
    ):
        self.port = port
        self.baudrate = baudrate
        self.parity = parity
        self.stopbits = stopbits
        self.timeout = timeout

        self._client: AsyncModbusSerialClient | None = None
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connected and self._client is not None

    async def connect(self) -> bool:
        """Open the serial port"""
        if self._connected:
            return True

        try:
            self._client = AsyncModbusSerialClient(
                port=self.port,
                baudrate=self.baudrate,
                parity=self.parity,
                stopbits=self.stopbits,
                timeout=self.timeout,
            )

            await self._client.connect()
            self._connected = self._client.connected

            if self._connected:
                logger.debug(f"Connected to serial port {self.port} (baud={self.baudrate})")
            else:
                logger.warning(f"Failed to open serial port {self.port}")

            return self._connected

        except Exception as e:
            logger.error(f"Serial connection error on {self.port}: {e}")
            self._connected = False
            return False

    async def disconnect(self) -> None:
        """Close the serial port"""
        if self._client:
            self._client.close()
            self._client = None
        self._connected = False
        logger.debug(f"Disconnected from serial port {self.port}")

    async def read_input_registers(
        self,
        address: int,
        count: int = 1,
        slave_id: int = S88_ANY_ADDRESS,
    ) -> ReadResult:
        """Read input registers"""
        async with self._lock:
            if not await self.connect():
                return ReadResult(success=False, error=f"Cannot open serial port {self.port}")

            try:
                response = await self._client.read_input_registers(
                    address=address,
                    count=count,
                    device_id=slave_id,
                )

                if response.isError():
                    return ReadResult(success=False, error=f"Modbus error: {response}")

                registers = list(response.registers)
                return ReadResult(
                    success=True,
                    value=registers[0] if registers else None,
                    raw_registers=registers,
                )

            except ModbusException as e:
                # Reopen on the next read
                await self.disconnect()
                return ReadResult(success=False, error=f"Modbus exception: {e}")
            except asyncio.TimeoutError:
                return ReadResult(success=False, error="Read timeout")


class S88SensorBackend:
    """S88 CO2 sensor backend (one serial client per port)"""

    def __init__(self):
        self._clients: dict[str, ModbusSerialClient] = {}

    def _client_for(self, device: DeviceConfig) -> ModbusSerialClient:
        client = self._clients.get(device.address)
        if client is None:
            client = ModbusSerialClient(
                port=device.address,
                baudrate=int(device.option("baudrate", 9600)),
                timeout=float(device.option("timeout_s", 1.0)),
            )
            self._clients[device.address] = client
        return client

    async def get_readings(self, device: DeviceConfig) -> list[Reading]:
        client = self._client_for(device)
        result = await client.read_input_registers(
            address=S88_CO2_REGISTER,
            count=1,
            slave_id=int(device.option("slave_id", S88_ANY_ADDRESS)),
        )

        if not result.success or result.value is None:
            log_device_read(logger, device.name, "co2", result.error, success=False)
            raise DeviceQueryError(result.error or "empty response", device.name)

        log_device_read(logger, device.name, "co2", result.value)
        return [Reading(device=device.name, channel="co2", value=result.value)]

    async def set_state(self, device: DeviceConfig, on: bool) -> None:
        raise DeviceActionError("sensor has no switchable state", device.name)

    async def close(self) -> None:
        for client in self._clients.values():
            await client.disconnect()
        self._clients.clear()
