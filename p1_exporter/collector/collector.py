"""
P1 Exporter - Meter Collector

Keeps a TCP connection to the P1 reader open, decodes the telegrams it sends
and applies them to the metrics store. Any connection or decode failure
drops the connection and reconnects after a fixed delay, forever.
"""

import asyncio
from typing import Optional

import structlog

from ..errors import DecodeError
from ..metrics.store import (
    ENERGY_CONSUMED,
    ENERGY_PRODUCED,
    GAS_CONSUMED,
    POWER_CONSUMED,
    POWER_PRODUCED,
    MetricsStore,
)
from ..telegram import Reading, TelegramReader

logger = structlog.get_logger(__name__)


def apply_reading(store: MetricsStore, reading: Reading) -> None:
    """Copy every populated field of a reading into the store."""
    if reading.power_delivered is not None:
        store.update(POWER_CONSUMED, reading.power_delivered)
    if reading.power_received is not None:
        store.update(POWER_PRODUCED, reading.power_received)

    for tariff, value in reading.energy_delivered.items():
        store.update(ENERGY_CONSUMED, value, tariff=tariff)
    for tariff, value in reading.energy_received.items():
        store.update(ENERGY_PRODUCED, value, tariff=tariff)

    if reading.tariff is not None:
        store.set_active_tariff(reading.tariff)

    for device in reading.sub_devices:
        if device.is_gas_meter and device.reading is not None:
            _, volume = device.reading
            store.update(GAS_CONSUMED, volume)


class MeterCollector:
    """Background task feeding the metrics store from a P1 reader."""

    RETRY_DELAY = 5.0  # seconds between connection attempts
    READ_TIMEOUT = 2.0  # a silent feed is treated as a failure
    CONNECT_TIMEOUT = 5.0
    MAX_TELEGRAM_SIZE = 16 * 1024

    def __init__(
        self,
        store: MetricsStore,
        host: str,
        port: int,
        retry_delay: float = RETRY_DELAY,
        read_timeout: float = READ_TIMEOUT,
        connect_timeout: float = CONNECT_TIMEOUT,
        max_telegram_size: int = MAX_TELEGRAM_SIZE,
    ):
        self._store = store
        self._host = host
        self._port = port
        self._retry_delay = retry_delay
        self._read_timeout = read_timeout
        self._connect_timeout = connect_timeout
        self._max_telegram_size = max_telegram_size

        self._running = False
        self._connected = False
        self._task: Optional[asyncio.Task] = None
        self._connection_attempts = 0
        self._telegrams_applied = 0

    @property
    def address(self) -> str:
        return f"{self._host}:{self._port}"

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def connection_attempts(self) -> int:
        return self._connection_attempts

    @property
    def telegrams_applied(self) -> int:
        return self._telegrams_applied

    async def start(self) -> None:
        """Start the collection task."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._collection_loop())
        logger.info(
            "Meter collector started",
            address=self.address,
            retry_delay=self._retry_delay,
            read_timeout=self._read_timeout,
        )

    async def stop(self) -> None:
        """Stop the collection task."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Meter collector stopped")

    async def _collection_loop(self) -> None:
        """Connect, stream, and reconnect after any failure."""
        while self._running:
            self._connection_attempts += 1
            try:
                await self._collect()
            except asyncio.CancelledError:
                raise
            except DecodeError as e:
                logger.warning("Invalid telegram, dropping connection", address=self.address, error=str(e))
            except asyncio.TimeoutError:
                logger.warning("P1 reader timed out", address=self.address)
            except OSError as e:
                logger.warning("P1 reader connection failed", address=self.address, error=str(e))
            except Exception as e:
                logger.exception("Collection error", address=self.address, error=str(e))

            logger.debug("Reconnecting to P1 reader", retry_in=self._retry_delay)
            await asyncio.sleep(self._retry_delay)

    async def _collect(self) -> None:
        """Read telegrams from one connection until it fails or closes."""
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(self._host, self._port, limit=self._max_telegram_size),
            timeout=self._connect_timeout,
        )
        self._connected = True
        logger.info("Connected to P1 reader", address=self.address)

        try:
            async for reading in TelegramReader(reader, read_timeout=self._read_timeout):
                apply_reading(self._store, reading)
                self._telegrams_applied += 1
                logger.debug(
                    "Telegram applied",
                    power_consumed=reading.power_delivered,
                    tariff=reading.tariff.value if reading.tariff else None,
                )

            logger.warning("P1 reader closed the connection", address=self.address)
        finally:
            self._connected = False
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug("Error closing P1 reader connection", error=str(e))
