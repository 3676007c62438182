"""
P1 Exporter - Telegram Reader

Turns a TCP byte stream into a lazy sequence of Readings.
"""

import asyncio
from typing import Optional

import structlog

from ..errors import DecodeError
from .parser import parse_telegram
from .reading import Reading

logger = structlog.get_logger(__name__)

START_MARKER = b"/"
END_MARKER = b"!"


class TelegramReader:
    """Async iterator over the telegrams of one connection.

    Iteration stops when the peer closes the stream between telegrams. Every
    read is bounded by ``read_timeout`` so a stalled feed raises
    ``asyncio.TimeoutError`` instead of hanging. Framing and checksum errors
    raise ``DecodeError``; the stream cannot be trusted after that and the
    caller is expected to drop the connection.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        read_timeout: Optional[float] = 2.0,
    ):
        self._reader = reader
        self._read_timeout = read_timeout
        self._skipped_bytes = 0

    def __aiter__(self) -> "TelegramReader":
        return self

    async def __anext__(self) -> Reading:
        if not await self._seek_start():
            raise StopAsyncIteration

        body = await self._read(self._reader.readuntil(END_MARKER))
        checksum = await self._read(self._reader.readline())

        return parse_telegram(START_MARKER + body, checksum)

    async def _seek_start(self) -> bool:
        """Skip to the next '/'. Returns False on a clean end of stream."""
        try:
            skipped = await self._read(self._reader.readuntil(START_MARKER))
        except DecodeError:
            if self._reader.at_eof():
                return False
            raise

        if len(skipped) > 1:
            self._skipped_bytes += len(skipped) - 1
            logger.debug("Skipped bytes before telegram start", count=len(skipped) - 1)
        return True

    async def _read(self, operation) -> bytes:
        try:
            return await asyncio.wait_for(operation, timeout=self._read_timeout)
        except asyncio.IncompleteReadError as e:
            raise DecodeError(
                f"Stream ended inside a telegram ({len(e.partial)} bytes buffered)"
            ) from None
        except asyncio.LimitOverrunError as e:
            raise DecodeError(f"Telegram exceeds maximum size ({e.consumed} bytes)") from None
        except ValueError as e:
            # readline() reports an overrun as ValueError
            raise DecodeError(str(e)) from None

    @property
    def skipped_bytes(self) -> int:
        return self._skipped_bytes
