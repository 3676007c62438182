"""
P1 Exporter - Test fixtures

Telegram builders and a fake P1 reader serving canned byte streams.
"""

import asyncio
from typing import List, Optional

import pytest

from p1_exporter.telegram import crc16

HEADER = "ISk5\\2MT382-1000"

FULL_TELEGRAM_LINES = [
    "1-3:0.2.8(50)",
    "0-0:1.0.0(170108161107W)",
    "0-0:96.1.1(4530303331303033303031363939353135)",
    "1-0:1.8.1(001000.500*kWh)",
    "1-0:1.8.2(002000.250*kWh)",
    "1-0:2.8.1(000010.100*kWh)",
    "1-0:2.8.2(000020.200*kWh)",
    "0-0:96.14.0(0002)",
    "1-0:1.7.0(01.234*kW)",
    "1-0:2.7.0(00.000*kW)",
    "0-0:96.7.21(00004)",
    "1-0:99.97.0(2)(0-0:96.7.19)(101208152415W)(0000000240*s)(101208151004W)(0000000301*s)",
    "0-0:96.13.0()",
    "1-0:32.7.0(230.1*V)",
    "0-1:24.1.0(003)",
    "0-1:96.1.0(4730303339303031363532303530323136)",
    "0-1:24.2.1(170108160000W)(00987.654*m3)",
]


def build_frame(lines: List[str], header: str = HEADER) -> bytes:
    """Telegram from '/' through '!', without checksum."""
    return ("/" + header + "\r\n\r\n" + "".join(line + "\r\n" for line in lines) + "!").encode("ascii")


def build_telegram(lines: List[str], header: str = HEADER, checksum: Optional[int] = None) -> bytes:
    """Complete telegram with a valid (or the given) CRC16."""
    frame = build_frame(lines, header)
    crc = crc16(frame) if checksum is None else checksum
    return frame + f"{crc:04X}\r\n".encode("ascii")


@pytest.fixture
def full_telegram() -> bytes:
    return build_telegram(FULL_TELEGRAM_LINES)


async def wait_until(predicate, timeout: float = 3.0, interval: float = 0.01) -> None:
    """Poll predicate until it holds or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition not met before timeout")
        await asyncio.sleep(interval)


class FakeP1Reader:
    """TCP server sending one payload per accepted connection.

    The last payload is reused for any further connections. With
    ``close_after_send`` the server closes the socket after writing,
    otherwise it holds the connection open until stopped.
    """

    def __init__(self, payloads: List[bytes], close_after_send: bool = False):
        self.payloads = payloads
        self.close_after_send = close_after_send
        self.connections = 0
        self.port: Optional[int] = None
        self._server: Optional[asyncio.AbstractServer] = None
        self._closing: Optional[asyncio.Event] = None

    async def start(self) -> None:
        self._closing = asyncio.Event()
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        self._closing.set()
        self._server.close()
        await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        payload = self.payloads[min(self.connections, len(self.payloads) - 1)]
        self.connections += 1
        try:
            writer.write(payload)
            await writer.drain()
            if not self.close_after_send:
                await self._closing.wait()
        except ConnectionError:
            pass
        finally:
            writer.close()
