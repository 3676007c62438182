"""
P1 Exporter - Telegram Parser

Verifies and parses a single DSMR P1 telegram into a Reading.

A telegram looks like::

    /ISk5\\2MT382-1000

    1-3:0.2.8(50)
    0-0:1.0.0(170108161107W)
    1-0:1.8.1(001234.567*kWh)
    ...
    0-1:24.2.1(170108160000W)(00987.654*m3)
    !ABCD

The CRC16 covers every byte from the leading ``/`` up to and including the
``!`` and is sent as four hex digits after it.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List

import structlog

from ..errors import DecodeError
from .reading import Reading, Tariff

logger = structlog.get_logger(__name__)

# OBIS reference followed by one or more "(value)" groups
LINE_PATTERN = re.compile(r"^(\d+-\d+:\d+\.\d+\.\d+)((?:\([^()]*\))+)$")
VALUE_PATTERN = re.compile(r"\(([^()]*)\)")
SUB_DEVICE_PATTERN = re.compile(r"^0-(\d+):24\.(1\.0|2\.1)$")

# DSMR timestamps end with S (summer time) or W (winter time)
TIMEZONES = {
    "S": timezone(timedelta(hours=2)),
    "W": timezone(timedelta(hours=1)),
}


def crc16(data: bytes) -> int:
    """CRC16/ARC as used by DSMR 4 and later."""
    crc = 0
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 1:
                crc >>= 1
                crc ^= 0xA001
            else:
                crc >>= 1
    return crc


def parse_number(value: str) -> float:
    """Parse '001234.567*kWh' into 1234.567."""
    number = value.split("*", 1)[0]
    try:
        return float(number)
    except ValueError:
        raise DecodeError(f"Invalid numeric value: {value!r}") from None


def parse_timestamp(value: str) -> datetime:
    """Parse a DSMR 'YYMMDDhhmmssX' timestamp."""
    if len(value) != 13 or value[-1] not in TIMEZONES:
        raise DecodeError(f"Invalid timestamp: {value!r}")
    try:
        parsed = datetime.strptime(value[:12], "%y%m%d%H%M%S")
    except ValueError:
        raise DecodeError(f"Invalid timestamp: {value!r}") from None
    return parsed.replace(tzinfo=TIMEZONES[value[-1]])


def _parse_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise DecodeError(f"Invalid integer value: {value!r}") from None


def _set_tariff(reading: Reading, values: List[str]) -> None:
    # Unknown codes leave the tariff unset
    code = _parse_int(values[0])
    try:
        reading.tariff = Tariff.from_code(code)
    except ValueError:
        logger.warning("Ignoring unknown tariff indicator", code=code)


def _energy(attr: str, tariff: Tariff) -> Callable[[Reading, List[str]], None]:
    def handler(reading: Reading, values: List[str]) -> None:
        getattr(reading, attr)[tariff] = parse_number(values[0])
    return handler


def _scalar(attr: str, convert: Callable[[str], object]) -> Callable[[Reading, List[str]], None]:
    def handler(reading: Reading, values: List[str]) -> None:
        setattr(reading, attr, convert(values[0]))
    return handler


HANDLERS: Dict[str, Callable[[Reading, List[str]], None]] = {
    "1-3:0.2.8": _scalar("version", str),
    "0-0:1.0.0": _scalar("timestamp", parse_timestamp),
    "0-0:96.1.1": _scalar("equipment_id", str),
    "1-0:1.7.0": _scalar("power_delivered", parse_number),
    "1-0:2.7.0": _scalar("power_received", parse_number),
    "1-0:1.8.1": _energy("energy_delivered", Tariff.LOW),
    "1-0:1.8.2": _energy("energy_delivered", Tariff.HIGH),
    "1-0:2.8.1": _energy("energy_received", Tariff.LOW),
    "1-0:2.8.2": _energy("energy_received", Tariff.HIGH),
    "0-0:96.14.0": _set_tariff,
}


def _parse_sub_device(reading: Reading, channel: int, kind: str, values: List[str]) -> None:
    device = reading.sub_device(channel)
    if kind == "1.0":
        device.device_type = _parse_int(values[0])
        return

    if len(values) < 2:
        raise DecodeError(f"Sub-device reading needs a timestamp and a value: {values!r}")
    device.reading = (parse_timestamp(values[0]), parse_number(values[1]))


def verify_checksum(frame: bytes, checksum: bytes) -> None:
    """Raise DecodeError unless checksum matches the CRC16 of frame."""
    text = checksum.strip()
    try:
        expected = int(text.decode("ascii"), 16)
    except (UnicodeDecodeError, ValueError):
        raise DecodeError(f"Invalid checksum field: {text!r}") from None

    if len(text) != 4:
        raise DecodeError(f"Invalid checksum field: {text!r}")

    actual = crc16(frame)
    if actual != expected:
        raise DecodeError(f"Checksum mismatch: expected {expected:04X}, got {actual:04X}")


def parse_telegram(frame: bytes, checksum: bytes) -> Reading:
    """Verify and parse one telegram.

    ``frame`` runs from the leading ``/`` through the closing ``!`` and
    ``checksum`` holds the hex digits that followed it.
    """
    if not frame.startswith(b"/") or not frame.endswith(b"!"):
        raise DecodeError("Telegram is not delimited by '/' and '!'")

    verify_checksum(frame, checksum)

    try:
        text = frame.decode("ascii")
    except UnicodeDecodeError:
        raise DecodeError("Telegram contains non-ASCII data") from None

    lines = text[:-1].splitlines()
    reading = Reading(header=lines[0][1:].strip())

    for line in lines[1:]:
        line = line.strip()
        if not line:
            continue

        match = LINE_PATTERN.match(line)
        if not match:
            raise DecodeError(f"Malformed telegram line: {line!r}")

        obis, groups = match.groups()
        values = VALUE_PATTERN.findall(groups)

        handler = HANDLERS.get(obis)
        if handler:
            handler(reading, values)
            continue

        sub_device = SUB_DEVICE_PATTERN.match(obis)
        if sub_device:
            _parse_sub_device(reading, int(sub_device.group(1)), sub_device.group(2), values)

    return reading

