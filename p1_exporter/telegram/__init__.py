"""
P1 Exporter - Telegram Package

Decodes DSMR P1 telegrams from a byte stream into Reading records.
"""

from .parser import crc16, parse_telegram
from .reader import TelegramReader
from .reading import GAS_METER_DEVICE_TYPE, Reading, SubDevice, Tariff

__all__ = [
    "crc16",
    "parse_telegram",
    "TelegramReader",
    "GAS_METER_DEVICE_TYPE",
    "Reading",
    "SubDevice",
    "Tariff",
]
