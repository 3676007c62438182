"""
P1 Exporter - Reading Model

Structured result of decoding one DSMR telegram. Every field is optional:
a missing value means the telegram did not report it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple


class Tariff(str, Enum):
    """Tariff register selected by the meter."""
    LOW = "low"     # Tariff 1 (daltarief)
    HIGH = "high"   # Tariff 2 (normaaltarief)

    @classmethod
    def from_code(cls, code: int) -> "Tariff":
        """Map the meter's tariff indicator code to a register."""
        if code == 1:
            return cls.LOW
        if code == 2:
            return cls.HIGH
        raise ValueError(f"Unknown tariff indicator: {code}")


# M-Bus device type reported by gas meters
GAS_METER_DEVICE_TYPE = 3


@dataclass
class SubDevice:
    """Auxiliary meter reporting through the same P1 port."""
    channel: int
    device_type: Optional[int] = None
    reading: Optional[Tuple[datetime, float]] = None  # (capture time, cumulative value)

    @property
    def is_gas_meter(self) -> bool:
        return self.device_type == GAS_METER_DEVICE_TYPE


@dataclass
class Reading:
    """One decoded telegram."""
    header: Optional[str] = None
    version: Optional[str] = None
    equipment_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    # Instantaneous power (kW)
    power_delivered: Optional[float] = None
    power_received: Optional[float] = None

    # Cumulative energy per tariff register (kWh)
    energy_delivered: Dict[Tariff, float] = field(default_factory=dict)
    energy_received: Dict[Tariff, float] = field(default_factory=dict)

    tariff: Optional[Tariff] = None
    sub_devices: List[SubDevice] = field(default_factory=list)

    def sub_device(self, channel: int) -> SubDevice:
        """Get or create the sub-device on an M-Bus channel."""
        for device in self.sub_devices:
            if device.channel == channel:
                return device
        device = SubDevice(channel=channel)
        self.sub_devices.append(device)
        return device
