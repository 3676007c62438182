"""
P1 Exporter - Metrics Store

Latest known meter values, written by the collector and read by the
exporter. Every value lives in its own slot with its own lock, so a writer
updating one field never blocks readers of another. A snapshot is therefore
not transactional across fields: it may combine values from two telegrams
if a scrape races an update.

Counters hold the meter's absolute register value. A meter reset makes them
go backwards and that is passed through unchanged.
"""

import threading
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple, Union

from ..telegram.reading import Tariff

# Unkeyed fields
POWER_CONSUMED = "power_consumed_kw"
POWER_PRODUCED = "power_produced_kw"
GAS_CONSUMED = "gas_consumed_m3"

# Fields with one slot per tariff register
ENERGY_CONSUMED = "energy_consumed_kwh"
ENERGY_PRODUCED = "energy_produced_kwh"

SCALAR_FIELDS = (POWER_CONSUMED, POWER_PRODUCED, GAS_CONSUMED)
TARIFF_FIELDS = (ENERGY_CONSUMED, ENERGY_PRODUCED)


class _Slot:
    """A single independently locked value. None means unset."""

    __slots__ = ("_lock", "_value")

    def __init__(self):
        self._lock = threading.Lock()
        self._value: Optional[float] = None

    def set(self, value: float) -> None:
        with self._lock:
            self._value = value

    def get(self) -> Optional[float]:
        with self._lock:
            return self._value


@dataclass(frozen=True)
class MetricsSnapshot:
    """Point-in-time copy of the store. Unset slots are None or absent."""
    power_consumed_kw: Optional[float]
    power_produced_kw: Optional[float]
    energy_consumed_kwh: Mapping[Tariff, float]
    energy_produced_kwh: Mapping[Tariff, float]
    active_tariff: Mapping[Tariff, int]
    gas_consumed_m3: Optional[float]


class MetricsStore:
    """Concurrency-safe aggregate of the latest readings."""

    def __init__(self):
        self._slots: Dict[Tuple[str, Optional[Tariff]], _Slot] = {}
        for name in SCALAR_FIELDS:
            self._slots[(name, None)] = _Slot()
        for name in TARIFF_FIELDS:
            for tariff in Tariff:
                self._slots[(name, tariff)] = _Slot()

        self._active_tariff: Dict[Tariff, _Slot] = {tariff: _Slot() for tariff in Tariff}

    def _slot(self, field: str, tariff: Optional[Union[Tariff, str]]) -> _Slot:
        key = (field, Tariff(tariff) if tariff is not None else None)
        try:
            return self._slots[key]
        except KeyError:
            if field in TARIFF_FIELDS:
                raise KeyError(f"Metric {field} requires a tariff") from None
            if field in SCALAR_FIELDS:
                raise KeyError(f"Metric {field} is not keyed by tariff") from None
            raise KeyError(f"Unknown metric: {field}") from None

    def update(self, field: str, value: float, tariff: Optional[Union[Tariff, str]] = None) -> None:
        """Overwrite one slot with the latest value."""
        self._slot(field, tariff).set(value)

    def get(self, field: str, tariff: Optional[Union[Tariff, str]] = None) -> Optional[float]:
        """Read one slot. Returns None until the field is first observed."""
        return self._slot(field, tariff).get()

    def set_active_tariff(self, tariff: Union[Tariff, str]) -> None:
        """Mark exactly one tariff register as active."""
        active = Tariff(tariff)
        for other, slot in self._active_tariff.items():
            if other is not active:
                slot.set(0)
        self._active_tariff[active].set(1)

    def active_tariff(self, tariff: Union[Tariff, str]) -> Optional[int]:
        """Indicator value for one tariff, None before the first observation."""
        value = self._active_tariff[Tariff(tariff)].get()
        return None if value is None else int(value)

    def snapshot(self) -> MetricsSnapshot:
        return MetricsSnapshot(
            power_consumed_kw=self.get(POWER_CONSUMED),
            power_produced_kw=self.get(POWER_PRODUCED),
            energy_consumed_kwh=self._tariff_values(ENERGY_CONSUMED),
            energy_produced_kwh=self._tariff_values(ENERGY_PRODUCED),
            active_tariff={
                tariff: int(value)
                for tariff, value in ((t, s.get()) for t, s in self._active_tariff.items())
                if value is not None
            },
            gas_consumed_m3=self.get(GAS_CONSUMED),
        )

    def _tariff_values(self, field: str) -> Dict[Tariff, float]:
        values = {}
        for tariff in Tariff:
            value = self.get(field, tariff)
            if value is not None:
                values[tariff] = value
        return values
