"""
P1 Exporter - Metrics Registry

Exposes a MetricsStore to prometheus_client. Each collect() call takes a
fresh snapshot, so the registry always encodes the latest values.
"""

from typing import Iterator

import structlog
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric
from prometheus_client.registry import Collector, CollectorRegistry

from .store import MetricsStore, MetricsSnapshot

logger = structlog.get_logger(__name__)

PREFIX = "p1"


class StoreCollector(Collector):
    """prometheus_client collector backed by a MetricsStore."""

    def __init__(self, store: MetricsStore, prefix: str = PREFIX):
        self._store = store
        self._prefix = prefix

    def _name(self, name: str) -> str:
        return f"{self._prefix}_{name}"

    def collect(self) -> Iterator[Metric]:
        snapshot = self._store.snapshot()

        yield from self._power(snapshot)
        yield from self._energy(snapshot)
        yield from self._tariff(snapshot)
        yield from self._gas(snapshot)

    def _power(self, snapshot: MetricsSnapshot) -> Iterator[Metric]:
        if snapshot.power_consumed_kw is not None:
            yield GaugeMetricFamily(
                self._name("power_consumed_kilowatts"),
                "Power consumed",
                value=snapshot.power_consumed_kw,
            )
        if snapshot.power_produced_kw is not None:
            yield GaugeMetricFamily(
                self._name("power_produced_kilowatts"),
                "Power produced",
                value=snapshot.power_produced_kw,
            )

    def _energy(self, snapshot: MetricsSnapshot) -> Iterator[Metric]:
        for name, documentation, values in (
            ("energy_consumed_kilowatt_hours", "Total consumed energy", snapshot.energy_consumed_kwh),
            ("energy_produced_kilowatt_hours", "Total produced energy", snapshot.energy_produced_kwh),
        ):
            if not values:
                continue
            family = CounterMetricFamily(self._name(name), documentation, labels=["tariff"])
            for tariff, value in values.items():
                family.add_metric([tariff.value], value)
            yield family

    def _tariff(self, snapshot: MetricsSnapshot) -> Iterator[Metric]:
        if not snapshot.active_tariff:
            return
        family = GaugeMetricFamily(
            self._name("active_tariff"),
            "Currently active tariff register",
            labels=["tariff"],
        )
        for tariff, value in snapshot.active_tariff.items():
            family.add_metric([tariff.value], value)
        yield family

    def _gas(self, snapshot: MetricsSnapshot) -> Iterator[Metric]:
        if snapshot.gas_consumed_m3 is not None:
            yield CounterMetricFamily(
                self._name("gas_consumed_cubic_meters"),
                "Total consumed natural gas",
                value=snapshot.gas_consumed_m3,
            )


def build_registry(store: MetricsStore, prefix: str = PREFIX) -> CollectorRegistry:
    """Create a registry holding only the meter metrics."""
    registry = CollectorRegistry(auto_describe=False)
    registry.register(StoreCollector(store, prefix=prefix))
    logger.debug("Metrics registry created", prefix=prefix)
    return registry
