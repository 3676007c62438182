"""
P1 Exporter - Metrics Store Tests
"""

import threading

import pytest

from p1_exporter.metrics import MetricsStore, build_registry
from p1_exporter.metrics.store import (
    ENERGY_CONSUMED,
    ENERGY_PRODUCED,
    GAS_CONSUMED,
    POWER_CONSUMED,
    POWER_PRODUCED,
)
from p1_exporter.telegram import Tariff


@pytest.fixture
def store():
    return MetricsStore()


class TestMetricsStore:
    """Test slot updates and snapshots."""

    def test_starts_unset(self, store):
        snapshot = store.snapshot()

        assert snapshot.power_consumed_kw is None
        assert snapshot.power_produced_kw is None
        assert snapshot.energy_consumed_kwh == {}
        assert snapshot.energy_produced_kwh == {}
        assert snapshot.active_tariff == {}
        assert snapshot.gas_consumed_m3 is None

    def test_update_touches_one_field(self, store):
        """Test updating power leaves every other field unchanged."""
        store.update(GAS_CONSUMED, 987.654)
        store.update(ENERGY_PRODUCED, 10.0, tariff=Tariff.LOW)
        before = store.snapshot()

        store.update(POWER_CONSUMED, 1.234)

        after = store.snapshot()
        assert after.power_consumed_kw == 1.234
        assert after.power_produced_kw == before.power_produced_kw
        assert after.energy_consumed_kwh == before.energy_consumed_kwh
        assert after.energy_produced_kwh == before.energy_produced_kwh
        assert after.active_tariff == before.active_tariff
        assert after.gas_consumed_m3 == before.gas_consumed_m3

    def test_tariff_slots_are_independent(self, store):
        store.update(ENERGY_CONSUMED, 1000.5, tariff=Tariff.LOW)
        store.update(ENERGY_CONSUMED, 2000.0, tariff=Tariff.HIGH)

        assert store.get(ENERGY_CONSUMED, Tariff.LOW) == 1000.5
        assert store.get(ENERGY_CONSUMED, "high") == 2000.0

    def test_counters_pass_through_decreases(self, store):
        """Test a meter reset is exposed as-is."""
        store.update(GAS_CONSUMED, 500.0)
        store.update(GAS_CONSUMED, 1.5)

        assert store.get(GAS_CONSUMED) == 1.5

    def test_unknown_field(self, store):
        with pytest.raises(KeyError):
            store.update("voltage_v", 230.0)

    def test_tariff_field_requires_tariff(self, store):
        with pytest.raises(KeyError):
            store.update(ENERGY_CONSUMED, 1.0)

    def test_scalar_field_rejects_tariff(self, store):
        with pytest.raises(KeyError):
            store.update(POWER_PRODUCED, 1.0, tariff=Tariff.LOW)

    def test_snapshot_is_a_copy(self, store):
        store.update(ENERGY_CONSUMED, 1.0, tariff=Tariff.LOW)
        snapshot = store.snapshot()

        store.update(ENERGY_CONSUMED, 2.0, tariff=Tariff.LOW)

        assert snapshot.energy_consumed_kwh[Tariff.LOW] == 1.0


class TestActiveTariff:
    """Test the tariff indicator set."""

    def test_unset_before_first_observation(self, store):
        assert store.active_tariff(Tariff.LOW) is None
        assert store.active_tariff(Tariff.HIGH) is None

    def test_exclusive(self, store):
        store.set_active_tariff(Tariff.HIGH)

        for _ in range(3):
            assert store.active_tariff(Tariff.HIGH) == 1
            assert store.active_tariff(Tariff.LOW) == 0

    def test_switch(self, store):
        store.set_active_tariff(Tariff.HIGH)
        store.set_active_tariff("low")

        assert store.snapshot().active_tariff == {Tariff.LOW: 1, Tariff.HIGH: 0}

    def test_repeated_set_keeps_slot(self, store):
        store.set_active_tariff(Tariff.LOW)
        store.set_active_tariff(Tariff.LOW)

        assert store.snapshot().active_tariff == {Tariff.LOW: 1, Tariff.HIGH: 0}

    def test_invalid_tariff(self, store):
        with pytest.raises(ValueError):
            store.set_active_tariff("peak")


class TestConcurrentAccess:
    """Test one writer and several readers sharing the store."""

    def test_readers_never_see_foreign_values(self, store):
        store.update(GAS_CONSUMED, 42.0)
        errors = []

        def writer():
            for i in range(2000):
                store.update(POWER_CONSUMED, float(i))

        def reader():
            for _ in range(2000):
                snapshot = store.snapshot()
                if snapshot.gas_consumed_m3 != 42.0:
                    errors.append(snapshot.gas_consumed_m3)
                power = snapshot.power_consumed_kw
                if power is not None and not 0 <= power < 2000:
                    errors.append(power)

        threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert store.get(POWER_CONSUMED) == 1999.0


class TestRegistry:
    """Test the prometheus_client view of the store."""

    def test_samples(self, store):
        registry = build_registry(store)
        store.update(POWER_CONSUMED, 1.234)
        store.update(ENERGY_CONSUMED, 1000.5, tariff=Tariff.LOW)
        store.update(GAS_CONSUMED, 987.654)
        store.set_active_tariff(Tariff.HIGH)

        assert registry.get_sample_value("p1_power_consumed_kilowatts") == 1.234
        assert registry.get_sample_value(
            "p1_energy_consumed_kilowatt_hours_total", {"tariff": "low"}
        ) == 1000.5
        assert registry.get_sample_value("p1_active_tariff", {"tariff": "high"}) == 1
        assert registry.get_sample_value("p1_active_tariff", {"tariff": "low"}) == 0
        assert registry.get_sample_value("p1_gas_consumed_cubic_meters_total") == 987.654

    def test_unset_fields_are_omitted(self, store):
        registry = build_registry(store)
        store.update(ENERGY_PRODUCED, 5.0, tariff=Tariff.HIGH)

        assert registry.get_sample_value("p1_power_consumed_kilowatts") is None
        assert registry.get_sample_value("p1_gas_consumed_cubic_meters_total") is None
        assert registry.get_sample_value(
            "p1_energy_produced_kilowatt_hours_total", {"tariff": "low"}
        ) is None
        assert registry.get_sample_value(
            "p1_energy_produced_kilowatt_hours_total", {"tariff": "high"}
        ) == 5.0

    def test_custom_prefix(self, store):
        registry = build_registry(store, prefix="meter")
        store.update(POWER_PRODUCED, 0.5)

        assert registry.get_sample_value("meter_power_produced_kilowatts") == 0.5
