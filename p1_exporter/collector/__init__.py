"""
P1 Exporter - Collector Package

Streams telegrams from the P1 reader into the metrics store.
"""

from .collector import MeterCollector, apply_reading

__all__ = ["MeterCollector", "apply_reading"]
