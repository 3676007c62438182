"""
P1 Exporter - Metrics Package

Shared metrics store and its prometheus_client registry.
"""

from .registry import StoreCollector, build_registry
from .store import MetricsSnapshot, MetricsStore

__all__ = ["MetricsStore", "MetricsSnapshot", "StoreCollector", "build_registry"]
