"""
P1 Exporter - Exporter Package

HTTP endpoint serving the metrics store as OpenMetrics text.
"""

from .server import CONTENT_TYPE, MetricsServer

__all__ = ["CONTENT_TYPE", "MetricsServer"]
