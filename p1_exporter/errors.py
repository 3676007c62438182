"""
P1 Exporter - Errors

Exception types shared across the collector, decoder and application.
"""


class P1ExporterError(Exception):
    """Base class for all P1 exporter errors."""


class DecodeError(P1ExporterError):
    """A telegram could not be framed, verified or parsed."""


class ConfigError(P1ExporterError):
    """Invalid configuration or command line arguments."""
