"""
P1 Exporter

Reads DSMR telegrams from a smart meter P1 port exposed over TCP and serves
the latest power, energy, tariff and gas readings as OpenMetrics.
"""

__version__ = "1.0.0"
