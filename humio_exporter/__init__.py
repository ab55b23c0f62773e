"""Prometheus exporter publishing Humio query results as gauges."""

__version__ = "0.1.0"
