"""Publishes windowed sensor-stream aggregates into an LDES in LDP container on a Solid pod."""

__version__ = "0.1.0"
