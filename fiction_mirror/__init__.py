"""Incremental mirror for serialized web fiction."""

__version__ = "0.1.0"
