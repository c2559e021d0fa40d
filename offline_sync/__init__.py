"""Offline-first synchronization core for the attractions cache."""

__version__ = "0.1.0"
