"""Offline-first synchronization core for the clinic management app."""

__version__ = "0.1.0"
