"""Momentum: local-first sync engine for self-tracking entities."""

__version__ = "0.1.0"
