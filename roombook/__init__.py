"""Conflict-free room booking for a single studio day."""

__version__ = "1.0.0"
