"""Delivery order prioritization, status transition and assignment engine."""

__version__ = "0.1.0"
