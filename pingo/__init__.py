"""Pingo: family check-in tracking with overdue alerts."""

__version__ = "3.0.0"
