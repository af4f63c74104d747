"""Repair shop appointment booking backed by a shared Google Calendar."""

__version__ = "1.0.0"
