"""Planday API client with an adaptive rate-limited request scheduler."""

__version__ = "0.1.0"
