"""Planday API CLI module.

Provides command-line tools for bulk loading portal data.

Usage:
    python -m planday_api.cli load
    python -m planday_api.cli load --payrates --salaries --output employees.json
    python -m planday_api.cli check
"""
