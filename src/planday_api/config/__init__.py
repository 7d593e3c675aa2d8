"""Configuration management."""

from planday_api.config.settings import SchedulerSettings, get_settings

__all__ = [
    "SchedulerSettings",
    "get_settings",
]
