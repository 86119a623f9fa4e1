"""Configuration module."""

from .settings import (
    AppSettings,
    DatabaseSettings,
    FanoutSettings,
    SchedulerSettings,
    get_settings,
    clear_settings_cache,
)

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "FanoutSettings",
    "SchedulerSettings",
    "get_settings",
    "clear_settings_cache",
]
