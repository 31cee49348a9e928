"""Configuration package."""

from tagsync.config.settings import (
    AppSettings,
    ExecutorSettings,
    Settings,
    SupabaseSettings,
    TagSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "ExecutorSettings",
    "Settings",
    "SupabaseSettings",
    "TagSettings",
    "get_settings",
    "validate_all_settings",
]
