"""Configuration module."""

from config.settings import (
    settings,
    Settings,
    SourceSettings,
    CacheSettings,
    PregameModelSettings,
    RealtimeSettings,
    PollSettings,
)

__all__ = [
    "settings",
    "Settings",
    "SourceSettings",
    "CacheSettings",
    "PregameModelSettings",
    "RealtimeSettings",
    "PollSettings",
]
