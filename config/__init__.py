# PATH: config/__init__.py
"""
Configuration loading utilities.
"""

from config.settings import (
    CONFIG_DIR,
    CacheSettings,
    LiveSettings,
    RetrySettings,
    SyncSettings,
    load_sync_settings,
    load_yaml,
)

__all__ = [
    "CONFIG_DIR",
    "CacheSettings",
    "LiveSettings",
    "RetrySettings",
    "SyncSettings",
    "load_sync_settings",
    "load_yaml",
]
