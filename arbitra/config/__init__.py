"""Configuration package."""

from arbitra.config.settings import (
    AppSettings,
    ChannelSettings,
    Settings,
    StoreSettings,
    default_app_data_root,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "ChannelSettings",
    "Settings",
    "StoreSettings",
    "default_app_data_root",
    "get_settings",
    "validate_all_settings",
]
