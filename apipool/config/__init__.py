"""Configuration module for the pooled upstream client."""

from .settings import (
    ConnectionOptions,
    LoggingSettings,
    PoolSettings,
    Settings,
    get_settings,
)


__all__ = [
    "ConnectionOptions",
    "LoggingSettings",
    "PoolSettings",
    "Settings",
    "get_settings",
]
