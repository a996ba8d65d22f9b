"""Feed ingestion package bootstrap."""

from .settings import ConfigurationError, FeedSource, Settings, get_settings, reset_settings_cache  # noqa: F401

__all__ = [
    "ConfigurationError",
    "FeedSource",
    "Settings",
    "get_settings",
    "reset_settings_cache",
]
