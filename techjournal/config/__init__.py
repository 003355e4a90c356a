"""Loader configuration."""

from techjournal.config.loader_config import ClickHouseConfig, ConfigurationError, LoaderConfig, get_config

__all__ = [
    "ClickHouseConfig",
    "ConfigurationError",
    "LoaderConfig",
    "get_config",
]
