"""Configuration module for Synapse Vault."""

from .settings import (
    Config,
    StorageConfig,
    SecurityConfig,
    AppConfig,
    LogSettings,
    DEFAULT_CONFIG_PATH,
)
from .formats import FormatFamily, FormatMapping, FORMAT_MAPPING

__all__ = [
    "Config",
    "StorageConfig",
    "SecurityConfig",
    "AppConfig",
    "LogSettings",
    "DEFAULT_CONFIG_PATH",
    "FormatFamily",
    "FormatMapping",
    "FORMAT_MAPPING",
]
