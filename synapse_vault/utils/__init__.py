"""Utilities module for Synapse Vault."""

from .logging_config import setup_logging, get_logger, LoggingConfig
from .exceptions import (
    ErrorCode,
    VaultError,
    ConfigurationError,
    FileProcessingError,
    CryptoError,
    AuthenticationError,
    FormatError,
    LockedError,
    InvalidCredentialsError,
    NoPasswordSetError,
    StorageCorruptionError,
    PartialRotationFailure,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "LoggingConfig",
    "ErrorCode",
    "VaultError",
    "ConfigurationError",
    "FileProcessingError",
    "CryptoError",
    "AuthenticationError",
    "FormatError",
    "LockedError",
    "InvalidCredentialsError",
    "NoPasswordSetError",
    "StorageCorruptionError",
    "PartialRotationFailure",
]
