"""
Custom Exceptions
=================

Defines the exception taxonomy for Synapse Vault.
All exceptions include error codes for programmatic handling.
"""

from enum import Enum
from typing import Optional, List


class ErrorCode(Enum):
    """Error codes for programmatic error handling."""

    # General errors (1000-1099)
    UNKNOWN_ERROR = 1000
    CONFIGURATION_ERROR = 1001
    FILE_NOT_FOUND = 1002
    PERMISSION_DENIED = 1003

    # File processing errors (1100-1199)
    PROCESSING_FAILED = 1100
    RECORD_NOT_FOUND = 1101
    INVALID_TAGS = 1102
    MIGRATION_FAILED = 1103

    # Key custody errors (1200-1299)
    VAULT_LOCKED = 1200
    INVALID_CREDENTIALS = 1201
    NO_PASSWORD_SET = 1202
    MASTER_KEY_UNAVAILABLE = 1203

    # Cryptographic errors (1300-1399)
    ENCRYPTION_FAILED = 1300
    AUTHENTICATION_FAILED = 1301
    KEY_DERIVATION_FAILED = 1302
    SECURE_DELETE_FAILED = 1303
    INVALID_FORMAT = 1304

    # Storage errors (1400-1499)
    STORAGE_CORRUPTED = 1400
    KEY_RECORD_MISMATCH = 1401
    LEDGER_CORRUPTED = 1402
    ROTATION_INCOMPLETE = 1403


class VaultError(Exception):
    """Base exception for all Synapse Vault errors.

    Attributes:
        message: Human-readable error message.
        error_code: Programmatic error code.
        details: Additional error context.
        cause: Original exception that caused this error.
    """

    default_code = ErrorCode.UNKNOWN_ERROR

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        details: Optional[dict] = None,
        cause: Optional[Exception] = None
    ):
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Programmatic error code.
            details: Additional context as key-value pairs.
            cause: Original exception if wrapping another error.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        """Return a formatted error string."""
        result = f"[{self.error_code.name}] {self.message}"
        if self.details:
            result += f" | Details: {self.details}"
        if self.cause:
            result += f" | Caused by: {type(self.cause).__name__}: {self.cause}"
        return result

    def to_dict(self) -> dict:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "error_code": self.error_code.value,
            "error_name": self.error_code.name,
            "details": self.details,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(VaultError):
    """Raised when there's a configuration problem.

    Examples:
        - Invalid configuration file format
        - Unknown key derivation algorithm
    """

    default_code = ErrorCode.CONFIGURATION_ERROR

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type
        super().__init__(message, details=details, **kwargs)


class FileProcessingError(VaultError):
    """Raised when a vault file operation fails.

    Examples:
        - Source file cannot be read
        - Record id not present in the ledger
        - Export destination not writable
    """

    default_code = ErrorCode.PROCESSING_FAILED

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        file_id: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if file_path:
            details["file_path"] = file_path
        if file_id:
            details["file_id"] = file_id
        super().__init__(message, details=details, **kwargs)


class CryptoError(VaultError):
    """Base class for failures inside the cryptographic primitives."""

    default_code = ErrorCode.ENCRYPTION_FAILED

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        super().__init__(message, details=details, **kwargs)


class AuthenticationError(CryptoError):
    """Raised when an AEAD tag does not verify (tampered data or wrong key)."""

    default_code = ErrorCode.AUTHENTICATION_FAILED


class FormatError(CryptoError):
    """Raised when an envelope or derivation input is malformed."""

    default_code = ErrorCode.INVALID_FORMAT


class LockedError(VaultError):
    """Raised when an operation needs the master key while the vault is locked."""

    default_code = ErrorCode.VAULT_LOCKED

    def __init__(self, message: str = "Vault is locked or master key not available", **kwargs):
        super().__init__(message, **kwargs)


class InvalidCredentialsError(VaultError):
    """Raised when a password fails to unwrap the stored key record."""

    default_code = ErrorCode.INVALID_CREDENTIALS


class NoPasswordSetError(VaultError):
    """Raised when locking or unlocking a vault that has no password."""

    default_code = ErrorCode.NO_PASSWORD_SET


class StorageCorruptionError(VaultError):
    """Raised when an on-disk document is present but unreadable or inconsistent.

    Examples:
        - master.key neither a hex key nor a wrapped JSON record
        - master.key shape disagrees with encryption.json
        - metadata.json not valid JSON
        - disk I/O failure on an internal file
    """

    default_code = ErrorCode.STORAGE_CORRUPTED

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if file_path:
            details["file_path"] = file_path
        super().__init__(message, details=details, **kwargs)


class PartialRotationFailure(VaultError):
    """Raised by callers that require a rotation to complete cleanly.

    Completed items are never rolled back; ``errors`` lists the failed ones.
    """

    default_code = ErrorCode.ROTATION_INCOMPLETE

    def __init__(self, message: str, errors: Optional[List[str]] = None, **kwargs):
        details = kwargs.pop("details", {})
        self.errors = list(errors or [])
        details["error_count"] = len(self.errors)
        super().__init__(message, details=details, **kwargs)
