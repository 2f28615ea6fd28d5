"""
Master Key Custodian
====================

Owns the single master key of a vault, its on-disk record and the
locked/unlocked state. Every content encryption and decryption in the
application passes through :meth:`VaultSession.encrypt_content` and
:meth:`VaultSession.decrypt_content`.

Two-layer key model:

1. The master key encrypts all file contents and the ledger.
2. When a password is set, a password-derived key encrypts the master key.

Changing or removing the password re-wraps the master key; its bytes
never change, so previously written envelopes stay readable.

State machine::

    UNINITIALIZED --initialize--> UNLOCKED (no password)
    UNINITIALIZED --initialize--> LOCKED   (password set)
    LOCKED        --unlock------> UNLOCKED
    UNLOCKED      --lock--------> LOCKED   (only with a password)
    UNLOCKED      --set_password / remove_password--> UNLOCKED
"""

import secrets
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union, Dict, Any

from synapse_vault.security.cipher import ContentCipher, EncryptionEnvelope
from synapse_vault.security.key_derivation import KeyDerivationService
from synapse_vault.security.key_record import (
    KeyRecord,
    KeyStore,
    UnwrappedKeyRecord,
    WrappedKeyRecord,
    MASTER_KEY_SIZE,
)
from synapse_vault.utils.logging_config import get_logger
from synapse_vault.utils.exceptions import (
    AuthenticationError,
    ErrorCode,
    FormatError,
    InvalidCredentialsError,
    LockedError,
    NoPasswordSetError,
    StorageCorruptionError,
    VaultError,
)

logger = get_logger(__name__)


class VaultState(Enum):
    """Lifecycle states of a vault session."""
    UNINITIALIZED = "uninitialized"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


@dataclass(frozen=True)
class VaultStatus:
    """Read-only snapshot of the session state."""
    is_locked: bool
    has_password: bool
    is_initialized: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isLocked": self.is_locked,
            "hasPassword": self.has_password,
            "isInitialized": self.is_initialized,
        }


@dataclass(frozen=True)
class OperationResult:
    """Structured outcome of a custodian operation.

    Expected failures (wrong password, no password set, locked) are
    reported here instead of raised.
    """
    success: bool
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    needs_rotation: bool = False

    @classmethod
    def ok(cls, needs_rotation: bool = False) -> "OperationResult":
        return cls(success=True, needs_rotation=needs_rotation)

    @classmethod
    def fail(cls, error: str, error_code: ErrorCode) -> "OperationResult":
        return cls(success=False, error=error, error_code=error_code)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.error:
            data["error"] = self.error
        if self.needs_rotation:
            data["needsRotation"] = True
        return data

    def raise_for_error(self) -> None:
        """Raise the exception matching a failed result."""
        if self.success:
            return
        if self.error_code == ErrorCode.INVALID_CREDENTIALS:
            raise InvalidCredentialsError(self.error)
        if self.error_code == ErrorCode.NO_PASSWORD_SET:
            raise NoPasswordSetError(self.error)
        if self.error_code == ErrorCode.VAULT_LOCKED:
            raise LockedError(self.error)
        raise VaultError(self.error, error_code=self.error_code)


def _wipe(buffer: Optional[bytearray]) -> None:
    """Overwrite a key buffer with zeros in place."""
    if buffer is not None:
        buffer[:] = bytes(len(buffer))


class VaultSession:
    """Master key custodian for one vault.

    Constructed once at startup and handed to every collaborator.
    All state changes and all uses of the key are serialized by a
    re-entrant lock, so lock/unlock never interleave with an
    encrypt/decrypt.
    """

    def __init__(
        self,
        storage_root: Path,
        kdf: Optional[KeyDerivationService] = None,
        cipher: Optional[ContentCipher] = None
    ):
        """Initialize the session (no disk access until :meth:`initialize`).

        Args:
            storage_root: Directory holding master.key and encryption.json.
            kdf: Key derivation service for newly set passwords.
            cipher: Content cipher implementation.
        """
        self.key_store = KeyStore(Path(storage_root))
        self.kdf = kdf or KeyDerivationService()
        self.cipher = cipher or ContentCipher()

        self._lock = threading.RLock()
        self._master_key: Optional[bytearray] = None
        self._is_locked = False
        self._has_password = False
        self._initialized = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> VaultStatus:
        """Load or create the master key.

        First run generates a key and stores it unwrapped. Later runs
        load an unwrapped key directly, or start locked when the key is
        wrapped.

        Raises:
            StorageCorruptionError: If the key record is malformed, missing
                while the state file exists, or disagrees with ``hasPassword``.
        """
        with self._lock:
            self._clear_key()
            store = self.key_store

            if not store.key_exists():
                if store.state_exists():
                    raise StorageCorruptionError(
                        "encryption.json exists but master.key is missing",
                        file_path=str(store.key_path),
                        error_code=ErrorCode.KEY_RECORD_MISMATCH,
                    )
                self._generate_master_key()
            else:
                record = store.read_record()
                if store.state_exists():
                    has_password = store.read_has_password()
                else:
                    has_password = isinstance(record, WrappedKeyRecord)
                    logger.warning("encryption.json missing, restoring it from the key record")
                    store.write_has_password(has_password)

                if has_password != isinstance(record, WrappedKeyRecord):
                    raise StorageCorruptionError(
                        "Key record shape disagrees with hasPassword flag",
                        file_path=str(store.key_path),
                        error_code=ErrorCode.KEY_RECORD_MISMATCH,
                        details={"has_password": has_password},
                    )

                self._has_password = has_password
                if isinstance(record, UnwrappedKeyRecord):
                    self._master_key = bytearray(record.key)
                    self._is_locked = False
                else:
                    self._is_locked = True

            self._initialized = True
            logger.info(
                f"Vault initialized (locked={self._is_locked}, password={self._has_password})"
            )
            return self.status()

    def teardown(self) -> None:
        """Wipe the in-memory key and return to the uninitialized state."""
        with self._lock:
            self._clear_key()
            self._initialized = False
            self._is_locked = False
            self._has_password = False
            logger.debug("Vault session torn down")

    def __enter__(self) -> "VaultSession":
        if not self._initialized:
            self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.teardown()
        return False

    # ------------------------------------------------------------------
    # Lock state
    # ------------------------------------------------------------------

    def unlock(self, password: str) -> OperationResult:
        """Unwrap the master key with a password.

        A wrong password leaves the state untouched and may be retried.
        """
        with self._lock:
            if not self._initialized:
                return OperationResult.fail("Vault is not initialized", ErrorCode.MASTER_KEY_UNAVAILABLE)
            if not self._has_password:
                return OperationResult.fail("No password set", ErrorCode.NO_PASSWORD_SET)

            record = self.key_store.read_record()
            if not isinstance(record, WrappedKeyRecord):
                raise StorageCorruptionError(
                    "Password is set but the key record is not wrapped",
                    file_path=str(self.key_store.key_path),
                    error_code=ErrorCode.KEY_RECORD_MISMATCH,
                )

            try:
                wrap_key = self.kdf.derive(password, record.salt, record.kdf)
                master_key = self.cipher.decrypt(wrap_key, record.envelope)
            except (AuthenticationError, FormatError):
                logger.warning("Unlock failed: invalid password")
                return OperationResult.fail(
                    "Invalid password or corrupted key file", ErrorCode.INVALID_CREDENTIALS
                )

            if len(master_key) != MASTER_KEY_SIZE:
                raise StorageCorruptionError(
                    "Unwrapped master key has the wrong length",
                    file_path=str(self.key_store.key_path),
                )

            self._clear_key()
            self._master_key = bytearray(master_key)
            self._is_locked = False
            logger.info("Vault unlocked")
            return OperationResult.ok()

    def lock(self) -> OperationResult:
        """Discard the master key from memory.

        Rejected without a password, since the vault could not be
        unlocked again.
        """
        with self._lock:
            if not self._has_password:
                return OperationResult.fail("No password set", ErrorCode.NO_PASSWORD_SET)
            self._clear_key()
            self._is_locked = True
            logger.info("Vault locked")
            return OperationResult.ok()

    # ------------------------------------------------------------------
    # Password management
    # ------------------------------------------------------------------

    def set_password(self, new_password: str, old_password: Optional[str] = None) -> OperationResult:
        """Set or change the password wrapping the master key.

        Args:
            new_password: Password to wrap the key with.
            old_password: Current password; required when one is set.

        Returns:
            Result with ``needs_rotation=True`` on success. Rotation only
            refreshes nonces; content stays readable without it.
        """
        with self._lock:
            if not isinstance(new_password, str) or not new_password:
                return OperationResult.fail("New password must be a non-empty string", ErrorCode.INVALID_CREDENTIALS)
            if not self._initialized:
                return OperationResult.fail("Vault is not initialized", ErrorCode.MASTER_KEY_UNAVAILABLE)

            if self._has_password:
                if old_password is None:
                    return OperationResult.fail("Current password required", ErrorCode.INVALID_CREDENTIALS)
                verified = self.unlock(old_password)
                if not verified.success:
                    return OperationResult.fail("Invalid old password", ErrorCode.INVALID_CREDENTIALS)

            if self._master_key is None:
                return OperationResult.fail("Master key not available", ErrorCode.MASTER_KEY_UNAVAILABLE)

            derived = self.kdf.derive_key(new_password)
            envelope = self.cipher.encrypt(derived.key, bytes(self._master_key))
            record = WrappedKeyRecord.from_envelope(envelope, derived.salt, derived.params)

            self._replace_record(record, has_password=True)
            self._has_password = True
            self._is_locked = False

            logger.info(f"Password set ({derived.params.algorithm})")
            return OperationResult.ok(needs_rotation=True)

    def remove_password(self, password: str) -> OperationResult:
        """Store the master key unwrapped after proving the password."""
        with self._lock:
            if not self._has_password:
                return OperationResult.fail("No password set", ErrorCode.NO_PASSWORD_SET)

            verified = self.unlock(password)
            if not verified.success:
                return OperationResult.fail("Invalid password", ErrorCode.INVALID_CREDENTIALS)

            self._replace_record(UnwrappedKeyRecord(key=bytes(self._master_key)), has_password=False)
            self._has_password = False
            self._is_locked = False

            logger.info("Password removed")
            return OperationResult.ok()

    # ------------------------------------------------------------------
    # Content gate
    # ------------------------------------------------------------------

    def encrypt_content(self, plaintext: Union[bytes, str]) -> EncryptionEnvelope:
        """Encrypt with the resident master key.

        Strings are encoded as UTF-8.

        Raises:
            LockedError: If the vault is locked.
        """
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        with self._lock:
            self._require_key()
            return self.cipher.encrypt(self._master_key, plaintext)

    def decrypt_content(self, envelope: Union[EncryptionEnvelope, Dict[str, Any]]) -> bytes:
        """Decrypt an envelope (object or on-disk dict) with the master key.

        Raises:
            LockedError: If the vault is locked.
            AuthenticationError: If the envelope was not made with this key
                or was tampered with.
            FormatError: If the envelope is malformed.
        """
        if not isinstance(envelope, EncryptionEnvelope):
            envelope = EncryptionEnvelope.from_dict(envelope)
        with self._lock:
            self._require_key()
            return self.cipher.decrypt(self._master_key, envelope)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def status(self) -> VaultStatus:
        with self._lock:
            return VaultStatus(
                is_locked=self._is_locked,
                has_password=self._has_password,
                is_initialized=self._initialized and (self._master_key is not None or self._is_locked),
            )

    @property
    def state(self) -> VaultState:
        with self._lock:
            if not self._initialized:
                return VaultState.UNINITIALIZED
            return VaultState.LOCKED if self._is_locked else VaultState.UNLOCKED

    @property
    def is_locked(self) -> bool:
        with self._lock:
            return self._is_locked or self._master_key is None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _generate_master_key(self) -> None:
        self._master_key = bytearray(secrets.token_bytes(MASTER_KEY_SIZE))
        self.key_store.write_record(UnwrappedKeyRecord(key=bytes(self._master_key)))
        self.key_store.write_has_password(False)
        self._has_password = False
        self._is_locked = False
        logger.info("Generated new master key")

    def _replace_record(self, record: KeyRecord, has_password: bool) -> None:
        """Write a new key record and its flag, or leave the old pair on disk.

        Raises:
            StorageCorruptionError: If either write fails. The previous
                record is restored when only the flag write failed.
        """
        previous = self.key_store.read_record()
        self.key_store.write_record(record)
        try:
            self.key_store.write_has_password(has_password)
        except StorageCorruptionError:
            logger.error("Could not update encryption state, restoring previous key record")
            self.key_store.write_record(previous)
            raise

    def _require_key(self) -> None:
        if self._is_locked or self._master_key is None:
            raise LockedError()

    def _clear_key(self) -> None:
        _wipe(self._master_key)
        self._master_key = None
