"""Security module: key derivation, content cipher and key custody."""

from .cipher import ContentCipher, EncryptionEnvelope
from .key_derivation import KeyDerivationService, DerivedKey, KdfParams, derive
from .key_record import KeyStore, UnwrappedKeyRecord, WrappedKeyRecord
from .custodian import VaultSession, VaultState, VaultStatus, OperationResult
from .secure_delete import SecureDeleter

__all__ = [
    "ContentCipher",
    "EncryptionEnvelope",
    "KeyDerivationService",
    "DerivedKey",
    "KdfParams",
    "derive",
    "KeyStore",
    "UnwrappedKeyRecord",
    "WrappedKeyRecord",
    "VaultSession",
    "VaultState",
    "VaultStatus",
    "OperationResult",
    "SecureDeleter",
]
