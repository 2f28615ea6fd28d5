"""
Key Record Storage
==================

On-disk representation of the master key and of the encryption state.

``master.key`` holds one of two shapes:

* unwrapped: the raw key as a hex string (no password set)
* wrapped: JSON ``{encrypted, iv, salt, authTag[, kdf]}`` with hex fields,
  the master key encrypted under a password-derived key

``encryption.json`` holds ``{hasPassword, version}``. The two files must
agree; a disagreement is reported as storage corruption.
"""

import binascii
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union, Optional

from synapse_vault.security.cipher import EncryptionEnvelope, ContentCipher
from synapse_vault.security.key_derivation import KdfParams
from synapse_vault.utils.logging_config import get_logger
from synapse_vault.utils.exceptions import StorageCorruptionError, FormatError, ErrorCode
from synapse_vault.utils.fileio import atomic_write_text, atomic_write_json

logger = get_logger(__name__)

KEY_FILE_NAME = "master.key"
STATE_FILE_NAME = "encryption.json"
STATE_VERSION = 1
MASTER_KEY_SIZE = ContentCipher.KEY_SIZE


@dataclass(frozen=True, repr=False)
class UnwrappedKeyRecord:
    """Master key stored in the clear (no password configured)."""
    key: bytes

    def __repr__(self) -> str:
        return "UnwrappedKeyRecord(key=<redacted>)"


@dataclass(frozen=True)
class WrappedKeyRecord:
    """Master key encrypted under a password-derived key.

    Attributes:
        ciphertext: Encrypted master key.
        nonce: Nonce used for the wrap.
        salt: Salt fed to the key derivation.
        auth_tag: GCM tag of the wrap.
        kdf: Derivation parameters used for the wrapping key.
    """
    ciphertext: bytes
    nonce: bytes
    salt: bytes
    auth_tag: bytes
    kdf: KdfParams = field(default_factory=KdfParams)

    @property
    def envelope(self) -> EncryptionEnvelope:
        """The wrap as a cipher envelope."""
        return EncryptionEnvelope(ciphertext=self.ciphertext, nonce=self.nonce, auth_tag=self.auth_tag)

    @classmethod
    def from_envelope(cls, envelope: EncryptionEnvelope, salt: bytes, kdf: KdfParams) -> "WrappedKeyRecord":
        return cls(
            ciphertext=envelope.ciphertext,
            nonce=envelope.nonce,
            salt=salt,
            auth_tag=envelope.auth_tag,
            kdf=kdf,
        )


KeyRecord = Union[UnwrappedKeyRecord, WrappedKeyRecord]


def serialize_key_record(record: KeyRecord) -> str:
    """Render a key record in its on-disk text form."""
    if isinstance(record, UnwrappedKeyRecord):
        return record.key.hex()
    if isinstance(record, WrappedKeyRecord):
        return json.dumps({
            "encrypted": record.ciphertext.hex(),
            "iv": record.nonce.hex(),
            "salt": record.salt.hex(),
            "authTag": record.auth_tag.hex(),
            "kdf": record.kdf.to_dict(),
        }, indent=2)
    raise TypeError(f"Not a key record: {type(record).__name__}")


def parse_key_record(text: str, source: Optional[str] = None) -> KeyRecord:
    """Parse the text of ``master.key``.

    Raises:
        StorageCorruptionError: If the text is neither a valid unwrapped
            nor a valid wrapped record.
    """
    stripped = text.strip()

    if stripped.startswith("{"):
        try:
            data = json.loads(stripped)
            fields = {name: data[name] for name in ("encrypted", "iv", "salt", "authTag")}
            if not all(isinstance(value, str) for value in fields.values()):
                raise ValueError("wrapped key fields must be hex strings")
            record = WrappedKeyRecord(
                ciphertext=bytes.fromhex(fields["encrypted"]),
                nonce=bytes.fromhex(fields["iv"]),
                salt=bytes.fromhex(fields["salt"]),
                auth_tag=bytes.fromhex(fields["authTag"]),
                kdf=KdfParams.from_dict(data.get("kdf")),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, FormatError) as e:
            raise StorageCorruptionError(
                "Wrapped key record is malformed",
                file_path=source,
                error_code=ErrorCode.STORAGE_CORRUPTED,
                cause=e,
            )
        if (len(record.ciphertext) != MASTER_KEY_SIZE
                or len(record.nonce) != ContentCipher.NONCE_SIZE
                or len(record.auth_tag) != ContentCipher.TAG_SIZE
                or not record.salt):
            raise StorageCorruptionError("Wrapped key record has invalid field sizes", file_path=source)
        return record

    try:
        key = bytes.fromhex(stripped)
    except (ValueError, binascii.Error) as e:
        raise StorageCorruptionError(
            "Key record is neither hex nor wrapped JSON", file_path=source, cause=e
        )
    if len(key) != MASTER_KEY_SIZE:
        raise StorageCorruptionError(
            f"Unwrapped key must be {MASTER_KEY_SIZE} bytes, found {len(key)}",
            file_path=source,
        )
    return UnwrappedKeyRecord(key=key)


class KeyStore:
    """Reads and writes ``master.key`` and ``encryption.json`` under a root."""

    def __init__(self, root: Path):
        self.root = Path(root)

    @property
    def key_path(self) -> Path:
        return self.root / KEY_FILE_NAME

    @property
    def state_path(self) -> Path:
        return self.root / STATE_FILE_NAME

    def key_exists(self) -> bool:
        return self.key_path.exists()

    def state_exists(self) -> bool:
        return self.state_path.exists()

    def read_record(self) -> KeyRecord:
        """Load and parse the key record.

        Raises:
            StorageCorruptionError: If unreadable or malformed.
        """
        try:
            text = self.key_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageCorruptionError(
                f"Cannot read key record: {e}", file_path=str(self.key_path), cause=e
            )
        return parse_key_record(text, source=str(self.key_path))

    def write_record(self, record: KeyRecord) -> None:
        """Atomically persist a key record."""
        try:
            atomic_write_text(self.key_path, serialize_key_record(record))
        except OSError as e:
            raise StorageCorruptionError(
                f"Cannot write key record: {e}", file_path=str(self.key_path), cause=e
            )
        logger.debug(f"Key record written ({type(record).__name__})")

    def read_has_password(self) -> bool:
        """Read the ``hasPassword`` flag from ``encryption.json``."""
        try:
            data = json.loads(self.state_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageCorruptionError(
                f"Cannot read encryption state: {e}", file_path=str(self.state_path), cause=e
            )
        if not isinstance(data, dict) or not isinstance(data.get("hasPassword", False), bool):
            raise StorageCorruptionError(
                "Encryption state is malformed", file_path=str(self.state_path)
            )
        return data.get("hasPassword", False)

    def write_has_password(self, has_password: bool) -> None:
        """Atomically persist ``encryption.json``."""
        try:
            atomic_write_json(self.state_path, {"hasPassword": has_password, "version": STATE_VERSION})
        except OSError as e:
            raise StorageCorruptionError(
                f"Cannot write encryption state: {e}", file_path=str(self.state_path), cause=e
            )
