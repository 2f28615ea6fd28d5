"""
Content Cipher
==============

AES-256-GCM authenticated encryption for vault content and for the
master key itself. Every call uses a fresh random 16-byte nonce and
produces an EncryptionEnvelope.
"""

import base64
import binascii
import os
from dataclasses import dataclass
from typing import Optional, Dict, Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from synapse_vault.utils.logging_config import get_logger
from synapse_vault.utils.exceptions import AuthenticationError, CryptoError, FormatError

logger = get_logger(__name__)

ENVELOPE_VERSION = 1
ENVELOPE_FIELDS = ("encrypted", "iv", "authTag")


@dataclass(frozen=True)
class EncryptionEnvelope:
    """Output of one authenticated encryption.

    Attributes:
        ciphertext: Encrypted payload without the tag.
        nonce: Random nonce used for this encryption.
        auth_tag: GCM authentication tag.
        version: Envelope format version.
    """
    ciphertext: bytes
    nonce: bytes
    auth_tag: bytes
    version: int = ENVELOPE_VERSION

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the on-disk JSON shape."""
        return {
            "encrypted": base64.b64encode(self.ciphertext).decode("ascii"),
            "iv": self.nonce.hex(),
            "authTag": self.auth_tag.hex(),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "EncryptionEnvelope":
        """Parse the on-disk JSON shape.

        Raises:
            FormatError: If any field is missing, of the wrong type or
                not decodable, or the version is unsupported.
        """
        if not isinstance(data, dict):
            raise FormatError("Envelope must be a JSON object", operation="decrypt")

        missing = [name for name in ENVELOPE_FIELDS if name not in data]
        if missing:
            raise FormatError(
                f"Envelope is missing fields: {', '.join(missing)}",
                operation="decrypt",
            )
        if not all(isinstance(data[name], str) for name in ENVELOPE_FIELDS):
            raise FormatError("Envelope fields must be strings", operation="decrypt")

        version = data.get("version", ENVELOPE_VERSION)
        if version != ENVELOPE_VERSION:
            raise FormatError(f"Unsupported envelope version: {version}", operation="decrypt")

        try:
            ciphertext = base64.b64decode(data["encrypted"], validate=True)
            nonce = bytes.fromhex(data["iv"])
            auth_tag = bytes.fromhex(data["authTag"])
        except (binascii.Error, ValueError) as e:
            raise FormatError("Envelope fields are not valid encodings", operation="decrypt", cause=e)

        return cls(ciphertext=ciphertext, nonce=nonce, auth_tag=auth_tag, version=version)

    @staticmethod
    def is_envelope_shape(data: Any) -> bool:
        """True when a parsed JSON value carries the envelope fields."""
        return isinstance(data, dict) and all(name in data for name in ENVELOPE_FIELDS)


class ContentCipher:
    """AES-256-GCM encryption for byte payloads.

    Uses Galois/Counter Mode (GCM) for authenticated encryption,
    providing both confidentiality and integrity.
    """

    NONCE_SIZE = 16      # 128 bits
    TAG_SIZE = 16        # 128 bits
    KEY_SIZE = 32        # 256 bits

    def _check_key(self, key: bytes, operation: str) -> None:
        if not isinstance(key, (bytes, bytearray)) or len(key) != self.KEY_SIZE:
            raise FormatError(f"Key must be {self.KEY_SIZE} bytes", operation=operation)

    def encrypt(
        self,
        key: bytes,
        plaintext: bytes,
        associated_data: Optional[bytes] = None
    ) -> EncryptionEnvelope:
        """Encrypt data using AES-256-GCM.

        Args:
            key: 256-bit encryption key.
            plaintext: Data to encrypt.
            associated_data: Optional additional authenticated data.

        Returns:
            EncryptionEnvelope with a fresh nonce.

        Raises:
            FormatError: If the key or plaintext has the wrong type/size.
            CryptoError: If encryption fails.
        """
        self._check_key(key, "encrypt")
        if not isinstance(plaintext, (bytes, bytearray)):
            raise FormatError("Plaintext must be bytes", operation="encrypt")

        nonce = os.urandom(self.NONCE_SIZE)
        try:
            sealed = AESGCM(bytes(key)).encrypt(nonce, bytes(plaintext), associated_data)
        except Exception as e:
            raise CryptoError(f"Encryption failed: {e}", operation="encrypt", cause=e)

        return EncryptionEnvelope(
            ciphertext=sealed[:-self.TAG_SIZE],
            nonce=nonce,
            auth_tag=sealed[-self.TAG_SIZE:],
        )

    def decrypt(
        self,
        key: bytes,
        envelope: EncryptionEnvelope,
        associated_data: Optional[bytes] = None
    ) -> bytes:
        """Decrypt an envelope using AES-256-GCM.

        Args:
            key: 256-bit decryption key.
            envelope: Envelope produced by :meth:`encrypt`.
            associated_data: Optional additional authenticated data.

        Returns:
            Decrypted plaintext bytes.

        Raises:
            AuthenticationError: If the tag does not verify.
            FormatError: If the envelope is malformed.
        """
        self._check_key(key, "decrypt")
        if not isinstance(envelope, EncryptionEnvelope):
            raise FormatError("Expected an EncryptionEnvelope", operation="decrypt")
        if len(envelope.nonce) != self.NONCE_SIZE:
            raise FormatError(f"Nonce must be {self.NONCE_SIZE} bytes", operation="decrypt")
        if len(envelope.auth_tag) != self.TAG_SIZE:
            raise FormatError(f"Auth tag must be {self.TAG_SIZE} bytes", operation="decrypt")

        try:
            return AESGCM(bytes(key)).decrypt(
                envelope.nonce,
                envelope.ciphertext + envelope.auth_tag,
                associated_data,
            )
        except InvalidTag as e:
            raise AuthenticationError(
                "Authentication tag mismatch (tampered data or wrong key)",
                operation="decrypt",
                cause=e,
            )
