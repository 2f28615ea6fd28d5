"""
Key Derivation Service
======================

Turns a password plus a random salt into a 256-bit wrapping key.

PBKDF2-HMAC-SHA256 with 100,000 iterations is the default and matches
vaults written by earlier releases. Argon2id is available for newly set
passwords. The parameters used are recorded next to the wrapped key so
they can be strengthened later without breaking existing vaults.
"""

import secrets
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from argon2.low_level import hash_secret_raw, Type as Argon2Type
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from synapse_vault.utils.logging_config import get_logger
from synapse_vault.utils.exceptions import CryptoError, FormatError, ErrorCode

logger = get_logger(__name__)

PBKDF2_SHA256 = "pbkdf2-sha256"
ARGON2ID = "argon2id"

KEY_LENGTH = 32      # 256 bits (for AES-256)
SALT_LENGTH = 32     # 256 bits
MIN_PBKDF2_ITERATIONS = 100000
KDF_PARAMS_VERSION = 1


@dataclass(frozen=True)
class KdfParams:
    """Versioned key derivation parameters.

    Attributes:
        algorithm: "pbkdf2-sha256" or "argon2id".
        iterations: PBKDF2 iteration count.
        memory_cost: Argon2 memory cost in KB.
        time_cost: Argon2 iteration count.
        parallelism: Argon2 parallelism degree.
        version: Parameter schema version.
    """
    algorithm: str = PBKDF2_SHA256
    iterations: int = MIN_PBKDF2_ITERATIONS
    memory_cost: int = 65536
    time_cost: int = 3
    parallelism: int = 4
    version: int = KDF_PARAMS_VERSION

    def to_dict(self) -> Dict[str, Any]:
        """Serialize only the fields relevant to the algorithm."""
        if self.algorithm == PBKDF2_SHA256:
            return {
                "algorithm": self.algorithm,
                "iterations": self.iterations,
                "version": self.version,
            }
        return {
            "algorithm": self.algorithm,
            "memoryCost": self.memory_cost,
            "timeCost": self.time_cost,
            "parallelism": self.parallelism,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "KdfParams":
        """Parse stored parameters; absent parameters mean the legacy default."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise FormatError("kdf parameters must be an object", operation="key_derivation")
        algorithm = data.get("algorithm", PBKDF2_SHA256)
        try:
            if algorithm == PBKDF2_SHA256:
                return cls(
                    algorithm=algorithm,
                    iterations=int(data.get("iterations", MIN_PBKDF2_ITERATIONS)),
                    version=int(data.get("version", KDF_PARAMS_VERSION)),
                )
            if algorithm == ARGON2ID:
                return cls(
                    algorithm=algorithm,
                    memory_cost=int(data["memoryCost"]),
                    time_cost=int(data["timeCost"]),
                    parallelism=int(data["parallelism"]),
                    version=int(data.get("version", KDF_PARAMS_VERSION)),
                )
        except (KeyError, TypeError, ValueError) as e:
            raise FormatError(
                f"Malformed {algorithm} parameters", operation="key_derivation", cause=e
            )
        raise FormatError(
            f"Unknown key derivation algorithm: {algorithm}",
            operation="key_derivation",
        )


@dataclass
class DerivedKey:
    """Container for a derived key.

    Attributes:
        key: The derived key bytes.
        salt: Salt used for derivation.
        params: Parameters used for key derivation.
    """
    key: bytes
    salt: bytes
    params: KdfParams = field(default_factory=KdfParams)

    def to_dict(self) -> dict:
        """Convert to dictionary (excludes key for safety)."""
        return {
            "salt_hex": self.salt.hex(),
            "key_length": len(self.key),
            "params": self.params.to_dict(),
        }


class KeyDerivationService:
    """Password-based key derivation.

    Pure function of (password, salt, params): the same inputs always
    yield the same key and there is no verification step. A wrong
    password is only detected downstream when unwrapping fails.
    """

    def __init__(self, params: Optional[KdfParams] = None):
        """Initialize key derivation service.

        Args:
            params: Parameters for newly derived keys. Defaults to
                PBKDF2-HMAC-SHA256 with 100,000 iterations.
        """
        self.params = params or KdfParams()
        if self.params.algorithm == PBKDF2_SHA256 and self.params.iterations < MIN_PBKDF2_ITERATIONS:
            raise FormatError(
                f"PBKDF2 requires at least {MIN_PBKDF2_ITERATIONS} iterations",
                operation="key_derivation",
            )

    def derive(
        self,
        password: str,
        salt: bytes,
        params: Optional[KdfParams] = None
    ) -> bytes:
        """Derive a 32-byte key from a password and salt.

        Args:
            password: The password to derive from.
            salt: Random salt bytes (non-empty).
            params: Parameters to use instead of the service defaults,
                typically the ones stored with a wrapped key.

        Returns:
            The derived key.

        Raises:
            FormatError: If the password is not a string or the salt is empty.
            CryptoError: If the underlying primitive fails.
        """
        if not isinstance(password, str):
            raise FormatError("Password must be a string", operation="key_derivation")
        if not isinstance(salt, (bytes, bytearray)) or len(salt) == 0:
            raise FormatError("Salt must be non-empty bytes", operation="key_derivation")

        params = params or self.params
        secret = password.encode("utf-8")

        try:
            if params.algorithm == PBKDF2_SHA256:
                kdf = PBKDF2HMAC(
                    algorithm=hashes.SHA256(),
                    length=KEY_LENGTH,
                    salt=bytes(salt),
                    iterations=params.iterations,
                )
                key = kdf.derive(secret)
            elif params.algorithm == ARGON2ID:
                key = hash_secret_raw(
                    secret=secret,
                    salt=bytes(salt),
                    time_cost=params.time_cost,
                    memory_cost=params.memory_cost,
                    parallelism=params.parallelism,
                    hash_len=KEY_LENGTH,
                    type=Argon2Type.ID,
                )
            else:
                raise FormatError(
                    f"Unknown key derivation algorithm: {params.algorithm}",
                    operation="key_derivation",
                )
        except FormatError:
            raise
        except Exception as e:
            raise CryptoError(
                f"Key derivation failed: {e}",
                operation="key_derivation",
                error_code=ErrorCode.KEY_DERIVATION_FAILED,
                cause=e,
            )

        logger.debug(f"Key derived with {params.algorithm}")
        return key

    def derive_key(
        self,
        password: str,
        salt: Optional[bytes] = None
    ) -> DerivedKey:
        """Derive a key, generating a fresh salt when none is given.

        Args:
            password: The password to derive from.
            salt: Optional salt. Generated if not provided.

        Returns:
            DerivedKey containing key, salt and parameters.
        """
        if salt is None:
            salt = self.generate_salt()
        return DerivedKey(key=self.derive(password, salt), salt=bytes(salt), params=self.params)

    @staticmethod
    def generate_salt() -> bytes:
        """Generate a cryptographically secure salt.

        Returns:
            Random salt bytes.
        """
        return secrets.token_bytes(SALT_LENGTH)


def derive(password: str, salt: bytes) -> bytes:
    """Derive a key with the default PBKDF2-HMAC-SHA256 parameters."""
    return KeyDerivationService().derive(password, salt)
