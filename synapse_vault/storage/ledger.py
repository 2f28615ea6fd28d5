"""
Metadata Ledger
===============

The ledger is the ordered list of FileRecords persisted in
``metadata.json``. It is normally an encrypted envelope; vaults written
before encryption was introduced hold a plaintext ``{"files": [...]}``
document, which is still accepted on read and replaced by an encrypted
document on the next write.
"""

import json
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional, Iterable, Any, Dict

from synapse_vault.security.cipher import EncryptionEnvelope
from synapse_vault.security.custodian import VaultSession
from synapse_vault.utils.logging_config import get_logger
from synapse_vault.utils.exceptions import (
    AuthenticationError,
    ErrorCode,
    FileProcessingError,
    FormatError,
    LockedError,
    StorageCorruptionError,
)
from synapse_vault.utils.fileio import atomic_write_json

logger = get_logger(__name__)

METADATA_FILE_NAME = "metadata.json"

# Records written before raw payloads carry no "encoding" key; their
# blobs hold the base64 text of the file.
RAW_ENCODING = "raw"
BASE64_ENCODING = "base64"
CONTENT_ENCODINGS = (RAW_ENCODING, BASE64_ENCODING)


def normalize_tags(tags: Iterable[str]) -> List[str]:
    """Strip tags, drop empties and duplicates, keep first-seen order.

    Raises:
        FileProcessingError: If a tag is not a string.
    """
    if isinstance(tags, str):
        raise FileProcessingError("Tags must be a list of strings", error_code=ErrorCode.INVALID_TAGS)

    result: List[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            raise FileProcessingError(
                f"Tag must be a string, got {type(tag).__name__}",
                error_code=ErrorCode.INVALID_TAGS,
            )
        tag = tag.strip()
        if tag and tag not in result:
            result.append(tag)
    return result


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class FileRecord:
    """Metadata for one stored file.

    Attributes:
        id: Random record identifier.
        original_name: Display name of the file.
        stored_name: Name of the encrypted blob under ``files/``.
        format: Human-readable format name.
        extension: Extension including the dot, or "".
        size_bytes: Plaintext size.
        tags: Ordered, duplicate-free tags.
        date_added: ISO-8601 timestamp of the import.
        storage_path: Blob location at import time.
        content_encoding: How the decrypted blob payload is encoded.
    """
    id: str
    original_name: str
    stored_name: str
    format: str
    extension: str
    size_bytes: int
    tags: List[str] = field(default_factory=list)
    date_added: str = field(default_factory=utc_timestamp)
    storage_path: str = ""
    content_encoding: str = RAW_ENCODING

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the on-disk dictionary shape."""
        return {
            "id": self.id,
            "originalName": self.original_name,
            "storedName": self.stored_name,
            "format": self.format,
            "extension": self.extension,
            "size": self.size_bytes,
            "tags": list(self.tags),
            "dateAdded": self.date_added,
            "path": self.storage_path,
            "encoding": self.content_encoding,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileRecord":
        """Create from the on-disk dictionary shape.

        Raises:
            KeyError, TypeError, ValueError: If required fields are
                missing or of the wrong type.
        """
        if not isinstance(data.get("id"), str) or not isinstance(data.get("storedName"), str):
            raise ValueError("record requires string id and storedName")
        encoding = data.get("encoding", BASE64_ENCODING)
        if encoding not in CONTENT_ENCODINGS:
            raise ValueError(f"unknown content encoding: {encoding}")
        return cls(
            id=data["id"],
            original_name=str(data.get("originalName", data["storedName"])),
            stored_name=data["storedName"],
            format=str(data.get("format", "Unknown")),
            extension=str(data.get("extension", "")),
            size_bytes=int(data.get("size", 0)),
            tags=normalize_tags(data.get("tags") or []),
            date_added=str(data.get("dateAdded", "")),
            storage_path=str(data.get("path", "")),
            content_encoding=encoding,
        )

    def copy(self) -> "FileRecord":
        return FileRecord(**asdict(self))


class LedgerKind(Enum):
    """Shapes ``metadata.json`` can take on disk."""
    MISSING = "missing"
    LEGACY_PLAINTEXT = "legacy_plaintext"
    ENCRYPTED = "encrypted"


@dataclass(frozen=True)
class LedgerDocument:
    """Result of decoding ``metadata.json`` without decrypting it."""
    kind: LedgerKind
    files: Optional[List[Dict[str, Any]]] = None
    envelope: Optional[EncryptionEnvelope] = None


def decode_ledger_document(path: Path) -> LedgerDocument:
    """Classify the ledger file.

    Raises:
        StorageCorruptionError: If the file exists but is neither an
            envelope nor a legacy plaintext document.
    """
    path = Path(path)
    if not path.exists():
        return LedgerDocument(kind=LedgerKind.MISSING)

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise StorageCorruptionError(
            f"Cannot read ledger: {e}",
            file_path=str(path),
            error_code=ErrorCode.LEDGER_CORRUPTED,
            cause=e,
        )

    if EncryptionEnvelope.is_envelope_shape(data):
        try:
            envelope = EncryptionEnvelope.from_dict(data)
        except FormatError as e:
            raise StorageCorruptionError(
                "Ledger envelope is malformed",
                file_path=str(path),
                error_code=ErrorCode.LEDGER_CORRUPTED,
                cause=e,
            )
        return LedgerDocument(kind=LedgerKind.ENCRYPTED, envelope=envelope)

    if isinstance(data, dict) and isinstance(data.get("files"), list):
        return LedgerDocument(kind=LedgerKind.LEGACY_PLAINTEXT, files=data["files"])

    raise StorageCorruptionError(
        "Ledger is neither encrypted nor a plaintext file list",
        file_path=str(path),
        error_code=ErrorCode.LEDGER_CORRUPTED,
    )


class Ledger:
    """Reads and writes the ledger through the vault session."""

    def __init__(self, path: Path, session: VaultSession):
        self.path = Path(path)
        self.session = session

    def read(self) -> List[FileRecord]:
        """Load all records.

        Raises:
            LockedError: If the vault is locked, whatever the ledger shape.
            StorageCorruptionError: If the ledger cannot be decoded,
                authenticated or parsed.
        """
        if self.session.is_locked:
            raise LockedError("Cannot read metadata: vault is locked")

        document = decode_ledger_document(self.path)

        if document.kind is LedgerKind.MISSING:
            return []

        if document.kind is LedgerKind.LEGACY_PLAINTEXT:
            logger.info("Reading legacy plaintext ledger")
            return self._parse_records(document.files)

        try:
            plaintext = self.session.decrypt_content(document.envelope)
        except (AuthenticationError, FormatError) as e:
            raise StorageCorruptionError(
                f"Ledger cannot be decrypted: {e.message}",
                file_path=str(self.path),
                error_code=ErrorCode.LEDGER_CORRUPTED,
                cause=e,
            )

        try:
            data = json.loads(plaintext.decode("utf-8"))
            files = data["files"]
            if not isinstance(files, list):
                raise TypeError("files must be a list")
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as e:
            raise StorageCorruptionError(
                "Decrypted ledger is not a valid document",
                file_path=str(self.path),
                error_code=ErrorCode.LEDGER_CORRUPTED,
                cause=e,
            )
        return self._parse_records(files)

    def write(self, records: List[FileRecord]) -> None:
        """Encrypt and atomically replace the ledger.

        Raises:
            LockedError: If the vault is locked.
            StorageCorruptionError: On I/O failure.
        """
        payload = json.dumps({"files": [r.to_dict() for r in records]}, indent=2, ensure_ascii=False)
        envelope = self.session.encrypt_content(payload.encode("utf-8"))
        try:
            atomic_write_json(self.path, envelope.to_dict())
        except OSError as e:
            raise StorageCorruptionError(
                f"Cannot write ledger: {e}", file_path=str(self.path), cause=e
            )
        logger.debug(f"Ledger written ({len(records)} records)")

    def _parse_records(self, files: List[Any]) -> List[FileRecord]:
        records = []
        for index, entry in enumerate(files):
            try:
                records.append(FileRecord.from_dict(entry))
            except (AttributeError, KeyError, TypeError, ValueError, FileProcessingError) as e:
                raise StorageCorruptionError(
                    f"Ledger entry {index} is malformed",
                    file_path=str(self.path),
                    error_code=ErrorCode.LEDGER_CORRUPTED,
                    cause=e,
                )
        return records
