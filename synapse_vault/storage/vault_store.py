"""
Vault Store
===========

File-system layout of a vault and the operations on stored files.

Layout under the storage root::

    master.key          key record (see security.key_record)
    encryption.json     {hasPassword, version}
    metadata.json       encrypted ledger
    files/<id>.enc      one encrypted envelope per stored file
    temp/               decrypted copies opened for viewing

Every read and write goes through the VaultSession. While the vault is
locked every operation raises LockedError; an empty list always means
an empty vault.
"""

import base64
import binascii
import json
import secrets
import threading
from pathlib import Path
from typing import List, Optional, Iterable, Union

from synapse_vault.actions.file_operations import FileOperations
from synapse_vault.config.formats import FORMAT_MAPPING, FormatMapping
from synapse_vault.security.cipher import EncryptionEnvelope
from synapse_vault.security.custodian import VaultSession
from synapse_vault.storage.ledger import (
    BASE64_ENCODING,
    Ledger,
    FileRecord,
    normalize_tags,
    METADATA_FILE_NAME,
)
from synapse_vault.utils.logging_config import get_logger, LogContext
from synapse_vault.utils.exceptions import (
    ErrorCode,
    FileProcessingError,
    FormatError,
    LockedError,
    StorageCorruptionError,
)
from synapse_vault.utils.fileio import atomic_write_json

logger = get_logger(__name__)

FILES_DIR_NAME = "files"
TEMP_DIR_NAME = "temp"
BLOB_SUFFIX = ".enc"


def generate_stored_name() -> str:
    """Random, collision-resistant blob name unrelated to the original name."""
    return secrets.token_hex(16) + BLOB_SUFFIX


def generate_record_id() -> str:
    return secrets.token_hex(8)


class VaultStore:
    """Encrypted blob and ledger storage for one vault.

    Ledger read-modify-write cycles are serialized by ``self.lock``;
    long operations such as rotation hold it for their whole run.
    """

    def __init__(
        self,
        root: Path,
        session: VaultSession,
        formats: Optional[FormatMapping] = None,
        file_ops: Optional[FileOperations] = None
    ):
        """Initialize the store.

        Args:
            root: Storage root directory.
            session: Initialized vault session.
            formats: Extension to format mapping.
            file_ops: Helper for writing exported plaintext.
        """
        self.root = Path(root)
        self.session = session
        self.formats = formats or FORMAT_MAPPING
        self.file_ops = file_ops or FileOperations()
        self.ledger = Ledger(self.metadata_path, session)
        self.lock = threading.RLock()

    @property
    def files_dir(self) -> Path:
        return self.root / FILES_DIR_NAME

    @property
    def temp_dir(self) -> Path:
        return self.root / TEMP_DIR_NAME

    @property
    def metadata_path(self) -> Path:
        return self.root / METADATA_FILE_NAME

    def ensure_layout(self) -> None:
        """Create the storage directories if missing."""
        for directory in (self.root, self.files_dir, self.temp_dir):
            directory.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Ledger access
    # ------------------------------------------------------------------

    def list_files(self) -> List[FileRecord]:
        """All records in ledger order.

        Raises:
            LockedError: If the vault is locked.
        """
        with self.lock:
            return self.ledger.read()

    def get_file(self, file_id: str) -> FileRecord:
        """Look up one record.

        Raises:
            FileProcessingError: If no record has this id.
        """
        with self.lock:
            return self._find(self.ledger.read(), file_id)

    def search(self, query: str = "", tags: Iterable[str] = ()) -> List[FileRecord]:
        """Records whose name contains ``query`` and that carry all ``tags``."""
        query_lower = query.lower()
        wanted = normalize_tags(tags)
        return [
            record for record in self.list_files()
            if query_lower in record.original_name.lower()
            and all(tag in record.tags for tag in wanted)
        ]

    def rewrite_ledger(self, records: Optional[List[FileRecord]] = None) -> None:
        """Re-encrypt the ledger with a fresh nonce."""
        with self.lock:
            if records is None:
                records = self.ledger.read()
            self.ledger.write(records)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_file(self, source_path: Union[str, Path], tags: Iterable[str] = ()) -> FileRecord:
        """Import a file from disk.

        Raises:
            LockedError: If the vault is locked.
            FileProcessingError: If the source is missing or unreadable.
        """
        source_path = Path(source_path)
        if self.session.is_locked:
            raise LockedError("App is locked. Please unlock first.")
        if not source_path.is_file():
            raise FileProcessingError(
                "Not a file",
                file_path=str(source_path),
                error_code=ErrorCode.FILE_NOT_FOUND,
            )
        try:
            data = source_path.read_bytes()
        except OSError as e:
            raise FileProcessingError(
                f"Cannot read source file: {e}",
                file_path=str(source_path),
                cause=e,
            )
        return self.add_bytes(source_path.name, data, tags=tags)

    def add_bytes(self, name: str, data: bytes, tags: Iterable[str] = ()) -> FileRecord:
        """Encrypt ``data`` into a new blob and append its record."""
        with self.lock:
            records = self.ledger.read()
            self.files_dir.mkdir(parents=True, exist_ok=True)

            stored_name = generate_stored_name()
            while (self.files_dir / stored_name).exists():
                stored_name = generate_stored_name()
            blob_path = self.files_dir / stored_name

            self._write_blob(blob_path, self.session.encrypt_content(data))

            record = FileRecord(
                id=generate_record_id(),
                original_name=name,
                stored_name=stored_name,
                format=self.formats.get_format(name),
                extension=self.formats.get_extension(name),
                size_bytes=len(data),
                tags=normalize_tags(tags),
                storage_path=str(blob_path),
            )
            records.append(record)
            try:
                self.ledger.write(records)
            except Exception:
                blob_path.unlink(missing_ok=True)
                raise

            with LogContext(logger, file_id=record.id):
                logger.info(f"Added file: {name} ({record.format}, {len(data)} bytes)")
            return record

    def remove_file(self, file_id: str) -> FileRecord:
        """Delete a record and its blob.

        The ledger is rewritten first so a crash never leaves a record
        pointing at a deleted blob.
        """
        with self.lock:
            records = self.ledger.read()
            record = self._find(records, file_id)
            self.ledger.write([r for r in records if r.id != file_id])

            blob_path = self.blob_path(record)
            try:
                blob_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Record removed but blob could not be deleted: {blob_path.name}: {e}")

            logger.info(f"Removed file: {record.original_name}")
            return record

    def update_tags(self, file_id: str, tags: Iterable[str]) -> FileRecord:
        """Replace a record's tags (order kept, duplicates dropped)."""
        normalized = normalize_tags(tags)
        with self.lock:
            records = self.ledger.read()
            record = self._find(records, file_id)
            record.tags = normalized
            self.ledger.write(records)
            return record.copy()

    def add_tags(self, file_id: str, tags: Iterable[str]) -> FileRecord:
        """Append tags not already present."""
        with self.lock:
            record = self.get_file(file_id)
            return self.update_tags(file_id, record.tags + list(tags))

    def remove_tags(self, file_id: str, tags: Iterable[str]) -> FileRecord:
        """Drop the given tags if present."""
        unwanted = set(normalize_tags(tags))
        with self.lock:
            record = self.get_file(file_id)
            return self.update_tags(file_id, [t for t in record.tags if t not in unwanted])

    def rename_file(self, file_id: str, new_name: str) -> FileRecord:
        """Change the display name; format and extension follow the new name."""
        new_name = (new_name or "").strip()
        if not new_name or Path(new_name).name != new_name:
            raise FileProcessingError(
                "Name must be a non-empty file name without directories",
                file_id=file_id,
            )
        with self.lock:
            records = self.ledger.read()
            record = self._find(records, file_id)
            old_name = record.original_name
            record.original_name = new_name
            record.extension = self.formats.get_extension(new_name)
            record.format = self.formats.get_format(new_name)
            self.ledger.write(records)
            logger.info(f"Renamed: {old_name} -> {new_name}")
            return record.copy()

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def read_content(self, file_id: str) -> bytes:
        """Decrypt a stored file.

        Raises:
            LockedError: If the vault is locked.
            FileProcessingError: If the record or its blob is missing.
            AuthenticationError: If the blob fails authentication.
        """
        with self.lock:
            record = self.get_file(file_id)
            return self.decode_payload(record, self.session.decrypt_content(self.read_blob(record)))

    def export_file(self, file_id: str, destination: Union[str, Path]) -> Path:
        """Write decrypted content outside the vault.

        ``destination`` may be a directory (the original name is used,
        with a counter on conflict) or a full file path.
        """
        destination = Path(destination)
        with self.lock:
            record = self.get_file(file_id)
            data = self.decode_payload(record, self.session.decrypt_content(self.read_blob(record)))

        if destination.is_dir():
            return self.file_ops.write_file(data, destination, record.original_name)
        return self.file_ops.write_file(data, destination.parent, destination.name, overwrite=True)

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    def decode_payload(self, record: FileRecord, payload: bytes) -> bytes:
        """Return file bytes from a decrypted blob payload.

        Raises:
            StorageCorruptionError: If a base64 payload does not decode.
        """
        if record.content_encoding != BASE64_ENCODING:
            return payload
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise StorageCorruptionError(
                f"Blob for {record.original_name} is not valid base64",
                file_path=str(self.blob_path(record)),
                cause=e,
            )

    def blob_path(self, record: FileRecord) -> Path:
        """Location of a record's blob under the current root."""
        return self.files_dir / record.stored_name

    def read_blob(self, record: FileRecord) -> EncryptionEnvelope:
        """Load a record's envelope from disk.

        Raises:
            FileProcessingError: If the blob does not exist.
            StorageCorruptionError: If it is not a valid envelope.
        """
        path = self.blob_path(record)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise FileProcessingError(
                f"File not found: {record.original_name}",
                file_path=str(path),
                file_id=record.id,
                error_code=ErrorCode.FILE_NOT_FOUND,
                cause=e,
            )
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageCorruptionError(
                f"Cannot read blob for {record.original_name}", file_path=str(path), cause=e
            )
        try:
            return EncryptionEnvelope.from_dict(data)
        except FormatError as e:
            raise StorageCorruptionError(
                f"Blob for {record.original_name} is not a valid envelope", file_path=str(path), cause=e
            )

    def write_blob(self, record: FileRecord, envelope: EncryptionEnvelope) -> None:
        """Atomically replace a record's blob."""
        self._write_blob(self.blob_path(record), envelope)

    def _write_blob(self, path: Path, envelope: EncryptionEnvelope) -> None:
        try:
            atomic_write_json(path, envelope.to_dict())
        except OSError as e:
            raise StorageCorruptionError(f"Cannot write blob: {e}", file_path=str(path), cause=e)

    @staticmethod
    def _find(records: List[FileRecord], file_id: str) -> FileRecord:
        for record in records:
            if record.id == file_id:
                return record
        raise FileProcessingError(
            "File not found",
            file_id=file_id,
            error_code=ErrorCode.RECORD_NOT_FOUND,
        )
