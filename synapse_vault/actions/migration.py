"""
Storage Relocation
==================

Moves a vault to a new storage root. The key record, encryption state,
ledger and every blob are copied as-is (nothing is decrypted), progress
is reported per stage, and on success the old root is removed and the
new location saved to settings.
"""

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import send2trash

from synapse_vault.actions.file_operations import FileOperations
from synapse_vault.config.settings import Config
from synapse_vault.security.key_record import KEY_FILE_NAME, STATE_FILE_NAME
from synapse_vault.storage.ledger import METADATA_FILE_NAME
from synapse_vault.utils.logging_config import get_logger, LogContext
from synapse_vault.utils.exceptions import FileProcessingError, ErrorCode

logger = get_logger(__name__)

ROOT_FILES = (KEY_FILE_NAME, STATE_FILE_NAME, METADATA_FILE_NAME)
FILES_DIR_NAME = "files"


@dataclass(frozen=True)
class MigrationProgress:
    """Progress event for a relocation.

    Attributes:
        stage: One of "metadata", "files", "complete" or "error".
        progress: Percentage within the stage.
        message: Human-readable status line.
        current: Files copied so far (files stage only).
        total: Files to copy (files stage only).
    """
    stage: str
    progress: int
    message: str
    current: Optional[int] = None
    total: Optional[int] = None

    def to_dict(self) -> dict:
        data = {"stage": self.stage, "progress": self.progress, "message": self.message}
        if self.current is not None:
            data["current"] = self.current
            data["total"] = self.total
        return data


@dataclass
class MigrationResult:
    success: bool
    new_path: Optional[Path] = None
    files_copied: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "newPath": str(self.new_path) if self.new_path else None,
            "filesCopied": self.files_copied,
            "error": self.error,
        }


MigrationCallback = Callable[[MigrationProgress], None]


class StorageMigrator:
    """Copies a vault between storage roots."""

    def __init__(self, config: Config, config_path: Optional[Path] = None):
        """Initialize the migrator.

        Args:
            config: Settings to update with the new location.
            config_path: Where to save the settings; None uses the default.
        """
        self.config = config
        self.config_path = config_path

    def migrate(
        self,
        old_root: Path,
        new_root: Path,
        on_progress: Optional[MigrationCallback] = None
    ) -> MigrationResult:
        """Copy the vault from ``old_root`` to ``new_root``.

        Failures are reported through an "error" progress event and the
        returned result; the old root is only removed after every copy
        succeeded.
        """
        old_root = Path(old_root).expanduser().resolve()
        new_root = Path(new_root).expanduser().resolve()
        emit = self._emitter(on_progress)

        with LogContext(logger, operation="relocate"):
            try:
                self._validate(old_root, new_root)
                copied = self._copy(old_root, new_root, emit)
            except (OSError, FileProcessingError) as e:
                message = e.message if isinstance(e, FileProcessingError) else str(e)
                logger.error(f"Relocation to {new_root} failed: {message}")
                emit(MigrationProgress(stage="error", progress=0, message=message))
                return MigrationResult(success=False, error=message)

            emit(MigrationProgress(stage="complete", progress=100, message="Migration complete!"))

            self._remove_old_root(old_root)

            self.config.storage.storage_path = new_root
            self.config.save(self.config_path)
            logger.info(f"Vault relocated: {old_root} -> {new_root} ({copied} files)")
            return MigrationResult(success=True, new_path=new_root, files_copied=copied)

    def _validate(self, old_root: Path, new_root: Path) -> None:
        if old_root == new_root:
            raise FileProcessingError(
                "New location is the same as the current one",
                file_path=str(new_root),
                error_code=ErrorCode.MIGRATION_FAILED,
            )
        if new_root.is_relative_to(old_root) or old_root.is_relative_to(new_root):
            raise FileProcessingError(
                "New location cannot contain or be inside the current one",
                file_path=str(new_root),
                error_code=ErrorCode.MIGRATION_FAILED,
            )
        if not FileOperations.is_safe_path(new_root):
            raise FileProcessingError(
                "Refusing to store the vault in a system directory",
                file_path=str(new_root),
                error_code=ErrorCode.PERMISSION_DENIED,
            )
        if not old_root.is_dir():
            raise FileProcessingError(
                "Current storage location does not exist",
                file_path=str(old_root),
                error_code=ErrorCode.FILE_NOT_FOUND,
            )
        if new_root.exists() and any(new_root.iterdir()):
            raise FileProcessingError(
                "New location must be empty",
                file_path=str(new_root),
                error_code=ErrorCode.MIGRATION_FAILED,
            )

    def _copy(self, old_root: Path, new_root: Path, emit: MigrationCallback) -> int:
        new_files = new_root / FILES_DIR_NAME
        new_files.mkdir(parents=True, exist_ok=True)

        emit(MigrationProgress(stage="metadata", progress=0, message="Copying metadata..."))
        for name in ROOT_FILES:
            source = old_root / name
            if source.exists():
                shutil.copy2(source, new_root / name)
        emit(MigrationProgress(stage="metadata", progress=100, message="Metadata copied"))

        old_files = old_root / FILES_DIR_NAME
        blobs: List[Path] = sorted(p for p in old_files.iterdir() if p.is_file()) if old_files.is_dir() else []
        total = len(blobs)
        if total:
            emit(MigrationProgress(
                stage="files", progress=0, current=0, total=total,
                message=f"Copying files (0/{total})...",
            ))
        for index, blob in enumerate(blobs, start=1):
            shutil.copy2(blob, new_files / blob.name)
            emit(MigrationProgress(
                stage="files",
                progress=round(index / total * 100),
                current=index,
                total=total,
                message=f"Copying files ({index}/{total})...",
            ))
        return total

    def _remove_old_root(self, old_root: Path) -> None:
        """Delete or trash the old root. Failure leaves a stale copy only."""
        try:
            if self.config.storage.trash_after_relocation:
                send2trash.send2trash(str(old_root))
            else:
                shutil.rmtree(old_root)
        except (OSError, send2trash.TrashPermissionError) as e:
            logger.warning(f"Could not remove old storage folder {old_root}: {e}")

    @staticmethod
    def _emitter(on_progress: Optional[MigrationCallback]) -> MigrationCallback:
        def emit(event: MigrationProgress) -> None:
            logger.debug(event.message, extra={"stage": event.stage})
            if on_progress is not None:
                on_progress(event)
        return emit
