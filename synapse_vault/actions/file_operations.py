"""
File Operations
===============

Safe writes of decrypted content outside the vault: exports and temp
copies for viewing. Handles name conflicts without overwriting.
"""

import time
from pathlib import Path
from typing import Optional

from synapse_vault.utils.logging_config import get_logger
from synapse_vault.utils.exceptions import FileProcessingError, ErrorCode
from synapse_vault.utils.fileio import atomic_write_bytes

logger = get_logger(__name__)


class FileOperations:
    """Conflict-aware writes of plaintext files."""

    MAX_CONFLICT_ATTEMPTS = 1000

    def write_file(
        self,
        data: bytes,
        dest_dir: Path,
        filename: str,
        overwrite: bool = False
    ) -> Path:
        """Write bytes to ``dest_dir / filename``.

        Args:
            data: Plaintext content.
            dest_dir: Destination directory (created if missing).
            filename: Desired filename.
            overwrite: Replace an existing file instead of renaming.

        Returns:
            Final path written.

        Raises:
            FileProcessingError: If the write fails.
        """
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)

        dest_path = dest_dir / Path(filename).name
        if not overwrite:
            dest_path = self.resolve_conflict(dest_path)

        try:
            atomic_write_bytes(dest_path, data)
        except OSError as e:
            raise FileProcessingError(
                f"Failed to write file: {e}",
                file_path=str(dest_path),
                error_code=ErrorCode.PERMISSION_DENIED if isinstance(e, PermissionError) else ErrorCode.PROCESSING_FAILED,
                cause=e,
            )

        logger.info(f"Wrote: {dest_path}")
        return dest_path

    def resolve_conflict(self, dest_path: Path) -> Path:
        """Resolve filename conflict by appending a counter.

        Args:
            dest_path: Desired destination path.

        Returns:
            Available path (may have counter suffix).
        """
        if not dest_path.exists():
            return dest_path

        stem = dest_path.stem
        suffix = dest_path.suffix
        parent = dest_path.parent

        counter = 1
        while counter <= self.MAX_CONFLICT_ATTEMPTS:
            new_path = parent / f"{stem}_{counter}{suffix}"
            if not new_path.exists():
                return new_path
            counter += 1

        raise FileProcessingError(
            "Too many files with same name",
            file_path=str(dest_path),
            error_code=ErrorCode.PROCESSING_FAILED
        )

    @staticmethod
    def timestamped_path(dest_path: Path, timestamp_ms: Optional[int] = None) -> Path:
        """Return ``dest_path`` or, if taken, ``<stem>_<millis><suffix>``."""
        if not dest_path.exists():
            return dest_path
        timestamp_ms = timestamp_ms or int(time.time() * 1000)
        return dest_path.with_name(f"{dest_path.stem}_{timestamp_ms}{dest_path.suffix}")

    @staticmethod
    def is_safe_path(file_path: Path) -> bool:
        """Check a directory is not a system location.

        Args:
            file_path: Path to check.

        Returns:
            True if path is safe to write vault data into.
        """
        file_path = Path(file_path).expanduser().absolute()

        unsafe_dirs = [
            Path("/"),
            Path("/bin"),
            Path("/boot"),
            Path("/etc"),
            Path("/lib"),
            Path("/sbin"),
            Path("/usr"),
            Path("/var"),
            Path.home(),
        ]
        return all(file_path != unsafe for unsafe in unsafe_dirs)
