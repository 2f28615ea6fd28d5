"""
Secure File Deletion
====================

Overwrite-then-unlink deletion for decrypted copies of vault files.
Encrypted blobs do not need this; plaintext written to the temp
directory for viewing does.
"""

from pathlib import Path
import os
import secrets

from synapse_vault.utils.logging_config import get_logger
from synapse_vault.utils.exceptions import FileProcessingError, ErrorCode

logger = get_logger(__name__)


class SecureDeleter:
    """Secure file deletion with multiple overwrite passes."""

    BUFFER_SIZE = 65536  # 64KB

    def __init__(self, passes: int = 1):
        """Initialize secure deleter.

        Args:
            passes: Number of overwrite passes (1-7).
        """
        self.passes = min(max(passes, 1), 7)

    def secure_delete(self, file_path: Path) -> bool:
        """Overwrite a file and delete it.

        Args:
            file_path: Path to file to delete.

        Returns:
            True if the file was deleted, False if it did not exist.

        Raises:
            FileProcessingError: If the path is not a file or deletion fails.
        """
        file_path = Path(file_path)

        if not file_path.exists():
            logger.debug(f"File already gone: {file_path.name}")
            return False

        if not file_path.is_file():
            raise FileProcessingError(
                "Path is not a file",
                file_path=str(file_path),
                error_code=ErrorCode.SECURE_DELETE_FAILED
            )

        try:
            file_size = file_path.stat().st_size
            for pass_num in range(self.passes):
                self._overwrite_pass(file_path, file_size, pass_num)
            file_path.unlink()
        except FileNotFoundError:
            # Removed by the viewing application mid-overwrite
            return False
        except OSError as e:
            raise FileProcessingError(
                f"Secure deletion failed: {e}",
                file_path=str(file_path),
                error_code=ErrorCode.SECURE_DELETE_FAILED,
                cause=e,
            )

        logger.debug(f"Securely deleted: {file_path.name} ({self.passes} passes)")
        return True

    def _overwrite_pass(self, file_path: Path, file_size: int, pass_num: int) -> None:
        """Perform a single overwrite pass (random, zeros, ones in turn)."""
        with open(file_path, 'r+b') as f:
            if pass_num % 3 == 1:
                pattern = b'\x00' * self.BUFFER_SIZE
            elif pass_num % 3 == 2:
                pattern = b'\xFF' * self.BUFFER_SIZE
            else:
                pattern = None

            bytes_written = 0
            while bytes_written < file_size:
                chunk_size = min(self.BUFFER_SIZE, file_size - bytes_written)
                f.write(secrets.token_bytes(chunk_size) if pattern is None else pattern[:chunk_size])
                bytes_written += chunk_size

            f.flush()
            os.fsync(f.fileno())

    def secure_delete_directory(self, dir_path: Path, remove_root: bool = False) -> int:
        """Securely delete every file below a directory.

        Args:
            dir_path: Directory to empty.
            remove_root: Also remove ``dir_path`` itself once empty.

        Returns:
            Number of files deleted.
        """
        dir_path = Path(dir_path)
        if not dir_path.is_dir():
            return 0

        deleted_count = 0
        entries = sorted(dir_path.glob('**/*'), key=lambda p: len(str(p)), reverse=True)

        for path in entries:
            if path.is_file():
                try:
                    if self.secure_delete(path):
                        deleted_count += 1
                except FileProcessingError as e:
                    logger.warning(f"Failed to delete {path.name}: {e}")

        for path in entries:
            if path.is_dir():
                try:
                    path.rmdir()
                except OSError:
                    logger.debug(f"Directory not empty: {path}")

        if remove_root:
            try:
                dir_path.rmdir()
            except OSError:
                logger.debug(f"Directory not empty: {dir_path}")

        if deleted_count:
            logger.info(f"Securely deleted {deleted_count} files from {dir_path}")
        return deleted_count
