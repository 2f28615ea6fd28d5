"""
Temporary Plaintext Copies
==========================

Opening a vault file decrypts it into the ``temp/`` directory of the
storage root so an external application can display it. Opened copies
are tracked and watched; when the viewer deletes or replaces a copy it
is securely removed, and whatever remains is wiped on startup and on
shutdown.
"""

import os
import subprocess
import sys
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, DirDeletedEvent

from synapse_vault.actions.file_operations import FileOperations
from synapse_vault.security.secure_delete import SecureDeleter
from synapse_vault.storage.vault_store import VaultStore
from synapse_vault.utils.logging_config import get_logger
from synapse_vault.utils.exceptions import FileProcessingError, ErrorCode

logger = get_logger(__name__)

Launcher = Callable[[Path], None]


def default_launcher(path: Path) -> None:
    """Open a file with the desktop's default application."""
    if sys.platform.startswith("win"):
        os.startfile(str(path))  # type: ignore[attr-defined]
        return
    command = "open" if sys.platform == "darwin" else "xdg-open"
    subprocess.Popen(
        [command, str(path)],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )


class TempCopyEventHandler(FileSystemEventHandler):
    """Forgets tracked copies once the viewer removes them."""

    def __init__(self, manager: "TempFileManager"):
        super().__init__()
        self.manager = manager

    def on_deleted(self, event) -> None:
        if isinstance(event, DirDeletedEvent):
            return
        self.manager.release(Path(event.src_path))

    def on_moved(self, event) -> None:
        # Editors that save by rename leave the old path behind
        self.manager.release(Path(event.src_path))


class TempFileManager:
    """Decrypts files for viewing and cleans up after them."""

    def __init__(
        self,
        store: VaultStore,
        deleter: Optional[SecureDeleter] = None,
        launcher: Optional[Launcher] = None,
        file_ops: Optional[FileOperations] = None,
        watch: bool = True
    ):
        """Initialize the manager.

        Args:
            store: Vault store to read content from.
            deleter: Secure deleter for plaintext copies.
            launcher: Callable opening a path in an external viewer.
                None leaves opening to the caller.
            file_ops: Helper for writing plaintext files.
            watch: Watch the temp directory for removals.
        """
        self.store = store
        self.deleter = deleter or SecureDeleter()
        self.launcher = launcher
        self.file_ops = file_ops or FileOperations()
        self.watch = watch
        self._opened: Dict[Path, str] = {}
        self._lock = threading.Lock()
        self._observer: Optional[Observer] = None

    @property
    def temp_dir(self) -> Path:
        return self.store.temp_dir

    @property
    def opened_files(self) -> List[Path]:
        with self._lock:
            return list(self._opened)

    def start(self) -> None:
        """Wipe leftovers from a previous run and start watching."""
        self.clean_directory()
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        if self.watch and self._observer is None:
            self._observer = Observer()
            self._observer.schedule(TempCopyEventHandler(self), str(self.temp_dir), recursive=False)
            self._observer.start()
            logger.debug(f"Watching temp directory: {self.temp_dir}")

    def stop(self) -> None:
        """Stop watching. Tracked copies are left to ``cleanup_all``."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None

    def open_file(self, file_id: str) -> Path:
        """Decrypt a stored file into the temp directory.

        The copy keeps the original name; if that name is taken a
        millisecond timestamp is appended.

        Returns:
            Path of the plaintext copy.

        Raises:
            LockedError: If the vault is locked.
            FileProcessingError: If the record or blob is missing.
        """
        record = self.store.get_file(file_id)
        data = self.store.read_content(file_id)

        self.temp_dir.mkdir(parents=True, exist_ok=True)
        target = self.file_ops.timestamped_path(self.temp_dir / Path(record.original_name).name)
        path = self.file_ops.write_file(data, target.parent, target.name, overwrite=True)

        with self._lock:
            self._opened[path] = file_id
        logger.info(f"Opened {record.original_name} for viewing")

        if self.launcher is not None:
            try:
                self.launcher(path)
            except OSError as e:
                self.discard(path)
                raise FileProcessingError(
                    f"Could not launch viewer: {e}",
                    file_path=str(path),
                    file_id=file_id,
                    error_code=ErrorCode.PROCESSING_FAILED,
                    cause=e,
                )
        return path

    def release(self, path: Path) -> None:
        """Stop tracking a copy the viewer has removed."""
        with self._lock:
            file_id = self._opened.pop(Path(path), None)
        if file_id is None:
            return
        logger.debug(f"Temp copy removed by viewer: {Path(path).name}")
        # A rename leaves the content under another name in temp/
        self.clean_directory(keep_tracked=True)

    def discard(self, path: Path) -> bool:
        """Securely delete one opened copy."""
        path = Path(path)
        with self._lock:
            self._opened.pop(path, None)
        return self.deleter.secure_delete(path)

    def clean_directory(self, keep_tracked: bool = False) -> int:
        """Securely delete files in the temp directory.

        Args:
            keep_tracked: Leave copies still open in a viewer.

        Returns:
            Number of files deleted.
        """
        if not self.temp_dir.is_dir():
            return 0
        if not keep_tracked:
            with self._lock:
                self._opened.clear()
            return self.deleter.secure_delete_directory(self.temp_dir)

        with self._lock:
            tracked = set(self._opened)
        deleted = 0
        for path in self.temp_dir.iterdir():
            if path.is_file() and path not in tracked:
                try:
                    if self.deleter.secure_delete(path):
                        deleted += 1
                except FileProcessingError as e:
                    logger.warning(f"Failed to clean temp file {path.name}: {e}")
        return deleted

    def cleanup_all(self) -> int:
        """Stop watching and wipe every copy. Called on shutdown."""
        self.stop()
        deleted = self.clean_directory()
        if deleted:
            logger.info(f"Removed {deleted} temporary files")
        return deleted
