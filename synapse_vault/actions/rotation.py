"""
Rotation Coordinator
====================

Re-encrypts every stored blob and then the ledger, after a password
change. The master key bytes do not change when only the password
wrapper changes, so rotation refreshes nonces and surfaces corrupted
blobs early; nothing depends on it for confidentiality.

Items are processed independently. A failure on one file is recorded
and the batch continues; completed items are never rolled back.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, TYPE_CHECKING

from synapse_vault.security.custodian import VaultSession
from synapse_vault.utils.logging_config import get_logger, Timer
from synapse_vault.utils.exceptions import (
    FileProcessingError,
    LockedError,
    PartialRotationFailure,
    VaultError,
)

if TYPE_CHECKING:
    from synapse_vault.storage.vault_store import VaultStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class RotationProgress:
    """Progress event delivered to observers.

    Attributes:
        current: Items processed so far.
        total: Items in the batch (files plus the ledger).
        percentage: Rounded completion percentage.
    """
    current: int
    total: int
    percentage: int

    @classmethod
    def of(cls, current: int, total: int) -> "RotationProgress":
        percentage = round(current / total * 100) if total else 100
        return cls(current=current, total=total, percentage=percentage)

    def to_dict(self) -> dict:
        return {"current": self.current, "total": self.total, "percentage": self.percentage}


@dataclass
class RotationResult:
    """Outcome of a rotation run.

    ``processed`` counts every attempted item, failed ones included, and
    matches the last progress event.
    """
    success: bool
    processed: int
    total: int
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "filesProcessed": self.processed,
            "totalFiles": self.total,
            "errors": list(self.errors),
        }

    def raise_for_errors(self) -> None:
        """Raise PartialRotationFailure if any item failed."""
        if self.errors:
            raise PartialRotationFailure(
                f"Rotation finished with {len(self.errors)} error(s)",
                errors=self.errors,
            )


ProgressCallback = Callable[[RotationProgress], None]


class RotationCoordinator:
    """Runs rotation over one vault store."""

    def __init__(self, store: "VaultStore", session: VaultSession):
        self.store = store
        self.session = session
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    def run(self, on_progress: Optional[ProgressCallback] = None) -> RotationResult:
        """Re-encrypt all blobs, then the ledger.

        The store lock is held for the whole run so no other ledger
        write can interleave.

        Args:
            on_progress: Called with a frozen event after every item and
                once more with percentage 100 at the end.

        Raises:
            LockedError: If the vault is locked when rotation starts.
        """
        if self.session.is_locked:
            raise LockedError("Cannot rotate: vault is locked")

        with self.store.lock, Timer(logger, "rotation"):
            records = self.store.list_files()
            total = len(records) + 1
            processed = 0
            errors: List[str] = []

            logger.info(f"Starting rotation of {len(records)} files")

            for record in records:
                try:
                    envelope = self.store.read_blob(record)
                    plaintext = self.session.decrypt_content(envelope)
                    self.store.write_blob(record, self.session.encrypt_content(plaintext))
                except LockedError:
                    raise
                except VaultError as e:
                    if isinstance(e, FileProcessingError):
                        errors.append(e.message)
                    else:
                        errors.append(f"{record.original_name}: {e.message}")
                    logger.error(f"Rotation failed for {record.original_name}: {e}")
                processed += 1
                self._emit(on_progress, processed, total)

            try:
                self.store.rewrite_ledger(records)
            except LockedError:
                raise
            except VaultError as e:
                errors.append(f"metadata: {e.message}")
                logger.error(f"Rotation failed for ledger: {e}")
            processed += 1

            self._emit(on_progress, total, total)

        result = RotationResult(
            success=not errors,
            processed=processed,
            total=total,
            errors=errors,
        )
        if errors:
            logger.warning(f"Rotation finished with {len(errors)} error(s)")
        else:
            logger.info(f"Rotation finished: {processed}/{total} items")
        return result

    def submit(self, on_progress: Optional[ProgressCallback] = None) -> "Future[RotationResult]":
        """Run rotation on a background worker."""
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="rotation")
            return self._executor.submit(self.run, on_progress)

    def shutdown(self, wait: bool = True) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None

    @staticmethod
    def _emit(on_progress: Optional[ProgressCallback], current: int, total: int) -> None:
        if on_progress is None:
            return
        try:
            on_progress(RotationProgress.of(current, total))
        except Exception as e:
            # Observers cannot affect the batch
            logger.warning(f"Progress observer raised: {e}")
