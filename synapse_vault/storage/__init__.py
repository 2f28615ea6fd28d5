"""Storage module: ledger, encrypted blobs and temporary copies."""

from .ledger import Ledger, FileRecord, LedgerKind, decode_ledger_document, normalize_tags
from .vault_store import VaultStore
from .temp_files import TempFileManager

__all__ = [
    "Ledger",
    "FileRecord",
    "LedgerKind",
    "decode_ledger_document",
    "normalize_tags",
    "VaultStore",
    "TempFileManager",
]
