"""
Atomic File Writes
==================

Write-then-rename helpers for single-writer documents (key record,
encryption state, ledger, blobs). A failed write never truncates the
previous version of the target.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Union


def atomic_write_bytes(path: Union[str, Path], data: bytes) -> None:
    """Atomically replace ``path`` with ``data``.

    The temporary file lives in the target directory so the final
    ``os.replace`` never crosses a filesystem boundary.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def atomic_write_text(path: Union[str, Path], text: str) -> None:
    """Atomically replace ``path`` with UTF-8 ``text``."""
    atomic_write_bytes(path, text.encode("utf-8"))


def atomic_write_json(path: Union[str, Path], data: Any) -> None:
    """Atomically replace ``path`` with pretty-printed JSON."""
    atomic_write_text(path, json.dumps(data, indent=2, ensure_ascii=False))
