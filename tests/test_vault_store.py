"""
Unit tests for the vault store and temporary copies.
"""

import base64
import json

import pytest

from synapse_vault.storage.ledger import FileRecord
from synapse_vault.storage.temp_files import TempFileManager
from synapse_vault.utils.exceptions import (
    ErrorCode,
    FileProcessingError,
    LockedError,
    StorageCorruptionError,
)


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("hello")
    return path


class TestAddAndRead:
    """Tests for importing and reading files."""

    def test_add_file(self, store, source_file):
        """Test a file is stored encrypted with a random blob name."""
        record = store.add_file(source_file, tags=["work"])

        assert record.original_name == "notes.txt"
        assert record.format == "Text File"
        assert record.extension == ".txt"
        assert record.size_bytes == 5
        assert record.tags == ["work"]
        assert record.stored_name.endswith(".enc")
        assert "notes" not in record.stored_name

        blob = store.blob_path(record).read_text()
        assert "hello" not in blob
        assert store.read_content(record.id) == b"hello"

    def test_list_keeps_order(self, store):
        """Test records come back in insertion order."""
        ids = [store.add_bytes(f"file{i}.bin", bytes([i])).id for i in range(3)]

        assert [r.id for r in store.list_files()] == ids

    def test_unknown_extension_format(self, store):
        """Test the format falls back to the extension name."""
        assert store.add_bytes("data.xyz", b"1").format == "XYZ File"
        assert store.add_bytes("README", b"1").format == "Unknown"

    def test_add_missing_source(self, store, tmp_path):
        """Test importing a missing path fails."""
        with pytest.raises(FileProcessingError) as exc_info:
            store.add_file(tmp_path / "missing.txt")
        assert exc_info.value.error_code == ErrorCode.FILE_NOT_FOUND

    def test_locked_store(self, store, session, source_file):
        """Test every operation refuses while locked."""
        record = store.add_file(source_file)
        session.set_password("secret")
        session.lock()

        with pytest.raises(LockedError):
            store.list_files()
        with pytest.raises(LockedError):
            store.add_file(source_file)
        with pytest.raises(LockedError):
            store.read_content(record.id)

    def test_failed_ledger_write_removes_blob(self, store, monkeypatch):
        """Test a new blob is not left behind if its record is not saved."""
        def fail(records):
            raise StorageCorruptionError("disk full")

        monkeypatch.setattr(store.ledger, "write", fail)

        with pytest.raises(StorageCorruptionError):
            store.add_bytes("a.txt", b"a")
        assert list(store.files_dir.iterdir()) == []

    def test_corrupt_blob(self, store):
        """Test a non-envelope blob is reported as corruption."""
        record = store.add_bytes("a.txt", b"a")
        store.blob_path(record).write_text(json.dumps({"files": []}))

        with pytest.raises(StorageCorruptionError):
            store.read_content(record.id)


class TestMutations:
    """Tests for remove, tags and rename."""

    def test_remove_file(self, store):
        """Test removing deletes both record and blob."""
        record = store.add_bytes("a.txt", b"a")
        blob = store.blob_path(record)

        store.remove_file(record.id)

        assert store.list_files() == []
        assert not blob.exists()

    def test_remove_unknown(self, store):
        """Test removing an unknown id fails."""
        with pytest.raises(FileProcessingError) as exc_info:
            store.remove_file("nope")
        assert exc_info.value.error_code == ErrorCode.RECORD_NOT_FOUND

    def test_update_tags(self, store):
        """Test tags are replaced, trimmed and deduplicated."""
        record = store.add_bytes("a.txt", b"a", tags=["old"])

        updated = store.update_tags(record.id, ["b", " a ", "b"])

        assert updated.tags == ["b", "a"]
        assert store.get_file(record.id).tags == ["b", "a"]

    def test_add_and_remove_tags(self, store):
        """Test incremental tag edits."""
        record = store.add_bytes("a.txt", b"a", tags=["x"])

        store.add_tags(record.id, ["y", "x"])
        assert store.get_file(record.id).tags == ["x", "y"]

        store.remove_tags(record.id, ["x"])
        assert store.get_file(record.id).tags == ["y"]

    def test_search(self, store):
        """Test name and tag filtering."""
        store.add_bytes("Tax Return.pdf", b"1", tags=["tax", "2024"])
        store.add_bytes("holiday.jpg", b"2", tags=["2024"])

        assert [r.original_name for r in store.search("tax")] == ["Tax Return.pdf"]
        assert len(store.search(tags=["2024"])) == 2
        assert store.search("holiday", tags=["tax"]) == []

    def test_rename_updates_format(self, store):
        """Test renaming recomputes extension and format."""
        record = store.add_bytes("draft.txt", b"text")

        renamed = store.rename_file(record.id, "draft.md")

        assert renamed.original_name == "draft.md"
        assert renamed.extension == ".md"
        assert renamed.format == "Markdown"
        assert store.read_content(record.id) == b"text"

    @pytest.mark.parametrize("name", ["", "   ", "../escape.txt", "dir/file.txt"])
    def test_rename_rejects_bad_names(self, store, name):
        """Test names with paths or no content are refused."""
        record = store.add_bytes("a.txt", b"a")

        with pytest.raises(FileProcessingError):
            store.rename_file(record.id, name)


class TestExport:
    """Tests for exporting decrypted content."""

    def test_export_to_directory(self, store, tmp_path):
        """Test exporting into a folder uses the original name."""
        record = store.add_bytes("report.txt", b"content")
        out = tmp_path / "out"
        out.mkdir()

        first = store.export_file(record.id, out)
        second = store.export_file(record.id, out)

        assert first == out / "report.txt"
        assert second == out / "report_1.txt"
        assert first.read_bytes() == b"content"

    def test_export_to_file_path(self, store, tmp_path):
        """Test exporting to an explicit file name."""
        record = store.add_bytes("report.txt", b"content")

        path = store.export_file(record.id, tmp_path / "copy.txt")

        assert path == tmp_path / "copy.txt"
        assert path.read_bytes() == b"content"

    def test_base64_record_is_decoded(self, store, tmp_path):
        """Test records without an encoding key hold base64 payloads."""
        record = store.add_bytes("photo.png", b"placeholder")
        data = record.to_dict()
        del data["encoding"]
        old_record = FileRecord.from_dict(data)
        store.write_blob(old_record, store.session.encrypt_content(base64.b64encode(b"\x89PNG\x00raw")))
        store.rewrite_ledger([old_record])

        assert old_record.content_encoding == "base64"
        assert store.read_content(record.id) == b"\x89PNG\x00raw"
        assert store.export_file(record.id, tmp_path / "photo.png").read_bytes() == b"\x89PNG\x00raw"

    def test_invalid_base64_payload(self, store):
        """Test an undecodable base64 payload is corruption."""
        record = store.add_bytes("a.txt", b"a")
        record.content_encoding = "base64"
        store.write_blob(record, store.session.encrypt_content(b"not base64!"))
        store.rewrite_ledger([record])

        with pytest.raises(StorageCorruptionError):
            store.read_content(record.id)


class TestTempFiles:
    """Tests for decrypted copies opened for viewing."""

    @pytest.fixture
    def manager(self, store):
        manager = TempFileManager(store, watch=False)
        manager.start()
        yield manager
        manager.cleanup_all()

    def test_open_file(self, manager, store):
        """Test opening writes a plaintext copy under temp/."""
        record = store.add_bytes("photo.txt", b"pixels")

        path = manager.open_file(record.id)

        assert path.parent == store.temp_dir
        assert path.name == "photo.txt"
        assert path.read_bytes() == b"pixels"
        assert path in manager.opened_files

    def test_name_collision_gets_timestamp(self, manager, store):
        """Test a second open of the same name gets a timestamp suffix."""
        record = store.add_bytes("photo.txt", b"pixels")

        first = manager.open_file(record.id)
        second = manager.open_file(record.id)

        assert first != second
        assert second.name.startswith("photo_")
        assert second.suffix == ".txt"

    def test_cleanup_all(self, manager, store):
        """Test shutdown wipes every copy."""
        record = store.add_bytes("a.txt", b"a")
        path = manager.open_file(record.id)

        assert manager.cleanup_all() == 1
        assert not path.exists()
        assert manager.opened_files == []

    def test_start_clears_leftovers(self, store):
        """Test stale copies from a crashed run are removed at startup."""
        store.temp_dir.mkdir(parents=True, exist_ok=True)
        stale = store.temp_dir / "stale.txt"
        stale.write_bytes(b"old plaintext")

        TempFileManager(store, watch=False).start()

        assert not stale.exists()

    def test_release_forgets_copy(self, manager, store):
        """Test a copy removed by the viewer is no longer tracked."""
        record = store.add_bytes("a.txt", b"a")
        path = manager.open_file(record.id)
        path.unlink()

        manager.release(path)

        assert manager.opened_files == []

    def test_launcher_called(self, store):
        """Test the viewer launcher receives the decrypted path."""
        launched = []
        manager = TempFileManager(store, launcher=launched.append, watch=False)
        record = store.add_bytes("a.txt", b"a")

        path = manager.open_file(record.id)

        assert launched == [path]
        manager.cleanup_all()
