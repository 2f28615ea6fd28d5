"""
Unit tests for the rotation coordinator.
"""

import pytest

from synapse_vault.actions.rotation import (
    RotationCoordinator,
    RotationProgress,
    RotationResult,
)
from synapse_vault.storage.ledger import decode_ledger_document
from synapse_vault.utils.exceptions import LockedError, PartialRotationFailure


@pytest.fixture
def coordinator(store, session):
    coordinator = RotationCoordinator(store, session)
    yield coordinator
    coordinator.shutdown()


@pytest.fixture
def five_files(store):
    return [store.add_bytes(f"file{i}.txt", f"content {i}".encode()) for i in range(1, 6)]


class TestRotation:
    """Tests for re-encrypting every blob and the ledger."""

    def test_clean_rotation(self, coordinator, store, five_files):
        """Test all files get fresh nonces and stay readable."""
        before = {r.id: store.read_blob(r).nonce for r in five_files}
        ledger_before = decode_ledger_document(store.metadata_path).envelope.nonce

        result = coordinator.run()

        assert result.success is True
        assert result.processed == 6
        assert result.total == 6
        assert result.errors == []
        for i, record in enumerate(five_files, start=1):
            assert store.read_blob(record).nonce != before[record.id]
            assert store.read_content(record.id) == f"content {i}".encode()
        assert decode_ledger_document(store.metadata_path).envelope.nonce != ledger_before

    def test_missing_blob_is_one_error(self, coordinator, store, five_files):
        """Test a deleted blob is reported and the rest still rotate."""
        third = five_files[2]
        store.blob_path(third).unlink()
        events = []

        result = coordinator.run(on_progress=events.append)

        assert result.success is False
        assert len(result.errors) == 1
        assert "file3.txt" in result.errors[0]
        assert result.processed == 6
        assert result.total == 6
        assert [e.current for e in events] == [1, 2, 3, 4, 5, 6]
        assert result.to_dict()["filesProcessed"] == events[-1].current
        for record in five_files[:2] + five_files[3:]:
            assert store.read_content(record.id).startswith(b"content")

    def test_corrupt_blob_is_recorded(self, coordinator, store, five_files):
        """Test a blob written with another key is an error entry."""
        other = store.session.cipher.encrypt(bytes(32), b"foreign")
        store.write_blob(five_files[0], other)

        result = coordinator.run()

        assert result.success is False
        assert len(result.errors) == 1
        assert result.errors[0].startswith("file1.txt")

    def test_progress_events(self, coordinator, five_files):
        """Test a frozen event per item and a final 100% event."""
        events = []

        coordinator.run(on_progress=events.append)

        assert [e.current for e in events] == [1, 2, 3, 4, 5, 6]
        assert all(e.total == 6 for e in events)
        assert events[-1].percentage == 100
        with pytest.raises(AttributeError):
            events[0].current = 99

    def test_observer_errors_do_not_abort(self, coordinator, five_files):
        """Test a failing observer cannot stop the batch."""
        def broken(event):
            raise RuntimeError("observer bug")

        assert coordinator.run(on_progress=broken).success is True

    def test_empty_vault(self, coordinator):
        """Test only the ledger is rotated in an empty vault."""
        events = []

        result = coordinator.run(on_progress=events.append)

        assert result.success is True
        assert result.total == 1
        assert events[-1] == RotationProgress(current=1, total=1, percentage=100)

    def test_locked_rotation(self, coordinator, session):
        """Test rotation needs an unlocked vault."""
        session.set_password("secret")
        session.lock()

        with pytest.raises(LockedError):
            coordinator.run()

    def test_submit_runs_in_background(self, coordinator, five_files):
        """Test rotation can run on the worker pool."""
        future = coordinator.submit()

        assert future.result(timeout=30).success is True


class TestRotationResult:
    """Tests for RotationResult."""

    def test_to_dict(self):
        """Test the serialized result shape."""
        result = RotationResult(success=False, processed=2, total=3, errors=["File not found: a"])

        assert result.to_dict() == {
            "success": False,
            "filesProcessed": 2,
            "totalFiles": 3,
            "errors": ["File not found: a"],
        }

    def test_raise_for_errors(self):
        """Test partial failure raises with the collected errors."""
        result = RotationResult(success=False, processed=2, total=3, errors=["x"])

        with pytest.raises(PartialRotationFailure) as exc_info:
            result.raise_for_errors()
        assert exc_info.value.errors == ["x"]

    def test_progress_percentage(self):
        """Test percentage rounding."""
        assert RotationProgress.of(1, 3).percentage == 33
        assert RotationProgress.of(3, 3).percentage == 100
