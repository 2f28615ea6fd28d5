"""
Unit tests for storage relocation.
"""

import pytest
import send2trash

from synapse_vault.actions.migration import StorageMigrator
from synapse_vault.config.settings import Config
from synapse_vault.security.custodian import VaultSession
from synapse_vault.storage.vault_store import VaultStore


@pytest.fixture
def config(tmp_path, vault_root):
    config = Config()
    config.storage.storage_path = vault_root
    return config


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "settings.yaml"


@pytest.fixture
def migrator(config, config_path):
    return StorageMigrator(config, config_path)


class TestStorageMigrator:
    """Tests for moving a vault between folders."""

    def test_relocate_vault(self, migrator, store, session, vault_root, tmp_path, config_path, fast_kdf):
        """Test every file moves and stays decryptable at the new root."""
        records = [store.add_bytes(f"f{i}.txt", f"data {i}".encode()) for i in range(3)]
        session.set_password("secret")
        session.teardown()
        new_root = tmp_path / "moved"
        events = []

        result = migrator.migrate(vault_root, new_root, events.append)

        assert result.success is True
        assert result.files_copied == 3
        assert not vault_root.exists()
        assert Config.load(config_path).storage.storage_path == new_root.resolve()

        moved = VaultSession(new_root, kdf=fast_kdf)
        assert moved.initialize().is_locked is True
        assert moved.unlock("secret").success is True
        moved_store = VaultStore(new_root, moved)
        for i, record in enumerate(records):
            assert moved_store.read_content(record.id) == f"data {i}".encode()

    def test_progress_stages(self, migrator, store, vault_root, tmp_path):
        """Test metadata, files and complete stages are reported in order."""
        store.add_bytes("a.txt", b"a")
        store.add_bytes("b.txt", b"b")
        events = []

        migrator.migrate(vault_root, tmp_path / "moved", events.append)

        stages = [e.stage for e in events]
        assert stages == ["metadata", "metadata", "files", "files", "files", "complete"]
        file_events = [e for e in events if e.stage == "files"]
        assert [(e.current, e.total) for e in file_events] == [(0, 2), (1, 2), (2, 2)]
        assert file_events[-1].progress == 100
        assert events[-1].to_dict() == {"stage": "complete", "progress": 100, "message": "Migration complete!"}

    def test_same_path_refused(self, migrator, store, vault_root):
        """Test relocating onto itself is an error and touches nothing."""
        store.add_bytes("a.txt", b"a")
        events = []

        result = migrator.migrate(vault_root, vault_root, events.append)

        assert result.success is False
        assert events[-1].stage == "error"
        assert store.list_files()

    def test_nested_path_refused(self, migrator, store, vault_root):
        """Test the new root cannot live inside the old one."""
        result = migrator.migrate(vault_root, vault_root / "inner")

        assert result.success is False

    def test_non_empty_destination_refused(self, migrator, store, vault_root, tmp_path):
        """Test an occupied destination is not overwritten."""
        target = tmp_path / "occupied"
        target.mkdir()
        (target / "keep.txt").write_text("mine")

        result = migrator.migrate(vault_root, target)

        assert result.success is False
        assert (target / "keep.txt").read_text() == "mine"
        assert vault_root.exists()

    def test_trash_old_root(self, migrator, config, store, vault_root, tmp_path, monkeypatch):
        """Test the old root goes to the trash when configured."""
        trashed = []
        monkeypatch.setattr(send2trash, "send2trash", trashed.append)
        config.storage.trash_after_relocation = True

        result = migrator.migrate(vault_root, tmp_path / "moved")

        assert result.success is True
        assert trashed == [str(vault_root.resolve())]
