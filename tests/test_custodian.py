"""
Unit tests for the master key custodian.
"""

import json

import pytest

from synapse_vault.security.custodian import VaultSession, VaultState, OperationResult
from synapse_vault.security.key_record import WrappedKeyRecord, UnwrappedKeyRecord
from synapse_vault.utils.exceptions import (
    ErrorCode,
    InvalidCredentialsError,
    LockedError,
    NoPasswordSetError,
    StorageCorruptionError,
)


def read_state(root):
    return json.loads((root / "encryption.json").read_text())


class TestInitialize:
    """Tests for loading and creating the master key."""

    def test_first_run_creates_unwrapped_key(self, vault_root, fast_kdf):
        """Test a fresh vault starts unlocked without a password."""
        session = VaultSession(vault_root, kdf=fast_kdf)

        assert session.state == VaultState.UNINITIALIZED

        status = session.initialize()

        assert status.is_locked is False
        assert status.has_password is False
        assert session.state == VaultState.UNLOCKED
        assert isinstance(session.key_store.read_record(), UnwrappedKeyRecord)
        assert read_state(vault_root) == {"hasPassword": False, "version": 1}

    def test_reload_keeps_same_key(self, vault_root, fast_kdf):
        """Test a second process decrypts what the first one wrote."""
        first = VaultSession(vault_root, kdf=fast_kdf)
        first.initialize()
        envelope = first.encrypt_content(b"persisted")
        first.teardown()

        second = VaultSession(vault_root, kdf=fast_kdf)
        second.initialize()

        assert second.decrypt_content(envelope) == b"persisted"

    def test_password_vault_starts_locked(self, session, vault_root, fast_kdf):
        """Test a wrapped key record loads into the locked state."""
        session.set_password("secret")
        session.teardown()

        reloaded = VaultSession(vault_root, kdf=fast_kdf)
        status = reloaded.initialize()

        assert status.is_locked is True
        assert status.has_password is True
        assert reloaded.state == VaultState.LOCKED

    def test_corrupt_key_record(self, vault_root, fast_kdf):
        """Test a malformed master.key raises StorageCorruptionError."""
        (vault_root / "master.key").write_text("definitely not a key")

        with pytest.raises(StorageCorruptionError):
            VaultSession(vault_root, kdf=fast_kdf).initialize()

    def test_flag_disagrees_with_record(self, session, vault_root, fast_kdf):
        """Test hasPassword=true with a hex key record is corruption."""
        session.teardown()
        (vault_root / "encryption.json").write_text(json.dumps({"hasPassword": True, "version": 1}))

        with pytest.raises(StorageCorruptionError) as exc_info:
            VaultSession(vault_root, kdf=fast_kdf).initialize()
        assert exc_info.value.error_code == ErrorCode.KEY_RECORD_MISMATCH

    def test_state_without_key_record(self, session, vault_root, fast_kdf):
        """Test encryption.json without master.key is corruption, not a new vault."""
        session.teardown()
        (vault_root / "master.key").unlink()

        with pytest.raises(StorageCorruptionError):
            VaultSession(vault_root, kdf=fast_kdf).initialize()

    def test_missing_state_file_is_restored(self, session, vault_root, fast_kdf):
        """Test a missing encryption.json is rebuilt from the record shape."""
        session.set_password("secret")
        session.teardown()
        (vault_root / "encryption.json").unlink()

        status = VaultSession(vault_root, kdf=fast_kdf).initialize()

        assert status.has_password is True
        assert read_state(vault_root)["hasPassword"] is True


class TestPasswordLifecycle:
    """Tests for set/lock/unlock/remove."""

    def test_scenario_wrap_change_preserves_key(self, session, vault_root):
        """Test content written before a password change stays readable."""
        envelope = session.encrypt_content("hello")
        assert session.decrypt_content(envelope) == b"hello"
        assert not (vault_root / "master.key").read_text().startswith("{")

        result = session.set_password("abc123")

        assert result.success is True
        assert result.needs_rotation is True
        assert (vault_root / "master.key").read_text().startswith("{")
        assert read_state(vault_root)["hasPassword"] is True

        assert session.lock().success is True
        with pytest.raises(LockedError):
            session.encrypt_content("hello")

        assert session.unlock("abc123").success is True
        assert session.decrypt_content(envelope) == b"hello"

    def test_wrong_password_is_retryable(self, session):
        """Test failed unlocks leave state untouched."""
        session.set_password("correct")
        session.lock()

        for _ in range(3):
            result = session.unlock("wrong")
            assert result.success is False
            assert result.error_code == ErrorCode.INVALID_CREDENTIALS
            assert session.status().is_locked is True
            assert session.status().has_password is True

        assert session.unlock("correct").success is True
        assert session.is_locked is False

    def test_lock_without_password(self, session):
        """Test locking is refused when the vault could not be reopened."""
        result = session.lock()

        assert result.success is False
        assert result.error_code == ErrorCode.NO_PASSWORD_SET
        assert session.is_locked is False

    def test_change_requires_old_password(self, session):
        """Test changing an existing password needs the current one."""
        session.set_password("first")

        assert session.set_password("second").success is False
        assert session.set_password("second", old_password="nope").success is False
        assert session.set_password("second", old_password="first").success is True

        session.lock()
        assert session.unlock("first").success is False
        assert session.unlock("second").success is True

    def test_set_password_while_locked_with_old_password(self, session):
        """Test a locked vault can change password by proving the old one."""
        session.set_password("first")
        session.lock()

        assert session.set_password("second", old_password="first").success is True
        assert session.is_locked is False

    def test_empty_new_password(self, session):
        """Test an empty password is rejected."""
        result = session.set_password("")

        assert result.success is False
        assert session.status().has_password is False

    def test_remove_password_then_reload(self, session, vault_root, fast_kdf):
        """Test removal survives a fresh initialize."""
        envelope = session.encrypt_content(b"data")
        session.set_password("secret")
        session.lock()

        assert session.remove_password("wrong").success is False
        assert session.remove_password("secret").success is True
        session.teardown()

        reloaded = VaultSession(vault_root, kdf=fast_kdf)
        status = reloaded.initialize()

        assert status.has_password is False
        assert status.is_locked is False
        assert reloaded.decrypt_content(envelope) == b"data"

    def test_failed_state_write_keeps_old_record(self, session, vault_root, fast_kdf, monkeypatch):
        """Test a failed encryption.json write leaves the vault openable."""
        envelope = session.encrypt_content(b"data")

        def broken_write(has_password):
            raise StorageCorruptionError("disk full")

        monkeypatch.setattr(session.key_store, "write_has_password", broken_write)

        with pytest.raises(StorageCorruptionError):
            session.set_password("secret")

        assert session.status().has_password is False
        assert isinstance(session.key_store.read_record(), UnwrappedKeyRecord)
        session.teardown()

        reloaded = VaultSession(vault_root, kdf=fast_kdf)
        status = reloaded.initialize()

        assert status.has_password is False
        assert reloaded.decrypt_content(envelope) == b"data"

    def test_failed_state_write_keeps_password(self, session, vault_root, fast_kdf, monkeypatch):
        """Test a failed removal keeps the wrapped record and its password."""
        session.set_password("secret")

        def broken_write(has_password):
            raise StorageCorruptionError("disk full")

        monkeypatch.setattr(session.key_store, "write_has_password", broken_write)

        with pytest.raises(StorageCorruptionError):
            session.remove_password("secret")

        assert session.status().has_password is True
        assert isinstance(session.key_store.read_record(), WrappedKeyRecord)
        session.teardown()

        reloaded = VaultSession(vault_root, kdf=fast_kdf)
        assert reloaded.initialize().is_locked is True
        assert reloaded.unlock("secret").success is True

    def test_remove_without_password(self, session):
        """Test removing a password that does not exist."""
        result = session.remove_password("anything")

        assert result.error_code == ErrorCode.NO_PASSWORD_SET

    def test_unlock_uses_stored_kdf_params(self, session, vault_root):
        """Test unlock follows the parameters saved with the record."""
        session.set_password("secret")
        session.teardown()

        # Default PBKDF2 service, record was written with argon2id
        reloaded = VaultSession(vault_root)
        reloaded.initialize()
        record = reloaded.key_store.read_record()

        assert isinstance(record, WrappedKeyRecord)
        assert reloaded.unlock("secret").success is True


class TestKeyHandling:
    """Tests for in-memory key handling."""

    def test_lock_wipes_key_buffer(self, session):
        """Test the key bytearray is zeroed in place on lock."""
        session.set_password("secret")
        buffer = session._master_key

        session.lock()

        assert buffer == bytearray(32)
        assert session._master_key is None

    def test_teardown_wipes_key(self, session):
        """Test teardown zeroes the key and forgets the state."""
        buffer = session._master_key

        session.teardown()

        assert buffer == bytearray(32)
        assert session.state == VaultState.UNINITIALIZED
        with pytest.raises(LockedError):
            session.decrypt_content(session.cipher.encrypt(bytes(32), b"x"))

    def test_context_manager(self, vault_root, fast_kdf):
        """Test the session initializes and tears down as a context manager."""
        with VaultSession(vault_root, kdf=fast_kdf) as session:
            assert session.state == VaultState.UNLOCKED
        assert session.state == VaultState.UNINITIALIZED


class TestOperationResult:
    """Tests for OperationResult."""

    def test_to_dict(self):
        """Test the serialized result shape."""
        assert OperationResult.ok(needs_rotation=True).to_dict() == {"success": True, "needsRotation": True}
        assert OperationResult.fail("nope", ErrorCode.INVALID_CREDENTIALS).to_dict() == {
            "success": False,
            "error": "nope",
        }

    @pytest.mark.parametrize("code, exc_type", [
        (ErrorCode.INVALID_CREDENTIALS, InvalidCredentialsError),
        (ErrorCode.NO_PASSWORD_SET, NoPasswordSetError),
        (ErrorCode.VAULT_LOCKED, LockedError),
    ])
    def test_raise_for_error(self, code, exc_type):
        """Test failed results map to their exception types."""
        with pytest.raises(exc_type):
            OperationResult.fail("failed", code).raise_for_error()

    def test_success_does_not_raise(self):
        """Test a successful result is a no-op."""
        OperationResult.ok().raise_for_error()
