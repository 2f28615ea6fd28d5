"""
Shared fixtures for the test suite.
"""

import pytest

from synapse_vault.security.key_derivation import KdfParams, KeyDerivationService, ARGON2ID
from synapse_vault.security.custodian import VaultSession
from synapse_vault.storage.vault_store import VaultStore


@pytest.fixture
def fast_kdf():
    """Argon2id with minimal costs so password tests run quickly."""
    return KeyDerivationService(KdfParams(
        algorithm=ARGON2ID,
        memory_cost=1024,
        time_cost=1,
        parallelism=1,
    ))


@pytest.fixture
def vault_root(tmp_path):
    """Empty storage root."""
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest.fixture
def session(vault_root, fast_kdf):
    """Initialized session with no password (unlocked)."""
    session = VaultSession(vault_root, kdf=fast_kdf)
    session.initialize()
    yield session
    session.teardown()


@pytest.fixture
def store(vault_root, session):
    """Vault store over the unlocked session."""
    store = VaultStore(vault_root, session)
    store.ensure_layout()
    return store
