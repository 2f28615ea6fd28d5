"""
Synapse Vault
=============

A local, encrypted file vault.

Features:
- Files imported into an AES-256-GCM encrypted store under random names
- Optional password protection of the master key (PBKDF2 or Argon2id)
- Tagging, renaming, exporting and relocating stored files
- Nonce-refreshing rotation of every stored blob after password changes

All data stays on the local machine.
"""

__version__ = "0.1.0"
