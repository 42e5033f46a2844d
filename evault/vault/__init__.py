"""Vault core — Recovery metadata slots and commitment-guarded entries.

Security Note (Threat Model):
    The server stores opaque blobs and SHA-256 commitments only. It never
    sees PINs, plaintext or key material, and never parses the blobs it
    keeps. Compromise of the database exposes ciphertext and metadata,
    both of which still require the user's PIN and the external recovery
    servers to be useful.
"""

from .commitment import commit, verify
from .config import VaultConfig
from .entries import EntryStore
from .slots import MetadataSlotStore
from .users import UserStore
from .service import VaultService

__all__ = [
    "commit",
    "verify",
    "VaultConfig",
    "EntryStore",
    "MetadataSlotStore",
    "UserStore",
    "VaultService",
]
