"""Storage backends for the vault core."""

from .backend import StorageBackend
from .memory import MemoryBackend
from .postgres import PostgresBackend, create_backend

__all__ = [
    "StorageBackend",
    "MemoryBackend",
    "PostgresBackend",
    "create_backend",
]
