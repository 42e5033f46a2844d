"""eVault.

Server-side storage core for a client-encrypted personal vault.
"""
from .version import __version__
from .exceptions import (
    VaultError,
    InvalidInput,
    InvalidPin,
    EntryTooLarge,
    Conflict,
    AlreadyRegistered,
    DuplicateName,
    NotFound,
    NotRegistered,
    VaultNotRegistered,
    EntryNotFound,
    UserNotFound,
    Forbidden,
    QuotaExceeded,
    StorageFailure,
)
from .vault import VaultConfig, VaultService

__all__ = [
    "__version__",
    "VaultConfig",
    "VaultService",
    "VaultError",
    "InvalidInput",
    "InvalidPin",
    "EntryTooLarge",
    "Conflict",
    "AlreadyRegistered",
    "DuplicateName",
    "NotFound",
    "NotRegistered",
    "VaultNotRegistered",
    "EntryNotFound",
    "UserNotFound",
    "Forbidden",
    "QuotaExceeded",
    "StorageFailure",
]
