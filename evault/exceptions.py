"""
eVault Exceptions.

Every error raised by the vault core derives from :class:`VaultError`.
Input errors are raised before any store mutation; ``StorageFailure``
wraps driver errors and is safe to retry.
"""


class VaultError(Exception):
    """Base class for all vault errors."""


# ---------------------------------------------------------------------------
# Invalid input
# ---------------------------------------------------------------------------

class InvalidInput(VaultError, ValueError):
    """Raised when a request is malformed or out of range."""


class InvalidPin(InvalidInput):
    """Raised when a PIN is missing or outside the accepted length."""


class EntryTooLarge(InvalidInput):
    """Raised when an entry ciphertext exceeds the per-entry size limit."""


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------

class Conflict(VaultError):
    """Raised when a create operation collides with existing state."""


class AlreadyRegistered(Conflict):
    """Raised when registering a vault for a user that already has one."""


class DuplicateName(Conflict):
    """Raised when an entry name already exists for the user."""


# ---------------------------------------------------------------------------
# Missing records
# ---------------------------------------------------------------------------

class NotFound(VaultError, LookupError):
    """Raised when operating on a record that does not exist."""


class NotRegistered(NotFound):
    """Raised when the user has no vault metadata."""


class VaultNotRegistered(NotRegistered):
    """Raised when adding an entry before the vault is registered."""


class EntryNotFound(NotFound):
    """Raised when the named entry does not exist."""


class UserNotFound(NotFound):
    """Raised when the user record does not exist."""


# ---------------------------------------------------------------------------
# Authorization, quota and storage
# ---------------------------------------------------------------------------

class Forbidden(VaultError):
    """Raised when a deletion pre-image does not match the stored commitment."""


class QuotaExceeded(VaultError):
    """Raised when the user already holds the maximum number of entries."""


class StorageFailure(VaultError):
    """Raised when the underlying persistence layer is unavailable."""
