"""
Storage Backend — Contract shared by the in-memory and PostgreSQL stores.

Every single-record write is atomic: readers observe either the previous
record or the new one, never a mix. Multi-step protocols (slot rotation,
quota check + insert) run inside ``user_lock(user_id)``, the per-user
exclusion scope. Scopes of different users never contend.
"""
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Optional

from ..models import Entry, MetadataSlot, SlotName, User, UserStats


class StorageBackend(ABC):
    """Persistence primitives used by the vault stores."""

    @abstractmethod
    def user_lock(self, user_id: str) -> AbstractAsyncContextManager[None]:
        """Return the per-user exclusion scope for ``user_id``."""

    async def close(self) -> None:
        """Release backend resources."""

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @abstractmethod
    async def upsert_user(self, user: User) -> User:
        """Insert ``user`` or update email/auth provider of the existing row.

        The creation timestamp of an existing user is preserved.
        """

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    async def update_user_email(self, user_id: str, email: str) -> Optional[User]:
        """Returns the updated user, or None if it does not exist."""

    @abstractmethod
    async def delete_user(self, user_id: str) -> bool:
        """Delete a user with its metadata slots and entries.

        Returns:
            True if the user existed.
        """

    @abstractmethod
    async def stats(self) -> UserStats:
        ...

    # ------------------------------------------------------------------
    # Metadata slots
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_slots(self, user_id: str) -> list[MetadataSlot]:
        """Return the stored slots (zero, one or two) of ``user_id``."""

    @abstractmethod
    async def put_slot(self, user_id: str, slot: MetadataSlot) -> None:
        """Replace one slot record atomically.

        Raises:
            UserNotFound: If the user record does not exist.
        """

    @abstractmethod
    async def mark_slot_valid(
        self, user_id: str, slot: SlotName, sequence: int
    ) -> bool:
        """Flag a slot valid if it still carries ``sequence``.

        Returns:
            True if the slot was updated.
        """

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_entry(self, user_id: str, name: str) -> Optional[Entry]:
        ...

    @abstractmethod
    async def list_entries(self, user_id: str) -> list[Entry]:
        """Return all entries of ``user_id`` ordered by name."""

    @abstractmethod
    async def count_entries(self, user_id: str) -> int:
        ...

    @abstractmethod
    async def insert_entry(self, entry: Entry) -> None:
        """Insert a new entry. Never overwrites.

        Raises:
            DuplicateName: If ``(user_id, name)`` already exists.
            UserNotFound: If the user record does not exist.
        """

    @abstractmethod
    async def remove_entry(self, user_id: str, name: str) -> bool:
        """Returns True if the entry existed and was removed."""
