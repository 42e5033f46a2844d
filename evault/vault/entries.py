"""
Entry Store — Named ciphertext blobs under per-user quotas.

Entries are added without a PIN; removing one requires revealing the
pre-image of the deletion commitment fixed when the entry was created.
Entries are never updated in place: replacing content is delete + add.

Security Note:
    Never log ciphertext, commitments or pre-images. Only log user IDs,
    entry names and sizes.
"""
import logging
from typing import Optional

from ..exceptions import (
    DuplicateName,
    EntryNotFound,
    EntryTooLarge,
    Forbidden,
    InvalidInput,
    QuotaExceeded,
)
from ..models import Entry
from ..storage.backend import StorageBackend
from .commitment import DIGEST_SIZE, verify
from .config import VaultConfig

logger = logging.getLogger("evault.vault")


class EntryStore:
    """CRUD over a user's named entries with quota enforcement."""

    def __init__(self, backend: StorageBackend, config: Optional[VaultConfig] = None):
        self._backend = backend
        self._config = config or VaultConfig()

    def _validate(self, name: str, blob: bytes, deletion_hash: bytes) -> None:
        """Reject malformed entries before touching the store.

        Raises:
            EntryTooLarge: If the ciphertext exceeds ``max_entry_size``.
            InvalidInput: If the name or deletion hash is malformed.
        """
        if len(blob) > self._config.max_entry_size:
            raise EntryTooLarge(
                f"Entry size {len(blob)} exceeds "
                f"{self._config.max_entry_size} byte limit"
            )
        if not name:
            raise InvalidInput("Entry name cannot be empty")
        if len(name) > self._config.max_name_length:
            raise InvalidInput(
                f"Entry name cannot exceed {self._config.max_name_length} "
                "characters"
            )
        if len(deletion_hash) != DIGEST_SIZE:
            raise InvalidInput(
                f"Deletion hash must be {DIGEST_SIZE} bytes, "
                f"got {len(deletion_hash)}"
            )

    async def add(
        self, user_id: str, name: str, blob: bytes, deletion_hash: bytes
    ) -> Entry:
        """Persist a new entry.

        Args:
            user_id: Entry owner.
            name: Unique entry name within the user's vault.
            blob: Opaque ciphertext.
            deletion_hash: SHA-256 commitment authorizing later deletion.

        Returns:
            The stored entry.

        Raises:
            EntryTooLarge: If ``blob`` is over the size limit.
            InvalidInput: If ``name`` or ``deletion_hash`` is malformed.
            QuotaExceeded: If the user already holds the maximum entries.
            DuplicateName: If ``name`` already exists for the user.
        """
        self._validate(name, blob, deletion_hash)
        entry = Entry(
            user_id=user_id,
            name=name,
            ciphertext=blob,
            deletion_hash=deletion_hash,
        )
        async with self._backend.user_lock(user_id):
            count = await self._backend.count_entries(user_id)
            if count >= self._config.max_entries_per_user:
                raise QuotaExceeded(
                    f"Maximum entry count ({self._config.max_entries_per_user}) "
                    "reached"
                )
            if await self._backend.get_entry(user_id, name) is not None:
                raise DuplicateName(f"Entry {name!r} already exists")
            await self._backend.insert_entry(entry)
        logger.info(
            "Entry added: user=%s name=%s size=%d", user_id, name, len(blob),
        )
        return entry

    async def list_names(self, user_id: str) -> list[str]:
        """Return the names of all entries of ``user_id``."""
        return [e.name for e in await self._backend.list_entries(user_id)]

    async def get_all(self, user_id: str) -> list[tuple[str, bytes]]:
        """Return ``(name, ciphertext)`` for every entry of ``user_id``."""
        return [
            (e.name, e.ciphertext)
            for e in await self._backend.list_entries(user_id)
        ]

    async def count(self, user_id: str) -> int:
        return await self._backend.count_entries(user_id)

    async def delete(self, user_id: str, name: str, preimage: bytes) -> None:
        """Remove an entry after checking the revealed pre-image.

        Raises:
            EntryNotFound: If no entry ``name`` exists for the user.
            Forbidden: If ``preimage`` does not match the stored commitment.
        """
        async with self._backend.user_lock(user_id):
            entry = await self._backend.get_entry(user_id, name)
            if entry is None:
                raise EntryNotFound(f"Entry {name!r} not found")
            if not verify(entry.deletion_hash, preimage):
                logger.warning(
                    "Entry delete refused: user=%s name=%s", user_id, name,
                )
                raise Forbidden("Invalid deletion authorization")
            if not await self._backend.remove_entry(user_id, name):
                raise EntryNotFound(f"Entry {name!r} not found")
        logger.info("Entry deleted: user=%s name=%s", user_id, name)
