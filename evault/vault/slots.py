"""
Metadata Slot Store — Crash-safe rotation of the recovery metadata blob.

Each user owns two slots, ``A`` and ``B``. A write always targets the slot
that is *not* current:

1. the new blob is written there with ``sequence = current + 1`` and
   ``valid = False``;
2. the slot is then flagged valid.

The current slot is the valid one with the highest sequence. It is derived on
every read, never stored, so there is no pointer to update. An interruption
after step 1 leaves an invalid slot that readers ignore; the previous blob
stays current.

Security Note:
    The metadata blob is the only path to recovering a user's secrets.
    Never log it; only log user IDs, slot labels and sequence numbers.
"""
import logging
from typing import Optional

from ..exceptions import AlreadyRegistered, NotRegistered, StorageFailure
from ..models import SLOT_A, MetadataSlot, other_slot
from ..storage.backend import StorageBackend

logger = logging.getLogger("evault.vault")


def current_of(slots: list[MetadataSlot]) -> Optional[MetadataSlot]:
    """Return the valid slot with the highest sequence, if any."""
    valid = [s for s in slots if s.valid]
    if not valid:
        return None
    return max(valid, key=lambda s: s.sequence)


class MetadataSlotStore:
    """Two-slot versioned store for one opaque metadata blob per user."""

    def __init__(self, backend: StorageBackend):
        self._backend = backend

    async def current_slot(self, user_id: str) -> Optional[MetadataSlot]:
        """Return the current slot record, or None if unregistered."""
        return current_of(await self._backend.get_slots(user_id))

    async def read(self, user_id: str) -> Optional[bytes]:
        """Return the current metadata blob, or None if unregistered."""
        current = await self.current_slot(user_id)
        if current is None:
            logger.debug("Metadata read: user=%s unregistered", user_id)
            return None
        logger.debug(
            "Metadata read: user=%s slot=%s seq=%d",
            user_id, current.slot, current.sequence,
        )
        return current.blob

    async def _commit(self, user_id: str, target: MetadataSlot) -> None:
        """Write ``target`` invalid, then flag it valid."""
        await self._backend.put_slot(user_id, target)
        if not await self._backend.mark_slot_valid(
            user_id, target.slot, target.sequence
        ):
            raise StorageFailure(
                f"Metadata slot {target.slot} for user {user_id} changed "
                "during write"
            )

    async def write(self, user_id: str, blob: bytes) -> MetadataSlot:
        """Replace the current blob by writing to the other slot.

        Args:
            user_id: Owner of the slot pair.
            blob: New opaque metadata.

        Returns:
            The slot record that is now current.

        Raises:
            NotRegistered: If the user has no valid slot.
        """
        async with self._backend.user_lock(user_id):
            current = current_of(await self._backend.get_slots(user_id))
            if current is None:
                raise NotRegistered(f"User {user_id} has no vault registered")
            target = MetadataSlot(
                slot=other_slot(current.slot),
                blob=blob,
                sequence=current.sequence + 1,
                valid=False,
            )
            await self._commit(user_id, target)
        logger.info(
            "Metadata rotated: user=%s slot=%s seq=%d size=%d",
            user_id, target.slot, target.sequence, len(blob),
        )
        return target.model_copy(update={"valid": True})

    async def register_if_absent(self, user_id: str, blob: bytes) -> MetadataSlot:
        """Initialize the slot pair with ``blob`` in slot A, sequence 1.

        Raises:
            AlreadyRegistered: If a valid slot already exists.
            UserNotFound: If the user record does not exist.
        """
        async with self._backend.user_lock(user_id):
            slots = await self._backend.get_slots(user_id)
            if current_of(slots) is not None:
                raise AlreadyRegistered(
                    f"User {user_id} already has a vault registered"
                )
            target = MetadataSlot(slot=SLOT_A, blob=blob, sequence=1, valid=False)
            await self._commit(user_id, target)
        logger.info(
            "Metadata registered: user=%s slot=%s size=%d",
            user_id, target.slot, len(blob),
        )
        return target.model_copy(update={"valid": True})
