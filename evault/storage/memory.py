"""
In-memory storage backend.

Records are frozen pydantic models; replacing a dictionary value is the
single-record atomic write. Enforces the same user foreign key and cascade
rules as the PostgreSQL schema.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Optional

from ..exceptions import DuplicateName, UserNotFound
from ..models import Entry, MetadataSlot, SlotName, User, UserStats, utcnow
from .backend import StorageBackend


class MemoryBackend(StorageBackend):
    """Process-local backend, used for tests and single-process deployments."""

    def __init__(self) -> None:
        self._users: dict[str, User] = {}
        self._slots: dict[str, dict[SlotName, MetadataSlot]] = {}
        self._entries: dict[str, dict[str, Entry]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def user_lock(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        async with lock:
            yield

    def _require_user(self, user_id: str) -> None:
        if user_id not in self._users:
            raise UserNotFound(f"User {user_id} not found")

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def upsert_user(self, user: User) -> User:
        existing = self._users.get(user.user_id)
        if existing is not None:
            user = existing.model_copy(
                update={
                    "email": user.email,
                    "auth_provider": user.auth_provider or existing.auth_provider,
                    "phone_number": user.phone_number or existing.phone_number,
                    "updated_at": utcnow(),
                }
            )
        self._users[user.user_id] = user
        return user

    async def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    async def update_user_email(self, user_id: str, email: str) -> Optional[User]:
        existing = self._users.get(user_id)
        if existing is None:
            return None
        user = existing.model_copy(update={"email": email, "updated_at": utcnow()})
        self._users[user_id] = user
        return user

    async def delete_user(self, user_id: str) -> bool:
        if self._users.pop(user_id, None) is None:
            return False
        self._slots.pop(user_id, None)
        self._entries.pop(user_id, None)
        # a holder of the old lock keeps it until release
        self._locks.pop(user_id, None)
        return True

    async def stats(self) -> UserStats:
        now = utcnow()
        week = now - timedelta(days=7)
        month = now - timedelta(days=30)
        return UserStats(
            total_users=len(self._users),
            recent_signups_7d=sum(
                1 for u in self._users.values() if u.created_at >= week
            ),
            recent_signups_30d=sum(
                1 for u in self._users.values() if u.created_at >= month
            ),
            users_with_vaults=sum(
                1 for slots in self._slots.values()
                if any(s.valid for s in slots.values())
            ),
            total_entries=sum(len(e) for e in self._entries.values()),
        )

    # ------------------------------------------------------------------
    # Metadata slots
    # ------------------------------------------------------------------

    async def get_slots(self, user_id: str) -> list[MetadataSlot]:
        return list(self._slots.get(user_id, {}).values())

    async def put_slot(self, user_id: str, slot: MetadataSlot) -> None:
        self._require_user(user_id)
        self._slots.setdefault(user_id, {})[slot.slot] = slot

    async def mark_slot_valid(
        self, user_id: str, slot: SlotName, sequence: int
    ) -> bool:
        record = self._slots.get(user_id, {}).get(slot)
        if record is None or record.sequence != sequence:
            return False
        self._slots[user_id][slot] = record.model_copy(
            update={"valid": True, "updated_at": utcnow()}
        )
        return True

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def get_entry(self, user_id: str, name: str) -> Optional[Entry]:
        return self._entries.get(user_id, {}).get(name)

    async def list_entries(self, user_id: str) -> list[Entry]:
        entries = self._entries.get(user_id, {})
        return [entries[name] for name in sorted(entries)]

    async def count_entries(self, user_id: str) -> int:
        return len(self._entries.get(user_id, {}))

    async def insert_entry(self, entry: Entry) -> None:
        self._require_user(entry.user_id)
        entries = self._entries.setdefault(entry.user_id, {})
        if entry.name in entries:
            raise DuplicateName(f"Entry {entry.name!r} already exists")
        entries[entry.name] = entry

    async def remove_entry(self, user_id: str, name: str) -> bool:
        return self._entries.get(user_id, {}).pop(name, None) is not None
