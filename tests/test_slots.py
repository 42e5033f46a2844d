"""
Tests for MetadataSlotStore.

Tests cover:
- Registration into slot A with sequence 1
- Rotation between slots with increasing sequence numbers
- Interrupted writes never surfacing partial or newer-invalid metadata
- Readers observing either the old or the new blob during a write
- Serialization of concurrent writes for the same user
"""
import asyncio

import pytest

from evault.exceptions import (
    AlreadyRegistered,
    NotRegistered,
    StorageFailure,
    UserNotFound,
)
from evault.models import MetadataSlot, User
from evault.storage.memory import MemoryBackend
from evault.vault.slots import MetadataSlotStore, current_of


# --- Test Fixtures ---

class InterruptingBackend(MemoryBackend):
    """Backend that can fail between writing a slot and validating it."""

    def __init__(self):
        super().__init__()
        self.fail_put = False
        self.fail_mark = False

    async def put_slot(self, user_id, slot):
        if self.fail_put:
            raise StorageFailure("connection lost before write")
        await super().put_slot(user_id, slot)

    async def mark_slot_valid(self, user_id, slot, sequence):
        if self.fail_mark:
            raise StorageFailure("connection lost before validation")
        return await super().mark_slot_valid(user_id, slot, sequence)


class PausingBackend(MemoryBackend):
    """Backend that parks a writer between writing and validating a slot."""

    def __init__(self):
        super().__init__()
        self.pause = False
        self.written = asyncio.Event()
        self.proceed = asyncio.Event()

    async def mark_slot_valid(self, user_id, slot, sequence):
        if self.pause:
            self.written.set()
            await self.proceed.wait()
        return await super().mark_slot_valid(user_id, slot, sequence)


async def _with_user(backend):
    await backend.upsert_user(User(user_id="u1", email="u1@example.com"))
    return MetadataSlotStore(backend)


@pytest.fixture
async def store(backend):
    return await _with_user(backend)


@pytest.fixture
async def interrupting():
    """Registered user over a backend that can be interrupted."""
    backend = InterruptingBackend()
    store = await _with_user(backend)
    await store.register_if_absent("u1", b"M1")
    return backend, store


# --- Test current_of ---

class TestCurrentOf:
    """Tests for deriving the current slot."""

    def test_no_slots(self):
        """Test that an empty pair has no current slot."""
        assert current_of([]) is None

    def test_invalid_slots_ignored(self):
        """Test that invalid slots are never current."""
        slots = [
            MetadataSlot(slot="A", blob=b"old", sequence=1, valid=True),
            MetadataSlot(slot="B", blob=b"torn", sequence=2, valid=False),
        ]
        assert current_of(slots).blob == b"old"

    def test_highest_sequence_wins(self):
        """Test that the highest valid sequence is current."""
        slots = [
            MetadataSlot(slot="A", blob=b"three", sequence=3, valid=True),
            MetadataSlot(slot="B", blob=b"two", sequence=2, valid=True),
        ]
        assert current_of(slots).slot == "A"

    def test_all_invalid(self):
        """Test that a pair with only invalid slots is unregistered."""
        slots = [MetadataSlot(slot="A", blob=b"x", sequence=1, valid=False)]
        assert current_of(slots) is None


# --- Test Registration ---

class TestRegistration:
    """Tests for register_if_absent()."""

    async def test_read_unregistered(self, store):
        """Test that reading an unregistered pair returns None."""
        assert await store.read("u1") is None

    async def test_read_after_register(self, store):
        """Test that read returns exactly the registered blob."""
        await store.register_if_absent("u1", b"M1")
        assert await store.read("u1") == b"M1"

    async def test_register_uses_slot_a(self, store):
        """Test that the first write lands in slot A with sequence 1."""
        slot = await store.register_if_absent("u1", b"M1")
        assert slot.slot == "A"
        assert slot.sequence == 1
        assert slot.valid is True

    async def test_register_twice(self, store):
        """Test that a second registration fails and keeps the first blob."""
        await store.register_if_absent("u1", b"M1")
        with pytest.raises(AlreadyRegistered):
            await store.register_if_absent("u1", b"M2")
        assert await store.read("u1") == b"M1"

    async def test_register_unknown_user(self, backend):
        """Test that slots cannot be created for a missing user."""
        store = MetadataSlotStore(backend)
        with pytest.raises(UserNotFound):
            await store.register_if_absent("ghost", b"M1")

    async def test_blob_is_opaque(self, store):
        """Test that arbitrary binary blobs are stored byte-for-byte."""
        blob = bytes(range(256)) * 4
        await store.register_if_absent("u1", blob)
        assert await store.read("u1") == blob


# --- Test Rotation ---

class TestRotation:
    """Tests for write()."""

    async def test_write_unregistered(self, store):
        """Test that writing before registration fails."""
        with pytest.raises(NotRegistered):
            await store.write("u1", b"M2")

    async def test_write_then_read(self, store):
        """Test that read returns the most recently written blob."""
        await store.register_if_absent("u1", b"M1")
        await store.write("u1", b"M2")
        assert await store.read("u1") == b"M2"

    async def test_write_alternates_slots(self, store):
        """Test that writes alternate between B and A."""
        await store.register_if_absent("u1", b"M1")
        second = await store.write("u1", b"M2")
        third = await store.write("u1", b"M3")
        assert (second.slot, second.sequence) == ("B", 2)
        assert (third.slot, third.sequence) == ("A", 3)
        assert await store.read("u1") == b"M3"

    async def test_previous_slot_kept(self, backend, store):
        """Test that the previous blob survives in the other slot."""
        await store.register_if_absent("u1", b"M1")
        await store.write("u1", b"M2")
        slots = {s.slot: s for s in await backend.get_slots("u1")}
        assert slots["A"].blob == b"M1"
        assert slots["A"].valid is True
        assert slots["B"].blob == b"M2"
        assert slots["B"].valid is True

    async def test_many_rotations(self, store):
        """Test sequence growth over repeated refreshes."""
        await store.register_if_absent("u1", b"M0")
        for i in range(1, 10):
            await store.write("u1", f"M{i}".encode())
        current = await store.current_slot("u1")
        assert current.sequence == 10
        assert current.blob == b"M9"


# --- Test Interrupted Writes ---

class TestInterruptedWrites:
    """Tests for crash consistency of the two-slot protocol."""

    async def test_failure_before_write(self, interrupting):
        """Test that a failed slot write leaves the old blob current."""
        backend, store = interrupting
        backend.fail_put = True
        with pytest.raises(StorageFailure):
            await store.write("u1", b"M2")
        assert await store.read("u1") == b"M1"

    async def test_failure_before_validation(self, interrupting):
        """Test that an unvalidated slot is ignored by readers."""
        backend, store = interrupting
        backend.fail_mark = True
        with pytest.raises(StorageFailure):
            await store.write("u1", b"M2")
        assert await store.read("u1") == b"M1"
        slots = {s.slot: s for s in await backend.get_slots("u1")}
        assert slots["B"].sequence == 2
        assert slots["B"].valid is False

    async def test_recovery_after_interruption(self, interrupting):
        """Test that the next write reuses the abandoned slot."""
        backend, store = interrupting
        backend.fail_mark = True
        with pytest.raises(StorageFailure):
            await store.write("u1", b"M2")
        backend.fail_mark = False
        slot = await store.write("u1", b"M3")
        assert (slot.slot, slot.sequence) == ("B", 2)
        assert await store.read("u1") == b"M3"

    async def test_interrupted_registration(self):
        """Test that a registration interrupted before validation can be retried."""
        backend = InterruptingBackend()
        store = await _with_user(backend)
        backend.fail_mark = True
        with pytest.raises(StorageFailure):
            await store.register_if_absent("u1", b"M1")
        assert await store.read("u1") is None
        backend.fail_mark = False
        await store.register_if_absent("u1", b"M1")
        assert await store.read("u1") == b"M1"


# --- Test Concurrency ---

class TestConcurrency:
    """Tests for readers and writers running concurrently."""

    async def test_read_during_write(self):
        """Test that a reader sees the old blob until the write is validated."""
        backend = PausingBackend()
        store = await _with_user(backend)
        await store.register_if_absent("u1", b"M1")
        backend.pause = True
        writer = asyncio.create_task(store.write("u1", b"M2"))
        await backend.written.wait()
        assert await store.read("u1") == b"M1"
        backend.proceed.set()
        await writer
        assert await store.read("u1") == b"M2"

    async def test_concurrent_writes_serialized(self, store):
        """Test that concurrent refreshes never target the same slot."""
        await store.register_if_absent("u1", b"M1")
        results = await asyncio.gather(
            store.write("u1", b"M2"),
            store.write("u1", b"M3"),
        )
        assert sorted(r.sequence for r in results) == [2, 3]
        assert {r.slot for r in results} == {"A", "B"}
        current = await store.current_slot("u1")
        assert current.sequence == 3

    async def test_writes_for_different_users(self, backend, store):
        """Test that slot pairs of different users are independent."""
        await backend.upsert_user(User(user_id="u2", email="u2@example.com"))
        await store.register_if_absent("u1", b"U1")
        await store.register_if_absent("u2", b"U2")
        await asyncio.gather(
            store.write("u1", b"U1-next"),
            store.write("u2", b"U2-next"),
        )
        assert await store.read("u1") == b"U1-next"
        assert await store.read("u2") == b"U2-next"
