"""
eVault Models — Records persisted by the storage backends.

Blob fields are opaque bytes. Models never inspect or transform them.
"""
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field

SlotName = Literal["A", "B"]

SLOT_A: SlotName = "A"
SLOT_B: SlotName = "B"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def other_slot(slot: SlotName) -> SlotName:
    """Return the slot paired with ``slot``."""
    return SLOT_B if slot == SLOT_A else SLOT_A


class User(BaseModel):
    """Identity anchor that owns a metadata slot pair and entries."""

    user_id: str
    email: str
    phone_number: Optional[str] = None
    auth_provider: Optional[str] = None
    verified: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


class MetadataSlot(BaseModel):
    """One of the two physical locations holding a user's metadata blob."""

    slot: SlotName
    blob: bytes
    sequence: int = Field(ge=0)
    valid: bool = False
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


class Entry(BaseModel):
    """Named ciphertext container with its deletion commitment."""

    user_id: str
    name: str
    ciphertext: bytes
    deletion_hash: bytes
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


class VaultStatus(BaseModel):
    has_vault: bool
    metadata: Optional[bytes] = None


class UserStats(BaseModel):
    """Aggregate counters across all users."""

    total_users: int = 0
    recent_signups_7d: int = 0
    recent_signups_30d: int = 0
    users_with_vaults: int = 0
    total_entries: int = 0
