"""
PostgreSQL storage backend (asyncpg).

Tables live in the ``evault`` schema. Metadata slots and entries reference
``evault.users`` with ``ON DELETE CASCADE``. The per-user exclusion scope is
a transaction holding ``pg_advisory_xact_lock(hashtext(user_id))``; backend
calls made inside the scope run on that same connection.

Security Note:
    Never log blob, hash or pre-image values. Only log user IDs, entry
    names and SQL error messages.
"""
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Optional

import asyncpg
from asyncpg.exceptions import ForeignKeyViolationError, UniqueViolationError

from ..exceptions import DuplicateName, StorageFailure, UserNotFound
from ..models import Entry, MetadataSlot, SlotName, User, UserStats
from ..vault.config import VaultConfig
from .backend import StorageBackend

logger = logging.getLogger("evault.storage")

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

SCHEMA = """
CREATE SCHEMA IF NOT EXISTS evault;

CREATE TABLE IF NOT EXISTS evault.users (
    user_id VARCHAR(255) PRIMARY KEY,
    email VARCHAR(255) NOT NULL,
    phone_number VARCHAR(20),
    auth_provider VARCHAR(50),
    verified BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

ALTER TABLE evault.users ADD COLUMN IF NOT EXISTS phone_number VARCHAR(20);

CREATE INDEX IF NOT EXISTS idx_users_email ON evault.users (email);

CREATE TABLE IF NOT EXISTS evault.metadata_slots (
    user_id VARCHAR(255) NOT NULL
        REFERENCES evault.users (user_id) ON DELETE CASCADE,
    slot CHAR(1) NOT NULL CHECK (slot IN ('A', 'B')),
    blob BYTEA NOT NULL,
    sequence BIGINT NOT NULL CHECK (sequence >= 0),
    valid BOOLEAN NOT NULL DEFAULT FALSE,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (user_id, slot)
);

CREATE TABLE IF NOT EXISTS evault.entries (
    user_id VARCHAR(255) NOT NULL
        REFERENCES evault.users (user_id) ON DELETE CASCADE,
    name VARCHAR(255) NOT NULL,
    ciphertext BYTEA NOT NULL CHECK (octet_length(ciphertext) <= 1024),
    deletion_hash BYTEA NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (user_id, name)
);
"""

_LOCK_USER = "SELECT pg_advisory_xact_lock(hashtext($1))"

_USER_COLUMNS = (
    "user_id, email, phone_number, auth_provider, verified, created_at, updated_at"
)

_UPSERT_USER = f"""
INSERT INTO evault.users AS u ({_USER_COLUMNS})
VALUES ($1, $2, $3, $4, $5, $6, $6)
ON CONFLICT (user_id)
DO UPDATE SET email = EXCLUDED.email,
             phone_number = COALESCE(EXCLUDED.phone_number, u.phone_number),
             auth_provider = COALESCE(EXCLUDED.auth_provider, u.auth_provider),
             updated_at = NOW()
RETURNING {_USER_COLUMNS}
"""

_SELECT_USER = f"""
SELECT {_USER_COLUMNS}
FROM evault.users
WHERE user_id = $1
"""

_UPDATE_EMAIL = f"""
UPDATE evault.users
SET email = $2, updated_at = NOW()
WHERE user_id = $1
RETURNING {_USER_COLUMNS}
"""

_DELETE_USER = """
DELETE FROM evault.users WHERE user_id = $1 RETURNING user_id
"""

_SELECT_STATS = """
SELECT
    (SELECT COUNT(*) FROM evault.users) AS total_users,
    (SELECT COUNT(*) FROM evault.users
     WHERE created_at >= NOW() - INTERVAL '7 days') AS recent_signups_7d,
    (SELECT COUNT(*) FROM evault.users
     WHERE created_at >= NOW() - INTERVAL '30 days') AS recent_signups_30d,
    (SELECT COUNT(DISTINCT user_id) FROM evault.metadata_slots
     WHERE valid) AS users_with_vaults,
    (SELECT COUNT(*) FROM evault.entries) AS total_entries
"""

_SELECT_SLOTS = """
SELECT slot, blob, sequence, valid, updated_at
FROM evault.metadata_slots
WHERE user_id = $1
"""

_PUT_SLOT = """
INSERT INTO evault.metadata_slots (user_id, slot, blob, sequence, valid, updated_at)
VALUES ($1, $2, $3, $4, $5, NOW())
ON CONFLICT (user_id, slot)
DO UPDATE SET blob = EXCLUDED.blob,
             sequence = EXCLUDED.sequence,
             valid = EXCLUDED.valid,
             updated_at = NOW()
"""

_MARK_SLOT_VALID = """
UPDATE evault.metadata_slots
SET valid = TRUE, updated_at = NOW()
WHERE user_id = $1 AND slot = $2 AND sequence = $3
RETURNING slot
"""

_ENTRY_COLUMNS = "user_id, name, ciphertext, deletion_hash, created_at, updated_at"

_SELECT_ENTRY = f"""
SELECT {_ENTRY_COLUMNS}
FROM evault.entries
WHERE user_id = $1 AND name = $2
"""

_SELECT_ENTRIES = f"""
SELECT {_ENTRY_COLUMNS}
FROM evault.entries
WHERE user_id = $1
ORDER BY name
"""

_COUNT_ENTRIES = """
SELECT COUNT(*) FROM evault.entries WHERE user_id = $1
"""

_INSERT_ENTRY = f"""
INSERT INTO evault.entries ({_ENTRY_COLUMNS})
VALUES ($1, $2, $3, $4, $5, $6)
"""

_DELETE_ENTRY = """
DELETE FROM evault.entries WHERE user_id = $1 AND name = $2 RETURNING name
"""


class PostgresBackend(StorageBackend):
    """Storage backend over an asyncpg-compatible connection pool."""

    def __init__(self, pool: Any):
        self._pool = pool
        # connection bound by user_lock() for the current task
        self._scoped: ContextVar[Optional[Any]] = ContextVar(
            f"evault_pg_scope_{id(self)}", default=None
        )

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Any]:
        """Yield the scoped connection, or acquire one from the pool.

        Raises:
            StorageFailure: On any driver or network error.
        """
        conn = self._scoped.get()
        if conn is not None:
            yield conn
            return
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except _DRIVER_ERRORS as err:
            logger.error("Storage failure: %s", err)
            raise StorageFailure(str(err)) from err

    @asynccontextmanager
    async def user_lock(self, user_id: str) -> AsyncIterator[None]:
        async with self._connection() as conn:
            async with conn.transaction():
                await conn.execute(_LOCK_USER, user_id)
                token = self._scoped.set(conn)
                try:
                    yield
                finally:
                    self._scoped.reset(token)

    async def create_schema(self) -> None:
        """Create the ``evault`` schema and tables if missing."""
        async with self._connection() as conn:
            await conn.execute(SCHEMA)
        logger.info("Vault schema ensured")

    async def close(self) -> None:
        await self._pool.close()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def upsert_user(self, user: User) -> User:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                _UPSERT_USER,
                user.user_id, user.email, user.phone_number, user.auth_provider,
                user.verified, user.created_at,
            )
        return User(**dict(row))

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._connection() as conn:
            row = await conn.fetchrow(_SELECT_USER, user_id)
        return User(**dict(row)) if row is not None else None

    async def update_user_email(self, user_id: str, email: str) -> Optional[User]:
        async with self._connection() as conn:
            row = await conn.fetchrow(_UPDATE_EMAIL, user_id, email)
        return User(**dict(row)) if row is not None else None

    async def delete_user(self, user_id: str) -> bool:
        async with self._connection() as conn:
            deleted = await conn.fetchval(_DELETE_USER, user_id)
        return deleted is not None

    async def stats(self) -> UserStats:
        async with self._connection() as conn:
            row = await conn.fetchrow(_SELECT_STATS)
        return UserStats(**dict(row))

    # ------------------------------------------------------------------
    # Metadata slots
    # ------------------------------------------------------------------

    async def get_slots(self, user_id: str) -> list[MetadataSlot]:
        async with self._connection() as conn:
            rows = await conn.fetch(_SELECT_SLOTS, user_id)
        return [MetadataSlot(**dict(row)) for row in rows]

    async def put_slot(self, user_id: str, slot: MetadataSlot) -> None:
        async with self._connection() as conn:
            try:
                await conn.execute(
                    _PUT_SLOT,
                    user_id, slot.slot, slot.blob, slot.sequence, slot.valid,
                )
            except ForeignKeyViolationError as err:
                raise UserNotFound(f"User {user_id} not found") from err

    async def mark_slot_valid(
        self, user_id: str, slot: SlotName, sequence: int
    ) -> bool:
        async with self._connection() as conn:
            updated = await conn.fetchval(
                _MARK_SLOT_VALID, user_id, slot, sequence,
            )
        return updated is not None

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def get_entry(self, user_id: str, name: str) -> Optional[Entry]:
        async with self._connection() as conn:
            row = await conn.fetchrow(_SELECT_ENTRY, user_id, name)
        return Entry(**dict(row)) if row is not None else None

    async def list_entries(self, user_id: str) -> list[Entry]:
        async with self._connection() as conn:
            rows = await conn.fetch(_SELECT_ENTRIES, user_id)
        return [Entry(**dict(row)) for row in rows]

    async def count_entries(self, user_id: str) -> int:
        async with self._connection() as conn:
            return await conn.fetchval(_COUNT_ENTRIES, user_id)

    async def insert_entry(self, entry: Entry) -> None:
        async with self._connection() as conn:
            try:
                await conn.execute(
                    _INSERT_ENTRY,
                    entry.user_id, entry.name, entry.ciphertext,
                    entry.deletion_hash, entry.created_at, entry.updated_at,
                )
            except UniqueViolationError as err:
                raise DuplicateName(
                    f"Entry {entry.name!r} already exists"
                ) from err
            except ForeignKeyViolationError as err:
                raise UserNotFound(f"User {entry.user_id} not found") from err

    async def remove_entry(self, user_id: str, name: str) -> bool:
        async with self._connection() as conn:
            deleted = await conn.fetchval(_DELETE_ENTRY, user_id, name)
        return deleted is not None


async def create_backend(config: VaultConfig) -> PostgresBackend:
    """Open an asyncpg pool for ``config.dsn`` and ensure the schema exists.

    Raises:
        RuntimeError: If no DSN is configured.
        StorageFailure: If the database cannot be reached.
    """
    if config.dsn is None:
        raise RuntimeError(
            "No vault DSN configured. Set EVAULT_DSN=postgresql://..."
        )
    try:
        pool = await asyncpg.create_pool(
            dsn=config.dsn,
            min_size=config.pool_min_size,
            max_size=config.pool_max_size,
        )
    except _DRIVER_ERRORS as err:
        logger.error("Unable to open vault pool: %s", err)
        raise StorageFailure(str(err)) from err
    backend = PostgresBackend(pool)
    try:
        await backend.create_schema()
    except StorageFailure:
        await pool.close()
        raise
    return backend
