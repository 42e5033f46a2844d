"""
VaultService — The entry point used by the request-handling layer.

Provides the public API of the vault core:
- ``register(user_id, pin, metadata)`` — store the initial recovery metadata
- ``recover(user_id, pin)`` — hand the current metadata back to the client
- ``refresh(user_id, metadata)`` — rotate the metadata after a key-share refresh
- ``status(user_id)`` — report whether a vault is registered
- ``add_entry`` / ``list_entry_names`` / ``get_entries`` / ``delete_entry``
- ``ensure_user`` / ``update_email`` / ``delete_user`` / ``stats``

Every call expects a user id that was already verified by the auth layer.

Security Note:
    The server never checks the PIN cryptographically; PIN length checks are
    a usability guard only. Never log PINs, blobs or pre-images.
"""
import logging
from typing import Optional

from ..exceptions import InvalidInput, InvalidPin, NotRegistered, VaultNotRegistered
from ..models import Entry, User, UserStats, VaultStatus
from ..storage.backend import StorageBackend
from ..storage.memory import MemoryBackend
from ..storage.postgres import create_backend
from .config import VaultConfig
from .entries import EntryStore
from .slots import MetadataSlotStore
from .users import UserStore

logger = logging.getLogger("evault.vault")


class VaultService:
    """Orchestrates the metadata slot store, entry store and user store."""

    def __init__(
        self,
        backend: StorageBackend,
        config: Optional[VaultConfig] = None,
    ):
        self._config = config or VaultConfig()
        self._backend = backend
        self.metadata = MetadataSlotStore(backend)
        self.entries = EntryStore(backend, self._config)
        self.users = UserStore(backend)

    @property
    def config(self) -> VaultConfig:
        return self._config

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_pin(self, pin: str) -> None:
        """Registration PIN bounds.

        Raises:
            InvalidPin: If the PIN is shorter or longer than configured.
        """
        if len(pin) < self._config.pin_min_length:
            raise InvalidPin(
                f"PIN must be at least {self._config.pin_min_length} "
                "characters long"
            )
        if len(pin) > self._config.pin_max_length:
            raise InvalidPin(
                f"PIN must be at most {self._config.pin_max_length} characters"
            )

    @staticmethod
    def _validate_metadata(metadata: bytes) -> None:
        if not metadata:
            raise InvalidInput("Metadata cannot be empty")

    # ------------------------------------------------------------------
    # Vault lifecycle
    # ------------------------------------------------------------------

    async def register(self, user_id: str, pin: str, metadata: bytes) -> None:
        """Register a vault with its initial recovery metadata.

        Raises:
            InvalidPin: If the PIN length is out of bounds.
            InvalidInput: If ``metadata`` is empty.
            AlreadyRegistered: If the user already has a vault.
        """
        self._validate_pin(pin)
        self._validate_metadata(metadata)
        await self.metadata.register_if_absent(user_id, metadata)

    async def recover(self, user_id: str, pin: str) -> bytes:
        """Return the current recovery metadata.

        Only the presence of a PIN is checked here.

        Raises:
            InvalidPin: If ``pin`` is empty.
            NotRegistered: If the user has no vault.
        """
        if not pin:
            raise InvalidPin("PIN is required")
        metadata = await self.metadata.read(user_id)
        if metadata is None:
            raise NotRegistered(f"User {user_id} has no vault registered")
        logger.info("Vault recovery requested: user=%s", user_id)
        return metadata

    async def refresh(self, user_id: str, metadata: bytes) -> None:
        """Rotate the recovery metadata into the non-current slot.

        Raises:
            InvalidInput: If ``metadata`` is empty.
            NotRegistered: If the user has no vault.
        """
        self._validate_metadata(metadata)
        await self.metadata.write(user_id, metadata)

    async def status(self, user_id: str) -> VaultStatus:
        metadata = await self.metadata.read(user_id)
        return VaultStatus(has_vault=metadata is not None, metadata=metadata)

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def add_entry(
        self, user_id: str, name: str, blob: bytes, deletion_hash: bytes
    ) -> Entry:
        """Add an entry to a registered vault.

        Raises:
            VaultNotRegistered: If the user has not registered a vault.
            EntryTooLarge, InvalidInput, QuotaExceeded, DuplicateName:
                See :meth:`EntryStore.add`.
        """
        if await self.metadata.current_slot(user_id) is None:
            raise VaultNotRegistered(
                "Vault not registered. Please register vault first."
            )
        return await self.entries.add(user_id, name, blob, deletion_hash)

    async def list_entry_names(self, user_id: str) -> list[str]:
        return await self.entries.list_names(user_id)

    async def get_entries(self, user_id: str) -> list[tuple[str, bytes]]:
        return await self.entries.get_all(user_id)

    async def delete_entry(self, user_id: str, name: str, preimage: bytes) -> None:
        await self.entries.delete(user_id, name, preimage)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def ensure_user(
        self,
        user_id: str,
        email: str,
        auth_provider: Optional[str] = None,
        phone_number: Optional[str] = None,
    ) -> User:
        return await self.users.ensure(user_id, email, auth_provider, phone_number)

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self.users.get(user_id)

    async def update_email(self, user_id: str, email: str) -> User:
        return await self.users.update_email(user_id, email)

    async def delete_user(self, user_id: str) -> None:
        await self.users.delete(user_id)

    async def stats(self) -> UserStats:
        return await self.users.stats()

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    async def from_config(cls, config: Optional[VaultConfig] = None) -> "VaultService":
        """Build a service over PostgreSQL when a DSN is set, else in memory.

        Args:
            config: Vault settings; read from the environment when omitted.

        Returns:
            Ready-to-use VaultService.
        """
        config = config or VaultConfig.from_env()
        if config.dsn is None:
            logger.warning("No EVAULT_DSN configured, using in-memory storage")
            return cls(MemoryBackend(), config)
        backend = await create_backend(config)
        logger.info("Vault service started with PostgreSQL storage")
        return cls(backend, config)

    async def close(self) -> None:
        await self._backend.close()
