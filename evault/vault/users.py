"""
User Store — Identity records that own metadata slots and entries.
"""
import logging
from typing import Optional

from ..exceptions import InvalidInput, UserNotFound
from ..models import User, UserStats
from ..storage.backend import StorageBackend

logger = logging.getLogger("evault.vault")

# column widths of evault.users
MAX_FIELD_LENGTH = 255
MAX_AUTH_PROVIDER_LENGTH = 50
MAX_PHONE_LENGTH = 20


def _validate_field(label: str, value: str, limit: int = MAX_FIELD_LENGTH) -> None:
    if not value:
        raise InvalidInput(f"{label} cannot be empty")
    if len(value) > limit:
        raise InvalidInput(f"{label} cannot exceed {limit} characters")


class UserStore:
    def __init__(self, backend: StorageBackend):
        self._backend = backend

    async def ensure(
        self,
        user_id: str,
        email: str,
        auth_provider: Optional[str] = None,
        phone_number: Optional[str] = None,
    ) -> User:
        """Create the user, or refresh its contact fields if it exists.

        Omitted optional fields keep their stored value.

        Raises:
            InvalidInput: If a field is empty or wider than its column.
        """
        _validate_field("User id", user_id)
        _validate_field("Email", email)
        if auth_provider is not None:
            _validate_field(
                "Auth provider", auth_provider, MAX_AUTH_PROVIDER_LENGTH
            )
        if phone_number is not None:
            _validate_field("Phone number", phone_number, MAX_PHONE_LENGTH)
        user = await self._backend.upsert_user(
            User(
                user_id=user_id,
                email=email,
                auth_provider=auth_provider,
                phone_number=phone_number,
            )
        )
        logger.debug("User ensured: user=%s", user_id)
        return user

    async def get(self, user_id: str) -> Optional[User]:
        return await self._backend.get_user(user_id)

    async def update_email(self, user_id: str, email: str) -> User:
        """Raises UserNotFound if the user does not exist."""
        _validate_field("Email", email)
        user = await self._backend.update_user_email(user_id, email)
        if user is None:
            raise UserNotFound(f"User {user_id} not found")
        logger.info("User email updated: user=%s", user_id)
        return user

    async def delete(self, user_id: str) -> None:
        """Delete the user together with its metadata slots and entries.

        Raises:
            UserNotFound: If the user does not exist.
        """
        async with self._backend.user_lock(user_id):
            if not await self._backend.delete_user(user_id):
                raise UserNotFound(f"User {user_id} not found")
        logger.info("User deleted: user=%s", user_id)

    async def stats(self) -> UserStats:
        return await self._backend.stats()
