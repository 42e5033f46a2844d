"""
Vault HTTP handlers — aiohttp routes over :class:`VaultService`.

Authentication is performed upstream: an auth middleware must store the
verified user id in ``request["user_id"]``. On first sight of a user id
the auth layer must also provide ``request["user_email"]`` (and optionally
``request["auth_provider"]``) so the user record can be created; an unknown
id without an email is refused with 401. Blobs travel base64-encoded in
JSON bodies; the vault core only ever sees raw bytes.

Security Note:
    Never log request bodies. They carry PINs, metadata and pre-images.
"""
import base64
import binascii
import logging
from typing import Any, Awaitable, Callable

import orjson
from aiohttp import web
from pydantic import BaseModel, ValidationError

from .exceptions import (
    Conflict,
    Forbidden,
    InvalidInput,
    NotFound,
    QuotaExceeded,
    StorageFailure,
    VaultError,
    VaultNotRegistered,
)
from .vault.service import VaultService

logger = logging.getLogger("evault.http")

USER_ID_KEY = "user_id"
USER_EMAIL_KEY = "user_email"
AUTH_PROVIDER_KEY = "auth_provider"
SERVICE_KEY = web.AppKey("evault_service", VaultService)

# most specific first
_ERROR_STATUS: tuple[tuple[type[VaultError], int], ...] = (
    (VaultNotRegistered, 400),
    (InvalidInput, 400),
    (QuotaExceeded, 400),
    (Forbidden, 403),
    (NotFound, 404),
    (Conflict, 409),
    (StorageFailure, 503),
)


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------

class RegisterVaultRequest(BaseModel):
    pin: str
    openadp_metadata: str  # base64


class RecoverVaultRequest(BaseModel):
    pin: str


class RefreshVaultRequest(BaseModel):
    openadp_metadata: str  # base64


class AddEntryRequest(BaseModel):
    name: str
    hpke_blob: str  # base64
    deletion_hash: str  # base64


class DeleteEntryRequest(BaseModel):
    name: str
    deletion_pre_hash: str  # base64


class UpdateEmailRequest(BaseModel):
    email: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _dumps(obj: Any) -> str:
    return orjson.dumps(obj).decode("utf-8")


def json_response(data: Any, status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=_dumps)


def b64decode(value: str, field: str) -> bytes:
    """Decode a standard base64 field.

    Raises:
        InvalidInput: If ``value`` is not valid base64.
    """
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as err:
        raise InvalidInput(f"Invalid {field} encoding") from err


def b64encode(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def status_for(err: VaultError) -> int:
    for cls, status in _ERROR_STATUS:
        if isinstance(err, cls):
            return status
    return 500


async def parse_body(request: web.Request, model: type[BaseModel]) -> Any:
    """Parse and validate a JSON body.

    Raises:
        InvalidInput: If the body is not JSON or does not match ``model``.
    """
    try:
        data = orjson.loads(await request.read())
    except orjson.JSONDecodeError as err:
        raise InvalidInput("Invalid request format") from err
    try:
        return model.model_validate(data)
    except ValidationError as err:
        raise InvalidInput("Invalid request format") from err


def _unauthorized(message: str) -> web.HTTPUnauthorized:
    return web.HTTPUnauthorized(
        text=_dumps({"error": message}),
        content_type="application/json",
    )


def user_id_of(request: web.Request) -> str:
    user_id = request.get(USER_ID_KEY)
    if not user_id:
        raise _unauthorized("User not authenticated")
    return user_id


@web.middleware
async def user_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """Make sure the authenticated user has a stored record.

    Unknown user ids are created from ``request["user_email"]``. Without an
    email the request is refused, as no record can be created.
    """
    user_id = request.get(USER_ID_KEY)
    if user_id:
        service = request.app[SERVICE_KEY]
        if await service.get_user(user_id) is None:
            email = request.get(USER_EMAIL_KEY)
            if not email:
                raise _unauthorized("User not found")
            await service.ensure_user(
                user_id, email, request.get(AUTH_PROVIDER_KEY)
            )
            logger.info("User provisioned: user=%s", user_id)
    return await handler(request)


@web.middleware
async def error_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """Render vault errors as ``{"error": ...}`` JSON responses."""
    try:
        return await handler(request)
    except VaultError as err:
        status = status_for(err)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, err)
        else:
            logger.debug(
                "%s %s rejected (%d): %s",
                request.method, request.path, status, err,
            )
        return json_response({"error": str(err)}, status=status)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

class VaultHandler:
    """Route handlers for the vault and entry endpoints."""

    def __init__(self, service: VaultService):
        self.service = service

    async def register(self, request: web.Request) -> web.Response:
        user_id = user_id_of(request)
        payload = await parse_body(request, RegisterVaultRequest)
        metadata = b64decode(payload.openadp_metadata, "metadata")
        logger.info(
            "Vault registration: user=%s pin_length=%d metadata_size=%d",
            user_id, len(payload.pin), len(metadata),
        )
        await self.service.register(user_id, payload.pin, metadata)
        return json_response({"success": True})

    async def recover(self, request: web.Request) -> web.Response:
        user_id = user_id_of(request)
        payload = await parse_body(request, RecoverVaultRequest)
        metadata = await self.service.recover(user_id, payload.pin)
        return json_response({
            "success": True,
            "openadp_metadata": b64encode(metadata),
        })

    async def refresh(self, request: web.Request) -> web.Response:
        user_id = user_id_of(request)
        payload = await parse_body(request, RefreshVaultRequest)
        metadata = b64decode(payload.openadp_metadata, "metadata")
        await self.service.refresh(user_id, metadata)
        return json_response({"success": True})

    async def status(self, request: web.Request) -> web.Response:
        user_id = user_id_of(request)
        status = await self.service.status(user_id)
        return json_response({
            "has_vault": status.has_vault,
            "openadp_metadata": (
                b64encode(status.metadata) if status.metadata is not None else None
            ),
        })

    async def add_entry(self, request: web.Request) -> web.Response:
        user_id = user_id_of(request)
        payload = await parse_body(request, AddEntryRequest)
        blob = b64decode(payload.hpke_blob, "HPKE blob")
        deletion_hash = b64decode(payload.deletion_hash, "deletion hash")
        await self.service.add_entry(user_id, payload.name, blob, deletion_hash)
        return json_response({"message": "Entry added successfully"})

    async def list_entries(self, request: web.Request) -> web.Response:
        user_id = user_id_of(request)
        names = await self.service.list_entry_names(user_id)
        return json_response({"names": names})

    async def get_entries(self, request: web.Request) -> web.Response:
        user_id = user_id_of(request)
        entries = await self.service.get_entries(user_id)
        return json_response({
            "entries": [
                {"name": name, "hpke_blob": b64encode(blob)}
                for name, blob in entries
            ]
        })

    async def delete_entry(self, request: web.Request) -> web.Response:
        user_id = user_id_of(request)
        payload = await parse_body(request, DeleteEntryRequest)
        preimage = b64decode(payload.deletion_pre_hash, "deletion pre-hash")
        await self.service.delete_entry(user_id, payload.name, preimage)
        return json_response({"message": "Entry deleted successfully"})

    async def user_info(self, request: web.Request) -> web.Response:
        user_id = user_id_of(request)
        user = await self.service.get_user(user_id)
        if user is None:
            raise _unauthorized("User not found")
        return json_response({"user": user.model_dump()})

    async def update_email(self, request: web.Request) -> web.Response:
        user_id = user_id_of(request)
        payload = await parse_body(request, UpdateEmailRequest)
        user = await self.service.update_email(user_id, payload.email)
        return json_response({"success": True, "user": user.model_dump()})

    async def delete_account(self, request: web.Request) -> web.Response:
        user_id = user_id_of(request)
        await self.service.delete_user(user_id)
        return json_response({"success": True})

    async def stats(self, request: web.Request) -> web.Response:
        user_id_of(request)
        stats = await self.service.stats()
        return json_response(stats.model_dump())


def setup_vault(app: web.Application, service: VaultService) -> VaultHandler:
    """Register vault routes and middlewares on ``app``.

    The auth middleware must run before these: it sets ``request["user_id"]``
    and, for users not yet stored, ``request["user_email"]``.
    ``user_middleware`` then creates the missing user record.

    Args:
        app: aiohttp application, not yet frozen.
        service: Vault service backing the routes.

    Returns:
        The handler instance bound to the routes.
    """
    handler = VaultHandler(service)
    app[SERVICE_KEY] = service
    app.middlewares.append(error_middleware)
    app.middlewares.append(user_middleware)
    app.router.add_get("/api/user/info", handler.user_info)
    app.router.add_post("/api/user/update-email", handler.update_email)
    app.router.add_delete("/api/user/delete", handler.delete_account)
    app.router.add_get("/api/stats", handler.stats)
    app.router.add_post("/api/vault/register", handler.register)
    app.router.add_post("/api/vault/recover", handler.recover)
    app.router.add_post("/api/vault/refresh", handler.refresh)
    app.router.add_get("/api/vault/status", handler.status)
    app.router.add_post("/api/entries", handler.add_entry)
    app.router.add_get("/api/entries", handler.get_entries)
    app.router.add_get("/api/entries/list", handler.list_entries)
    app.router.add_post("/api/entries/delete", handler.delete_entry)
    return handler
