"""Encrypted (crypt) remotes layered over an existing remote path."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from syncboard.exceptions import (
    AlreadyExistsError,
    AppError,
    ErrorCode,
    NotFoundError,
    ValidationError,
    wrap_error,
)
from syncboard.services.event_bus import EventType
from syncboard.services.validation import validate_remote_name

if TYPE_CHECKING:
    from syncboard.schemas.remote import CryptRemoteConfig
    from syncboard.services.event_bus import EventBus
    from syncboard.services.transfer_engine import TransferEngine

logger = logging.getLogger(__name__)

CRYPT_TYPE = "crypt"
FILENAME_MODES = frozenset({"standard", "obfuscate", "off"})


class CryptService:
    def __init__(self, engine: TransferEngine, event_bus: EventBus) -> None:
        self._engine = engine
        self._event_bus = event_bus
        self._lock = asyncio.Lock()

    async def _remote_type(self, name: str) -> str:
        for remote in await self._engine.list_remotes():
            if remote.name == name:
                return remote.type
        return ""

    async def create_crypt_remote(self, cfg: CryptRemoteConfig) -> None:
        if not cfg.name:
            raise ValidationError("crypt remote name cannot be empty")
        if not cfg.wrapped_remote:
            raise ValidationError("wrapped remote path cannot be empty")
        if not cfg.password:
            raise ValidationError("encryption password cannot be empty")
        validate_remote_name(cfg.name)
        filename_mode = cfg.filename_encrypt or "standard"
        if filename_mode not in FILENAME_MODES:
            raise ValidationError(f"invalid filename encryption mode '{filename_mode}'")

        params = {
            "remote": cfg.wrapped_remote,
            "password": cfg.password,
            "filename_encryption": filename_mode,
            "directory_name_encryption": "true" if cfg.directory_encrypt else "false",
        }
        if cfg.password2:
            params["password2"] = cfg.password2

        async with self._lock:
            if await self._remote_type(cfg.name):
                raise AlreadyExistsError(f"remote '{cfg.name}' already exists")
            try:
                await self._engine.create_remote(cfg.name, CRYPT_TYPE, params, obscure=True)
            except AppError as exc:
                raise wrap_error(
                    exc, ErrorCode.TRANSFER_ENGINE_ERROR, "failed to create crypt remote"
                ) from exc

        self._event_bus.emit(
            EventType.CRYPT_REMOTE_CREATED,
            remoteName=cfg.name,
            data=cfg.model_dump(exclude={"password", "password2"}),
        )
        logger.info("Crypt remote %r created wrapping %r", cfg.name, cfg.wrapped_remote)

    async def delete_crypt_remote(self, name: str) -> None:
        async with self._lock:
            remote_type = await self._remote_type(name)
            if not remote_type:
                raise NotFoundError(f"remote '{name}' not found")
            if remote_type != CRYPT_TYPE:
                raise ValidationError(
                    f"remote '{name}' is not a crypt remote (type: {remote_type})"
                )
            try:
                await self._engine.delete_remote(name)
            except AppError as exc:
                raise wrap_error(
                    exc, ErrorCode.TRANSFER_ENGINE_ERROR, "failed to delete crypt remote"
                ) from exc

        self._event_bus.emit(EventType.CRYPT_REMOTE_DELETED, remoteName=name, data=None)
        logger.info("Crypt remote %r deleted", name)

    async def list_crypt_remotes(self) -> list[str]:
        return [
            remote.name
            for remote in await self._engine.list_remotes()
            if remote.type == CRYPT_TYPE
        ]
