"""Remote definitions, managed through the transfer engine's own config."""

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
from syncboard.schemas.remote import RemoteInfo
from syncboard.services.event_bus import EventType
from syncboard.services.validation import validate_remote_name

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from syncboard.services.event_bus import EventBus
    from syncboard.services.transfer_engine import TransferEngine

    RemoteDeletedHook = Callable[[str], Awaitable[None]]

logger = logging.getLogger(__name__)

REMOTE_DESCRIPTIONS: dict[str, str] = {
    "s3": "Amazon S3 Compatible Storage",
    "drive": "Google Drive",
    "dropbox": "Dropbox",
    "onedrive": "Microsoft OneDrive",
    "gdrive": "Google Drive",
    "box": "Box",
    "mega": "Mega",
    "pcloud": "pCloud",
    "webdav": "WebDAV",
    "ftp": "FTP",
    "sftp": "SFTP",
    "local": "Local Filesystem",
    "memory": "In Memory",
    "crypt": "Encrypted Remote",
    "compress": "Compressed Remote",
    "cache": "Cached Remote",
}


def describe_remote_type(remote_type: str) -> str:
    return REMOTE_DESCRIPTIONS.get(remote_type, f"Remote type: {remote_type}")


class RemoteService:
    """CRUD over engine remotes; deletions fan out to the registered hooks."""

    def __init__(
        self,
        engine: TransferEngine,
        event_bus: EventBus,
        on_deleted: list[RemoteDeletedHook] | None = None,
    ) -> None:
        self._engine = engine
        self._event_bus = event_bus
        self._on_deleted: list[RemoteDeletedHook] = list(on_deleted or [])
        self._lock = asyncio.Lock()

    def add_deletion_hook(self, hook: RemoteDeletedHook) -> None:
        self._on_deleted.append(hook)

    def _emit(self, event_type: EventType, remote: RemoteInfo) -> None:
        self._event_bus.emit(event_type, remoteName=remote.name, data=remote.model_dump())

    async def _find(self, name: str) -> RemoteInfo | None:
        for remote in await self._engine.list_remotes():
            if remote.name == name:
                return remote
        return None

    async def get_remotes(self) -> list[RemoteInfo]:
        try:
            await self._engine.init_config()
            remotes = await self._engine.list_remotes()
        except AppError as exc:
            raise wrap_error(
                exc, ErrorCode.TRANSFER_ENGINE_ERROR, "failed to list remotes"
            ) from exc
        for remote in remotes:
            remote.description = describe_remote_type(remote.type)
        return remotes

    async def get_remote(self, name: str) -> RemoteInfo:
        remote = await self._find(name)
        if remote is None:
            raise NotFoundError(f"remote '{name}' not found")
        remote.description = describe_remote_type(remote.type)
        return remote

    async def add_remote(
        self, name: str, remote_type: str, config: dict[str, str]
    ) -> RemoteInfo:
        validate_remote_name(name)
        if not remote_type:
            raise ValidationError("remote type cannot be empty")
        async with self._lock:
            if await self._find(name) is not None:
                raise AlreadyExistsError(f"remote '{name}' already exists")
            try:
                await self._engine.create_remote(name, remote_type, config)
            except AppError as exc:
                raise wrap_error(
                    exc, ErrorCode.TRANSFER_ENGINE_ERROR, "failed to create remote"
                ) from exc
        remote = RemoteInfo(
            name=name,
            type=remote_type,
            config=dict(config),
            description=describe_remote_type(remote_type),
        )
        self._emit(EventType.REMOTE_ADDED, remote)
        logger.info("Remote %r (%s) added", name, remote_type)
        return remote

    async def update_remote(self, name: str, config: dict[str, str]) -> RemoteInfo:
        async with self._lock:
            existing = await self._find(name)
            if existing is None:
                raise NotFoundError(f"remote '{name}' not found")
            try:
                await self._engine.update_remote(name, config)
            except AppError as exc:
                raise wrap_error(
                    exc, ErrorCode.TRANSFER_ENGINE_ERROR, "failed to update remote"
                ) from exc
        remote = RemoteInfo(
            name=name,
            type=existing.type,
            config=dict(config),
            description=describe_remote_type(existing.type),
        )
        self._emit(EventType.REMOTE_UPDATED, remote)
        return remote

    async def delete_remote(self, name: str) -> None:
        """Delete the remote, then scrub references to it from boards and flows."""
        async with self._lock:
            existing = await self._find(name)
            if existing is None:
                raise NotFoundError(f"remote '{name}' not found")
            try:
                await self._engine.delete_remote(name)
            except AppError as exc:
                raise wrap_error(
                    exc, ErrorCode.TRANSFER_ENGINE_ERROR, "failed to delete remote"
                ) from exc

        await self.notify_deleted(name)
        self._emit(
            EventType.REMOTE_DELETED,
            RemoteInfo(
                name=name, type=existing.type, description=describe_remote_type(existing.type)
            ),
        )
        logger.info("Remote %r deleted", name)

    async def notify_deleted(self, name: str) -> None:
        for hook in self._on_deleted:
            try:
                await hook(name)
            except Exception:
                logger.exception("Remote-deletion cleanup failed for %r", name)

    async def test_remote(self, name: str) -> None:
        if await self._find(name) is None:
            raise NotFoundError(f"remote '{name}' not found")
        try:
            await self._engine.test_remote(name)
        except AppError as exc:
            logger.warning("Remote %r test failed: %s", name, exc)
            raise wrap_error(
                exc, ErrorCode.TRANSFER_ENGINE_ERROR, "connection test failed"
            ) from exc
