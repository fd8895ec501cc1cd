"""Notifications and the persisted application preferences that gate them."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from sqlalchemy import select

from syncboard.models.profile import SettingRow
from syncboard.schemas.settings import AppSettings
from syncboard.services.event_bus import EventType

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from syncboard.services.event_bus import EventBus

logger = logging.getLogger(__name__)


def _to_text(value: bool) -> str:
    return "true" if value else "false"


def _from_text(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


async def load_settings(session: AsyncSession) -> AppSettings:
    """Read known boolean keys from the ``settings`` table; unknown keys are ignored."""
    rows = (await session.execute(select(SettingRow))).scalars().all()
    values = {row.key: _from_text(row.value) for row in rows if row.key in AppSettings.model_fields}
    return AppSettings(**values)


async def store_settings(session: AsyncSession, settings: AppSettings) -> None:
    for key, value in settings.model_dump().items():
        await session.merge(SettingRow(key=key, value=_to_text(value)))


class NotificationService:
    """Publishes user-facing notifications when they are enabled."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], event_bus: EventBus
    ) -> None:
        self._session_factory = session_factory
        self._event_bus = event_bus
        self._lock = asyncio.Lock()
        self._settings: AppSettings | None = None

    async def get_settings(self) -> AppSettings:
        async with self._lock:
            if self._settings is None:
                async with self._session_factory() as session:
                    self._settings = await load_settings(session)
            return self._settings.model_copy()

    async def update_settings(self, settings: AppSettings) -> AppSettings:
        async with self._lock, self._session_factory() as session:
            await store_settings(session, settings)
            await session.commit()
            self._settings = settings.model_copy()
        self._event_bus.emit(EventType.CONFIG_UPDATED, data=settings.model_dump())
        return settings

    async def set_enabled(self, enabled: bool) -> None:
        current = await self.get_settings()
        current.notifications_enabled = enabled
        await self.update_settings(current)

    async def is_enabled(self) -> bool:
        return (await self.get_settings()).notifications_enabled

    async def send(self, title: str, body: str) -> bool:
        """Publish a notification; returns False when notifications are disabled."""
        if not await self.is_enabled():
            logger.debug("Notifications disabled, dropping %r", title)
            return False
        self._event_bus.emit(EventType.NOTIFICATION, title=title, body=body)
        logger.info("Notification: %s: %s", title, body)
        return True
