"""Tests for notifications and app preferences."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from syncboard.models.profile import SettingRow
from syncboard.schemas.settings import AppSettings
from syncboard.services.event_bus import EventType
from syncboard.services.notification_service import NotificationService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from syncboard.services.event_bus import EventBus
    from tests.conftest import EventRecorder


@pytest.fixture
def notifications(
    session_factory: async_sessionmaker[AsyncSession], event_bus: EventBus
) -> NotificationService:
    return NotificationService(session_factory, event_bus)


class TestSettings:
    async def test_defaults(self, notifications: NotificationService) -> None:
        settings = await notifications.get_settings()
        assert settings == AppSettings()
        assert settings.notifications_enabled is True

    async def test_update_persists_as_text(
        self,
        notifications: NotificationService,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: EventBus,
        events: EventRecorder,
    ) -> None:
        await notifications.update_settings(AppSettings(debug_mode=True))

        async with session_factory() as session:
            row = await session.get(SettingRow, "debug_mode")
        assert row is not None
        assert row.value == "true"

        fresh = NotificationService(session_factory, event_bus)
        assert (await fresh.get_settings()).debug_mode is True
        assert events.types() == [EventType.CONFIG_UPDATED]

    async def test_unknown_keys_ignored(
        self,
        notifications: NotificationService,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        async with session_factory() as session:
            session.add(SettingRow(key="theme", value="dark"))
            session.add(SettingRow(key="minimize_to_tray", value="1"))
            await session.commit()
        settings = await notifications.get_settings()
        assert settings.minimize_to_tray is True


class TestSend:
    async def test_send_when_enabled(
        self, notifications: NotificationService, events: EventRecorder
    ) -> None:
        assert await notifications.send("Board finished", "Nightly backup completed") is True
        sent = events.of_type(EventType.NOTIFICATION)
        assert sent[0]["title"] == "Board finished"
        assert sent[0]["body"] == "Nightly backup completed"

    async def test_send_when_disabled(
        self, notifications: NotificationService, events: EventRecorder
    ) -> None:
        await notifications.set_enabled(False)
        assert await notifications.is_enabled() is False
        assert await notifications.send("Board finished", "done") is False
        assert events.of_type(EventType.NOTIFICATION) == []
