"""Tests for run history: cap, queries and aggregates."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from syncboard.schemas.history import HistoryEntry
from syncboard.services.event_bus import EventType
from syncboard.services.history_service import HistoryService, average_duration

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from syncboard.services.event_bus import EventBus
    from tests.conftest import EventRecorder

BASE_TIME = datetime(2026, 1, 1, tzinfo=UTC)


def make_entry(
    index: int,
    status: str = "completed",
    profile_name: str = "docs",
    duration: str = "1s",
    **kwargs: int,
) -> HistoryEntry:
    start = BASE_TIME + timedelta(minutes=index)
    return HistoryEntry(
        id=f"h{index:05d}",
        profile_name=profile_name,
        action="push",
        status=status,
        start_time=start,
        end_time=start + timedelta(seconds=1),
        duration=duration,
        **kwargs,
    )


class TestHistoryCap:
    async def test_keeps_newest_thousand(
        self, session_factory: async_sessionmaker[AsyncSession], event_bus: EventBus
    ) -> None:
        history = HistoryService(session_factory, event_bus)
        for i in range(1050):
            await history.add_entry(make_entry(i))

        entries = await history.get_history(10_000)
        assert len(entries) == 1000
        cutoff = BASE_TIME + timedelta(minutes=50)
        assert all(entry.start_time >= cutoff for entry in entries)
        assert min(entry.start_time for entry in entries) == cutoff

    async def test_custom_limit(
        self, session_factory: async_sessionmaker[AsyncSession], event_bus: EventBus
    ) -> None:
        history = HistoryService(session_factory, event_bus, limit=3)
        for i in range(5):
            await history.add_entry(make_entry(i))
        assert [entry.id for entry in await history.get_history(10)] == [
            "h00004",
            "h00003",
            "h00002",
        ]

    async def test_same_id_replaces(
        self, session_factory: async_sessionmaker[AsyncSession], event_bus: EventBus
    ) -> None:
        history = HistoryService(session_factory, event_bus)
        await history.add_entry(make_entry(1))
        await history.add_entry(make_entry(1, status="failed"))
        entries = await history.get_history(10)
        assert len(entries) == 1
        assert entries[0].status == "failed"


class TestHistoryQueries:
    async def test_newest_first_with_offset(
        self, session_factory: async_sessionmaker[AsyncSession], event_bus: EventBus
    ) -> None:
        history = HistoryService(session_factory, event_bus)
        for i in range(5):
            await history.add_entry(make_entry(i))
        page = await history.get_history(2, offset=1)
        assert [entry.id for entry in page] == ["h00003", "h00002"]
        assert await history.get_history(0) == []
        assert await history.get_history(5, offset=-1) == []

    async def test_for_profile(
        self, session_factory: async_sessionmaker[AsyncSession], event_bus: EventBus
    ) -> None:
        history = HistoryService(session_factory, event_bus)
        await history.add_entry(make_entry(1, profile_name="docs"))
        await history.add_entry(make_entry(2, profile_name="photos"))
        await history.add_entry(make_entry(3, profile_name="docs"))
        entries = await history.get_history_for_profile("docs")
        assert [entry.id for entry in entries] == ["h00003", "h00001"]

    async def test_timestamps_are_utc_aware(
        self, session_factory: async_sessionmaker[AsyncSession], event_bus: EventBus
    ) -> None:
        history = HistoryService(session_factory, event_bus)
        await history.add_entry(make_entry(7))
        entry = (await history.get_history(1))[0]
        assert entry.start_time == BASE_TIME + timedelta(minutes=7)
        assert entry.start_time.utcoffset() == timedelta(0)

    async def test_add_and_clear_emit_events(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: EventBus,
        events: EventRecorder,
    ) -> None:
        history = HistoryService(session_factory, event_bus)
        await history.add_entry(make_entry(1))
        await history.clear_history()
        assert await history.get_history(10) == []
        assert events.types() == [EventType.HISTORY_ADDED, EventType.HISTORY_CLEARED]


class TestHistoryStats:
    async def test_aggregates(
        self, session_factory: async_sessionmaker[AsyncSession], event_bus: EventBus
    ) -> None:
        history = HistoryService(session_factory, event_bus)
        await history.add_entry(
            make_entry(1, duration="1s", files_transferred=2, bytes_transferred=100)
        )
        await history.add_entry(
            make_entry(2, status="failed", duration="3s", files_transferred=1, errors=1)
        )
        await history.add_entry(make_entry(3, status="cancelled", duration="garbage"))

        stats = await history.get_stats()
        assert stats.total_operations == 3
        assert stats.success_count == 1
        assert stats.failure_count == 1
        assert stats.cancelled_count == 1
        assert stats.total_bytes == 100
        assert stats.total_files == 3
        assert stats.average_duration == "2s"

    async def test_empty_stats(
        self, session_factory: async_sessionmaker[AsyncSession], event_bus: EventBus
    ) -> None:
        stats = await HistoryService(session_factory, event_bus).get_stats()
        assert stats.total_operations == 0
        assert stats.average_duration == "0s"


class TestAverageDuration:
    def test_skips_empty_and_unparseable(self) -> None:
        assert average_duration(["1m", "", "nope", "3m"]) == "2m0s"

    def test_sub_second(self) -> None:
        assert average_duration(["100ms", "200ms"]) == "150ms"

    def test_nothing_parseable(self) -> None:
        assert average_duration(["", "x"]) == "0s"
