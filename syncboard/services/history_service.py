"""History service: capped log of finished runs plus aggregates."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import case, delete, func, select

from syncboard.models.schedule import HistoryRow
from syncboard.schemas.history import AggregateStats, HistoryEntry
from syncboard.services.datetime_service import format_duration, parse_duration
from syncboard.services.event_bus import EventType

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from syncboard.services.event_bus import EventBus

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 1000
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def row_to_entry(row: HistoryRow) -> HistoryEntry:
    return HistoryEntry(
        id=row.id,
        profile_name=row.profile_name,
        action=row.action,
        status=row.status,
        start_time=row.start_time or _EPOCH,
        end_time=row.end_time or _EPOCH,
        duration=row.duration,
        files_transferred=row.files_transferred,
        bytes_transferred=row.bytes_transferred,
        errors=row.errors,
        error_message=row.error_message,
    )


def entry_to_row(entry: HistoryEntry) -> HistoryRow:
    return HistoryRow(
        id=entry.id,
        profile_name=entry.profile_name,
        action=entry.action,
        status=entry.status,
        start_time=entry.start_time,
        end_time=entry.end_time,
        duration=entry.duration,
        files_transferred=entry.files_transferred,
        bytes_transferred=entry.bytes_transferred,
        errors=entry.errors,
        error_message=entry.error_message,
    )


def average_duration(durations: list[str]) -> str:
    """Average the parseable Go-style durations; unparseable ones are ignored."""
    parsed: list[float] = []
    for value in durations:
        if not value:
            continue
        try:
            parsed.append(parse_duration(value))
        except ValueError:
            logger.debug("Skipping unparseable duration %r", value)
    if not parsed:
        return "0s"
    return format_duration(sum(parsed) / len(parsed))


class HistoryService:
    """Append-only run history, capped at ``limit`` rows by ``start_time``."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: EventBus,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self._session_factory = session_factory
        self._event_bus = event_bus
        self._limit = limit

    async def add_entry(self, entry: HistoryEntry) -> None:
        """Insert or replace ``entry`` and evict the oldest rows past the cap."""
        async with self._session_factory() as session:
            await session.merge(entry_to_row(entry))
            await session.flush()
            keep = (
                select(HistoryRow.id)
                .order_by(HistoryRow.start_time.desc())
                .limit(self._limit)
            )
            await session.execute(
                delete(HistoryRow)
                .where(HistoryRow.id.not_in(keep))
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        self._event_bus.emit(EventType.HISTORY_ADDED, data=entry.model_dump(mode="json"))

    async def get_history(self, limit: int, offset: int = 0) -> list[HistoryEntry]:
        if limit <= 0 or offset < 0:
            return []
        async with self._session_factory() as session:
            stmt = (
                select(HistoryRow)
                .order_by(HistoryRow.start_time.desc())
                .limit(limit)
                .offset(offset)
            )
            rows = (await session.execute(stmt)).scalars().all()
        return [row_to_entry(row) for row in rows]

    async def get_history_for_profile(self, profile_name: str) -> list[HistoryEntry]:
        async with self._session_factory() as session:
            stmt = (
                select(HistoryRow)
                .where(HistoryRow.profile_name == profile_name)
                .order_by(HistoryRow.start_time.desc())
            )
            rows = (await session.execute(stmt)).scalars().all()
        return [row_to_entry(row) for row in rows]

    async def get_stats(self) -> AggregateStats:
        def _count(status: str) -> Any:
            return func.coalesce(func.sum(case((HistoryRow.status == status, 1), else_=0)), 0)

        async with self._session_factory() as session:
            stmt = select(
                func.count(HistoryRow.id),
                _count("completed"),
                _count("failed"),
                _count("cancelled"),
                func.coalesce(func.sum(HistoryRow.bytes_transferred), 0),
                func.coalesce(func.sum(HistoryRow.files_transferred), 0),
            )
            total, success, failure, cancelled, total_bytes, total_files = (
                await session.execute(stmt)
            ).one()
            durations = (await session.execute(select(HistoryRow.duration))).scalars().all()

        return AggregateStats(
            total_operations=total,
            success_count=success,
            failure_count=failure,
            cancelled_count=cancelled,
            total_bytes=total_bytes,
            total_files=total_files,
            average_duration=average_duration(list(durations)),
        )

    async def clear_history(self) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(HistoryRow))
            await session.commit()
        logger.info("History cleared")
        self._event_bus.emit(EventType.HISTORY_CLEARED, data=None)
