"""Cron registry that fires profile syncs on APScheduler.

Each enabled schedule owns exactly one job, keyed ``schedule:<id>``. The
scheduler lock guards the schedule list and the job map and is released
around the sync-supervisor call in ``trigger_schedule``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select

from syncboard.exceptions import (
    AlreadyExistsError,
    AppError,
    ErrorCode,
    NotFoundError,
    ValidationError,
    wrap_error,
)
from syncboard.models.schedule import ScheduleRow
from syncboard.schemas.board import EdgeAction
from syncboard.schemas.profile import Profile
from syncboard.schemas.schedule import ScheduleEntry
from syncboard.services.datetime_service import now_utc
from syncboard.services.event_bus import EventType
from syncboard.services.validation import parse_cron

if TYPE_CHECKING:
    from datetime import datetime

    from apscheduler.schedulers.asyncio import AsyncIOScheduler
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from syncboard.services.event_bus import EventBus
    from syncboard.services.profile_service import ProfileService
    from syncboard.services.sync_service import SyncService

logger = logging.getLogger(__name__)

SCHEDULE_JOB_PREFIX = "schedule:"
_ACTIONS = frozenset(action.value for action in EdgeAction)


def row_to_entry(row: ScheduleRow) -> ScheduleEntry:
    return ScheduleEntry(
        id=row.id,
        profile_name=row.profile_name,
        action=row.action,
        cron_expr=row.cron_expr,
        enabled=row.enabled,
        last_run=row.last_run,
        next_run=row.next_run,
        last_result=row.last_result,
        created_at=row.created_at,
    )


def entry_to_row(entry: ScheduleEntry) -> ScheduleRow:
    return ScheduleRow(
        id=entry.id,
        profile_name=entry.profile_name,
        action=entry.action,
        cron_expr=entry.cron_expr,
        enabled=entry.enabled,
        last_run=entry.last_run,
        next_run=entry.next_run,
        last_result=entry.last_result,
        created_at=entry.created_at or now_utc(),
    )


def next_fire_time(cron_expr: str) -> datetime | None:
    return parse_cron(cron_expr).get_next_fire_time(None, now_utc())


class SchedulerService:
    """Schedules persisted in the ``schedules`` table and mirrored as cron jobs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: EventBus,
        scheduler: AsyncIOScheduler,
        sync_service: SyncService | None = None,
        profiles: ProfileService | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._event_bus = event_bus
        self._scheduler = scheduler
        self._sync_service = sync_service
        self._profiles = profiles
        self._lock = asyncio.Lock()
        self._schedules: list[ScheduleEntry] = []
        self._cron_entries: dict[str, str] = {}
        self._initialized = False

    def _emit(self, event_type: EventType, schedule_id: str, data: Any) -> None:
        self._event_bus.emit(event_type, scheduleId=schedule_id, data=data)

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """Load schedules, register the enabled ones and start the cron runtime."""
        async with self._lock:
            await self._ensure_loaded()
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info("Scheduler started with %d schedules", len(self._schedules))

    async def _ensure_loaded(self) -> None:
        """Load persisted schedules once. Callers hold ``self._lock``."""
        if self._initialized:
            return
        try:
            self._schedules = await self._load()
        except Exception:
            logger.exception("Could not load schedules")
            self._schedules = []
        for entry in self._schedules:
            if not entry.enabled:
                continue
            try:
                self._register(entry)
            except ValidationError as exc:
                logger.warning("Failed to register schedule %s: %s", entry.id, exc)
        self._initialized = True

    async def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler shut down")

    def registered_job_ids(self) -> list[str]:
        return sorted(self._cron_entries.values())

    async def _load(self) -> list[ScheduleEntry]:
        async with self._session_factory() as session:
            stmt = select(ScheduleRow).order_by(ScheduleRow.created_at)
            rows = (await session.execute(stmt)).scalars().all()
        return [row_to_entry(row) for row in rows]

    async def _save(self, entry: ScheduleEntry) -> None:
        async with self._session_factory() as session:
            await session.merge(entry_to_row(entry))
            await session.commit()

    async def _remove(self, schedule_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(ScheduleRow).where(ScheduleRow.id == schedule_id))
            await session.commit()

    # -- cron registration ---------------------------------------------------

    def _register(self, entry: ScheduleEntry) -> None:
        trigger = parse_cron(entry.cron_expr)
        job_id = SCHEDULE_JOB_PREFIX + entry.id
        self._scheduler.add_job(
            self.trigger_schedule,
            trigger=trigger,
            id=job_id,
            args=[entry.id, entry.profile_name, entry.action],
            replace_existing=True,
        )
        self._cron_entries[entry.id] = job_id
        entry.next_run = trigger.get_next_fire_time(None, now_utc())

    def _unregister(self, schedule_id: str) -> None:
        job_id = self._cron_entries.pop(schedule_id, None)
        if job_id is not None and self._scheduler.get_job(job_id) is not None:
            self._scheduler.remove_job(job_id)

    def _find(self, schedule_id: str) -> int:
        for i, entry in enumerate(self._schedules):
            if entry.id == schedule_id:
                return i
        raise NotFoundError(f"schedule '{schedule_id}' not found")

    @staticmethod
    def _admit(entry: ScheduleEntry) -> None:
        parse_cron(entry.cron_expr)
        if entry.action not in _ACTIONS:
            raise ValidationError(f"action: unknown sync action '{entry.action}'", details="action")

    # -- CRUD ----------------------------------------------------------------

    async def get_schedules(self) -> list[ScheduleEntry]:
        async with self._lock:
            await self._ensure_loaded()
            return [entry.model_copy() for entry in self._schedules]

    async def add_schedule(self, entry: ScheduleEntry) -> ScheduleEntry:
        self._admit(entry)
        entry = entry.model_copy()
        async with self._lock:
            await self._ensure_loaded()
            if any(existing.id == entry.id for existing in self._schedules):
                raise AlreadyExistsError(f"schedule '{entry.id}' already exists")
            entry.created_at = entry.created_at or now_utc()
            entry.next_run = None
            self._schedules.append(entry)
            if entry.enabled:
                self._register(entry)
            try:
                await self._save(entry)
            except Exception as exc:
                self._unregister(entry.id)
                self._schedules.pop()
                raise wrap_error(exc, ErrorCode.DATABASE_ERROR, "failed to save schedule") from exc
            saved = entry.model_copy()

        self._emit(EventType.SCHEDULE_ADDED, saved.id, saved.model_dump(mode="json"))
        logger.info("Schedule %r added for profile %r", saved.id, saved.profile_name)
        return saved

    async def update_schedule(self, entry: ScheduleEntry) -> ScheduleEntry:
        self._admit(entry)
        entry = entry.model_copy()
        async with self._lock:
            await self._ensure_loaded()
            index = self._find(entry.id)
            old = self._schedules[index]
            entry.created_at = old.created_at
            entry.next_run = None
            self._schedules[index] = entry
            self._unregister(entry.id)
            if entry.enabled:
                self._register(entry)
            try:
                await self._save(entry)
            except Exception as exc:
                self._unregister(entry.id)
                self._schedules[index] = old
                if old.enabled:
                    self._register(old)
                raise wrap_error(exc, ErrorCode.DATABASE_ERROR, "failed to save schedule") from exc
            saved = entry.model_copy()

        self._emit(EventType.SCHEDULE_UPDATED, saved.id, saved.model_dump(mode="json"))
        return saved

    async def delete_schedule(self, schedule_id: str) -> None:
        async with self._lock:
            await self._ensure_loaded()
            index = self._find(schedule_id)
            deleted = self._schedules.pop(index)
            self._unregister(schedule_id)
            try:
                await self._remove(schedule_id)
            except Exception as exc:
                self._schedules.insert(index, deleted)
                if deleted.enabled:
                    self._register(deleted)
                raise wrap_error(
                    exc, ErrorCode.DATABASE_ERROR, "failed to delete schedule"
                ) from exc

        self._emit(EventType.SCHEDULE_DELETED, schedule_id, deleted.model_dump(mode="json"))

    async def enable_schedule(self, schedule_id: str) -> ScheduleEntry:
        return await self._set_enabled(schedule_id, True)

    async def disable_schedule(self, schedule_id: str) -> ScheduleEntry:
        return await self._set_enabled(schedule_id, False)

    async def _set_enabled(self, schedule_id: str, enabled: bool) -> ScheduleEntry:
        async with self._lock:
            await self._ensure_loaded()
            entry = self._schedules[self._find(schedule_id)]
            previous = entry.model_copy()
            entry.enabled = enabled
            self._unregister(schedule_id)
            if enabled:
                self._register(entry)
            else:
                entry.next_run = None
            try:
                await self._save(entry)
            except Exception as exc:
                self._unregister(schedule_id)
                entry.enabled = previous.enabled
                entry.next_run = previous.next_run
                if previous.enabled:
                    self._register(entry)
                raise wrap_error(exc, ErrorCode.DATABASE_ERROR, "failed to save schedule") from exc
            saved = entry.model_copy()

        self._emit(EventType.SCHEDULE_UPDATED, schedule_id, saved.model_dump(mode="json"))
        return saved

    # -- firing ----------------------------------------------------------------

    async def _resolve_profile(self, profile_name: str) -> Profile:
        if self._profiles is not None:
            profile = await self._profiles.find_profile(profile_name)
            if profile is not None:
                return profile
        return Profile(name=profile_name)

    async def trigger_schedule(self, schedule_id: str, profile_name: str, action: str) -> None:
        """Cron callback: start the profile sync and record the outcome."""
        logger.info(
            "Schedule %r triggered: profile=%s action=%s", schedule_id, profile_name, action
        )
        self._emit(
            EventType.SCHEDULE_TRIGGERED,
            schedule_id,
            {"profile_name": profile_name, "action": action},
        )

        async with self._lock:
            try:
                entry = self._schedules[self._find(schedule_id)]
            except NotFoundError:
                logger.warning("Triggered schedule %r no longer exists", schedule_id)
                return
            entry.last_run = now_utc()
            if schedule_id in self._cron_entries:
                entry.next_run = next_fire_time(entry.cron_expr)
            if self._sync_service is None:
                await self._persist_quietly(entry)
                return
            if action not in _ACTIONS:
                entry.last_result = "failed"
                logger.warning("Unknown action %r for schedule %r", action, schedule_id)
                await self._persist_quietly(entry)
                return

        result = "success"
        try:
            profile = await self._resolve_profile(profile_name)
            await self._sync_service.start_sync(action, profile)
        except AppError as exc:
            result = "failed"
            logger.warning(
                "[%s] Failed to trigger sync for schedule %r: %s", exc.trace_id, schedule_id, exc
            )

        async with self._lock:
            try:
                entry = self._schedules[self._find(schedule_id)]
            except NotFoundError:
                return
            entry.last_result = result
            await self._persist_quietly(entry)

    async def _persist_quietly(self, entry: ScheduleEntry) -> None:
        try:
            await self._save(entry)
        except Exception:
            logger.exception("Failed to persist state of schedule %r", entry.id)
