"""Sync task supervisor.

Keeps a registry of in-flight sync tasks. Each task has its own cancel
handle, a bounded progress queue drained into the log service, and a
single-shot completion future that carries the final error (or None).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from syncboard.exceptions import (
    AppError,
    ErrorCode,
    InternalError,
    NotFoundError,
    OperationCancelledError,
    ValidationError,
    wrap_error,
)
from syncboard.schemas.board import EdgeAction
from syncboard.schemas.history import HistoryEntry
from syncboard.schemas.sync import SyncResult, SyncTaskInfo
from syncboard.services.datetime_service import format_duration, now_utc
from syncboard.services.event_bus import EventType, error_event, sync_event
from syncboard.services.transfer_engine import SyncDirection

if TYPE_CHECKING:
    from datetime import datetime

    from syncboard.schemas.profile import Profile
    from syncboard.services.event_bus import EventBus
    from syncboard.services.history_service import HistoryService
    from syncboard.services.log_service import LogService
    from syncboard.services.transfer_engine import LogSink, TransferEngine

logger = logging.getLogger(__name__)

DEFAULT_LOG_QUEUE_SIZE = 100
_RETAINED_RESULTS = 1000


class TaskStatus(StrEnum):
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class SyncTask:
    """In-memory record of one running sync."""

    id: int
    action: str
    profile: Profile
    tab_id: str
    cancel_event: asyncio.Event
    parent_cancel: asyncio.Event | None
    completion: asyncio.Future[AppError | None]
    start_time: datetime
    end_time: datetime | None = None
    status: TaskStatus = TaskStatus.STARTING
    cancel_reported: bool = False
    worker: asyncio.Task[None] | None = field(default=None, repr=False)

    def is_cancelled(self) -> bool:
        if self.cancel_event.is_set():
            return True
        return self.parent_cancel is not None and self.parent_cancel.is_set()

    def info(self) -> SyncTaskInfo:
        return SyncTaskInfo(
            id=self.id,
            action=self.action,
            profile_name=self.profile.name,
            tab_id=self.tab_id,
            status=self.status,
            start_time=self.start_time,
            end_time=self.end_time,
        )


class SyncService:
    """Starts, stops and awaits transfer-engine calls."""

    def __init__(
        self,
        engine: TransferEngine,
        event_bus: EventBus,
        log_service: LogService,
        history: HistoryService | None = None,
        log_queue_size: int = DEFAULT_LOG_QUEUE_SIZE,
    ) -> None:
        self._engine = engine
        self._event_bus = event_bus
        self._log_service = log_service
        self._history = history
        self._log_queue_size = max(log_queue_size, DEFAULT_LOG_QUEUE_SIZE)
        self._lock = asyncio.Lock()
        self._active_tasks: dict[int, SyncTask] = {}
        self._task_counter = 0
        self._task_tabs: dict[int, str] = {}
        # Completion futures of finished tasks, so late waiters still get the result.
        self._finished: dict[int, asyncio.Future[AppError | None]] = {}

    def _emit(self, event_type: EventType, task: SyncTask, status: str, message: str) -> None:
        self._event_bus.publish(sync_event(event_type, task.tab_id, task.action, status, message))

    async def start_sync(
        self,
        action: str,
        profile: Profile,
        tab_id: str = "",
        cancel: asyncio.Event | None = None,
    ) -> SyncResult:
        """Register a task and spawn its worker; returns immediately.

        ``cancel`` is the caller's cancel handle. Setting it cancels the task
        as well, so a stopped board run takes its in-flight syncs with it.
        """
        if cancel is not None and cancel.is_set():
            raise OperationCancelledError("sync not started: caller was cancelled")

        loop = asyncio.get_running_loop()
        async with self._lock:
            self._task_counter += 1
            task = SyncTask(
                id=self._task_counter,
                action=action,
                profile=profile.model_copy(deep=True),
                tab_id=tab_id,
                cancel_event=asyncio.Event(),
                parent_cancel=cancel,
                completion=loop.create_future(),
                start_time=now_utc(),
            )
            self._active_tasks[task.id] = task

        self._emit(EventType.SYNC_STARTED, task, "starting", "Sync operation started")
        task.worker = asyncio.create_task(self._execute(task), name=f"sync-task-{task.id}")
        logger.info("Started sync task %d (%s, profile=%r)", task.id, action, profile.name)
        return SyncResult(
            task_id=task.id,
            action=action,
            status="started",
            message="Sync operation initiated",
            start_time=task.start_time,
        )

    async def stop_sync(self, task_id: int) -> None:
        """Cancel a task. Stopping an already-finished task is a no-op."""
        async with self._lock:
            if task_id < 1 or task_id > self._task_counter:
                raise NotFoundError(f"task {task_id} not found")
            task = self._active_tasks.pop(task_id, None)
            if task is None:
                return
            task.cancel_event.set()
            task.status = TaskStatus.CANCELLED
            task.cancel_reported = True
            self._finished[task_id] = task.completion
        self._emit(EventType.SYNC_CANCELLED, task, "cancelled", "Sync operation cancelled")
        logger.info("Stopped sync task %d", task_id)

    async def get_active_tasks(self) -> list[SyncTaskInfo]:
        async with self._lock:
            return [task.info() for task in self._active_tasks.values()]

    def tab_for_task(self, task_id: int) -> str:
        return self._task_tabs.get(task_id, "")

    async def wait_for_task(
        self, task_id: int, cancel: asyncio.Event | None = None
    ) -> AppError | None:
        """Wait for a task to finish and return its final error, or None.

        Returns early with ``OperationCancelledError`` when ``cancel`` fires first.
        """
        async with self._lock:
            task = self._active_tasks.get(task_id)
            future = task.completion if task is not None else self._finished.get(task_id)
        if future is None:
            raise NotFoundError(f"task {task_id} not found")

        if cancel is None:
            return await asyncio.shield(future)

        cancel_wait = asyncio.create_task(cancel.wait())
        shielded = asyncio.shield(future)
        try:
            done, _ = await asyncio.wait(
                {shielded, cancel_wait}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancel_wait.cancel()
        if shielded in done:
            return shielded.result()
        shielded.cancel()
        return OperationCancelledError(f"wait for task {task_id} cancelled")

    async def shutdown(self) -> None:
        """Cancel every active task and wait for the workers to settle."""
        async with self._lock:
            tasks = list(self._active_tasks.values())
            for task in tasks:
                task.cancel_event.set()
        workers = [task.worker for task in tasks if task.worker is not None]
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        logger.info("Sync supervisor stopped (%d tasks cancelled)", len(tasks))

    async def _dispatch(self, task: SyncTask, log_sink: LogSink) -> None:
        if task.action == EdgeAction.PULL:
            await self._engine.sync(SyncDirection.PULL, task.profile, log_sink)
        elif task.action == EdgeAction.PUSH:
            await self._engine.sync(SyncDirection.PUSH, task.profile, log_sink)
        elif task.action == EdgeAction.BI:
            await self._engine.bisync(task.profile, False, log_sink)
        elif task.action == EdgeAction.BI_RESYNC:
            await self._engine.bisync(task.profile, True, log_sink)
        else:
            raise ValidationError(f"unknown sync action: {task.action}")

    async def _run_cancellable(self, task: SyncTask, log_sink: LogSink) -> None:
        """Run the engine call until it finishes or the task is cancelled."""
        engine_call = asyncio.create_task(self._dispatch(task, log_sink))
        watchers = [asyncio.create_task(task.cancel_event.wait())]
        if task.parent_cancel is not None:
            watchers.append(asyncio.create_task(task.parent_cancel.wait()))
        try:
            await asyncio.wait({engine_call, *watchers}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for watcher in watchers:
                watcher.cancel()
        if not engine_call.done():
            engine_call.cancel()
            try:
                await engine_call
            except asyncio.CancelledError:
                pass
            return
        engine_call.result()

    async def _read_progress(self, task: SyncTask, log_sink: LogSink) -> None:
        while True:
            line = await log_sink.get()
            if line is None:
                return
            tab_id = self.tab_for_task(task.id)
            self._log_service.log_sync(tab_id, task.action, "running", line)

    async def _execute(self, task: SyncTask) -> None:
        error: AppError | None = None
        interrupted: asyncio.CancelledError | None = None
        reader: asyncio.Task[None] | None = None
        log_sink: LogSink = asyncio.Queue(maxsize=self._log_queue_size)
        try:
            try:
                await self._engine.init_config()
            except AppError as exc:
                raise wrap_error(
                    exc, ErrorCode.TRANSFER_ENGINE_ERROR, "failed to initialise transfer engine"
                ) from exc

            if task.tab_id:
                self._task_tabs[task.id] = task.tab_id
            reader = asyncio.create_task(self._read_progress(task, log_sink))

            if not task.is_cancelled():
                task.status = TaskStatus.RUNNING
            self._log_service.log_sync(
                task.tab_id, task.action, "running", "Sync operation in progress"
            )

            try:
                await self._run_cancellable(task, log_sink)
            except AppError as exc:
                if exc.code in (ErrorCode.VALIDATION_ERROR, ErrorCode.TRANSFER_ENGINE_ERROR):
                    raise
                raise wrap_error(exc, ErrorCode.TRANSFER_ENGINE_ERROR, "sync failed") from exc
            except (OSError, RuntimeError) as exc:
                raise wrap_error(exc, ErrorCode.TRANSFER_ENGINE_ERROR, "sync failed") from exc
        except AppError as exc:
            error = exc
        except asyncio.CancelledError as exc:
            task.cancel_event.set()
            interrupted = exc
        except Exception as exc:
            error = InternalError("sync task crashed", details=str(exc), cause=exc)
            logger.exception("[%s] Sync task %d crashed", error.trace_id, task.id)
        finally:
            if reader is not None:
                await log_sink.put(None)
                try:
                    await reader
                except Exception:
                    logger.exception("Progress reader for sync task %d failed", task.id)
            self._task_tabs.pop(task.id, None)

        task.end_time = now_utc()
        if task.is_cancelled():
            task.status = TaskStatus.CANCELLED
            if not task.cancel_reported:
                task.cancel_reported = True
                self._emit(
                    EventType.SYNC_CANCELLED, task, "cancelled", "Sync operation was cancelled"
                )
            error = OperationCancelledError(f"sync task {task.id} was cancelled")
        elif error is not None:
            task.status = TaskStatus.FAILED
            logger.warning("[%s] Sync task %d failed: %s", error.trace_id, task.id, error)
            self._event_bus.publish(
                error_event(str(error.code), error.message, error.details, task.tab_id)
            )
            self._emit(EventType.SYNC_FAILED, task, "failed", str(error))
        else:
            task.status = TaskStatus.COMPLETED
            self._emit(
                EventType.SYNC_COMPLETED, task, "completed", "Sync operation completed successfully"
            )

        async with self._lock:
            self._active_tasks.pop(task.id, None)
            self._finished[task.id] = task.completion
            while len(self._finished) > _RETAINED_RESULTS:
                self._finished.pop(next(iter(self._finished)))
        await self._record_history(task, error)
        if not task.completion.done():
            task.completion.set_result(error)
        if interrupted is not None:
            raise interrupted

    async def _record_history(self, task: SyncTask, error: AppError | None) -> None:
        if self._history is None:
            return
        end_time = task.end_time or now_utc()
        entry = HistoryEntry(
            id=str(uuid.uuid4()),
            profile_name=task.profile.name,
            action=task.action,
            status=str(task.status),
            start_time=task.start_time,
            end_time=end_time,
            duration=format_duration((end_time - task.start_time).total_seconds()),
            errors=1 if task.status == TaskStatus.FAILED else 0,
            error_message=error.message if task.status == TaskStatus.FAILED and error else "",
        )
        try:
            await self._history.add_entry(entry)
        except Exception:
            logger.exception("Failed to record history for sync task %d", task.id)
