"""One-off copy/move/check operations and read-only remote probes."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from syncboard.exceptions import (
    AppError,
    ErrorCode,
    InternalError,
    NotFoundError,
    ValidationError,
    wrap_error,
)
from syncboard.schemas.sync import SyncTaskInfo
from syncboard.services.datetime_service import now_utc
from syncboard.services.event_bus import EventType, error_event, operation_event

if TYPE_CHECKING:
    from datetime import datetime

    from syncboard.schemas.profile import Profile
    from syncboard.schemas.remote import FileEntry, RemoteSize, RemoteUsage
    from syncboard.services.event_bus import EventBus
    from syncboard.services.transfer_engine import LogSink, TransferEngine

logger = logging.getLogger(__name__)

OPERATIONS = ("copy", "move", "check")
DRY_RUN_PREFIX = "dryrun:"


@dataclass
class OperationTask:
    id: int
    operation: str
    profile: Profile
    tab_id: str
    start_time: datetime
    status: str = "starting"
    worker: asyncio.Task[None] | None = field(default=None, repr=False)

    def info(self) -> SyncTaskInfo:
        return SyncTaskInfo(
            id=self.id,
            action=self.operation,
            profile_name=self.profile.name,
            tab_id=self.tab_id,
            status=self.status,
            start_time=self.start_time,
        )


class OperationService:
    """Runs one-off engine operations with ``operation:*`` progress events."""

    def __init__(
        self, engine: TransferEngine, event_bus: EventBus, log_queue_size: int = 100
    ) -> None:
        self._engine = engine
        self._event_bus = event_bus
        self._log_queue_size = log_queue_size
        self._lock = asyncio.Lock()
        self._active: dict[int, OperationTask] = {}
        self._counter = 0

    def _emit(self, event_type: EventType, task: OperationTask, status: str, message: str) -> None:
        self._event_bus.publish(
            operation_event(event_type, task.tab_id, task.operation, status, message)
        )

    async def copy(self, profile: Profile, tab_id: str = "") -> int:
        return await self.start_operation("copy", profile, tab_id)

    async def move(self, profile: Profile, tab_id: str = "") -> int:
        return await self.start_operation("move", profile, tab_id)

    async def check(self, profile: Profile, tab_id: str = "") -> int:
        return await self.start_operation("check", profile, tab_id)

    async def dry_run(self, operation: str, profile: Profile, tab_id: str = "") -> int:
        return await self.start_operation(DRY_RUN_PREFIX + operation, profile, tab_id)

    async def start_operation(self, operation: str, profile: Profile, tab_id: str = "") -> int:
        if operation.removeprefix(DRY_RUN_PREFIX) not in OPERATIONS:
            raise ValidationError(f"unknown operation: {operation}")
        async with self._lock:
            self._counter += 1
            task = OperationTask(
                id=self._counter,
                operation=operation,
                profile=profile.model_copy(deep=True),
                tab_id=tab_id,
                start_time=now_utc(),
            )
            self._active[task.id] = task
        self._emit(
            EventType.OPERATION_STARTED, task, "starting", f"Starting {operation} operation"
        )
        task.worker = asyncio.create_task(self._execute(task), name=f"operation-{task.id}")
        return task.id

    async def stop_operation(self, task_id: int) -> None:
        async with self._lock:
            task = self._active.pop(task_id, None)
        if task is None:
            raise NotFoundError(f"task {task_id} not found")
        task.status = "cancelled"
        if task.worker is not None:
            task.worker.cancel()
        self._emit(EventType.OPERATION_FAILED, task, "cancelled", "Operation cancelled")

    async def get_active_tasks(self) -> list[SyncTaskInfo]:
        async with self._lock:
            return [task.info() for task in self._active.values()]

    async def shutdown(self) -> None:
        async with self._lock:
            tasks = list(self._active.values())
        for task in tasks:
            if task.worker is not None:
                task.worker.cancel()
        workers = [task.worker for task in tasks if task.worker is not None]
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)

    async def _forward_progress(self, task: OperationTask, log_sink: LogSink) -> None:
        while True:
            line = await log_sink.get()
            if line is None:
                return
            self._emit(EventType.OPERATION_PROGRESS, task, "running", line)

    async def _dispatch(self, task: OperationTask, log_sink: LogSink) -> None:
        operation = task.operation
        if operation.startswith(DRY_RUN_PREFIX):
            operation = operation.removeprefix(DRY_RUN_PREFIX)
            task.profile.dry_run = True
        if operation == "copy":
            await self._engine.copy(task.profile, log_sink)
        elif operation == "move":
            await self._engine.move(task.profile, log_sink)
        elif operation == "check":
            await self._engine.check(task.profile, log_sink)
        else:
            raise ValidationError(f"unknown operation: {operation}")

    async def _execute(self, task: OperationTask) -> None:
        log_sink: LogSink = asyncio.Queue(maxsize=self._log_queue_size)
        reader = asyncio.create_task(self._forward_progress(task, log_sink))
        error: AppError | None = None
        interrupted: asyncio.CancelledError | None = None
        try:
            await self._engine.init_config()
            task.status = "running"
            self._emit(EventType.OPERATION_PROGRESS, task, "running", "Operation in progress")
            await self._dispatch(task, log_sink)
        except asyncio.CancelledError as exc:
            interrupted = exc
        except AppError as exc:
            error = wrap_error(exc, ErrorCode.TRANSFER_ENGINE_ERROR, "operation failed")
        except Exception as exc:
            error = InternalError("operation crashed", details=str(exc), cause=exc)
            logger.exception("[%s] Operation task %d crashed", error.trace_id, task.id)
        finally:
            await log_sink.put(None)
            await reader
            async with self._lock:
                self._active.pop(task.id, None)

        if interrupted is not None:
            # stop_operation already reported the cancellation
            raise interrupted
        if error is not None:
            task.status = "failed"
            self._event_bus.publish(
                error_event(str(error.code), error.message, error.details, task.tab_id)
            )
            self._emit(EventType.OPERATION_FAILED, task, "failed", f"Operation failed: {error}")
            return
        task.status = "completed"
        self._emit(
            EventType.OPERATION_COMPLETED, task, "completed", "Operation completed successfully"
        )

    # -- probes ------------------------------------------------------------------

    async def _probe_ready(self) -> None:
        try:
            await self._engine.init_config()
        except AppError as exc:
            raise wrap_error(
                exc, ErrorCode.TRANSFER_ENGINE_ERROR, "failed to initialize transfer engine"
            ) from exc

    async def list_files(self, remote_path: str, recursive: bool = False) -> list[FileEntry]:
        await self._probe_ready()
        return await self._engine.list_files(remote_path, recursive)

    async def delete_file(self, remote_path: str) -> None:
        await self._probe_ready()
        await self._engine.delete_file(remote_path)

    async def purge(self, remote_path: str) -> None:
        await self._probe_ready()
        await self._engine.purge(remote_path)

    async def mkdir(self, remote_path: str) -> None:
        await self._probe_ready()
        await self._engine.mkdir(remote_path)

    async def about(self, remote_name: str) -> RemoteUsage:
        await self._probe_ready()
        return await self._engine.about(remote_name)

    async def get_size(self, remote_path: str) -> RemoteSize:
        await self._probe_ready()
        return await self._engine.get_size(remote_path)
