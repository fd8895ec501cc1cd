"""Sync task API: start, stop, list and await transfer-engine runs."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from syncboard.api.deps import get_sync_service
from syncboard.exceptions import OperationCancelledError
from syncboard.schemas.sync import SyncRequest, SyncResult, SyncTaskInfo, TaskWaitResult
from syncboard.services.sync_service import SyncService

router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.post("", response_model=SyncResult, status_code=202)
async def start_sync_endpoint(
    body: SyncRequest,
    sync_service: Annotated[SyncService, Depends(get_sync_service)],
) -> SyncResult:
    return await sync_service.start_sync(body.action, body.profile, body.tab_id)


@router.get("/active", response_model=list[SyncTaskInfo])
async def active_tasks(
    sync_service: Annotated[SyncService, Depends(get_sync_service)],
) -> list[SyncTaskInfo]:
    return await sync_service.get_active_tasks()


@router.post("/{task_id}/stop", status_code=204)
async def stop_sync_endpoint(
    task_id: int,
    sync_service: Annotated[SyncService, Depends(get_sync_service)],
) -> None:
    await sync_service.stop_sync(task_id)


@router.get("/{task_id}/wait", response_model=TaskWaitResult)
async def wait_for_task_endpoint(
    task_id: int,
    sync_service: Annotated[SyncService, Depends(get_sync_service)],
) -> TaskWaitResult:
    """Block until the task finishes and report its final error, if any."""
    error = await sync_service.wait_for_task(task_id)
    if error is None:
        return TaskWaitResult(task_id=task_id, status="completed")
    status = "cancelled" if isinstance(error, OperationCancelledError) else "failed"
    return TaskWaitResult(task_id=task_id, status=status, error=str(error))
