"""One-off operations (copy, move, check) and read-only remote probes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from syncboard.api.deps import get_operation_service
from syncboard.schemas.profile import Profile
from syncboard.schemas.remote import FileEntry, RemoteSize, RemoteUsage
from syncboard.schemas.sync import SyncTaskInfo
from syncboard.services.operation_service import OperationService

router = APIRouter(prefix="/api/operations", tags=["operations"])


class OperationRequest(BaseModel):
    operation: str
    profile: Profile
    tab_id: str = ""
    dry_run: bool = False


class OperationStarted(BaseModel):
    task_id: int


class PathRequest(BaseModel):
    path: str


@router.post("", response_model=OperationStarted, status_code=202)
async def start_operation_endpoint(
    body: OperationRequest,
    operations: Annotated[OperationService, Depends(get_operation_service)],
) -> OperationStarted:
    if body.dry_run:
        task_id = await operations.dry_run(body.operation, body.profile, body.tab_id)
    else:
        task_id = await operations.start_operation(body.operation, body.profile, body.tab_id)
    return OperationStarted(task_id=task_id)


@router.get("/active", response_model=list[SyncTaskInfo])
async def active_operations(
    operations: Annotated[OperationService, Depends(get_operation_service)],
) -> list[SyncTaskInfo]:
    return await operations.get_active_tasks()


@router.post("/{task_id}/stop", status_code=204)
async def stop_operation_endpoint(
    task_id: int,
    operations: Annotated[OperationService, Depends(get_operation_service)],
) -> None:
    await operations.stop_operation(task_id)


@router.get("/files", response_model=list[FileEntry])
async def list_files_endpoint(
    operations: Annotated[OperationService, Depends(get_operation_service)],
    path: Annotated[str, Query(min_length=1)],
    recursive: bool = False,
) -> list[FileEntry]:
    return await operations.list_files(path, recursive)


@router.post("/files/delete", status_code=204)
async def delete_file_endpoint(
    body: PathRequest,
    operations: Annotated[OperationService, Depends(get_operation_service)],
) -> None:
    await operations.delete_file(body.path)


@router.post("/purge", status_code=204)
async def purge_endpoint(
    body: PathRequest,
    operations: Annotated[OperationService, Depends(get_operation_service)],
) -> None:
    await operations.purge(body.path)


@router.post("/mkdir", status_code=204)
async def mkdir_endpoint(
    body: PathRequest,
    operations: Annotated[OperationService, Depends(get_operation_service)],
) -> None:
    await operations.mkdir(body.path)


@router.get("/about/{remote_name}", response_model=RemoteUsage)
async def about_endpoint(
    remote_name: str,
    operations: Annotated[OperationService, Depends(get_operation_service)],
) -> RemoteUsage:
    return await operations.about(remote_name)


@router.get("/size", response_model=RemoteSize)
async def size_endpoint(
    operations: Annotated[OperationService, Depends(get_operation_service)],
    path: Annotated[str, Query(min_length=1)],
) -> RemoteSize:
    return await operations.get_size(path)
