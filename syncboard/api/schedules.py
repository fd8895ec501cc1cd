"""Schedule API endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from syncboard.api.deps import get_scheduler_service
from syncboard.exceptions import ValidationError
from syncboard.schemas.schedule import ScheduleEntry
from syncboard.services.scheduler_service import SchedulerService

router = APIRouter(prefix="/api/schedules", tags=["schedules"])


@router.get("", response_model=list[ScheduleEntry])
async def list_schedules(
    scheduler: Annotated[SchedulerService, Depends(get_scheduler_service)],
) -> list[ScheduleEntry]:
    return await scheduler.get_schedules()


@router.post("", response_model=ScheduleEntry, status_code=201)
async def create_schedule_endpoint(
    body: ScheduleEntry,
    scheduler: Annotated[SchedulerService, Depends(get_scheduler_service)],
) -> ScheduleEntry:
    return await scheduler.add_schedule(body)


@router.put("/{schedule_id}", response_model=ScheduleEntry)
async def update_schedule_endpoint(
    schedule_id: str,
    body: ScheduleEntry,
    scheduler: Annotated[SchedulerService, Depends(get_scheduler_service)],
) -> ScheduleEntry:
    if body.id != schedule_id:
        raise ValidationError("schedule ID in body does not match the URL")
    return await scheduler.update_schedule(body)


@router.delete("/{schedule_id}", status_code=204)
async def delete_schedule_endpoint(
    schedule_id: str,
    scheduler: Annotated[SchedulerService, Depends(get_scheduler_service)],
) -> None:
    await scheduler.delete_schedule(schedule_id)


@router.post("/{schedule_id}/enable", response_model=ScheduleEntry)
async def enable_schedule_endpoint(
    schedule_id: str,
    scheduler: Annotated[SchedulerService, Depends(get_scheduler_service)],
) -> ScheduleEntry:
    return await scheduler.enable_schedule(schedule_id)


@router.post("/{schedule_id}/disable", response_model=ScheduleEntry)
async def disable_schedule_endpoint(
    schedule_id: str,
    scheduler: Annotated[SchedulerService, Depends(get_scheduler_service)],
) -> ScheduleEntry:
    return await scheduler.disable_schedule(schedule_id)
