"""Log buffer API: poll-since-sequence recovery for missed events."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from syncboard.api.deps import get_log_service
from syncboard.schemas.log import LogPage
from syncboard.services.log_service import LogService

router = APIRouter(prefix="/api/logs", tags=["logs"])


class SequenceResponse(BaseModel):
    current_seq: int
    size: int


@router.get("/since", response_model=LogPage)
async def logs_since(
    logs: Annotated[LogService, Depends(get_log_service)],
    after_seq: Annotated[int, Query(ge=0)] = 0,
    tab_id: str = "",
) -> LogPage:
    current = logs.current_seq()
    return LogPage(entries=logs.get_logs_since(tab_id, after_seq), current_seq=current)


@router.get("/latest", response_model=LogPage)
async def latest_logs(
    logs: Annotated[LogService, Depends(get_log_service)],
    count: Annotated[int, Query(ge=1, le=10_000)] = 100,
    tab_id: str = "",
) -> LogPage:
    current = logs.current_seq()
    return LogPage(entries=logs.get_latest_logs(tab_id, count), current_seq=current)


@router.get("/seq", response_model=SequenceResponse)
async def log_sequence(
    logs: Annotated[LogService, Depends(get_log_service)],
) -> SequenceResponse:
    return SequenceResponse(current_seq=logs.current_seq(), size=logs.buffer_size())


@router.delete("", status_code=204)
async def clear_logs_endpoint(
    logs: Annotated[LogService, Depends(get_log_service)],
    tab_id: str = "",
) -> None:
    """Clear one tab's entries, or everything when ``tab_id`` is empty."""
    logs.clear_logs(tab_id)
