"""History API endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from syncboard.api.deps import get_history_service
from syncboard.schemas.history import AggregateStats, HistoryEntry
from syncboard.services.history_service import HistoryService

router = APIRouter(prefix="/api/history", tags=["history"])


@router.get("", response_model=list[HistoryEntry])
async def list_history(
    history: Annotated[HistoryService, Depends(get_history_service)],
    limit: Annotated[int, Query(ge=1, le=10_000)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
    profile: str | None = None,
) -> list[HistoryEntry]:
    """Newest first. ``profile`` narrows to one profile's runs."""
    if profile:
        return await history.get_history_for_profile(profile)
    return await history.get_history(limit, offset)


@router.get("/stats", response_model=AggregateStats)
async def history_stats(
    history: Annotated[HistoryService, Depends(get_history_service)],
) -> AggregateStats:
    return await history.get_stats()


@router.delete("", status_code=204)
async def clear_history_endpoint(
    history: Annotated[HistoryService, Depends(get_history_service)],
) -> None:
    await history.clear_history()
