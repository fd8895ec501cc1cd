"""Sync task request and response schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from syncboard.schemas.profile import Profile


class SyncRequest(BaseModel):
    action: str
    profile: Profile
    tab_id: str = ""


class SyncResult(BaseModel):
    """Returned immediately by ``start_sync``; the task keeps running."""

    task_id: int
    action: str
    status: str
    message: str = ""
    start_time: datetime


class SyncTaskInfo(BaseModel):
    """Snapshot of one in-flight task."""

    id: int
    action: str
    profile_name: str
    tab_id: str = ""
    status: str
    start_time: datetime
    end_time: datetime | None = None


class TaskWaitResult(BaseModel):
    task_id: int
    status: str
    error: str | None = None
