"""Tab schemas."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from syncboard.schemas.profile import Profile


class TabState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    ERROR = "error"


class Tab(BaseModel):
    """UI-facing handle that correlates runs with a log stream."""

    id: str
    name: str
    profile: Profile | None = None
    state: TabState = TabState.IDLE
    current_action: str = ""
    task_id: int = 0
    output: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    last_error: str = ""


class TabCreate(BaseModel):
    name: str


class TabUpdate(BaseModel):
    """Free-form update map; unrecognised keys are ignored."""

    updates: dict[str, Any] = Field(default_factory=dict)
