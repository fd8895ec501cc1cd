"""Schedule schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ScheduleEntry(BaseModel):
    """Cron entry that runs a profile sync."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    profile_name: str = ""
    action: str = "push"
    cron_expr: str = ""
    enabled: bool = True
    last_run: datetime | None = None
    next_run: datetime | None = None
    last_result: str = ""
    created_at: datetime | None = None
