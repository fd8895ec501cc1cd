"""Flow schemas: ordered, sequential variants of a board."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from syncboard.schemas.profile import Profile


class Operation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    flow_id: str = ""
    source_remote: str = ""
    source_path: str = "/"
    target_remote: str = ""
    target_path: str = "/"
    action: str = "push"
    sync_config: Profile = Field(default_factory=Profile)
    is_expanded: bool = False
    sort_order: int = 0


class Flow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    is_collapsed: bool = False
    schedule_enabled: bool = False
    cron_expr: str = ""
    sort_order: int = 0
    operations: list[Operation] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
