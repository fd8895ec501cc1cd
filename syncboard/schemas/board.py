"""Board schemas: graph definition and execution status."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from syncboard.schemas.profile import Profile

LOCAL_REMOTE = "local"


class EdgeAction(StrEnum):
    PULL = "pull"
    PUSH = "push"
    BI = "bi"
    BI_RESYNC = "bi-resync"


class EdgeStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ExecutionStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BoardNode(BaseModel):
    """Endpoint on the canvas. ``remote_name`` of "" or "local" is the local filesystem."""

    model_config = ConfigDict(extra="ignore")

    id: str
    remote_name: str = ""
    path: str = ""
    label: str = ""
    x: float = 0.0
    y: float = 0.0


class BoardEdge(BaseModel):
    """Directed sync edge; ``sync_config`` carries the per-edge profile."""

    model_config = ConfigDict(extra="ignore")

    id: str
    source_id: str
    target_id: str
    action: str = EdgeAction.PUSH.value
    sync_config: Profile = Field(default_factory=Profile)


class Board(BaseModel):
    """A DAG of endpoints connected by sync edges."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    description: str = ""
    nodes: list[BoardNode] = Field(default_factory=list)
    edges: list[BoardEdge] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    schedule_enabled: bool = False
    cron_expr: str = ""
    last_run: datetime | None = None
    next_run: datetime | None = None
    last_result: str = ""

    def node_map(self) -> dict[str, BoardNode]:
        return {node.id: node for node in self.nodes}


class EdgeExecutionStatus(BaseModel):
    edge_id: str
    status: EdgeStatus = EdgeStatus.PENDING
    task_id: int | None = None
    message: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None


class BoardExecutionStatus(BaseModel):
    """Live status of one board run, polled by the UI."""

    board_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    edge_statuses: list[EdgeExecutionStatus] = Field(default_factory=list)
    start_time: datetime
    end_time: datetime | None = None
