"""Log entry schemas."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class LogLevel(StrEnum):
    INFO = "info"
    ERROR = "error"
    PROGRESS = "progress"


class LogEntry(BaseModel):
    """Sequenced progress line. ``seq_no`` is process-wide and never reused."""

    model_config = ConfigDict(frozen=True)

    seq_no: int
    tab_id: str = ""
    message: str
    timestamp: datetime
    level: LogLevel = LogLevel.INFO


class LogPage(BaseModel):
    entries: list[LogEntry] = Field(default_factory=list)
    current_seq: int = 0
