"""History schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class HistoryEntry(BaseModel):
    """One finished run."""

    model_config = ConfigDict(extra="ignore")

    id: str
    profile_name: str = ""
    action: str = ""
    status: str = ""
    start_time: datetime
    end_time: datetime
    duration: str = ""
    files_transferred: int = Field(default=0, ge=0)
    bytes_transferred: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)
    error_message: str = ""


class AggregateStats(BaseModel):
    total_operations: int = 0
    success_count: int = 0
    failure_count: int = 0
    cancelled_count: int = 0
    total_bytes: int = 0
    total_files: int = 0
    average_duration: str = "0s"
