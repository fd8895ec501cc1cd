"""Schedule and run-history tables."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Index, Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from syncboard.models.base import Base, IntBool, IsoDateTime


class ScheduleRow(Base):
    """Cron entry that fires a profile sync."""

    __tablename__ = "schedules"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    profile_name: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=text("''")
    )
    action: Mapped[str] = mapped_column(
        Text, nullable=False, default="push", server_default=text("'push'")
    )
    cron_expr: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=text("''")
    )
    enabled: Mapped[bool] = mapped_column(
        IntBool, nullable=False, default=True, server_default=text("1")
    )
    last_run: Mapped[datetime | None] = mapped_column(IsoDateTime, nullable=True)
    next_run: Mapped[datetime | None] = mapped_column(IsoDateTime, nullable=True)
    last_result: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=text("''")
    )
    created_at: Mapped[datetime] = mapped_column(
        IsoDateTime, nullable=False, server_default=text("(datetime('now'))")
    )


class HistoryRow(Base):
    """Record of a finished sync run."""

    __tablename__ = "history"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    profile_name: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=text("''")
    )
    action: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default=text("''"))
    status: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default=text("''"))
    start_time: Mapped[datetime | None] = mapped_column(
        IsoDateTime, nullable=False, server_default=text("''")
    )
    end_time: Mapped[datetime | None] = mapped_column(
        IsoDateTime, nullable=False, server_default=text("''")
    )
    duration: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=text("''")
    )
    files_transferred: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    bytes_transferred: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    errors: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    error_message: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=text("''")
    )


Index("idx_history_start_time", HistoryRow.start_time.desc())
