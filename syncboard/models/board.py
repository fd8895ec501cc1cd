"""Board graph tables: boards own their nodes and edges."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Float, ForeignKey, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from syncboard.models.base import Base, IntBool, IsoDateTime


class BoardRow(Base):
    """A sync topology with an optional cron schedule."""

    __tablename__ = "boards"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default=text("''"))
    description: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=text("''")
    )
    created_at: Mapped[datetime] = mapped_column(
        IsoDateTime, nullable=False, server_default=text("(datetime('now'))")
    )
    updated_at: Mapped[datetime] = mapped_column(
        IsoDateTime, nullable=False, server_default=text("(datetime('now'))")
    )
    schedule_enabled: Mapped[bool] = mapped_column(
        IntBool, nullable=False, default=False, server_default=text("0")
    )
    cron_expr: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=text("''")
    )
    last_run: Mapped[datetime | None] = mapped_column(IsoDateTime, nullable=True)
    next_run: Mapped[datetime | None] = mapped_column(IsoDateTime, nullable=True)
    last_result: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=text("''")
    )

    nodes: Mapped[list[BoardNodeRow]] = relationship(
        back_populates="board",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    edges: Mapped[list[BoardEdgeRow]] = relationship(
        back_populates="board",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class BoardNodeRow(Base):
    """Endpoint on a board canvas."""

    __tablename__ = "board_nodes"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    board_id: Mapped[str] = mapped_column(
        Text, ForeignKey("boards.id", ondelete="CASCADE"), primary_key=True
    )
    remote_name: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=text("''")
    )
    path: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default=text("''"))
    label: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default=text("''"))
    x: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default=text("0"))
    y: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default=text("0"))

    board: Mapped[BoardRow] = relationship(back_populates="nodes")


class BoardEdgeRow(Base):
    """Directed sync edge between two nodes of the same board."""

    __tablename__ = "board_edges"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    board_id: Mapped[str] = mapped_column(
        Text, ForeignKey("boards.id", ondelete="CASCADE"), primary_key=True
    )
    source_id: Mapped[str] = mapped_column(Text, nullable=False)
    target_id: Mapped[str] = mapped_column(Text, nullable=False)
    action: Mapped[str] = mapped_column(
        Text, nullable=False, default="push", server_default=text("'push'")
    )
    sync_config: Mapped[str] = mapped_column(
        Text, nullable=False, default="{}", server_default=text("'{}'")
    )

    board: Mapped[BoardRow] = relationship(back_populates="edges")