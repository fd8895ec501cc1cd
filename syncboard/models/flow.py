"""Flow tables: flows own an ordered list of operations."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from syncboard.models.base import Base, IntBool, IsoDateTime


class FlowRow(Base):
    """Sequential list of sync operations."""

    __tablename__ = "flows"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default=text("''"))
    is_collapsed: Mapped[bool] = mapped_column(
        IntBool, nullable=False, default=False, server_default=text("0")
    )
    schedule_enabled: Mapped[bool] = mapped_column(
        IntBool, nullable=False, default=False, server_default=text("0")
    )
    cron_expr: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=text("''")
    )
    sort_order: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    created_at: Mapped[datetime] = mapped_column(
        IsoDateTime, nullable=False, server_default=text("(datetime('now'))")
    )
    updated_at: Mapped[datetime] = mapped_column(
        IsoDateTime, nullable=False, server_default=text("(datetime('now'))")
    )

    operations: Mapped[list[OperationRow]] = relationship(
        back_populates="flow",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="OperationRow.sort_order",
    )

    __table_args__ = (Index("idx_flows_sort_order", "sort_order"),)


class OperationRow(Base):
    """One step of a flow; its transfer options live in ``sync_config`` JSON."""

    __tablename__ = "operations"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    flow_id: Mapped[str] = mapped_column(
        Text, ForeignKey("flows.id", ondelete="CASCADE"), nullable=False
    )
    source_remote: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=text("''")
    )
    source_path: Mapped[str] = mapped_column(
        Text, nullable=False, default="/", server_default=text("'/'")
    )
    target_remote: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=text("''")
    )
    target_path: Mapped[str] = mapped_column(
        Text, nullable=False, default="/", server_default=text("'/'")
    )
    action: Mapped[str] = mapped_column(
        Text, nullable=False, default="push", server_default=text("'push'")
    )
    sync_config: Mapped[str] = mapped_column(
        Text, nullable=False, default="{}", server_default=text("'{}'")
    )
    is_expanded: Mapped[bool] = mapped_column(
        IntBool, nullable=False, default=False, server_default=text("0")
    )
    sort_order: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )

    flow: Mapped[FlowRow] = relationship(back_populates="operations")

    __table_args__ = (Index("idx_operations_flow_id", "flow_id"),)
