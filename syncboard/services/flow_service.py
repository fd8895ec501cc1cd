"""Flow service: ordered, sequential lists of sync operations."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import pydantic
from sqlalchemy import delete, select, update
from sqlalchemy.orm import selectinload

from syncboard.exceptions import ErrorCode, ValidationError, wrap_error
from syncboard.models.flow import FlowRow, OperationRow
from syncboard.schemas.flow import Flow, Operation
from syncboard.schemas.profile import Profile
from syncboard.services.datetime_service import now_utc
from syncboard.services.validation import validate_cron

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


def _operation_from_row(row: OperationRow) -> Operation:
    try:
        config = Profile.model_validate_json(row.sync_config or "{}")
    except pydantic.ValidationError as exc:
        logger.warning("Ignoring malformed sync_config on operation %s: %s", row.id, exc)
        config = Profile()
    return Operation(
        id=row.id,
        flow_id=row.flow_id,
        source_remote=row.source_remote,
        source_path=row.source_path,
        target_remote=row.target_remote,
        target_path=row.target_path,
        action=row.action,
        sync_config=config,
        is_expanded=row.is_expanded,
        sort_order=row.sort_order,
    )


async def get_flows(session: AsyncSession) -> list[Flow]:
    """Return flows and their operations, both ordered by ``sort_order``."""
    stmt = select(FlowRow).options(selectinload(FlowRow.operations)).order_by(FlowRow.sort_order)
    rows = (await session.execute(stmt)).scalars().all()
    return [
        Flow(
            id=row.id,
            name=row.name,
            is_collapsed=row.is_collapsed,
            schedule_enabled=row.schedule_enabled,
            cron_expr=row.cron_expr,
            sort_order=row.sort_order,
            operations=[_operation_from_row(op) for op in row.operations],
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
        for row in rows
    ]


async def replace_flows(session: AsyncSession, flows: list[Flow]) -> None:
    """Delete every flow and operation, then insert ``flows`` in list order.

    Positions in the list become ``sort_order`` for flows and operations.
    The caller owns the transaction.
    """
    await session.execute(delete(OperationRow))
    await session.execute(delete(FlowRow))
    await session.flush()

    now = now_utc()
    for i, flow in enumerate(flows):
        session.add(
            FlowRow(
                id=flow.id,
                name=flow.name,
                is_collapsed=flow.is_collapsed,
                schedule_enabled=flow.schedule_enabled,
                cron_expr=flow.cron_expr,
                sort_order=i,
                created_at=flow.created_at or now,
                updated_at=now,
            )
        )
        for j, op in enumerate(flow.operations):
            session.add(
                OperationRow(
                    id=op.id,
                    flow_id=flow.id,
                    source_remote=op.source_remote,
                    source_path=op.source_path,
                    target_remote=op.target_remote,
                    target_path=op.target_path,
                    action=op.action,
                    sync_config=op.sync_config.to_json(),
                    is_expanded=op.is_expanded,
                    sort_order=j,
                )
            )
    await session.flush()


async def clear_remote_references(session: AsyncSession, remote_name: str) -> tuple[int, int]:
    """Blank out source/target remotes equal to ``remote_name``; returns both row counts."""
    sources = await session.execute(
        update(OperationRow)
        .where(OperationRow.source_remote == remote_name)
        .values(source_remote="")
    )
    targets = await session.execute(
        update(OperationRow)
        .where(OperationRow.target_remote == remote_name)
        .values(target_remote="")
    )
    return sources.rowcount or 0, targets.rowcount or 0


class FlowService:
    """Serializes flow reads and bulk replaces behind one lock."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._lock = asyncio.Lock()

    async def get_flows(self) -> list[Flow]:
        async with self._lock, self._session_factory() as session:
            return await get_flows(session)

    async def save_flows(self, flows: list[Flow]) -> None:
        ids = [flow.id for flow in flows]
        if len(set(ids)) != len(ids):
            raise ValidationError("duplicate flow ID in request")
        for flow in flows:
            if flow.schedule_enabled and flow.cron_expr:
                validate_cron(flow.cron_expr)

        async with self._lock, self._session_factory() as session:
            try:
                await replace_flows(session, flows)
                await session.commit()
            except Exception as exc:
                await session.rollback()
                raise wrap_error(exc, ErrorCode.DATABASE_ERROR, "failed to save flows") from exc
        logger.info("Saved %d flows", len(flows))

    async def on_remote_deleted(self, remote_name: str) -> None:
        async with self._lock, self._session_factory() as session:
            sources, targets = await clear_remote_references(session, remote_name)
            await session.commit()
        logger.info(
            "Cleared remote %r from %d source and %d target operation(s)",
            remote_name,
            sources,
            targets,
        )
