"""Durable store initialisation: schema, in-place migrations and legacy import.

``init_store`` is idempotent and runs once at startup:

1. rewrite a legacy ``operations`` table with flat option columns into the
   single ``sync_config`` JSON column;
2. create missing tables and indexes;
3. add profile columns introduced after the first release;
4. import the legacy JSON files (and the old ``flows.db``) into empty tables.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import pydantic
from sqlalchemy import func, select, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine

from syncboard.models.base import Base
from syncboard.models.board import BoardRow
from syncboard.models.flow import FlowRow, OperationRow
from syncboard.models.profile import PROFILE_ADDED_COLUMNS, ProfileRow, SettingRow
from syncboard.models.schedule import HistoryRow, ScheduleRow
from syncboard.schemas.board import Board
from syncboard.schemas.history import HistoryEntry
from syncboard.schemas.profile import Profile, parse_leading_int
from syncboard.schemas.schedule import ScheduleEntry
from syncboard.schemas.settings import AppSettings
from syncboard.services import history_service, scheduler_service
from syncboard.services.board_service import save_board
from syncboard.services.datetime_service import now_utc, parse_optional_datetime
from syncboard.services.notification_service import store_settings
from syncboard.services.profile_service import decode_patterns, profile_to_row

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

    from sqlalchemy.ext.asyncio import (
        AsyncConnection,
        AsyncEngine,
        AsyncSession,
        async_sessionmaker,
    )

logger = logging.getLogger(__name__)

FLOWS_BOARD_NAME = "__flows__"
LEGACY_FLOWS_DB = "flows.db"

_LEGACY_OPERATION_COLUMNS = (
    "id, flow_id, source_remote, source_path, target_remote, target_path, action, "
    "parallel, bandwidth, included_paths, excluded_paths, conflict_resolution, dry_run, "
    "is_expanded, sort_order"
)

_OPERATIONS_NEW_DDL = """
CREATE TABLE operations_new (
    id            TEXT PRIMARY KEY,
    flow_id       TEXT NOT NULL,
    source_remote TEXT NOT NULL DEFAULT '',
    source_path   TEXT NOT NULL DEFAULT '/',
    target_remote TEXT NOT NULL DEFAULT '',
    target_path   TEXT NOT NULL DEFAULT '/',
    action        TEXT NOT NULL DEFAULT 'push',
    sync_config   TEXT NOT NULL DEFAULT '{}',
    is_expanded   INTEGER NOT NULL DEFAULT 0,
    sort_order    INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY (flow_id) REFERENCES flows(id) ON DELETE CASCADE
)
"""


def legacy_operation_config(row: Any) -> str:
    """Fold the flat option columns of a legacy operation row into Profile JSON."""
    profile = Profile(
        parallel=row.parallel or 0,
        bandwidth=parse_leading_int(row.bandwidth),
        included_paths=decode_patterns(row.included_paths),
        excluded_paths=decode_patterns(row.excluded_paths),
        conflict_resolution=row.conflict_resolution or "",
        dry_run=bool(row.dry_run),
    )
    return profile.to_json()


async def _table_columns(conn: AsyncConnection, table: str) -> set[str]:
    result = await conn.execute(text(f"PRAGMA table_info({table})"))
    return {str(row[1]) for row in result}


async def migrate_operations_to_sync_config(engine: AsyncEngine) -> int:
    """Rewrite a flat-column ``operations`` table; returns the number of rows moved."""
    async with engine.begin() as conn:
        if "parallel" not in await _table_columns(conn, "operations"):
            return 0

        logger.info("Migrating operations table from flat columns to sync_config JSON")
        rows = (
            await conn.execute(text(f"SELECT {_LEGACY_OPERATION_COLUMNS} FROM operations"))
        ).all()
        await conn.execute(text(_OPERATIONS_NEW_DDL))
        for row in rows:
            await conn.execute(
                text(
                    "INSERT INTO operations_new (id, flow_id, source_remote, source_path, "
                    "target_remote, target_path, action, sync_config, is_expanded, sort_order) "
                    "VALUES (:id, :flow_id, :source_remote, :source_path, :target_remote, "
                    ":target_path, :action, :sync_config, :is_expanded, :sort_order)"
                ),
                {
                    "id": row.id,
                    "flow_id": row.flow_id,
                    "source_remote": row.source_remote,
                    "source_path": row.source_path,
                    "target_remote": row.target_remote,
                    "target_path": row.target_path,
                    "action": row.action,
                    "sync_config": legacy_operation_config(row),
                    "is_expanded": row.is_expanded,
                    "sort_order": row.sort_order,
                },
            )
        await conn.execute(text("DROP TABLE operations"))
        await conn.execute(text("ALTER TABLE operations_new RENAME TO operations"))
        await conn.execute(
            text("CREATE INDEX IF NOT EXISTS idx_operations_flow_id ON operations(flow_id)")
        )
    logger.info("Migrated %d operations to sync_config JSON format", len(rows))
    return len(rows)


async def add_profile_columns(engine: AsyncEngine) -> list[str]:
    """Add profile columns missing from an older table; returns the names added."""
    added: list[str] = []
    for name, type_def in PROFILE_ADDED_COLUMNS:
        try:
            async with engine.begin() as conn:
                await conn.execute(text(f"ALTER TABLE profiles ADD COLUMN {name} {type_def}"))
        except OperationalError as exc:
            if "duplicate column" not in str(exc).lower():
                raise
            continue
        added.append(name)
    if added:
        logger.info("Added profile columns: %s", ", ".join(added))
    return added


async def _is_empty(session: AsyncSession, model: type[Base]) -> bool:
    count = (await session.execute(select(func.count()).select_from(model))).scalar_one()
    return count == 0


def _read_json(path: Path) -> Any:
    """Load a legacy JSON file; returns None when it is missing or malformed."""
    if not path.is_file():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Failed to parse %s for migration: %s", path.name, exc)
        return None


async def _import_settings(session: AsyncSession, data: Any) -> int:
    if not isinstance(data, dict):
        return 0
    known = {key: bool(value) for key, value in data.items() if key in AppSettings.model_fields}
    await store_settings(session, AppSettings(**known))
    return 1


async def _import_profiles(session: AsyncSession, data: Any) -> int:
    profiles: dict[str, Profile] = {}
    for item in data or []:
        profile = Profile.model_validate(item)
        if profile.name in profiles:
            logger.warning("Skipping duplicate legacy profile %r", profile.name)
            continue
        profiles[profile.name] = profile
    session.add_all(profile_to_row(profile) for profile in profiles.values())
    return len(profiles)


async def _import_schedules(session: AsyncSession, data: Any) -> int:
    entries = [ScheduleEntry.model_validate(item) for item in data or []]
    session.add_all(scheduler_service.entry_to_row(entry) for entry in entries)
    return len(entries)


async def _import_history(session: AsyncSession, data: Any) -> int:
    entries = [HistoryEntry.model_validate(item) for item in data or []]
    session.add_all(history_service.entry_to_row(entry) for entry in entries)
    return len(entries)


async def _import_boards(session: AsyncSession, data: Any) -> int:
    count = 0
    for item in data or []:
        board = Board.model_validate(item)
        if board.name == FLOWS_BOARD_NAME:
            continue
        now = now_utc()
        board.created_at = board.created_at or now
        board.updated_at = board.updated_at or now
        await save_board(session, board)
        count += 1
    return count


_JSON_IMPORTS: tuple[
    tuple[str, type[Base], Callable[[AsyncSession, Any], Awaitable[int]]], ...
] = (
    ("settings.json", SettingRow, _import_settings),
    ("profiles.json", ProfileRow, _import_profiles),
    ("schedules.json", ScheduleRow, _import_schedules),
    ("history.json", HistoryRow, _import_history),
    ("boards.json", BoardRow, _import_boards),
)


async def import_legacy_json(
    session_factory: async_sessionmaker[AsyncSession], data_dir: Path
) -> dict[str, int]:
    """Import each legacy JSON file into its table when that table is empty."""
    imported: dict[str, int] = {}
    for filename, model, importer in _JSON_IMPORTS:
        async with session_factory() as session:
            if not await _is_empty(session, model):
                continue
            data = _read_json(data_dir / filename)
            if data is None:
                continue
            try:
                count = await importer(session, data)
                await session.commit()
            except (pydantic.ValidationError, SQLAlchemyError, TypeError, ValueError) as exc:
                await session.rollback()
                logger.warning("Failed to migrate %s: %s", filename, exc)
                continue
        if count:
            imported[filename] = count
            logger.info("Migrated %d records from %s", count, filename)
    return imported


async def _read_legacy_flows(path: Path) -> tuple[list[Any], list[Any]]:
    legacy = create_async_engine(f"sqlite+aiosqlite:///{path}")
    try:
        async with legacy.connect() as conn:
            flows = (
                await conn.execute(
                    text(
                        "SELECT id, name, is_collapsed, schedule_enabled, cron_expr, sort_order, "
                        "created_at, updated_at FROM flows ORDER BY sort_order"
                    )
                )
            ).all()
            operations = (
                await conn.execute(
                    text(
                        f"SELECT {_LEGACY_OPERATION_COLUMNS} FROM operations ORDER BY sort_order"
                    )
                )
            ).all()
    finally:
        await legacy.dispose()
    return flows, operations


async def _add_legacy_flows(
    session: AsyncSession, flows: list[Any], operations: list[Any]
) -> None:
    now = now_utc()
    for row in flows:
        session.add(
            FlowRow(
                id=row.id,
                name=row.name or "",
                is_collapsed=bool(row.is_collapsed),
                schedule_enabled=bool(row.schedule_enabled),
                cron_expr=row.cron_expr or "",
                sort_order=row.sort_order or 0,
                created_at=parse_optional_datetime(row.created_at) or now,
                updated_at=parse_optional_datetime(row.updated_at) or now,
            )
        )
    await session.flush()
    flow_ids = {row.id for row in flows}
    for row in operations:
        if row.flow_id not in flow_ids:
            logger.warning("Skipping legacy operation %s of missing flow %s", row.id, row.flow_id)
            continue
        session.add(
            OperationRow(
                id=row.id,
                flow_id=row.flow_id,
                source_remote=row.source_remote or "",
                source_path=row.source_path or "/",
                target_remote=row.target_remote or "",
                target_path=row.target_path or "/",
                action=row.action or "push",
                sync_config=legacy_operation_config(row),
                is_expanded=bool(row.is_expanded),
                sort_order=row.sort_order or 0,
            )
        )


async def import_legacy_flows(
    session_factory: async_sessionmaker[AsyncSession], data_dir: Path
) -> int:
    """Move flows from the old standalone ``flows.db`` and delete that file."""
    path = data_dir / LEGACY_FLOWS_DB
    if not path.is_file():
        return 0
    async with session_factory() as session:
        if not await _is_empty(session, FlowRow):
            return 0
        try:
            flows, operations = await _read_legacy_flows(path)
        except OperationalError as exc:
            logger.warning("Failed to read flows from %s: %s", path, exc)
            return 0

        try:
            await _add_legacy_flows(session, flows, operations)
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning("Failed to migrate flows from %s: %s", path, exc)
            return 0

    logger.info("Migrated %d flows from %s", len(flows), LEGACY_FLOWS_DB)
    for suffix in ("", "-wal", "-shm"):
        path.with_name(LEGACY_FLOWS_DB + suffix).unlink(missing_ok=True)
    return len(flows)


async def init_store(
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    data_dir: Path | None = None,
) -> None:
    await migrate_operations_to_sync_config(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await add_profile_columns(engine)
    if data_dir is not None:
        await import_legacy_json(session_factory, data_dir)
        await import_legacy_flows(session_factory, data_dir)
