"""Tests for store initialisation, in-place migrations and legacy import."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from syncboard.database import create_engine
from syncboard.models.profile import PROFILE_ADDED_COLUMNS
from syncboard.services.board_service import BoardService
from syncboard.services.flow_service import FlowService
from syncboard.services.history_service import HistoryService
from syncboard.services.notification_service import NotificationService
from syncboard.services.profile_service import ProfileService
from syncboard.services.store import (
    LEGACY_FLOWS_DB,
    add_profile_columns,
    import_legacy_json,
    init_store,
    migrate_operations_to_sync_config,
)

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from syncboard.config import Settings
    from syncboard.services.event_bus import EventBus

LEGACY_FLOWS_DDL = """
CREATE TABLE flows (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    is_collapsed INTEGER NOT NULL DEFAULT 0,
    schedule_enabled INTEGER NOT NULL DEFAULT 0,
    cron_expr TEXT NOT NULL DEFAULT '',
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

LEGACY_OPERATIONS_DDL = """
CREATE TABLE operations (
    id TEXT PRIMARY KEY,
    flow_id TEXT NOT NULL,
    source_remote TEXT NOT NULL DEFAULT '',
    source_path TEXT NOT NULL DEFAULT '/',
    target_remote TEXT NOT NULL DEFAULT '',
    target_path TEXT NOT NULL DEFAULT '/',
    action TEXT NOT NULL DEFAULT 'push',
    parallel INTEGER,
    bandwidth TEXT,
    included_paths TEXT,
    excluded_paths TEXT,
    conflict_resolution TEXT,
    dry_run INTEGER NOT NULL DEFAULT 0,
    is_expanded INTEGER NOT NULL DEFAULT 0,
    sort_order INTEGER NOT NULL DEFAULT 0
)
"""


async def create_legacy_flow_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.execute(text(LEGACY_FLOWS_DDL))
        await conn.execute(text(LEGACY_OPERATIONS_DDL))
        await conn.execute(
            text(
                "INSERT INTO flows (id, name, sort_order, created_at, updated_at) "
                "VALUES ('f1', 'Photos', 0, '2026-01-01 00:00:00', '2026-01-02 00:00:00')"
            )
        )
        await conn.execute(
            text(
                "INSERT INTO operations (id, flow_id, source_remote, source_path, "
                "target_remote, target_path, action, parallel, bandwidth, included_paths, "
                "excluded_paths, conflict_resolution, dry_run, is_expanded, sort_order) "
                "VALUES ('o1', 'f1', 'gdrive', '/photos', 's3', '/backup', 'bi', 4, '10M', "
                "'[\"*.jpg\"]', NULL, 'newer', 1, 1, 0)"
            )
        )


@pytest.fixture
def raw_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory over a database ``init_store`` has not touched yet."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


def write_json(directory: Path, name: str, value: object) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / name).write_text(json.dumps(value), encoding="utf-8")


class TestSchema:
    async def test_fresh_database(
        self, db_engine: AsyncEngine, raw_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await init_store(db_engine, raw_factory)
        await init_store(db_engine, raw_factory)

        async with db_engine.connect() as conn:
            rows = await conn.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))
            tables = {row[0] for row in rows}
        assert {
            "boards",
            "board_nodes",
            "board_edges",
            "flows",
            "operations",
            "profiles",
            "settings",
            "schedules",
            "history",
        } <= tables

    async def test_profile_columns_added_to_old_table(self, db_engine: AsyncEngine) -> None:
        async with db_engine.begin() as conn:
            await conn.execute(text("CREATE TABLE profiles (name TEXT PRIMARY KEY)"))

        added = await add_profile_columns(db_engine)
        assert added == [name for name, _ in PROFILE_ADDED_COLUMNS]
        assert await add_profile_columns(db_engine) == []


class TestOperationsMigration:
    async def test_flat_columns_folded_into_sync_config(
        self, db_engine: AsyncEngine, raw_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await create_legacy_flow_tables(db_engine)

        await init_store(db_engine, raw_factory)

        flows = await FlowService(raw_factory).get_flows()
        assert [flow.name for flow in flows] == ["Photos"]
        op = flows[0].operations[0]
        assert (op.source_remote, op.target_path, op.action) == ("gdrive", "/backup", "bi")
        assert op.is_expanded is True
        assert op.sync_config.parallel == 4
        assert op.sync_config.bandwidth == 10
        assert op.sync_config.included_paths == ["*.jpg"]
        assert op.sync_config.excluded_paths == []
        assert op.sync_config.conflict_resolution == "newer"
        assert op.sync_config.dry_run is True

        async with db_engine.connect() as conn:
            columns = {row[1] for row in await conn.execute(text("PRAGMA table_info(operations)"))}
        assert "parallel" not in columns
        assert "sync_config" in columns
        assert await migrate_operations_to_sync_config(db_engine) == 0


class TestLegacyJsonImport:
    async def test_imports_into_empty_tables(
        self,
        db_engine: AsyncEngine,
        raw_factory: async_sessionmaker[AsyncSession],
        event_bus: EventBus,
        tmp_path: Path,
    ) -> None:
        data_dir = tmp_path / "legacy"
        write_json(data_dir, "settings.json", {"notifications_enabled": False, "theme": "dark"})
        write_json(
            data_dir,
            "profiles.json",
            [{"name": "docs", "from": "/home/me/docs", "to": "gdrive:docs", "bandwidth": "5M"}],
        )
        write_json(
            data_dir,
            "schedules.json",
            [{"id": "s1", "profile_name": "docs", "cron_expr": "0 * * * *"}],
        )
        write_json(
            data_dir,
            "history.json",
            [
                {
                    "id": "h1",
                    "profile_name": "docs",
                    "status": "completed",
                    "start_time": "2026-01-01T00:00:00Z",
                    "end_time": "2026-01-01T00:01:00Z",
                    "duration": "1m0s",
                }
            ],
        )
        write_json(
            data_dir,
            "boards.json",
            [
                {
                    "id": "b1",
                    "name": "Nightly",
                    "nodes": [{"id": "n1", "path": "/a"}, {"id": "n2", "remote_name": "gd"}],
                    "edges": [{"id": "e1", "source_id": "n1", "target_id": "n2"}],
                },
                {"id": "flows", "name": "__flows__"},
            ],
        )
        await init_store(db_engine, raw_factory)

        imported = await import_legacy_json(raw_factory, data_dir)

        assert imported == {
            "settings.json": 1,
            "profiles.json": 1,
            "schedules.json": 1,
            "history.json": 1,
            "boards.json": 1,
        }
        profile = await ProfileService(raw_factory, event_bus).get_profile("docs")
        assert profile.bandwidth == 5
        settings = await NotificationService(raw_factory, event_bus).get_settings()
        assert settings.notifications_enabled is False
        history = await HistoryService(raw_factory, event_bus).get_history(10)
        assert [entry.id for entry in history] == ["h1"]
        boards = await BoardService(raw_factory, event_bus).get_boards()
        assert [board.name for board in boards] == ["Nightly"]

        assert await import_legacy_json(raw_factory, data_dir) == {}

    async def test_bad_files_are_skipped(
        self,
        db_engine: AsyncEngine,
        raw_factory: async_sessionmaker[AsyncSession],
        event_bus: EventBus,
        tmp_path: Path,
    ) -> None:
        data_dir = tmp_path / "legacy"
        data_dir.mkdir()
        (data_dir / "profiles.json").write_text("{not json", encoding="utf-8")
        write_json(data_dir, "schedules.json", [{"id": ""}])
        write_json(data_dir, "settings.json", {"debug_mode": True})
        await init_store(db_engine, raw_factory)

        imported = await import_legacy_json(raw_factory, data_dir)

        assert imported == {"settings.json": 1}
        assert await ProfileService(raw_factory, event_bus).get_profiles() == []

    async def test_duplicate_rows_do_not_abort_startup(
        self,
        db_engine: AsyncEngine,
        raw_factory: async_sessionmaker[AsyncSession],
        event_bus: EventBus,
        tmp_path: Path,
    ) -> None:
        data_dir = tmp_path / "legacy"
        write_json(
            data_dir,
            "profiles.json",
            [
                {"name": "p", "from": "/home/me/first", "to": "gdrive:first"},
                {"name": "p", "from": "/home/me/second", "to": "gdrive:second"},
            ],
        )
        history = {
            "profile_name": "p",
            "status": "completed",
            "start_time": "2026-01-01T00:00:00Z",
            "end_time": "2026-01-01T00:00:01Z",
        }
        write_json(data_dir, "history.json", [{"id": "h1", **history}, {"id": "h1", **history}])
        write_json(data_dir, "settings.json", {"debug_mode": True})

        await init_store(db_engine, raw_factory, data_dir)

        profiles = await ProfileService(raw_factory, event_bus).get_profiles()
        assert [(p.name, p.from_path) for p in profiles] == [("p", "/home/me/first")]
        assert await HistoryService(raw_factory, event_bus).get_history(10) == []
        settings = await NotificationService(raw_factory, event_bus).get_settings()
        assert settings.debug_mode is True

    async def test_missing_directory(
        self,
        db_engine: AsyncEngine,
        raw_factory: async_sessionmaker[AsyncSession],
        tmp_path: Path,
    ) -> None:
        await init_store(db_engine, raw_factory)
        assert await import_legacy_json(raw_factory, tmp_path / "nowhere") == {}


class TestLegacyFlowsDatabase:
    async def test_flows_moved_and_file_removed(
        self,
        db_engine: AsyncEngine,
        raw_factory: async_sessionmaker[AsyncSession],
        tmp_path: Path,
    ) -> None:
        data_dir = tmp_path / "legacy"
        data_dir.mkdir()
        legacy_path = data_dir / LEGACY_FLOWS_DB
        legacy = create_async_engine(f"sqlite+aiosqlite:///{legacy_path}")
        try:
            await create_legacy_flow_tables(legacy)
        finally:
            await legacy.dispose()

        await init_store(db_engine, raw_factory, data_dir)

        assert not legacy_path.exists()
        flows = await FlowService(raw_factory).get_flows()
        assert [flow.id for flow in flows] == ["f1"]
        assert flows[0].created_at is not None
        assert flows[0].created_at.day == 1
        op = flows[0].operations[0]
        assert op.id == "o1"
        assert op.sync_config.parallel == 4
        assert op.sync_config.included_paths == ["*.jpg"]

    async def test_skipped_when_flows_exist(
        self,
        db_engine: AsyncEngine,
        raw_factory: async_sessionmaker[AsyncSession],
        tmp_path: Path,
    ) -> None:
        await init_store(db_engine, raw_factory)
        async with db_engine.begin() as conn:
            await conn.execute(text("INSERT INTO flows (id, name) VALUES ('keep', 'Keep')"))

        data_dir = tmp_path / "legacy"
        data_dir.mkdir()
        legacy_path = data_dir / LEGACY_FLOWS_DB
        legacy = create_async_engine(f"sqlite+aiosqlite:///{legacy_path}")
        try:
            await create_legacy_flow_tables(legacy)
        finally:
            await legacy.dispose()

        await init_store(db_engine, raw_factory, data_dir)

        assert legacy_path.exists()
        assert [flow.id for flow in await FlowService(raw_factory).get_flows()] == ["keep"]

    async def test_orphan_operations_are_skipped(
        self, test_settings: Settings, tmp_path: Path
    ) -> None:
        data_dir = tmp_path / "legacy"
        data_dir.mkdir()
        legacy_path = data_dir / LEGACY_FLOWS_DB
        legacy = create_async_engine(f"sqlite+aiosqlite:///{legacy_path}")
        try:
            await create_legacy_flow_tables(legacy)
            async with legacy.begin() as conn:
                await conn.execute(
                    text(
                        "INSERT INTO operations (id, flow_id, sort_order) "
                        "VALUES ('o2', 'gone', 1)"
                    )
                )
        finally:
            await legacy.dispose()

        engine, factory = create_engine(test_settings)
        try:
            await init_store(engine, factory, data_dir)
            flows = await FlowService(factory).get_flows()
        finally:
            await engine.dispose()

        assert not legacy_path.exists()
        assert [flow.id for flow in flows] == ["f1"]
        assert [op.id for op in flows[0].operations] == ["o1"]
