"""Tests for board CRUD and layered DAG execution."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from syncboard.exceptions import AlreadyExistsError, ConflictError, NotFoundError, ValidationError
from syncboard.schemas.board import (
    Board,
    BoardEdge,
    BoardExecutionStatus,
    BoardNode,
    EdgeStatus,
    ExecutionStatus,
)
from syncboard.schemas.profile import Profile
from syncboard.services.board_service import (
    SKIPPED_CANCELLED,
    SKIPPED_UPSTREAM,
    BoardService,
    boards_from_profiles,
    build_remote_path,
    parse_remote_name,
    parse_remote_path,
)
from syncboard.services.event_bus import EventType
from syncboard.services.history_service import HistoryService
from syncboard.services.notification_service import NotificationService
from syncboard.services.profile_service import ProfileService
from syncboard.services.sync_service import SyncService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from syncboard.services.event_bus import EventBus
    from syncboard.services.log_service import LogService
    from tests.conftest import EventRecorder, FakeTransferEngine


def make_board(
    board_id: str,
    nodes: list[str | tuple[str, str]],
    edges: list[tuple[str, str, str]],
) -> Board:
    """Nodes are ids (local) or ``(id, remote)`` pairs; each edge's profile is named by its id."""
    board_nodes = []
    for node in nodes:
        node_id, remote = (node, "local") if isinstance(node, str) else node
        board_nodes.append(
            BoardNode(id=node_id, remote_name=remote, path=f"/data/{node_id}", label=node_id)
        )
    return Board(
        id=board_id,
        name=f"Board {board_id}",
        nodes=board_nodes,
        edges=[
            BoardEdge(id=eid, source_id=src, target_id=tgt, sync_config=Profile(name=eid))
            for eid, src, tgt in edges
        ],
    )


def edge_statuses(status: BoardExecutionStatus) -> dict[str, tuple[str, str]]:
    return {es.edge_id: (es.status, es.message) for es in status.edge_statuses}


@pytest.fixture
async def board_service(
    session_factory: async_sessionmaker[AsyncSession],
    event_bus: EventBus,
    sync_service: SyncService,
) -> AsyncGenerator[BoardService]:
    service = BoardService(session_factory, event_bus, sync_service=sync_service)
    await service.initialize()
    yield service
    await service.shutdown()


class TestRemotePaths:
    def test_build_remote_path(self) -> None:
        assert build_remote_path(BoardNode(id="n", remote_name="gdrive", path="/docs")) == (
            "gdrive:/docs"
        )
        assert build_remote_path(BoardNode(id="n", remote_name="gdrive")) == "gdrive:"
        assert build_remote_path(BoardNode(id="n", remote_name="local", path="/tmp/x")) == "/tmp/x"
        assert build_remote_path(BoardNode(id="n", remote_name="", path="/tmp/x")) == "/tmp/x"

    def test_parse_remote(self) -> None:
        assert parse_remote_name("gdrive:/docs") == "gdrive"
        assert parse_remote_path("gdrive:/docs") == "/docs"
        assert parse_remote_name("/home/user/a:b") == ""
        assert parse_remote_path("/home/user/a:b") == "/home/user/a:b"

    def test_boards_from_profiles(self) -> None:
        boards = boards_from_profiles([("p1", "/home/me", "s3:bucket/x")], 42)
        assert len(boards) == 1
        board = boards[0]
        assert board.id == "migrated-0-42"
        assert board.name == "p1"
        source, target = board.nodes
        assert (source.remote_name, source.path, source.label) == ("local", "/home/me", "Local")
        assert (target.remote_name, target.path, target.label) == ("s3", "bucket/x", "s3")
        assert board.edges[0].source_id == source.id
        assert board.edges[0].action == "push"


class TestBoardCrud:
    async def test_add_and_get(self, board_service: BoardService, events: EventRecorder) -> None:
        board = make_board("b1", ["a", "b"], [("e1", "a", "b")])
        saved = await board_service.add_board(board)
        assert saved.created_at is not None
        fetched = await board_service.get_board("b1")
        assert fetched.edges[0].sync_config.name == "e1"
        assert [e["status"] for e in events.of_type(EventType.BOARD_UPDATED)] == ["added"]

    async def test_cycle_rejected_and_not_persisted(
        self,
        board_service: BoardService,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: EventBus,
    ) -> None:
        board = make_board(
            "cyc", ["a", "b", "c"], [("e1", "a", "b"), ("e2", "b", "c"), ("e3", "c", "a")]
        )
        with pytest.raises(ValidationError, match="cycle"):
            await board_service.add_board(board)
        assert await board_service.get_boards() == []

        reloaded = BoardService(session_factory, event_bus)
        await reloaded.initialize()
        assert await reloaded.get_boards() == []

    async def test_duplicate_name_and_id(self, board_service: BoardService) -> None:
        await board_service.add_board(make_board("b1", ["a", "b"], [("e1", "a", "b")]))
        with pytest.raises(AlreadyExistsError, match="name"):
            await board_service.add_board(make_board("b1", ["a", "b"], [("e1", "a", "b")]))
        other = make_board("b1", ["a", "b"], [("e1", "a", "b")])
        other.name = "Different"
        with pytest.raises(AlreadyExistsError, match="ID"):
            await board_service.add_board(other)

    async def test_update_and_delete(self, board_service: BoardService) -> None:
        await board_service.add_board(make_board("b1", ["a", "b"], [("e1", "a", "b")]))
        board = await board_service.get_board("b1")
        board.description = "nightly"
        updated = await board_service.update_board(board)
        assert updated.description == "nightly"
        assert updated.created_at == board.created_at

        await board_service.delete_board("b1")
        with pytest.raises(NotFoundError):
            await board_service.get_board("b1")
        with pytest.raises(NotFoundError):
            await board_service.delete_board("b1")

    async def test_boards_survive_reload(
        self,
        board_service: BoardService,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: EventBus,
    ) -> None:
        await board_service.add_board(
            make_board("b1", [("a", "s3"), "b"], [("e1", "a", "b")])
        )
        reloaded = BoardService(session_factory, event_bus)
        boards = await reloaded.get_boards()
        assert [b.id for b in boards] == ["b1"]
        assert boards[0].node_map()["a"].remote_name == "s3"
        assert boards[0].edges[0].sync_config.name == "e1"

    async def test_first_start_migrates_profiles(
        self, session_factory: async_sessionmaker[AsyncSession], event_bus: EventBus
    ) -> None:
        profiles = ProfileService(session_factory, event_bus)
        await profiles.add_profile(Profile(name="docs", from_path="/home/me", to_path="gd:docs"))
        service = BoardService(session_factory, event_bus)
        boards = await service.get_boards()
        assert [b.name for b in boards] == ["docs"]
        assert boards[0].node_map()["node-tgt-0"].remote_name == "gd"


class TestBoardExecution:
    async def test_linear_execution(
        self,
        board_service: BoardService,
        fake_engine: FakeTransferEngine,
        events: EventRecorder,
    ) -> None:
        await board_service.add_board(
            make_board("lin", ["a", "b", "c"], [("e1", "a", "b"), ("e2", "b", "c")])
        )
        started = await board_service.execute_board("lin")
        assert started.status == ExecutionStatus.RUNNING

        final = await board_service.wait_for_execution("lin")
        assert final is not None
        assert final.status == ExecutionStatus.COMPLETED
        assert edge_statuses(final) == {
            "e1": (EdgeStatus.COMPLETED, "Sync completed"),
            "e2": (EdgeStatus.COMPLETED, "Sync completed"),
        }
        assert [p.name for _, p in fake_engine.calls] == ["e1", "e2"]
        assert len(events.of_type(EventType.BOARD_EXECUTION_COMPLETED)) == 1
        assert await board_service.is_executing("lin") is False

    async def test_edge_profile_carries_node_paths(
        self, board_service: BoardService, fake_engine: FakeTransferEngine
    ) -> None:
        await board_service.add_board(make_board("p", [("a", "gd"), "b"], [("e1", "a", "b")]))
        await board_service.execute_board("p")
        await board_service.wait_for_execution("p")
        action, profile = fake_engine.calls[0]
        assert action == "push"
        assert profile.from_path == "gd:/data/a"
        assert profile.to_path == "/data/b"

    async def test_diamond_runs_layers_in_parallel(
        self,
        board_service: BoardService,
        fake_engine: FakeTransferEngine,
    ) -> None:
        fake_engine.delay = 0.1
        await board_service.add_board(
            make_board(
                "dia",
                ["a", "b", "c", "d"],
                [("e1", "a", "b"), ("e2", "a", "c"), ("e3", "b", "d"), ("e4", "c", "d")],
            )
        )
        begin = time.monotonic()
        await board_service.execute_board("dia")
        final = await board_service.wait_for_execution("dia")
        elapsed = time.monotonic() - begin

        assert final is not None
        assert final.status == ExecutionStatus.COMPLETED
        assert 0.2 <= elapsed <= 0.4
        assert fake_engine.max_active == 2

    async def test_upstream_failure_skips_downstream(
        self,
        board_service: BoardService,
        fake_engine: FakeTransferEngine,
        events: EventRecorder,
    ) -> None:
        fake_engine.failures.add("e1")
        await board_service.add_board(
            make_board(
                "up",
                ["a", "b", "c", "d", "e"],
                [("e1", "a", "b"), ("e2", "b", "d"), ("e3", "d", "e")],
            )
        )
        await board_service.execute_board("up")
        final = await board_service.wait_for_execution("up")

        assert final is not None
        assert final.status == ExecutionStatus.FAILED
        statuses = edge_statuses(final)
        assert statuses["e1"][0] == EdgeStatus.FAILED
        assert statuses["e1"][1].startswith("Sync failed:")
        assert statuses["e2"] == (EdgeStatus.SKIPPED, SKIPPED_UPSTREAM)
        assert statuses["e3"] == (EdgeStatus.SKIPPED, SKIPPED_UPSTREAM)
        assert [p.name for _, p in fake_engine.calls] == ["e1"]
        assert len(events.of_type(EventType.BOARD_EXECUTION_FAILED)) == 1

    async def test_crashed_edge_worker_fails_the_edge(
        self,
        board_service: BoardService,
        fake_engine: FakeTransferEngine,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        original = board_service._execute_edge

        async def crash_on_e1(board: Board, edge: BoardEdge, flow: object) -> object:
            if edge.id == "e1":
                raise KeyError("n9")
            return await original(board, edge, flow)

        monkeypatch.setattr(board_service, "_execute_edge", crash_on_e1)
        await board_service.add_board(
            make_board("crash", ["a", "b", "c"], [("e1", "a", "b"), ("e2", "b", "c")])
        )
        await board_service.execute_board("crash")
        final = await board_service.wait_for_execution("crash")

        assert final is not None
        assert final.status == ExecutionStatus.FAILED
        statuses = edge_statuses(final)
        assert statuses["e1"][0] == EdgeStatus.FAILED
        assert "[INTERNAL_ERROR] board edge worker crashed" in statuses["e1"][1]
        assert statuses["e2"] == (EdgeStatus.SKIPPED, SKIPPED_UPSTREAM)
        assert fake_engine.calls == []

    async def test_sibling_branch_keeps_running_after_failure(
        self, board_service: BoardService, fake_engine: FakeTransferEngine
    ) -> None:
        fake_engine.failures.add("e1")
        await board_service.add_board(
            make_board(
                "br",
                ["a", "b", "c", "d", "e"],
                [("e1", "a", "b"), ("e2", "a", "c"), ("e3", "b", "d"), ("e4", "c", "e")],
            )
        )
        await board_service.execute_board("br")
        final = await board_service.wait_for_execution("br")
        assert final is not None
        statuses = edge_statuses(final)
        assert statuses["e2"][0] == EdgeStatus.COMPLETED
        assert statuses["e3"] == (EdgeStatus.SKIPPED, SKIPPED_UPSTREAM)
        assert statuses["e4"][0] == EdgeStatus.COMPLETED

    async def test_board_without_edges_is_rejected(self, board_service: BoardService) -> None:
        await board_service.add_board(make_board("empty", ["a"], []))
        with pytest.raises(ValidationError, match="no edges"):
            await board_service.execute_board("empty")

    async def test_concurrent_execution_conflicts(
        self, board_service: BoardService, fake_engine: FakeTransferEngine
    ) -> None:
        fake_engine.delay = 0.2
        await board_service.add_board(make_board("c", ["a", "b"], [("e1", "a", "b")]))
        await board_service.execute_board("c")
        with pytest.raises(ConflictError):
            await board_service.execute_board("c")
        status = await board_service.get_board_execution_status("c")
        assert status.status == ExecutionStatus.RUNNING
        await board_service.wait_for_execution("c")
        with pytest.raises(NotFoundError):
            await board_service.get_board_execution_status("c")

    async def test_stop_cancels_running_and_skips_pending(
        self,
        board_service: BoardService,
        fake_engine: FakeTransferEngine,
        events: EventRecorder,
    ) -> None:
        fake_engine.delay = 5.0
        await board_service.add_board(
            make_board("stop", ["a", "b", "c"], [("e1", "a", "b"), ("e2", "b", "c")])
        )
        await board_service.execute_board("stop")
        await asyncio.sleep(0.05)
        await board_service.stop_board_execution("stop")
        final = await asyncio.wait_for(board_service.wait_for_execution("stop"), timeout=2)

        assert final is not None
        assert final.status == ExecutionStatus.CANCELLED
        statuses = edge_statuses(final)
        assert statuses["e1"][0] == EdgeStatus.FAILED
        assert statuses["e2"] == (EdgeStatus.SKIPPED, SKIPPED_CANCELLED)
        assert len(events.of_type(EventType.BOARD_EXECUTION_CANCELLED)) == 1
        await asyncio.sleep(0.05)
        assert fake_engine.active == 0

    async def test_stop_idle_board_is_noop(self, board_service: BoardService) -> None:
        await board_service.stop_board_execution("nothing")
        assert await board_service.wait_for_execution("nothing") is None

    async def test_edge_progress_events(
        self, board_service: BoardService, events: EventRecorder
    ) -> None:
        await board_service.add_board(make_board("ev", ["a", "b"], [("e1", "a", "b")]))
        await board_service.execute_board("ev")
        await board_service.wait_for_execution("ev")
        progress = events.of_type(EventType.BOARD_EXECUTION_PROGRESS)
        assert [(e["edgeId"], e["status"]) for e in progress] == [
            ("e1", "running"),
            ("e1", "completed"),
        ]
        assert all(e["boardId"] == "ev" for e in progress)


class TestBoardNotifications:
    async def test_completion_notification(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: EventBus,
        sync_service: SyncService,
        events: EventRecorder,
    ) -> None:
        notifications = NotificationService(session_factory, event_bus)
        service = BoardService(
            session_factory, event_bus, sync_service=sync_service, notifications=notifications
        )
        await service.add_board(make_board("n", ["a", "b"], [("e1", "a", "b")]))
        await service.execute_board("n")
        await service.wait_for_execution("n")
        sent = events.of_type(EventType.NOTIFICATION)
        assert len(sent) == 1
        assert sent[0]["title"] == "Board Execution Completed"
        assert "1 sync(s) executed" in sent[0]["body"]


class TestRemoteDeletion:
    async def test_nodes_and_edges_removed(
        self, board_service: BoardService, events: EventRecorder
    ) -> None:
        board = make_board(
            "rd", [("n1", "X"), ("n2", "Y"), ("n3", "X")], [("e1", "n1", "n2"), ("e2", "n2", "n3")]
        )
        saved = await board_service.add_board(board)
        await asyncio.sleep(0.01)

        await board_service.on_remote_deleted("X")
        after = await board_service.get_board("rd")
        assert [node.id for node in after.nodes] == ["n2"]
        assert after.edges == []
        assert after.updated_at is not None and saved.updated_at is not None
        assert after.updated_at > saved.updated_at

        updates = events.of_type(EventType.BOARD_UPDATED)
        assert updates[-1]["status"] == "remote_deleted"
        assert updates[-1]["boardId"] == ""

    async def test_unrelated_remote_is_noop(
        self, board_service: BoardService, events: EventRecorder
    ) -> None:
        await board_service.add_board(make_board("rd", [("n1", "X"), "n2"], [("e1", "n1", "n2")]))
        events.drain()
        events.events.clear()
        await board_service.on_remote_deleted("Z")
        assert events.of_type(EventType.BOARD_UPDATED) == []
        assert len((await board_service.get_board("rd")).edges) == 1


class TestBoardSchedules:
    async def test_schedule_registered_and_run(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: EventBus,
        sync_service: SyncService,
    ) -> None:
        scheduler = AsyncIOScheduler(timezone="UTC")
        service = BoardService(
            session_factory, event_bus, sync_service=sync_service, scheduler=scheduler
        )
        board = make_board("s", ["a", "b"], [("e1", "a", "b")])
        board.schedule_enabled = True
        board.cron_expr = "0 */6 * * *"
        saved = await service.add_board(board)
        assert saved.next_run is not None
        assert scheduler.get_job("board:s") is not None

        await service.run_scheduled_board("s")
        after = await service.get_board("s")
        assert after.last_result == "success"
        assert after.last_run is not None

        after.schedule_enabled = False
        await service.update_board(after)
        assert scheduler.get_job("board:s") is None

    async def test_invalid_cron_rejected(self, board_service: BoardService) -> None:
        board = make_board("s", ["a", "b"], [("e1", "a", "b")])
        board.schedule_enabled = True
        board.cron_expr = "every day"
        with pytest.raises(ValidationError, match="invalid board"):
            await board_service.add_board(board)

    async def test_history_recorded_per_edge(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: EventBus,
        fake_engine: FakeTransferEngine,
        log_service: LogService,
    ) -> None:
        history = HistoryService(session_factory, event_bus)
        sync = SyncService(fake_engine, event_bus, log_service, history=history)
        service = BoardService(session_factory, event_bus, sync_service=sync)
        await service.add_board(
            make_board("h", ["a", "b", "c"], [("e1", "a", "b"), ("e2", "b", "c")])
        )
        await service.execute_board("h")
        await service.wait_for_execution("h")
        entries = await history.get_history(10)
        assert sorted(entry.profile_name for entry in entries) == ["e1", "e2"]
        assert {entry.status for entry in entries} == {"completed"}
        await sync.shutdown()
