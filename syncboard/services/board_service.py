"""Board service: CRUD, persistence and layered DAG execution of boards."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import pydantic
from sqlalchemy import delete, select
from sqlalchemy.orm import selectinload

from syncboard.exceptions import (
    AlreadyExistsError,
    AppError,
    ConflictError,
    ErrorCode,
    InternalError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    wrap_error,
)
from syncboard.models.board import BoardEdgeRow, BoardNodeRow, BoardRow
from syncboard.models.profile import ProfileRow
from syncboard.schemas.board import (
    LOCAL_REMOTE,
    Board,
    BoardEdge,
    BoardExecutionStatus,
    BoardNode,
    EdgeAction,
    EdgeExecutionStatus,
    EdgeStatus,
    ExecutionStatus,
)
from syncboard.schemas.profile import Profile
from syncboard.services.dag import compute_layers, validate_board
from syncboard.services.datetime_service import now_utc
from syncboard.services.event_bus import EventType, board_event
from syncboard.services.validation import parse_cron

if TYPE_CHECKING:
    from datetime import datetime

    from apscheduler.schedulers.asyncio import AsyncIOScheduler
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from syncboard.services.event_bus import EventBus
    from syncboard.services.notification_service import NotificationService
    from syncboard.services.sync_service import SyncService

logger = logging.getLogger(__name__)

BOARD_JOB_PREFIX = "board:"
SKIPPED_UPSTREAM = "Skipped: upstream edge failed"
SKIPPED_CANCELLED = "Skipped: execution cancelled"


@dataclass
class FlowExecution:
    """One in-flight board run. ``status_lock`` guards ``status``."""

    board_id: str
    cancel_event: asyncio.Event
    status: BoardExecutionStatus
    status_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    worker: asyncio.Task[None] | None = field(default=None, repr=False)
    cancel_reported: bool = False


def build_remote_path(node: BoardNode) -> str:
    """Build the transfer-engine path for a node (``remote:path`` or a local path)."""
    if node.remote_name in ("", LOCAL_REMOTE):
        return node.path
    if not node.path:
        return f"{node.remote_name}:"
    return f"{node.remote_name}:{node.path}"


def parse_remote_name(path: str) -> str:
    """``"gdrive:/docs"`` -> ``"gdrive"``; local paths give ``""``."""
    for i, char in enumerate(path):
        if char == ":":
            return path[:i]
        if char == "/":
            return ""
    return ""


def parse_remote_path(path: str) -> str:
    """``"gdrive:/docs"`` -> ``"/docs"``; local paths are returned whole."""
    for i, char in enumerate(path):
        if char == ":":
            return path[i + 1 :]
        if char == "/":
            return path
    return path


def _load_sync_config(raw: str, owner: str) -> Profile:
    try:
        return Profile.model_validate_json(raw or "{}")
    except pydantic.ValidationError as exc:
        logger.warning("Ignoring malformed sync_config on %s: %s", owner, exc)
        return Profile()


def row_to_board(row: BoardRow) -> Board:
    return Board(
        id=row.id,
        name=row.name,
        description=row.description,
        nodes=[
            BoardNode(
                id=node.id,
                remote_name=node.remote_name,
                path=node.path,
                label=node.label,
                x=node.x,
                y=node.y,
            )
            for node in row.nodes
        ],
        edges=[
            BoardEdge(
                id=edge.id,
                source_id=edge.source_id,
                target_id=edge.target_id,
                action=edge.action,
                sync_config=_load_sync_config(edge.sync_config, f"edge {edge.id}"),
            )
            for edge in row.edges
        ],
        created_at=row.created_at,
        updated_at=row.updated_at,
        schedule_enabled=row.schedule_enabled,
        cron_expr=row.cron_expr,
        last_run=row.last_run,
        next_run=row.next_run,
        last_result=row.last_result,
    )


async def save_board(session: AsyncSession, board: Board) -> None:
    """Upsert ``board`` and replace its nodes and edges. The caller commits."""
    now = now_utc()
    await session.merge(
        BoardRow(
            id=board.id,
            name=board.name,
            description=board.description,
            created_at=board.created_at or now,
            updated_at=board.updated_at or now,
            schedule_enabled=board.schedule_enabled,
            cron_expr=board.cron_expr,
            last_run=board.last_run,
            next_run=board.next_run,
            last_result=board.last_result,
        )
    )
    await session.execute(delete(BoardNodeRow).where(BoardNodeRow.board_id == board.id))
    await session.execute(delete(BoardEdgeRow).where(BoardEdgeRow.board_id == board.id))
    session.add_all(
        BoardNodeRow(
            id=node.id,
            board_id=board.id,
            remote_name=node.remote_name,
            path=node.path,
            label=node.label,
            x=node.x,
            y=node.y,
        )
        for node in board.nodes
    )
    session.add_all(
        BoardEdgeRow(
            id=edge.id,
            board_id=board.id,
            source_id=edge.source_id,
            target_id=edge.target_id,
            action=edge.action,
            sync_config=edge.sync_config.to_json(),
        )
        for edge in board.edges
    )
    await session.flush()


def boards_from_profiles(profiles: list[tuple[str, str, str]], millis: int) -> list[Board]:
    """Build one source->target push board per ``(name, from, to)`` profile."""
    now = now_utc()
    boards: list[Board] = []
    for i, (name, from_path, to_path) in enumerate(profiles):
        y = 100.0 + i * 150
        source = _migrated_node(f"node-src-{i}", from_path, 100.0, y)
        target = _migrated_node(f"node-tgt-{i}", to_path, 500.0, y)
        boards.append(
            Board(
                id=f"migrated-{i}-{millis}",
                name=name,
                nodes=[source, target],
                edges=[
                    BoardEdge(
                        id=f"edge-{i}",
                        source_id=source.id,
                        target_id=target.id,
                        action=EdgeAction.PUSH.value,
                    )
                ],
                created_at=now,
                updated_at=now,
            )
        )
    return boards


def _migrated_node(node_id: str, path: str, x: float, y: float) -> BoardNode:
    remote = parse_remote_name(path)
    if not remote:
        return BoardNode(
            id=node_id,
            remote_name=LOCAL_REMOTE,
            path=parse_remote_path(path),
            label="Local",
            x=x,
            y=y,
        )
    return BoardNode(
        id=node_id, remote_name=remote, path=parse_remote_path(path), label=remote, x=x, y=y
    )


class BoardService:
    """Owns the board list and the registry of running board executions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: EventBus,
        sync_service: SyncService | None = None,
        notifications: NotificationService | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._event_bus = event_bus
        self._sync_service = sync_service
        self._notifications = notifications
        self._scheduler = scheduler
        self._lock = asyncio.Lock()
        self._boards: list[Board] = []
        self._initialized = False
        self._flow_lock = asyncio.Lock()
        self._active_flows: dict[str, FlowExecution] = {}

    def _emit(
        self,
        event_type: EventType,
        board_id: str,
        status: str,
        message: str = "",
        edge_id: str = "",
    ) -> None:
        self._event_bus.publish(board_event(event_type, board_id, status, message, edge_id))

    # -- lifecycle ---------------------------------------------------------

    async def initialize(self) -> None:
        """Load boards, migrate profiles into boards on first run, register schedules."""
        async with self._lock:
            if self._initialized:
                return
            try:
                self._boards = await self._load_boards()
            except Exception:
                logger.exception("Could not load boards")
                self._boards = []
            if not self._boards:
                await self._migrate_from_profiles()
            for board in self._boards:
                self._register_schedule(board)
            self._initialized = True
        logger.info("Board service initialized with %d boards", len(self._boards))

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def shutdown(self) -> None:
        """Cancel all active board runs and wait for them to settle."""
        async with self._flow_lock:
            flows = list(self._active_flows.values())
            for flow in flows:
                flow.cancel_event.set()
        workers = [flow.worker for flow in flows if flow.worker is not None]
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)

    async def _load_boards(self) -> list[Board]:
        async with self._session_factory() as session:
            stmt = (
                select(BoardRow)
                .options(selectinload(BoardRow.nodes), selectinload(BoardRow.edges))
                .order_by(BoardRow.name)
            )
            rows = (await session.execute(stmt)).scalars().all()
        return [row_to_board(row) for row in rows]

    async def _migrate_from_profiles(self) -> None:
        async with self._session_factory() as session:
            stmt = select(ProfileRow.name, ProfileRow.from_path, ProfileRow.to_path)
            profiles = [tuple(row) for row in (await session.execute(stmt)).all()]
        if not profiles:
            return

        millis = int(now_utc().timestamp() * 1000)
        boards = boards_from_profiles(profiles, millis)
        self._boards.extend(boards)
        for board in boards:
            try:
                await self._save(board)
            except Exception:
                logger.exception("Failed to save migrated board %r", board.name)
        logger.info("Migrated %d profiles to boards", len(profiles))

    async def _save(self, board: Board) -> None:
        async with self._session_factory() as session:
            await save_board(session, board)
            await session.commit()

    async def _delete(self, board_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(BoardRow).where(BoardRow.id == board_id))
            await session.commit()

    # -- CRUD ----------------------------------------------------------------

    async def get_boards(self) -> list[Board]:
        await self._ensure_initialized()
        async with self._lock:
            return [board.model_copy(deep=True) for board in self._boards]

    async def get_board(self, board_id: str) -> Board:
        await self._ensure_initialized()
        async with self._lock:
            for board in self._boards:
                if board.id == board_id:
                    return board.model_copy(deep=True)
        raise NotFoundError(f"board '{board_id}' not found")

    def _admit(self, board: Board) -> None:
        try:
            validate_board(board)
            if board.schedule_enabled and board.cron_expr:
                parse_cron(board.cron_expr)
        except ValidationError as exc:
            raise ValidationError(f"invalid board: {exc.message}", details=exc.details) from exc

    async def add_board(self, board: Board) -> Board:
        await self._ensure_initialized()
        board = board.model_copy(deep=True)
        async with self._lock:
            self._admit(board)
            if any(existing.name == board.name for existing in self._boards):
                raise AlreadyExistsError(f"board with name '{board.name}' already exists")
            if any(existing.id == board.id for existing in self._boards):
                raise AlreadyExistsError(f"board with ID '{board.id}' already exists")

            now = now_utc()
            board.created_at = board.created_at or now
            board.updated_at = now
            board.next_run = self._next_run(board)
            try:
                await self._save(board)
            except Exception as exc:
                raise wrap_error(exc, ErrorCode.DATABASE_ERROR, "failed to save board") from exc
            self._boards.append(board)
            self._register_schedule(board)

        self._emit(EventType.BOARD_UPDATED, board.id, "added", "Board created")
        logger.info("Added board %r (%s)", board.name, board.id)
        return board.model_copy(deep=True)

    async def update_board(self, board: Board) -> Board:
        await self._ensure_initialized()
        board = board.model_copy(deep=True)
        async with self._lock:
            self._admit(board)
            index = next((i for i, b in enumerate(self._boards) if b.id == board.id), None)
            if index is None:
                raise NotFoundError(f"board '{board.id}' not found")

            old = self._boards[index]
            board.created_at = old.created_at
            board.updated_at = now_utc()
            board.next_run = self._next_run(board)
            self._boards[index] = board
            try:
                await self._save(board)
            except Exception as exc:
                self._boards[index] = old
                raise wrap_error(exc, ErrorCode.DATABASE_ERROR, "failed to save board") from exc
            self._register_schedule(board)

        self._emit(EventType.BOARD_UPDATED, board.id, "updated", "Board updated")
        return board.model_copy(deep=True)

    async def delete_board(self, board_id: str) -> None:
        await self._ensure_initialized()
        async with self._lock:
            index = next((i for i, b in enumerate(self._boards) if b.id == board_id), None)
            if index is None:
                raise NotFoundError(f"board '{board_id}' not found")
            deleted = self._boards.pop(index)
            try:
                await self._delete(board_id)
            except Exception as exc:
                self._boards.append(deleted)
                raise wrap_error(exc, ErrorCode.DATABASE_ERROR, "failed to delete board") from exc
            self._unregister_schedule(board_id)

        self._emit(EventType.BOARD_UPDATED, board_id, "deleted", "Board deleted")
        logger.info("Deleted board %s", board_id)

    async def on_remote_deleted(self, remote_name: str) -> None:
        """Drop nodes on ``remote_name`` and every edge touching them."""
        await self._ensure_initialized()
        modified = False
        async with self._lock:
            for board in self._boards:
                removed = {node.id for node in board.nodes if node.remote_name == remote_name}
                if not removed:
                    continue
                board.edges = [
                    edge
                    for edge in board.edges
                    if edge.source_id not in removed and edge.target_id not in removed
                ]
                board.nodes = [node for node in board.nodes if node.id not in removed]
                board.updated_at = now_utc()
                modified = True
                try:
                    await self._save(board)
                except Exception:
                    logger.exception(
                        "Failed to save board %r after remote deletion", board.name
                    )
                logger.info(
                    "Board %r: removed %d nodes for deleted remote %r",
                    board.name,
                    len(removed),
                    remote_name,
                )

        if modified:
            self._emit(
                EventType.BOARD_UPDATED,
                "",
                "remote_deleted",
                f"Boards updated: remote '{remote_name}' was deleted",
            )

    # -- schedules -----------------------------------------------------------

    def _next_run(self, board: Board) -> datetime | None:
        if not (board.schedule_enabled and board.cron_expr):
            return None
        return parse_cron(board.cron_expr).get_next_fire_time(None, now_utc())

    def _register_schedule(self, board: Board) -> None:
        if self._scheduler is None:
            return
        self._unregister_schedule(board.id)
        if not (board.schedule_enabled and board.cron_expr):
            return
        try:
            trigger = parse_cron(board.cron_expr)
        except ValidationError as exc:
            logger.warning("Not scheduling board %r: %s", board.name, exc)
            return
        self._scheduler.add_job(
            self.run_scheduled_board,
            trigger=trigger,
            id=BOARD_JOB_PREFIX + board.id,
            args=[board.id],
            replace_existing=True,
        )

    def _unregister_schedule(self, board_id: str) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.get_job(BOARD_JOB_PREFIX + board_id) is not None:
            self._scheduler.remove_job(BOARD_JOB_PREFIX + board_id)

    async def run_scheduled_board(self, board_id: str) -> None:
        """Cron callback: run the board and persist last_run/next_run/last_result."""
        logger.info("Scheduled run of board %s", board_id)
        started_at = now_utc()
        result = "failed"
        try:
            flow, _ = await self._launch(board_id)
            if flow.worker is not None:
                await asyncio.shield(flow.worker)
            async with flow.status_lock:
                final = flow.status.status
            result = "success" if final == ExecutionStatus.COMPLETED else str(final)
        except AppError as exc:
            logger.warning(
                "[%s] Scheduled run of board %s failed: %s", exc.trace_id, board_id, exc
            )

        async with self._lock:
            board = next((b for b in self._boards if b.id == board_id), None)
            if board is None:
                return
            board.last_run = started_at
            board.next_run = self._next_run(board)
            board.last_result = result
            try:
                await self._save(board)
            except Exception:
                logger.exception("Failed to persist schedule state for board %s", board_id)

    # -- execution -------------------------------------------------------------

    async def execute_board(self, board_id: str) -> BoardExecutionStatus:
        """Validate and start a run on its own cancel handle; returns the initial status."""
        _, snapshot = await self._launch(board_id)
        return snapshot

    async def _launch(self, board_id: str) -> tuple[FlowExecution, BoardExecutionStatus]:
        await self._ensure_initialized()
        if self._sync_service is None:
            raise InvalidStateError("sync service not available")

        async with self._flow_lock:
            if board_id in self._active_flows:
                raise ConflictError(f"board '{board_id}' is already executing")

            board = await self.get_board(board_id)
            if not board.edges:
                raise ValidationError(f"board '{board.name}' has no edges to execute")
            validate_board(board)
            layers = compute_layers(board.edges)

            status = BoardExecutionStatus(
                board_id=board_id,
                status=ExecutionStatus.RUNNING,
                edge_statuses=[EdgeExecutionStatus(edge_id=edge.id) for edge in board.edges],
                start_time=now_utc(),
            )
            flow = FlowExecution(board_id=board_id, cancel_event=asyncio.Event(), status=status)
            self._active_flows[board_id] = flow
            snapshot = status.model_copy(deep=True)
            flow.worker = asyncio.create_task(
                self._execute_flow(board, layers, flow), name=f"board-run-{board_id}"
            )

        self._emit(
            EventType.BOARD_EXECUTION_STARTED, board_id, "running", "Board execution started"
        )
        logger.info("Executing board %r in %d layers", board.name, len(layers))
        return flow, snapshot

    async def stop_board_execution(self, board_id: str) -> None:
        """Cancel a run. Stopping a board that is not running is not an error."""
        async with self._flow_lock:
            flow = self._active_flows.get(board_id)
            if flow is None:
                return
            flow.cancel_event.set()
            async with flow.status_lock:
                flow.status.status = ExecutionStatus.CANCELLED
            flow.cancel_reported = True
        self._emit(
            EventType.BOARD_EXECUTION_CANCELLED, board_id, "cancelled", "Board execution cancelled"
        )
        logger.info("Stopped execution of board %s", board_id)

    async def get_board_execution_status(self, board_id: str) -> BoardExecutionStatus:
        async with self._flow_lock:
            flow = self._active_flows.get(board_id)
        if flow is None:
            raise NotFoundError(f"no active execution for board '{board_id}'")
        async with flow.status_lock:
            return flow.status.model_copy(deep=True)

    async def is_executing(self, board_id: str) -> bool:
        async with self._flow_lock:
            return board_id in self._active_flows

    async def wait_for_execution(self, board_id: str) -> BoardExecutionStatus | None:
        """Wait for the active run of ``board_id`` and return its final status."""
        async with self._flow_lock:
            flow = self._active_flows.get(board_id)
        if flow is None or flow.worker is None:
            return None
        await asyncio.shield(flow.worker)
        return flow.status.model_copy(deep=True)

    async def _set_edge(
        self,
        flow: FlowExecution,
        edge_id: str,
        status: EdgeStatus,
        message: str,
        *,
        task_id: int | None = None,
        started: bool = False,
        ended: bool = False,
    ) -> None:
        async with flow.status_lock:
            for edge_status in flow.status.edge_statuses:
                if edge_status.edge_id != edge_id:
                    continue
                edge_status.status = status
                edge_status.message = message
                if task_id is not None:
                    edge_status.task_id = task_id
                if started:
                    edge_status.start_time = now_utc()
                if ended:
                    edge_status.end_time = now_utc()
                break
        self._emit(
            EventType.BOARD_EXECUTION_PROGRESS, flow.board_id, str(status), message, edge_id
        )

    async def _skip_pending(self, flow: FlowExecution) -> None:
        async with flow.status_lock:
            for edge_status in flow.status.edge_statuses:
                if edge_status.status == EdgeStatus.PENDING:
                    edge_status.status = EdgeStatus.SKIPPED
                    edge_status.message = SKIPPED_CANCELLED

    async def _skip_downstream(
        self, flow: FlowExecution, failed_nodes: set[str], layers: list[list[BoardEdge]]
    ) -> None:
        async with flow.status_lock:
            by_id = {es.edge_id: es for es in flow.status.edge_statuses}
            for layer in layers:
                for edge in layer:
                    if edge.source_id not in failed_nodes:
                        continue
                    failed_nodes.add(edge.target_id)
                    edge_status = by_id[edge.id]
                    if edge_status.status == EdgeStatus.PENDING:
                        edge_status.status = EdgeStatus.SKIPPED
                        edge_status.message = SKIPPED_UPSTREAM

    async def _execute_flow(
        self, board: Board, layers: list[list[BoardEdge]], flow: FlowExecution
    ) -> None:
        failed_nodes: set[str] = set()
        try:
            for layer in layers:
                if flow.cancel_event.is_set():
                    break

                runnable: list[BoardEdge] = []
                for edge in layer:
                    if edge.source_id in failed_nodes:
                        failed_nodes.add(edge.target_id)
                        await self._set_edge(flow, edge.id, EdgeStatus.SKIPPED, SKIPPED_UPSTREAM)
                    else:
                        runnable.append(edge)

                results = await asyncio.gather(
                    *(self._run_edge(board, edge, flow) for edge in runnable)
                )
                if flow.cancel_event.is_set():
                    break
                layer_failed = False
                for edge, error in zip(runnable, results, strict=True):
                    if error is not None:
                        layer_failed = True
                        failed_nodes.add(edge.target_id)
                if layer_failed:
                    await self._skip_downstream(flow, failed_nodes, layers)

            await self._finish(board, flow)
        finally:
            async with self._flow_lock:
                self._active_flows.pop(board.id, None)

    async def _finish(self, board: Board, flow: FlowExecution) -> None:
        async with flow.status_lock:
            flow.status.end_time = now_utc()
            statuses = [es.status for es in flow.status.edge_statuses]
        cancelled = flow.cancel_event.is_set()
        if cancelled:
            await self._skip_pending(flow)
            async with flow.status_lock:
                flow.status.status = ExecutionStatus.CANCELLED
            if not flow.cancel_reported:
                self._emit(
                    EventType.BOARD_EXECUTION_CANCELLED,
                    board.id,
                    "cancelled",
                    "Board execution cancelled",
                )
            logger.info("Board %r execution cancelled", board.name)
            return

        failed = statuses.count(EdgeStatus.FAILED)
        async with flow.status_lock:
            flow.status.status = ExecutionStatus.FAILED if failed else ExecutionStatus.COMPLETED
        if failed:
            self._emit(
                EventType.BOARD_EXECUTION_FAILED,
                board.id,
                "failed",
                "Board execution completed with failures",
            )
            logger.warning("Board %r finished with %d failed edge(s)", board.name, failed)
        else:
            self._emit(
                EventType.BOARD_EXECUTION_COMPLETED,
                board.id,
                "completed",
                "Board execution completed successfully",
            )
            logger.info("Board %r finished successfully", board.name)
        await self._notify(board, failed == 0, statuses)

    async def _notify(self, board: Board, success: bool, statuses: list[EdgeStatus]) -> None:
        if self._notifications is None:
            return
        name = board.name or "Unnamed board"
        if success:
            title = "Board Execution Completed"
            body = (
                f'Board "{name}" completed successfully. '
                f"{statuses.count(EdgeStatus.COMPLETED)} sync(s) executed."
            )
        else:
            title = "Board Execution Failed"
            body = f'Board "{name}" completed with {statuses.count(EdgeStatus.FAILED)} failure(s).'
        try:
            await self._notifications.send(title, body)
        except Exception:
            logger.exception("Failed to send board notification")

    async def _run_edge(
        self, board: Board, edge: BoardEdge, flow: FlowExecution
    ) -> AppError | None:
        """Run one edge to completion; returns its error, or None on success."""
        try:
            return await self._execute_edge(board, edge, flow)
        except Exception as exc:
            error = InternalError("board edge worker crashed", details=str(exc), cause=exc)
            logger.exception("[%s] Edge %s of board %s crashed", error.trace_id, edge.id, board.id)
            await self._set_edge(
                flow, edge.id, EdgeStatus.FAILED, f"Sync failed: {error}", ended=True
            )
            return error

    async def _execute_edge(
        self, board: Board, edge: BoardEdge, flow: FlowExecution
    ) -> AppError | None:
        sync_service = self._sync_service
        if sync_service is None:
            raise InvalidStateError("sync service not available")
        nodes = board.node_map()
        source = nodes.get(edge.source_id)
        target = nodes.get(edge.target_id)
        if source is None or target is None:
            message = "source or target node not found"
            await self._set_edge(flow, edge.id, EdgeStatus.FAILED, message)
            return ValidationError(message)

        profile = edge.sync_config.model_copy(deep=True)
        profile.from_path = build_remote_path(source)
        profile.to_path = build_remote_path(target)
        if not profile.name:
            profile.name = f"{source.label}->{target.label}"

        await self._set_edge(
            flow,
            edge.id,
            EdgeStatus.RUNNING,
            f"Syncing {source.label} -> {target.label}",
            started=True,
        )

        tab_id = f"{board.id}-{edge.id}"
        try:
            result = await sync_service.start_sync(
                edge.action, profile, tab_id=tab_id, cancel=flow.cancel_event
            )
        except AppError as exc:
            await self._set_edge(
                flow, edge.id, EdgeStatus.FAILED, f"Failed to start sync: {exc}", ended=True
            )
            return exc

        async with flow.status_lock:
            for edge_status in flow.status.edge_statuses:
                if edge_status.edge_id == edge.id:
                    edge_status.task_id = result.task_id

        error = await sync_service.wait_for_task(result.task_id, flow.cancel_event)
        if error is not None:
            await self._set_edge(
                flow, edge.id, EdgeStatus.FAILED, f"Sync failed: {error}", ended=True
            )
            return error

        await self._set_edge(flow, edge.id, EdgeStatus.COMPLETED, "Sync completed", ended=True)
        return None
