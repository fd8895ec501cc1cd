"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from syncboard.api.backup import router as backup_router
from syncboard.api.boards import router as boards_router
from syncboard.api.events import router as events_router
from syncboard.api.flows import router as flows_router
from syncboard.api.health import router as health_router
from syncboard.api.history import router as history_router
from syncboard.api.logs import router as logs_router
from syncboard.api.operations import router as operations_router
from syncboard.api.profiles import router as profiles_router
from syncboard.api.remotes import crypt_router
from syncboard.api.remotes import router as remotes_router
from syncboard.api.schedules import router as schedules_router
from syncboard.api.settings import router as settings_router
from syncboard.api.sync import router as sync_router
from syncboard.api.tabs import router as tabs_router
from syncboard.config import Settings
from syncboard.database import create_engine
from syncboard.exceptions import AppError, ErrorCode, InternalServerError
from syncboard.services.backup_service import BackupService
from syncboard.services.board_service import BoardService
from syncboard.services.crypt_service import CryptService
from syncboard.services.event_bus import EventBus
from syncboard.services.flow_service import FlowService
from syncboard.services.history_service import HistoryService
from syncboard.services.log_buffer import LogBuffer
from syncboard.services.log_service import LogService
from syncboard.services.notification_service import NotificationService
from syncboard.services.operation_service import OperationService
from syncboard.services.profile_service import ProfileService
from syncboard.services.remote_service import RemoteService
from syncboard.services.scheduler_service import SchedulerService
from syncboard.services.store import init_store
from syncboard.services.sync_service import SyncService
from syncboard.services.tab_service import TabService
from syncboard.services.transfer_engine import RcloneCliEngine

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from syncboard.services.transfer_engine import TransferEngine

logger = logging.getLogger(__name__)

_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.MISSING_FIELD: 400,
    ErrorCode.AUTHENTICATION_ERROR: 401,
    ErrorCode.INVALID_CREDENTIALS: 401,
    ErrorCode.AUTHORIZATION_ERROR: 403,
    ErrorCode.NOT_FOUND_ERROR: 404,
    ErrorCode.CONFLICT_ERROR: 409,
    ErrorCode.ALREADY_EXISTS_ERROR: 409,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.EXTERNAL_SERVICE_ERROR: 502,
    ErrorCode.TRANSFER_ENGINE_ERROR: 502,
    ErrorCode.NETWORK_ERROR: 502,
    ErrorCode.TIMEOUT_ERROR: 504,
}


def status_for_error(exc: AppError) -> int:
    return _STATUS_BY_CODE.get(exc.code, 500)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.INFO if debug else logging.WARNING)


def _ensure_sqlite_dir(database_url: str) -> None:
    if database_url.startswith("sqlite") and "///" in database_url:
        db_path = database_url.split("///", 1)[-1]
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)


def build_services(app: FastAPI, transfer_engine: TransferEngine | None = None) -> None:
    """Construct every service on ``app.state`` around the shared engine and event bus."""
    settings: Settings = app.state.settings
    session_factory = app.state.session_factory
    if transfer_engine is None:
        transfer_engine = getattr(app.state, "transfer_engine", None) or RcloneCliEngine(
            settings.rclone_binary, settings.rclone_config
        )
    app.state.transfer_engine = transfer_engine

    event_bus = EventBus(queue_size=settings.event_queue_size)
    log_service = LogService(LogBuffer(settings.log_buffer_capacity), event_bus)
    history = HistoryService(session_factory, event_bus, limit=settings.history_limit)
    sync_service = SyncService(
        transfer_engine,
        event_bus,
        log_service,
        history=history,
        log_queue_size=settings.sync_log_queue_size,
    )
    notifications = NotificationService(session_factory, event_bus)
    profiles = ProfileService(session_factory, event_bus)
    scheduler = AsyncIOScheduler(timezone="UTC")
    board_service = BoardService(
        session_factory,
        event_bus,
        sync_service=sync_service,
        notifications=notifications,
        scheduler=scheduler,
    )
    flow_service = FlowService(session_factory)
    remote_service = RemoteService(
        transfer_engine,
        event_bus,
        on_deleted=[board_service.on_remote_deleted, flow_service.on_remote_deleted],
    )

    app.state.event_bus = event_bus
    app.state.log_service = log_service
    app.state.history_service = history
    app.state.sync_service = sync_service
    app.state.notification_service = notifications
    app.state.profile_service = profiles
    app.state.scheduler = scheduler
    app.state.scheduler_service = SchedulerService(
        session_factory, event_bus, scheduler, sync_service=sync_service, profiles=profiles
    )
    app.state.board_service = board_service
    app.state.flow_service = flow_service
    app.state.remote_service = remote_service
    app.state.crypt_service = CryptService(transfer_engine, event_bus)
    app.state.operation_service = OperationService(
        transfer_engine, event_bus, log_queue_size=settings.sync_log_queue_size
    )
    app.state.tab_service = TabService(event_bus)
    app.state.backup_service = BackupService(
        board_service, transfer_engine, notifications, app_version=settings.app_version
    )


async def _load_and_schedule(app: FastAPI) -> None:
    try:
        await app.state.board_service.initialize()
        await app.state.scheduler_service.start()
    except Exception:
        logger.exception("Background scheduler startup failed")


async def start_services(app: FastAPI) -> None:
    """Spawn board loading and the cron runtime without blocking startup.

    Services load their state lazily, so requests that arrive first still see it.
    """
    app.state.startup_task = asyncio.create_task(_load_and_schedule(app))


async def stop_services(app: FastAPI) -> None:
    """Stop the scheduler, then cancel and drain every in-flight run."""
    startup = getattr(app.state, "startup_task", None)
    if startup is not None and not startup.done():
        startup.cancel()
        with suppress(asyncio.CancelledError):
            await startup
    for name in ("scheduler_service", "board_service", "operation_service", "sync_service"):
        service = getattr(app.state, name, None)
        if service is None:
            continue
        try:
            await service.shutdown()
        except Exception as exc:
            logger.error("Error during %s shutdown: %s", name, exc, exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Starting SyncBoard (debug=%s)", settings.debug)

    try:
        _ensure_sqlite_dir(settings.database_url)
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        await init_store(engine, session_factory, settings.data_dir)
    except Exception as exc:
        logger.critical("Failed to initialize the store: %s.", exc)
        raise

    build_services(app)
    try:
        await start_services(app)
    except Exception as exc:
        logger.critical("Failed to start services: %s.", exc)
        raise

    yield

    await stop_services(app)

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("SyncBoard stopped")


def create_app(
    settings: Settings | None = None, transfer_engine: TransferEngine | None = None
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="SyncBoard",
        description="Multi-remote file-sync orchestrator",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings
    app.state.transfer_engine = transfer_engine

    app.add_middleware(GZipMiddleware, minimum_size=500)

    cors_origins = (
        settings.cors_origins
        if settings.cors_origins
        else (["http://localhost:5173", "http://localhost:8000"] if settings.debug else [])
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(profiles_router)
    app.include_router(boards_router)
    app.include_router(flows_router)
    app.include_router(schedules_router)
    app.include_router(history_router)
    app.include_router(logs_router)
    app.include_router(tabs_router)
    app.include_router(sync_router)
    app.include_router(remotes_router)
    app.include_router(crypt_router)
    app.include_router(operations_router)
    app.include_router(backup_router)
    app.include_router(settings_router)
    app.include_router(events_router)

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        status_code = status_for_error(exc)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            "[%s] %s in %s %s: %s",
            exc.trace_id,
            type(exc).__name__,
            request.method,
            request.url.path,
            exc,
        )
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        message = str(exc) or "Invalid value"
        return JSONResponse(
            status_code=422,
            content={"detail": message},
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Database temporarily unavailable"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "syncboard.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
