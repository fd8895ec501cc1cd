"""Shared API dependencies: settings, DB session and the service singletons."""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from syncboard.config import Settings
from syncboard.services.backup_service import BackupService
from syncboard.services.board_service import BoardService
from syncboard.services.crypt_service import CryptService
from syncboard.services.event_bus import EventBus
from syncboard.services.flow_service import FlowService
from syncboard.services.history_service import HistoryService
from syncboard.services.log_service import LogService
from syncboard.services.notification_service import NotificationService
from syncboard.services.operation_service import OperationService
from syncboard.services.profile_service import ProfileService
from syncboard.services.remote_service import RemoteService
from syncboard.services.scheduler_service import SchedulerService
from syncboard.services.sync_service import SyncService
from syncboard.services.tab_service import TabService


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def get_event_bus(request: Request) -> EventBus:
    event_bus: EventBus = request.app.state.event_bus
    return event_bus


def get_log_service(request: Request) -> LogService:
    log_service: LogService = request.app.state.log_service
    return log_service


def get_sync_service(request: Request) -> SyncService:
    sync_service: SyncService = request.app.state.sync_service
    return sync_service


def get_board_service(request: Request) -> BoardService:
    board_service: BoardService = request.app.state.board_service
    return board_service


def get_flow_service(request: Request) -> FlowService:
    flow_service: FlowService = request.app.state.flow_service
    return flow_service


def get_profile_service(request: Request) -> ProfileService:
    profile_service: ProfileService = request.app.state.profile_service
    return profile_service


def get_scheduler_service(request: Request) -> SchedulerService:
    scheduler_service: SchedulerService = request.app.state.scheduler_service
    return scheduler_service


def get_history_service(request: Request) -> HistoryService:
    history_service: HistoryService = request.app.state.history_service
    return history_service


def get_tab_service(request: Request) -> TabService:
    tab_service: TabService = request.app.state.tab_service
    return tab_service


def get_remote_service(request: Request) -> RemoteService:
    remote_service: RemoteService = request.app.state.remote_service
    return remote_service


def get_crypt_service(request: Request) -> CryptService:
    crypt_service: CryptService = request.app.state.crypt_service
    return crypt_service


def get_operation_service(request: Request) -> OperationService:
    operation_service: OperationService = request.app.state.operation_service
    return operation_service


def get_backup_service(request: Request) -> BackupService:
    backup_service: BackupService = request.app.state.backup_service
    return backup_service


def get_notification_service(request: Request) -> NotificationService:
    notification_service: NotificationService = request.app.state.notification_service
    return notification_service
