"""Shared test fixtures for SyncBoard."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from syncboard.config import Settings
from syncboard.exceptions import NotFoundError, TransferEngineError
from syncboard.main import build_services, create_app, start_services, stop_services
from syncboard.schemas.remote import FileEntry, RemoteInfo, RemoteSize, RemoteUsage
from syncboard.services.event_bus import EventBus
from syncboard.services.log_buffer import LogBuffer
from syncboard.services.log_service import LogService
from syncboard.services.store import init_store
from syncboard.services.sync_service import SyncService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from syncboard.schemas.profile import Profile
    from syncboard.services.transfer_engine import LogSink, SyncDirection


class FakeTransferEngine:
    """In-memory ``TransferEngine`` with scripted delays and failures.

    Transfers are keyed by profile name: ``delays`` overrides ``delay`` and a
    name in ``failures`` makes the call raise ``TransferEngineError``.
    """

    def __init__(self) -> None:
        self.delay = 0.0
        self.delays: dict[str, float] = {}
        self.failures: set[str] = set()
        self.output: list[str] = []
        self.calls: list[tuple[str, Profile]] = []
        self.probes: list[tuple[str, str]] = []
        self.remotes: dict[str, RemoteInfo] = {}
        self.init_calls = 0
        self.active = 0
        self.max_active = 0

    async def init_config(self) -> None:
        self.init_calls += 1

    async def _transfer(self, action: str, profile: Profile, log_sink: LogSink) -> None:
        self.calls.append((action, profile.model_copy(deep=True)))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            for line in self.output:
                await log_sink.put(line)
            delay = self.delays.get(profile.name, self.delay)
            if delay:
                await asyncio.sleep(delay)
            if profile.name in self.failures:
                raise TransferEngineError(f"transfer of {profile.name} failed", details="exit 1")
        finally:
            self.active -= 1

    async def sync(self, direction: SyncDirection, profile: Profile, log_sink: LogSink) -> None:
        await self._transfer(str(direction), profile, log_sink)

    async def bisync(self, profile: Profile, resync: bool, log_sink: LogSink) -> None:
        await self._transfer("bi-resync" if resync else "bi", profile, log_sink)

    async def copy(self, profile: Profile, log_sink: LogSink) -> None:
        await self._transfer("copy", profile, log_sink)

    async def move(self, profile: Profile, log_sink: LogSink) -> None:
        await self._transfer("move", profile, log_sink)

    async def check(self, profile: Profile, log_sink: LogSink) -> None:
        await self._transfer("check", profile, log_sink)

    async def list_remotes(self) -> list[RemoteInfo]:
        return [remote.model_copy(deep=True) for remote in self.remotes.values()]

    async def create_remote(
        self, name: str, remote_type: str, config: dict[str, str], *, obscure: bool = False
    ) -> None:
        if name in self.failures:
            raise TransferEngineError(f"config create {name} failed")
        _ = obscure
        self.remotes[name] = RemoteInfo(name=name, type=remote_type, config=dict(config))

    async def update_remote(self, name: str, config: dict[str, str]) -> None:
        self.remotes[name].config.update(config)

    async def delete_remote(self, name: str) -> None:
        self.remotes.pop(name, None)

    async def test_remote(self, name: str) -> None:
        if name in self.failures:
            raise TransferEngineError(f"lsd {name}: failed")

    async def list_files(self, remote_path: str, recursive: bool = False) -> list[FileEntry]:
        self.probes.append(("lsjson", remote_path))
        if remote_path.endswith("missing"):
            raise NotFoundError(f"path not found: {remote_path}")
        entries = [FileEntry(path="a.txt", name="a.txt", size=3)]
        if recursive:
            entries.append(FileEntry(path="dir/b.txt", name="b.txt", size=5))
        return entries

    async def delete_file(self, remote_path: str) -> None:
        self.probes.append(("deletefile", remote_path))

    async def purge(self, remote_path: str) -> None:
        self.probes.append(("purge", remote_path))

    async def mkdir(self, remote_path: str) -> None:
        self.probes.append(("mkdir", remote_path))

    async def about(self, remote_name: str) -> RemoteUsage:
        self.probes.append(("about", remote_name))
        return RemoteUsage(total=100, used=40, free=60)

    async def get_size(self, remote_path: str) -> RemoteSize:
        self.probes.append(("size", remote_path))
        return RemoteSize(count=2, bytes=8)


class EventRecorder:
    """Subscribes to an event bus and collects everything published."""

    def __init__(self, event_bus: EventBus) -> None:
        self._queue = event_bus.subscribe()
        self.events: list[dict[str, Any]] = []

    def drain(self) -> list[dict[str, Any]]:
        while not self._queue.empty():
            self.events.append(self._queue.get_nowait())
        return self.events

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [event for event in self.drain() if event["type"] == event_type]

    def types(self) -> list[str]:
        return [event["type"] for event in self.drain()]


@asynccontextmanager
async def create_test_client(
    settings: Settings, engine: FakeTransferEngine | None = None
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (DB, store,
    services, scheduler) because ASGITransport does not trigger it.
    """
    from syncboard.database import create_engine as create_db_engine

    transfer_engine = engine if engine is not None else FakeTransferEngine()
    app = create_app(settings, transfer_engine=transfer_engine)
    settings.validate_runtime_security()

    db_engine, session_factory = create_db_engine(settings)
    app.state.engine = db_engine
    app.state.session_factory = session_factory
    await init_store(db_engine, session_factory, settings.data_dir)

    build_services(app, transfer_engine)
    await start_services(app)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await stop_services(app)
    await db_engine.dispose()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    db_path = tmp_path / "test.db"
    return Settings(
        debug=False,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        data_dir=tmp_path / "data",
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory over a freshly initialized store."""
    factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    await init_store(db_engine, factory)
    return factory


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus(queue_size=10_000)


@pytest.fixture
def events(event_bus: EventBus) -> EventRecorder:
    return EventRecorder(event_bus)


@pytest.fixture
def log_service(event_bus: EventBus) -> LogService:
    return LogService(LogBuffer(), event_bus)


@pytest.fixture
def fake_engine() -> FakeTransferEngine:
    return FakeTransferEngine()


@pytest.fixture
async def sync_service(
    fake_engine: FakeTransferEngine, event_bus: EventBus, log_service: LogService
) -> AsyncGenerator[SyncService]:
    service = SyncService(fake_engine, event_bus, log_service)
    yield service
    await service.shutdown()
