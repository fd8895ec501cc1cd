"""In-memory tabs that correlate runs with their log output."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Any

import pydantic

from syncboard.exceptions import AlreadyExistsError, NotFoundError, ValidationError
from syncboard.schemas.profile import Profile
from syncboard.schemas.tab import Tab, TabState
from syncboard.services.datetime_service import now_utc
from syncboard.services.event_bus import EventType

if TYPE_CHECKING:
    from syncboard.services.event_bus import EventBus

logger = logging.getLogger(__name__)


def _copy(tab: Tab) -> Tab:
    return tab.model_copy(deep=True)


class TabService:
    """Tabs keyed by id, guarded by one lock."""

    def __init__(self, event_bus: EventBus) -> None:
        self._event_bus = event_bus
        self._lock = asyncio.Lock()
        self._tabs: dict[str, Tab] = {}

    def _emit(self, event_type: EventType, tab: Tab, data: Any) -> None:
        self._event_bus.emit(event_type, tabId=tab.id, tabName=tab.name, data=data)

    def _get(self, tab_id: str) -> Tab:
        tab = self._tabs.get(tab_id)
        if tab is None:
            raise NotFoundError(f"tab with ID '{tab_id}' not found")
        return tab

    def _check_unique(self, name: str, tab_id: str = "") -> None:
        for existing in self._tabs.values():
            if existing.id != tab_id and existing.name == name:
                raise AlreadyExistsError(f"tab with name '{name}' already exists")

    async def create_tab(self, name: str) -> Tab:
        if not name:
            raise ValidationError("tab name cannot be empty")
        async with self._lock:
            self._check_unique(name)
            now = now_utc()
            tab = Tab(id=str(uuid.uuid4()), name=name, created_at=now, updated_at=now)
            self._tabs[tab.id] = tab
            snapshot = _copy(tab)
        self._emit(EventType.TAB_CREATED, snapshot, snapshot.model_dump(mode="json"))
        logger.info("Tab %r created (%s)", name, snapshot.id)
        return snapshot

    async def get_tab(self, tab_id: str) -> Tab:
        async with self._lock:
            return _copy(self._get(tab_id))

    async def get_all_tabs(self) -> dict[str, Tab]:
        async with self._lock:
            return {tab_id: _copy(tab) for tab_id, tab in self._tabs.items()}

    async def update_tab(self, tab_id: str, updates: dict[str, Any]) -> Tab:
        """Apply recognised keys from ``updates``; unknown or mistyped values are ignored.

        Recognised keys: ``name``, ``state``, ``profile``, ``currentAction``,
        ``taskId``, ``output`` and ``lastError``.
        """
        async with self._lock:
            tab = self._get(tab_id)
            changes: dict[str, Any] = {}

            name = updates.get("name")
            if isinstance(name, str) and name:
                self._check_unique(name, tab_id)
                changes["name"] = name

            state = updates.get("state")
            if isinstance(state, str):
                try:
                    changes["state"] = TabState(state)
                except ValueError as exc:
                    raise ValidationError(f"invalid tab state '{state}'") from exc

            if "profile" in updates:
                profile = updates["profile"]
                if profile is None or isinstance(profile, Profile):
                    changes["profile"] = profile
                elif isinstance(profile, dict):
                    try:
                        changes["profile"] = Profile.model_validate(profile)
                    except pydantic.ValidationError as exc:
                        raise ValidationError("invalid tab profile", details=str(exc)) from exc

            action = updates.get("currentAction")
            if isinstance(action, str):
                changes["current_action"] = action

            task_id = updates.get("taskId")
            if isinstance(task_id, int) and not isinstance(task_id, bool):
                changes["task_id"] = task_id

            output = updates.get("output")
            if isinstance(output, list) and all(isinstance(line, str) for line in output):
                changes["output"] = list(output)

            last_error = updates.get("lastError")
            if isinstance(last_error, str):
                changes["last_error"] = last_error

            for field_name, value in changes.items():
                setattr(tab, field_name, value)
            tab.updated_at = now_utc()
            snapshot = _copy(tab)

        self._emit(EventType.TAB_UPDATED, snapshot, snapshot.model_dump(mode="json"))
        return snapshot

    async def rename_tab(self, tab_id: str, new_name: str) -> Tab:
        if not new_name:
            raise ValidationError("tab name cannot be empty")
        return await self.update_tab(tab_id, {"name": new_name})

    async def set_tab_profile(self, tab_id: str, profile: Profile | None) -> Tab:
        return await self.update_tab(tab_id, {"profile": profile})

    async def set_tab_state(self, tab_id: str, state: TabState) -> Tab:
        return await self.update_tab(tab_id, {"state": str(state)})

    async def set_tab_error(self, tab_id: str, message: str) -> Tab:
        return await self.update_tab(tab_id, {"state": str(TabState.ERROR), "lastError": message})

    async def add_tab_output(self, tab_id: str, line: str) -> int:
        """Append a line of output; returns the new output length."""
        async with self._lock:
            tab = self._get(tab_id)
            tab.output.append(line)
            tab.updated_at = now_utc()
            total = len(tab.output)
            snapshot = _copy(tab)
        self._emit(EventType.TAB_OUTPUT, snapshot, {"output": line, "total": total})
        return total

    async def clear_tab_output(self, tab_id: str) -> None:
        async with self._lock:
            tab = self._get(tab_id)
            tab.output = []
            tab.updated_at = now_utc()
            snapshot = _copy(tab)
        self._emit(EventType.TAB_UPDATED, snapshot, snapshot.model_dump(mode="json"))

    async def delete_tab(self, tab_id: str) -> None:
        async with self._lock:
            tab = self._tabs.pop(tab_id, None)
            if tab is None:
                raise NotFoundError(f"tab with ID '{tab_id}' not found")
        self._emit(EventType.TAB_DELETED, tab, tab.model_dump(mode="json"))
        logger.info("Tab %r deleted (%s)", tab.name, tab_id)
