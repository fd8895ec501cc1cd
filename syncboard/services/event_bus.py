"""Best-effort event bus that fans events out to UI subscribers.

Events are flat JSON-ready dicts: ``{"type": ..., "timestamp": ..., **fields}``.
The log buffer is the durable record; a subscriber that misses an event
reconciles by polling ``/api/logs/since``. Publishing never raises.
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from typing import Any

from syncboard.services.datetime_service import format_iso, now_utc

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    # Sync
    SYNC_STARTED = "sync:started"
    SYNC_PROGRESS = "sync:progress"
    SYNC_COMPLETED = "sync:completed"
    SYNC_FAILED = "sync:failed"
    SYNC_CANCELLED = "sync:cancelled"

    # Config and profiles
    CONFIG_UPDATED = "config:updated"
    PROFILE_ADDED = "profile:added"
    PROFILE_UPDATED = "profile:updated"
    PROFILE_DELETED = "profile:deleted"

    # Remotes
    REMOTE_ADDED = "remote:added"
    REMOTE_UPDATED = "remote:updated"
    REMOTE_DELETED = "remote:deleted"

    # Tabs
    TAB_CREATED = "tab:created"
    TAB_UPDATED = "tab:updated"
    TAB_DELETED = "tab:deleted"
    TAB_OUTPUT = "tab:output"

    # Boards
    BOARD_UPDATED = "board:updated"
    BOARD_EXECUTION_STARTED = "board:execution:started"
    BOARD_EXECUTION_PROGRESS = "board:execution:progress"
    BOARD_EXECUTION_COMPLETED = "board:execution:completed"
    BOARD_EXECUTION_FAILED = "board:execution:failed"
    BOARD_EXECUTION_CANCELLED = "board:execution:cancelled"

    # Schedules
    SCHEDULE_ADDED = "schedule:added"
    SCHEDULE_UPDATED = "schedule:updated"
    SCHEDULE_DELETED = "schedule:deleted"
    SCHEDULE_TRIGGERED = "schedule:triggered"

    # History
    HISTORY_ADDED = "history:added"
    HISTORY_CLEARED = "history:cleared"

    # Crypt remotes
    CRYPT_REMOTE_CREATED = "crypt:created"
    CRYPT_REMOTE_DELETED = "crypt:deleted"

    # One-off operations
    OPERATION_STARTED = "operation:started"
    OPERATION_PROGRESS = "operation:progress"
    OPERATION_COMPLETED = "operation:completed"
    OPERATION_FAILED = "operation:failed"

    ERROR_OCCURRED = "error:occurred"
    LOG_ENTRY = "log:entry"
    NOTIFICATION = "notification"


def make_event(event_type: EventType | str, **fields: Any) -> dict[str, Any]:
    """Build an event envelope stamped with the current time."""
    return {"type": str(event_type), "timestamp": format_iso(now_utc()), **fields}


def sync_event(
    event_type: EventType,
    tab_id: str,
    action: str,
    status: str,
    message: str,
    seq_no: int | None = None,
) -> dict[str, Any]:
    event = make_event(event_type, tabId=tab_id, action=action, status=status, message=message)
    if seq_no is not None:
        event["seqNo"] = seq_no
    return event


def board_event(
    event_type: EventType,
    board_id: str,
    status: str,
    message: str = "",
    edge_id: str = "",
) -> dict[str, Any]:
    return make_event(
        event_type, boardId=board_id, edgeId=edge_id, status=status, message=message
    )


def error_event(code: str, message: str, details: str = "", tab_id: str = "") -> dict[str, Any]:
    return make_event(
        EventType.ERROR_OCCURRED, code=code, message=message, details=details, tabId=tab_id
    )


def operation_event(
    event_type: EventType,
    tab_id: str,
    operation: str,
    status: str,
    message: str,
) -> dict[str, Any]:
    return make_event(
        event_type, tabId=tab_id, operation=operation, status=status, message=message
    )


class EventBus:
    """Fan-out of events to subscriber queues.

    Each subscriber owns a bounded ``asyncio.Queue``. A full queue drops the
    event for that subscriber only.
    """

    def __init__(self, queue_size: int = 1000) -> None:
        self._queue_size = queue_size
        self._subscribers: set[asyncio.Queue[dict[str, Any]]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        logger.debug("Event subscriber added (%d total)", len(self._subscribers))
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        if queue in self._subscribers:
            self._subscribers.discard(queue)
            logger.debug("Event subscriber removed (%d total)", len(self._subscribers))

    def publish(self, event: dict[str, Any]) -> None:
        """Deliver ``event`` to every subscriber without blocking.

        Failures are logged and never reach the caller.
        """
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "Event queue full, dropping %s for one subscriber", event.get("type")
                )
            except RuntimeError as exc:
                logger.warning("Failed to deliver event %s: %s", event.get("type"), exc)

    def emit(self, event_type: EventType | str, **fields: Any) -> None:
        """Build and publish an event in one call."""
        self.publish(make_event(event_type, **fields))
