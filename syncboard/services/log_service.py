"""Log service: buffer first, then a best-effort event."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from syncboard.schemas.log import LogLevel
from syncboard.services.event_bus import EventType, make_event, sync_event

if TYPE_CHECKING:
    from syncboard.schemas.log import LogEntry
    from syncboard.services.event_bus import EventBus
    from syncboard.services.log_buffer import LogBuffer

logger = logging.getLogger(__name__)


class LogService:
    """Single entry point for progress lines shown in the UI."""

    def __init__(self, buffer: LogBuffer, event_bus: EventBus) -> None:
        self._buffer = buffer
        self._event_bus = event_bus

    @property
    def buffer(self) -> LogBuffer:
        return self._buffer

    def log(self, tab_id: str, message: str, level: LogLevel | str = LogLevel.INFO) -> int:
        """Append a line and publish ``log:entry``; returns the sequence number."""
        level = LogLevel(level)
        seq_no = self._buffer.append(tab_id, message, level)
        self._event_bus.publish(
            make_event(
                EventType.LOG_ENTRY,
                tabId=tab_id,
                message=message,
                level=str(level),
                seqNo=seq_no,
            )
        )
        return seq_no

    def log_sync(self, tab_id: str, action: str, status: str, message: str) -> int:
        """Append a progress line and publish ``sync:progress`` with its sequence number."""
        seq_no = self._buffer.append(tab_id, message, LogLevel.PROGRESS)
        self._event_bus.publish(
            sync_event(EventType.SYNC_PROGRESS, tab_id, action, status, message, seq_no=seq_no)
        )
        return seq_no

    def get_logs_since(self, tab_id: str, after_seq: int) -> list[LogEntry]:
        return self._buffer.get_since(tab_id, after_seq)

    def get_latest_logs(self, tab_id: str, count: int) -> list[LogEntry]:
        return self._buffer.get_latest(tab_id, count)

    def current_seq(self) -> int:
        return self._buffer.current_seq()

    def clear_logs(self, tab_id: str = "") -> None:
        self._buffer.clear(tab_id)
        logger.debug("Cleared logs for %s", tab_id or "all tabs")

    def buffer_size(self) -> int:
        return self._buffer.size()
