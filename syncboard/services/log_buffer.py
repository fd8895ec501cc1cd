"""Sequenced ring buffer of progress lines."""

from __future__ import annotations

import itertools
import threading
from collections import deque

from syncboard.schemas.log import LogEntry, LogLevel
from syncboard.services.datetime_service import now_utc

DEFAULT_CAPACITY = 5000


class LogBuffer:
    """Fixed-capacity ring of ``LogEntry`` values.

    Sequence numbers come from a process-wide counter and are never reused,
    including after ``clear``. Once full, the oldest entry is dropped.
    Appends may come from any thread.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            capacity = DEFAULT_CAPACITY
        self._capacity = capacity
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._counter = itertools.count(1)
        self._current_seq = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, tab_id: str, message: str, level: LogLevel | str = LogLevel.INFO) -> int:
        """Store a line and return its sequence number."""
        with self._lock:
            seq_no = next(self._counter)
            self._entries.append(
                LogEntry(
                    seq_no=seq_no,
                    tab_id=tab_id,
                    message=message,
                    timestamp=now_utc(),
                    level=LogLevel(level),
                )
            )
            self._current_seq = seq_no
        return seq_no

    def get_since(self, tab_id: str, after_seq: int) -> list[LogEntry]:
        """Entries with ``seq_no > after_seq``, optionally for one tab, oldest first."""
        with self._lock:
            return [
                entry
                for entry in self._entries
                if entry.seq_no > after_seq and (not tab_id or entry.tab_id == tab_id)
            ]

    def get_latest(self, tab_id: str, count: int) -> list[LogEntry]:
        """The last ``count`` entries after filtering by tab."""
        if count <= 0:
            return []
        with self._lock:
            matching = [entry for entry in self._entries if not tab_id or entry.tab_id == tab_id]
        return matching[-count:]

    def current_seq(self) -> int:
        # A plain int read is atomic under the GIL.
        return self._current_seq

    def clear(self, tab_id: str = "") -> None:
        """Drop entries for one tab, or every entry when ``tab_id`` is empty."""
        with self._lock:
            if not tab_id:
                self._entries.clear()
                return
            kept = [entry for entry in self._entries if entry.tab_id != tab_id]
            self._entries = deque(kept, maxlen=self._capacity)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)
