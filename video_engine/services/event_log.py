from __future__ import annotations

import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, List, Optional

from video_engine.core.logging import get_logger
from video_engine.domain.models import LogEntry

LEVELS = ("debug", "info", "warning", "error")


class EventLog:
    """Bounded, append-only record of lifecycle events.

    One instance is built at startup and handed to every component that
    records events. Once ``capacity`` is reached the oldest entries are
    dropped first. Every entry is mirrored to the process log.
    """

    def __init__(self, capacity: int = 1000):
        if capacity < 1:
            raise ValueError("event log capacity must be positive")
        self.capacity = capacity
        self._entries: Deque[LogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._logger = get_logger(component="event_log")

    def append(self, entry: LogEntry) -> LogEntry:
        if entry.level not in LEVELS:
            raise ValueError(f"unknown log level: {entry.level}")
        with self._lock:
            self._entries.append(entry)
        emit = getattr(self._logger, entry.level)
        emit(entry.message, asset_id=entry.asset_id, **dict(entry.metadata))
        return entry

    def log(self, level: str, message: str, *, asset_id: Optional[str] = None, **metadata: Any) -> LogEntry:
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc),
            level=level,
            message=message,
            asset_id=asset_id,
            metadata=metadata,
        )
        return self.append(entry)

    def by_asset(self, asset_id: str) -> List[LogEntry]:
        if not asset_id:
            return []
        with self._lock:
            return [entry for entry in self._entries if entry.asset_id == asset_id]

    def by_time_range(self, start: datetime, end: datetime) -> List[LogEntry]:
        with self._lock:
            return [entry for entry in self._entries if start <= entry.timestamp <= end]

    def entries(self) -> List[LogEntry]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["EventLog", "LEVELS"]
