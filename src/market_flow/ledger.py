"""Activity log.

Newest-first, bounded list of what the scheduler and manual actions did.
Entries are mirrored to the standard logger.
"""

import logging
from collections import deque

from .models import LogEntry, Severity

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 500

_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.ERROR: logging.ERROR,
}


class ActivityLog:
    """Ring buffer of LogEntry, oldest entries dropped past ``capacity``."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        # appendleft keeps index 0 as the newest entry
        self._entries: deque[LogEntry] = deque(maxlen=capacity)

    def append(self, message: str, severity: Severity = Severity.INFO) -> LogEntry:
        entry = LogEntry(message=message, severity=severity)
        self._entries.appendleft(entry)
        logger.log(_LEVELS[severity], "[%s] %s", severity.value, message)
        return entry

    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
