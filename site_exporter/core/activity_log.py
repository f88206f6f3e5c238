"""
Activity logging with a persisted ring buffer of important events.

Every message goes to the colored logger. Messages at ``error`` or
``security`` level are also appended to a bounded list in the state store
so an operator can review the last failures without shell access.
"""

import logging
import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List

from ..colored_logger import SECURITY_LEVEL, get_colored_logger
from .context import current_requester
from .state_store import StateStore

LOG_STORE_KEY = "sse_error_logs"
LOG_CAPACITY = 20
PERSISTED_LEVELS = frozenset({"error", "security"})

LEVELS: Dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "security": SECURITY_LEVEL,
}


@dataclass
class LogEntry:
    """One persisted activity log record."""

    time: int
    level: str
    message: str
    user_id: int
    ip: str

    def to_dict(self) -> Dict:
        return asdict(self)


class ActivityLog:
    """Bounded, oldest-first list of log entries kept in a state store."""

    def __init__(
        self,
        store: StateStore,
        capacity: int = LOG_CAPACITY,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.capacity = capacity
        self._clock = clock

    def record(self, message: str, level: str) -> LogEntry:
        requester = current_requester()
        entry = LogEntry(
            time=int(self._clock()),
            level=level,
            message=message,
            user_id=requester.user_id,
            ip=requester.ip,
        )
        self.store.append(LOG_STORE_KEY, entry.to_dict(), self.capacity)
        return entry

    def entries(self) -> List[LogEntry]:
        raw = self.store.get(LOG_STORE_KEY, []) or []
        entries = []
        for item in raw:
            try:
                entries.append(LogEntry(**item))
            except TypeError:
                # Skip rows written by an incompatible version
                continue
        return entries

    def clear(self) -> None:
        self.store.delete(LOG_STORE_KEY)


class ExportLogger:
    """Level-named logging front end shared by all exporter components.

    Messages use lazy %-style formatting. Only ``error`` and ``security``
    messages are rendered eagerly, because they are also persisted.
    """

    def __init__(self, activity_log: ActivityLog, name: str = "site_exporter"):
        self.activity_log = activity_log
        self._logger = get_colored_logger(name)

    def log(self, level: str, msg: str, *args) -> None:
        level = level.lower()
        self._logger.log(LEVELS.get(level, logging.INFO), msg, *args)

        if level in PERSISTED_LEVELS:
            self.activity_log.record(msg % args if args else msg, level)

    def debug(self, msg: str, *args) -> None:
        self.log("debug", msg, *args)

    def info(self, msg: str, *args) -> None:
        self.log("info", msg, *args)

    def warning(self, msg: str, *args) -> None:
        self.log("warning", msg, *args)

    def error(self, msg: str, *args) -> None:
        self.log("error", msg, *args)

    def security(self, msg: str, *args) -> None:
        self.log("security", msg, *args)

    def bind(self, name: str) -> "ExportLogger":
        """Return a logger for module ``name`` that shares this activity log."""
        return ExportLogger(self.activity_log, name)
