"""
Key-value state stores for the activity log and rate-limit marks.

Two implementations share the ``StateStore`` protocol:
- MemoryStateStore: per-process dictionary with per-key expiry
- SQLiteStateStore: single-table SQLite database for persistence across runs

Values must be JSON-serialisable so both stores behave identically.
"""

import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from ..colored_logger import get_colored_logger

logger = get_colored_logger(__name__)


class StateStore(Protocol):
    """Protocol for the small key-value store used by the exporter."""

    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def append(self, key: str, item: Any, max_items: int) -> List[Any]:
        """Append to a list value, evicting the oldest items beyond max_items."""
        ...


class MemoryStateStore:
    """In-process store with optional per-key expiry."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._values: Dict[str, Any] = {}
        self._expires: Dict[str, float] = {}
        self._lock = threading.Lock()

    def _expired(self, key: str) -> bool:
        expires_at = self._expires.get(key)
        return expires_at is not None and self._clock() >= expires_at

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._values:
                return default

            if self._expired(key):
                del self._values[key]
                del self._expires[key]
                return default

            return self._values[key]

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            self._values[key] = value
            if ttl is not None:
                self._expires[key] = self._clock() + ttl
            else:
                self._expires.pop(key, None)

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)
            self._expires.pop(key, None)

    def append(self, key: str, item: Any, max_items: int) -> List[Any]:
        items = list(self.get(key, []) or [])
        items.append(item)
        if len(items) > max_items:
            items = items[-max_items:]
        self.set(key, items)
        return items

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
            self._expires.clear()


class SQLiteStateStore:
    """
    SQLite-backed store.

    Features:
    - One ``state`` table keyed by name, values stored as JSON text
    - Expired rows read as absent and are purged lazily
    - Thread-safe operations behind a single lock
    """

    def __init__(self, db_path: str, clock: Callable[[], float] = time.time):
        self.db_path = Path(db_path)
        self._clock = clock
        self._lock = threading.Lock()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            str(self.db_path), timeout=30.0, check_same_thread=False
        )
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._init_database()

        logger.debug("State store initialized with database: %s", self.db_path)

    def _init_database(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,  -- JSON
                    expires_at REAL
                )
            """
            )
            self._conn.commit()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            row = self._conn.execute(
                "SELECT value, expires_at FROM state WHERE key = ?", (key,)
            ).fetchone()

            if row is None:
                return default

            value, expires_at = row
            if expires_at is not None and self._clock() >= expires_at:
                self._conn.execute("DELETE FROM state WHERE key = ?", (key,))
                self._conn.commit()
                return default

            try:
                return json.loads(value)
            except json.JSONDecodeError as e:
                logger.error("Corrupt state value for key %s: %s", key, e)
                return default

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO state (key, value, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    expires_at = excluded.expires_at
            """,
                (key, json.dumps(value), expires_at),
            )
            self._conn.commit()

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM state WHERE key = ?", (key,))
            self._conn.commit()

    def append(self, key: str, item: Any, max_items: int) -> List[Any]:
        items = list(self.get(key, []) or [])
        items.append(item)
        if len(items) > max_items:
            items = items[-max_items:]
        self.set(key, items)
        return items

    def close(self) -> None:
        with self._lock:
            self._conn.close()
