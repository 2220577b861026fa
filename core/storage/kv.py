"""Key-value storage backends for telemetry counters.

Provides interchangeable string key-value stores:
- SessionKeyValueStore: Process-scoped, in-memory (short-lived)
- SqliteKeyValueStore: Durable, survives restarts
- NullKeyValueStore: Always unavailable; every call is a no-op

Backends are checked with ``is_available()`` and the first available one wins
(see ``select_backend``). Callers fall back to ``NullKeyValueStore`` when none
of the configured backends can be used.
"""

import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union


class KeyValueStore(ABC):
    """Abstract base class for string key-value storage."""

    #: Short name reported in telemetry summaries
    name: str = "abstract"

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the store can be used right now."""
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Retrieve a stored value, or None if absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value, replacing any existing one."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it existed."""
        pass

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        """List stored keys starting with ``prefix``."""
        pass

    def clear(self, prefix: str = "") -> None:
        """Delete every key starting with ``prefix``."""
        for key in self.keys(prefix):
            self.delete(key)


class SessionKeyValueStore(KeyValueStore):
    """In-memory store that lives as long as the process.

    WARNING: Values are lost on restart. Copy them to a durable store if
    they need to survive.
    """

    name = "session"

    def __init__(self):
        self._values: Dict[str, str] = {}
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        return True

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            if key in self._values:
                del self._values[key]
                return True
            return False

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return [key for key in self._values if key.startswith(prefix)]


class SqliteKeyValueStore(KeyValueStore):
    """SQLite-backed durable store.

    Table layout:
        telemetry_kv(key TEXT PRIMARY KEY, value TEXT, updated_at TEXT)
    """

    name = "durable"

    def __init__(self, db_path: Union[str, Path], table: str = "telemetry_kv"):
        self.db_path = Path(db_path)
        self.table = table

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path))

    def is_available(self) -> bool:
        """Available if the database can be opened and the table created."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._connect()
            try:
                conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {self.table} (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                """)
                conn.commit()
            finally:
                conn.close()
            return True
        except (sqlite3.Error, OSError):
            return False

    def get(self, key: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute(
                f"SELECT value FROM {self.table} WHERE key = ?", (key,)
            ).fetchone()
            return row[0] if row else None
        finally:
            conn.close()

    def set(self, key: str, value: str) -> None:
        conn = self._connect()
        try:
            conn.execute(
                f"INSERT OR REPLACE INTO {self.table} (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    def delete(self, key: str) -> bool:
        conn = self._connect()
        try:
            cursor = conn.execute(f"DELETE FROM {self.table} WHERE key = ?", (key,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def keys(self, prefix: str = "") -> List[str]:
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT key FROM {self.table} WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
            return [r[0] for r in rows]
        finally:
            conn.close()


class NullKeyValueStore(KeyValueStore):
    """Store used when nothing else is available. Never raises."""

    name = "none"

    def is_available(self) -> bool:
        return False

    def get(self, key: str) -> Optional[str]:
        return None

    def set(self, key: str, value: str) -> None:
        return None

    def delete(self, key: str) -> bool:
        return False

    def keys(self, prefix: str = "") -> List[str]:
        return []


def select_backend(candidates: Iterable[KeyValueStore]) -> KeyValueStore:
    """Return the first available store, or a NullKeyValueStore.

    Args:
        candidates: Stores in preference order

    Returns:
        The selected store
    """
    for store in candidates:
        try:
            if store.is_available():
                return store
        except Exception:
            continue
    return NullKeyValueStore()
