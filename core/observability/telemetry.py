"""
Telemetry Counters for Degraded Code Paths

Named, persistent integer counters recording how often a fallback or
degradation path was taken:
- Capability fallbacks (vendor column, scheduled time columns)
- Permission denials on line-item writes
- Silently dropped / merged line items

Counters live in a best-effort key-value backend chosen at initialization
(session store preferred, durable store as fallback, no-op when neither is
available). Every public method swallows backend failures: telemetry must
never break the code path it observes.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Dict, Iterable, Optional, Union

from core.observability.logging import get_logger
from core.storage.kv import (
    KeyValueStore,
    NullKeyValueStore,
    SessionKeyValueStore,
    SqliteKeyValueStore,
    select_backend,
)


logger = get_logger(__name__)


COUNTER_PREFIX = "telemetry.counter."
LAST_RESET_KEY = "telemetry.meta.last_reset_at"


class TelemetryKey(str, Enum):
    """Well-known counter names."""
    VENDOR_ID_FALLBACK = "vendor_id_fallback"
    SCHEDULED_TIMES_FALLBACK = "scheduled_times_fallback"
    PERMISSION_DENIED = "permission_denied"
    LINE_ITEMS_DROPPED = "line_items_dropped"
    LINE_ITEMS_MERGED = "line_items_merged"


CounterKey = Union[TelemetryKey, str]


def _counter_name(key: CounterKey) -> str:
    return key.value if isinstance(key, Enum) else str(key)


def _parse_count(raw: Optional[str]) -> int:
    """Parse a stored counter value; anything malformed reads as 0."""
    if raw is None:
        return 0
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return 0
    return value if value > 0 else 0


class TelemetryCounters:
    """
    Best-effort persistent counters.

    Usage:
        telemetry = TelemetryCounters.instance()
        telemetry.increment(TelemetryKey.VENDOR_ID_FALLBACK)
        telemetry.get(TelemetryKey.VENDOR_ID_FALLBACK)  # -> 1
    """

    _instance: Optional["TelemetryCounters"] = None
    _instance_lock = Lock()

    def __init__(self, backends: Iterable[KeyValueStore] = ()):
        """Initialize counters over an ordered list of candidate backends.

        Args:
            backends: Stores in preference order. The first one whose
                ``is_available()`` check succeeds is used for counters.
                Stores named "session" and "durable" are also remembered
                for the persist/restore copy operations.
        """
        candidates = list(backends)
        self._store: KeyValueStore = select_backend(candidates)
        self._session = self._find_available(candidates, SessionKeyValueStore.name)
        self._durable = self._find_available(candidates, SqliteKeyValueStore.name)
        self._lock = Lock()

    @staticmethod
    def _find_available(candidates, name: str) -> Optional[KeyValueStore]:
        for store in candidates:
            if store.name != name:
                continue
            try:
                if store.is_available():
                    return store
            except Exception:
                continue
        return None

    @classmethod
    def from_settings(cls, settings=None) -> "TelemetryCounters":
        """Build counters from TELEMETRY_BACKENDS / TELEMETRY_DB_PATH."""
        if settings is None:
            from core.config import get_settings
            settings = get_settings()

        backends = []
        for name in settings.telemetry_backends:
            if name == SessionKeyValueStore.name:
                backends.append(SessionKeyValueStore())
            elif name == SqliteKeyValueStore.name:
                backends.append(SqliteKeyValueStore(settings.telemetry_db_path))
            else:
                logger.warning(f"Unknown telemetry backend ignored: {name}")
        return cls(backends)

    @classmethod
    def instance(cls) -> "TelemetryCounters":
        """Get the process-wide instance."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls.from_settings()
        return cls._instance

    @property
    def backend_in_use(self) -> str:
        return self._store.name

    @property
    def available(self) -> bool:
        return not isinstance(self._store, NullKeyValueStore)

    # =========================================================================
    # Counters
    # =========================================================================

    def increment(self, key: CounterKey, amount: int = 1) -> None:
        """Add ``amount`` to a counter, creating it on first use."""
        if not self.available or amount <= 0:
            return
        name = _counter_name(key)
        try:
            with self._lock:
                current = _parse_count(self._store.get(COUNTER_PREFIX + name))
                self._store.set(COUNTER_PREFIX + name, str(current + amount))
        except Exception as e:
            logger.warning(f"Failed to increment telemetry counter {name}: {e}")

    def get(self, key: CounterKey) -> int:
        """Read a counter. Missing, malformed or unreadable values read as 0."""
        if not self.available:
            return 0
        name = _counter_name(key)
        try:
            return _parse_count(self._store.get(COUNTER_PREFIX + name))
        except Exception as e:
            logger.warning(f"Failed to read telemetry counter {name}: {e}")
            return 0

    def get_all(self) -> Dict[str, int]:
        """Snapshot of every counter created so far."""
        return self._read_counters(self._store)

    def reset(self, key: CounterKey) -> None:
        """Set one counter back to 0."""
        if not self.available:
            return
        name = _counter_name(key)
        try:
            with self._lock:
                self._store.set(COUNTER_PREFIX + name, "0")
        except Exception as e:
            logger.warning(f"Failed to reset telemetry counter {name}: {e}")

    def reset_all(self) -> None:
        """Reset every counter and stamp the reset time."""
        if not self.available:
            return
        try:
            with self._lock:
                for full_key in self._store.keys(COUNTER_PREFIX):
                    self._store.set(full_key, "0")
                self._store.set(LAST_RESET_KEY, datetime.now(timezone.utc).isoformat())
        except Exception as e:
            logger.warning(f"Failed to reset telemetry counters: {e}")

    # =========================================================================
    # Summary / Export
    # =========================================================================

    def last_reset_at(self) -> Optional[datetime]:
        if not self.available:
            return None
        try:
            raw = self._store.get(LAST_RESET_KEY)
            if not raw:
                return None
            stamp = datetime.fromisoformat(raw)
            # naive stamps are UTC
            return stamp if stamp.tzinfo else stamp.replace(tzinfo=timezone.utc)
        except Exception:
            return None

    def summary(self) -> Dict[str, Any]:
        """Get a summary of all counters with reset bookkeeping."""
        now = datetime.now(timezone.utc)
        last_reset = self.last_reset_at()
        return {
            "timestamp": now.isoformat(),
            "counters": self.get_all(),
            "backend_in_use": self.backend_in_use,
            "last_reset_at": last_reset.isoformat() if last_reset else None,
            "seconds_since_reset": (
                max(0, int((now - last_reset).total_seconds())) if last_reset else None
            ),
        }

    def export_json(self) -> str:
        """Serialize counters as ``{"timestamp": ..., "counters": {...}}``."""
        return json.dumps({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "counters": self.get_all(),
        })

    def import_json(self, serialized: str) -> bool:
        """Load counters produced by ``export_json``.

        Returns:
            False for invalid JSON, a missing or empty ``counters`` object,
            or when no backend is available; True otherwise.
        """
        if not self.available:
            return False
        try:
            data = json.loads(serialized)
        except (TypeError, ValueError):
            return False

        counters = data.get("counters") if isinstance(data, dict) else None
        if not isinstance(counters, dict) or not counters:
            return False

        try:
            with self._lock:
                for name, value in counters.items():
                    self._store.set(COUNTER_PREFIX + str(name), str(_parse_count(value)))
        except Exception as e:
            logger.warning(f"Failed to import telemetry counters: {e}")
            return False
        return True

    # =========================================================================
    # Session <-> Durable Copies
    # =========================================================================

    def persist_to_durable(self) -> bool:
        """Copy session counters into the durable store."""
        return self._copy(self._session, self._durable)

    def restore_from_durable(self) -> bool:
        """Copy durable counters into the session store."""
        return self._copy(self._durable, self._session)

    def _copy(self, source: Optional[KeyValueStore], target: Optional[KeyValueStore]) -> bool:
        if source is None or target is None or source is target:
            return False
        try:
            counters = self._read_counters(source)
            if not counters:
                return False
            with self._lock:
                for name, value in counters.items():
                    target.set(COUNTER_PREFIX + name, str(value))
            return True
        except Exception as e:
            logger.warning(f"Failed to copy telemetry counters {source.name} -> {target.name}: {e}")
            return False

    @staticmethod
    def _read_counters(store: KeyValueStore) -> Dict[str, int]:
        if isinstance(store, NullKeyValueStore):
            return {}
        try:
            return {
                full_key[len(COUNTER_PREFIX):]: _parse_count(store.get(full_key))
                for full_key in store.keys(COUNTER_PREFIX)
            }
        except Exception as e:
            logger.warning(f"Failed to read telemetry counters from {store.name}: {e}")
            return {}


# =============================================================================
# Module-level convenience functions
# =============================================================================

def get_telemetry() -> TelemetryCounters:
    """Get the global telemetry counters."""
    return TelemetryCounters.instance()
