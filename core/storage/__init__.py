"""Core storage - key-value backends for best-effort persistence."""

from core.storage.kv import (
    KeyValueStore,
    SessionKeyValueStore,
    SqliteKeyValueStore,
    NullKeyValueStore,
    select_backend,
)

__all__ = [
    "KeyValueStore",
    "SessionKeyValueStore",
    "SqliteKeyValueStore",
    "NullKeyValueStore",
    "select_backend",
]
