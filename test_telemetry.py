"""
Telemetry Counter Tests

Validates best-effort counters over the key-value backends:
1. Backend selection falls through to the first available store
2. Counters round-trip, malformed values read as 0
3. The null backend is a silent no-op
4. Session <-> durable copies
5. Export / import
"""

import json
from datetime import datetime, timezone

import pytest

from core.config import Settings
from core.observability.telemetry import (
    COUNTER_PREFIX,
    LAST_RESET_KEY,
    TelemetryCounters,
    TelemetryKey,
)
from core.storage.kv import (
    NullKeyValueStore,
    SessionKeyValueStore,
    SqliteKeyValueStore,
    select_backend,
)


class BrokenStore(SessionKeyValueStore):
    """Available store whose reads and writes fail."""

    def get(self, key):
        raise RuntimeError("backend offline")

    def set(self, key, value):
        raise RuntimeError("backend offline")

    def keys(self, prefix=""):
        raise RuntimeError("backend offline")


class UnavailableStore(SessionKeyValueStore):
    def is_available(self):
        return False


class TestKeyValueStores:
    """Backend behavior."""

    def test_session_store_round_trip(self):
        store = SessionKeyValueStore()
        store.set("a.1", "x")
        store.set("b.1", "y")
        assert store.get("a.1") == "x"
        assert store.keys("a.") == ["a.1"]
        assert store.delete("a.1") is True
        assert store.get("a.1") is None

    def test_sqlite_store_round_trip(self, tmp_path):
        store = SqliteKeyValueStore(tmp_path / "kv" / "telemetry.db")
        assert store.is_available()
        store.set("telemetry.counter.x", "3")
        store.set("telemetry.counter.x", "4")
        store.set("other", "1")
        assert store.get("telemetry.counter.x") == "4"
        assert store.keys("telemetry.counter.") == ["telemetry.counter.x"]

    def test_sqlite_store_unavailable_for_bad_path(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        store = SqliteKeyValueStore(blocker / "telemetry.db")
        assert store.is_available() is False

    def test_select_backend_falls_through(self):
        session = SessionKeyValueStore()
        assert select_backend([UnavailableStore(), session]) is session
        assert isinstance(select_backend([UnavailableStore()]), NullKeyValueStore)
        assert isinstance(select_backend([]), NullKeyValueStore)

    def test_null_store_never_raises(self):
        store = NullKeyValueStore()
        store.set("k", "v")
        assert store.get("k") is None
        assert store.keys() == []
        assert store.delete("k") is False


class TestCounters:
    """Counter semantics."""

    def test_increment_and_get(self):
        telemetry = TelemetryCounters([SessionKeyValueStore()])
        telemetry.increment(TelemetryKey.VENDOR_ID_FALLBACK)
        telemetry.increment(TelemetryKey.VENDOR_ID_FALLBACK, 2)
        assert telemetry.get(TelemetryKey.VENDOR_ID_FALLBACK) == 3
        assert telemetry.get(TelemetryKey.PERMISSION_DENIED) == 0
        assert telemetry.get_all() == {"vendor_id_fallback": 3}

    def test_malformed_values_read_as_zero(self):
        store = SessionKeyValueStore()
        telemetry = TelemetryCounters([store])
        store.set(COUNTER_PREFIX + "vendor_id_fallback", "banana")
        store.set(COUNTER_PREFIX + "permission_denied", "-4")
        assert telemetry.get(TelemetryKey.VENDOR_ID_FALLBACK) == 0
        assert telemetry.get(TelemetryKey.PERMISSION_DENIED) == 0

        telemetry.increment(TelemetryKey.VENDOR_ID_FALLBACK)
        assert telemetry.get(TelemetryKey.VENDOR_ID_FALLBACK) == 1

    def test_reset_one_and_all(self):
        telemetry = TelemetryCounters([SessionKeyValueStore()])
        telemetry.increment(TelemetryKey.VENDOR_ID_FALLBACK, 5)
        telemetry.increment(TelemetryKey.SCHEDULED_TIMES_FALLBACK, 2)

        telemetry.reset(TelemetryKey.VENDOR_ID_FALLBACK)
        assert telemetry.get(TelemetryKey.VENDOR_ID_FALLBACK) == 0
        assert telemetry.get(TelemetryKey.SCHEDULED_TIMES_FALLBACK) == 2

        telemetry.reset_all()
        assert set(telemetry.get_all().values()) == {0}
        assert isinstance(telemetry.last_reset_at(), datetime)

    def test_null_backend_is_noop(self):
        telemetry = TelemetryCounters([UnavailableStore()])
        assert telemetry.available is False
        assert telemetry.backend_in_use == "none"
        telemetry.increment(TelemetryKey.VENDOR_ID_FALLBACK)
        telemetry.reset_all()
        assert telemetry.get(TelemetryKey.VENDOR_ID_FALLBACK) == 0
        assert telemetry.get_all() == {}
        assert telemetry.last_reset_at() is None
        assert telemetry.import_json(json.dumps({"counters": {"x": 1}})) is False

    def test_backend_failures_are_swallowed(self):
        telemetry = TelemetryCounters([BrokenStore()])
        telemetry.increment(TelemetryKey.VENDOR_ID_FALLBACK)
        assert telemetry.get(TelemetryKey.VENDOR_ID_FALLBACK) == 0
        assert telemetry.get_all() == {}

    def test_summary_shape(self):
        telemetry = TelemetryCounters([SessionKeyValueStore()])
        telemetry.increment(TelemetryKey.LINE_ITEMS_DROPPED, 2)
        summary = telemetry.summary()
        assert summary["counters"] == {"line_items_dropped": 2}
        assert summary["backend_in_use"] == "session"
        assert summary["last_reset_at"] is None
        assert summary["seconds_since_reset"] is None

        telemetry.reset_all()
        summary = telemetry.summary()
        assert summary["last_reset_at"] is not None
        assert summary["seconds_since_reset"] >= 0

    def test_reset_stamp_is_utc_and_naive_stamps_are_read_as_utc(self):
        store = SessionKeyValueStore()
        telemetry = TelemetryCounters([store])

        telemetry.reset_all()
        assert telemetry.last_reset_at().tzinfo is not None
        assert telemetry.last_reset_at().utcoffset().total_seconds() == 0

        store.set(LAST_RESET_KEY, "2024-01-09T12:00:00")
        assert telemetry.last_reset_at() == datetime(2024, 1, 9, 12, tzinfo=timezone.utc)
        assert telemetry.summary()["seconds_since_reset"] > 0

    def test_from_settings(self, tmp_path):
        settings = Settings(
            db_path=tmp_path / "li.db",
            telemetry_db_path=tmp_path / "telemetry.db",
            telemetry_backends=["durable", "session"],
        )
        telemetry = TelemetryCounters.from_settings(settings)
        assert telemetry.backend_in_use == "durable"

        telemetry.increment(TelemetryKey.PERMISSION_DENIED)
        again = TelemetryCounters.from_settings(settings)
        assert again.get(TelemetryKey.PERMISSION_DENIED) == 1


class TestCopiesAndExport:
    """Persist / restore and export / import."""

    def test_persist_and_restore(self, tmp_path):
        session = SessionKeyValueStore()
        durable = SqliteKeyValueStore(tmp_path / "telemetry.db")
        telemetry = TelemetryCounters([session, durable])
        telemetry.increment(TelemetryKey.VENDOR_ID_FALLBACK, 3)

        assert telemetry.persist_to_durable() is True
        assert durable.get(COUNTER_PREFIX + "vendor_id_fallback") == "3"

        fresh_session = SessionKeyValueStore()
        restored = TelemetryCounters([fresh_session, durable])
        assert restored.restore_from_durable() is True
        assert restored.get(TelemetryKey.VENDOR_ID_FALLBACK) == 3

    def test_copy_without_durable_store(self):
        telemetry = TelemetryCounters([SessionKeyValueStore()])
        telemetry.increment(TelemetryKey.VENDOR_ID_FALLBACK)
        assert telemetry.persist_to_durable() is False
        assert telemetry.restore_from_durable() is False

    def test_export_import_round_trip(self):
        source = TelemetryCounters([SessionKeyValueStore()])
        source.increment(TelemetryKey.VENDOR_ID_FALLBACK, 4)
        source.increment(TelemetryKey.PERMISSION_DENIED)

        exported = json.loads(source.export_json())
        assert "timestamp" in exported

        target = TelemetryCounters([SessionKeyValueStore()])
        assert target.import_json(json.dumps(exported)) is True
        assert target.get_all() == {"vendor_id_fallback": 4, "permission_denied": 1}

    @pytest.mark.parametrize("payload", [
        "{not json",
        json.dumps({"timestamp": "x"}),
        json.dumps({"counters": {}}),
        json.dumps({"counters": [1, 2]}),
        json.dumps([1, 2, 3]),
    ])
    def test_import_rejects_bad_payloads(self, payload):
        telemetry = TelemetryCounters([SessionKeyValueStore()])
        assert telemetry.import_json(payload) is False
        assert telemetry.get_all() == {}
