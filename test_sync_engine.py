"""
Sync Engine Tests

Exercises full saves against SQLite and against fake stores:
1. Delete-then-insert replaces the job's rows and is safe to repeat
2. Duplicates merge, invalid items drop, empty input clears the job
3. Missing optional columns disable the capability and retry once
4. Missing table / permission / unknown errors surface correctly
5. Typed creation validates the whole batch before writing
"""

import asyncio
import sqlite3
import uuid
from typing import Any, Dict, List, Sequence

import pytest

from core.observability.telemetry import TelemetryCounters, TelemetryKey
from core.storage.kv import SessionKeyValueStore
from line_items.capabilities import Capability, CapabilityRegistry
from line_items.db import SqliteLineItemStore, init_line_items_db
from line_items.engine import SyncEngine, create_line_items_typed
from line_items.errors import (
    LineItemValidationError,
    MissingTableError,
    PermissionDeniedError,
)


JOB = "job-42"

KEY_FIELDS = (
    "product_id",
    "vendor_id",
    "quantity_used",
    "unit_price",
    "promised_date",
    "requires_scheduling",
    "no_schedule_reason",
    "is_off_site",
    "scheduled_start_time",
    "scheduled_end_time",
)


def _project(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{k: row.get(k) for k in KEY_FIELDS} for row in rows]


@pytest.fixture
def telemetry():
    return TelemetryCounters([SessionKeyValueStore()])


@pytest.fixture
def registry(telemetry):
    return CapabilityRegistry(telemetry=telemetry)


def _engine(db_path, registry, **schema) -> SyncEngine:
    init_line_items_db(db_path, **schema)
    return SyncEngine(SqliteLineItemStore(db_path), registry)


class FakeStore:
    """In-memory store whose insert can be scripted to fail."""

    def __init__(self, insert_errors: Sequence[Exception] = (), delete_error: Exception = None):
        self.insert_errors = list(insert_errors)
        self.delete_error = delete_error
        self.insert_calls: List[List[Dict[str, Any]]] = []
        self.rows: List[Dict[str, Any]] = []

    async def delete_for_job(self, job_id: str) -> int:
        if self.delete_error is not None:
            raise self.delete_error
        before = len(self.rows)
        self.rows = [r for r in self.rows if r["job_id"] != job_id]
        return before - len(self.rows)

    async def insert_rows(self, rows: Sequence[Dict[str, Any]]) -> int:
        self.insert_calls.append(list(rows))
        if self.insert_errors:
            raise self.insert_errors.pop(0)
        self.rows.extend(dict(r) for r in rows)
        return len(rows)

    async def list_for_job(self, job_id: str) -> List[Dict[str, Any]]:
        return [r for r in self.rows if r["job_id"] == job_id]


class TestSynchronize:
    """Full saves against SQLite with every optional column present."""

    def test_save_replaces_existing_rows(self, tmp_path, registry):
        engine = _engine(tmp_path / "li.db", registry)

        asyncio.run(engine.synchronize(JOB, [{"productId": "p-1"}, {"productId": "p-2"}]))
        asyncio.run(engine.synchronize(JOB, [{"productId": "p-3", "quantity": 4}]))

        rows = asyncio.run(engine.list_line_items(JOB))
        assert [r["product_id"] for r in rows] == ["p-3"]
        assert rows[0]["quantity_used"] == 4

    def test_repeat_save_is_idempotent(self, tmp_path, registry):
        engine = _engine(tmp_path / "li.db", registry)
        items = [
            {"productId": "p-1", "vendorId": "v-1", "quantity": 2, "unitPrice": 12.5,
             "promisedDate": "2025-06-01"},
            {"productId": "p-2", "scheduledStartTime": "2025-06-02 08:00:00+00",
             "scheduledEndTime": "2025-06-02T10:00:00Z"},
        ]

        asyncio.run(engine.synchronize(JOB, items))
        first = asyncio.run(engine.list_line_items(JOB))
        asyncio.run(engine.synchronize(JOB, items))
        second = asyncio.run(engine.list_line_items(JOB))

        assert len(first) == 2
        assert _project(first) == _project(second)

    def test_duplicates_are_merged(self, tmp_path, registry, telemetry):
        engine = _engine(tmp_path / "li.db", registry)

        asyncio.run(engine.synchronize(JOB, [
            {"productId": "p-1", "vendorId": "v-1", "quantity": 2, "unitPrice": 100},
            {"product_id": "p-1", "vendor_id": "v-1", "quantity_used": 3, "unit_price": 100},
        ]))

        rows = asyncio.run(engine.list_line_items(JOB))
        assert len(rows) == 1
        assert rows[0]["quantity_used"] == 5
        assert telemetry.get(TelemetryKey.LINE_ITEMS_MERGED) == 1

    def test_invalid_items_are_dropped(self, tmp_path, registry, telemetry):
        engine = _engine(tmp_path / "li.db", registry)

        asyncio.run(engine.synchronize(JOB, [{"productId": ""}, {"productId": "p-1"}]))

        rows = asyncio.run(engine.list_line_items(JOB))
        assert [r["product_id"] for r in rows] == ["p-1"]
        assert telemetry.get(TelemetryKey.LINE_ITEMS_DROPPED) == 1

    def test_empty_input_clears_job(self, tmp_path, registry):
        engine = _engine(tmp_path / "li.db", registry)
        asyncio.run(engine.synchronize(JOB, [{"productId": "p-1"}]))

        asyncio.run(engine.synchronize(JOB, []))

        assert asyncio.run(engine.list_line_items(JOB)) == []

    def test_empty_input_skips_insert(self, registry):
        store = FakeStore()
        store.rows = [{"job_id": JOB, "product_id": "p-1"}]
        engine = SyncEngine(store, registry)

        asyncio.run(engine.synchronize(JOB, []))

        assert store.rows == []
        assert store.insert_calls == []

    def test_all_invalid_input_clears_job(self, tmp_path, registry):
        engine = _engine(tmp_path / "li.db", registry)
        asyncio.run(engine.synchronize(JOB, [{"productId": "p-1"}]))

        asyncio.run(engine.synchronize(JOB, [{"vendorId": "v-1"}]))

        assert asyncio.run(engine.list_line_items(JOB)) == []

    def test_other_jobs_untouched(self, tmp_path, registry):
        engine = _engine(tmp_path / "li.db", registry)
        asyncio.run(engine.synchronize("job-a", [{"productId": "p-1"}]))
        asyncio.run(engine.synchronize("job-b", [{"productId": "p-2"}]))

        asyncio.run(engine.synchronize("job-a", []))

        assert [r["product_id"] for r in asyncio.run(engine.list_line_items("job-b"))] == ["p-2"]

    def test_stored_flags_are_booleans(self, tmp_path, registry):
        engine = _engine(tmp_path / "li.db", registry)
        asyncio.run(engine.synchronize(JOB, [{"productId": "p-1", "isOffSite": True}]))

        row = asyncio.run(engine.list_line_items(JOB))[0]
        assert row["is_off_site"] is True
        assert row["requires_scheduling"] is False

    @pytest.mark.parametrize("job_id", [None, "", "   "])
    def test_blank_job_id_rejected(self, tmp_path, registry, job_id):
        engine = _engine(tmp_path / "li.db", registry)
        with pytest.raises(ValueError):
            asyncio.run(engine.synchronize(job_id, [{"productId": "p-1"}]))


class TestCapabilityFallback:
    """Saves against deployments missing optional columns."""

    def test_missing_vendor_column_falls_back(self, tmp_path, registry, telemetry):
        engine = _engine(tmp_path / "li.db", registry, include_vendor=False)

        asyncio.run(engine.synchronize(JOB, [{"productId": "p-1", "vendorId": "v-1", "quantity": 2}]))

        rows = asyncio.run(engine.list_line_items(JOB))
        assert len(rows) == 1
        assert "vendor_id" not in rows[0]
        assert rows[0]["quantity_used"] == 2
        assert registry.is_enabled(Capability.VENDOR) is False
        assert registry.is_enabled(Capability.SCHEDULING_TIMES) is True
        assert telemetry.get(TelemetryKey.VENDOR_ID_FALLBACK) == 1

    def test_later_saves_skip_disabled_column(self, tmp_path, registry, telemetry):
        engine = _engine(tmp_path / "li.db", registry, include_vendor=False)

        asyncio.run(engine.synchronize(JOB, [{"productId": "p-1", "vendorId": "v-1"}]))
        asyncio.run(engine.synchronize(JOB, [{"productId": "p-2", "vendorId": "v-1"}]))

        rows = asyncio.run(engine.list_line_items(JOB))
        assert [r["product_id"] for r in rows] == ["p-2"]
        assert telemetry.get(TelemetryKey.VENDOR_ID_FALLBACK) == 1

    def test_both_families_missing(self, tmp_path, registry, telemetry):
        engine = _engine(tmp_path / "li.db", registry, include_vendor=False, include_times=False)

        asyncio.run(engine.synchronize(JOB, [{
            "productId": "p-1", "vendorId": "v-1",
            "scheduledStartTime": "2025-06-02T08:00:00Z",
        }]))

        rows = asyncio.run(engine.list_line_items(JOB))
        assert len(rows) == 1
        assert rows[0]["requires_scheduling"] is True
        assert registry.snapshot() == {"vendor": False, "scheduling-times": False}
        assert telemetry.get(TelemetryKey.VENDOR_ID_FALLBACK) == 1
        assert telemetry.get(TelemetryKey.SCHEDULED_TIMES_FALLBACK) == 1

    def test_second_failure_for_same_family_propagates(self, registry, telemetry):
        error = sqlite3.OperationalError("table job_parts has no column named vendor_id")
        store = FakeStore(insert_errors=[error, error])
        engine = SyncEngine(store, registry)

        with pytest.raises(sqlite3.OperationalError) as excinfo:
            asyncio.run(engine.synchronize(JOB, [{"productId": "p-1", "vendorId": "v-1"}]))

        assert excinfo.value is error
        assert len(store.insert_calls) == 2
        assert "vendor_id" in store.insert_calls[0][0]
        assert "vendor_id" not in store.insert_calls[1][0]
        assert telemetry.get(TelemetryKey.VENDOR_ID_FALLBACK) == 1

    def test_unknown_missing_column_propagates(self, registry):
        error = Exception('column "colour" of relation "job_parts" does not exist')
        store = FakeStore(insert_errors=[error])
        engine = SyncEngine(store, registry)

        with pytest.raises(Exception) as excinfo:
            asyncio.run(engine.synchronize(JOB, [{"productId": "p-1"}]))

        assert excinfo.value is error
        assert len(store.insert_calls) == 1
        assert registry.is_enabled(Capability.VENDOR)

    def test_postgrest_style_error_recovers(self, registry, telemetry):
        error = Exception("Could not find the 'scheduled_end_time' column of 'job_parts' in the schema cache")
        store = FakeStore(insert_errors=[error])
        engine = SyncEngine(store, registry)

        asyncio.run(engine.synchronize(JOB, [{"productId": "p-1"}]))

        assert len(store.insert_calls) == 2
        assert "scheduled_end_time" not in store.rows[0]
        assert telemetry.get(TelemetryKey.SCHEDULED_TIMES_FALLBACK) == 1


class TestFatalErrors:
    """Errors that end a save."""

    def test_missing_table(self, tmp_path, registry):
        engine = SyncEngine(SqliteLineItemStore(tmp_path / "empty.db"), registry)

        with pytest.raises(MissingTableError) as excinfo:
            asyncio.run(engine.synchronize(JOB, [{"productId": "p-1"}]))

        assert isinstance(excinfo.value.__cause__, sqlite3.OperationalError)
        assert excinfo.value.job_id == JOB

    def test_permission_denied_on_insert(self, registry, telemetry):
        store = FakeStore(insert_errors=[
            Exception('new row violates row-level security policy for table "job_parts"'),
        ])
        engine = SyncEngine(store, registry)

        with pytest.raises(PermissionDeniedError) as excinfo:
            asyncio.run(engine.synchronize(JOB, [{"productId": "p-1"}]))

        assert excinfo.value.user_message == PermissionDeniedError.USER_MESSAGE
        assert telemetry.get(TelemetryKey.PERMISSION_DENIED) == 1

    def test_permission_denied_on_delete(self, registry):
        store = FakeStore(delete_error=Exception("permission denied for table job_parts"))
        engine = SyncEngine(store, registry)

        with pytest.raises(PermissionDeniedError):
            asyncio.run(engine.synchronize(JOB, []))

        assert store.insert_calls == []

    def test_unclassified_error_is_unchanged(self, registry):
        error = RuntimeError("disk I/O error")
        store = FakeStore(insert_errors=[error])
        engine = SyncEngine(store, registry)

        with pytest.raises(RuntimeError) as excinfo:
            asyncio.run(engine.synchronize(JOB, [{"productId": "p-1"}]))

        assert excinfo.value is error
        assert len(store.insert_calls) == 1


class TestTypedCreate:
    """Strict-schema creation path."""

    def test_valid_batch_is_inserted(self, tmp_path):
        db_path = tmp_path / "li.db"
        init_line_items_db(db_path)
        store = SqliteLineItemStore(db_path)
        job_id = str(uuid.uuid4())

        rows = asyncio.run(create_line_items_typed(store, [
            {"jobId": job_id, "productId": str(uuid.uuid4()), "quantity": 2, "unitPrice": 9.5,
             "promisedDate": "2025-07-01"},
            {"job_id": job_id, "product_id": str(uuid.uuid4())},
        ]))

        assert len(rows) == 2
        assert rows[0]["promised_date"] == "2025-07-01"
        stored = asyncio.run(store.list_for_job(job_id))
        assert [r["quantity_used"] for r in stored] == [2, 1]

    def test_invalid_batch_writes_nothing(self, tmp_path):
        db_path = tmp_path / "li.db"
        init_line_items_db(db_path)
        store = SqliteLineItemStore(db_path)
        job_id = str(uuid.uuid4())

        with pytest.raises(LineItemValidationError) as excinfo:
            asyncio.run(create_line_items_typed(store, [
                {"job_id": job_id, "product_id": str(uuid.uuid4())},
                {"job_id": job_id, "product_id": "not-a-uuid", "quantity_used": 0},
                {"job_id": job_id, "product_id": str(uuid.uuid4()), "unit_price": -1},
            ]))

        error = excinfo.value
        assert str(error).startswith("Validation failed: ")
        assert {e["index"] for e in error.field_errors} == {1, 2}
        messages = " ".join(e["message"] for e in error.field_errors)
        assert "Quantity must be at least 1" in messages
        assert "Unit price must be zero or greater" in messages
        assert asyncio.run(store.list_for_job(job_id)) == []

    def test_permission_denied_is_classified(self, registry, telemetry):
        store = FakeStore(insert_errors=[Exception("permission denied for table job_parts")])
        job_id = str(uuid.uuid4())

        with pytest.raises(PermissionDeniedError) as excinfo:
            asyncio.run(create_line_items_typed(
                store, [{"job_id": job_id, "product_id": str(uuid.uuid4())}], registry,
            ))

        assert excinfo.value.user_message == PermissionDeniedError.USER_MESSAGE
        assert excinfo.value.job_id == job_id
        assert telemetry.get(TelemetryKey.PERMISSION_DENIED) == 1

    def test_missing_table_is_classified(self, tmp_path, registry):
        store = SqliteLineItemStore(tmp_path / "bare.db")

        with pytest.raises(MissingTableError):
            asyncio.run(create_line_items_typed(
                store, [{"job_id": str(uuid.uuid4()), "product_id": str(uuid.uuid4())}], registry,
            ))

    def test_unknown_error_propagates_unchanged(self, registry):
        boom = RuntimeError("disk I/O error")
        store = FakeStore(insert_errors=[boom])

        with pytest.raises(RuntimeError) as excinfo:
            asyncio.run(create_line_items_typed(
                store, [{"job_id": str(uuid.uuid4()), "product_id": str(uuid.uuid4())}], registry,
            ))
        assert excinfo.value is boom

    def test_vendor_omitted_when_capability_disabled(self, tmp_path, registry):
        db_path = tmp_path / "li.db"
        init_line_items_db(db_path, include_vendor=False)
        store = SqliteLineItemStore(db_path)
        registry.disable(Capability.VENDOR)
        job_id = str(uuid.uuid4())

        rows = asyncio.run(create_line_items_typed(store, [
            {"job_id": job_id, "product_id": str(uuid.uuid4()), "vendor_id": str(uuid.uuid4())},
        ], registry))

        assert "vendor_id" not in rows[0]
        assert len(asyncio.run(store.list_for_job(job_id))) == 1

    def test_missing_vendor_column_disables_and_retries_once(self, tmp_path, registry, telemetry):
        db_path = tmp_path / "li.db"
        init_line_items_db(db_path, include_vendor=False)
        store = SqliteLineItemStore(db_path)
        job_id = str(uuid.uuid4())

        rows = asyncio.run(create_line_items_typed(store, [
            {"job_id": job_id, "product_id": str(uuid.uuid4()), "vendor_id": str(uuid.uuid4())},
        ], registry))

        assert "vendor_id" not in rows[0]
        assert registry.is_enabled(Capability.VENDOR) is False
        assert telemetry.get(TelemetryKey.VENDOR_ID_FALLBACK) == 1
        assert len(asyncio.run(store.list_for_job(job_id))) == 1

    def test_second_missing_vendor_column_propagates(self, registry):
        missing = Exception("table job_parts has no column named vendor_id")
        store = FakeStore(insert_errors=[missing, missing])

        with pytest.raises(Exception) as excinfo:
            asyncio.run(create_line_items_typed(store, [
                {"job_id": str(uuid.uuid4()), "product_id": str(uuid.uuid4()),
                 "vendor_id": str(uuid.uuid4())},
            ], registry))

        assert excinfo.value is missing
        assert len(store.insert_calls) == 2
        assert "vendor_id" not in store.insert_calls[1][0]
