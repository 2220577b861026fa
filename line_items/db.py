"""Line Item Database Operations.

This module handles all database operations for job line items:
- Schema initialization (optional columns can be left out to mirror a
  deployment that has not run every migration)
- Delete / bulk insert / list for one job

The job_parts table is keyed logically by
(job_id, product_id, vendor_id, promised_date, scheduled_start_time, scheduled_end_time).
A unique index over that key, with placeholders for NULLs, backs the
no-duplicates guarantee at the storage level.
"""

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Protocol, Sequence, Union

from core.config import get_settings


class LineItemStore(Protocol):
    """Protocol for the relational store holding job line items.

    Implementations must raise errors whose text distinguishes an unknown
    column (see ``line_items.errors``); any other failure shape is fatal.
    """

    async def delete_for_job(self, job_id: str) -> int:
        """Delete every row for a job. Returns the number deleted."""
        ...

    async def insert_rows(self, rows: Sequence[Dict[str, Any]]) -> int:
        """Insert rows in one batch. Returns the number inserted."""
        ...

    async def list_for_job(self, job_id: str) -> List[Dict[str, Any]]:
        """Get the stored rows for a job, in insertion order."""
        ...


def init_line_items_db(
    db_path: Union[str, Path, None] = None,
    include_vendor: bool = True,
    include_times: bool = True,
) -> None:
    """Initialize the job_parts table.

    Args:
        db_path: Path to SQLite database file (defaults to LINE_ITEMS_DB_PATH)
        include_vendor: Create the vendor_id column
        include_times: Create scheduled_start_time / scheduled_end_time
    """
    db_path = Path(db_path or get_settings().db_path)

    optional_columns = []
    key_columns = [
        "job_id",
        "product_id",
    ]
    if include_vendor:
        optional_columns.append("vendor_id TEXT")
        key_columns.append("COALESCE(vendor_id, '00000000-0000-0000-0000-000000000000')")
    key_columns.append("COALESCE(promised_date, '1970-01-01')")
    if include_times:
        optional_columns.append("scheduled_start_time TEXT")
        optional_columns.append("scheduled_end_time TEXT")
        key_columns.append("COALESCE(scheduled_start_time, '1970-01-01 00:00:00+00')")
        key_columns.append("COALESCE(scheduled_end_time, '1970-01-01 00:00:00+00')")

    optional_sql = "".join(f"{col},\n                " for col in optional_columns)

    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS job_parts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT NOT NULL,
                product_id TEXT NOT NULL,
                {optional_sql}quantity_used REAL NOT NULL DEFAULT 1,
                unit_price REAL NOT NULL DEFAULT 0,
                promised_date TEXT,
                requires_scheduling INTEGER NOT NULL DEFAULT 0,
                no_schedule_reason TEXT,
                is_off_site INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)
        cursor.execute(f"""
            CREATE UNIQUE INDEX IF NOT EXISTS job_parts_unique_job_product_schedule
            ON job_parts({", ".join(key_columns)})
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_job_parts_job
            ON job_parts(job_id)
        """)
        conn.commit()
    finally:
        conn.close()


def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    for flag in ("requires_scheduling", "is_off_site"):
        if flag in data and data[flag] is not None:
            data[flag] = bool(data[flag])
    for number in ("quantity_used", "unit_price"):
        value = data.get(number)
        if isinstance(value, float) and value.is_integer():
            data[number] = int(value)
    return data


class SqliteLineItemStore:
    """SQLite implementation of LineItemStore.

    Each phase runs in its own transaction; the batch insert is all-or-nothing.
    """

    def __init__(self, db_path: Union[str, Path, None] = None):
        self.db_path = Path(db_path or get_settings().db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    async def delete_for_job(self, job_id: str) -> int:
        conn = self._connect()
        try:
            cursor = conn.execute("DELETE FROM job_parts WHERE job_id = ?", (job_id,))
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    async def insert_rows(self, rows: Sequence[Dict[str, Any]]) -> int:
        if not rows:
            return 0

        columns: List[str] = []
        for row in rows:
            columns.extend(col for col in row if col not in columns)
        columns.append("created_at")
        placeholders = ", ".join("?" for _ in columns)
        now = datetime.now(timezone.utc).isoformat()
        values = [
            tuple(row.get(col) for col in columns[:-1]) + (now,)
            for row in rows
        ]

        conn = self._connect()
        try:
            with conn:
                conn.executemany(
                    f"INSERT INTO job_parts ({', '.join(columns)}) VALUES ({placeholders})",
                    values,
                )
            return len(values)
        finally:
            conn.close()

    async def list_for_job(self, job_id: str) -> List[Dict[str, Any]]:
        conn = self._connect()
        try:
            cursor = conn.execute(
                "SELECT * FROM job_parts WHERE job_id = ? ORDER BY id", (job_id,)
            )
            return [_row_to_dict(r) for r in cursor.fetchall()]
        finally:
            conn.close()
