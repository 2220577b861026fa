"""Line-item error taxonomy and storage error classification.

The sync engine only recovers from one class of storage failure: a missing
optional column. Everything else is classified so it can be surfaced
correctly, then propagated.

Recognized message shapes (case-insensitive):
- SQLite:     "table job_parts has no column named vendor_id", "no such column: x",
              "no such table: job_parts"
- PostgreSQL: 'column "vendor_id" of relation "job_parts" does not exist',
              'relation "job_parts" does not exist',
              "permission denied for table job_parts",
              'new row violates row-level security policy for table "job_parts"'
- PostgREST:  "Could not find the 'vendor_id' column of 'job_parts' in the schema cache"
"""

import re
from enum import Enum
from typing import Any, Dict, List, Optional

from line_items.capabilities import CAPABILITY_COLUMNS, Capability


class SchemaErrorCode(str, Enum):
    """Classification of a storage failure."""
    MISSING_COLUMN = "MISSING_COLUMN"
    MISSING_TABLE = "MISSING_TABLE"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    GENERIC = "GENERIC"


class LineItemSyncError(Exception):
    """Base exception for line-item synchronization errors."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.job_id = job_id


class LineItemValidationError(LineItemSyncError):
    """A batch failed structural validation; nothing was written."""

    def __init__(self, message: str, field_errors: List[Dict[str, Any]], job_id: Optional[str] = None):
        super().__init__(message, job_id)
        self.field_errors = field_errors


class MissingColumnError(LineItemSyncError):
    """An optional column is absent from the deployed schema."""

    def __init__(self, message: str, column: Optional[str] = None,
                 capability: Optional[Capability] = None, job_id: Optional[str] = None):
        super().__init__(message, job_id)
        self.column = column
        self.capability = capability


class MissingTableError(LineItemSyncError):
    """The line-item table itself is absent. Never auto-recovered."""
    pass


class PermissionDeniedError(LineItemSyncError):
    """Row-level authorization rejected the write."""

    USER_MESSAGE = "You do not have permission to change line items for this job."

    def __init__(self, message: str, job_id: Optional[str] = None, user_message: Optional[str] = None):
        super().__init__(message, job_id)
        self.user_message = user_message or self.USER_MESSAGE


_MISSING_COLUMN_PATTERNS = [
    re.compile(r"has no column named\s+\"?(?P<column>\w+)"),
    re.compile(r"no such column:\s*(?:\w+\.)?\"?(?P<column>\w+)"),
    re.compile(r"column\s+\"?(?:\w+\.)?(?P<column>\w+)\"?(?:\s+of relation\s+\"?\w+\"?)?\s+does not exist"),
    re.compile(r"could not find the\s+'(?P<column>\w+)'\s+column"),
    re.compile(r"column\s+'?\"?(?P<column>\w+)'?\"?.*\bnot found"),
]

_MISSING_TABLE_PATTERNS = [
    re.compile(r"no such table"),
    re.compile(r"relation\s+\"?[\w.]+\"?\s+does not exist"),
    re.compile(r"could not find the table"),
]

_PERMISSION_PATTERNS = [
    re.compile(r"permission denied"),
    re.compile(r"row-level security"),
    re.compile(r"insufficient[_ ]privilege"),
    re.compile(r"\b42501\b"),
]


def _error_text(error: Any) -> str:
    code = getattr(error, "code", None)
    text = str(error or "")
    if code:
        text = f"{code} {text}"
    return text.lower()


def missing_column_name(error: Any) -> Optional[str]:
    """Extract the missing column name from an error message, if any."""
    text = _error_text(error)
    for pattern in _MISSING_COLUMN_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group("column")
    return None


def classify_storage_error(error: Any) -> SchemaErrorCode:
    """Classify a storage exception (or message) by its text."""
    text = _error_text(error)
    if missing_column_name(error) is not None:
        return SchemaErrorCode.MISSING_COLUMN
    for pattern in _MISSING_TABLE_PATTERNS:
        if pattern.search(text):
            return SchemaErrorCode.MISSING_TABLE
    for pattern in _PERMISSION_PATTERNS:
        if pattern.search(text):
            return SchemaErrorCode.PERMISSION_DENIED
    return SchemaErrorCode.GENERIC


def capability_for_error(error: Any) -> Optional[Capability]:
    """Map a missing-column error onto the capability family owning the column."""
    column = missing_column_name(error)
    if column is None:
        return None
    for capability, columns in CAPABILITY_COLUMNS.items():
        if column in columns:
            return capability
    return None


def to_missing_column_error(error: Any, job_id: Optional[str] = None) -> MissingColumnError:
    """Build a MissingColumnError describing ``error``."""
    return MissingColumnError(
        str(error),
        column=missing_column_name(error),
        capability=capability_for_error(error),
        job_id=job_id,
    )
