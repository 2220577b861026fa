"""Line Items - capability-aware synchronization of job line items.

This package keeps the job_parts rows for a job in step with the list of line
items a caller wants to save:

- Alias-tolerant input (snake_case or camelCase field names)
- Canonical rows with coerced numbers and normalized dates/times
- Duplicate lines merged by composite key, quantities summed
- Delete-then-insert saves that are safe to repeat
- Recovery from deployments missing the optional vendor / scheduled time
  columns: the capability is switched off and the insert retried once

Usage:
    from line_items import get_sync_engine

    engine = get_sync_engine()
    await engine.synchronize("job-123", [
        {"productId": "prod-1", "vendorId": "vend-9", "quantity": 2, "unitPrice": 100},
    ])
    rows = await engine.list_line_items("job-123")
"""

from line_items.capabilities import (
    Capability,
    CapabilityRegistry,
    get_capability_registry,
)
from line_items.db import (
    LineItemStore,
    SqliteLineItemStore,
    init_line_items_db,
)
from line_items.engine import (
    SyncEngine,
    create_line_items_typed,
    get_sync_engine,
)
from line_items.errors import (
    LineItemSyncError,
    LineItemValidationError,
    MissingColumnError,
    MissingTableError,
    PermissionDeniedError,
    SchemaErrorCode,
    capability_for_error,
    classify_storage_error,
)
from line_items.models import (
    CanonicalLineItemRecord,
    LineItemInput,
    LineItemInsert,
    SyncLineItemsRequest,
)
from line_items.normalize import FIELD_ALIASES
from line_items.payload import BuildReport, PayloadBuilder, composite_key

__all__ = [
    # Capabilities
    "Capability",
    "CapabilityRegistry",
    "get_capability_registry",
    # Storage
    "LineItemStore",
    "SqliteLineItemStore",
    "init_line_items_db",
    # Engine
    "SyncEngine",
    "create_line_items_typed",
    "get_sync_engine",
    # Errors
    "LineItemSyncError",
    "LineItemValidationError",
    "MissingColumnError",
    "MissingTableError",
    "PermissionDeniedError",
    "SchemaErrorCode",
    "capability_for_error",
    "classify_storage_error",
    # Models
    "CanonicalLineItemRecord",
    "LineItemInput",
    "LineItemInsert",
    "SyncLineItemsRequest",
    # Payload
    "FIELD_ALIASES",
    "BuildReport",
    "PayloadBuilder",
    "composite_key",
]
