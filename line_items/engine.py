"""Line Item Sync Engine.

Makes the stored job_parts rows for a job exactly match a desired list:
1. Delete every existing row for the job
2. Build the canonical payload (aliases, coercion, dedupe)
3. Bulk-insert the payload
4. On a missing optional column: disable that capability, rebuild the
   payload without it and retry the insert, at most once per column family

Delete-then-insert leaves no stale rows for items removed from the list, and
repeating a save with the same list leaves the same rows. The two phases are
not atomic: a crash between them leaves the job with no line items until the
next successful save. Saves for the same job must be serialized by the caller.
"""

import time
from typing import Any, Dict, Iterable, List, Optional, Set

from pydantic import ValidationError

from core.observability.logging import get_logger, with_correlation
from core.observability.telemetry import TelemetryCounters, TelemetryKey
from line_items.capabilities import Capability, CapabilityRegistry, get_capability_registry
from line_items.db import LineItemStore, SqliteLineItemStore
from line_items.errors import (
    LineItemValidationError,
    MissingTableError,
    PermissionDeniedError,
    SchemaErrorCode,
    capability_for_error,
    classify_storage_error,
    missing_column_name,
)
from line_items.models import LineItemInsert
from line_items.payload import BuildReport, PayloadBuilder


logger = get_logger(__name__)


class SyncEngine:
    """Synchronizes a job's line items with the store.

    Example:
        engine = SyncEngine(SqliteLineItemStore(db_path), registry, telemetry)
        await engine.synchronize("job-123", [
            {"productId": "prod-1", "quantity": 2, "unitPrice": 100},
        ])
    """

    def __init__(
        self,
        store: LineItemStore,
        registry: CapabilityRegistry,
        telemetry: Optional[TelemetryCounters] = None,
        builder: Optional[PayloadBuilder] = None,
    ):
        """Initialize the engine.

        Args:
            store: Storage collaborator for job_parts
            registry: Capability flags shared with the payload builder
            telemetry: Counters for degraded paths (defaults to the registry's)
            builder: Payload builder (defaults to one over ``registry``)
        """
        self.store = store
        self.registry = registry
        self.telemetry = telemetry if telemetry is not None else registry.telemetry
        self.builder = builder or PayloadBuilder(registry)

    async def synchronize(self, job_id: str, inputs: Optional[Iterable[Any]]) -> None:
        """Replace the job's stored line items with ``inputs``.

        Args:
            job_id: Job whose line items are replaced (required)
            inputs: Desired line items, dicts or LineItemInput models

        Raises:
            ValueError: If job_id is missing
            MissingTableError: If the job_parts table does not exist
            PermissionDeniedError: If the store rejects the write for authorization
            Exception: Any other storage error, unchanged
        """
        if job_id is None or not str(job_id).strip():
            raise ValueError("job_id is required to synchronize line items")

        items = list(inputs or [])

        with with_correlation(job_id=str(job_id), operation="sync"):
            start_time = time.time()

            deleted = await self._delete_existing(job_id)

            if not items:
                logger.info(
                    "No line items supplied, job cleared",
                    extra_fields={"deleted": deleted},
                )
                return

            report = self.builder.build_report(job_id, items)
            self._record_silent_paths(report)

            if not report.records:
                logger.info(
                    "No valid line items after normalization, job cleared",
                    extra_fields={"deleted": deleted, "dropped": report.dropped},
                )
                return

            inserted = await self._insert_with_fallback(job_id, items, report)

            logger.info(
                f"Saved {inserted} line items",
                extra_fields={
                    "deleted": deleted,
                    "inputs": report.inputs_seen,
                    "duration_ms": int((time.time() - start_time) * 1000),
                },
            )

    async def list_line_items(self, job_id: str) -> List[Dict[str, Any]]:
        """Get the stored rows for a job."""
        if job_id is None or not str(job_id).strip():
            raise ValueError("job_id is required to list line items")
        return await self.store.list_for_job(job_id)

    # =========================================================================
    # Phases
    # =========================================================================

    async def _delete_existing(self, job_id: str) -> int:
        try:
            return await self.store.delete_for_job(job_id)
        except Exception as e:
            logger.error(f"DELETE of existing line items failed: {e}")
            raise_classified(e, job_id, self.telemetry)
            raise

    async def _insert_with_fallback(self, job_id: str, items: List[Any], report: BuildReport) -> int:
        retried: Set[Capability] = set()

        while True:
            try:
                return await self.store.insert_rows(report.rows)
            except Exception as e:
                capability = self._recoverable_capability(e, retried)
                if capability is None:
                    logger.error(f"INSERT of line items failed: {e}")
                    raise_classified(e, job_id, self.telemetry)
                    raise

                logger.warning(
                    f"{SchemaErrorCode.MISSING_COLUMN.value}: {missing_column_name(e)} column missing, "
                    f"retrying without {capability.value}"
                )
                self.registry.disable(capability)
                retried.add(capability)
                report = self.builder.build_report(job_id, items, {capability: False})

    def _recoverable_capability(self, error: Exception, retried: Set[Capability]) -> Optional[Capability]:
        """Capability to drop for a retry, or None if the error is not recoverable."""
        if classify_storage_error(error) != SchemaErrorCode.MISSING_COLUMN:
            return None
        capability = capability_for_error(error)
        if capability is None or capability in retried:
            return None
        return capability

    def _record_silent_paths(self, report: BuildReport) -> None:
        if report.dropped:
            logger.info(
                f"Dropped {report.dropped} line items without a product",
                extra_fields={"dropped": report.dropped},
            )
            if self.telemetry is not None:
                self.telemetry.increment(TelemetryKey.LINE_ITEMS_DROPPED, report.dropped)
        if report.merged:
            logger.debug(
                f"Merged {report.merged} duplicate line items",
                extra_fields={"merged": report.merged},
            )
            if self.telemetry is not None:
                self.telemetry.increment(TelemetryKey.LINE_ITEMS_MERGED, report.merged)


# =============================================================================
# Error classification
# =============================================================================

def raise_classified(
    error: Exception, job_id: Optional[str], telemetry: Optional[TelemetryCounters] = None
) -> None:
    """Raise the taxonomy error for ``error``; return if it stays unclassified."""
    code = classify_storage_error(error)
    if code == SchemaErrorCode.MISSING_TABLE:
        raise MissingTableError(f"Line item table is missing: {error}", job_id=job_id) from error
    if code == SchemaErrorCode.PERMISSION_DENIED:
        if telemetry is not None:
            telemetry.increment(TelemetryKey.PERMISSION_DENIED)
        raise PermissionDeniedError(
            f"Line item write was blocked by permissions: {error}", job_id=job_id
        ) from error


# =============================================================================
# Typed Creation Path
# =============================================================================

def _format_field_errors(error: ValidationError, index: int) -> List[Dict[str, Any]]:
    return [
        {
            "index": index,
            "field": ".".join(str(part) for part in err.get("loc", ())),
            "message": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in error.errors()
    ]


async def create_line_items_typed(
    store: LineItemStore,
    items: Iterable[Any],
    registry: Optional[CapabilityRegistry] = None,
    telemetry: Optional[TelemetryCounters] = None,
) -> List[Dict[str, Any]]:
    """Validate a batch with LineItemInsert and insert it directly.

    The whole batch is validated before any write. This path does not go
    through the payload builder, but it honors the capability flags: a
    disabled vendor column is left out of the rows, and a missing vendor
    column found by the insert disables it and retries once without it.

    Args:
        store: Storage collaborator for job_parts
        items: Items to validate and insert
        registry: Capability flags (all columns assumed present when None)
        telemetry: Counters for permission denials (defaults to the registry's)

    Returns:
        The inserted rows

    Raises:
        LineItemValidationError: If any item fails validation (nothing is written)
        MissingTableError: If the job_parts table does not exist
        PermissionDeniedError: If the store rejects the write for authorization
    """
    if telemetry is None and registry is not None:
        telemetry = registry.telemetry

    validated: List[LineItemInsert] = []
    field_errors: List[Dict[str, Any]] = []

    for index, item in enumerate(items):
        try:
            validated.append(LineItemInsert.model_validate(item))
        except ValidationError as e:
            field_errors.extend(_format_field_errors(e, index))

    if field_errors:
        message = "Validation failed: " + ", ".join(
            f"[{err['index']}] {err['field']}: {err['message']}" for err in field_errors
        )
        raise LineItemValidationError(message, field_errors)

    job_id = str(validated[0].job_id) if validated else None
    with_vendor = registry is None or registry.is_enabled(Capability.VENDOR)

    with with_correlation(job_id=job_id, operation="typed_create"):
        while True:
            rows = [item.to_row() for item in validated]
            if not with_vendor:
                for row in rows:
                    row.pop("vendor_id", None)
            try:
                await store.insert_rows(rows)
                break
            except Exception as e:
                if (
                    with_vendor
                    and registry is not None
                    and classify_storage_error(e) == SchemaErrorCode.MISSING_COLUMN
                    and capability_for_error(e) == Capability.VENDOR
                ):
                    logger.warning(
                        f"{SchemaErrorCode.MISSING_COLUMN.value}: vendor_id column missing, "
                        "retrying typed insert without vendor"
                    )
                    registry.disable(Capability.VENDOR)
                    with_vendor = False
                    continue
                logger.error(f"Typed INSERT of line items failed: {e}")
                raise_classified(e, job_id, telemetry)
                raise
        logger.info(f"Inserted {len(rows)} typed line items")
    return rows


# =============================================================================
# Module-level wiring
# =============================================================================

_engine: Optional[SyncEngine] = None


def get_sync_engine() -> SyncEngine:
    """Get the process-wide engine over the configured SQLite store."""
    global _engine
    if _engine is None:
        registry = get_capability_registry()
        _engine = SyncEngine(SqliteLineItemStore(), registry, registry.telemetry)
    return _engine
