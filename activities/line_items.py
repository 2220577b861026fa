"""Line-item activities.

Temporal activities wrapping the sync engine so saves can be driven from a
workflow. Classified fatal errors are raised as non-retryable application
errors: the engine already performs its own single schema-drift retry, and
nothing else it raises gets better by retrying.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from temporalio import activity
from temporalio.exceptions import ApplicationError

from core.observability.logging import with_correlation
from line_items import (
    LineItemSyncError,
    PermissionDeniedError,
    get_sync_engine,
)


@dataclass
class SyncLineItemsInput:
    """Input for sync_job_line_items activity.

    Attributes:
        job_id: Job whose line items are replaced
        line_items: Desired line items (dicts, either naming convention)
    """
    job_id: str
    line_items: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class SyncLineItemsOutput:
    """Output from sync_job_line_items activity.

    Attributes:
        job_id: Job that was saved
        row_count: Rows stored for the job after the save
        rows: Stored rows
        capabilities: Capability flags after the save
    """
    job_id: str
    row_count: int
    rows: List[Dict[str, Any]]
    capabilities: Dict[str, bool]


@activity.defn
async def sync_job_line_items(input: SyncLineItemsInput) -> SyncLineItemsOutput:
    """Replace the job's stored line items.

    Raises:
        ApplicationError: Non-retryable, for validation, permission and
            missing-table failures
    """
    info = activity.info()
    activity.logger.info(f"Syncing {len(input.line_items)} line items for job {input.job_id}")

    engine = get_sync_engine()

    with with_correlation(workflow_id=info.workflow_id, activity_name=info.activity_type):
        try:
            await engine.synchronize(input.job_id, input.line_items)
        except ValueError as e:
            raise ApplicationError(str(e), type="ValueError", non_retryable=True) from e
        except PermissionDeniedError as e:
            raise ApplicationError(
                e.user_message, type="PermissionDeniedError", non_retryable=True
            ) from e
        except LineItemSyncError as e:
            raise ApplicationError(str(e), type=type(e).__name__, non_retryable=True) from e

        rows = await engine.list_line_items(input.job_id)

    return SyncLineItemsOutput(
        job_id=input.job_id,
        row_count=len(rows),
        rows=rows,
        capabilities=engine.registry.snapshot(),
    )
