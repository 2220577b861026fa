"""
Job Line Items Workflow

Runs a single line-item save for a job:
SYNC_LINE_ITEMS → COMPLETED

The activity is attempted once. Schema-drift recovery happens inside the
engine; a second attempt of the whole save would only repeat a failure that
is not transient.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.line_items import (
        sync_job_line_items,
        SyncLineItemsInput,
        SyncLineItemsOutput,
    )


SYNC_TIMEOUT = timedelta(seconds=60)

SYNC_RETRY_POLICY = RetryPolicy(
    maximum_attempts=1,
    non_retryable_error_types=[
        "ValueError",
        "LineItemValidationError",
        "PermissionDeniedError",
        "MissingTableError",
    ],
)


@dataclass
class JobLineItemsInput:
    """Input for the job line items workflow"""
    job_id: str
    line_items: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class JobLineItemsOutput:
    """Output from the job line items workflow"""
    job_id: str
    status: str
    row_count: int = 0
    capabilities: Dict[str, bool] = field(default_factory=dict)


@workflow.defn
class JobLineItemsWorkflow:
    """Save one job's line items."""

    @workflow.run
    async def run(self, input: JobLineItemsInput) -> JobLineItemsOutput:
        workflow.logger.info(f"Saving line items for job {input.job_id}")

        result: SyncLineItemsOutput = await workflow.execute_activity(
            sync_job_line_items,
            SyncLineItemsInput(job_id=input.job_id, line_items=input.line_items),
            start_to_close_timeout=SYNC_TIMEOUT,
            retry_policy=SYNC_RETRY_POLICY,
        )

        return JobLineItemsOutput(
            job_id=result.job_id,
            status="COMPLETED",
            row_count=result.row_count,
            capabilities=result.capabilities,
        )
