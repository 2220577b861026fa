"""Activity definitions module."""

from activities.line_items import (
    sync_job_line_items,
    SyncLineItemsInput,
    SyncLineItemsOutput,
)

__all__ = [
    "sync_job_line_items",
    "SyncLineItemsInput",
    "SyncLineItemsOutput",
]
