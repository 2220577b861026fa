"""Workflow definitions module."""

from workflows.line_items_workflow import (
    JobLineItemsWorkflow,
    JobLineItemsInput,
    JobLineItemsOutput,
)

__all__ = ["JobLineItemsWorkflow", "JobLineItemsInput", "JobLineItemsOutput"]
