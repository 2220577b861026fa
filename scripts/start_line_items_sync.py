"""Start a JobLineItemsWorkflow on Temporal.

Reads the desired line items from a JSON file (a list of objects, either
naming convention) and saves them for a job through the worker.

Usage:
    python scripts/start_line_items_sync.py JOB_ID items.json
"""

import argparse
import asyncio
import json
import sys
import uuid
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import get_settings
from core.observability import configure_logging, get_logger
from temporal_client import get_temporal_client
from workflows.line_items_workflow import JobLineItemsWorkflow, JobLineItemsInput


logger = get_logger(__name__)


async def start_line_items_workflow(job_id: str, items_path: str):
    """Start the line items workflow and return its result.

    Args:
        job_id: Job whose line items are replaced
        items_path: JSON file holding the list of line items

    Returns:
        JobLineItemsOutput from the workflow
    """
    items_file = Path(items_path)
    if not items_file.exists():
        raise FileNotFoundError(f"Line items file not found: {items_path}")

    line_items = json.loads(items_file.read_text())
    if not isinstance(line_items, list):
        raise ValueError("Line items file must contain a JSON list")

    settings = get_settings()
    client = await get_temporal_client(settings)
    logger.info(f"Connected to Temporal: {client.namespace}")

    workflow_id = f"line-items-{job_id}-{uuid.uuid4().hex[:8]}"
    handle = await client.start_workflow(
        JobLineItemsWorkflow.run,
        JobLineItemsInput(job_id=job_id, line_items=line_items),
        id=workflow_id,
        task_queue=settings.task_queue,
    )

    logger.info(f"Workflow started: {handle.id}")
    result = await handle.result()
    logger.info(f"Workflow completed: {result.row_count} line items stored")
    return result


def main():
    """Entry point."""
    parser = argparse.ArgumentParser(description="Save a job's line items via Temporal")
    parser.add_argument("job_id", help="Job ID")
    parser.add_argument("items_path", help="JSON file with the line items")
    args = parser.parse_args()

    configure_logging()
    try:
        result = asyncio.run(start_line_items_workflow(args.job_id, args.items_path))
        print(json.dumps({"job_id": result.job_id, "status": result.status,
                          "row_count": result.row_count, "capabilities": result.capabilities}))
        return 0
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
