"""Worker for the line-items service.

Connects to Temporal and polls the configured task queue (TEMPORAL_TASK_QUEUE)
for JobLineItemsWorkflow runs and the sync_job_line_items activity.

Run with --queue <name> to override the task queue.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import get_settings
from core.observability import configure_logging, get_logger, get_telemetry
from line_items.db import init_line_items_db
from temporal_client import get_temporal_client
from workflows.line_items_workflow import JobLineItemsWorkflow
from activities.line_items import sync_job_line_items


logger = get_logger(__name__)

WORKFLOWS = [JobLineItemsWorkflow]
ACTIVITIES = [sync_job_line_items]


async def run_worker(queue: str = None):
    """Start worker listening on the task queue.

    Args:
        queue: Queue to poll (defaults to TEMPORAL_TASK_QUEUE)

    Raises:
        Exception: If connection to Temporal fails
    """
    settings = get_settings()
    task_queue = queue or settings.task_queue
    client = None

    init_line_items_db(
        settings.db_path,
        include_vendor=settings.vendor_column,
        include_times=settings.scheduled_times_column,
    )
    telemetry = get_telemetry()
    telemetry.restore_from_durable()

    try:
        client = await get_temporal_client(settings)
        logger.info(f"Connected to Temporal: {client.namespace}")

        worker = Worker(
            client,
            task_queue=task_queue,
            workflows=WORKFLOWS,
            activities=ACTIVITIES,
        )

        logger.info(f"Worker created for queue '{task_queue}':")
        logger.info(f"  - Workflows: {len(WORKFLOWS)}")
        logger.info(f"  - Activities: {len(ACTIVITIES)}")

        logger.info("Worker running... (Ctrl+C to stop)")
        await worker.run()

    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise
    finally:
        telemetry.persist_to_durable()
        if client:
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Error closing Temporal client: {e}")


def main():
    """Entry point for worker with CLI args."""
    parser = argparse.ArgumentParser(description="Line Items Temporal Worker")
    parser.add_argument(
        "--queue", "-q",
        default=None,
        help="Task queue to poll (default: TEMPORAL_TASK_QUEUE or 'line-items')"
    )

    args = parser.parse_args()
    configure_logging()
    asyncio.run(run_worker(queue=args.queue))


if __name__ == "__main__":
    main()
