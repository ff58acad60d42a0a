"""Worker for the consolidation engine.

Listens on the consolidation task queue and executes the auto-consolidation
workflow and its activities for every business line.

Run with --queue <name> to override the configured task queue.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import load_config
from core.observability import configure_logging, get_logger
from temporal_client import get_temporal_client
from workflows.auto_consolidation_workflow import AutoConsolidationWorkflow
from activities.consolidate import run_auto_consolidation, refresh_pending_consolidations


logger = get_logger(__name__)

WORKFLOWS = [AutoConsolidationWorkflow]
ACTIVITIES = [run_auto_consolidation, refresh_pending_consolidations]


async def run_worker(queue: str = None):
    """Start a worker listening on the task queue.

    Args:
        queue: Task queue to poll (defaults to CONSOLIDATION_TASK_QUEUE)

    Raises:
        Exception: If connection to Temporal fails
    """
    config = load_config()
    task_queue = queue or config.task_queue
    client = await get_temporal_client(config)
    logger.info(f"Connected to Temporal: {client.namespace}")

    worker = Worker(
        client,
        task_queue=task_queue,
        workflows=WORKFLOWS,
        activities=ACTIVITIES,
    )
    logger.info(
        f"Worker created for queue '{task_queue}'",
        extra_fields={"workflows": len(WORKFLOWS), "activities": len(ACTIVITIES)},
    )

    try:
        logger.info("Worker running... (Ctrl+C to stop)")
        await worker.run()
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise


def main():
    """Entry point for worker with CLI args."""
    config = load_config()
    parser = argparse.ArgumentParser(description="e-Invoice Consolidation Temporal Worker")
    parser.add_argument(
        "--queue", "-q",
        default=config.task_queue,
        help=f"Task queue to poll (default: {config.task_queue})"
    )
    args = parser.parse_args()

    configure_logging(level=config.log_level_value, json_format=config.log_json)
    try:
        asyncio.run(run_worker(queue=args.queue))
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


if __name__ == "__main__":
    main()
