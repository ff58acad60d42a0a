"""Schedule (or run once) the auto-consolidation workflow on Temporal.

By default creates one daily schedule per business line at 01:00 UTC
(09:00 Malaysia time). With --once, starts a single workflow run and
prints the result.
"""

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

from temporalio.client import (
    Schedule,
    ScheduleActionStartWorkflow,
    ScheduleAlreadyRunningError,
    ScheduleSpec,
)

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import KNOWN_COMPANIES, load_config
from core.observability import configure_logging, get_logger
from temporal_client import get_temporal_client
from workflows.auto_consolidation_workflow import AutoConsolidationWorkflow, AutoConsolidationInput


logger = get_logger(__name__)

DAILY_CRON = "0 1 * * *"


def schedule_id(company_id: str) -> str:
    return f"auto-consolidation-{company_id}"


async def create_schedules(companies, cron: str = DAILY_CRON):
    """Create a daily schedule for each business line (existing ones are kept)."""
    config = load_config()
    client = await get_temporal_client(config)
    logger.info(f"Connected to Temporal: {client.namespace}")

    for company_id in companies:
        try:
            await client.create_schedule(
                schedule_id(company_id),
                Schedule(
                    action=ScheduleActionStartWorkflow(
                        AutoConsolidationWorkflow.run,
                        AutoConsolidationInput(company_id=company_id),
                        id=f"auto-consolidation-{company_id}-run",
                        task_queue=config.task_queue,
                    ),
                    spec=ScheduleSpec(cron_expressions=[cron]),
                ),
            )
            logger.info(f"✓ Schedule created for {company_id} ({cron})")
        except ScheduleAlreadyRunningError:
            logger.info(f"Schedule already exists for {company_id}")


async def run_once(company_id: str, now: str = None) -> dict:
    """Start one workflow run and wait for its result."""
    config = load_config(company_id)
    client = await get_temporal_client(config)
    workflow_id = f"auto-consolidation-{company_id}-{datetime.utcnow():%Y%m%d%H%M%S}"

    logger.info(f"Starting AutoConsolidationWorkflow on task queue '{config.task_queue}'...")
    handle = await client.start_workflow(
        AutoConsolidationWorkflow.run,
        AutoConsolidationInput(company_id=company_id, now=now),
        task_queue=config.task_queue,
        id=workflow_id,
    )
    logger.info(f"Workflow started: {handle.id}")
    return await handle.result()


def main():
    """Entry point."""
    parser = argparse.ArgumentParser(description="Schedule auto-consolidation")
    parser.add_argument(
        "--company",
        choices=KNOWN_COMPANIES,
        action="append",
        help="Business line (repeatable, default: all)",
    )
    parser.add_argument("--cron", default=DAILY_CRON, help=f"Cron expression (default: '{DAILY_CRON}')")
    parser.add_argument("--once", action="store_true", help="Run a single workflow now instead of scheduling")
    parser.add_argument("--now", default=None, help="ISO timestamp override for --once")
    args = parser.parse_args()

    config = load_config()
    configure_logging(level=config.log_level_value, json_format=config.log_json)
    companies = args.company or list(KNOWN_COMPANIES)

    try:
        if args.once:
            for company_id in companies:
                result = asyncio.run(run_once(company_id, args.now))
                print(f"\n=== {company_id} ===")
                for key, value in result["run"].items():
                    print(f"  {key}: {value}")
                print(f"  refreshed: {len(result['refreshed'])}")
        else:
            asyncio.run(create_schedules(companies, args.cron))
        return 0
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
