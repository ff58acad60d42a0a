"""Auto-Consolidation Workflow.

Runs once a day per business line (see scripts/start_auto_consolidation.py).
Each run lets the scheduler decide whether to consolidate, retry, wait or
expire, then polls documents still pending validation.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.consolidate import (
        run_auto_consolidation,
        refresh_pending_consolidations,
        RunAutoConsolidationInput,
        RefreshPendingInput,
    )


@dataclass
class AutoConsolidationInput:
    """Input for Auto-Consolidation Workflow.

    Attributes:
        company_id: Business line to consolidate
        now: ISO timestamp override, for replaying a specific day
    """
    company_id: str
    now: Optional[str] = None


@workflow.defn
class AutoConsolidationWorkflow:
    """Workflow for one daily auto-consolidation tick.

    1. Run the scheduler (attempt counting and retry spacing live in the
       attempt record, so Temporal must not retry this activity)
    2. Refresh pending consolidated documents
    """

    @workflow.run
    async def run(self, input: AutoConsolidationInput) -> dict:
        workflow.logger.info(f"Starting auto-consolidation for {input.company_id}")

        run = await workflow.execute_activity(
            run_auto_consolidation,
            RunAutoConsolidationInput(company_id=input.company_id, now=input.now),
            start_to_close_timeout=timedelta(minutes=5),
            retry_policy=RetryPolicy(maximum_attempts=1),
        )
        workflow.logger.info(f"Auto-consolidation action: {run['action']} - {run['message']}")

        refreshed = await workflow.execute_activity(
            refresh_pending_consolidations,
            RefreshPendingInput(company_id=input.company_id),
            start_to_close_timeout=timedelta(minutes=5),
            retry_policy=RetryPolicy(maximum_attempts=3, initial_interval=timedelta(seconds=30)),
        )

        return {
            "company_id": input.company_id,
            "run": run,
            "refreshed": refreshed,
        }
