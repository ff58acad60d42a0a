"""Auto-consolidation activities.

Temporal activities that run the auto-consolidation scheduler and refresh
pending consolidated documents for one business line.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from temporalio import activity

from consolidation.factory import build_service
from core.config import load_config
from core.observability.logging import (
    log_activity_complete,
    log_activity_error,
    log_activity_start,
    with_correlation,
)


@dataclass
class RunAutoConsolidationInput:
    """Input for run_auto_consolidation activity.

    Attributes:
        company_id: Business line to consolidate
        now: ISO timestamp to evaluate the window at (defaults to the current time)
    """
    company_id: str
    now: Optional[str] = None


@dataclass
class RefreshPendingInput:
    """Input for refresh_pending_consolidations activity.

    Attributes:
        company_id: Business line whose pending documents are polled
    """
    company_id: str


def _parse_now(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _correlation(company_id: str, activity_name: str) -> dict:
    info = activity.info()
    return {
        "company_id": company_id,
        "workflow_id": info.workflow_id,
        "workflow_run_id": info.workflow_run_id,
        "activity_name": activity_name,
    }


@activity.defn
async def run_auto_consolidation(input: RunAutoConsolidationInput) -> dict:
    """Run the auto-consolidation scheduler once.

    Args:
        input: RunAutoConsolidationInput with company and evaluation time

    Returns:
        dict report of the run (action, message, window, attempt, result)
    """
    name = "run_auto_consolidation"
    started = time.monotonic()

    with with_correlation(**_correlation(input.company_id, name)):
        log_activity_start(name, now=input.now)
        service = build_service(load_config(input.company_id))
        try:
            run = await service.run_auto_consolidation(_parse_now(input.now))
        except Exception as e:
            log_activity_error(name, str(e))
            raise
        finally:
            await service.connector.close()

        activity.logger.info(f"Auto-consolidation for {input.company_id}: {run.action} - {run.message}")
        log_activity_complete(
            name,
            duration_ms=(time.monotonic() - started) * 1000,
            action=run.action,
        )
        return run.to_dict()


@activity.defn
async def refresh_pending_consolidations(input: RefreshPendingInput) -> List[dict]:
    """Poll every pending consolidated document of a business line.

    Returns:
        List of lifecycle results, one per pending document
    """
    name = "refresh_pending_consolidations"
    started = time.monotonic()

    with with_correlation(**_correlation(input.company_id, name)):
        log_activity_start(name)
        service = build_service(load_config(input.company_id))
        try:
            results = await service.refresh_pending_consolidations()
        except Exception as e:
            log_activity_error(name, str(e))
            raise
        finally:
            await service.connector.close()

        log_activity_complete(
            name,
            duration_ms=(time.monotonic() - started) * 1000,
            checked=len(results),
            updated=sum(1 for r in results if r.updated),
        )
        return [r.model_dump(mode="json", exclude={"document"}) for r in results]
