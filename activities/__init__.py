"""Activity definitions module."""

from activities.consolidate import (
    run_auto_consolidation,
    refresh_pending_consolidations,
    RunAutoConsolidationInput,
    RefreshPendingInput,
)

__all__ = [
    "run_auto_consolidation",
    "refresh_pending_consolidations",
    "RunAutoConsolidationInput",
    "RefreshPendingInput",
]
