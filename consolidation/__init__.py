"""
Consolidation Package

Consolidated e-invoicing for several business lines sharing one core.

Features:
- Eligibility of invoices for a monthly consolidated document
- Currency-safe aggregation with a deterministic CON-YYYYMM identifier
- Submit / poll / cancel lifecycle against an injected tax authority
- Automatic consolidation on days 3-7 with daily retries

Usage:
    from consolidation import ConsolidationService, SQLiteConsolidationStore

    store = SQLiteConsolidationStore("consolidation.db")
    store.init_db()
    service = ConsolidationService("tienhock", store, connector, source)
    preview = await service.preview_consolidation(Period(2025, 3))
"""

from .aggregation import (
    aggregate,
    consolidated_id,
    invoice_amount,
    line_amount,
    order_members,
)

from .eligibility import (
    explain_ineligible,
    ineligibility_reason,
    resolve_eligible,
)

from .db import (
    CLAIM_TIMEOUT,
    ConsolidationStore,
    SQLiteConsolidationStore,
)

from .lifecycle import (
    ConsolidationLifecycle,
    resolve_submission_status,
)

from .locks import (
    KeyedLocks,
    document_key,
    period_key,
)

from .scheduler import (
    ALLOWED_ATTEMPT_TRANSITIONS,
    MAX_ATTEMPTS,
    AutoConsolidationRun,
    AutoConsolidationScheduler,
    ConsolidationWindow,
    compute_window,
    transition_attempt,
    window_for,
)

from .service import ConsolidationService

from .factory import (
    build_connector,
    build_service,
    build_source,
    load_renderer,
)

from .sources import (
    InMemoryInvoiceSource,
    InvoiceSource,
    SQLiteInvoiceSource,
)

__all__ = [
    # Aggregation
    "aggregate",
    "consolidated_id",
    "invoice_amount",
    "line_amount",
    "order_members",

    # Eligibility
    "explain_ineligible",
    "ineligibility_reason",
    "resolve_eligible",

    # Store
    "CLAIM_TIMEOUT",
    "ConsolidationStore",
    "SQLiteConsolidationStore",

    # Lifecycle
    "ConsolidationLifecycle",
    "resolve_submission_status",

    # Locks
    "KeyedLocks",
    "document_key",
    "period_key",

    # Scheduler
    "ALLOWED_ATTEMPT_TRANSITIONS",
    "MAX_ATTEMPTS",
    "AutoConsolidationRun",
    "AutoConsolidationScheduler",
    "ConsolidationWindow",
    "compute_window",
    "transition_attempt",
    "window_for",

    # Service
    "ConsolidationService",
    "build_connector",
    "build_service",
    "build_source",
    "load_renderer",

    # Sources
    "InMemoryInvoiceSource",
    "InvoiceSource",
    "SQLiteInvoiceSource",
]
