"""Core data models for consolidated e-invoicing.

Invoices are input owned by the invoicing subsystem. Consolidated documents
and auto-consolidation attempts are the records owned by this core.
"""

from core.models.period import (
    BUSINESS_TZ,
    Period,
    business_date,
    business_now,
    to_business_time,
)

from core.models.consolidation import (
    # Base
    ConsolidationBase,
    MoneyValue,
    QuantityValue,
    TimestampValue,

    # Enums
    DocumentStatus,
    AttemptStatus,
    OperationOutcome,
    ACTIVE_DOCUMENT_STATUSES,
    FINAL_ATTEMPT_STATUSES,

    # Input
    Invoice,
    InvoiceLine,

    # Records
    ConsolidationPreview,
    ConsolidatedDocument,
    AutoConsolidationAttempt,
    LifecycleResult,

    # Tax authority responses
    ErrorDetail,
    AcceptedDocument,
    RejectedDocument,
)

__all__ = [
    # Period
    "BUSINESS_TZ",
    "Period",
    "business_date",
    "business_now",
    "to_business_time",

    # Base
    "ConsolidationBase",
    "MoneyValue",
    "QuantityValue",
    "TimestampValue",

    # Enums
    "DocumentStatus",
    "AttemptStatus",
    "OperationOutcome",
    "ACTIVE_DOCUMENT_STATUSES",
    "FINAL_ATTEMPT_STATUSES",

    # Input
    "Invoice",
    "InvoiceLine",

    # Records
    "ConsolidationPreview",
    "ConsolidatedDocument",
    "AutoConsolidationAttempt",
    "LifecycleResult",

    # Tax authority responses
    "ErrorDetail",
    "AcceptedDocument",
    "RejectedDocument",
]
