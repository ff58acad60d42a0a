"""
Eligibility Resolver

Decides which invoices of a period may be folded into a consolidated document:
1. Issued within the target period (business timezone)
2. Not cancelled
3. Not held by a pending or valid consolidated document

Members of cancelled or invalid documents are eligible again because their
links are released when the document leaves the active statuses.
"""

from typing import Dict, Iterable, List, Mapping, Optional

from core.models import ACTIVE_DOCUMENT_STATUSES, DocumentStatus, Invoice, Period


# Reasons reported for excluded invoices
REASON_OUT_OF_PERIOD = "out_of_period"
REASON_CANCELLED = "cancelled"
REASON_ALREADY_CONSOLIDATED = "already_consolidated"


def ineligibility_reason(
    period: Period,
    invoice: Invoice,
    memberships: Optional[Mapping[str, DocumentStatus]] = None,
) -> Optional[str]:
    """Return why an invoice is not eligible, or None if it is."""
    if not period.contains(invoice.issued_at):
        return REASON_OUT_OF_PERIOD
    if invoice.is_cancelled:
        return REASON_CANCELLED
    status = (memberships or {}).get(invoice.id)
    if status is not None and DocumentStatus(status) in ACTIVE_DOCUMENT_STATUSES:
        return REASON_ALREADY_CONSOLIDATED
    return None


def resolve_eligible(
    period: Period,
    candidates: Iterable[Invoice],
    memberships: Optional[Mapping[str, DocumentStatus]] = None,
) -> List[Invoice]:
    """
    Filter candidates down to the invoices eligible for consolidation.

    Args:
        period: Target period
        candidates: Invoices from the invoice source, in source order
        memberships: invoice id -> status of the document currently linking it

    Returns:
        Eligible invoices, in source order
    """
    return [
        invoice for invoice in candidates
        if ineligibility_reason(period, invoice, memberships) is None
    ]


def explain_ineligible(
    period: Period,
    candidates: Iterable[Invoice],
    memberships: Optional[Mapping[str, DocumentStatus]] = None,
) -> Dict[str, str]:
    """Map each excluded invoice id to the reason it was excluded."""
    reasons = {}
    for invoice in candidates:
        reason = ineligibility_reason(period, invoice, memberships)
        if reason is not None:
            reasons[invoice.id] = reason
    return reasons
