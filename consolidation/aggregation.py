"""
Aggregation Engine

Reduces a set of invoices into one consolidated monetary summary. The same
function backs the operator preview and the submission payload, so the amounts
shown before submission are the amounts submitted.
"""

from decimal import Decimal
from typing import Iterable, List

from core.money import multiply_money, round_money, sum_money_by
from core.models import ConsolidationPreview, Invoice, InvoiceLine, Period


CONSOLIDATED_ID_PREFIX = "CON-"


def consolidated_id(period: Period) -> str:
    """Deterministic identifier for a period: ``CON-YYYYMM`` (month 1-based)."""
    return f"{CONSOLIDATED_ID_PREFIX}{period.year:04d}{period.month:02d}"


def order_members(invoices: Iterable[Invoice]) -> List[Invoice]:
    """Oldest first by creation timestamp; ties broken by invoice id."""
    return sorted(invoices, key=lambda inv: inv.creation_key)


def _priced_lines(invoice: Invoice) -> List[InvoiceLine]:
    return [line for line in invoice.lines if not line.is_subtotal]


def line_amount(line: InvoiceLine) -> Decimal:
    """Tax-exclusive amount of one line.

    A zero quantity means the line carries a flat amount (e.g. a charge with no
    unit count), so its stored total is used.
    """
    if line.quantity == 0:
        return round_money(line.total)
    return multiply_money(line.unit_price, line.quantity)


def invoice_amount(invoice: Invoice) -> Decimal:
    """Tax-exclusive contribution of one invoice."""
    if not invoice.lines:
        return round_money(invoice.total_excluding_tax)
    return sum_money_by(_priced_lines(invoice), line_amount)


def _has_line_tax(invoices: List[Invoice]) -> bool:
    return any(
        line.tax != 0
        for invoice in invoices
        for line in _priced_lines(invoice)
    )


def aggregate(period: Period, invoices: Iterable[Invoice]) -> ConsolidationPreview:
    """
    Aggregate invoices into a consolidation preview.

    Args:
        period: Target period (determines the identifier)
        invoices: Eligible invoices, or an operator-selected subset

    Returns:
        ConsolidationPreview with members ordered oldest first. Empty input
        gives an all-zero preview with no members.
    """
    members = order_members(invoices)

    if _has_line_tax(members):
        tax_amount = sum_money_by(
            members, lambda inv: sum_money_by(_priced_lines(inv), lambda line: line.tax)
        )
    else:
        tax_amount = sum_money_by(members, lambda inv: inv.tax_amount)

    return ConsolidationPreview(
        consolidated_id=consolidated_id(period),
        year=period.year,
        month=period.month,
        member_ids=[inv.id for inv in members],
        member_count=len(members),
        total_excluding_tax=sum_money_by(members, invoice_amount),
        tax_amount=round_money(tax_amount),
        rounding=sum_money_by(members, lambda inv: inv.rounding),
        total_payable=sum_money_by(members, lambda inv: inv.total_payable),
    )

