"""Consolidation domain models.

Invoices are read-only input from the invoicing subsystem. Consolidated
documents and auto-consolidation attempts are the records this core owns.
Monetary fields are Decimals; anything non-numeric coming from the invoice
source degrades to zero instead of failing validation.
"""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated

from core.money import ZERO, round_money, to_decimal
from core.models.period import BUSINESS_TZ, Period, to_business_time


# =============================================================================
# Value Parsers
# =============================================================================

def _parse_money(value):
    """Parse an amount, degrading non-numeric input to zero."""
    return round_money(value)


def _parse_quantity(value):
    """Parse a quantity (not quantized to cents)."""
    return to_decimal(value)


def _parse_timestamp(value):
    """Parse a timestamp from datetime, date, ISO string or epoch milliseconds."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_business_time(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=BUSINESS_TZ)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=BUSINESS_TZ)
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        if s.isdigit():
            return datetime.fromtimestamp(int(s) / 1000, tz=BUSINESS_TZ)
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            return to_business_time(datetime.fromisoformat(s))
        except ValueError as e:
            raise ValueError(f"Cannot parse timestamp: {value}") from e
    return value


MoneyValue = Annotated[Decimal, BeforeValidator(_parse_money)]
QuantityValue = Annotated[Decimal, BeforeValidator(_parse_quantity)]
TimestampValue = Annotated[datetime, BeforeValidator(_parse_timestamp)]


# =============================================================================
# Enums
# =============================================================================

class DocumentStatus(str, Enum):
    """Lifecycle status of a consolidated document."""
    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    CANCELLED = "cancelled"


# Statuses that hold member invoices; anything else releases them.
ACTIVE_DOCUMENT_STATUSES = frozenset({DocumentStatus.PENDING, DocumentStatus.VALID})


class AttemptStatus(str, Enum):
    """Status of an automatic consolidation attempt for one period."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    SKIPPED = "skipped"


FINAL_ATTEMPT_STATUSES = frozenset({
    AttemptStatus.COMPLETED,
    AttemptStatus.EXPIRED,
    AttemptStatus.SKIPPED,
})


class OperationOutcome(str, Enum):
    """Terminal outcome reported by every mutating lifecycle operation."""
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILURE = "failure"


# =============================================================================
# Base Model
# =============================================================================

class ConsolidationBase(BaseModel):
    """Base model for consolidation data structures."""
    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Invoice Input
# =============================================================================

class InvoiceLine(ConsolidationBase):
    """An itemized invoice line.

    Subtotal lines (and non-priced lines such as "Other" or "Discount" that the
    invoicing side flags the same way) never contribute to amounts.
    """
    description: Optional[str] = None
    quantity: QuantityValue = Decimal("0")
    unit_price: MoneyValue = ZERO
    total: MoneyValue = ZERO
    tax: MoneyValue = ZERO
    is_subtotal: bool = False


class Invoice(ConsolidationBase):
    """An individual invoice as provided by the invoicing subsystem."""
    id: str
    customer_id: Optional[str] = None
    issued_at: TimestampValue
    created_at: Optional[TimestampValue] = None
    status: str = "active"

    total_excluding_tax: MoneyValue = ZERO
    tax_amount: MoneyValue = ZERO
    rounding: MoneyValue = ZERO
    total_payable: MoneyValue = ZERO

    lines: List[InvoiceLine] = Field(default_factory=list)

    # Back-reference maintained by the invoicing side, if it tracks one
    consolidated_document_id: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return (self.status or "").strip().lower() == "cancelled"

    @property
    def creation_key(self):
        """Sort key: creation timestamp (falling back to issue time), then id."""
        return (self.created_at or self.issued_at, self.id)


# =============================================================================
# Consolidation Records
# =============================================================================

class ConsolidationPreview(ConsolidationBase):
    """Aggregated totals for a set of invoices.

    Used unchanged for the pre-submission preview and as the submission payload.
    """
    consolidated_id: str
    year: int
    month: int
    member_ids: List[str] = Field(default_factory=list)
    member_count: int = 0
    total_excluding_tax: MoneyValue = ZERO
    tax_amount: MoneyValue = ZERO
    rounding: MoneyValue = ZERO
    total_payable: MoneyValue = ZERO

    @property
    def period(self) -> Period:
        return Period(self.year, self.month)

    @property
    def is_empty(self) -> bool:
        return self.member_count == 0


class ErrorDetail(ConsolidationBase):
    """Structured error returned by the tax authority."""
    code: Optional[str] = None
    message: Optional[str] = None
    target: Optional[str] = None
    details: List[Dict[str, Any]] = Field(default_factory=list)


class RejectedDocument(ConsolidationBase):
    """A sub-document the tax authority refused."""
    id: str
    error: ErrorDetail = Field(default_factory=ErrorDetail)


class AcceptedDocument(ConsolidationBase):
    """A sub-document the tax authority accepted."""
    id: str
    uuid: Optional[str] = None
    long_id: Optional[str] = None
    status: Optional[str] = None
    validated_at: Optional[TimestampValue] = None


class ConsolidatedDocument(ConsolidationBase):
    """A consolidated tax document and its lifecycle state.

    ``revision`` counts submissions under the same identifier: a period whose
    earlier document was cancelled or invalid can be consolidated again.
    """
    document_id: str
    company_id: str = "default"
    year: int
    month: int
    revision: int = 1

    member_ids: List[str] = Field(default_factory=list)
    total_excluding_tax: MoneyValue = ZERO
    tax_amount: MoneyValue = ZERO
    rounding: MoneyValue = ZERO
    total_payable: MoneyValue = ZERO

    status: DocumentStatus = DocumentStatus.PENDING
    submission_uid: Optional[str] = None
    uuid: Optional[str] = None
    long_id: Optional[str] = None
    validated_at: Optional[TimestampValue] = None

    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[TimestampValue] = None
    last_error: Optional[str] = None
    rejected_documents: List[RejectedDocument] = Field(default_factory=list)

    created_at: Optional[TimestampValue] = None
    updated_at: Optional[TimestampValue] = None

    @property
    def period(self) -> Period:
        return Period(self.year, self.month)

    @property
    def member_count(self) -> int:
        return len(self.member_ids)

    @property
    def holds_members(self) -> bool:
        return self.status in ACTIVE_DOCUMENT_STATUSES


class AutoConsolidationAttempt(ConsolidationBase):
    """Automatic consolidation attempt for one period (one record per period)."""
    company_id: str = "default"
    year: int
    month: int
    status: AttemptStatus = AttemptStatus.PENDING
    attempt_count: int = 0
    last_attempt: Optional[TimestampValue] = None
    next_attempt: Optional[TimestampValue] = None
    consolidated_document_id: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[TimestampValue] = None
    updated_at: Optional[TimestampValue] = None

    @property
    def period(self) -> Period:
        return Period(self.year, self.month)

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_ATTEMPT_STATUSES

    def to_status_dict(self) -> Dict[str, Any]:
        """Status payload for reporting, with the ``exists`` flag set."""
        return {
            "exists": True,
            "year": self.year,
            "month": self.month,
            "status": self.status.value,
            "attempt_count": self.attempt_count,
            "last_attempt": self.last_attempt.isoformat() if self.last_attempt else None,
            "next_attempt": self.next_attempt.isoformat() if self.next_attempt else None,
            "consolidated_document_id": self.consolidated_document_id,
            "error": self.error,
        }


class LifecycleResult(ConsolidationBase):
    """Terminal report of a submit, poll or cancel operation."""
    outcome: OperationOutcome
    operation: str
    message: str
    document_id: str
    status: Optional[DocumentStatus] = None
    updated: bool = False
    document: Optional[ConsolidatedDocument] = None
    accepted_documents: List[AcceptedDocument] = Field(default_factory=list)
    rejected_documents: List[RejectedDocument] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome != OperationOutcome.FAILURE
