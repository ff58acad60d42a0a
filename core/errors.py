"""Exception hierarchy for the consolidation core.

Input and state errors are raised synchronously, before any call to the tax
authority. Failures reported by the tax authority itself are never raised past
the lifecycle boundary; they come back as a failed ``LifecycleResult``.
"""

from typing import List, Optional


class ConsolidationError(Exception):
    """Base class for all consolidation errors."""


class ConsolidationInputError(ConsolidationError):
    """Request rejected before any external call."""


class InvalidPeriodError(ConsolidationInputError, ValueError):
    """Year or month outside the supported range."""

    def __init__(self, year, month, reason: str = ""):
        self.year = year
        self.month = month
        message = f"Invalid period {year}-{month}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class EmptySelectionError(ConsolidationInputError):
    """Manual submission with no invoices selected or eligible."""

    def __init__(self, message: str = "No invoices selected for consolidation"):
        super().__init__(message)


class IneligibleSelectionError(ConsolidationInputError):
    """Operator selected invoices that are not eligible for the period."""

    def __init__(self, invoice_ids: List[str]):
        self.invoice_ids = list(invoice_ids)
        super().__init__(
            f"{len(self.invoice_ids)} selected invoice(s) are not eligible: {self.invoice_ids}"
        )


class DocumentNotFoundError(ConsolidationInputError):
    """No consolidated document exists for the identifier."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Consolidated document not found: {document_id}")


class TransitionNotAllowedError(ConsolidationError):
    """Lifecycle operation not permitted from the document's current status."""

    def __init__(self, document_id: str, status: str, operation: str, reason: Optional[str] = None):
        self.document_id = document_id
        self.status = status
        self.operation = operation
        message = f"Cannot {operation} {document_id} while status is '{status}'"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class DuplicateConsolidationError(ConsolidationError):
    """Period already has a valid or pending consolidated document."""

    def __init__(self, document_id: str, status: str):
        self.document_id = document_id
        self.status = status
        super().__init__(
            f"Period already consolidated as {document_id} (status: {status})"
        )


class SubmissionInProgressError(DuplicateConsolidationError):
    """Another host is submitting the same period right now."""

    def __init__(self, document_id: str):
        super().__init__(document_id, "submitting")


class InvalidAttemptTransitionError(ConsolidationError):
    """Auto-consolidation attempt moved backwards outside retry/timeout."""

    def __init__(self, period: str, current: str, target: str):
        self.period = period
        self.current = current
        self.target = target
        super().__init__(
            f"Attempt for {period} cannot move from '{current}' to '{target}'"
        )
