"""
Consolidation Lifecycle State Machine

Owns the status of consolidated documents:

    (none) --submit--> pending | valid | invalid
    pending --poll--> valid | invalid
    valid | invalid --cancel--> cancelled

Input and transition errors are raised before the tax authority is called.
Anything the tax authority does wrong (rejection, network failure) is captured
here and reported as a FAILURE result; it never propagates to the caller.
"""

import uuid
from datetime import datetime
from typing import Callable, Optional, Sequence

from core.errors import (
    ConsolidationError,
    ConsolidationInputError,
    DocumentNotFoundError,
    DuplicateConsolidationError,
    EmptySelectionError,
    TransitionNotAllowedError,
)
from core.models import (
    ACTIVE_DOCUMENT_STATUSES,
    ConsolidatedDocument,
    ConsolidationPreview,
    DocumentStatus,
    Invoice,
    LifecycleResult,
    OperationOutcome,
    business_now,
)
from core.observability.logging import get_logger, with_correlation
from connectors.tax_authority_base import (
    DEFAULT_CANCELLATION_REASON,
    SubmissionResult,
    TaxAuthorityConnector,
)

from .db import ConsolidationStore
from .locks import KeyedLocks, document_key

logger = get_logger(__name__)

CANCELLABLE_STATUSES = frozenset({DocumentStatus.VALID, DocumentStatus.INVALID})

# A poll only ever resolves a pending document
POLL_RESOLVED_STATUSES = frozenset({DocumentStatus.VALID, DocumentStatus.INVALID})


def resolve_submission_status(result: SubmissionResult) -> DocumentStatus:
    """Status to record for an accepted submission.

    A validation long id means the document is already valid; otherwise it is
    pending unless the authority said otherwise.
    """
    if result.status is not None:
        return result.status
    if result.long_id:
        return DocumentStatus.VALID
    return DocumentStatus.PENDING


class ConsolidationLifecycle:
    """
    Submit, poll and cancel consolidated documents for one business line.

    Usage:
        lifecycle = ConsolidationLifecycle(store, connector, company_id="tienhock")
        result = await lifecycle.submit(preview, members)
    """

    def __init__(
        self,
        store: ConsolidationStore,
        connector: TaxAuthorityConnector,
        company_id: str = "default",
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = business_now,
    ):
        self.store = store
        self.connector = connector
        self.company_id = company_id
        self.locks = locks or KeyedLocks()
        self.clock = clock

    def _get_document(self, document_id: str) -> ConsolidatedDocument:
        document = self.store.latest_document(self.company_id, document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    # =========================================================================
    # Submit
    # =========================================================================

    async def submit(
        self,
        preview: ConsolidationPreview,
        members: Sequence[Invoice],
    ) -> LifecycleResult:
        """
        Submit a consolidated document and record it.

        The caller is expected to hold the period lock for the preview's period.
        The identifier is claimed in the store for the duration of the external
        call. Nothing is persisted unless the tax authority accepts the submission.

        Raises:
            EmptySelectionError: No members
            ConsolidationInputError: Members do not match the preview
            DuplicateConsolidationError: Period already has a pending or valid document
            SubmissionInProgressError: Another host is submitting the period
        """
        if preview.is_empty or not members:
            raise EmptySelectionError()
        if [inv.id for inv in members] != preview.member_ids:
            raise ConsolidationInputError(
                f"Members do not match preview {preview.consolidated_id}"
            )

        document_id = preview.consolidated_id

        with with_correlation(
            company_id=self.company_id,
            period=str(preview.period),
            document_id=document_id,
            operation="submit",
        ):
            async with self.locks.hold(document_key(self.company_id, document_id)):
                existing = self.store.latest_document(self.company_id, document_id)
                if existing is not None and existing.status in ACTIVE_DOCUMENT_STATUSES:
                    raise DuplicateConsolidationError(document_id, existing.status.value)

                owner = uuid.uuid4().hex
                self.store.claim_submission(self.company_id, document_id, owner, self.clock())
                try:
                    return await self._submit_claimed(preview, members)
                finally:
                    self.store.release_submission(self.company_id, document_id, owner)

    async def _submit_claimed(
        self,
        preview: ConsolidationPreview,
        members: Sequence[Invoice],
    ) -> LifecycleResult:
        document_id = preview.consolidated_id
        logger.info(
            "Submitting consolidation",
            extra_fields={
                "member_count": preview.member_count,
                "total_payable": str(preview.total_payable),
            },
        )

        try:
            result = await self.connector.submit_consolidation(preview, members)
        except Exception as e:
            logger.exception(f"Submission failed: {e}")
            return LifecycleResult(
                outcome=OperationOutcome.FAILURE,
                operation="submit",
                message="Submission to tax authority failed",
                document_id=document_id,
                error=str(e),
            )

        if not result.success:
            logger.warning(
                "Submission rejected",
                extra_fields={
                    "error": result.error_message,
                    "rejected": len(result.rejected_documents),
                },
            )
            return LifecycleResult(
                outcome=OperationOutcome.FAILURE,
                operation="submit",
                message="Submission rejected by tax authority",
                document_id=document_id,
                accepted_documents=result.accepted_documents,
                rejected_documents=result.rejected_documents,
                error=result.error_message or "Submission rejected",
            )

        status = resolve_submission_status(result)
        now = self.clock()
        document = ConsolidatedDocument(
            document_id=document_id,
            company_id=self.company_id,
            year=preview.year,
            month=preview.month,
            member_ids=list(preview.member_ids),
            total_excluding_tax=preview.total_excluding_tax,
            tax_amount=preview.tax_amount,
            rounding=preview.rounding,
            total_payable=preview.total_payable,
            status=status,
            submission_uid=result.submission_uid,
            uuid=result.uuid,
            long_id=result.long_id,
            validated_at=result.validated_at,
            rejected_documents=result.rejected_documents,
            last_error=result.error_message,
            created_at=now,
            updated_at=now,
        )
        try:
            document = self.store.create_document(document)
        except ConsolidationError as e:
            logger.error(
                f"Accepted submission could not be recorded: {e}",
                extra_fields={"uuid": result.uuid, "submission_uid": result.submission_uid},
            )
            return LifecycleResult(
                outcome=OperationOutcome.FAILURE,
                operation="submit",
                message="Submission accepted by tax authority but not recorded",
                document_id=document_id,
                status=status,
                accepted_documents=result.accepted_documents,
                rejected_documents=result.rejected_documents,
                error=str(e),
            )

        logger.info(
            f"Consolidation recorded as {status.value}",
            extra_fields={"revision": document.revision, "uuid": document.uuid},
        )

        if status == DocumentStatus.INVALID:
            outcome = OperationOutcome.FAILURE
            message = "Consolidated document was rejected as invalid"
        elif result.is_partial:
            outcome = OperationOutcome.PARTIAL_SUCCESS
            message = "Consolidation submitted with rejected sub-documents"
        else:
            outcome = OperationOutcome.SUCCESS
            message = f"Consolidation submitted ({status.value})"

        return LifecycleResult(
            outcome=outcome,
            operation="submit",
            message=message,
            document_id=document_id,
            status=status,
            updated=True,
            document=document,
            accepted_documents=result.accepted_documents,
            rejected_documents=result.rejected_documents,
            error=result.error_message,
        )

    # =========================================================================
    # Poll
    # =========================================================================

    async def update_status(self, document_id: str) -> LifecycleResult:
        """
        Poll the tax authority for a pending document.

        Documents in any other status are left alone and reported with
        ``updated=False``.

        Raises:
            DocumentNotFoundError: Unknown identifier
        """
        self._get_document(document_id)

        with with_correlation(
            company_id=self.company_id,
            document_id=document_id,
            operation="update_status",
        ):
            async with self.locks.hold(document_key(self.company_id, document_id)):
                document = self._get_document(document_id)

                if document.status != DocumentStatus.PENDING:
                    return LifecycleResult(
                        outcome=OperationOutcome.SUCCESS,
                        operation="update_status",
                        message=f"Document is {document.status.value}; nothing to update",
                        document_id=document_id,
                        status=document.status,
                        updated=False,
                        document=document,
                    )

                try:
                    result = await self.connector.check_consolidation_status(document)
                    error = result.error_message
                except Exception as e:
                    logger.exception(f"Status check failed: {e}")
                    result = None
                    error = str(e)

                if result is None or (error and result.status is None):
                    document = self.store.update_document(
                        document.model_copy(update={"last_error": error, "updated_at": self.clock()})
                    )
                    return LifecycleResult(
                        outcome=OperationOutcome.FAILURE,
                        operation="update_status",
                        message="Status check failed",
                        document_id=document_id,
                        status=document.status,
                        updated=False,
                        document=document,
                        error=error,
                    )

                new_status = result.status
                if new_status is None and result.long_id:
                    new_status = DocumentStatus.VALID

                if new_status not in POLL_RESOLVED_STATUSES:
                    if new_status not in (None, DocumentStatus.PENDING):
                        logger.warning(
                            f"Ignoring status {new_status.value} reported for a pending document",
                            extra_fields={"uuid": document.uuid},
                        )
                    else:
                        logger.debug("Document still pending")
                    return LifecycleResult(
                        outcome=OperationOutcome.SUCCESS,
                        operation="update_status",
                        message="Document is still pending",
                        document_id=document_id,
                        status=document.status,
                        updated=False,
                        document=document,
                    )

                update = {
                    "status": new_status,
                    "last_error": error,
                    "updated_at": self.clock(),
                }
                if result.long_id:
                    update["long_id"] = result.long_id
                if result.validated_at:
                    update["validated_at"] = result.validated_at
                document = self.store.update_document(document.model_copy(update=update))

                logger.info(
                    f"Document status changed: pending -> {new_status.value}",
                    extra_fields={"long_id": document.long_id},
                )
                return LifecycleResult(
                    outcome=OperationOutcome.SUCCESS,
                    operation="update_status",
                    message=f"Document is now {new_status.value}",
                    document_id=document_id,
                    status=new_status,
                    updated=True,
                    document=document,
                )

    # =========================================================================
    # Cancel
    # =========================================================================

    async def cancel(self, document_id: str, reason: Optional[str] = None) -> LifecycleResult:
        """
        Cancel a valid or invalid document and release its members.

        Raises:
            DocumentNotFoundError: Unknown identifier
            TransitionNotAllowedError: Document is pending or already cancelled
        """
        reason = (reason or "").strip() or DEFAULT_CANCELLATION_REASON
        self._check_cancellable(self._get_document(document_id))

        with with_correlation(
            company_id=self.company_id,
            document_id=document_id,
            operation="cancel",
        ):
            async with self.locks.hold(document_key(self.company_id, document_id)):
                document = self._get_document(document_id)
                self._check_cancellable(document)

                try:
                    result = await self.connector.cancel_consolidation(document, reason)
                    error = None if result.success else (result.message or "Cancellation rejected")
                except Exception as e:
                    logger.exception(f"Cancellation failed: {e}")
                    error = str(e)

                if error:
                    document = self.store.update_document(
                        document.model_copy(update={"last_error": error, "updated_at": self.clock()})
                    )
                    return LifecycleResult(
                        outcome=OperationOutcome.FAILURE,
                        operation="cancel",
                        message="Cancellation failed",
                        document_id=document_id,
                        status=document.status,
                        updated=False,
                        document=document,
                        error=error,
                    )

                now = self.clock()
                previous = document.status
                document = self.store.update_document(document.model_copy(update={
                    "status": DocumentStatus.CANCELLED,
                    "cancellation_reason": reason,
                    "cancelled_at": now,
                    "last_error": None,
                    "updated_at": now,
                }))

                logger.info(
                    f"Document cancelled ({previous.value} -> cancelled)",
                    extra_fields={"reason": reason, "released": document.member_count},
                )
                return LifecycleResult(
                    outcome=OperationOutcome.SUCCESS,
                    operation="cancel",
                    message=result.message or "Document cancelled",
                    document_id=document_id,
                    status=DocumentStatus.CANCELLED,
                    updated=True,
                    document=document,
                )

    @staticmethod
    def _check_cancellable(document: ConsolidatedDocument) -> None:
        if document.status not in CANCELLABLE_STATUSES:
            reason = None
            if document.status == DocumentStatus.PENDING:
                reason = "pending documents must be resolved by a status check first"
            raise TransitionNotAllowedError(
                document.document_id, document.status.value, "cancel", reason
            )
