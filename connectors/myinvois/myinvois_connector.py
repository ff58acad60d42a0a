"""MyInvois Tax Authority Connector.

Implements the TaxAuthorityConnector interface for the Malaysian MyInvois
e-invoice system. Rendering the consolidated document (UBL XML or JSON) is
delegated to an injected DocumentRenderer.
"""

import base64
import hashlib
from typing import Any, Dict, List, Optional, Sequence

from typing_extensions import Protocol

from core.models import (
    AcceptedDocument,
    ConsolidatedDocument,
    ConsolidationPreview,
    DocumentStatus,
    ErrorDetail,
    Invoice,
    RejectedDocument,
)
from core.observability.logging import get_logger

from connectors.tax_authority_base import (
    DEFAULT_CANCELLATION_REASON,
    CancellationResult,
    StatusCheckResult,
    SubmissionResult,
    TaxAuthorityConfig,
    TaxAuthorityConnector,
    register_connector,
)
from connectors.myinvois.myinvois_auth import MyInvoisAuthConfig, MyInvoisAuthProvider
from connectors.myinvois.myinvois_client import MyInvoisApiClient, MyInvoisApiConfig

logger = get_logger(__name__)


# MyInvois document statuses that mean the document was refused
REJECTED_STATUSES = frozenset({"invalid", "rejected"})


class DocumentRenderer(Protocol):
    """Renders a consolidated document in a format MyInvois accepts."""

    document_format: str  # "XML" or "JSON"

    def render(self, preview: ConsolidationPreview, members: Sequence[Invoice]) -> str:
        ...


# =============================================================================
# Payload & Response Mapping
# =============================================================================

def build_document_entry(content: str, code_number: str, document_format: str = "XML") -> Dict[str, str]:
    """Encode one rendered document for the submissions endpoint."""
    raw = content.encode("utf-8")
    return {
        "format": document_format,
        "document": base64.b64encode(raw).decode("ascii"),
        "documentHash": hashlib.sha256(raw).hexdigest(),
        "codeNumber": code_number,
    }


def map_error(error: Optional[Dict[str, Any]]) -> ErrorDetail:
    if not error:
        return ErrorDetail()
    return ErrorDetail(
        code=error.get("code") or error.get("errorCode"),
        message=error.get("message") or error.get("error"),
        target=error.get("target") or error.get("propertyName"),
        details=list(error.get("details") or []),
    )


def map_rejected(entries: Optional[List[Dict[str, Any]]]) -> List[RejectedDocument]:
    return [
        RejectedDocument(
            id=entry.get("invoiceCodeNumber") or entry.get("codeNumber") or "",
            error=map_error(entry.get("error")),
        )
        for entry in entries or []
    ]


def map_submission_response(response: Dict[str, Any]) -> SubmissionResult:
    """Map the POST /documentsubmissions response (before any summary lookup)."""
    accepted = response.get("acceptedDocuments") or []
    rejected = map_rejected(response.get("rejectedDocuments"))

    if not accepted:
        if rejected:
            first = rejected[0].error
            message = first.message or first.code or "Document rejected"
        else:
            message = "Invalid submission response: no documents were processed"
        return SubmissionResult(success=False, rejected_documents=rejected, error_message=message)

    accepted_documents = [
        AcceptedDocument(
            id=entry.get("invoiceCodeNumber") or entry.get("codeNumber") or "",
            uuid=entry.get("uuid"),
        )
        for entry in accepted
    ]
    return SubmissionResult(
        success=True,
        status=DocumentStatus.PENDING,
        submission_uid=response.get("submissionUid") or response.get("submissionUID"),
        uuid=accepted_documents[0].uuid,
        accepted_documents=accepted_documents,
        rejected_documents=rejected,
    )


def map_document_status(status: Optional[str], long_id: Optional[str]) -> Optional[DocumentStatus]:
    """A long id means valid; Invalid/Rejected means invalid; anything else is no change."""
    if long_id:
        return DocumentStatus.VALID
    if status and status.strip().lower() in REJECTED_STATUSES:
        return DocumentStatus.INVALID
    return None


def apply_submission_summary(result: SubmissionResult, summary: Dict[str, Any]) -> SubmissionResult:
    """Fold the GET /documentsubmissions/{uid} summary into a submission result."""
    entries = summary.get("documentSummary") or []
    entry = next((e for e in entries if e.get("uuid") == result.uuid), entries[0] if entries else None)
    if entry is None:
        return result

    long_id = entry.get("longId") or entry.get("longID") or None
    status = map_document_status(entry.get("status"), long_id) or DocumentStatus.PENDING
    validated_at = entry.get("dateTimeValidated") if status == DocumentStatus.VALID else None

    accepted = [
        AcceptedDocument.model_validate({
            **doc.model_dump(),
            "long_id": long_id,
            "status": entry.get("status"),
            "validated_at": validated_at,
        }) if doc.uuid == entry.get("uuid") else doc
        for doc in result.accepted_documents
    ]
    return SubmissionResult.model_validate({
        **result.model_dump(),
        "status": status,
        "long_id": long_id,
        "validated_at": validated_at,
        "accepted_documents": [doc.model_dump() for doc in accepted],
    })


def map_document_details(details: Dict[str, Any]) -> StatusCheckResult:
    """Map GET /documents/{uuid}/details to a status check result."""
    long_id = details.get("longId") or details.get("longID") or None
    status = map_document_status(details.get("status"), long_id)
    if status is None:
        return StatusCheckResult(updated=False)

    error_message = None
    if status == DocumentStatus.INVALID:
        steps = (details.get("validationResults") or {}).get("validationSteps") or []
        errors = [step.get("error") for step in steps if step.get("error")]
        if errors:
            error_message = map_error(errors[0]).message
    return StatusCheckResult(
        status=status,
        long_id=long_id,
        validated_at=details.get("dateTimeValidated") if status == DocumentStatus.VALID else None,
        updated=True,
        error_message=error_message,
    )


# =============================================================================
# Connector
# =============================================================================

@register_connector("myinvois")
class MyInvoisConnector(TaxAuthorityConnector):
    """MyInvois connector implementation.

    Required configuration:
    - base_url: MyInvois API host
    - client_id / client_secret: Taxpayer system credentials

    Collaborators:
    - renderer: DocumentRenderer producing the consolidated document
    """

    def __init__(
        self,
        config: TaxAuthorityConfig,
        renderer: Optional[DocumentRenderer] = None,
        client: Optional[MyInvoisApiClient] = None,
    ):
        super().__init__(config)
        self.renderer = renderer

        if client is None:
            base_url = config.base_url or MyInvoisApiConfig.base_url
            auth = MyInvoisAuthProvider(MyInvoisAuthConfig(
                base_url=base_url,
                client_id=config.client_id or "",
                client_secret=config.client_secret or "",
            ))
            client = MyInvoisApiClient(
                auth,
                MyInvoisApiConfig(base_url=base_url, timeout_seconds=config.timeout_seconds),
            )
        self.client = client

    async def close(self) -> None:
        await self.client.disconnect()

    async def submit_consolidation(
        self,
        preview: ConsolidationPreview,
        members: Sequence[Invoice],
    ) -> SubmissionResult:
        if self.renderer is None:
            raise ValueError("MyInvois connector has no document renderer configured")

        content = self.renderer.render(preview, members)
        entry = build_document_entry(content, preview.consolidated_id, self.renderer.document_format)

        response = await self.client.submit_documents([entry])
        result = map_submission_response(response)
        if not result.success or not result.submission_uid:
            return result

        # The document is accepted at this point; polling resolves it if the summary is unavailable
        try:
            summary = await self.client.get_submission(result.submission_uid)
        except Exception as e:
            logger.warning(
                f"Submission summary unavailable, keeping document pending: {e}",
                extra_fields={
                    "document_id": preview.consolidated_id,
                    "submission_uid": result.submission_uid,
                    "uuid": result.uuid,
                },
                exc_info=True,
            )
            return result
        result = apply_submission_summary(result, summary)
        logger.info(
            "MyInvois submission processed",
            extra_fields={
                "document_id": preview.consolidated_id,
                "submission_uid": result.submission_uid,
                "status": result.status.value if result.status else None,
            },
        )
        return result

    async def check_consolidation_status(self, document: ConsolidatedDocument) -> StatusCheckResult:
        if not document.uuid:
            return StatusCheckResult(error_message="Document has no MyInvois UUID")
        details = await self.client.get_document_details(document.uuid)
        return map_document_details(details)

    async def cancel_consolidation(
        self,
        document: ConsolidatedDocument,
        reason: str = DEFAULT_CANCELLATION_REASON,
    ) -> CancellationResult:
        if not document.uuid:
            return CancellationResult(success=False, message="Document has no MyInvois UUID")
        await self.client.cancel_document(document.uuid, reason)
        return CancellationResult(success=True, message="Document cancelled")
