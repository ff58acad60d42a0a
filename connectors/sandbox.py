"""In-memory tax authority for development and tests.

Outcomes are scripted per call; when the script for an operation is empty the
sandbox falls back to its defaults (accept every submission, validate pending
documents on the first status check, accept every cancellation). A scripted
exception is raised instead of returned, to exercise transport failures.
"""

import uuid as uuid_lib
from collections import deque
from datetime import datetime
from typing import Any, Deque, List, Sequence, Tuple, Union

from core.models import (
    AcceptedDocument,
    ConsolidatedDocument,
    ConsolidationPreview,
    DocumentStatus,
    Invoice,
)
from core.models.period import BUSINESS_TZ
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

logger = get_logger(__name__)

Scripted = Union[Any, Exception]


@register_connector("sandbox")
class SandboxConnector(TaxAuthorityConnector):
    """
    Scripted tax authority.

    Usage:
        sandbox = SandboxConnector(TaxAuthorityConfig(connector_type="sandbox"))
        sandbox.script_submission(SubmissionResult(success=False, error_message="down"))
    """

    def __init__(self, config: TaxAuthorityConfig):
        super().__init__(config)
        self.submit_status = DocumentStatus(config.custom_settings.get("submit_status", "valid"))

        self._submissions: Deque[Scripted] = deque()
        self._status_checks: Deque[Scripted] = deque()
        self._cancellations: Deque[Scripted] = deque()

        # Call log
        self.submitted: List[Tuple[ConsolidationPreview, List[str]]] = []
        self.checked: List[str] = []
        self.cancelled: List[Tuple[str, str]] = []

    # =========================================================================
    # Scripting
    # =========================================================================

    def script_submission(self, *outcomes: Scripted) -> None:
        self._submissions.extend(outcomes)

    def script_status(self, *outcomes: Scripted) -> None:
        self._status_checks.extend(outcomes)

    def script_cancellation(self, *outcomes: Scripted) -> None:
        self._cancellations.extend(outcomes)

    @staticmethod
    def _next(queue: Deque[Scripted]):
        if not queue:
            return None
        outcome = queue.popleft()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    # =========================================================================
    # Contract
    # =========================================================================

    async def submit_consolidation(
        self,
        preview: ConsolidationPreview,
        members: Sequence[Invoice],
    ) -> SubmissionResult:
        self.submitted.append((preview, [inv.id for inv in members]))
        scripted = self._next(self._submissions)
        if scripted is not None:
            return scripted

        document_uuid = uuid_lib.uuid4().hex[:26].upper()
        validated = self.submit_status == DocumentStatus.VALID
        now = datetime.now(BUSINESS_TZ)

        logger.info(
            "Sandbox accepted consolidation",
            extra_fields={"document_id": preview.consolidated_id, "members": preview.member_count},
        )
        return SubmissionResult(
            success=True,
            status=self.submit_status,
            submission_uid=uuid_lib.uuid4().hex[:26].upper(),
            uuid=document_uuid,
            long_id=f"LONG-{document_uuid}" if validated else None,
            validated_at=now if validated else None,
            accepted_documents=[
                AcceptedDocument(
                    id=preview.consolidated_id,
                    uuid=document_uuid,
                    long_id=f"LONG-{document_uuid}" if validated else None,
                    status=self.submit_status.value,
                    validated_at=now if validated else None,
                )
            ],
        )

    async def check_consolidation_status(self, document: ConsolidatedDocument) -> StatusCheckResult:
        self.checked.append(document.document_id)
        scripted = self._next(self._status_checks)
        if scripted is not None:
            return scripted

        if document.status != DocumentStatus.PENDING:
            return StatusCheckResult(updated=False)
        return StatusCheckResult(
            status=DocumentStatus.VALID,
            long_id=f"LONG-{document.uuid or document.document_id}",
            validated_at=datetime.now(BUSINESS_TZ),
            updated=True,
        )

    async def cancel_consolidation(
        self,
        document: ConsolidatedDocument,
        reason: str = DEFAULT_CANCELLATION_REASON,
    ) -> CancellationResult:
        self.cancelled.append((document.document_id, reason))
        scripted = self._next(self._cancellations)
        if scripted is not None:
            return scripted
        return CancellationResult(success=True, message="Document cancelled")
