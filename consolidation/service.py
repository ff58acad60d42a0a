"""
Consolidation Service

Facade over eligibility, aggregation, lifecycle and scheduler for one business
line. This is what the HTTP API and the Temporal activities call.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from core.errors import (
    DuplicateConsolidationError,
    EmptySelectionError,
    IneligibleSelectionError,
    InvalidPeriodError,
)
from core.models import (
    ACTIVE_DOCUMENT_STATUSES,
    AttemptStatus,
    ConsolidatedDocument,
    ConsolidationPreview,
    DocumentStatus,
    Invoice,
    LifecycleResult,
    Period,
    business_now,
    to_business_time,
)
from core.models.period import MAX_YEAR, MIN_YEAR
from core.observability.logging import get_logger, with_correlation
from connectors.tax_authority_base import TaxAuthorityConnector

from .aggregation import aggregate, consolidated_id
from .db import ConsolidationStore
from .eligibility import explain_ineligible, resolve_eligible
from .lifecycle import ConsolidationLifecycle
from .locks import KeyedLocks, period_key
from .scheduler import AutoConsolidationRun, AutoConsolidationScheduler
from .sources import InvoiceSource

logger = get_logger(__name__)


class ConsolidationService:
    """
    Consolidated e-invoicing operations for one business line.

    Usage:
        service = ConsolidationService("tienhock", store, connector, source)
        preview = await service.preview_consolidation(Period(2025, 3))
        result = await service.submit(Period(2025, 3))
    """

    def __init__(
        self,
        company_id: str,
        store: ConsolidationStore,
        connector: TaxAuthorityConnector,
        source: InvoiceSource,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = business_now,
        auto_consolidation_default: bool = False,
    ):
        self.company_id = company_id
        self.store = store
        self.connector = connector
        self.source = source
        self.locks = locks or KeyedLocks()
        self.clock = clock
        self.auto_consolidation_default = auto_consolidation_default

        self.lifecycle = ConsolidationLifecycle(
            store, connector, company_id=company_id, locks=self.locks, clock=clock,
        )
        self.scheduler = AutoConsolidationScheduler(
            store, self.lifecycle, company_id=company_id, locks=self.locks,
        )

    # =========================================================================
    # Eligibility & Preview
    # =========================================================================

    async def list_eligible_invoices(self, period: Period) -> List[Invoice]:
        """Invoices of the period that may still be consolidated, in source order."""
        candidates = await self.source.fetch_eligible_invoices(period)
        memberships = self.store.active_memberships(self.company_id, [inv.id for inv in candidates])
        eligible = resolve_eligible(period, candidates, memberships)
        logger.debug(
            "Eligibility resolved",
            extra_fields={
                "period": str(period),
                "candidates": len(candidates),
                "eligible": len(eligible),
            },
        )
        return eligible

    async def _select(
        self,
        period: Period,
        selected_invoice_ids: Optional[Sequence[str]],
    ) -> List[Invoice]:
        eligible = await self.list_eligible_invoices(period)
        if selected_invoice_ids is None:
            return eligible

        wanted = list(dict.fromkeys(selected_invoice_ids))
        by_id = {inv.id: inv for inv in eligible}
        missing = [invoice_id for invoice_id in wanted if invoice_id not in by_id]
        if missing:
            candidates = await self.source.fetch_eligible_invoices(period)
            memberships = self.store.active_memberships(self.company_id, missing)
            reasons = explain_ineligible(period, candidates, memberships)
            logger.warning(
                "Ineligible invoices selected",
                extra_fields={
                    "period": str(period),
                    "reasons": {i: reasons.get(i, "not_found") for i in missing},
                },
            )
            raise IneligibleSelectionError(missing)
        return [by_id[invoice_id] for invoice_id in wanted]

    async def preview_consolidation(
        self,
        period: Period,
        selected_invoice_ids: Optional[Sequence[str]] = None,
    ) -> ConsolidationPreview:
        """
        Aggregate the eligible invoices of a period (or a selected subset).

        Raises:
            IneligibleSelectionError: A selected invoice is not eligible
        """
        members = await self._select(period, selected_invoice_ids)
        return aggregate(period, members)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _ensure_not_consolidated(self, period: Period) -> None:
        existing = self.store.latest_document(self.company_id, consolidated_id(period))
        if existing is not None and existing.status in ACTIVE_DOCUMENT_STATUSES:
            raise DuplicateConsolidationError(existing.document_id, existing.status.value)

    async def _prepare(
        self,
        period: Period,
        selected_invoice_ids: Optional[Sequence[str]] = None,
    ) -> Tuple[ConsolidationPreview, List[Invoice]]:
        self._ensure_not_consolidated(period)
        members = await self._select(period, selected_invoice_ids)
        preview = aggregate(period, members)
        by_id = {inv.id: inv for inv in members}
        return preview, [by_id[invoice_id] for invoice_id in preview.member_ids]

    async def submit(
        self,
        period: Period,
        selected_invoice_ids: Optional[Sequence[str]] = None,
    ) -> LifecycleResult:
        """
        Consolidate a period manually.

        Raises:
            DuplicateConsolidationError: Period already has a pending or valid document
            EmptySelectionError: Nothing selected, or nothing eligible
            IneligibleSelectionError: A selected invoice is not eligible
        """
        if selected_invoice_ids is not None and len(selected_invoice_ids) == 0:
            raise EmptySelectionError()

        with with_correlation(company_id=self.company_id, period=str(period)):
            async with self.locks.hold(period_key(self.company_id, period)):
                preview, members = await self._prepare(period, selected_invoice_ids)
                if preview.is_empty:
                    raise EmptySelectionError(f"No eligible invoices found for {period}")
                return await self.lifecycle.submit(preview, members)

    async def _consolidate_for_schedule(self, period: Period) -> Optional[LifecycleResult]:
        # Period lock is held by the scheduler
        preview, members = await self._prepare(period)
        if preview.is_empty:
            return None
        return await self.lifecycle.submit(preview, members)

    async def update_status(self, document_id: str) -> LifecycleResult:
        """Poll a pending document."""
        return await self.lifecycle.update_status(document_id)

    async def cancel(self, document_id: str, reason: Optional[str] = None) -> LifecycleResult:
        """Cancel a valid or invalid document."""
        return await self.lifecycle.cancel(document_id, reason)

    async def refresh_pending_consolidations(self) -> List[LifecycleResult]:
        """Poll every pending document, then settle attempts waiting on them."""
        now = self.clock()
        pending = [
            doc for doc in self._latest_revisions(self.store.list_documents(self.company_id))
            if doc.status == DocumentStatus.PENDING
        ]

        results = []
        for document in pending:
            results.append(await self.lifecycle.update_status(document.document_id))

        for attempt in self.store.list_attempts(self.company_id, [AttemptStatus.PROCESSING]):
            async with self.locks.hold(period_key(self.company_id, attempt.period)):
                self.scheduler.sync_attempt(attempt, now)

        if pending:
            logger.info(
                "Pending consolidations refreshed",
                extra_fields={
                    "checked": len(results),
                    "updated": sum(1 for r in results if r.updated),
                },
            )
        return results

    # =========================================================================
    # Reporting
    # =========================================================================

    @staticmethod
    def _latest_revisions(documents: Iterable[ConsolidatedDocument]) -> List[ConsolidatedDocument]:
        latest: Dict[str, ConsolidatedDocument] = {}
        for document in documents:
            current = latest.get(document.document_id)
            if current is None or document.revision > current.revision:
                latest[document.document_id] = document
        return list(latest.values())

    def get_document(self, document_id: str) -> Optional[ConsolidatedDocument]:
        return self.store.latest_document(self.company_id, document_id)

    def list_consolidation_history(self, year: int) -> List[ConsolidatedDocument]:
        """Every consolidated document (all revisions) for the year, by period."""
        if not MIN_YEAR <= year <= MAX_YEAR:
            raise InvalidPeriodError(year, None, f"year must be {MIN_YEAR}-{MAX_YEAR}")
        return self.store.list_documents(self.company_id, year)

    def get_auto_consolidation_status(self, period: Period) -> Dict[str, Any]:
        """Attempt status for a period, or ``{"exists": False, "status": None}``."""
        attempt = self.store.get_attempt(self.company_id, period)
        if attempt is None:
            return {"exists": False, "status": None}
        return attempt.to_status_dict()

    # =========================================================================
    # Auto-Consolidation
    # =========================================================================

    def is_auto_consolidation_enabled(self) -> bool:
        enabled = self.store.get_auto_consolidation_enabled(self.company_id)
        return self.auto_consolidation_default if enabled is None else enabled

    def get_auto_consolidation_settings(self) -> Dict[str, Any]:
        return {
            "company_id": self.company_id,
            "auto_consolidation_enabled": self.is_auto_consolidation_enabled(),
        }

    def set_auto_consolidation_settings(self, enabled: bool) -> Dict[str, Any]:
        self.store.set_auto_consolidation_enabled(self.company_id, bool(enabled))
        logger.info(
            f"Auto-consolidation {'enabled' if enabled else 'disabled'}",
            extra_fields={"company_id": self.company_id},
        )
        return self.get_auto_consolidation_settings()

    async def run_auto_consolidation(self, now: Optional[datetime] = None) -> AutoConsolidationRun:
        """Run the scheduler once with the persisted toggle."""
        now = to_business_time(now) if now is not None else self.clock()
        with with_correlation(company_id=self.company_id):
            return await self.scheduler.run(
                now,
                enabled=self.is_auto_consolidation_enabled(),
                consolidate=self._consolidate_for_schedule,
            )
