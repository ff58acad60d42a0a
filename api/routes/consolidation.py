"""Consolidation endpoints.

Eligibility, preview, submission, status polling, cancellation, history and
auto-consolidation settings for one business line (``company_id`` path
parameter).

Months are 1-based. Clients that index months from zero pass
``month_base=0`` and the period is converted here.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from api.services import get_service, is_known_company
from consolidation import ConsolidationService
from core.models import (
    ConsolidatedDocument,
    ConsolidationPreview,
    Invoice,
    LifecycleResult,
    Period,
)


router = APIRouter()


class PeriodSelection(BaseModel):
    """Period plus an optional explicit invoice selection."""
    year: int
    month: int
    month_base: int = Field(1, description="1 for January=1, 0 for January=0")
    invoice_ids: Optional[List[str]] = Field(
        None,
        description="Subset of eligible invoices (all eligible invoices when omitted)",
    )


class CancelRequest(BaseModel):
    """Request to cancel a consolidated document."""
    reason: Optional[str] = None


class SettingsRequest(BaseModel):
    """Auto-consolidation toggle."""
    auto_consolidation_enabled: bool


class SettingsResponse(BaseModel):
    """Auto-consolidation settings of a business line."""
    company_id: str
    auto_consolidation_enabled: bool


class EligibleInvoicesResponse(BaseModel):
    """Invoices that may join the period's consolidated document."""
    period: str
    total: int
    items: List[Invoice]


def _service(company_id: str) -> ConsolidationService:
    if not is_known_company(company_id):
        raise HTTPException(status_code=404, detail=f"Unknown company: {company_id}")
    return get_service(company_id)


def _period(year: int, month: int, month_base: int) -> Period:
    if month_base not in (0, 1):
        raise HTTPException(status_code=400, detail="month_base must be 0 or 1")
    if month_base == 0:
        return Period.from_zero_based(year, month)
    return Period(year, month)


@router.get("/{company_id}/eligible", response_model=EligibleInvoicesResponse)
async def list_eligible_invoices(
    company_id: str,
    year: int = Query(...),
    month: int = Query(...),
    month_base: int = Query(1),
) -> EligibleInvoicesResponse:
    """List invoices of the period that may still be consolidated."""
    period = _period(year, month, month_base)
    invoices = await _service(company_id).list_eligible_invoices(period)
    return EligibleInvoicesResponse(period=str(period), total=len(invoices), items=invoices)


@router.post("/{company_id}/preview", response_model=ConsolidationPreview)
async def preview_consolidation(company_id: str, request: PeriodSelection) -> ConsolidationPreview:
    """Aggregate the period's eligible invoices without submitting."""
    period = _period(request.year, request.month, request.month_base)
    return await _service(company_id).preview_consolidation(period, request.invoice_ids)


@router.post("/{company_id}/submit", response_model=LifecycleResult)
async def submit_consolidation(company_id: str, request: PeriodSelection) -> LifecycleResult:
    """Submit the consolidated document for a period.

    A tax-authority failure is reported in the result body (``outcome``),
    not as an HTTP error.
    """
    period = _period(request.year, request.month, request.month_base)
    return await _service(company_id).submit(period, request.invoice_ids)


@router.get("/{company_id}/documents/{document_id}", response_model=ConsolidatedDocument)
async def get_document(company_id: str, document_id: str) -> ConsolidatedDocument:
    """Get the latest revision of a consolidated document."""
    document = _service(company_id).get_document(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail=f"Consolidated document not found: {document_id}")
    return document


@router.post("/{company_id}/documents/{document_id}/update-status", response_model=LifecycleResult)
async def update_status(company_id: str, document_id: str) -> LifecycleResult:
    """Poll the tax authority for a pending document."""
    return await _service(company_id).update_status(document_id)


@router.post("/{company_id}/documents/{document_id}/cancel", response_model=LifecycleResult)
async def cancel_document(
    company_id: str,
    document_id: str,
    request: Optional[CancelRequest] = None,
) -> LifecycleResult:
    """Cancel a valid or invalid consolidated document."""
    reason = request.reason if request else None
    return await _service(company_id).cancel(document_id, reason)


@router.get("/{company_id}/history/{year}", response_model=List[ConsolidatedDocument])
async def consolidation_history(company_id: str, year: int) -> List[ConsolidatedDocument]:
    """Every consolidated document of a year, ordered by period."""
    return _service(company_id).list_consolidation_history(year)


@router.get("/{company_id}/auto-status")
async def auto_consolidation_status(
    company_id: str,
    year: int = Query(...),
    month: int = Query(...),
    month_base: int = Query(1),
) -> Dict[str, Any]:
    """Auto-consolidation attempt status for a period."""
    period = _period(year, month, month_base)
    return _service(company_id).get_auto_consolidation_status(period)


@router.get("/{company_id}/settings", response_model=SettingsResponse)
async def get_settings(company_id: str) -> SettingsResponse:
    """Get the auto-consolidation toggle."""
    return SettingsResponse(**_service(company_id).get_auto_consolidation_settings())


@router.put("/{company_id}/settings", response_model=SettingsResponse)
async def update_settings(company_id: str, request: SettingsRequest) -> SettingsResponse:
    """Enable or disable auto-consolidation."""
    settings = _service(company_id).set_auto_consolidation_settings(request.auto_consolidation_enabled)
    return SettingsResponse(**settings)


@router.post("/{company_id}/run-auto")
async def run_auto_consolidation(company_id: str) -> Dict[str, Any]:
    """Run the auto-consolidation scheduler once, now."""
    run = await _service(company_id).run_auto_consolidation()
    return run.to_dict()
