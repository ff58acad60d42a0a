"""
Auto-Consolidation Scheduler

Each month, on days 3-7 (business timezone, UTC+8), the previous month is
consolidated automatically. One attempt record per period tracks progress:

    pending -> processing -> completed | failed | expired | skipped
    failed  -> processing            (retry, at most once per business day)
    pending | processing | failed -> expired   (window closed)

The window check is the only timeout: a stale attempt is expired the next
time the scheduler runs (enabled or not), never by a timer.

Only a valid document for the period skips the attempt. A pending document
submitted by hand is followed until it validates or turns invalid, in which
case the attempt fails and is retried on a later day.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional

from core.errors import (
    ConsolidationError,
    DuplicateConsolidationError,
    InvalidAttemptTransitionError,
)
from core.models import (
    BUSINESS_TZ,
    AttemptStatus,
    AutoConsolidationAttempt,
    ConsolidatedDocument,
    DocumentStatus,
    LifecycleResult,
    OperationOutcome,
    Period,
    business_date,
    to_business_time,
)
from core.observability.logging import get_logger, with_correlation

from .aggregation import consolidated_id
from .db import ConsolidationStore
from .lifecycle import ConsolidationLifecycle
from .locks import KeyedLocks, period_key

logger = get_logger(__name__)


WINDOW_START_DAY = 3
WINDOW_END_DAY = 7
MAX_ATTEMPTS = 5

EXPIRED_ERROR = "Consolidation window expired"
NO_ELIGIBLE_ERROR = "No eligible invoices found"
INTERRUPTED_ERROR = "Previous attempt was interrupted"

ALLOWED_ATTEMPT_TRANSITIONS: Dict[AttemptStatus, FrozenSet[AttemptStatus]] = {
    AttemptStatus.PENDING: frozenset({
        AttemptStatus.PROCESSING,
        AttemptStatus.SKIPPED,
        AttemptStatus.EXPIRED,
    }),
    AttemptStatus.PROCESSING: frozenset({
        AttemptStatus.COMPLETED,
        AttemptStatus.FAILED,
        AttemptStatus.SKIPPED,
        AttemptStatus.EXPIRED,
    }),
    AttemptStatus.FAILED: frozenset({
        AttemptStatus.PROCESSING,
        AttemptStatus.SKIPPED,
        AttemptStatus.EXPIRED,
    }),
    AttemptStatus.COMPLETED: frozenset(),
    AttemptStatus.SKIPPED: frozenset(),
    AttemptStatus.EXPIRED: frozenset(),
}

OPEN_ATTEMPT_STATUSES = (
    AttemptStatus.PENDING,
    AttemptStatus.PROCESSING,
    AttemptStatus.FAILED,
)


# =============================================================================
# Window Computation
# =============================================================================

def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=BUSINESS_TZ)


@dataclass(frozen=True)
class ConsolidationWindow:
    """Where ``now`` falls relative to the monthly consolidation window."""
    now: datetime
    in_window: bool
    target_period: Optional[Period]
    window_start: Optional[datetime]
    window_end: Optional[datetime]          # exclusive
    next_window_start: datetime


def window_for(period: Period) -> ConsolidationWindow:
    """The window that consolidates ``period`` (days 3-7 of the following month)."""
    following = period.next()
    start = _day_start(date(following.year, following.month, WINDOW_START_DAY))
    end = _day_start(date(following.year, following.month, WINDOW_END_DAY)) + timedelta(days=1)
    return ConsolidationWindow(
        now=start,
        in_window=True,
        target_period=period,
        window_start=start,
        window_end=end,
        next_window_start=_day_start(
            date(following.next().year, following.next().month, WINDOW_START_DAY)
        ),
    )


def compute_window(now: datetime) -> ConsolidationWindow:
    """
    Compute the consolidation window for a point in time.

    Args:
        now: Current time (naive values are business-local)

    Returns:
        ConsolidationWindow; ``target_period`` is the previous month when in
        window, otherwise None.
    """
    now = to_business_time(now)
    current = Period.containing(now)
    day = now.day

    if WINDOW_START_DAY <= day <= WINDOW_END_DAY:
        window = window_for(current.previous())
        return ConsolidationWindow(
            now=now,
            in_window=True,
            target_period=window.target_period,
            window_start=window.window_start,
            window_end=window.window_end,
            next_window_start=window.next_window_start,
        )

    upcoming = current if day < WINDOW_START_DAY else current.next()
    return ConsolidationWindow(
        now=now,
        in_window=False,
        target_period=None,
        window_start=None,
        window_end=None,
        next_window_start=_day_start(date(upcoming.year, upcoming.month, WINDOW_START_DAY)),
    )


def next_retry_at(period: Period, now: datetime) -> Optional[datetime]:
    """Start of the next business day, if it is still inside the period's window."""
    candidate = _day_start(business_date(now) + timedelta(days=1))
    if candidate < window_for(period).window_end:
        return candidate
    return None


def can_retry(attempt: AutoConsolidationAttempt, now: datetime) -> bool:
    """A failed attempt may run again once per business day, up to MAX_ATTEMPTS."""
    if attempt.attempt_count >= MAX_ATTEMPTS:
        return False
    if attempt.last_attempt is None:
        return True
    return business_date(attempt.last_attempt) < business_date(now)


# =============================================================================
# Attempt Transitions
# =============================================================================

def transition_attempt(
    attempt: AutoConsolidationAttempt,
    target: AttemptStatus,
    now: datetime,
    **changes,
) -> AutoConsolidationAttempt:
    """
    Move an attempt to a new status.

    Raises:
        InvalidAttemptTransitionError: Transition not in ALLOWED_ATTEMPT_TRANSITIONS
    """
    if target not in ALLOWED_ATTEMPT_TRANSITIONS[attempt.status]:
        raise InvalidAttemptTransitionError(str(attempt.period), attempt.status.value, target.value)
    changes.update({"status": target, "updated_at": now})
    return attempt.model_copy(update=changes)


def attempt_status_for_document(document: ConsolidatedDocument) -> Optional[AttemptStatus]:
    """Attempt status implied by the document an attempt submitted (None: still pending)."""
    if document.status == DocumentStatus.VALID:
        return AttemptStatus.COMPLETED
    if document.status in (DocumentStatus.INVALID, DocumentStatus.CANCELLED):
        return AttemptStatus.FAILED
    return None


# =============================================================================
# Scheduler
# =============================================================================

Consolidate = Callable[[Period], Awaitable[Optional[LifecycleResult]]]


@dataclass
class AutoConsolidationRun:
    """Report of one scheduler invocation."""
    enabled: bool
    action: str
    message: str
    window: Optional[ConsolidationWindow] = None
    attempt: Optional[AutoConsolidationAttempt] = None
    result: Optional[LifecycleResult] = None
    expired: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "action": self.action,
            "message": self.message,
            "in_window": self.window.in_window if self.window else None,
            "target_period": str(self.window.target_period) if self.window and self.window.target_period else None,
            "next_window_start": self.window.next_window_start.isoformat() if self.window else None,
            "attempt": self.attempt.to_status_dict() if self.attempt else None,
            "result": self.result.model_dump(mode="json", exclude={"document"}) if self.result else None,
            "expired": list(self.expired),
        }


class AutoConsolidationScheduler:
    """
    Drives automatic consolidation attempts for one business line.

    The submission itself is delegated to ``consolidate``, which runs the
    eligibility -> aggregation -> submit sequence for a period and returns
    None when the period has no eligible invoices. The scheduler holds the
    period lock while calling it.
    """

    def __init__(
        self,
        store: ConsolidationStore,
        lifecycle: ConsolidationLifecycle,
        company_id: str = "default",
        locks: Optional[KeyedLocks] = None,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.company_id = company_id
        self.locks = locks or lifecycle.locks

    def _save(self, attempt: AutoConsolidationAttempt) -> AutoConsolidationAttempt:
        return self.store.save_attempt(attempt)

    def expire_stale_attempts(self, now: datetime) -> List[AutoConsolidationAttempt]:
        """Expire every open attempt whose window has closed."""
        now = to_business_time(now)
        expired = []
        for attempt in self.store.list_attempts(self.company_id, OPEN_ATTEMPT_STATUSES):
            if now >= window_for(attempt.period).window_end:
                attempt = self._save(transition_attempt(
                    attempt, AttemptStatus.EXPIRED, now,
                    error=EXPIRED_ERROR, last_attempt=now, next_attempt=None,
                ))
                logger.warning(
                    "Auto-consolidation attempt expired",
                    extra_fields={"period": str(attempt.period), "attempt_count": attempt.attempt_count},
                )
                expired.append(attempt)
        return expired

    def sync_attempt(
        self,
        attempt: AutoConsolidationAttempt,
        now: datetime,
    ) -> AutoConsolidationAttempt:
        """Complete or fail a processing attempt from its document's current status."""
        if attempt.status != AttemptStatus.PROCESSING or not attempt.consolidated_document_id:
            return attempt
        document = self.store.latest_document(self.company_id, attempt.consolidated_document_id)
        if document is None:
            return attempt
        target = attempt_status_for_document(document)
        if target is None:
            return attempt
        if target == AttemptStatus.COMPLETED:
            attempt = transition_attempt(attempt, target, now, error=None, next_attempt=None)
        else:
            attempt = transition_attempt(
                attempt, target, now,
                error=document.last_error or f"Consolidated document is {document.status.value}",
                next_attempt=next_retry_at(attempt.period, now),
            )
        logger.info(
            f"Attempt {target.value} from document status {document.status.value}",
            extra_fields={"period": str(attempt.period), "document_id": document.document_id},
        )
        return self._save(attempt)

    async def run(self, now: datetime, enabled: bool, consolidate: Consolidate) -> AutoConsolidationRun:
        """
        Execute one scheduler invocation.

        Args:
            now: Current time
            enabled: Persisted auto-consolidation toggle
            consolidate: Submits a period, or returns None if nothing is eligible

        Returns:
            AutoConsolidationRun describing what was done
        """
        now = to_business_time(now)
        expired = [str(a.period) for a in self.expire_stale_attempts(now)]

        if not enabled:
            logger.info("Auto-consolidation disabled; nothing to do")
            return AutoConsolidationRun(
                enabled=False,
                action="disabled",
                message="Auto-consolidation is disabled",
                expired=expired,
            )

        window = compute_window(now)

        if not window.in_window:
            return AutoConsolidationRun(
                enabled=True,
                action="out_of_window",
                message=f"Outside consolidation window; next window starts {window.next_window_start.date()}",
                window=window,
                expired=expired,
            )

        period = window.target_period
        with with_correlation(company_id=self.company_id, period=str(period), operation="auto_consolidation"):
            async with self.locks.hold(period_key(self.company_id, period)):
                report = await self._run_period(period, now, consolidate)
        report.window = window
        report.expired = expired
        return report

    async def _run_period(self, period: Period, now: datetime, consolidate: Consolidate) -> AutoConsolidationRun:
        attempt = self.store.get_attempt(self.company_id, period)
        if attempt is None:
            attempt = self._save(AutoConsolidationAttempt(
                company_id=self.company_id,
                year=period.year,
                month=period.month,
                status=AttemptStatus.PENDING,
                next_attempt=now,
                created_at=now,
                updated_at=now,
            ))

        if attempt.is_final:
            return AutoConsolidationRun(
                enabled=True,
                action="already_final",
                message=f"Attempt for {period} is already {attempt.status.value}",
                attempt=attempt,
            )

        if attempt.status == AttemptStatus.PROCESSING:
            if attempt.consolidated_document_id:
                await self.lifecycle.update_status(attempt.consolidated_document_id)
                attempt = self.sync_attempt(attempt, now)
                if attempt.status == AttemptStatus.PROCESSING:
                    return AutoConsolidationRun(
                        enabled=True,
                        action="awaiting_validation",
                        message=f"{attempt.consolidated_document_id} is still pending validation",
                        attempt=attempt,
                    )
                if attempt.status == AttemptStatus.COMPLETED:
                    return AutoConsolidationRun(
                        enabled=True,
                        action="completed",
                        message=f"{attempt.consolidated_document_id} validated",
                        attempt=attempt,
                    )
            else:
                attempt = self._save(transition_attempt(
                    attempt, AttemptStatus.FAILED, now,
                    error=INTERRUPTED_ERROR,
                    next_attempt=next_retry_at(period, now),
                ))
                logger.warning("Stale processing attempt marked failed")

        document_id = consolidated_id(period)
        existing = self.store.latest_document(self.company_id, document_id)
        if existing is not None and existing.status == DocumentStatus.PENDING:
            return await self._follow(attempt, existing, now)
        if existing is not None and existing.status == DocumentStatus.VALID:
            attempt = self._save(transition_attempt(
                attempt, AttemptStatus.SKIPPED, now,
                consolidated_document_id=document_id,
                error=f"Period already consolidated as {document_id} ({existing.status.value})",
                next_attempt=None,
            ))
            logger.info("Period already consolidated; attempt skipped")
            return AutoConsolidationRun(
                enabled=True,
                action="skipped",
                message=attempt.error,
                attempt=attempt,
            )

        if attempt.status == AttemptStatus.FAILED and not can_retry(attempt, now):
            exhausted = attempt.attempt_count >= MAX_ATTEMPTS
            return AutoConsolidationRun(
                enabled=True,
                action="max_attempts_reached" if exhausted else "retry_not_due",
                message=(
                    f"Attempt limit of {MAX_ATTEMPTS} reached for {period}" if exhausted
                    else f"Next retry for {period} at {attempt.next_attempt}"
                ),
                attempt=attempt,
            )

        return await self._attempt(attempt, period, now, consolidate)

    async def _follow(
        self,
        attempt: AutoConsolidationAttempt,
        document: ConsolidatedDocument,
        now: datetime,
    ) -> AutoConsolidationRun:
        """Track a pending document submitted outside the scheduler instead of submitting again."""
        attempt = self._save(transition_attempt(
            attempt, AttemptStatus.PROCESSING, now,
            consolidated_document_id=document.document_id,
            last_attempt=now,
            next_attempt=None,
            error=None,
        ))
        logger.info(
            "Following pending document submitted outside the scheduler",
            extra_fields={"document_id": document.document_id},
        )

        await self.lifecycle.update_status(document.document_id)
        attempt = self.sync_attempt(attempt, now)

        if attempt.status == AttemptStatus.PROCESSING:
            action, message = "awaiting_validation", f"{document.document_id} is still pending validation"
        elif attempt.status == AttemptStatus.COMPLETED:
            action, message = "completed", f"{document.document_id} validated"
        else:
            action, message = "failed", attempt.error
        return AutoConsolidationRun(enabled=True, action=action, message=message, attempt=attempt)

    async def _attempt(
        self,
        attempt: AutoConsolidationAttempt,
        period: Period,
        now: datetime,
        consolidate: Consolidate,
    ) -> AutoConsolidationRun:
        attempt = self._save(transition_attempt(
            attempt, AttemptStatus.PROCESSING, now,
            attempt_count=attempt.attempt_count + 1,
            last_attempt=now,
            next_attempt=None,
            error=None,
        ))
        logger.info("Auto-consolidation attempt started", extra_fields={"attempt_count": attempt.attempt_count})

        try:
            result = await consolidate(period)
        except DuplicateConsolidationError as e:
            if e.status == DocumentStatus.VALID.value:
                attempt = self._save(transition_attempt(
                    attempt, AttemptStatus.SKIPPED, now,
                    consolidated_document_id=e.document_id, error=str(e),
                ))
                return AutoConsolidationRun(enabled=True, action="skipped", message=str(e), attempt=attempt)
            if e.status == DocumentStatus.PENDING.value:
                attempt = self._save(attempt.model_copy(update={
                    "consolidated_document_id": e.document_id,
                    "updated_at": now,
                }))
                return AutoConsolidationRun(
                    enabled=True,
                    action="awaiting_validation",
                    message=f"{e.document_id} is still pending validation",
                    attempt=attempt,
                )
            # Submission in progress on another host
            attempt = self._save(transition_attempt(
                attempt, AttemptStatus.FAILED, now,
                error=str(e), next_attempt=next_retry_at(period, now),
            ))
            logger.warning(f"Auto-consolidation attempt deferred: {e}")
            return AutoConsolidationRun(enabled=True, action="failed", message=str(e), attempt=attempt)
        except ConsolidationError as e:
            attempt = self._save(transition_attempt(
                attempt, AttemptStatus.FAILED, now,
                error=str(e), next_attempt=next_retry_at(period, now),
            ))
            logger.error(f"Auto-consolidation attempt failed: {e}")
            return AutoConsolidationRun(enabled=True, action="failed", message=str(e), attempt=attempt)
        except Exception as e:
            self._save(transition_attempt(
                attempt, AttemptStatus.FAILED, now,
                error=str(e), next_attempt=next_retry_at(period, now),
            ))
            logger.exception(f"Auto-consolidation attempt crashed: {e}")
            raise

        if result is None:
            attempt = self._save(transition_attempt(
                attempt, AttemptStatus.SKIPPED, now, error=NO_ELIGIBLE_ERROR,
            ))
            logger.info("No eligible invoices; attempt skipped")
            return AutoConsolidationRun(enabled=True, action="skipped", message=NO_ELIGIBLE_ERROR, attempt=attempt)

        document = result.document
        if document is None:
            attempt = self._save(transition_attempt(
                attempt, AttemptStatus.FAILED, now,
                error=result.error or result.message,
                next_attempt=next_retry_at(period, now),
            ))
            return AutoConsolidationRun(
                enabled=True, action="failed", message=attempt.error, attempt=attempt, result=result,
            )

        attempt = self._save(attempt.model_copy(update={
            "consolidated_document_id": document.document_id,
            "updated_at": now,
        }))
        attempt = self.sync_attempt(attempt, now)

        if attempt.status == AttemptStatus.PROCESSING:
            action, message = "submitted", f"{document.document_id} submitted; awaiting validation"
        elif attempt.status == AttemptStatus.COMPLETED:
            action, message = "completed", f"{document.document_id} submitted and validated"
        else:
            action, message = "failed", attempt.error

        if result.outcome == OperationOutcome.PARTIAL_SUCCESS:
            message += f" ({len(result.rejected_documents)} sub-document(s) rejected)"

        return AutoConsolidationRun(enabled=True, action=action, message=message, attempt=attempt, result=result)
