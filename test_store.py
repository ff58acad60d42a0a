"""
SQLite Consolidation Store Tests

Document revisions, invoice links, attempts and settings.
"""

import pytest
import tempfile
import os
from datetime import datetime
from decimal import Decimal


@pytest.fixture
def store():
    """Create a store on a temporary database."""
    from consolidation import SQLiteConsolidationStore

    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        db_path = f.name

    store = SQLiteConsolidationStore(db_path)
    store.init_db()
    yield store

    try:
        os.unlink(db_path)
    except PermissionError:
        pass


def make_document(status="valid", member_ids=("INV-1", "INV-2"), company_id="tienhock", month=3):
    from core.models import BUSINESS_TZ, ConsolidatedDocument, DocumentStatus

    now = datetime(2025, month + 1, 3, 9, 0, tzinfo=BUSINESS_TZ)
    return ConsolidatedDocument(
        document_id=f"CON-2025{month:02d}",
        company_id=company_id,
        year=2025,
        month=month,
        member_ids=list(member_ids),
        total_excluding_tax="449.99",
        tax_amount="0.00",
        total_payable="449.99",
        status=DocumentStatus(status),
        uuid="UUID-1",
        created_at=now,
        updated_at=now,
    )


class TestDocuments:
    """Consolidated document persistence."""

    def test_create_and_read_back(self, store):
        from core.models import DocumentStatus

        store.create_document(make_document())
        document = store.latest_document("tienhock", "CON-202503")

        assert document.revision == 1
        assert document.status == DocumentStatus.VALID
        assert document.total_excluding_tax == Decimal("449.99")
        assert document.member_ids == ["INV-1", "INV-2"]
        assert document.created_at.year == 2025

    def test_links_created_for_active_document(self, store):
        from core.models import DocumentStatus

        store.create_document(make_document(status="pending"))

        assert store.active_memberships("tienhock", ["INV-1", "INV-9"]) == {"INV-1": DocumentStatus.PENDING}

    def test_duplicate_active_document_rejected(self, store):
        from core.errors import DuplicateConsolidationError

        store.create_document(make_document())
        with pytest.raises(DuplicateConsolidationError):
            store.create_document(make_document(member_ids=("INV-3",)))

    def test_linked_invoice_cannot_join_another_document(self, store):
        from core.errors import IneligibleSelectionError

        store.create_document(make_document(month=3))
        with pytest.raises(IneligibleSelectionError) as exc_info:
            store.create_document(make_document(month=4, member_ids=("INV-2", "INV-5")))

        assert exc_info.value.invoice_ids == ["INV-2"]
        assert store.latest_document("tienhock", "CON-202504") is None

    def test_cancel_releases_links_and_allows_new_revision(self, store):
        from core.models import DocumentStatus

        document = store.create_document(make_document())
        store.update_document(document.model_copy(update={"status": DocumentStatus.CANCELLED}))

        assert store.active_memberships("tienhock") == {}

        second = store.create_document(make_document(member_ids=("INV-1",)))
        assert second.revision == 2
        assert store.latest_document("tienhock", "CON-202503").revision == 2
        assert store.active_memberships("tienhock") == {"INV-1": DocumentStatus.VALID}

    def test_invalid_document_stored_without_links(self, store):
        store.create_document(make_document(status="invalid"))

        assert store.active_memberships("tienhock") == {}
        assert store.latest_document("tienhock", "CON-202503") is not None

    def test_list_documents_by_year_keeps_revisions(self, store):
        from core.models import DocumentStatus

        first = store.create_document(make_document(month=3))
        store.update_document(first.model_copy(update={"status": DocumentStatus.CANCELLED}))
        store.create_document(make_document(month=3, member_ids=("INV-1",)))
        store.create_document(make_document(month=1, member_ids=("INV-7",)))

        history = store.list_documents("tienhock", 2025)

        assert [(d.month, d.revision) for d in history] == [(1, 1), (3, 1), (3, 2)]
        assert store.list_documents("tienhock", 2024) == []

    def test_company_scoping(self, store):
        store.create_document(make_document(company_id="tienhock"))
        store.create_document(make_document(company_id="greentarget"))

        assert store.latest_document("jellypolly", "CON-202503") is None
        assert len(store.list_documents("greentarget")) == 1

    def test_rejected_documents_round_trip(self, store):
        from core.models import ErrorDetail, RejectedDocument

        document = make_document(status="invalid").model_copy(update={
            "rejected_documents": [
                RejectedDocument(id="CON-202503", error=ErrorDetail(code="CF321", message="Bad TIN")),
            ],
        })
        store.create_document(document)

        stored = store.latest_document("tienhock", "CON-202503")
        assert stored.rejected_documents[0].error.code == "CF321"


class TestSubmissionClaims:
    """Claims held for the duration of a tax-authority submission."""

    def _now(self, minute=0):
        from core.models import BUSINESS_TZ

        return datetime(2025, 4, 3, 9, minute, tzinfo=BUSINESS_TZ)

    def _claim_count(self, store):
        conn = store.get_db_connection()
        try:
            return conn.execute("SELECT COUNT(*) FROM consolidation_claim").fetchone()[0]
        finally:
            conn.close()

    def test_second_owner_refused_while_claimed(self, store):
        from core.errors import SubmissionInProgressError

        store.claim_submission("tienhock", "CON-202503", "host-a", self._now())

        with pytest.raises(SubmissionInProgressError) as exc_info:
            store.claim_submission("tienhock", "CON-202503", "host-b", self._now(1))

        assert exc_info.value.document_id == "CON-202503"

    def test_release_allows_next_owner(self, store):
        store.claim_submission("tienhock", "CON-202503", "host-a", self._now())
        store.release_submission("tienhock", "CON-202503", "host-a")

        store.claim_submission("tienhock", "CON-202503", "host-b", self._now(1))
        assert self._claim_count(store) == 1

    def test_release_by_other_owner_keeps_claim(self, store):
        store.claim_submission("tienhock", "CON-202503", "host-a", self._now())
        store.release_submission("tienhock", "CON-202503", "host-b")

        assert self._claim_count(store) == 1

    def test_abandoned_claim_taken_over(self, store):
        from consolidation.db import CLAIM_TIMEOUT

        store.claim_submission("tienhock", "CON-202503", "host-a", self._now())
        later = self._now() + CLAIM_TIMEOUT

        store.claim_submission("tienhock", "CON-202503", "host-b", later)
        store.release_submission("tienhock", "CON-202503", "host-b")
        assert self._claim_count(store) == 0

    @pytest.mark.parametrize("status", ["pending", "valid"])
    def test_active_document_blocks_claim(self, store, status):
        from core.errors import DuplicateConsolidationError, SubmissionInProgressError

        store.create_document(make_document(status=status))

        with pytest.raises(DuplicateConsolidationError) as exc_info:
            store.claim_submission("tienhock", "CON-202503", "host-a", self._now())

        assert not isinstance(exc_info.value, SubmissionInProgressError)
        assert exc_info.value.status == status
        assert self._claim_count(store) == 0

    def test_invalid_document_allows_claim(self, store):
        store.create_document(make_document(status="invalid"))

        store.claim_submission("tienhock", "CON-202503", "host-a", self._now())
        assert self._claim_count(store) == 1

    def test_claims_scoped_by_company(self, store):
        store.claim_submission("tienhock", "CON-202503", "host-a", self._now())
        store.claim_submission("greentarget", "CON-202503", "host-b", self._now())

        assert self._claim_count(store) == 2


class TestAttemptsAndSettings:
    """Auto-consolidation attempts and the toggle."""

    def test_attempt_upsert(self, store):
        from core.models import AttemptStatus, AutoConsolidationAttempt, Period

        attempt = AutoConsolidationAttempt(company_id="tienhock", year=2025, month=3)
        store.save_attempt(attempt)
        store.save_attempt(attempt.model_copy(update={
            "status": AttemptStatus.FAILED,
            "attempt_count": 1,
            "error": "down",
        }))

        stored = store.get_attempt("tienhock", Period(2025, 3))
        assert stored.status == AttemptStatus.FAILED
        assert stored.attempt_count == 1
        assert len(store.list_attempts("tienhock")) == 1

    def test_list_attempts_by_status(self, store):
        from core.models import AttemptStatus, AutoConsolidationAttempt

        store.save_attempt(AutoConsolidationAttempt(company_id="tienhock", year=2025, month=1,
                                                    status=AttemptStatus.COMPLETED))
        store.save_attempt(AutoConsolidationAttempt(company_id="tienhock", year=2025, month=2,
                                                    status=AttemptStatus.FAILED))

        failed = store.list_attempts("tienhock", [AttemptStatus.FAILED])
        assert [a.month for a in failed] == [2]
        assert store.list_attempts("tienhock", []) == []

    def test_settings_default_to_none(self, store):
        assert store.get_auto_consolidation_enabled("tienhock") is None

        store.set_auto_consolidation_enabled("tienhock", True)
        assert store.get_auto_consolidation_enabled("tienhock") is True
        assert store.get_auto_consolidation_enabled("greentarget") is None

        store.set_auto_consolidation_enabled("tienhock", False)
        assert store.get_auto_consolidation_enabled("tienhock") is False


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
