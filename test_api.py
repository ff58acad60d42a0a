"""
HTTP API Tests

Consolidation endpoints through FastAPI's TestClient, with a service wired to
a temporary database, an in-memory invoice source and the sandbox authority.
"""

import os
import tempfile
from datetime import datetime

import pytest


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from api.server import create_app
    from api.services import set_service
    from connectors import SandboxConnector, TaxAuthorityConfig
    from consolidation import ConsolidationService, InMemoryInvoiceSource, SQLiteConsolidationStore
    from core.models import BUSINESS_TZ, Invoice

    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        db_path = f.name

    store = SQLiteConsolidationStore(db_path)
    store.init_db()
    source = InMemoryInvoiceSource([
        Invoice(id="INV-001", issued_at=datetime(2025, 3, 5, 10, tzinfo=BUSINESS_TZ), total_excluding_tax="100.00"),
        Invoice(id="INV-002", issued_at=datetime(2025, 3, 12, 10, tzinfo=BUSINESS_TZ), total_excluding_tax="250.50"),
        Invoice(id="INV-003", issued_at=datetime(2025, 3, 20, 10, tzinfo=BUSINESS_TZ), total_excluding_tax="99.49"),
    ])
    sandbox = SandboxConnector(TaxAuthorityConfig(connector_type="sandbox", company_id="tienhock"))
    set_service("tienhock", ConsolidationService("tienhock", store, sandbox, source))

    yield TestClient(create_app())

    try:
        os.unlink(db_path)
    except PermissionError:
        pass


class TestHealth:
    """Health endpoints."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "sandbox" in data["connectors"]

    def test_ready_and_live(self, client):
        assert client.get("/ready").json() == {"status": "ready"}
        assert client.get("/live").json() == {"status": "alive"}


class TestConsolidationEndpoints:
    """Consolidation router."""

    def test_eligible_one_based(self, client):
        response = client.get("/consolidation/tienhock/eligible", params={"year": 2025, "month": 3})

        assert response.status_code == 200
        data = response.json()
        assert data["period"] == "2025-03"
        assert [item["id"] for item in data["items"]] == ["INV-001", "INV-002", "INV-003"]

    def test_eligible_zero_based(self, client):
        response = client.get(
            "/consolidation/tienhock/eligible",
            params={"year": 2025, "month": 2, "month_base": 0},
        )

        assert response.status_code == 200
        assert response.json()["period"] == "2025-03"

    def test_invalid_month_is_bad_request(self, client):
        response = client.get("/consolidation/tienhock/eligible", params={"year": 2025, "month": 13})

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidPeriodError"

    def test_unknown_company(self, client):
        response = client.get("/consolidation/acme/eligible", params={"year": 2025, "month": 3})

        assert response.status_code == 404

    def test_preview(self, client):
        response = client.post("/consolidation/tienhock/preview", json={"year": 2025, "month": 3})

        assert response.status_code == 200
        data = response.json()
        assert data["consolidated_id"] == "CON-202503"
        assert data["total_excluding_tax"] == "449.99"
        assert data["member_count"] == 3

    def test_preview_ineligible_selection(self, client):
        response = client.post(
            "/consolidation/tienhock/preview",
            json={"year": 2025, "month": 3, "invoice_ids": ["INV-404"]},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "IneligibleSelectionError"

    def test_submit_then_duplicate_conflict(self, client):
        first = client.post("/consolidation/tienhock/submit", json={"year": 2025, "month": 3})
        assert first.status_code == 200
        assert first.json()["outcome"] == "success"
        assert first.json()["status"] == "valid"

        second = client.post("/consolidation/tienhock/submit", json={"year": 2025, "month": 3})
        assert second.status_code == 409
        assert second.json()["error"] == "DuplicateConsolidationError"

    def test_empty_selection_is_bad_request(self, client):
        response = client.post(
            "/consolidation/tienhock/submit",
            json={"year": 2025, "month": 3, "invoice_ids": []},
        )

        assert response.status_code == 400

    def test_document_lifecycle(self, client):
        client.post("/consolidation/tienhock/submit", json={"year": 2025, "month": 3})

        document = client.get("/consolidation/tienhock/documents/CON-202503")
        assert document.status_code == 200
        assert document.json()["status"] == "valid"

        poll = client.post("/consolidation/tienhock/documents/CON-202503/update-status")
        assert poll.status_code == 200
        assert poll.json()["updated"] is False

        cancel = client.post(
            "/consolidation/tienhock/documents/CON-202503/cancel",
            json={"reason": "Issued in error"},
        )
        assert cancel.status_code == 200
        assert cancel.json()["status"] == "cancelled"

        again = client.post("/consolidation/tienhock/documents/CON-202503/cancel")
        assert again.status_code == 409
        assert again.json()["error"] == "TransitionNotAllowedError"

    def test_unknown_document(self, client):
        assert client.get("/consolidation/tienhock/documents/CON-203001").status_code == 404
        assert client.post("/consolidation/tienhock/documents/CON-203001/update-status").status_code == 404

    def test_history(self, client):
        client.post("/consolidation/tienhock/submit", json={"year": 2025, "month": 3})

        response = client.get("/consolidation/tienhock/history/2025")
        assert response.status_code == 200
        assert [d["document_id"] for d in response.json()] == ["CON-202503"]

        assert client.get("/consolidation/tienhock/history/1999").status_code == 400

    def test_auto_status_without_attempt(self, client):
        response = client.get("/consolidation/tienhock/auto-status", params={"year": 2025, "month": 3})

        assert response.status_code == 200
        assert response.json() == {"exists": False, "status": None}

    def test_settings(self, client):
        assert client.get("/consolidation/tienhock/settings").json()["auto_consolidation_enabled"] is False

        response = client.put("/consolidation/tienhock/settings", json={"auto_consolidation_enabled": True})
        assert response.status_code == 200
        assert response.json() == {"company_id": "tienhock", "auto_consolidation_enabled": True}

    def test_run_auto_when_disabled(self, client):
        response = client.post("/consolidation/tienhock/run-auto")

        assert response.status_code == 200
        assert response.json()["action"] == "disabled"


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
