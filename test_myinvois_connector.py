"""
MyInvois Connector Tests

Payload encoding, response mapping and the connector against a fake API client
(no network).
"""

import asyncio
import base64
import hashlib
from datetime import datetime

import pytest


class FakeMyInvoisClient:
    """Stands in for MyInvoisApiClient; records calls and returns canned JSON."""

    def __init__(self, submit_response=None, summary=None, details=None, summary_error=None):
        self.submit_response = submit_response or {}
        self.summary_error = summary_error
        self.summary = summary or {}
        self.details = details or {}
        self.calls = []

    async def submit_documents(self, documents):
        self.calls.append(("submit", documents))
        return self.submit_response

    async def get_submission(self, submission_uid):
        self.calls.append(("summary", submission_uid))
        if self.summary_error is not None:
            raise self.summary_error
        return self.summary

    async def get_document_details(self, document_uuid):
        self.calls.append(("details", document_uuid))
        return self.details

    async def cancel_document(self, document_uuid, reason):
        self.calls.append(("cancel", document_uuid, reason))
        return {}

    async def disconnect(self):
        self.calls.append(("disconnect",))


class JsonRenderer:
    document_format = "JSON"

    def render(self, preview, members):
        return f'{{"id": "{preview.consolidated_id}", "members": {len(members)}}}'


def make_preview():
    from consolidation import aggregate
    from core.models import BUSINESS_TZ, Invoice, Period

    members = [Invoice(id="INV-1", issued_at=datetime(2025, 3, 2, tzinfo=BUSINESS_TZ), total_excluding_tax="10.00")]
    return aggregate(Period(2025, 3), members), members


def make_connector(client, renderer=None):
    from connectors import MyInvoisConnector, TaxAuthorityConfig

    return MyInvoisConnector(
        TaxAuthorityConfig(connector_type="myinvois", company_id="tienhock"),
        renderer=renderer,
        client=client,
    )


class TestMapping:
    """Pure payload and response mapping."""

    def test_document_entry(self):
        from connectors.myinvois import build_document_entry

        entry = build_document_entry("<Invoice/>", "CON-202503")

        assert entry["format"] == "XML"
        assert base64.b64decode(entry["document"]) == b"<Invoice/>"
        assert entry["documentHash"] == hashlib.sha256(b"<Invoice/>").hexdigest()
        assert entry["codeNumber"] == "CON-202503"

    def test_no_documents_processed(self):
        from connectors.myinvois import map_submission_response

        result = map_submission_response({"submissionUid": "S1", "acceptedDocuments": [], "rejectedDocuments": []})

        assert result.success is False
        assert result.error_message == "Invalid submission response: no documents were processed"

    def test_all_rejected(self):
        from connectors.myinvois import map_submission_response

        result = map_submission_response({
            "rejectedDocuments": [{
                "invoiceCodeNumber": "CON-202503",
                "error": {"code": "BadArgument", "message": "Invalid TIN", "target": "TIN",
                          "details": [{"code": "CF401", "message": "TIN not found"}]},
            }],
        })

        assert result.success is False
        assert result.error_message == "Invalid TIN"
        rejected = result.rejected_documents[0]
        assert rejected.id == "CON-202503"
        assert rejected.error.code == "BadArgument"
        assert rejected.error.details[0]["code"] == "CF401"

    def test_accepted_is_pending(self):
        from connectors.myinvois import map_submission_response
        from core.models import DocumentStatus

        result = map_submission_response({
            "submissionUid": "S1",
            "acceptedDocuments": [{"uuid": "U1", "invoiceCodeNumber": "CON-202503"}],
        })

        assert result.success is True
        assert result.status == DocumentStatus.PENDING
        assert result.uuid == "U1"
        assert result.submission_uid == "S1"

    def test_summary_with_long_id_is_valid(self):
        from connectors.myinvois import apply_submission_summary, map_submission_response
        from core.models import DocumentStatus

        result = map_submission_response({
            "submissionUid": "S1",
            "acceptedDocuments": [{"uuid": "U1", "invoiceCodeNumber": "CON-202503"}],
        })
        result = apply_submission_summary(result, {"documentSummary": [{
            "uuid": "U1", "status": "Valid", "longId": "LONG-1", "dateTimeValidated": "2025-04-03T01:00:00Z",
        }]})

        assert result.status == DocumentStatus.VALID
        assert result.long_id == "LONG-1"
        assert result.validated_at is not None
        assert result.accepted_documents[0].long_id == "LONG-1"

    @pytest.mark.parametrize("status,long_id,expected", [
        ("Valid", "LONG-1", "valid"),
        ("Invalid", None, "invalid"),
        ("Rejected", None, "invalid"),
        ("Submitted", None, None),
        (None, None, None),
    ])
    def test_status_mapping(self, status, long_id, expected):
        from connectors.myinvois import map_document_status

        mapped = map_document_status(status, long_id)
        assert (mapped.value if mapped else None) == expected

    def test_details_invalid_carries_first_validation_error(self):
        from connectors.myinvois import map_document_details
        from core.models import DocumentStatus

        result = map_document_details({
            "status": "Invalid",
            "validationResults": {"validationSteps": [
                {"name": "Step01", "status": "Valid"},
                {"name": "Step03", "status": "Invalid", "error": {"errorCode": "CV302", "error": "Tax mismatch"}},
            ]},
        })

        assert result.status == DocumentStatus.INVALID
        assert result.updated is True
        assert result.error_message == "Tax mismatch"

    def test_details_without_change(self):
        from connectors.myinvois import map_document_details

        result = map_document_details({"status": "Submitted"})

        assert result.status is None
        assert result.updated is False


class TestConnector:
    """MyInvoisConnector with a fake client."""

    def test_submit_requires_renderer(self):
        preview, members = make_preview()

        with pytest.raises(ValueError):
            asyncio.run(make_connector(FakeMyInvoisClient()).submit_consolidation(preview, members))

    def test_submit_posts_then_reads_summary(self):
        from core.models import DocumentStatus

        client = FakeMyInvoisClient(
            submit_response={
                "submissionUid": "S1",
                "acceptedDocuments": [{"uuid": "U1", "invoiceCodeNumber": "CON-202503"}],
            },
            summary={"documentSummary": [{"uuid": "U1", "status": "Submitted"}]},
        )
        preview, members = make_preview()

        result = asyncio.run(make_connector(client, JsonRenderer()).submit_consolidation(preview, members))

        assert result.status == DocumentStatus.PENDING
        assert [call[0] for call in client.calls] == ["submit", "summary"]
        submitted = client.calls[0][1][0]
        assert submitted["format"] == "JSON"
        assert submitted["codeNumber"] == "CON-202503"

    def test_summary_failure_keeps_accepted_document_pending(self):
        from core.models import DocumentStatus

        client = FakeMyInvoisClient(
            submit_response={
                "submissionUid": "S1",
                "acceptedDocuments": [{"uuid": "U1", "invoiceCodeNumber": "CON-202503"}],
            },
            summary_error=ConnectionError("summary endpoint unavailable"),
        )
        preview, members = make_preview()

        result = asyncio.run(make_connector(client, JsonRenderer()).submit_consolidation(preview, members))

        assert result.success is True
        assert result.status == DocumentStatus.PENDING
        assert result.uuid == "U1"
        assert result.submission_uid == "S1"
        assert [call[0] for call in client.calls] == ["submit", "summary"]

    def test_rejected_submission_skips_summary(self):
        client = FakeMyInvoisClient(submit_response={
            "rejectedDocuments": [{"invoiceCodeNumber": "CON-202503", "error": {"code": "X", "message": "bad"}}],
        })
        preview, members = make_preview()

        result = asyncio.run(make_connector(client, JsonRenderer()).submit_consolidation(preview, members))

        assert result.success is False
        assert [call[0] for call in client.calls] == ["submit"]

    def test_status_and_cancel_need_uuid(self):
        from core.models import ConsolidatedDocument

        connector = make_connector(FakeMyInvoisClient())
        document = ConsolidatedDocument(document_id="CON-202503", year=2025, month=3)

        status = asyncio.run(connector.check_consolidation_status(document))
        cancel = asyncio.run(connector.cancel_consolidation(document, "reason"))

        assert status.error_message == "Document has no MyInvois UUID"
        assert cancel.success is False

    def test_cancel_sends_reason(self):
        from core.models import ConsolidatedDocument

        client = FakeMyInvoisClient()
        document = ConsolidatedDocument(document_id="CON-202503", year=2025, month=3, uuid="U1")

        result = asyncio.run(make_connector(client).cancel_consolidation(document, "Wrong buyer"))

        assert result.success is True
        assert client.calls == [("cancel", "U1", "Wrong buyer")]


class TestAuth:
    """Token expiry buffer."""

    def test_token_expires_five_minutes_early(self):
        from datetime import timedelta, timezone
        from connectors.myinvois.myinvois_auth import MyInvoisToken

        fresh = MyInvoisToken(access_token="t", token_type="Bearer", expires_in=3600)
        almost = MyInvoisToken(
            access_token="t", token_type="Bearer", expires_in=3600,
            obtained_at=datetime.now(timezone.utc) - timedelta(minutes=56),
        )

        assert not fresh.is_expired
        assert almost.is_expired
        assert fresh.authorization_header == "Bearer t"


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
