"""
Observability Validation Test

This test validates the logging stack:
1. Correlation context carries business line, period and document ids
2. Context vars are restored after with_correlation
3. JSON and human-readable formatters include correlation and extra fields
4. CorrelatedLogger forwards exception info

Pass criteria: every log line of a consolidation run can be traced back to its
business line, period and consolidated document.
"""

import json
import logging

import pytest


def test_observability_imports():
    """Verify the observability package exports import correctly."""
    from core.observability import (
        get_logger, configure_logging, CorrelationContext,
        get_correlation_context, with_correlation,
    )
    assert get_logger is not None
    assert configure_logging is not None
    assert CorrelationContext is not None
    assert get_correlation_context is not None
    assert with_correlation is not None


class CapturingHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def make_record(msg="Test message", exc_info=None, extra_fields=None):
    record = logging.LogRecord(
        name="consolidation.lifecycle",
        level=logging.INFO,
        pathname="lifecycle.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    if extra_fields is not None:
        record.extra_fields = extra_fields
    return record


class TestCorrelatedLogging:
    """Test structured logging with correlation IDs."""

    def test_correlation_context_creation(self):
        """Create correlation context with all fields."""
        from core.observability.logging import CorrelationContext

        ctx = CorrelationContext(
            company_id="tienhock",
            period="2025-03",
            document_id="CON-202503",
            workflow_id="auto-consolidation-tienhock",
            activity_name="run_auto_consolidation",
        )

        assert ctx.company_id == "tienhock"
        assert ctx.document_id == "CON-202503"
        assert ctx.to_dict()["period"] == "2025-03"
        assert "workflow_run_id" not in ctx.to_dict()

    def test_merge_ignores_none(self):
        from core.observability.logging import CorrelationContext

        ctx = CorrelationContext(company_id="tienhock").merge(period="2025-03", company_id=None)

        assert ctx.company_id == "tienhock"
        assert ctx.period == "2025-03"

    def test_context_var_isolation(self):
        """with_correlation restores the previous context on exit."""
        from core.observability.logging import get_correlation_context, with_correlation

        assert get_correlation_context().document_id is None

        with with_correlation(company_id="tienhock"):
            with with_correlation(document_id="CON-202503"):
                inner = get_correlation_context()
                assert inner.company_id == "tienhock"
                assert inner.document_id == "CON-202503"
            assert get_correlation_context().document_id is None

        assert get_correlation_context().company_id is None

    def test_structured_formatter_json_output(self):
        """StructuredFormatter outputs valid JSON with correlation and extra fields."""
        from core.observability.logging import StructuredFormatter, with_correlation

        formatter = StructuredFormatter()

        with with_correlation(company_id="tienhock", document_id="CON-202503"):
            output = formatter.format(make_record(extra_fields={"status": "pending"}))

        data = json.loads(output)
        assert data["message"] == "Test message"
        assert data["level"] == "INFO"
        assert data["company_id"] == "tienhock"
        assert data["document_id"] == "CON-202503"
        assert data["status"] == "pending"

    def test_human_readable_prefers_document_over_period(self):
        from core.observability.logging import HumanReadableFormatter, with_correlation

        formatter = HumanReadableFormatter()

        with with_correlation(company_id="tienhock", period="2025-03"):
            period_line = formatter.format(make_record())
            with with_correlation(document_id="CON-202503"):
                document_line = formatter.format(make_record(extra_fields={"revision": 2}))

        assert "[tienhock/2025-03]: Test message" in period_line
        assert "[tienhock/CON-202503]: Test message" in document_line
        assert document_line.endswith("revision=2")

    def test_human_readable_without_context(self):
        from core.observability.logging import HumanReadableFormatter

        assert "[-]: Test message" in HumanReadableFormatter().format(make_record())

    def test_exception_info_is_forwarded(self):
        """CorrelatedLogger.exception attaches the active exception."""
        from core.observability.logging import CorrelatedLogger, StructuredFormatter

        base = logging.getLogger("test_observability.exception")
        base.propagate = False
        handler = CapturingHandler()
        base.addHandler(handler)
        base.setLevel(logging.INFO)

        try:
            try:
                raise RuntimeError("connector down")
            except RuntimeError:
                CorrelatedLogger(base).exception("Submission failed", extra_fields={"document_id": "CON-202503"})
        finally:
            base.removeHandler(handler)

        record = handler.records[0]
        assert record.exc_info is not None
        assert record.exc_info[0] is RuntimeError

        data = json.loads(StructuredFormatter().format(record))
        assert "RuntimeError: connector down" in data["exception"]
        assert data["document_id"] == "CON-202503"

    def test_level_filtering(self):
        from core.observability.logging import CorrelatedLogger

        base = logging.getLogger("test_observability.levels")
        base.propagate = False
        handler = CapturingHandler()
        base.addHandler(handler)
        base.setLevel(logging.WARNING)

        try:
            logger = CorrelatedLogger(base)
            logger.info("dropped")
            logger.warning("kept")
        finally:
            base.removeHandler(handler)

        assert [r.getMessage() for r in handler.records] == ["kept"]


class TestActivityLogging:
    """Activity log helpers carry their fields."""

    def test_activity_complete_fields(self):
        from core.observability.logging import get_logger, log_activity_complete

        name = "run_auto_consolidation"
        base = logging.getLogger(f"activities.{name}")
        get_logger(f"activities.{name}")
        handler = CapturingHandler()
        base.addHandler(handler)
        base.setLevel(logging.INFO)

        try:
            log_activity_complete(name, duration_ms=12.5, action="consolidated")
        finally:
            base.removeHandler(handler)

        record = handler.records[-1]
        assert record.getMessage() == "Activity completed: run_auto_consolidation"
        assert record.extra_fields == {"duration_ms": 12.5, "action": "consolidated"}


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
