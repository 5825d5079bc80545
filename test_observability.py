"""
Observability Validation Test

This test validates the observability stack:
1. Structured logging with correlation IDs works (JSON and human-readable)
2. Correlation context nests and resets
3. Audit events are recorded, filtered and persisted per day

Pass criteria: from one statement entry you can trace the upload, the
reconciliation run and every manual decision taken on it.
"""

import json
import logging
from datetime import datetime, timedelta, timezone

import pytest

from core.audit.events import (
    AuditEventType,
    AuditLogger,
    InMemoryAuditBackend,
    JSONFileAuditBackend,
    create_audit_event,
)
from core.models import AuditEvent, AuditSeverity


def test_observability_imports():
    """Verify all observability modules import correctly."""
    from core.observability import (
        get_logger, configure_logging, CorrelationContext, with_correlation,
    )
    assert get_logger is not None
    assert configure_logging is not None
    assert CorrelationContext is not None
    assert with_correlation is not None


def make_record(msg="Test message", level=logging.INFO, extra_fields=None):
    record = logging.LogRecord(
        name="reconciliation.engine",
        level=level,
        pathname="",
        lineno=0,
        msg=msg,
        args=(),
        exc_info=None,
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
            upload_id="UPL-001",
            gstin="27AAACR5055K1Z7",
            return_period="042024",
            entry_id="B2B-27AABCU9603R1ZJ-INV001",
            stage="reconcile",
        )

        assert ctx.to_dict() == {
            "upload_id": "UPL-001",
            "gstin": "27AAACR5055K1Z7",
            "return_period": "042024",
            "entry_id": "B2B-27AABCU9603R1ZJ-INV001",
            "stage": "reconcile",
        }

    def test_merge_keeps_existing_values(self):
        from core.observability.logging import CorrelationContext

        ctx = CorrelationContext(upload_id="UPL-001").merge(stage="parse", entry_id=None)

        assert ctx.upload_id == "UPL-001"
        assert ctx.stage == "parse"
        assert ctx.entry_id is None

    def test_with_correlation_nests_and_resets(self):
        from core.observability.logging import get_correlation_context, with_correlation

        with with_correlation(upload_id="UPL-001"):
            with with_correlation(stage="manual", entry_id="E-1") as inner:
                assert inner.upload_id == "UPL-001"
                assert get_correlation_context().entry_id == "E-1"
            assert get_correlation_context().entry_id is None
            assert get_correlation_context().upload_id == "UPL-001"

        assert get_correlation_context().upload_id is None

    def test_structured_formatter_output(self):
        """JSON formatter includes correlation context and extra fields."""
        from core.observability.logging import StructuredFormatter, with_correlation

        formatter = StructuredFormatter()

        with with_correlation(upload_id="UPL-001", return_period="042024"):
            output = formatter.format(make_record(extra_fields={"matched": 41}))

        data = json.loads(output)
        assert data["message"] == "Test message"
        assert data["level"] == "INFO"
        assert data["logger"] == "reconciliation.engine"
        assert data["upload_id"] == "UPL-001"
        assert data["return_period"] == "042024"
        assert data["matched"] == 41

    def test_human_readable_formatter(self):
        from core.observability.logging import HumanReadableFormatter, with_correlation

        formatter = HumanReadableFormatter()

        with with_correlation(upload_id="UPL-001", return_period="042024", entry_id="E-1"):
            output = formatter.format(make_record())

        assert "[UPL-001/042024/entry:E-1]" in output
        assert output.endswith("Test message")

        assert "[-]" in formatter.format(make_record())

    def test_logger_passes_extra_fields(self, caplog):
        from core.observability.logging import get_logger

        logger = get_logger("reconciliation.test_observability")

        with caplog.at_level(logging.INFO):
            logger.info("Run finished", extra_fields={"matched": 3})

        record = caplog.records[-1]
        assert record.getMessage() == "Run finished"
        assert record.extra_fields == {"matched": 3}

    def test_logger_is_cached(self):
        from core.observability.logging import get_logger

        assert get_logger("reconciliation.cached") is get_logger("reconciliation.cached")

    def test_configure_logging_replaces_its_handler(self):
        from core.observability.logging import configure_logging

        root = logging.getLogger()
        level = root.level
        try:
            configure_logging(level=logging.DEBUG, json_format=True, force=True)
            configure_logging(level=logging.INFO, force=True)

            ours = [h for h in root.handlers if getattr(h, "_itc_recon_handler", False)]
            assert len(ours) == 1
        finally:
            root.setLevel(level)


class TestAuditEvents:

    def test_create_audit_event(self):
        event = create_audit_event(
            AuditEventType.MANUAL_MATCH,
            "Entry matched",
            upload_id="UPL-001",
            entry_id="E-1",
            details={"purchase_id": "P-1"},
            actor="priya",
        )

        assert isinstance(event, AuditEvent)
        assert event.event_type == "MANUAL_MATCH"
        assert event.severity == AuditSeverity.INFO
        assert event.actor == "priya"
        assert event.event_id

    def test_in_memory_query_filters(self):
        audit = AuditLogger()
        backend = InMemoryAuditBackend()
        audit.add_backend(backend)

        audit.log_info(AuditEventType.STATEMENT_UPLOADED, "Uploaded", upload_id="UPL-1")
        audit.log_info(AuditEventType.MANUAL_MATCH, "Matched", upload_id="UPL-1", entry_id="E-1")
        audit.log_warning(AuditEventType.STATEMENT_REJECTED, "Rejected", upload_id="UPL-2")

        assert len(audit.query(upload_id="UPL-1")) == 2
        assert [e.message for e in audit.query(entry_id="E-1")] == ["Matched"]
        rejected = audit.query(event_type="STATEMENT_REJECTED")
        assert rejected[0].severity == AuditSeverity.WARN
        assert len(audit.query(limit=1)) == 1

        backend.clear()
        assert audit.query() == []

    def test_no_backends(self):
        audit = AuditLogger()
        audit.log_info(AuditEventType.STATEMENT_UPLOADED, "Uploaded")

        assert audit.query() == []

    def test_json_file_backend(self, tmp_path):
        backend = JSONFileAuditBackend(tmp_path / "audit")
        event = create_audit_event(AuditEventType.STATUS_OVERRIDE, "IN_2B_ONLY -> REJECTED", entry_id="E-1")

        backend.log(event)
        backend.log(create_audit_event(AuditEventType.RECONCILIATION_COMPLETED, "Done"))

        day_file = tmp_path / "audit" / f"{event.timestamp.strftime('%Y-%m-%d')}.json"
        assert len(json.loads(day_file.read_text(encoding="utf-8"))) == 2

        found = backend.query(
            event_type="STATUS_OVERRIDE",
            start_time=event.timestamp - timedelta(minutes=1),
            end_time=datetime.now(timezone.utc) + timedelta(minutes=1),
        )
        assert [e.event_id for e in found] == [event.event_id]

    def test_timestamps_are_aware_utc(self, tmp_path):
        event = create_audit_event(AuditEventType.STATEMENT_UPLOADED, "Uploaded")
        backend = JSONFileAuditBackend(tmp_path / "audit")
        backend.log(event)

        assert event.timestamp.utcoffset() == timedelta(0)
        naive_start = event.timestamp.replace(tzinfo=None) - timedelta(minutes=1)
        found = backend.query(start_time=naive_start)
        assert [e.event_id for e in found] == [event.event_id]
        assert found[0].timestamp == event.timestamp

    def test_backend_failure_does_not_raise(self):
        class BrokenBackend(InMemoryAuditBackend):
            def log(self, event):
                raise OSError("disk full")

        audit = AuditLogger()
        audit.add_backend(BrokenBackend())
        fallback = InMemoryAuditBackend()
        audit.add_backend(fallback)

        audit.log_info(AuditEventType.RECONCILIATION_STARTED, "Started")

        assert len(fallback.query()) == 1
