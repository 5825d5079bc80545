"""
Reconciliation Service Tests

Validates the consumer interface end to end on the in-memory repository:
1. Uploads parse, persist and start every entry PENDING
2. Runs classify entries and purchases; re-runs keep manual decisions
3. Manual match / status override go through the status model and the audit log
4. Re-uploading a period carries manual outcomes onto the new entries
5. Unknown ids raise without changing any state
"""

from datetime import date
from decimal import Decimal

import pytest

from core.audit.events import AuditEventType, AuditLogger, InMemoryAuditBackend
from core.config import Settings
from health import RecommendedAction
from reconciliation.errors import (
    EntryNotFoundError,
    PurchaseAlreadyMatchedError,
    PurchaseNotFoundError,
    ReconciliationError,
    StatementRejectedError,
    UploadNotFoundError,
)
from reconciliation.models import PurchaseRecord
from reconciliation.repository import InMemoryPurchaseLedger, InMemoryReconciliationRepository
from reconciliation.service import ReconciliationService
from reconciliation.status import MatchStatus


TAXPAYER = "27AAACR5055K1Z7"
PERIOD = "042024"
VENDOR = "27AABCU9603R1ZJ"

INV_001 = "B2B-27AABCU9603R1ZJ-INV001"
INV_002 = "B2B-27AABCU9603R1ZJ-INV002"
INV_003 = "B2B-27AABCU9603R1ZJ-INV003"


def statement(invoices=None):
    if invoices is None:
        invoices = [
            {"inum": "INV-001", "idt": "05-04-2024", "txval": 100000, "igst": 18000},
            {"inum": "INV-002", "idt": "08-04-2024", "txval": 50000, "igst": 9000},
            {"inum": "INV-003", "idt": "12-04-2024", "txval": 10000, "cgst": 900, "sgst": 900},
        ]
    return {
        "gstin": TAXPAYER,
        "fp": PERIOD,
        "b2b": [{"ctin": VENDOR, "trdnm": "Acme Supplies", "inv": invoices}],
    }


def purchases():
    return [
        PurchaseRecord(purchase_id="P-1", vendor_gstin=VENDOR, invoice_number="INV-001",
                       invoice_date=date(2024, 4, 5), taxable_value=100000, igst=18000),
        PurchaseRecord(purchase_id="P-2", vendor_gstin=VENDOR, invoice_number="INV/002",
                       invoice_date=date(2024, 4, 8), taxable_value=50000, igst=8500),
        PurchaseRecord(purchase_id="P-4", vendor_gstin=VENDOR, invoice_number="INV-004",
                       invoice_date=date(2024, 4, 12), taxable_value=30000, igst=5400),
    ]


class TestReconciliationService:

    @pytest.fixture
    def audit(self):
        audit = AuditLogger()
        audit.add_backend(InMemoryAuditBackend())
        return audit

    @pytest.fixture
    def repository(self):
        return InMemoryReconciliationRepository()

    @pytest.fixture
    def ledger(self):
        ledger = InMemoryPurchaseLedger()
        ledger.add_records(TAXPAYER, PERIOD, purchases())
        return ledger

    @pytest.fixture
    def service(self, repository, ledger, audit):
        return ReconciliationService(repository, ledger, audit_logger=audit)

    @pytest.fixture
    def upload_id(self, service):
        return service.upload_statement(statement(), file_name="gstr2b.json").upload.upload_id

    def _status(self, service, upload_id, key):
        return {r.result_key: r for r in service.get_results(upload_id)}[key]

    # -------------------------------------------------------------------------
    # Uploads
    # -------------------------------------------------------------------------

    def test_upload_starts_everything_pending(self, service, audit):
        outcome = service.upload_statement(statement(), file_name="gstr2b.json")

        assert outcome.upload.gstin == TAXPAYER
        assert outcome.upload.return_period == PERIOD
        assert outcome.upload.entries_count == 3
        assert outcome.upload.upload_id.startswith("UPL-")
        assert outcome.summary.total_itc_available == Decimal("28800")
        assert outcome.superseded_upload_id is None

        results = service.get_results(outcome.upload.upload_id)
        assert {r.status for r in results} == {MatchStatus.PENDING}
        assert len(results) == 3

        health = service.get_health(outcome.upload.upload_id)
        assert health.match_rate == 0
        assert health.actions == [RecommendedAction.RECONCILE_PENDING]

        events = audit.query(event_type=AuditEventType.STATEMENT_UPLOADED.value)
        assert len(events) == 1
        assert events[0].upload_id == outcome.upload.upload_id

    def test_rejected_upload_persists_nothing(self, service, repository, audit):
        with pytest.raises(StatementRejectedError) as exc_info:
            service.upload_statement({"gstin": TAXPAYER, "fp": "2024-04"})

        assert "MMYYYY" in exc_info.value.message
        assert repository.list_uploads() == []
        assert len(audit.query(event_type=AuditEventType.STATEMENT_REJECTED.value)) == 1

    def test_upload_size_bound(self, repository, ledger):
        service = ReconciliationService(repository, ledger, settings=Settings(max_entries_per_upload=2))

        with pytest.raises(StatementRejectedError):
            service.upload_statement(statement())

        assert repository.list_uploads() == []

    def test_skipped_rows_are_reported(self, service):
        invoices = [
            {"inum": "INV-001", "idt": "05-04-2024", "igst": 18000},
            {"inum": "INV-BAD", "idt": "30-02-2024", "igst": 1},
        ]

        outcome = service.upload_statement(statement(invoices))

        assert outcome.upload.entries_count == 1
        assert len(outcome.skipped_rows) == 1

    def test_unknown_upload(self, service):
        with pytest.raises(UploadNotFoundError):
            service.get_results("UPL-MISSING")
        with pytest.raises(UploadNotFoundError):
            service.run_reconciliation("UPL-MISSING")
        with pytest.raises(ReconciliationError):
            service.get_health("UPL-MISSING")

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    def test_run_classifies(self, service, upload_id, audit):
        run = service.run_reconciliation(upload_id)

        assert [r.entry_id for r in run.matched] == [INV_001]
        assert [r.entry_id for r in run.amount_mismatches] == [INV_002]
        assert [r.entry_id for r in run.in_2b_only] == [INV_003]
        assert [r.purchase_id for r in run.not_in_2b] == ["P-4"]

        mismatch = self._status(service, upload_id, INV_002)
        assert mismatch.purchase_id == "P-2"
        assert mismatch.mismatch.igst == Decimal("500")

        counts = service.repository.status_counts(upload_id)
        assert counts[MatchStatus.MATCHED] == 1
        assert counts[MatchStatus.PENDING] == 0
        assert counts[MatchStatus.REJECTED] == 0

        assert len(audit.query(event_type=AuditEventType.RECONCILIATION_STARTED.value)) == 1
        completed = audit.query(event_type=AuditEventType.RECONCILIATION_COMPLETED.value)
        assert completed[0].details["counts"] == {
            "MATCHED": 1, "AMOUNT_MISMATCH": 1, "IN_2B_ONLY": 1, "NOT_IN_2B": 1,
        }

    def test_health_after_run(self, service, upload_id):
        service.run_reconciliation(upload_id)

        health = service.get_health(upload_id)

        assert health.match_rate == 25
        assert health.itc_at_risk == Decimal("14400")
        assert health.follow_up_needed == 2
        assert health.actions == [
            RecommendedAction.VERIFY_INVOICES,
            RecommendedAction.REVIEW_MISMATCHES,
            RecommendedAction.FOLLOW_UP_VENDORS,
        ]

    def test_filters(self, service, upload_id):
        service.run_reconciliation(upload_id)

        in_2b_only = service.get_entries(upload_id, status=MatchStatus.IN_2B_ONLY)
        assert [e.entry_id for e in in_2b_only] == [INV_003]
        assert len(service.get_entries(upload_id, vendor_gstin=VENDOR.lower())) == 3
        assert service.get_entries(upload_id, vendor_gstin="29AABCU9603R1ZK") == []
        assert [r.purchase_id for r in service.get_results(upload_id, status="NOT_IN_2B")] == ["P-4"]

    def test_rerun_picks_up_new_purchases(self, service, ledger, upload_id):
        service.run_reconciliation(upload_id)
        ledger.add_records(TAXPAYER, PERIOD, [PurchaseRecord(
            purchase_id="P-3", vendor_gstin=VENDOR, invoice_number="INV-003",
            invoice_date=date(2024, 4, 12), taxable_value=10000, cgst=900, sgst=900,
        )])

        service.run_reconciliation(upload_id)

        assert self._status(service, upload_id, INV_003).status == MatchStatus.MATCHED
        assert len(service.get_results(upload_id)) == 4

    # -------------------------------------------------------------------------
    # Manual actions
    # -------------------------------------------------------------------------

    def test_manual_match(self, service, upload_id, audit):
        service.run_reconciliation(upload_id)

        result = service.manual_match(INV_003, "P-4", notes="Vendor typo in invoice number", actor="priya")

        assert result.status == MatchStatus.MANUALLY_RESOLVED
        assert result.purchase_id == "P-4"
        assert result.confidence == Decimal("100")
        assert result.updated_by == "priya"
        assert result.notes[-1] == "Manually matched to purchase P-4: Vendor typo in invoice number"

        keys = {r.result_key for r in service.get_results(upload_id)}
        assert "purchase:P-4" not in keys

        events = audit.query(event_type=AuditEventType.MANUAL_MATCH.value)
        assert events[0].entry_id == INV_003
        assert events[0].actor == "priya"
        assert events[0].details["purchase_id"] == "P-4"

    def test_manual_match_survives_rerun(self, service, upload_id):
        service.run_reconciliation(upload_id)
        service.manual_match(INV_002, "P-2", notes="Credit note pending")

        run = service.run_reconciliation(upload_id)

        assert [r.entry_id for r in run.preserved] == [INV_002]
        assert self._status(service, upload_id, INV_002).status == MatchStatus.MANUALLY_RESOLVED
        assert service.get_health(upload_id).match_rate == 50

    def test_manual_match_before_any_run(self, service, upload_id):
        result = service.manual_match(INV_003, "P-4")

        assert result.status == MatchStatus.MANUALLY_RESOLVED
        assert result.notes == ["Manually matched to purchase P-4"]

    def test_manual_match_unknown_ids_change_nothing(self, service, upload_id):
        service.run_reconciliation(upload_id)
        before = service.get_results(upload_id)

        with pytest.raises(EntryNotFoundError):
            service.manual_match("B2B-NOPE", "P-4")
        with pytest.raises(PurchaseNotFoundError):
            service.manual_match(INV_003, "P-404")

        assert service.get_results(upload_id) == before

    def test_manual_match_requires_purchase_from_same_period(self, service, ledger, upload_id):
        ledger.add_records(TAXPAYER, "032024", [PurchaseRecord(
            purchase_id="P-MARCH", vendor_gstin=VENDOR, invoice_number="INV-003",
            invoice_date=date(2024, 3, 28), taxable_value=10000, cgst=900, sgst=900,
        )])
        service.run_reconciliation(upload_id)
        before = service.get_results(upload_id)

        with pytest.raises(PurchaseNotFoundError):
            service.manual_match(INV_003, "P-MARCH")

        assert service.get_results(upload_id) == before

    def test_manual_match_rejects_purchase_held_by_another_entry(self, service, upload_id, audit):
        service.run_reconciliation(upload_id)
        before = service.get_results(upload_id)

        with pytest.raises(PurchaseAlreadyMatchedError) as exc_info:
            service.manual_match(INV_003, "P-1")

        assert exc_info.value.entry_id == INV_001
        assert service.get_results(upload_id) == before
        assert service.get_health(upload_id).match_rate == 25
        assert audit.query(event_type=AuditEventType.MANUAL_MATCH.value) == []

    def test_manual_match_after_other_entry_is_rejected(self, service, upload_id):
        service.run_reconciliation(upload_id)
        service.update_match_status(INV_001, MatchStatus.REJECTED, notes="Booked against INV-003")

        result = service.manual_match(INV_003, "P-1")
        run = service.run_reconciliation(upload_id)

        assert result.purchase_id == "P-1"
        assert {r.entry_id for r in run.preserved} == {INV_001, INV_003}
        assert [r.purchase_id for r in run.not_in_2b] == ["P-4"]

        assert service.get_results(upload_id) == before

    def test_update_status(self, service, upload_id, audit):
        service.run_reconciliation(upload_id)

        result = service.update_match_status(INV_003, MatchStatus.REJECTED, notes="Not our purchase")

        assert result.status == MatchStatus.REJECTED
        assert result.notes == ["Status changed from IN_2B_ONLY to REJECTED: Not our purchase"]
        assert result.updated_by == "user"

        event = audit.query(event_type=AuditEventType.STATUS_OVERRIDE.value)[0]
        assert event.details["previous_status"] == "IN_2B_ONLY"
        assert event.details["status"] == "REJECTED"

    def test_update_status_of_unreported_purchase(self, service, upload_id):
        service.run_reconciliation(upload_id)

        service.update_match_status("purchase:P-4", "REJECTED", notes="Duplicate booking")
        run = service.run_reconciliation(upload_id)

        assert run.not_in_2b == []
        assert [r.result_key for r in run.preserved] == ["purchase:P-4"]
        # Rejected lines leave the health total
        assert service.get_health(upload_id).match_rate == 33

    def test_manual_override_back_to_automatic(self, service, upload_id):
        service.run_reconciliation(upload_id)
        service.update_match_status(INV_003, MatchStatus.REJECTED)

        reopened = service.update_match_status(INV_003, MatchStatus.PENDING, notes="Reopened")
        service.run_reconciliation(upload_id)

        assert reopened.status == MatchStatus.PENDING
        current = self._status(service, upload_id, INV_003)
        assert current.status == MatchStatus.IN_2B_ONLY
        assert len(current.notes) == 2

    def test_update_status_unknown_entry(self, service, upload_id):
        with pytest.raises(EntryNotFoundError):
            service.update_match_status("B2B-NOPE", MatchStatus.REJECTED)
        with pytest.raises(EntryNotFoundError):
            service.update_match_status("purchase:P-404", MatchStatus.REJECTED)

    def test_suggestions_skip_claimed_purchases(self, service, upload_id):
        service.run_reconciliation(upload_id)

        suggestions = service.find_potential_matches(INV_003)

        assert [s.purchase_id for s in suggestions] == ["P-4"]
        assert self._status(service, upload_id, INV_003).status == MatchStatus.IN_2B_ONLY

    def test_suggestions_unknown_entry(self, service, upload_id):
        with pytest.raises(EntryNotFoundError):
            service.find_potential_matches("B2B-NOPE")

    # -------------------------------------------------------------------------
    # Re-upload
    # -------------------------------------------------------------------------

    def test_reupload_carries_manual_outcomes(self, service, upload_id, audit):
        service.run_reconciliation(upload_id)
        service.manual_match(INV_003, "P-4", notes="Confirmed with vendor")

        reordered = list(reversed(statement()["b2b"][0]["inv"]))
        outcome = service.upload_statement(statement(reordered), file_name="gstr2b-v2.json")

        assert outcome.upload.upload_id == upload_id
        assert outcome.superseded_upload_id == upload_id
        assert outcome.carried_forward == 1

        carried = self._status(service, upload_id, INV_003)
        assert carried.status == MatchStatus.MANUALLY_RESOLVED
        assert carried.purchase_id == "P-4"
        assert carried.notes[0] == "Manually matched to purchase P-4: Confirmed with vendor"
        assert carried.notes[-1] == f"Carried forward from superseded upload (was {INV_003})"
        assert self._status(service, upload_id, INV_001).status == MatchStatus.PENDING

        run = service.run_reconciliation(upload_id)
        assert self._status(service, upload_id, INV_003).status == MatchStatus.MANUALLY_RESOLVED
        assert run.not_in_2b == []
        assert len(audit.query(event_type=AuditEventType.RESOLUTIONS_CARRIED_FORWARD.value)) == 1

    def test_reupload_carries_by_normalized_key(self, service, upload_id):
        service.update_match_status(INV_001, MatchStatus.REJECTED, notes="Personal expense")

        invoices = [{"inum": "inv/001", "idt": "05-04-2024", "txval": 100000, "igst": 18000}]
        outcome = service.upload_statement(statement(invoices))

        assert outcome.carried_forward == 1
        assert self._status(service, upload_id, INV_001).status == MatchStatus.REJECTED

    def test_reupload_drops_outcomes_without_counterpart(self, service, upload_id):
        service.update_match_status(INV_003, MatchStatus.REJECTED)

        outcome = service.upload_statement(statement(statement()["b2b"][0]["inv"][:2]))

        assert outcome.carried_forward == 0
        keys = {r.result_key for r in service.get_results(upload_id)}
        assert keys == {INV_001, INV_002}

    def test_reupload_keeps_outcomes_of_duplicate_lines(self, service):
        invoices = [
            {"inum": "INV-001", "idt": "05-04-2024", "txval": 100000, "igst": 18000},
            {"inum": "INV-001", "idt": "05-04-2024", "txval": 100000, "igst": 18000},
        ]
        upload_id = service.upload_statement(statement(invoices)).upload.upload_id
        service.update_match_status(INV_001, MatchStatus.REJECTED, notes="Duplicate on portal")
        service.update_match_status(f"{INV_001}-2", MatchStatus.REJECTED, notes="Duplicate on portal")

        outcome = service.upload_statement(statement(invoices))

        assert outcome.carried_forward == 2
        assert self._status(service, upload_id, INV_001).status == MatchStatus.REJECTED
        assert self._status(service, upload_id, f"{INV_001}-2").status == MatchStatus.REJECTED

    def test_reupload_keeps_outcome_on_same_entry_id(self, service):
        invoices = [
            {"inum": "INV-001", "idt": "05-04-2024", "txval": 100000, "igst": 18000},
            {"inum": "INV-001", "idt": "05-04-2024", "txval": 100000, "igst": 18000},
        ]
        upload_id = service.upload_statement(statement(invoices)).upload.upload_id
        service.update_match_status(f"{INV_001}-2", MatchStatus.REJECTED)

        outcome = service.upload_statement(statement(invoices))

        assert outcome.carried_forward == 1
        assert self._status(service, upload_id, INV_001).status == MatchStatus.PENDING
        assert self._status(service, upload_id, f"{INV_001}-2").status == MatchStatus.REJECTED

    def test_reupload_moves_outcomes_to_amended_lines_in_order(self, service):
        invoices = [
            {"inum": "INV-001", "idt": "05-04-2024", "txval": 100000, "igst": 18000},
            {"inum": "INV-001", "idt": "05-04-2024", "txval": 100000, "igst": 18000},
        ]
        upload_id = service.upload_statement(statement(invoices)).upload.upload_id
        service.update_match_status(INV_001, MatchStatus.REJECTED)
        service.update_match_status(f"{INV_001}-2", MatchStatus.MANUALLY_RESOLVED)

        amended = {"gstin": TAXPAYER, "fp": PERIOD, "b2ba": [{"ctin": VENDOR, "inv": invoices}]}
        outcome = service.upload_statement(amended)

        assert outcome.carried_forward == 2
        first = self._status(service, upload_id, "B2BA-27AABCU9603R1ZJ-INV001")
        second = self._status(service, upload_id, "B2BA-27AABCU9603R1ZJ-INV001-2")
        assert first.status == MatchStatus.REJECTED
        assert first.notes[-1] == f"Carried forward from superseded upload (was {INV_001})"
        assert second.status == MatchStatus.MANUALLY_RESOLVED
