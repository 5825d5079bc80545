"""Reconciliation service - the consumer interface over a repository.

Wires the parser, the deterministic engine, fuzzy suggestions, the status
model and the health aggregator to an injected repository and purchase
ledger. Every state change goes through the Match Status Model, is logged
with correlation IDs and recorded in the audit log.

Usage:
    service = ReconciliationService(
        repository=SQLiteReconciliationRepository(settings.db_path),
        ledger=ledger,
        settings=settings,
    )

    outcome = service.upload_statement(raw_json, file_name="gstr2b_042024.json")
    service.run_reconciliation(outcome.upload.upload_id)
    print(service.get_health(outcome.upload.upload_id).summary)
"""

import uuid
from collections import defaultdict
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from core.audit.events import AuditEventType, AuditLogger
from core.config import Settings
from core.models.canonical import utc_now
from core.observability.logging import get_logger, with_correlation
from health.calculator import calculate_health
from health.models import HealthReport
from reconciliation import engine, matching
from reconciliation.errors import (
    EntryNotFoundError,
    PurchaseAlreadyMatchedError,
    PurchaseNotFoundError,
    StatementRejectedError,
    UploadNotFoundError,
)
from reconciliation.models import (
    FuzzyMatchConfig,
    MatchResult,
    MatchSuggestion,
    ReconciliationConfig,
    ReconciliationRun,
    ReconciliationSummary,
    StatementUpload,
)
from reconciliation.normalize import normalize_gstin
from reconciliation.repository import PurchaseLedger, ReconciliationRepository
from reconciliation.status import MatchStatus, is_locked, transition
from statement_parser.models import SkippedRow, StatementEntry, StatementSummary
from statement_parser.parser import parse_statement


logger = get_logger(__name__)

PURCHASE_KEY_PREFIX = "purchase:"


class UploadOutcome(BaseModel):
    """What happened when a statement was uploaded."""
    upload: StatementUpload
    summary: StatementSummary
    skipped_rows: List[SkippedRow] = Field(default_factory=list)
    carried_forward: int = Field(default=0, description="Manual outcomes kept from the superseded upload")
    superseded_upload_id: Optional[str] = None


def _new_upload_id() -> str:
    return f"UPL-{uuid.uuid4().hex[:12].upper()}"


class ReconciliationService:
    """Consumer interface for statement uploads, runs and manual decisions."""

    def __init__(
        self,
        repository: ReconciliationRepository,
        ledger: PurchaseLedger,
        reconciliation_config: Optional[ReconciliationConfig] = None,
        fuzzy_config: Optional[FuzzyMatchConfig] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the service.

        Args:
            repository: Storage for uploads, entries and results
            ledger: Read-only purchase register
            reconciliation_config: Deterministic-pass config (defaults from settings)
            fuzzy_config: Suggestion config (defaults from settings)
            audit_logger: Audit sink; audit is skipped when None
            settings: Runtime settings
        """
        self.repository = repository
        self.ledger = ledger
        self.settings = settings or Settings()
        self.reconciliation_config = reconciliation_config or self.settings.reconciliation_config()
        self.fuzzy_config = fuzzy_config or self.settings.fuzzy_config()
        self.audit = audit_logger

    # =========================================================================
    # Lookups
    # =========================================================================

    def _require_upload(self, upload_id: str) -> StatementUpload:
        upload = self.repository.get_upload(upload_id)
        if upload is None:
            raise UploadNotFoundError(upload_id)
        return upload

    def _require_entry(self, entry_id: str, upload_id: Optional[str]) -> Tuple[StatementUpload, StatementEntry]:
        if upload_id is None:
            upload_id = self.repository.locate_entry(entry_id)
            if upload_id is None:
                raise EntryNotFoundError(entry_id)
        upload = self._require_upload(upload_id)
        entry = self.repository.get_entry(upload_id, entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        return upload, entry

    def _require_result(self, result_key: str, upload_id: Optional[str]) -> Tuple[StatementUpload, MatchResult]:
        """Result for an entry id, or for ``purchase:<id>`` (NOT_IN_2B rows)."""
        if not result_key.startswith(PURCHASE_KEY_PREFIX):
            upload, entry = self._require_entry(result_key, upload_id)
            result = self.repository.get_result(upload.upload_id, entry.entry_id)
            if result is None:
                result = MatchResult(
                    entry_id=entry.entry_id,
                    itc_amount=entry.itc_amount,
                    vendor_gstin=entry.vendor_gstin,
                    invoice_number=entry.invoice_number,
                )
            return upload, result

        if upload_id is None:
            upload_id = self.repository.locate_result(result_key)
            if upload_id is None:
                raise EntryNotFoundError(result_key)
        upload = self._require_upload(upload_id)
        result = self.repository.get_result(upload_id, result_key)
        if result is None:
            raise EntryNotFoundError(result_key)
        return upload, result

    def _claimed_purchases(self, upload_id: str, exclude_entry_id: Optional[str] = None) -> Dict[str, str]:
        """purchase_id -> entry_id for purchases held by a statement entry.

        A rejected entry no longer holds its purchase.
        """
        return {
            r.purchase_id: r.entry_id
            for r in self.repository.get_results(upload_id)
            if r.entry_id and r.purchase_id
            and r.entry_id != exclude_entry_id
            and r.status != MatchStatus.REJECTED
        }

    def _audit(self, event_type: AuditEventType, message: str, warning: bool = False, **kwargs) -> None:
        if self.audit is None:
            return
        if warning:
            self.audit.log_warning(event_type, message, **kwargs)
        else:
            self.audit.log_info(event_type, message, **kwargs)

    # =========================================================================
    # Uploads
    # =========================================================================

    def upload_statement(self, document: Any, file_name: Optional[str] = None) -> UploadOutcome:
        """Parse and store a statement, superseding any upload for the same period.

        Manually resolved or rejected outcomes of the superseded upload are
        carried onto new entries with the same match key; every other entry
        starts PENDING.

        Raises:
            StatementRejectedError: the document failed to parse; nothing is stored
        """
        with with_correlation(stage="upload"):
            parsed = parse_statement(document, max_entries=self.settings.max_entries_per_upload)
            if not parsed.success:
                self._audit(
                    AuditEventType.STATEMENT_REJECTED,
                    f"Statement rejected: {parsed.error}",
                    warning=True,
                    return_period=parsed.return_period,
                    details={"file_name": file_name},
                )
                raise StatementRejectedError(parsed.error or "Statement could not be parsed", parsed.skipped_rows)

            now = utc_now()
            previous = self.repository.get_upload_by_period(parsed.gstin, parsed.return_period)
            upload = StatementUpload(
                upload_id=previous.upload_id if previous else _new_upload_id(),
                gstin=parsed.gstin,
                return_period=parsed.return_period,
                file_name=file_name,
                entries_count=len(parsed.entries),
                created_at=previous.created_at if previous else now,
                updated_at=now,
            )

            with with_correlation(upload_id=upload.upload_id, gstin=upload.gstin, return_period=upload.return_period):
                prior = self.repository.get_results(previous.upload_id) if previous else []
                results, carried = self._initial_results(parsed.entries, prior)

                self.repository.replace_upload(upload, parsed.entries, results)

                logger.info(
                    f"Stored statement upload with {upload.entries_count} entries "
                    f"({len(parsed.skipped_rows)} rows skipped, {carried} manual outcomes carried forward)",
                )
                self._audit(
                    AuditEventType.STATEMENT_UPLOADED,
                    f"Statement uploaded with {upload.entries_count} entries",
                    upload_id=upload.upload_id,
                    return_period=upload.return_period,
                    details={
                        "file_name": file_name,
                        "skipped_rows": len(parsed.skipped_rows),
                        "replaced": previous is not None,
                    },
                )
                if carried:
                    self._audit(
                        AuditEventType.RESOLUTIONS_CARRIED_FORWARD,
                        f"{carried} manual outcomes carried forward from the superseded upload",
                        upload_id=upload.upload_id,
                        return_period=upload.return_period,
                        details={"carried_forward": carried},
                    )

        return UploadOutcome(
            upload=upload,
            summary=parsed.summary,
            skipped_rows=parsed.skipped_rows,
            carried_forward=carried,
            superseded_upload_id=previous.upload_id if previous else None,
        )

    def _initial_results(
        self,
        entries: List[StatementEntry],
        prior: List[MatchResult],
    ) -> Tuple[List[MatchResult], int]:
        """PENDING results for new entries, with locked outcomes re-keyed onto them.

        A locked outcome follows its entry id when the re-parsed statement
        still has it, otherwise the oldest unclaimed outcome with the same
        match key.
        """
        locked_by_id: Dict[str, MatchResult] = {}
        locked_by_key: Dict[Tuple[str, str], List[MatchResult]] = defaultdict(list)
        results: List[MatchResult] = []

        for result in prior:
            if not is_locked(result.status):
                continue
            if result.entry_id is None:
                # Decisions on unreported purchases do not depend on the entries
                results.append(result)
            else:
                locked_by_id[result.entry_id] = result
                locked_by_key[result.match_key].append(result)

        claimed = set()
        carried_onto: Dict[str, MatchResult] = {}
        for entry in entries:
            previous = locked_by_id.get(entry.entry_id)
            if previous is not None:
                claimed.add(previous.entry_id)
                carried_onto[entry.entry_id] = previous

        for entry in entries:
            if entry.entry_id in carried_onto:
                continue
            queue = locked_by_key.get(entry.match_key, [])
            while queue and queue[0].entry_id in claimed:
                queue.pop(0)
            if queue:
                previous = queue.pop(0)
                claimed.add(previous.entry_id)
                carried_onto[entry.entry_id] = previous

        for entry in entries:
            previous = carried_onto.get(entry.entry_id)
            if previous is None:
                results.append(MatchResult(
                    entry_id=entry.entry_id,
                    status=MatchStatus.PENDING,
                    itc_amount=entry.itc_amount,
                    vendor_gstin=entry.vendor_gstin,
                    invoice_number=entry.invoice_number,
                ))
                continue

            results.append(MatchResult(
                entry_id=entry.entry_id,
                purchase_id=previous.purchase_id,
                status=previous.status,
                confidence=previous.confidence,
                mismatch=previous.mismatch,
                itc_amount=entry.itc_amount,
                vendor_gstin=entry.vendor_gstin,
                invoice_number=entry.invoice_number,
                notes=list(previous.notes) + [
                    f"Carried forward from superseded upload (was {previous.entry_id})"
                ],
                updated_by=previous.updated_by,
                updated_at=previous.updated_at,
            ))

        carried = len(carried_onto)
        if carried:
            logger.info(f"Carried {carried} manual outcomes onto re-uploaded entries")
        return results, carried

    # =========================================================================
    # Queries
    # =========================================================================

    def get_upload(self, upload_id: str) -> StatementUpload:
        return self._require_upload(upload_id)

    def get_entries(
        self,
        upload_id: str,
        status: Optional[MatchStatus] = None,
        vendor_gstin: Optional[str] = None,
    ) -> List[StatementEntry]:
        """Entries of an upload, optionally filtered by current status and vendor."""
        self._require_upload(upload_id)
        entries = self.repository.get_entries(upload_id)

        if vendor_gstin:
            wanted = normalize_gstin(vendor_gstin)
            entries = [e for e in entries if normalize_gstin(e.vendor_gstin) == wanted]

        if status is not None:
            status = MatchStatus(status)
            statuses = {
                r.entry_id: r.status
                for r in self.repository.get_results(upload_id)
                if r.entry_id
            }
            entries = [e for e in entries if statuses.get(e.entry_id, MatchStatus.PENDING) == status]

        return entries

    def get_results(self, upload_id: str, status: Optional[MatchStatus] = None) -> List[MatchResult]:
        self._require_upload(upload_id)
        results = self.repository.get_results(upload_id)
        if status is not None:
            status = MatchStatus(status)
            results = [r for r in results if r.status == status]
        return results

    def get_summary(self, upload_id: str) -> ReconciliationSummary:
        return engine.summarize_results(self.get_results(upload_id))

    def get_health(self, upload_id: str) -> HealthReport:
        return calculate_health(self.get_summary(upload_id).to_health_input())

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def run_reconciliation(self, upload_id: str) -> ReconciliationRun:
        """Run (or re-run) the deterministic pass for an upload.

        Manually resolved and rejected results are preserved as they are.
        """
        upload = self._require_upload(upload_id)

        with with_correlation(upload_id=upload_id, gstin=upload.gstin, return_period=upload.return_period):
            self._audit(
                AuditEventType.RECONCILIATION_STARTED,
                "Reconciliation started",
                upload_id=upload_id,
                return_period=upload.return_period,
            )

            entries = self.repository.get_entries(upload_id)
            purchases = self.ledger.list_purchase_records(upload.gstin, upload.return_period)
            prior = self.repository.get_results(upload_id)

            run = engine.run_reconciliation(
                purchases,
                entries,
                config=self.reconciliation_config,
                prior_results=prior,
            )
            self.repository.save_results(upload_id, run.results, replace_unlinked=True)

            counts = {status.value: count for status, count in run.summary.counts.items() if count}
            self._audit(
                AuditEventType.RECONCILIATION_COMPLETED,
                f"Reconciliation completed: {len(run.results)} results",
                upload_id=upload_id,
                return_period=upload.return_period,
                details={"counts": counts, "purchases": len(purchases)},
            )

        return run

    def find_potential_matches(
        self,
        entry_id: str,
        limit: Optional[int] = None,
        upload_id: Optional[str] = None,
    ) -> List[MatchSuggestion]:
        """Fuzzy suggestions for an entry among purchases no other entry has claimed."""
        upload, entry = self._require_entry(entry_id, upload_id)

        claimed = self._claimed_purchases(upload.upload_id, exclude_entry_id=entry.entry_id)
        available = [
            p for p in self.ledger.list_purchase_records(upload.gstin, upload.return_period)
            if p.purchase_id not in claimed
        ]
        return matching.find_potential_matches(entry, available, config=self.fuzzy_config, limit=limit)

    # =========================================================================
    # Manual Actions
    # =========================================================================

    def manual_match(
        self,
        entry_id: str,
        purchase_id: str,
        notes: Optional[str] = None,
        actor: str = "user",
        upload_id: Optional[str] = None,
    ) -> MatchResult:
        """Link an entry to a purchase as MANUALLY_RESOLVED with full confidence.

        Any NOT_IN_2B row for that purchase is retired.

        The purchase must belong to the upload's GSTIN and return period
        and must not be linked to another entry.

        Raises:
            EntryNotFoundError / PurchaseNotFoundError: nothing is changed
            PurchaseAlreadyMatchedError: another entry holds the purchase; nothing is changed
        """
        upload, current = self._require_result(entry_id, upload_id)
        if current.entry_id is None:
            raise EntryNotFoundError(entry_id)
        in_period = {p.purchase_id for p in self.ledger.list_purchase_records(upload.gstin, upload.return_period)}
        if purchase_id not in in_period:
            raise PurchaseNotFoundError(purchase_id)
        owner = self._claimed_purchases(upload.upload_id, exclude_entry_id=current.entry_id).get(purchase_id)
        if owner is not None:
            raise PurchaseAlreadyMatchedError(purchase_id, owner)

        trail = f"Manually matched to purchase {purchase_id}"
        if notes:
            trail += f": {notes}"

        with with_correlation(upload_id=upload.upload_id, entry_id=current.entry_id, stage="manual"):
            updated = transition(
                current,
                MatchStatus.MANUALLY_RESOLVED,
                manual=True,
                notes=trail,
                actor=actor,
                purchase_id=purchase_id,
                confidence=Decimal("100"),
                mismatch=None,
            )
            self.repository.save_results(upload.upload_id, [updated])
            self.repository.delete_result(upload.upload_id, f"{PURCHASE_KEY_PREFIX}{purchase_id}")

            logger.info(f"Entry manually matched to purchase {purchase_id} by {actor}")
            self._audit(
                AuditEventType.MANUAL_MATCH,
                f"Entry {current.entry_id} matched to purchase {purchase_id}",
                upload_id=upload.upload_id,
                return_period=upload.return_period,
                entry_id=current.entry_id,
                invoice_number=current.invoice_number,
                details={"purchase_id": purchase_id, "previous_status": current.status.value, "notes": notes},
                actor=actor,
            )

        return updated

    def update_match_status(
        self,
        entry_id: str,
        status: MatchStatus,
        notes: Optional[str] = None,
        actor: str = "user",
        upload_id: Optional[str] = None,
    ) -> MatchResult:
        """Administrative override to any status; notes are appended to the trail.

        ``entry_id`` may also be ``purchase:<id>`` to act on a NOT_IN_2B row.
        """
        status = MatchStatus(status)
        upload, current = self._require_result(entry_id, upload_id)

        trail = f"Status changed from {current.status.value} to {status.value}"
        if notes:
            trail += f": {notes}"

        with with_correlation(upload_id=upload.upload_id, entry_id=current.entry_id, stage="manual"):
            updated = transition(current, status, manual=True, notes=trail, actor=actor)
            self.repository.save_results(upload.upload_id, [updated])

            logger.info(f"Status of {current.result_key} set to {status.value} by {actor}")
            self._audit(
                AuditEventType.STATUS_OVERRIDE,
                f"{current.result_key}: {current.status.value} -> {status.value}",
                upload_id=upload.upload_id,
                return_period=upload.return_period,
                entry_id=current.entry_id,
                invoice_number=current.invoice_number,
                details={"previous_status": current.status.value, "status": status.value, "notes": notes},
                actor=actor,
            )

        return updated
