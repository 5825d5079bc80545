"""Persistence interfaces for reconciliation state.

The engine itself is stateless; the consumer interface reads and writes
through two injected collaborators:

- ReconciliationRepository: statement uploads, their entries and results
- PurchaseLedger: read-only access to the taxpayer's purchase register

In-memory implementations live here; the SQLite repository is in
``reconciliation.db``.
"""

from abc import ABC, abstractmethod
from collections import Counter
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from core.models.canonical import as_utc, utc_now
from reconciliation.models import MatchResult, PurchaseRecord, StatementUpload
from reconciliation.normalize import normalize_gstin
from reconciliation.status import MatchStatus
from statement_parser.models import StatementEntry


class ReconciliationRepository(ABC):
    """Storage for statement uploads, entries and match results."""

    @abstractmethod
    def get_upload(self, upload_id: str) -> Optional[StatementUpload]:
        pass

    @abstractmethod
    def get_upload_by_period(self, gstin: str, return_period: str) -> Optional[StatementUpload]:
        pass

    @abstractmethod
    def list_uploads(self) -> List[StatementUpload]:
        """All uploads, most recently updated first."""
        pass

    @abstractmethod
    def replace_upload(
        self,
        upload: StatementUpload,
        entries: List[StatementEntry],
        results: List[MatchResult],
    ) -> None:
        """Store an upload, superseding any upload for the same GSTIN and period.

        The superseded upload's entries and results are discarded.
        """
        pass

    @abstractmethod
    def get_entries(self, upload_id: str) -> List[StatementEntry]:
        pass

    @abstractmethod
    def get_entry(self, upload_id: str, entry_id: str) -> Optional[StatementEntry]:
        pass

    @abstractmethod
    def get_results(self, upload_id: str) -> List[MatchResult]:
        pass

    @abstractmethod
    def get_result(self, upload_id: str, result_key: str) -> Optional[MatchResult]:
        pass

    @abstractmethod
    def save_results(
        self,
        upload_id: str,
        results: Iterable[MatchResult],
        replace_unlinked: bool = False,
    ) -> None:
        """Upsert results by result key.

        With ``replace_unlinked`` purchase-only results (no entry) that are
        not in ``results`` are removed, so a re-run can retire NOT_IN_2B
        rows for purchases that have since been matched.
        """
        pass

    @abstractmethod
    def delete_result(self, upload_id: str, result_key: str) -> bool:
        pass

    def locate_entry(self, entry_id: str) -> Optional[str]:
        """Upload id holding ``entry_id``, most recent upload first."""
        for upload in self.list_uploads():
            if self.get_entry(upload.upload_id, entry_id) is not None:
                return upload.upload_id
        return None

    def locate_result(self, result_key: str) -> Optional[str]:
        """Upload id holding a result with ``result_key``, most recent upload first."""
        for upload in self.list_uploads():
            if self.get_result(upload.upload_id, result_key) is not None:
                return upload.upload_id
        return None

    def status_counts(self, upload_id: str) -> Dict[MatchStatus, int]:
        """Number of results per status (every status present, zero if unused)."""
        counts = Counter(result.status for result in self.get_results(upload_id))
        return {status: counts.get(status, 0) for status in MatchStatus}


class InMemoryReconciliationRepository(ReconciliationRepository):
    """Dict-backed repository for tests and one-off runs."""

    def __init__(self):
        self._uploads: Dict[str, StatementUpload] = {}
        self._entries: Dict[str, Dict[str, StatementEntry]] = {}
        self._results: Dict[str, Dict[str, MatchResult]] = {}

    def get_upload(self, upload_id: str) -> Optional[StatementUpload]:
        return self._uploads.get(upload_id)

    def get_upload_by_period(self, gstin: str, return_period: str) -> Optional[StatementUpload]:
        gstin = normalize_gstin(gstin)
        for upload in self._uploads.values():
            if upload.gstin == gstin and upload.return_period == return_period:
                return upload
        return None

    def list_uploads(self) -> List[StatementUpload]:
        return sorted(self._uploads.values(), key=lambda u: as_utc(u.updated_at), reverse=True)

    def replace_upload(
        self,
        upload: StatementUpload,
        entries: List[StatementEntry],
        results: List[MatchResult],
    ) -> None:
        previous = self.get_upload_by_period(upload.gstin, upload.return_period)
        if previous is not None:
            self._uploads.pop(previous.upload_id, None)
            self._entries.pop(previous.upload_id, None)
            self._results.pop(previous.upload_id, None)

        self._uploads[upload.upload_id] = upload
        self._entries[upload.upload_id] = {entry.entry_id: entry for entry in entries}
        self._results[upload.upload_id] = {result.result_key: result for result in results}

    def get_entries(self, upload_id: str) -> List[StatementEntry]:
        return list(self._entries.get(upload_id, {}).values())

    def get_entry(self, upload_id: str, entry_id: str) -> Optional[StatementEntry]:
        return self._entries.get(upload_id, {}).get(entry_id)

    def get_results(self, upload_id: str) -> List[MatchResult]:
        return list(self._results.get(upload_id, {}).values())

    def get_result(self, upload_id: str, result_key: str) -> Optional[MatchResult]:
        return self._results.get(upload_id, {}).get(result_key)

    def save_results(
        self,
        upload_id: str,
        results: Iterable[MatchResult],
        replace_unlinked: bool = False,
    ) -> None:
        stored = self._results.setdefault(upload_id, {})
        incoming = {result.result_key: result for result in results}

        if replace_unlinked:
            for key in [k for k, r in stored.items() if r.entry_id is None and k not in incoming]:
                del stored[key]

        stored.update(incoming)
        self._touch(upload_id)

    def delete_result(self, upload_id: str, result_key: str) -> bool:
        removed = self._results.get(upload_id, {}).pop(result_key, None) is not None
        if removed:
            self._touch(upload_id)
        return removed

    def _touch(self, upload_id: str) -> None:
        upload = self._uploads.get(upload_id)
        if upload is not None:
            self._uploads[upload_id] = upload.model_copy(update={"updated_at": utc_now()})


# =============================================================================
# Purchase Register
# =============================================================================

class PurchaseLedger(Protocol):
    """Read-only provider of the taxpayer's purchase records."""

    def list_purchase_records(self, gstin: str, return_period: str) -> List[PurchaseRecord]:
        """Purchases booked by ``gstin`` for the return period (MMYYYY)."""
        ...

    def get_purchase_record(self, purchase_id: str) -> Optional[PurchaseRecord]:
        ...


class InMemoryPurchaseLedger:
    """Purchase register held in memory, keyed by (GSTIN, return period).

    Example:
        ledger = InMemoryPurchaseLedger()
        ledger.add_records("27AAACR5055K1Z7", "042024", purchases)
    """

    def __init__(self):
        self._records: Dict[Tuple[str, str], List[PurchaseRecord]] = {}
        self._by_id: Dict[str, PurchaseRecord] = {}

    def add_records(self, gstin: str, return_period: str, records: Iterable[PurchaseRecord]) -> None:
        bucket = self._records.setdefault((normalize_gstin(gstin), return_period), [])
        for record in records:
            bucket.append(record)
            self._by_id[record.purchase_id] = record

    def list_purchase_records(self, gstin: str, return_period: str) -> List[PurchaseRecord]:
        return list(self._records.get((normalize_gstin(gstin), return_period), []))

    def get_purchase_record(self, purchase_id: str) -> Optional[PurchaseRecord]:
        return self._by_id.get(purchase_id)
