"""Reconciliation Database Operations.

SQLite-backed ``ReconciliationRepository``:
- Schema initialization
- Upload replacement (one upload per GSTIN and return period)
- Entry and match result storage

Amounts are stored as TEXT so Decimal values round-trip exactly.
"""

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Union

from core.config import DEFAULT_DB_PATH
from core.models.canonical import utc_now
from core.observability.logging import get_logger
from reconciliation.models import MatchResult, MismatchDetails, StatementUpload
from reconciliation.normalize import normalize_gstin
from reconciliation.repository import ReconciliationRepository
from statement_parser.models import StatementEntry


logger = get_logger(__name__)

PathLike = Union[str, Path]

ENTRY_COLUMNS = (
    "entry_id", "vendor_gstin", "vendor_name", "invoice_number", "invoice_date",
    "invoice_value", "taxable_value", "igst", "cgst", "sgst", "cess",
    "itc_available", "reason", "supply_type", "note_type",
    "original_invoice_number", "original_invoice_date", "source_type", "port_code",
)


def init_reconciliation_db(db_path: PathLike = DEFAULT_DB_PATH) -> None:
    """Initialize reconciliation database tables.

    Creates:
    - statement_uploads: One row per (gstin, return_period)
    - statement_entries: Parsed entries per upload
    - match_results: Current result per entry / unreported purchase

    Args:
        db_path: Path to SQLite database file
    """
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS statement_uploads (
                upload_id TEXT PRIMARY KEY,
                gstin TEXT NOT NULL,
                return_period TEXT NOT NULL,
                file_name TEXT,
                entries_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(gstin, return_period)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS statement_entries (
                upload_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                entry_id TEXT NOT NULL,
                vendor_gstin TEXT NOT NULL DEFAULT '',
                vendor_name TEXT,
                invoice_number TEXT NOT NULL,
                invoice_date TEXT NOT NULL,
                invoice_value TEXT NOT NULL,
                taxable_value TEXT NOT NULL,
                igst TEXT NOT NULL,
                cgst TEXT NOT NULL,
                sgst TEXT NOT NULL,
                cess TEXT NOT NULL,
                itc_available INTEGER NOT NULL DEFAULT 1,
                reason TEXT,
                supply_type TEXT NOT NULL,
                note_type TEXT,
                original_invoice_number TEXT,
                original_invoice_date TEXT,
                source_type TEXT,
                port_code TEXT,
                PRIMARY KEY (upload_id, entry_id),
                FOREIGN KEY (upload_id) REFERENCES statement_uploads(upload_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS match_results (
                upload_id TEXT NOT NULL,
                result_key TEXT NOT NULL,
                entry_id TEXT,
                purchase_id TEXT,
                status TEXT NOT NULL,
                confidence TEXT,
                mismatch TEXT,
                itc_amount TEXT NOT NULL,
                vendor_gstin TEXT,
                invoice_number TEXT,
                notes TEXT NOT NULL DEFAULT '[]',
                updated_by TEXT NOT NULL DEFAULT 'system',
                updated_at TEXT NOT NULL,
                PRIMARY KEY (upload_id, result_key),
                FOREIGN KEY (upload_id) REFERENCES statement_uploads(upload_id)
            )
        """)

        # Indexes for status and entry lookups
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_match_results_status
            ON match_results(upload_id, status)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_statement_entries_entry
            ON statement_entries(entry_id)
        """)

        conn.commit()
        logger.info(f"Reconciliation tables initialized at {db_path}")

    finally:
        conn.close()


# =============================================================================
# Row Conversion
# =============================================================================

def _text(value) -> Optional[str]:
    return None if value is None else str(value)


def _upload_from_row(row: sqlite3.Row) -> StatementUpload:
    return StatementUpload(
        upload_id=row["upload_id"],
        gstin=row["gstin"],
        return_period=row["return_period"],
        file_name=row["file_name"],
        entries_count=row["entries_count"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _entry_values(upload_id: str, position: int, entry: StatementEntry) -> tuple:
    return (
        upload_id,
        position,
        entry.entry_id,
        entry.vendor_gstin,
        entry.vendor_name,
        entry.invoice_number,
        entry.invoice_date.isoformat(),
        str(entry.invoice_value),
        str(entry.taxable_value),
        str(entry.igst),
        str(entry.cgst),
        str(entry.sgst),
        str(entry.cess),
        1 if entry.itc_available else 0,
        entry.reason,
        entry.supply_type.value,
        entry.note_type.value if entry.note_type else None,
        entry.original_invoice_number,
        entry.original_invoice_date.isoformat() if entry.original_invoice_date else None,
        entry.source_type,
        entry.port_code,
    )


def _entry_from_row(row: sqlite3.Row) -> StatementEntry:
    data = {column: row[column] for column in ENTRY_COLUMNS}
    data["itc_available"] = bool(data["itc_available"])
    return StatementEntry.model_validate(data)


def _result_values(upload_id: str, result: MatchResult) -> tuple:
    return (
        upload_id,
        result.result_key,
        result.entry_id,
        result.purchase_id,
        result.status.value,
        _text(result.confidence),
        result.mismatch.model_dump_json(exclude_none=True) if result.mismatch else None,
        str(result.itc_amount),
        result.vendor_gstin,
        result.invoice_number,
        json.dumps(result.notes),
        result.updated_by,
        result.updated_at.isoformat(),
    )


def _result_from_row(row: sqlite3.Row) -> MatchResult:
    mismatch = None
    if row["mismatch"]:
        mismatch = MismatchDetails.model_validate_json(row["mismatch"])
    return MatchResult(
        entry_id=row["entry_id"],
        purchase_id=row["purchase_id"],
        status=row["status"],
        confidence=row["confidence"],
        mismatch=mismatch,
        itc_amount=row["itc_amount"],
        vendor_gstin=row["vendor_gstin"],
        invoice_number=row["invoice_number"],
        notes=json.loads(row["notes"]),
        updated_by=row["updated_by"],
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


# =============================================================================
# Repository
# =============================================================================

class SQLiteReconciliationRepository(ReconciliationRepository):
    """Reconciliation repository on a local SQLite file.

    Example:
        repo = SQLiteReconciliationRepository(Path("itc.db"))
        service = ReconciliationService(repo, ledger)
    """

    def __init__(self, db_path: PathLike = DEFAULT_DB_PATH, initialize: bool = True):
        self.db_path = db_path
        if initialize:
            init_reconciliation_db(db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    # -------------------------------------------------------------------------
    # Uploads
    # -------------------------------------------------------------------------

    def get_upload(self, upload_id: str) -> Optional[StatementUpload]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM statement_uploads WHERE upload_id = ?", (upload_id,)
            ).fetchone()
            return _upload_from_row(row) if row else None
        finally:
            conn.close()

    def get_upload_by_period(self, gstin: str, return_period: str) -> Optional[StatementUpload]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM statement_uploads WHERE gstin = ? AND return_period = ?",
                (normalize_gstin(gstin), return_period),
            ).fetchone()
            return _upload_from_row(row) if row else None
        finally:
            conn.close()

    def list_uploads(self) -> List[StatementUpload]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM statement_uploads ORDER BY updated_at DESC"
            ).fetchall()
            return [_upload_from_row(row) for row in rows]
        finally:
            conn.close()

    def replace_upload(self, upload, entries, results) -> None:
        conn = self._connect()
        try:
            with conn:
                previous = conn.execute(
                    "SELECT upload_id FROM statement_uploads WHERE gstin = ? AND return_period = ?",
                    (upload.gstin, upload.return_period),
                ).fetchone()
                stale_ids = {upload.upload_id}
                if previous:
                    stale_ids.add(previous["upload_id"])

                for stale_id in stale_ids:
                    conn.execute("DELETE FROM match_results WHERE upload_id = ?", (stale_id,))
                    conn.execute("DELETE FROM statement_entries WHERE upload_id = ?", (stale_id,))
                    conn.execute("DELETE FROM statement_uploads WHERE upload_id = ?", (stale_id,))

                conn.execute(
                    """
                    INSERT INTO statement_uploads
                    (upload_id, gstin, return_period, file_name, entries_count, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        upload.upload_id,
                        upload.gstin,
                        upload.return_period,
                        upload.file_name,
                        upload.entries_count,
                        upload.created_at.isoformat(),
                        upload.updated_at.isoformat(),
                    ),
                )
                conn.executemany(
                    f"""
                    INSERT INTO statement_entries (upload_id, position, {", ".join(ENTRY_COLUMNS)})
                    VALUES ({", ".join("?" * (len(ENTRY_COLUMNS) + 2))})
                    """,
                    [_entry_values(upload.upload_id, i, entry) for i, entry in enumerate(entries)],
                )
                self._upsert_results(conn, upload.upload_id, results)
        finally:
            conn.close()

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    def get_entries(self, upload_id: str) -> List[StatementEntry]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM statement_entries WHERE upload_id = ? ORDER BY position",
                (upload_id,),
            ).fetchall()
            return [_entry_from_row(row) for row in rows]
        finally:
            conn.close()

    def get_entry(self, upload_id: str, entry_id: str) -> Optional[StatementEntry]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM statement_entries WHERE upload_id = ? AND entry_id = ?",
                (upload_id, entry_id),
            ).fetchone()
            return _entry_from_row(row) if row else None
        finally:
            conn.close()

    def locate_entry(self, entry_id: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute(
                """
                SELECT e.upload_id FROM statement_entries e
                JOIN statement_uploads u ON u.upload_id = e.upload_id
                WHERE e.entry_id = ?
                ORDER BY u.updated_at DESC
                LIMIT 1
                """,
                (entry_id,),
            ).fetchone()
            return row["upload_id"] if row else None
        finally:
            conn.close()

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    def get_results(self, upload_id: str) -> List[MatchResult]:
        conn = self._connect()
        try:
            rows = conn.execute(
                """
                SELECT r.* FROM match_results r
                LEFT JOIN statement_entries e
                  ON e.upload_id = r.upload_id AND e.entry_id = r.entry_id
                WHERE r.upload_id = ?
                ORDER BY e.position IS NULL, e.position, r.result_key
                """,
                (upload_id,),
            ).fetchall()
            return [_result_from_row(row) for row in rows]
        finally:
            conn.close()

    def get_result(self, upload_id: str, result_key: str) -> Optional[MatchResult]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM match_results WHERE upload_id = ? AND result_key = ?",
                (upload_id, result_key),
            ).fetchone()
            return _result_from_row(row) if row else None
        finally:
            conn.close()

    def save_results(
        self,
        upload_id: str,
        results: Iterable[MatchResult],
        replace_unlinked: bool = False,
    ) -> None:
        results = list(results)
        conn = self._connect()
        try:
            with conn:
                if replace_unlinked:
                    # Unlinked rows still present in results are written back below
                    conn.execute(
                        "DELETE FROM match_results WHERE upload_id = ? AND entry_id IS NULL",
                        (upload_id,),
                    )

                self._upsert_results(conn, upload_id, results)
                self._touch(conn, upload_id)
        finally:
            conn.close()

    def delete_result(self, upload_id: str, result_key: str) -> bool:
        conn = self._connect()
        try:
            with conn:
                cursor = conn.execute(
                    "DELETE FROM match_results WHERE upload_id = ? AND result_key = ?",
                    (upload_id, result_key),
                )
                if cursor.rowcount:
                    self._touch(conn, upload_id)
                return cursor.rowcount > 0
        finally:
            conn.close()

    @staticmethod
    def _upsert_results(conn: sqlite3.Connection, upload_id: str, results: Iterable[MatchResult]) -> None:
        conn.executemany(
            """
            INSERT OR REPLACE INTO match_results
            (upload_id, result_key, entry_id, purchase_id, status, confidence, mismatch,
             itc_amount, vendor_gstin, invoice_number, notes, updated_by, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [_result_values(upload_id, result) for result in results],
        )

    @staticmethod
    def _touch(conn: sqlite3.Connection, upload_id: str) -> None:
        conn.execute(
            "UPDATE statement_uploads SET updated_at = ? WHERE upload_id = ?",
            (utc_now().isoformat(), upload_id),
        )
