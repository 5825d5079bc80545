"""
ITC reconciliation of a GSTR-2B statement against a purchase register.

Runs the full flow for one return period:
- Parse the GSTR-2B JSON (skipped rows are reported)
- Deterministic pass: MATCHED / AMOUNT_MISMATCH / IN_2B_ONLY / NOT_IN_2B
- ITC health: match rate, ITC at risk, recommended actions
- Optional fuzzy suggestions for one entry (--suggest)

Purchases file: a JSON list of purchase records, or {"purchases": [...]}:
    [{"purchase_id": "P-1", "vendor_gstin": "27AABCU9603R1ZJ",
      "invoice_number": "INV-001", "invoice_date": "2024-04-05",
      "taxable_value": 100000, "igst": 18000}]

Usage:
    python scripts/reconcile.py --statement gstr2b.json --purchases purchases.json
    python scripts/reconcile.py --statement gstr2b.json --purchases purchases.json --json
    python scripts/reconcile.py --statement gstr2b.json --purchases purchases.json --suggest B2B-27AABCU9603R1ZJ-INV001
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

sys.path.append(str(Path(__file__).resolve().parents[1]))

from pydantic import ValidationError

from core.audit.events import AuditLogger, InMemoryAuditBackend
from core.config import load_settings
from core.observability.logging import configure_logging
from health.calculator import format_inr, get_action_description
from reconciliation.db import SQLiteReconciliationRepository
from reconciliation.errors import ReconciliationError
from reconciliation.models import PurchaseRecord
from reconciliation.repository import InMemoryPurchaseLedger, InMemoryReconciliationRepository
from reconciliation.service import ReconciliationService
from reconciliation.status import MatchStatus


def load_purchases(path: Path) -> List[PurchaseRecord]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("purchases", [])
    return [PurchaseRecord.model_validate(row) for row in data]


def build_report(service: ReconciliationService, outcome, run, suggestions) -> dict:
    upload_id = outcome.upload.upload_id
    health = service.get_health(upload_id)
    return {
        "upload": outcome.upload.model_dump(mode="json"),
        "statement_summary": outcome.summary.model_dump(mode="json"),
        "skipped_rows": [row.model_dump(mode="json") for row in outcome.skipped_rows],
        "status_counts": {
            status.value: count for status, count in run.summary.counts.items()
        },
        "results": [result.model_dump(mode="json") for result in run.results],
        "health": health.model_dump(mode="json"),
        "suggestions": [s.model_dump(mode="json") for s in suggestions] if suggestions is not None else None,
    }


def print_report(service: ReconciliationService, outcome, run, suggestions) -> None:
    upload = outcome.upload
    summary = outcome.summary
    health = service.get_health(upload.upload_id)

    print("=" * 60)
    print(f"GSTR-2B {upload.gstin} / {upload.return_period}")
    print("=" * 60)
    print(f"Entries:        {summary.total_entries}")
    print(f"Taxable value:  ₹{format_inr(summary.total_taxable_value)}")
    print(f"ITC available:  ₹{format_inr(summary.total_itc_available)}")

    if outcome.skipped_rows:
        print(f"\n⚠️ SKIPPED ROWS ({len(outcome.skipped_rows)}):")
        for row in outcome.skipped_rows:
            position = "" if row.index is None else f"[{row.index}]"
            if row.row is not None:
                position += f"[{row.row}]"
            print(f"  - {row.section}{position}: {row.reason}")

    print("\nRESULTS:")
    for status in MatchStatus:
        count = run.summary.count(status)
        if count:
            print(f"  {status.value:<18} {count:>5}  ₹{format_inr(run.summary.amount(status))}")

    for result in run.amount_mismatches:
        deltas = ", ".join(f"{k}={v}" for k, v in result.mismatch.components.items())
        print(f"  ≠ {result.entry_id} ↔ {result.purchase_id}: {deltas}")

    print(f"\nHEALTH: {health.status.value.upper()} ({health.match_rate}% matched)")
    print(f"ITC at risk:    ₹{format_inr(health.itc_at_risk)}")
    print(f"Follow-up:      {health.follow_up_needed} entries (₹{format_inr(health.follow_up_amount)})")
    print(f"\n{health.summary}")
    for action in health.actions:
        print(f"  → {get_action_description(action)}")

    if suggestions is not None:
        print(f"\nSUGGESTIONS ({len(suggestions)}):")
        for suggestion in suggestions:
            print(f"  {suggestion.similarity:>6}  {suggestion.purchase_id} ({suggestion.purchase.invoice_number})")
            for reason in suggestion.reasons:
                print(f"          - {reason}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Reconcile a GSTR-2B statement against purchase records")
    parser.add_argument("--statement", type=Path, required=True, help="GSTR-2B JSON file")
    parser.add_argument("--purchases", type=Path, required=True, help="Purchase records JSON file")
    parser.add_argument("--suggest", metavar="ENTRY_ID", help="Show fuzzy match suggestions for an entry")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument("--db", action="store_true", help="Persist to the SQLite database (ITC_DB_PATH)")
    parser.add_argument("--env-file", type=Path, help="Load settings from this .env file")
    args = parser.parse_args(argv)

    settings = load_settings(args.env_file)
    configure_logging(level=settings.log_level_value, json_format=settings.log_json, force=True)

    try:
        purchases = load_purchases(args.purchases)
    except (OSError, ValueError, ValidationError) as e:
        print(f"Cannot read purchases from {args.purchases}: {e}", file=sys.stderr)
        return 2

    repository = (
        SQLiteReconciliationRepository(settings.db_path) if args.db
        else InMemoryReconciliationRepository()
    )
    audit = AuditLogger()
    audit.add_backend(InMemoryAuditBackend())

    service = ReconciliationService(repository, InMemoryPurchaseLedger(), audit_logger=audit, settings=settings)

    try:
        outcome = service.upload_statement(args.statement.read_bytes(), file_name=args.statement.name)
        service.ledger.add_records(outcome.upload.gstin, outcome.upload.return_period, purchases)
        run = service.run_reconciliation(outcome.upload.upload_id)
        suggestions = None
        if args.suggest:
            suggestions = service.find_potential_matches(args.suggest, upload_id=outcome.upload.upload_id)
    except OSError as e:
        print(f"Cannot read statement {args.statement}: {e}", file=sys.stderr)
        return 2
    except ReconciliationError as e:
        print(f"❌ {e.message}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(build_report(service, outcome, run, suggestions), indent=2, ensure_ascii=False))
    else:
        print_report(service, outcome, run, suggestions)
    return 0


if __name__ == "__main__":
    sys.exit(main())
