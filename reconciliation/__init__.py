"""Reconciliation - match GSTR-2B statement entries against purchase records.

This package provides:
- Key normalization for invoice numbers and GSTINs
- The deterministic reconciliation pass (exact key, per-component tolerance)
- Fuzzy match suggestions for entries that did not match
- The closed match status model and its transition rules

The consumer interface (uploads, re-runs, manual actions) lives in
``reconciliation.service``; storage in ``reconciliation.repository`` and
``reconciliation.db``.

Usage:
    from reconciliation import run_reconciliation

    run = run_reconciliation(purchase_records, statement_entries)
    for result in run.amount_mismatches:
        print(result.entry_id, result.mismatch.components)
"""

from reconciliation.errors import (
    ReconciliationError,
    StatementRejectedError,
    UploadNotFoundError,
    EntryNotFoundError,
    PurchaseNotFoundError,
    PurchaseAlreadyMatchedError,
    InvalidStatusTransition,
)
from reconciliation.normalize import (
    normalize_invoice_number,
    normalize_gstin,
    match_key,
    invoice_number_similarity,
    vendor_similarity,
)
from reconciliation.status import (
    MatchStatus,
    AUTOMATIC_STATUSES,
    MANUAL_STATUSES,
    TERMINAL_STATUSES,
    MATCHED_STATUSES,
    is_locked,
    can_transition,
    validate_transition,
    transition,
)
from reconciliation.models import (
    PurchaseRecord,
    MismatchDetails,
    MatchResult,
    SimilarityBreakdown,
    MatchSuggestion,
    ReconciliationSummary,
    ReconciliationRun,
    StatementUpload,
    ReconciliationConfig,
    FuzzyMatchConfig,
    DEFAULT_RECONCILIATION_CONFIG,
    DEFAULT_FUZZY_CONFIG,
)
from reconciliation.engine import run_reconciliation, summarize_results
from reconciliation.matching import find_potential_matches

__all__ = [
    # Errors
    "ReconciliationError",
    "StatementRejectedError",
    "UploadNotFoundError",
    "EntryNotFoundError",
    "PurchaseNotFoundError",
    "PurchaseAlreadyMatchedError",
    "InvalidStatusTransition",
    # Normalization
    "normalize_invoice_number",
    "normalize_gstin",
    "match_key",
    "invoice_number_similarity",
    "vendor_similarity",
    # Status model
    "MatchStatus",
    "AUTOMATIC_STATUSES",
    "MANUAL_STATUSES",
    "TERMINAL_STATUSES",
    "MATCHED_STATUSES",
    "is_locked",
    "can_transition",
    "validate_transition",
    "transition",
    # Models
    "PurchaseRecord",
    "MismatchDetails",
    "MatchResult",
    "SimilarityBreakdown",
    "MatchSuggestion",
    "ReconciliationSummary",
    "ReconciliationRun",
    "StatementUpload",
    "ReconciliationConfig",
    "FuzzyMatchConfig",
    "DEFAULT_RECONCILIATION_CONFIG",
    "DEFAULT_FUZZY_CONFIG",
    # Engine
    "run_reconciliation",
    "summarize_results",
    "find_potential_matches",
]
