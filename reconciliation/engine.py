"""Reconciliation engine for GSTR-2B statement entries and purchase records.

Exposes high-level function:
- run_reconciliation(purchase_records, statement_entries) -> ReconciliationRun

The deterministic pass, in order:
1. Look up each statement entry's purchase by match key
   (normalized vendor GSTIN, normalized invoice number).
2. On a hit compare IGST, CGST, SGST and cess within the tolerance:
   MATCHED, or AMOUNT_MISMATCH with the signed deltas.
3. Entries without a hit: IN_2B_ONLY (missing from the books).
4. Purchases nobody claimed: NOT_IN_2B (vendor has not reported them).

Results that were manually resolved or rejected are passed through
unchanged, and the purchases they link to stay out of the pass.
"""

from collections import defaultdict
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from core.observability.logging import get_logger, with_correlation
from reconciliation.models import (
    DEFAULT_RECONCILIATION_CONFIG,
    MatchResult,
    MismatchDetails,
    PurchaseRecord,
    ReconciliationConfig,
    ReconciliationRun,
    ReconciliationSummary,
    TAX_COMPONENTS,
)
from reconciliation.status import MatchStatus, is_locked, validate_transition

if TYPE_CHECKING:
    from statement_parser.models import StatementEntry


logger = get_logger(__name__)

FULL_CONFIDENCE = Decimal("100")

PurchaseLookup = Dict[Tuple[str, str], List[PurchaseRecord]]


# =============================================================================
# Utility Functions
# =============================================================================

def amounts_match(a: Decimal, b: Decimal, tolerance: Decimal) -> bool:
    """Check if two amounts match within an absolute tolerance."""
    return abs(a - b) <= tolerance


def build_purchase_lookup(purchase_records: Iterable[PurchaseRecord]) -> PurchaseLookup:
    """Index purchases by match key, keeping register order within each key."""
    lookup: PurchaseLookup = defaultdict(list)
    for purchase in purchase_records:
        lookup[purchase.match_key].append(purchase)
    return lookup


def _take_purchase(
    lookup: PurchaseLookup,
    key: Tuple[str, str],
    consumed: Set[str],
) -> Optional[PurchaseRecord]:
    """First purchase under ``key`` not yet consumed by another entry."""
    if not key[1]:
        return None
    for purchase in lookup.get(key, ()):
        if purchase.purchase_id not in consumed:
            return purchase
    return None


def compare_tax_components(
    entry: "StatementEntry",
    purchase: PurchaseRecord,
    tolerance: Decimal,
) -> Optional[MismatchDetails]:
    """Signed deltas (statement minus purchase) for components beyond tolerance.

    Returns None when every component is within tolerance.
    """
    deltas = {}
    for component in TAX_COMPONENTS:
        statement_amount = getattr(entry, component)
        purchase_amount = getattr(purchase, component)
        if not amounts_match(statement_amount, purchase_amount, tolerance):
            deltas[component] = statement_amount - purchase_amount

    if not deltas:
        return None
    return MismatchDetails(**deltas)


def summarize_results(results: Iterable[MatchResult]) -> ReconciliationSummary:
    """Count and ITC amount per status."""
    return ReconciliationSummary.from_results(results)


# =============================================================================
# Result Builders
# =============================================================================

def _entry_result(
    entry: "StatementEntry",
    status: MatchStatus,
    prior: Optional[MatchResult],
    purchase: Optional[PurchaseRecord] = None,
    mismatch: Optional[MismatchDetails] = None,
    confidence: Optional[Decimal] = None,
) -> MatchResult:
    if prior is not None:
        validate_transition(prior.status, status)
    return MatchResult(
        entry_id=entry.entry_id,
        purchase_id=purchase.purchase_id if purchase else None,
        status=status,
        confidence=confidence,
        mismatch=mismatch,
        itc_amount=entry.itc_amount,
        vendor_gstin=entry.vendor_gstin,
        invoice_number=entry.invoice_number,
        notes=list(prior.notes) if prior else [],
    )


def _purchase_result(purchase: PurchaseRecord, prior: Optional[MatchResult]) -> MatchResult:
    if prior is not None:
        validate_transition(prior.status, MatchStatus.NOT_IN_2B)
    return MatchResult(
        purchase_id=purchase.purchase_id,
        status=MatchStatus.NOT_IN_2B,
        itc_amount=purchase.itc_amount,
        vendor_gstin=purchase.vendor_gstin,
        invoice_number=purchase.invoice_number,
        notes=list(prior.notes) if prior else [],
    )


# =============================================================================
# Main Entry Point
# =============================================================================

def run_reconciliation(
    purchase_records: Sequence[PurchaseRecord],
    statement_entries: Sequence["StatementEntry"],
    config: Optional[ReconciliationConfig] = None,
    prior_results: Optional[Iterable[MatchResult]] = None,
) -> ReconciliationRun:
    """Run the deterministic reconciliation pass.

    Args:
        purchase_records: The taxpayer's purchases for the period
        statement_entries: Parsed statement entries for the period
        config: Tolerance settings (defaults to ₹1.00 per component)
        prior_results: Results of an earlier run or manual actions. Locked
            results (MANUALLY_RESOLVED, REJECTED) are returned unchanged in
            ``preserved``; notes on the others carry over.

    Returns:
        ReconciliationRun with results bucketed by status and a summary

    Re-running over the same inputs reproduces the same classification for
    every entry that is not locked.
    """
    config = config or DEFAULT_RECONCILIATION_CONFIG
    run = ReconciliationRun()

    prior_by_key: Dict[str, MatchResult] = {}
    locked_entries: Set[str] = set()
    consumed: Set[str] = set()

    for prior in prior_results or ():
        if is_locked(prior.status):
            run.preserved.append(prior)
            if prior.entry_id:
                locked_entries.add(prior.entry_id)
            if prior.purchase_id:
                consumed.add(prior.purchase_id)
        else:
            prior_by_key[prior.result_key] = prior

    lookup = build_purchase_lookup(purchase_records)

    with with_correlation(stage="reconcile"):
        for entry in statement_entries:
            if entry.entry_id in locked_entries:
                continue

            prior = prior_by_key.get(entry.entry_id)
            purchase = _take_purchase(lookup, entry.match_key, consumed)

            if purchase is None:
                run.in_2b_only.append(_entry_result(entry, MatchStatus.IN_2B_ONLY, prior))
                continue

            consumed.add(purchase.purchase_id)
            mismatch = compare_tax_components(entry, purchase, config.amount_tolerance)
            if mismatch is None:
                run.matched.append(_entry_result(
                    entry, MatchStatus.MATCHED, prior,
                    purchase=purchase,
                    confidence=FULL_CONFIDENCE,
                ))
            else:
                run.amount_mismatches.append(_entry_result(
                    entry, MatchStatus.AMOUNT_MISMATCH, prior,
                    purchase=purchase,
                    mismatch=mismatch,
                ))

        for purchase in purchase_records:
            if purchase.purchase_id in consumed:
                continue
            consumed.add(purchase.purchase_id)
            prior = prior_by_key.get(f"purchase:{purchase.purchase_id}")
            run.not_in_2b.append(_purchase_result(purchase, prior))

        run.summary = summarize_results(run.results)

        logger.info(
            f"Reconciliation complete: {len(run.matched)} matched, "
            f"{len(run.amount_mismatches)} amount mismatches, "
            f"{len(run.in_2b_only)} in 2B only, {len(run.not_in_2b)} not in 2B, "
            f"{len(run.preserved)} preserved",
        )

    return run
