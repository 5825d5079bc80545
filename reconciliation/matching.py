"""Fuzzy match suggestions for statement entries the deterministic pass missed.

Scores candidate purchase records against one entry using a weighted sum
of four signals (weights from ``FuzzyMatchConfig``, adding up to 100):

    vendor          GSTIN identical / same PAN / same state
    invoice number  Levenshtein similarity or containment
    invoice date    within a few days, or within the window
    taxable value   within 1 %, or within 5 %

Suggestions are advisory only: nothing here changes a match status. A user
confirms a suggestion through a manual match.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from core.observability.logging import get_logger
from reconciliation.models import (
    DEFAULT_FUZZY_CONFIG,
    FuzzyMatchConfig,
    MatchSuggestion,
    PurchaseRecord,
    SimilarityBreakdown,
)
from reconciliation.normalize import (
    SAME_PAN,
    SAME_VENDOR,
    invoice_number_similarity,
    normalize_gstin,
    vendor_similarity,
)

if TYPE_CHECKING:
    from statement_parser.models import StatementEntry


logger = get_logger(__name__)

POINTS = Decimal("0.01")
HALF = Decimal("0.5")


def _points(weight: Decimal, fraction: float) -> Decimal:
    return (weight * Decimal(str(fraction))).quantize(POINTS, rounding=ROUND_HALF_UP)


def candidate_pool(
    entry: "StatementEntry",
    purchase_records: Sequence[PurchaseRecord],
    config: FuzzyMatchConfig = DEFAULT_FUZZY_CONFIG,
) -> List[PurchaseRecord]:
    """Purchases worth scoring for ``entry``, capped at ``max_candidate_pool``.

    With a vendor GSTIN on the entry only purchases from a related vendor
    (same GSTIN, PAN or state) qualify, exact-vendor purchases first.
    Entries without one (imports) consider every purchase.
    """
    if not normalize_gstin(entry.vendor_gstin):
        return list(purchase_records[:config.max_candidate_pool])

    exact: List[PurchaseRecord] = []
    related: List[PurchaseRecord] = []
    for purchase in purchase_records:
        similarity = vendor_similarity(entry.vendor_gstin, purchase.vendor_gstin)
        if similarity >= SAME_VENDOR:
            exact.append(purchase)
        elif similarity > 0:
            related.append(purchase)

    return (exact + related)[:config.max_candidate_pool]


def score_candidate(
    entry: "StatementEntry",
    purchase: PurchaseRecord,
    config: FuzzyMatchConfig = DEFAULT_FUZZY_CONFIG,
) -> Tuple[SimilarityBreakdown, List[str]]:
    """Score one purchase against an entry.

    Returns:
        (breakdown of points per signal, human-readable reasons)
    """
    reasons: List[str] = []

    # Vendor
    vendor_sim = vendor_similarity(entry.vendor_gstin, purchase.vendor_gstin)
    vendor_points = _points(config.vendor_weight, vendor_sim)
    if vendor_sim >= SAME_VENDOR:
        reasons.append("Same vendor GSTIN")
    elif vendor_sim >= SAME_PAN:
        reasons.append("Same PAN, different registration")
    elif vendor_sim > 0:
        reasons.append("Vendor in the same state")

    # Invoice number
    invoice_sim = invoice_number_similarity(entry.invoice_number, purchase.invoice_number)
    invoice_points = Decimal("0.00")
    if invoice_sim >= config.invoice_similarity_floor:
        invoice_points = _points(config.invoice_weight, invoice_sim)
        reasons.append(
            f"Invoice number {purchase.invoice_number!r} is {invoice_sim:.0%} similar"
        )

    # Invoice date
    days_apart = abs((entry.invoice_date - purchase.invoice_date).days)
    date_points = Decimal("0.00")
    if days_apart <= config.date_exact_days:
        date_points = _points(config.date_weight, 1.0)
        reasons.append("Same date" if days_apart == 0 else f"Dates {days_apart} day(s) apart")
    elif days_apart <= config.date_window_days:
        date_points = (config.date_weight * HALF).quantize(POINTS)
        reasons.append(f"Dates {days_apart} days apart")

    # Taxable value
    value_points = Decimal("0.00")
    difference = abs(entry.taxable_value - purchase.taxable_value)
    base = abs(purchase.taxable_value)
    if base == 0:
        percent = Decimal("0") if difference == 0 else None
    else:
        percent = difference / base * 100
    if percent is not None:
        if percent <= config.value_exact_pct:
            value_points = _points(config.value_weight, 1.0)
            reasons.append(
                "Taxable value matches" if difference == 0
                else f"Taxable value within {config.value_exact_pct}%"
            )
        elif percent <= config.value_close_pct:
            value_points = (config.value_weight * HALF).quantize(POINTS)
            reasons.append(f"Taxable value within {percent.quantize(POINTS)}%")

    breakdown = SimilarityBreakdown(
        vendor=vendor_points,
        invoice_number=invoice_points,
        invoice_date=date_points,
        taxable_value=value_points,
    )
    return breakdown, reasons


def find_potential_matches(
    entry: "StatementEntry",
    purchase_records: Sequence[PurchaseRecord],
    config: Optional[FuzzyMatchConfig] = None,
    limit: Optional[int] = None,
) -> List[MatchSuggestion]:
    """Top candidate purchases for an unmatched entry.

    Args:
        entry: Statement entry to find a counterpart for
        purchase_records: Purchases still available for matching
        config: Weights and thresholds
        limit: Max suggestions (defaults to ``config.max_results``)

    Returns:
        Suggestions with similarity >= ``config.min_similarity``, best first;
        ties ordered by purchase id
    """
    config = config or DEFAULT_FUZZY_CONFIG
    limit = limit if limit is not None else config.max_results

    pool = candidate_pool(entry, purchase_records, config)

    suggestions: List[MatchSuggestion] = []
    for purchase in pool:
        breakdown, reasons = score_candidate(entry, purchase, config)
        similarity = breakdown.total
        if similarity < config.min_similarity:
            continue
        suggestions.append(MatchSuggestion(
            entry_id=entry.entry_id,
            purchase=purchase,
            similarity=similarity,
            breakdown=breakdown,
            reasons=reasons,
        ))

    suggestions.sort(key=lambda s: (-s.similarity, s.purchase_id))
    suggestions = suggestions[:max(limit, 0)]

    logger.debug(
        f"{len(suggestions)} suggestions for {entry.entry_id} "
        f"from {len(pool)} of {len(purchase_records)} purchases",
    )
    return suggestions
