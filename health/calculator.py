"""ITC Health Calculation.

Reduces reconciliation bucket totals into:
- Match rate (matched vs total) and a health band
- ITC at risk (amount mismatches + not in 2B)
- Follow-up needed (entries needing vendor contact or verification)
- A one-line summary and the recommended actions

Pure and deterministic: no I/O, same input gives the same report.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import List, Tuple

from core.models.canonical import PAISE
from health.models import HealthInput, HealthReport, HealthStatus, RecommendedAction


# Status thresholds (match rate, inclusive lower bounds)
EXCELLENT_THRESHOLD = 95
GOOD_THRESHOLD = 80
WARNING_THRESHOLD = 60

FULLY_RECONCILED_SUMMARY = "All entries are matched. ITC reconciliation is complete."
NOTHING_TO_RECONCILE_SUMMARY = "No ITC entries to reconcile."

ACTION_DESCRIPTIONS = {
    RecommendedAction.FOLLOW_UP_VENDORS: "Follow up with vendors who haven't filed their returns",
    RecommendedAction.VERIFY_INVOICES: "Verify invoice details against your purchase records",
    RecommendedAction.RECONCILE_PENDING: "Complete reconciliation for pending entries",
    RecommendedAction.REVIEW_MISMATCHES: "Review and resolve amount mismatches",
}


def get_health_status(match_rate: int) -> HealthStatus:
    """Get health status from match rate."""
    if match_rate >= EXCELLENT_THRESHOLD:
        return HealthStatus.EXCELLENT
    if match_rate >= GOOD_THRESHOLD:
        return HealthStatus.GOOD
    if match_rate >= WARNING_THRESHOLD:
        return HealthStatus.WARNING
    return HealthStatus.CRITICAL


def get_action_description(action: RecommendedAction) -> str:
    """Human-readable description of a recommended action."""
    return ACTION_DESCRIPTIONS.get(RecommendedAction(action), "Take action on ITC entries")


def calculate_match_rate(matched_count: int, total_entries: int) -> int:
    """Matched share as a whole percentage, half rounding up; 100 for no entries."""
    if total_entries <= 0:
        return 100
    rate = Decimal(matched_count) * 100 / Decimal(total_entries)
    return int(rate.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_inr(amount: Decimal) -> str:
    """Format an amount with Indian digit grouping, e.g. 1234567.5 → '12,34,567.5'.

    At most two decimals are shown and trailing zeros are dropped.
    """
    amount = Decimal(amount).quantize(PAISE, rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    whole, _, fraction = f"{abs(amount):f}".partition(".")
    fraction = fraction.rstrip("0")

    if len(whole) > 3:
        head, tail = whole[:-3], whole[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        whole = ",".join(groups + [tail])

    text = f"{sign}{whole}"
    if fraction:
        text += f".{fraction}"
    return text


def _summary_and_actions(data: HealthInput, match_rate: int) -> Tuple[str, List[RecommendedAction]]:
    if match_rate == 100 and data.total_entries > 0:
        return FULLY_RECONCILED_SUMMARY, []
    if data.total_entries == 0:
        return NOTHING_TO_RECONCILE_SUMMARY, []

    parts: List[str] = []
    actions: List[RecommendedAction] = []

    if data.amount_mismatch_count > 0:
        parts.append(
            f"{data.amount_mismatch_count} entries have amount mismatches "
            f"(₹{format_inr(data.amount_mismatch_amount)})"
        )
        actions.append(RecommendedAction.VERIFY_INVOICES)
        actions.append(RecommendedAction.REVIEW_MISMATCHES)

    # Vendor has not filed
    if data.not_in_2b_count > 0:
        parts.append(
            f"{data.not_in_2b_count} entries not found in GSTR-2B "
            f"(₹{format_inr(data.not_in_2b_amount)} at risk)"
        )
        actions.append(RecommendedAction.FOLLOW_UP_VENDORS)

    # Missing from the books
    if data.in_2b_only_count > 0:
        parts.append(f"{data.in_2b_only_count} entries in GSTR-2B not in your records")
        actions.append(RecommendedAction.VERIFY_INVOICES)

    if data.pending_count > 0:
        parts.append(f"{data.pending_count} entries pending reconciliation")
        actions.append(RecommendedAction.RECONCILE_PENDING)

    summary = ". ".join(parts) + "." if parts else f"{match_rate}% of entries matched."
    return summary, list(dict.fromkeys(actions))


def calculate_health(data: HealthInput) -> HealthReport:
    """Calculate ITC health metrics.

    Args:
        data: Aggregate counts and amounts per bucket

    Returns:
        HealthReport with match rate, status, risk amounts, summary and actions
    """
    match_rate = calculate_match_rate(data.matched_count, data.total_entries)

    # May not be claimable until the vendor files or the dispute is settled
    itc_at_risk = data.amount_mismatch_amount + data.not_in_2b_amount

    follow_up_needed = data.not_in_2b_count + data.in_2b_only_count
    follow_up_amount = data.not_in_2b_amount + data.in_2b_only_amount

    total_amount = (
        data.matched_amount
        + data.amount_mismatch_amount
        + data.not_in_2b_amount
        + data.in_2b_only_amount
        + data.pending_amount
    )

    summary, actions = _summary_and_actions(data, match_rate)

    return HealthReport(
        match_rate=match_rate,
        status=get_health_status(match_rate),
        total_amount=total_amount,
        matched_amount=data.matched_amount,
        itc_at_risk=itc_at_risk,
        follow_up_needed=follow_up_needed,
        follow_up_amount=follow_up_amount,
        summary=summary,
        actions=actions,
    )
