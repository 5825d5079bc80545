"""ITC Health Data Models.

- HealthInput: Aggregate counts and amounts per reconciliation bucket
- HealthReport: Match rate, risk amounts, summary and recommended actions
"""

from decimal import Decimal
from enum import Enum
from typing import List

from pydantic import BaseModel, Field

from core.models.canonical import MoneyValue, ZERO


class HealthStatus(str, Enum):
    """Health band derived from the match rate."""
    EXCELLENT = "excellent"
    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"


class RecommendedAction(str, Enum):
    """Follow-up action suggested by the health report."""
    FOLLOW_UP_VENDORS = "follow_up_vendors"
    VERIFY_INVOICES = "verify_invoices"
    RECONCILE_PENDING = "reconcile_pending"
    REVIEW_MISMATCHES = "review_mismatches"


class HealthInput(BaseModel):
    """Aggregate counts and ITC amounts per bucket.

    Attributes:
        total_entries: Lines considered (REJECTED lines excluded)
        matched_count / matched_amount: MATCHED and MANUALLY_RESOLVED
        amount_mismatch_count / amount_mismatch_amount: AMOUNT_MISMATCH
        not_in_2b_count / not_in_2b_amount: In the books, not reported by the vendor
        in_2b_only_count / in_2b_only_amount: Reported by the vendor, not in the books
        pending_count / pending_amount: Not reconciled yet
    """
    total_entries: int = Field(default=0, ge=0)
    matched_count: int = Field(default=0, ge=0)
    matched_amount: MoneyValue = ZERO
    amount_mismatch_count: int = Field(default=0, ge=0)
    amount_mismatch_amount: MoneyValue = ZERO
    not_in_2b_count: int = Field(default=0, ge=0)
    not_in_2b_amount: MoneyValue = ZERO
    in_2b_only_count: int = Field(default=0, ge=0)
    in_2b_only_amount: MoneyValue = ZERO
    pending_count: int = Field(default=0, ge=0)
    pending_amount: MoneyValue = ZERO


class HealthReport(BaseModel):
    """ITC reconciliation health for one return period."""
    match_rate: int = Field(..., ge=0, le=100, description="Percentage of entries matched")
    status: HealthStatus
    total_amount: Decimal
    matched_amount: Decimal
    itc_at_risk: Decimal = Field(..., description="Amount that may not be claimable")
    follow_up_needed: int = Field(..., description="Entries needing vendor contact or verification")
    follow_up_amount: Decimal
    summary: str
    actions: List[RecommendedAction] = Field(default_factory=list)
