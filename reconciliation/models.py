"""Reconciliation Data Models.

This module defines the Pydantic models for reconciliation:
- PurchaseRecord: A line from the taxpayer's own purchase register
- MatchResult: The outcome for one statement entry or unreported purchase
- MatchSuggestion: A scored fuzzy candidate for an unmatched entry
- ReconciliationSummary / ReconciliationRun: Output of a deterministic pass
- StatementUpload: One parsed statement per (GSTIN, return period)
- ReconciliationConfig / FuzzyMatchConfig: Tunable thresholds and weights
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field, model_validator

from core.models.canonical import (
    CanonicalBase,
    DateValue,
    FrozenRecord,
    MoneyValue,
    OptionalText,
    RequiredText,
    ZERO,
    utc_now,
)
from health.models import HealthInput
from reconciliation.normalize import match_key
from reconciliation.status import MATCHED_STATUSES, MatchStatus


# =============================================================================
# Purchase Records
# =============================================================================

class PurchaseRecord(FrozenRecord):
    """A purchase recorded by the taxpayer. Read-only to the engine.

    Attributes:
        purchase_id: Identifier in the purchase register
        vendor_gstin: Supplier GSTIN (None for imports without one)
        invoice_number: Invoice number as recorded (not normalized)
        invoice_date: Invoice date
        taxable_value: Value before tax
        igst / cgst / sgst / cess: Tax components
    """
    purchase_id: RequiredText
    vendor_gstin: OptionalText = None
    invoice_number: RequiredText
    invoice_date: DateValue
    taxable_value: MoneyValue = ZERO
    igst: MoneyValue = ZERO
    cgst: MoneyValue = ZERO
    sgst: MoneyValue = ZERO
    cess: MoneyValue = ZERO

    @property
    def itc_amount(self) -> Decimal:
        return self.igst + self.cgst + self.sgst + self.cess

    @property
    def match_key(self) -> Tuple[str, str]:
        return match_key(self.vendor_gstin, self.invoice_number)


# =============================================================================
# Match Results
# =============================================================================

TAX_COMPONENTS = ("igst", "cgst", "sgst", "cess")


class MismatchDetails(CanonicalBase):
    """Per-component differences for an AMOUNT_MISMATCH result.

    Deltas are signed (statement minus purchase) and present only for the
    components whose difference exceeded the tolerance.
    """
    igst: Optional[Decimal] = None
    cgst: Optional[Decimal] = None
    sgst: Optional[Decimal] = None
    cess: Optional[Decimal] = None

    @property
    def components(self) -> Dict[str, Decimal]:
        """Components beyond tolerance with their signed deltas."""
        return {
            name: getattr(self, name)
            for name in TAX_COMPONENTS
            if getattr(self, name) is not None
        }

    @property
    def absolute(self) -> Dict[str, Decimal]:
        """Components beyond tolerance with the size of their difference."""
        return {name: abs(delta) for name, delta in self.components.items()}

    @property
    def total_absolute_delta(self) -> Decimal:
        return sum(self.absolute.values(), ZERO)


class MatchResult(CanonicalBase):
    """Outcome for one statement entry, or for a purchase missing from the statement.

    Entry-backed results carry ``entry_id`` (and ``purchase_id`` once
    linked); NOT_IN_2B results carry only ``purchase_id``.

    Attributes:
        entry_id: Statement entry this result belongs to
        purchase_id: Linked purchase record, if any
        status: Current match status
        confidence: 0-100; 100 for deterministic and manual matches
        mismatch: Signed deltas when status is AMOUNT_MISMATCH
        itc_amount: Full line ITC amount this result stands for
        vendor_gstin / invoice_number: Key of the underlying line, for display
            and for carrying manual outcomes across re-uploads
        notes: Append-only trail of manual notes and system remarks
        updated_by: Last writer ("system" for automatic runs)
        updated_at: Last change
    """
    entry_id: Optional[str] = None
    purchase_id: Optional[str] = None
    status: MatchStatus = MatchStatus.PENDING
    confidence: Optional[Decimal] = Field(default=None, ge=0, le=100)
    mismatch: Optional[MismatchDetails] = None
    itc_amount: MoneyValue = ZERO

    vendor_gstin: OptionalText = None
    invoice_number: OptionalText = None

    notes: List[str] = Field(default_factory=list)
    updated_by: str = Field(default="system")
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _check_reference(self) -> "MatchResult":
        if not self.entry_id and not self.purchase_id:
            raise ValueError("MatchResult needs an entry_id or a purchase_id")
        return self

    @property
    def result_key(self) -> str:
        """Stable identifier: the entry id, or the purchase id for NOT_IN_2B rows."""
        if self.entry_id:
            return self.entry_id
        return f"purchase:{self.purchase_id}"

    @property
    def match_key(self) -> Tuple[str, str]:
        return match_key(self.vendor_gstin, self.invoice_number)


# =============================================================================
# Fuzzy Suggestions
# =============================================================================

class SimilarityBreakdown(CanonicalBase):
    """Points contributed by each signal to a suggestion's score."""
    vendor: Decimal = ZERO
    invoice_number: Decimal = ZERO
    invoice_date: Decimal = ZERO
    taxable_value: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.vendor + self.invoice_number + self.invoice_date + self.taxable_value


class MatchSuggestion(BaseModel):
    """A purchase record that might be the counterpart of an unmatched entry.

    Suggestions never change state; the caller confirms one via a manual match.
    """
    entry_id: str
    purchase: PurchaseRecord
    similarity: Decimal = Field(..., description="Score (0-100)")
    breakdown: SimilarityBreakdown = Field(default_factory=SimilarityBreakdown)
    reasons: List[str] = Field(default_factory=list)

    @property
    def purchase_id(self) -> str:
        return self.purchase.purchase_id


# =============================================================================
# Run Output
# =============================================================================

class ReconciliationSummary(CanonicalBase):
    """Count and summed ITC amount per status."""
    counts: Dict[MatchStatus, int] = Field(default_factory=dict)
    amounts: Dict[MatchStatus, Decimal] = Field(default_factory=dict)

    @classmethod
    def from_results(cls, results: Iterable[MatchResult]) -> "ReconciliationSummary":
        counts: Dict[MatchStatus, int] = {status: 0 for status in MatchStatus}
        amounts: Dict[MatchStatus, Decimal] = {status: ZERO for status in MatchStatus}
        for result in results:
            counts[result.status] += 1
            amounts[result.status] += result.itc_amount
        return cls(counts=counts, amounts=amounts)

    def count(self, status: MatchStatus) -> int:
        return self.counts.get(MatchStatus(status), 0)

    def amount(self, status: MatchStatus) -> Decimal:
        return self.amounts.get(MatchStatus(status), ZERO)

    @property
    def total_results(self) -> int:
        return sum(self.counts.values())

    def to_health_input(self) -> HealthInput:
        """Reduce to Health Aggregator input.

        MANUALLY_RESOLVED counts as matched. REJECTED lines are out of the
        claim entirely and are left out of the total.
        """
        matched_count = sum(self.count(status) for status in MATCHED_STATUSES)
        matched_amount = sum((self.amount(status) for status in MATCHED_STATUSES), ZERO)
        return HealthInput(
            total_entries=self.total_results - self.count(MatchStatus.REJECTED),
            matched_count=matched_count,
            matched_amount=matched_amount,
            amount_mismatch_count=self.count(MatchStatus.AMOUNT_MISMATCH),
            amount_mismatch_amount=self.amount(MatchStatus.AMOUNT_MISMATCH),
            not_in_2b_count=self.count(MatchStatus.NOT_IN_2B),
            not_in_2b_amount=self.amount(MatchStatus.NOT_IN_2B),
            in_2b_only_count=self.count(MatchStatus.IN_2B_ONLY),
            in_2b_only_amount=self.amount(MatchStatus.IN_2B_ONLY),
            pending_count=self.count(MatchStatus.PENDING),
            pending_amount=self.amount(MatchStatus.PENDING),
        )


class ReconciliationRun(BaseModel):
    """Results of one deterministic pass, bucketed by outcome.

    ``preserved`` holds locked (manually decided) results passed in as
    prior results and returned untouched.
    """
    matched: List[MatchResult] = Field(default_factory=list)
    amount_mismatches: List[MatchResult] = Field(default_factory=list)
    in_2b_only: List[MatchResult] = Field(default_factory=list)
    not_in_2b: List[MatchResult] = Field(default_factory=list)
    preserved: List[MatchResult] = Field(default_factory=list)
    summary: ReconciliationSummary = Field(default_factory=ReconciliationSummary)

    @property
    def results(self) -> List[MatchResult]:
        return (
            self.matched
            + self.amount_mismatches
            + self.in_2b_only
            + self.not_in_2b
            + self.preserved
        )


# =============================================================================
# Uploads
# =============================================================================

class StatementUpload(CanonicalBase):
    """One parsed statement for a taxpayer GSTIN and return period."""
    upload_id: str
    gstin: str
    return_period: str = Field(..., description="MMYYYY")
    file_name: Optional[str] = None
    entries_count: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# Configuration
# =============================================================================

class ReconciliationConfig(BaseModel):
    """Configuration for the deterministic pass."""
    amount_tolerance: Decimal = Field(
        default=Decimal("1.00"),
        ge=0,
        description="Max absolute difference per tax component still treated as equal",
    )


class FuzzyMatchConfig(BaseModel):
    """Weights and thresholds for fuzzy match suggestions.

    Weights add up to 100 so the score reads as a percentage.
    """
    # Weights
    vendor_weight: Decimal = Field(default=Decimal("40"), description="Weight for vendor GSTIN similarity")
    invoice_weight: Decimal = Field(default=Decimal("30"), description="Weight for invoice number similarity")
    date_weight: Decimal = Field(default=Decimal("15"), description="Weight for invoice date proximity")
    value_weight: Decimal = Field(default=Decimal("15"), description="Weight for taxable value proximity")

    # Signal thresholds
    invoice_similarity_floor: float = Field(
        default=0.5,
        ge=0,
        le=1,
        description="Invoice similarity below this scores zero",
    )
    date_exact_days: int = Field(default=3, ge=0, description="Full date points within this many days")
    date_window_days: int = Field(default=30, ge=0, description="Half date points within this many days")
    value_exact_pct: Decimal = Field(default=Decimal("1"), description="Full value points within this % difference")
    value_close_pct: Decimal = Field(default=Decimal("5"), description="Half value points within this % difference")

    # Behavior
    min_similarity: Decimal = Field(default=Decimal("40"), description="Min score to be suggested")
    max_results: int = Field(default=5, ge=1, description="Max suggestions to return")
    max_candidate_pool: int = Field(default=500, ge=1, description="Max purchase records scored per entry")


# Default configs
DEFAULT_RECONCILIATION_CONFIG = ReconciliationConfig()
DEFAULT_FUZZY_CONFIG = FuzzyMatchConfig()
