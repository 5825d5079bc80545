"""ITC health calculation tests."""

from decimal import Decimal

import pytest

from health import (
    HealthInput,
    HealthStatus,
    RecommendedAction,
    calculate_health,
    calculate_match_rate,
    format_inr,
    get_action_description,
    get_health_status,
)
from health.calculator import FULLY_RECONCILED_SUMMARY, NOTHING_TO_RECONCILE_SUMMARY
from reconciliation.models import ReconciliationSummary
from reconciliation.status import MatchStatus


class TestHealthStatus:

    @pytest.mark.parametrize("rate,status", [
        (100, HealthStatus.EXCELLENT),
        (95, HealthStatus.EXCELLENT),
        (94, HealthStatus.GOOD),
        (80, HealthStatus.GOOD),
        (79, HealthStatus.WARNING),
        (60, HealthStatus.WARNING),
        (59, HealthStatus.CRITICAL),
        (0, HealthStatus.CRITICAL),
    ])
    def test_boundaries(self, rate, status):
        assert get_health_status(rate) == status

    def test_no_entries(self):
        report = calculate_health(HealthInput())

        assert report.match_rate == 100
        assert report.status == HealthStatus.EXCELLENT
        assert report.summary == NOTHING_TO_RECONCILE_SUMMARY
        assert report.actions == []


class TestMatchRate:

    @pytest.mark.parametrize("matched,total,rate", [
        (0, 0, 100),
        (1, 2, 50),
        (1, 3, 33),
        (2, 3, 67),
        (1, 8, 13),  # 12.5 rounds half up
        (19, 20, 95),
        (7, 7, 100),
    ])
    def test_rounding(self, matched, total, rate):
        assert calculate_match_rate(matched, total) == rate


class TestRiskAndFollowUp:

    def test_itc_at_risk_sums_mismatch_and_not_in_2b(self):
        report = calculate_health(HealthInput(
            total_entries=10,
            matched_count=4,
            matched_amount=Decimal("40000"),
            amount_mismatch_count=2,
            amount_mismatch_amount=Decimal("3600"),
            not_in_2b_count=1,
            not_in_2b_amount=Decimal("1800"),
            in_2b_only_count=2,
            in_2b_only_amount=Decimal("900"),
            pending_count=1,
            pending_amount=Decimal("100"),
        ))

        assert report.itc_at_risk == Decimal("5400")
        assert report.follow_up_needed == 3
        assert report.follow_up_amount == Decimal("2700")
        assert report.total_amount == Decimal("46400")
        assert report.matched_amount == Decimal("40000")
        assert report.match_rate == 40
        assert report.status == HealthStatus.CRITICAL

    def test_fully_reconciled(self):
        report = calculate_health(HealthInput(total_entries=3, matched_count=3, matched_amount=Decimal("5400")))

        assert report.summary == FULLY_RECONCILED_SUMMARY
        assert report.actions == []
        assert report.itc_at_risk == Decimal("0")


class TestActionsAndSummary:

    def test_actions_are_deduplicated_in_first_seen_order(self):
        report = calculate_health(HealthInput(
            total_entries=4,
            amount_mismatch_count=1,
            amount_mismatch_amount=Decimal("500"),
            not_in_2b_count=1,
            not_in_2b_amount=Decimal("150000"),
            in_2b_only_count=1,
            pending_count=1,
        ))

        assert report.actions == [
            RecommendedAction.VERIFY_INVOICES,
            RecommendedAction.REVIEW_MISMATCHES,
            RecommendedAction.FOLLOW_UP_VENDORS,
            RecommendedAction.RECONCILE_PENDING,
        ]

    def test_summary_sentences(self):
        report = calculate_health(HealthInput(
            total_entries=4,
            amount_mismatch_count=1,
            amount_mismatch_amount=Decimal("500"),
            not_in_2b_count=1,
            not_in_2b_amount=Decimal("150000"),
            in_2b_only_count=1,
            pending_count=1,
        ))

        assert report.summary == (
            "1 entries have amount mismatches (₹500). "
            "1 entries not found in GSTR-2B (₹1,50,000 at risk). "
            "1 entries in GSTR-2B not in your records. "
            "1 entries pending reconciliation."
        )

    def test_fallback_summary(self):
        report = calculate_health(HealthInput(total_entries=4, matched_count=3))

        assert report.summary == "75% of entries matched."
        assert report.actions == []

    def test_action_descriptions(self):
        for action in RecommendedAction:
            assert get_action_description(action)
        assert get_action_description("follow_up_vendors").startswith("Follow up with vendors")

    def test_is_deterministic(self):
        data = HealthInput(total_entries=5, matched_count=2, in_2b_only_count=3, in_2b_only_amount=Decimal("12.5"))

        assert calculate_health(data) == calculate_health(data)


class TestFormatInr:

    @pytest.mark.parametrize("amount,text", [
        (Decimal("0"), "0"),
        (Decimal("500"), "500"),
        (Decimal("1000"), "1,000"),
        (Decimal("150000"), "1,50,000"),
        (Decimal("1234567.5"), "12,34,567.5"),
        (Decimal("12345678.256"), "1,23,45,678.26"),
        (Decimal("-2500.10"), "-2,500.1"),
    ])
    def test_indian_grouping(self, amount, text):
        assert format_inr(amount) == text


class TestSummaryToHealthInput:

    def test_manual_resolution_counts_as_matched_and_rejected_is_excluded(self):
        summary = ReconciliationSummary(
            counts={
                MatchStatus.MATCHED: 2,
                MatchStatus.MANUALLY_RESOLVED: 1,
                MatchStatus.REJECTED: 3,
                MatchStatus.NOT_IN_2B: 1,
            },
            amounts={
                MatchStatus.MATCHED: Decimal("200"),
                MatchStatus.MANUALLY_RESOLVED: Decimal("50"),
                MatchStatus.REJECTED: Decimal("999"),
                MatchStatus.NOT_IN_2B: Decimal("10"),
            },
        )

        data = summary.to_health_input()

        assert data.total_entries == 4
        assert data.matched_count == 3
        assert data.matched_amount == Decimal("250")
        assert data.not_in_2b_amount == Decimal("10")
        assert calculate_health(data).match_rate == 75
