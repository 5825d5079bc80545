"""Match status model tests: closed status set and writer rules."""

from decimal import Decimal

import pytest

from reconciliation.errors import InvalidStatusTransition, ReconciliationError
from reconciliation.models import MatchResult
from reconciliation.status import (
    AUTOMATIC_STATUSES,
    MANUAL_STATUSES,
    MatchStatus,
    can_transition,
    is_locked,
    transition,
    validate_transition,
)


AUTOMATIC = sorted(AUTOMATIC_STATUSES, key=lambda s: s.value)
MANUAL = sorted(MANUAL_STATUSES, key=lambda s: s.value)


def result(status=MatchStatus.PENDING, notes=None):
    return MatchResult(
        entry_id="B2B-27AABCU9603R1ZJ-INV001",
        status=status,
        itc_amount=Decimal("18000"),
        notes=notes or [],
    )


class TestStatusSets:

    def test_closed_set(self):
        assert {s.value for s in MatchStatus} == {
            "PENDING", "MATCHED", "AMOUNT_MISMATCH", "IN_2B_ONLY",
            "NOT_IN_2B", "MANUALLY_RESOLVED", "REJECTED",
        }

    def test_unknown_status_is_rejected(self):
        with pytest.raises(ValueError):
            MatchStatus("PARTIALLY_MATCHED")

    def test_partition(self):
        assert AUTOMATIC_STATUSES.isdisjoint(MANUAL_STATUSES)
        assert MatchStatus.PENDING not in AUTOMATIC_STATUSES | MANUAL_STATUSES

    @pytest.mark.parametrize("status,locked", [
        (MatchStatus.MANUALLY_RESOLVED, True),
        (MatchStatus.REJECTED, True),
        (MatchStatus.PENDING, False),
        (MatchStatus.MATCHED, False),
        (MatchStatus.AMOUNT_MISMATCH, False),
        ("REJECTED", True),
    ])
    def test_is_locked(self, status, locked):
        assert is_locked(status) is locked


class TestTransitions:

    @pytest.mark.parametrize("current", [MatchStatus.PENDING, *AUTOMATIC])
    @pytest.mark.parametrize("target", AUTOMATIC)
    def test_automatic_writer_between_automatic_states(self, current, target):
        assert can_transition(current, target) is True

    @pytest.mark.parametrize("current", MANUAL)
    def test_automatic_writer_cannot_touch_locked(self, current):
        with pytest.raises(InvalidStatusTransition) as exc_info:
            validate_transition(current, MatchStatus.AMOUNT_MISMATCH)

        assert exc_info.value.details["current"] == current.value
        assert exc_info.value.details["manual"] is False

    @pytest.mark.parametrize("target", [MatchStatus.PENDING, *MANUAL])
    def test_automatic_writer_cannot_set_manual_or_pending(self, target):
        assert can_transition(MatchStatus.PENDING, target) is False

    @pytest.mark.parametrize("current", list(MatchStatus))
    @pytest.mark.parametrize("target", list(MatchStatus))
    def test_manual_writer_may_set_anything(self, current, target):
        assert can_transition(current, target, manual=True) is True

    def test_error_is_a_reconciliation_error(self):
        with pytest.raises(ReconciliationError, match="automatic writer"):
            validate_transition(MatchStatus.REJECTED, MatchStatus.MATCHED)


class TestTransitionCopy:

    def test_returns_new_result(self):
        original = result()

        moved = transition(original, MatchStatus.MATCHED, confidence=Decimal("100"), purchase_id="P-1")

        assert moved is not original
        assert original.status == MatchStatus.PENDING
        assert moved.status == MatchStatus.MATCHED
        assert moved.confidence == Decimal("100")
        assert moved.purchase_id == "P-1"
        assert moved.updated_by == "system"

    def test_notes_are_appended(self):
        original = result(status=MatchStatus.AMOUNT_MISMATCH, notes=["Vendor contacted"])

        moved = transition(
            original,
            MatchStatus.MANUALLY_RESOLVED,
            manual=True,
            notes="Vendor issued a credit note",
            actor="priya",
        )

        assert moved.notes == ["Vendor contacted", "Vendor issued a credit note"]
        assert original.notes == ["Vendor contacted"]
        assert moved.updated_by == "priya"
        assert moved.updated_at >= original.updated_at

    def test_rejected_move_leaves_result_alone(self):
        original = result(status=MatchStatus.MANUALLY_RESOLVED)

        with pytest.raises(InvalidStatusTransition):
            transition(original, MatchStatus.AMOUNT_MISMATCH)

        assert original.status == MatchStatus.MANUALLY_RESOLVED
