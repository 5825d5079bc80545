"""Match Status Model.

The closed set of outcomes a statement entry (or an unreported purchase)
can be in, and the rules for who may move it where:

    PENDING ──(engine)──► MATCHED | AMOUNT_MISMATCH | IN_2B_ONLY | NOT_IN_2B
       │                              │
       └──────────(user)──────────────┴──► MANUALLY_RESOLVED | REJECTED

Automatic writers (the deterministic pass) may only write automatic
outcomes, and never over a locked status. Manual writers may set any
status from any state.
"""

from enum import Enum
from typing import TYPE_CHECKING, Optional

from core.models.canonical import utc_now
from reconciliation.errors import InvalidStatusTransition

if TYPE_CHECKING:
    from reconciliation.models import MatchResult


class MatchStatus(str, Enum):
    """Reconciliation outcome for a statement entry or purchase record."""
    PENDING = "PENDING"
    MATCHED = "MATCHED"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    IN_2B_ONLY = "IN_2B_ONLY"
    NOT_IN_2B = "NOT_IN_2B"
    MANUALLY_RESOLVED = "MANUALLY_RESOLVED"
    REJECTED = "REJECTED"


AUTOMATIC_STATUSES = frozenset({
    MatchStatus.MATCHED,
    MatchStatus.AMOUNT_MISMATCH,
    MatchStatus.IN_2B_ONLY,
    MatchStatus.NOT_IN_2B,
})

MANUAL_STATUSES = frozenset({
    MatchStatus.MANUALLY_RESOLVED,
    MatchStatus.REJECTED,
})

# Never reclassified by an automatic run
TERMINAL_STATUSES = MANUAL_STATUSES

# Count towards the matched bucket in health metrics
MATCHED_STATUSES = frozenset({
    MatchStatus.MATCHED,
    MatchStatus.MANUALLY_RESOLVED,
})


def is_locked(status: MatchStatus) -> bool:
    """True when an automatic run must leave this status alone."""
    return MatchStatus(status) in TERMINAL_STATUSES


def can_transition(current: MatchStatus, target: MatchStatus, manual: bool = False) -> bool:
    """Whether ``current`` may move to ``target`` for this kind of writer."""
    current = MatchStatus(current)
    target = MatchStatus(target)
    if manual:
        return True
    if target not in AUTOMATIC_STATUSES:
        return False
    return current == MatchStatus.PENDING or current in AUTOMATIC_STATUSES


def validate_transition(current: MatchStatus, target: MatchStatus, manual: bool = False) -> None:
    """Raise ``InvalidStatusTransition`` unless the move is allowed."""
    if not can_transition(current, target, manual=manual):
        raise InvalidStatusTransition(current, target, manual)


def transition(
    result: "MatchResult",
    target: MatchStatus,
    manual: bool = False,
    notes: Optional[str] = None,
    actor: str = "system",
    **updates,
) -> "MatchResult":
    """Return a copy of ``result`` moved to ``target``.

    ``notes`` is appended to the result's trail, never replacing it. Extra
    keyword arguments (``purchase_id``, ``confidence``, ...) are applied to
    the copy as well.

    Raises:
        InvalidStatusTransition: the move is not allowed for this writer.
    """
    target = MatchStatus(target)
    validate_transition(result.status, target, manual=manual)

    trail = list(result.notes)
    if notes:
        trail.append(notes)

    updates.update({
        "status": target,
        "notes": trail,
        "updated_by": actor,
        "updated_at": utc_now(),
    })
    return result.model_copy(update=updates)
