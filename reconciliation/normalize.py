"""Key Normalization Utilities.

Both sides of a reconciliation spell the same invoice differently: the
portal reports ``INV/2024/001`` where the purchase register says
``inv-2024-001``. This module reduces invoice numbers and GSTINs to the
canonical form used for the match key, and provides the similarity
measures used when suggesting candidates for entries that did not match.

Examples:
    "INV/2024/001"  → "INV2024001"
    "inv-2024 - 01" → "INV202401"
    " 27aabcu9603r1zj " → "27AABCU9603R1ZJ"
"""

import re
from typing import Any, Tuple

from rapidfuzz.distance import Levenshtein


# Anything that is not a letter or digit is a separator
_SEPARATORS = re.compile(r"[^0-9A-Z]")
_WHITESPACE = re.compile(r"\s+")

# GSTIN layout: 2-digit state code, 10-character PAN, entity code, Z, checksum
STATE_CODE_SLICE = slice(0, 2)
PAN_SLICE = slice(2, 12)

# Vendor similarity tiers
SAME_VENDOR = 1.0
SAME_PAN = 0.6
SAME_STATE = 0.2

# Containment counts as at least a half match
CONTAINMENT_FLOOR = 0.5


def normalize_invoice_number(value: Any) -> str:
    """Normalize an invoice/note number for matching.

    Upper-cases and removes whitespace and every separator character.
    Total and idempotent: ``None`` and blank input give ``""``, non-string
    input is converted with ``str()``.

    Examples:
        >>> normalize_invoice_number("INV/2024/001")
        'INV2024001'
        >>> normalize_invoice_number(1045)
        '1045'
    """
    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)
    return _SEPARATORS.sub("", value.upper())


def normalize_gstin(value: Any) -> str:
    """Upper-case a GSTIN and strip all whitespace; ``""`` for ``None``."""
    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)
    return _WHITESPACE.sub("", value).upper()


def match_key(vendor_gstin: Any, invoice_number: Any) -> Tuple[str, str]:
    """Deterministic match key shared by statement entries and purchase records."""
    return normalize_gstin(vendor_gstin), normalize_invoice_number(invoice_number)


def invoice_number_similarity(a: Any, b: Any) -> float:
    """Similarity (0..1) of two invoice numbers after normalization.

    Uses Levenshtein normalized similarity. When one number contains the
    other (e.g. ``"001"`` inside ``"INV2024001"``) the result is at least 0.5.
    """
    left = normalize_invoice_number(a)
    right = normalize_invoice_number(b)

    if not left or not right:
        return 0.0
    if left == right:
        return 1.0

    score = Levenshtein.normalized_similarity(left, right)
    if left in right or right in left:
        score = max(score, CONTAINMENT_FLOOR)
    return float(score)


def vendor_similarity(a: Any, b: Any) -> float:
    """Similarity (0..1) of two vendor GSTINs.

    - 1.0: identical after normalization
    - 0.6: same PAN (characters 3-12), i.e. the same legal entity
      registered in another state
    - 0.2: same state code only
    - 0.0: anything else, or either side missing
    """
    left = normalize_gstin(a)
    right = normalize_gstin(b)

    if not left or not right:
        return 0.0
    if left == right:
        return SAME_VENDOR
    if len(left) >= PAN_SLICE.stop and len(right) >= PAN_SLICE.stop:
        if left[PAN_SLICE] == right[PAN_SLICE]:
            return SAME_PAN
    if len(left) >= 2 and len(right) >= 2 and left[STATE_CODE_SLICE] == right[STATE_CODE_SLICE]:
        return SAME_STATE
    return 0.0
