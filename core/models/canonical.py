"""Core canonical value types shared by the statement parser and the engine.

The GST portal and the purchase ledger both hand us loosely typed values:
amounts as floats, strings with rupee signs or thousands separators, dates as
``DD-MM-YYYY`` strings. The annotated types below coerce those values at the
model boundary so every model downstream works with ``Decimal`` and
``datetime.date`` only.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


ZERO = Decimal("0")
PAISE = Decimal("0.01")

# DD-MM-YYYY or DD/MM/YYYY, the two layouts the portal uses
STATEMENT_DATE_PATTERN = re.compile(r"^\s*(\d{1,2})[-/](\d{1,2})[-/](\d{4})\s*$")


# =============================================================================
# Value Parsers
# =============================================================================

def _parse_decimal(value):
    """Parse decimal from various formats (string with ₹ or commas, floats, etc.)."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse amount: {value!r}")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        s = s.replace("₹", "").replace("Rs.", "").replace(",", "").strip()
        if s.startswith("(") and s.endswith(")"):
            s = "-" + s[1:-1]
        try:
            return Decimal(s)
        except InvalidOperation:
            raise ValueError(f"Cannot parse amount: {value!r}")
    return value


def _parse_money(value):
    """Parse an amount where a missing value means zero."""
    parsed = _parse_decimal(value)
    if parsed is None:
        return ZERO
    return parsed


def parse_statement_date(value: str) -> date:
    """Parse a statement date in ``DD-MM-YYYY`` or ``DD/MM/YYYY`` form.

    Raises:
        ValueError: empty input, another layout, or an impossible calendar
            date such as 31-02-2024.
    """
    if not value or not isinstance(value, str):
        raise ValueError("Invalid date: empty value")
    m = STATEMENT_DATE_PATTERN.match(value)
    if not m:
        raise ValueError(f"Invalid date format: {value}")
    day, month, year = (int(part) for part in m.groups())
    try:
        return date(year, month, day)
    except ValueError:
        raise ValueError(f"Invalid date: {value}")


def _parse_statement_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return parse_statement_date(value)


def _parse_optional_statement_date(value):
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return _parse_statement_date(value)


def _parse_date(value):
    """Parse date from ISO or statement string formats."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        try:
            return date.fromisoformat(s[:10])
        except ValueError:
            return parse_statement_date(s)
    return value


def _parse_optional_text(value):
    """Blank strings become None."""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _parse_required_text(value):
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
    return value


def quantize_money(value: Optional[Decimal]) -> Decimal:
    """Round an amount to paise for display and persistence."""
    if value is None:
        return ZERO.quantize(PAISE)
    return value.quantize(PAISE)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Convert to aware UTC; naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Annotated types for automatic parsing
DecimalValue = Annotated[Optional[Decimal], BeforeValidator(_parse_decimal)]
MoneyValue = Annotated[Decimal, BeforeValidator(_parse_money)]
DateValue = Annotated[date, BeforeValidator(_parse_date)]
StatementDateValue = Annotated[date, BeforeValidator(_parse_statement_date)]
OptionalStatementDateValue = Annotated[Optional[date], BeforeValidator(_parse_optional_statement_date)]
OptionalText = Annotated[Optional[str], BeforeValidator(_parse_optional_text)]
RequiredText = Annotated[str, BeforeValidator(_parse_required_text)]


# =============================================================================
# Base Models
# =============================================================================

class CanonicalBase(BaseModel):
    """Base model for all canonical data structures."""
    model_config = ConfigDict(populate_by_name=True)


class FrozenRecord(BaseModel):
    """Base for records that must never change after normalization."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)
