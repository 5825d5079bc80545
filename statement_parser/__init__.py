"""Statement Parser - GSTR-2B JSON into normalized statement entries.

Usage:
    from statement_parser import parse_statement

    result = parse_statement(raw_json)
    if not result.success:
        raise SystemExit(result.error)

    for entry in result.entries:
        print(entry.entry_id, entry.itc_amount)
    for skipped in result.skipped_rows:
        print(f"skipped {skipped.section}[{skipped.index}]: {skipped.reason}")
"""

from core.models.canonical import parse_statement_date
from statement_parser.models import (
    NoteType,
    ParseResult,
    SkippedRow,
    StatementEntry,
    StatementSummary,
    SupplyCategory,
    SupplyType,
)
from statement_parser.parser import (
    GSTIN_PATTERN,
    is_valid_gstin,
    is_valid_return_period,
    make_entry_id,
    parse_statement,
    summarize_entries,
    validate_statement_document,
)

__all__ = [
    # Models
    "NoteType",
    "ParseResult",
    "SkippedRow",
    "StatementEntry",
    "StatementSummary",
    "SupplyCategory",
    "SupplyType",
    # Parsing
    "GSTIN_PATTERN",
    "is_valid_gstin",
    "is_valid_return_period",
    "make_entry_id",
    "parse_statement",
    "parse_statement_date",
    "summarize_entries",
    "validate_statement_document",
]
