"""GSTR-2B Statement Parser.

Parses the GSTR-2B JSON downloaded from the GST portal into normalized
``StatementEntry`` rows. Extracts B2B invoices, amended invoices,
credit/debit notes (original and amended) and import entries.

Failure modes:
- Document level (bad JSON, not an object, bad GSTIN or period, too many
  rows): ``ParseResult(success=False)`` with no entries.
- Row level (missing invoice number, impossible date, bad amount, ...): the
  row is skipped, recorded in ``skipped_rows`` and logged; the parse still
  succeeds with the remaining rows.

Example:
    result = parse_statement(Path("gstr2b_042024.json").read_text())
    if result.success:
        print(f"{result.summary.total_entries} entries for {result.return_period}")
"""

import json
import re
from collections import Counter
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, Union

from pydantic import BaseModel, ValidationError

from core.models.canonical import ZERO
from core.observability.logging import get_logger, with_correlation
from reconciliation.normalize import normalize_gstin, normalize_invoice_number
from statement_parser.models import (
    ParseResult,
    RawImport,
    RawInvoice,
    RawInvoiceSupplier,
    RawNote,
    RawNoteSupplier,
    SkippedRow,
    StatementEntry,
    StatementSummary,
    SupplyType,
)


logger = get_logger(__name__)

# 2-digit state code, PAN (5 letters, 4 digits, 1 letter), entity code, Z, checksum
GSTIN_PATTERN = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$")

# Filing period MMYYYY
RETURN_PERIOD_PATTERN = re.compile(r"^(0[1-9]|1[0-2])[0-9]{4}$")

NO_VENDOR = "NA"


# =============================================================================
# Document Validation
# =============================================================================

def is_valid_gstin(value: Any) -> bool:
    return isinstance(value, str) and bool(GSTIN_PATTERN.match(normalize_gstin(value)))


def is_valid_return_period(value: Any) -> bool:
    return isinstance(value, str) and bool(RETURN_PERIOD_PATTERN.match(value.strip()))


def validate_statement_document(document: Any) -> bool:
    """Check the top-level shape of a GSTR-2B document.

    True when it is a mapping with a well-formed 15-character ``gstin`` and
    an ``fp`` filing period in MMYYYY form. Sections are not inspected.
    """
    if not isinstance(document, dict):
        return False
    return is_valid_gstin(document.get("gstin")) and is_valid_return_period(document.get("fp"))


def _load_document(document: Union[Dict[str, Any], str, bytes]) -> Any:
    if isinstance(document, (str, bytes, bytearray)):
        try:
            return json.loads(document)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValueError(f"Invalid GSTR-2B JSON: {e}")
    return document


def _describe_error(exc: ValidationError) -> str:
    """Short, single-line description of a row validation error."""
    parts = []
    for error in exc.errors()[:3]:
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


# =============================================================================
# Row Normalization
# =============================================================================

def _gross_value(reported: Optional[Decimal], taxable: Decimal, *taxes: Decimal) -> Decimal:
    if reported is not None:
        return reported
    return taxable + sum(taxes, ZERO)


def _itc_available(itc_availability: Optional[str]) -> bool:
    # Available unless explicitly marked "N"
    return (itc_availability or "").strip().upper() != "N"


def _invoice_fields(raw: RawInvoice) -> Dict[str, Any]:
    return {
        "invoice_number": raw.invoice_number,
        "invoice_date": raw.invoice_date,
        "invoice_value": _gross_value(
            raw.invoice_value, raw.taxable_value, raw.igst, raw.cgst, raw.sgst, raw.cess,
        ),
        "taxable_value": raw.taxable_value,
        "igst": raw.igst,
        "cgst": raw.cgst,
        "sgst": raw.sgst,
        "cess": raw.cess,
        "itc_available": _itc_available(raw.itc_availability),
        "reason": raw.reason,
        "source_type": raw.source_type,
        "original_invoice_number": raw.original_invoice_number,
        "original_invoice_date": raw.original_invoice_date,
    }


def _note_fields(raw: RawNote) -> Dict[str, Any]:
    return {
        "invoice_number": raw.note_number,
        "invoice_date": raw.note_date,
        "invoice_value": _gross_value(
            raw.note_value, raw.taxable_value, raw.igst, raw.cgst, raw.sgst, raw.cess,
        ),
        "taxable_value": raw.taxable_value,
        "igst": raw.igst,
        "cgst": raw.cgst,
        "sgst": raw.sgst,
        "cess": raw.cess,
        "note_type": raw.note_type,
        "itc_available": _itc_available(raw.itc_availability),
        "reason": raw.reason,
        "original_invoice_number": raw.original_note_number,
        "original_invoice_date": raw.original_note_date,
    }


def _import_fields(raw: RawImport) -> Dict[str, Any]:
    return {
        "invoice_number": raw.bill_of_entry_number,
        "invoice_date": raw.bill_of_entry_date,
        # Bills of entry carry no gross value
        "invoice_value": raw.taxable_value + raw.igst + raw.cess,
        "taxable_value": raw.taxable_value,
        "igst": raw.igst,
        "cess": raw.cess,
        "port_code": raw.port_code,
    }


# section key → (supply type, supplier model or None for flat sections, row model, row normalizer)
SectionLayout = Tuple[SupplyType, Optional[Type[BaseModel]], Type[BaseModel], Callable[[Any], Dict[str, Any]]]

SECTIONS: Dict[str, SectionLayout] = {
    "b2b": (SupplyType.B2B, RawInvoiceSupplier, RawInvoice, _invoice_fields),
    "b2ba": (SupplyType.B2BA, RawInvoiceSupplier, RawInvoice, _invoice_fields),
    "cdnr": (SupplyType.CDNR, RawNoteSupplier, RawNote, _note_fields),
    "cdnra": (SupplyType.CDNRA, RawNoteSupplier, RawNote, _note_fields),
    "impg": (SupplyType.IMPG, None, RawImport, _import_fields),
    "impgsez": (SupplyType.IMPGSEZ, None, RawImport, _import_fields),
}


def make_entry_id(supply_type: SupplyType, vendor_gstin: Optional[str], invoice_number: Any) -> str:
    """Base entry id ``<SUPPLY_TYPE>-<GSTIN or NA>-<invoice>``, before duplicate suffixes."""
    vendor = normalize_gstin(vendor_gstin) or NO_VENDOR
    return f"{supply_type.value}-{vendor}-{normalize_invoice_number(invoice_number)}"


class _SectionParser:
    """Accumulates entries and skipped rows across all sections of one document."""

    def __init__(self):
        self.entries: List[StatementEntry] = []
        self.skipped_rows: List[SkippedRow] = []
        self._ids: Counter = Counter()

    def skip(self, section: str, reason: str, index: Optional[int] = None, row: Optional[int] = None):
        skipped = SkippedRow(section=section, index=index, row=row, reason=reason)
        self.skipped_rows.append(skipped)
        logger.warning(
            f"Skipped {section} row: {reason}",
            extra_fields={"section": section, "index": index, "row": row},
        )

    def add_row(
        self,
        section: str,
        layout: SectionLayout,
        data: Any,
        index: int,
        row: Optional[int] = None,
        vendor_gstin: str = "",
        vendor_name: Optional[str] = None,
    ) -> None:
        supply_type, _, row_model, to_fields = layout
        try:
            raw = row_model.model_validate(data)
            fields = to_fields(raw)
            base_id = make_entry_id(supply_type, vendor_gstin, fields["invoice_number"])
            occurrence = self._ids[base_id] + 1
            entry_id = base_id if occurrence == 1 else f"{base_id}-{occurrence}"
            entry = StatementEntry(
                entry_id=entry_id,
                vendor_gstin=vendor_gstin,
                vendor_name=vendor_name,
                supply_type=supply_type,
                **fields,
            )
        except ValidationError as e:
            self.skip(section, _describe_error(e), index=index, row=row)
            return

        self._ids[base_id] = occurrence
        self.entries.append(entry)

    def parse_section(self, section: str, rows: Any) -> None:
        layout = SECTIONS[section]
        supplier_model = layout[1]

        if not isinstance(rows, list):
            self.skip(section, f"section is not a list (got {type(rows).__name__})")
            return

        for index, data in enumerate(rows):
            if supplier_model is None:
                self.add_row(section, layout, data, index)
                continue

            try:
                supplier = supplier_model.model_validate(data)
            except ValidationError as e:
                self.skip(section, f"supplier block: {_describe_error(e)}", index=index)
                continue

            vendor_gstin = normalize_gstin(supplier.vendor_gstin)
            for row, row_data in enumerate(supplier.rows):
                self.add_row(
                    section,
                    layout,
                    row_data,
                    index,
                    row=row,
                    vendor_gstin=vendor_gstin,
                    vendor_name=supplier.vendor_name,
                )


# =============================================================================
# Summary
# =============================================================================

def summarize_entries(entries: List[StatementEntry]) -> StatementSummary:
    """Totals over parsed entries.

    ITC available is the full ITC amount (all four components) of every
    entry whose ITC is not marked unavailable.
    """
    summary = StatementSummary(total_entries=len(entries))
    for entry in entries:
        summary.total_taxable_value += entry.taxable_value
        summary.total_igst += entry.igst
        summary.total_cgst += entry.cgst
        summary.total_sgst += entry.sgst
        summary.total_cess += entry.cess
        if entry.itc_available:
            summary.total_itc_available += entry.itc_amount
    return summary


# =============================================================================
# Entry Point
# =============================================================================

def _failure(error: str, **kwargs) -> ParseResult:
    logger.warning(f"Statement rejected: {error}")
    return ParseResult(success=False, entries=[], error=error, **kwargs)


def parse_statement(
    document: Union[Dict[str, Any], str, bytes],
    max_entries: Optional[int] = None,
) -> ParseResult:
    """Parse a GSTR-2B document.

    Args:
        document: Parsed JSON mapping, or the raw JSON text/bytes
        max_entries: Reject the whole document when more rows than this parse

    Returns:
        ParseResult; ``success`` is False for document-level problems only
    """
    try:
        data = _load_document(document)
    except ValueError as e:
        return _failure(str(e))

    if not isinstance(data, dict):
        return _failure("Invalid GSTR-2B JSON: document must be a JSON object")

    gstin = data.get("gstin")
    return_period = data.get("fp")
    if not gstin or not return_period:
        return _failure("Invalid GSTR-2B JSON: missing gstin or fp (filing period)")
    if not is_valid_gstin(gstin):
        return _failure(f"Invalid GSTR-2B JSON: malformed gstin {gstin!r}")
    if not is_valid_return_period(return_period):
        return _failure(f"Invalid GSTR-2B JSON: filing period must be MMYYYY, got {return_period!r}")

    gstin = normalize_gstin(gstin)
    return_period = return_period.strip()

    with with_correlation(gstin=gstin, return_period=return_period, stage="parse"):
        parser = _SectionParser()
        for section in SECTIONS:
            if data.get(section) is None:
                continue
            parser.parse_section(section, data[section])

        if max_entries is not None and len(parser.entries) > max_entries:
            return _failure(
                f"Statement has {len(parser.entries)} entries, more than the allowed {max_entries}",
                gstin=gstin,
                return_period=return_period,
            )

        summary = summarize_entries(parser.entries)
        logger.info(
            f"Parsed {summary.total_entries} statement entries "
            f"({len(parser.skipped_rows)} skipped)",
            extra_fields={"total_itc_available": str(summary.total_itc_available)},
        )

    return ParseResult(
        success=True,
        gstin=gstin,
        return_period=return_period,
        entries=parser.entries,
        summary=summary,
        skipped_rows=parser.skipped_rows,
    )
