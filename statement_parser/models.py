"""Statement Parser Data Models.

Raw rows are validated per section at the parser boundary (one tagged
variant per section layout) and normalized straight into the common
``StatementEntry`` shape:

    b2b / b2ba     → RawInvoiceSupplier → RawInvoice  (supplier → inv[])
    cdnr / cdnra   → RawNoteSupplier    → RawNote     (supplier → nt[])
    impg / impgsez → RawImport                        (flat bill-of-entry rows)
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, Field, model_validator

from core.models.canonical import (
    CanonicalBase,
    DecimalValue,
    FrozenRecord,
    MoneyValue,
    OptionalText,
    RequiredText,
    StatementDateValue,
    OptionalStatementDateValue,
    ZERO,
)
from reconciliation.normalize import match_key


# =============================================================================
# Enums
# =============================================================================

class SupplyCategory(str, Enum):
    """Broad kind of statement line."""
    REGULAR = "regular"
    NOTE = "note"
    AMENDED = "amended"
    IMPORT = "import"


class SupplyType(str, Enum):
    """Statement section a line came from."""
    B2B = "B2B"          # Invoices from registered suppliers
    B2BA = "B2BA"        # Amended B2B invoices
    CDNR = "CDNR"        # Credit/debit notes from registered suppliers
    CDNRA = "CDNRA"      # Amended credit/debit notes
    IMPG = "IMPG"        # Import of goods
    IMPGSEZ = "IMPGSEZ"  # Import of goods from SEZ

    @property
    def category(self) -> SupplyCategory:
        return _SUPPLY_CATEGORIES[self]


_SUPPLY_CATEGORIES = {
    SupplyType.B2B: SupplyCategory.REGULAR,
    SupplyType.B2BA: SupplyCategory.AMENDED,
    SupplyType.CDNR: SupplyCategory.NOTE,
    SupplyType.CDNRA: SupplyCategory.AMENDED,
    SupplyType.IMPG: SupplyCategory.IMPORT,
    SupplyType.IMPGSEZ: SupplyCategory.IMPORT,
}


class NoteType(str, Enum):
    """Credit or debit note."""
    CREDIT = "C"
    DEBIT = "D"


# =============================================================================
# Raw Section Rows (portal field names as aliases)
# =============================================================================

class RawInvoice(CanonicalBase):
    """Invoice row under a b2b/b2ba supplier."""
    invoice_number: RequiredText = Field(..., alias="inum")
    invoice_date: StatementDateValue = Field(..., alias="idt")
    invoice_value: DecimalValue = Field(default=None, alias="val")
    taxable_value: MoneyValue = Field(default=ZERO, alias="txval")
    igst: MoneyValue = ZERO
    cgst: MoneyValue = ZERO
    sgst: MoneyValue = ZERO
    cess: MoneyValue = ZERO
    itc_availability: OptionalText = Field(default=None, alias="itcavl")
    reason: OptionalText = Field(default=None, alias="rsn")
    source_type: OptionalText = Field(default=None, alias="srctyp")

    # b2ba only
    original_invoice_number: OptionalText = Field(default=None, alias="oinum")
    original_invoice_date: OptionalStatementDateValue = Field(default=None, alias="oidt")


class RawNote(CanonicalBase):
    """Credit/debit note row under a cdnr/cdnra supplier."""
    note_number: RequiredText = Field(..., alias="ntnum")
    note_date: StatementDateValue = Field(..., alias="ntdt")
    note_value: DecimalValue = Field(default=None, alias="val")
    taxable_value: MoneyValue = Field(default=ZERO, alias="txval")
    igst: MoneyValue = ZERO
    cgst: MoneyValue = ZERO
    sgst: MoneyValue = ZERO
    cess: MoneyValue = ZERO
    note_type: Optional[NoteType] = Field(default=None, alias="typ")
    itc_availability: OptionalText = Field(default=None, alias="itcavl")
    reason: OptionalText = Field(default=None, alias="rsn")

    # cdnra only
    original_note_number: OptionalText = Field(default=None, alias="ontnum")
    original_note_date: OptionalStatementDateValue = Field(default=None, alias="ontdt")


class RawImport(CanonicalBase):
    """Bill-of-entry row in impg/impgsez."""
    bill_of_entry_number: RequiredText = Field(..., alias="benum")
    bill_of_entry_date: StatementDateValue = Field(..., alias="bedt")
    reference_date: OptionalStatementDateValue = Field(default=None, alias="refdt")
    port_code: OptionalText = Field(default=None, alias="portcd")
    taxable_value: MoneyValue = Field(default=ZERO, alias="txval")
    igst: MoneyValue = ZERO
    cess: MoneyValue = ZERO


class RawInvoiceSupplier(CanonicalBase):
    """Supplier block in b2b/b2ba."""
    vendor_gstin: RequiredText = Field(..., alias="ctin")
    vendor_name: OptionalText = Field(default=None, alias="trdnm")
    rows: List[Any] = Field(default_factory=list, alias="inv")


class RawNoteSupplier(CanonicalBase):
    """Supplier block in cdnr/cdnra."""
    vendor_gstin: RequiredText = Field(..., alias="ctin")
    vendor_name: OptionalText = Field(default=None, alias="trdnm")
    rows: List[Any] = Field(default_factory=list, alias="nt")


# =============================================================================
# Normalized Entries
# =============================================================================

class StatementEntry(FrozenRecord):
    """One normalized statement line, whatever section it came from.

    Attributes:
        entry_id: Deterministic id, ``<SUPPLY_TYPE>-<GSTIN or NA>-<invoice>``
        vendor_gstin: Supplier GSTIN, normalized ("" for imports)
        vendor_name: Supplier trade name
        invoice_number: Invoice, note or bill-of-entry number as reported
        invoice_date: Document date
        invoice_value: Gross value (derived when not reported)
        taxable_value: Value before tax
        igst / cgst / sgst / cess: Tax components
        itc_available: False only when the statement says ITC is not available
        reason: Why ITC is not available
        supply_type: Source section
        note_type: C/D for notes
        original_invoice_number / original_invoice_date: Amended sections
        source_type: e.g. e-Invoice
        port_code: Imports
    """
    entry_id: str
    vendor_gstin: str = ""
    vendor_name: Optional[str] = None
    invoice_number: str
    invoice_date: date
    invoice_value: MoneyValue = ZERO
    taxable_value: MoneyValue = ZERO
    igst: MoneyValue = ZERO
    cgst: MoneyValue = ZERO
    sgst: MoneyValue = ZERO
    cess: MoneyValue = ZERO
    itc_available: bool = True
    reason: Optional[str] = None
    supply_type: SupplyType

    # Supplementary
    note_type: Optional[NoteType] = None
    original_invoice_number: Optional[str] = None
    original_invoice_date: Optional[date] = None
    source_type: Optional[str] = None
    port_code: Optional[str] = None

    @model_validator(mode="after")
    def _check_tax_components(self) -> StatementEntry:
        # Integrated tax applies to inter-state supplies, central/state tax to intra-state
        if self.igst != ZERO and (self.cgst != ZERO or self.sgst != ZERO):
            raise ValueError("igst cannot be combined with cgst/sgst on one line")
        return self

    @property
    def itc_amount(self) -> Decimal:
        return self.igst + self.cgst + self.sgst + self.cess

    @property
    def match_key(self) -> Tuple[str, str]:
        return match_key(self.vendor_gstin, self.invoice_number)


# =============================================================================
# Parse Output
# =============================================================================

class SkippedRow(BaseModel):
    """A row, supplier block or section that was left out of the parse.

    ``index`` is the position within the section (supplier position for
    supplier-grouped sections, None when the whole section was unusable);
    ``row`` is the position within the supplier block.
    """
    section: str
    index: Optional[int] = None
    row: Optional[int] = None
    reason: str


class StatementSummary(BaseModel):
    """Totals over the parsed entries, by direct summation."""
    total_entries: int = 0
    total_taxable_value: Decimal = ZERO
    total_igst: Decimal = ZERO
    total_cgst: Decimal = ZERO
    total_sgst: Decimal = ZERO
    total_cess: Decimal = ZERO
    total_itc_available: Decimal = ZERO


class ParseResult(BaseModel):
    """Outcome of parsing one statement document.

    On failure ``entries`` is empty and ``error`` says why.
    """
    success: bool
    gstin: Optional[str] = None
    return_period: Optional[str] = None
    entries: List[StatementEntry] = Field(default_factory=list)
    summary: Optional[StatementSummary] = None
    skipped_rows: List[SkippedRow] = Field(default_factory=list)
    error: Optional[str] = None
