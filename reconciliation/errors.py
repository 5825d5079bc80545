"""Reconciliation errors.

All errors raised by the consumer interface derive from
``ReconciliationError`` so callers can catch one type at the boundary.
"""

from typing import List, Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class StatementRejectedError(ReconciliationError):
    """Statement document could not be parsed; nothing was persisted."""

    def __init__(self, message: str, skipped_rows: Optional[List] = None):
        super().__init__(message, details={"skipped_rows": len(skipped_rows or [])})
        self.skipped_rows = list(skipped_rows or [])


class UploadNotFoundError(ReconciliationError):
    """No statement upload with the given id."""

    def __init__(self, upload_id: str):
        super().__init__(f"Statement upload not found: {upload_id}", details={"upload_id": upload_id})
        self.upload_id = upload_id


class EntryNotFoundError(ReconciliationError):
    """No statement entry with the given id."""

    def __init__(self, entry_id: str):
        super().__init__(f"Statement entry not found: {entry_id}", details={"entry_id": entry_id})
        self.entry_id = entry_id


class PurchaseNotFoundError(ReconciliationError):
    """No purchase record with the given id."""

    def __init__(self, purchase_id: str):
        super().__init__(f"Purchase record not found: {purchase_id}", details={"purchase_id": purchase_id})
        self.purchase_id = purchase_id


class InvalidStatusTransition(ReconciliationError):
    """Requested status change is not allowed for this writer."""

    def __init__(self, current, target, manual: bool):
        writer = "manual" if manual else "automatic"
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            f"Cannot move {current_value} to {target_value} as an {writer} writer",
            details={"current": current_value, "target": target_value, "manual": manual},
        )
        self.current = current
        self.target = target
        self.manual = manual


class PurchaseAlreadyMatchedError(ReconciliationError):
    """Purchase record is already linked to another statement entry."""

    def __init__(self, purchase_id: str, entry_id: str):
        super().__init__(
            f"Purchase record {purchase_id} is already matched to entry {entry_id}",
            details={"purchase_id": purchase_id, "entry_id": entry_id},
        )
        self.purchase_id = purchase_id
        self.entry_id = entry_id
