"""Audit models for tracking reconciliation actions."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from core.models.canonical import utc_now


# =============================================================================
# Audit Event Models
# =============================================================================

class AuditSeverity(str, Enum):
    """Severity levels for audit events."""
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class AuditEvent(BaseModel):
    """An audit event for tracking system actions.

    Provides traceability of every statement upload, reconciliation run
    and manual decision taken on a statement entry.
    """
    event_id: str = Field(..., description="Unique event identifier")
    timestamp: datetime = Field(default_factory=utc_now, description="Event timestamp")
    event_type: str = Field(..., description="Type of event (UPLOAD, RECONCILIATION, MANUAL_MATCH, etc.)")
    severity: AuditSeverity = Field(default=AuditSeverity.INFO, description="Event severity")

    # Context
    upload_id: Optional[str] = Field(None, description="Associated statement upload")
    return_period: Optional[str] = Field(None, description="Return period (MMYYYY)")
    entry_id: Optional[str] = Field(None, description="Associated statement entry")
    invoice_number: Optional[str] = Field(None, description="Associated invoice")

    # Details
    message: str = Field(..., description="Human-readable message")
    details: dict = Field(default_factory=dict, description="Additional event details")

    # Actor
    actor: str = Field(default="system", description="Who/what performed the action")
