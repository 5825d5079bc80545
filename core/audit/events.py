"""Audit event logging and persistence.

Provides structured audit logging for statement uploads, reconciliation
runs and every manual decision on a statement entry. Supports multiple
persistence backends.
"""

import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.models.canonical import as_utc, utc_now
from core.models.refs import AuditEvent, AuditSeverity
from core.observability.logging import get_logger


logger = get_logger(__name__)


class AuditEventType(str, Enum):
    """Standard audit event types."""
    # Upload events
    STATEMENT_UPLOADED = "STATEMENT_UPLOADED"
    STATEMENT_REJECTED = "STATEMENT_REJECTED"
    RESOLUTIONS_CARRIED_FORWARD = "RESOLUTIONS_CARRIED_FORWARD"

    # Reconciliation events
    RECONCILIATION_STARTED = "RECONCILIATION_STARTED"
    RECONCILIATION_COMPLETED = "RECONCILIATION_COMPLETED"

    # User actions
    MANUAL_MATCH = "MANUAL_MATCH"
    STATUS_OVERRIDE = "STATUS_OVERRIDE"


def create_audit_event(
    event_type: AuditEventType,
    message: str,
    severity: AuditSeverity = AuditSeverity.INFO,
    upload_id: Optional[str] = None,
    return_period: Optional[str] = None,
    entry_id: Optional[str] = None,
    invoice_number: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    actor: str = "system",
) -> AuditEvent:
    """Create a new audit event with auto-generated ID and timestamp.

    Args:
        event_type: Type of event
        message: Human-readable message
        severity: Event severity level
        upload_id: Associated statement upload
        return_period: Filing period (MMYYYY)
        entry_id: Associated statement entry
        invoice_number: Associated invoice number
        details: Additional structured details
        actor: Who/what performed the action

    Returns:
        Configured AuditEvent ready for logging
    """
    return AuditEvent(
        event_id=str(uuid.uuid4()),
        timestamp=utc_now(),
        event_type=event_type.value,
        severity=severity,
        upload_id=upload_id,
        return_period=return_period,
        entry_id=entry_id,
        invoice_number=invoice_number,
        message=message,
        details=details or {},
        actor=actor,
    )


class AuditBackend(ABC):
    """Abstract base class for audit persistence backends."""

    @abstractmethod
    def log(self, event: AuditEvent) -> None:
        """Persist an audit event."""
        pass

    @abstractmethod
    def query(
        self,
        event_type: Optional[str] = None,
        upload_id: Optional[str] = None,
        entry_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query audit events with filters."""
        pass


def _matches(
    event: AuditEvent,
    event_type: Optional[str],
    upload_id: Optional[str],
    entry_id: Optional[str],
    start_time: Optional[datetime],
    end_time: Optional[datetime],
) -> bool:
    if event_type and event.event_type != event_type:
        return False
    if upload_id and event.upload_id != upload_id:
        return False
    if entry_id and event.entry_id != entry_id:
        return False
    timestamp = as_utc(event.timestamp)
    if start_time and timestamp < as_utc(start_time):
        return False
    if end_time and timestamp > as_utc(end_time):
        return False
    return True


class JSONFileAuditBackend(AuditBackend):
    """Audit backend that stores events in JSON files.

    Stores one file per day in YYYY-MM-DD.json format.
    """

    def __init__(self, base_path: Path):
        """Initialize with base directory for audit files."""
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_file_path(self, day: datetime) -> Path:
        """Get file path for a given date."""
        return self.base_path / f"{day.strftime('%Y-%m-%d')}.json"

    def log(self, event: AuditEvent) -> None:
        """Append event to daily file."""
        file_path = self._get_file_path(event.timestamp)

        events = []
        if file_path.exists():
            with open(file_path, "r", encoding="utf-8") as f:
                events = json.load(f)

        events.append(event.model_dump(mode="json"))

        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(events, f, indent=2)

    def query(
        self,
        event_type: Optional[str] = None,
        upload_id: Optional[str] = None,
        entry_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query events from JSON files."""
        results = []

        if start_time is None:
            start_time = datetime(2020, 1, 1, tzinfo=timezone.utc)
        if end_time is None:
            end_time = utc_now()
        start_time = as_utc(start_time)
        end_time = as_utc(end_time)

        current = datetime(start_time.year, start_time.month, start_time.day, tzinfo=timezone.utc)
        while current <= end_time and len(results) < limit:
            file_path = self._get_file_path(current)
            if file_path.exists():
                with open(file_path, "r", encoding="utf-8") as f:
                    events = json.load(f)

                for event_data in events:
                    event = AuditEvent.model_validate(event_data)
                    if not _matches(event, event_type, upload_id, entry_id, start_time, end_time):
                        continue
                    results.append(event)
                    if len(results) >= limit:
                        break

            current += timedelta(days=1)

        return results


class InMemoryAuditBackend(AuditBackend):
    """In-memory audit backend for testing."""

    def __init__(self):
        self._events: List[AuditEvent] = []

    def log(self, event: AuditEvent) -> None:
        self._events.append(event)

    def query(
        self,
        event_type: Optional[str] = None,
        upload_id: Optional[str] = None,
        entry_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        results = []
        for event in self._events:
            if not _matches(event, event_type, upload_id, entry_id, start_time, end_time):
                continue
            results.append(event)
            if len(results) >= limit:
                break
        return results

    def clear(self) -> None:
        """Clear all events (for testing)."""
        self._events.clear()


class AuditLogger:
    """Main audit logger that supports multiple backends.

    Usage:
        audit = AuditLogger()
        audit.add_backend(JSONFileAuditBackend(Path("./audit")))

        audit.log_info(
            AuditEventType.MANUAL_MATCH,
            "Entry B2B-27AABCU9603R1ZJ-INV001 matched to purchase P-17",
            upload_id="UPL-001",
        )
    """

    def __init__(self):
        self._backends: List[AuditBackend] = []

    def add_backend(self, backend: AuditBackend) -> None:
        """Add an audit backend."""
        self._backends.append(backend)

    def log(self, event: AuditEvent) -> None:
        """Log event to all backends."""
        for backend in self._backends:
            try:
                backend.log(event)
            except OSError as e:
                # Audit sinks are best effort
                logger.error(
                    f"Audit logging failed for backend {type(backend).__name__}: {e}",
                    extra_fields={"event_type": event.event_type},
                )

    def log_info(
        self,
        event_type: AuditEventType,
        message: str,
        **kwargs,
    ) -> None:
        """Log an INFO level event."""
        event = create_audit_event(event_type, message, AuditSeverity.INFO, **kwargs)
        self.log(event)

    def log_warning(
        self,
        event_type: AuditEventType,
        message: str,
        **kwargs,
    ) -> None:
        """Log a WARN level event."""
        event = create_audit_event(event_type, message, AuditSeverity.WARN, **kwargs)
        self.log(event)

    def query(
        self,
        event_type: Optional[str] = None,
        upload_id: Optional[str] = None,
        entry_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query events from all backends (returns first backend's results)."""
        if not self._backends:
            return []
        return self._backends[0].query(event_type, upload_id, entry_id, start_time, end_time, limit)
