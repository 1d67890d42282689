"""
Audit Models for Expense Ledger

Every significant step of an expense's life is logged as an audit event.
This provides:
1. Traceability of each capture from image to confirmed expense
2. Debugging information when extraction or conversion goes wrong
3. A record of what the user changed during review

DESIGN DECISION: Audit events are append-only structured log records.
They are emitted through structlog and never mutate domain state.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from expense_ledger.models.expense import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each step of the capture pipeline has its own event type.
    """
    # Capture
    IMAGE_STORED = "image_stored"
    EXPENSE_CREATED = "expense_created"

    # Extraction
    EXTRACTION_COMPLETED = "extraction_completed"
    EXTRACTION_FAILED = "extraction_failed"

    # Lifecycle
    EXPENSE_AUTO_CONFIRMED = "expense_auto_confirmed"
    EXPENSE_CONFIRMED = "expense_confirmed"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"

    # External services
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    expense_id: Optional[str] = Field(
        default=None,
        description="Expense this event relates to"
    )
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID shared by all events of one capture or confirm call"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )
    error_message: Optional[str] = Field(
        default=None,
        description="Error message if this is an error event"
    )

    def to_log_dict(self) -> dict[str, Any]:
        """Convert to a flat dict for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "expense_id": self.expense_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Factory methods for the audit events the orchestrator emits.

    Keeps event wording consistent across call sites.
    """

    @staticmethod
    def image_stored(
        image_key: str,
        content_type: str,
        size_bytes: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMAGE_STORED,
            correlation_id=correlation_id,
            description=f"Receipt image stored as {image_key}",
            details={
                "image_key": image_key,
                "content_type": content_type,
                "size_bytes": size_bytes,
            },
        )

    @staticmethod
    def expense_created(
        expense_id: str,
        user_id: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_CREATED,
            expense_id=expense_id,
            correlation_id=correlation_id,
            description="Pending expense created",
            details={"user_id": user_id},
        )

    @staticmethod
    def extraction_completed(
        expense_id: str,
        missing_fields: list[str],
        timing: dict[str, int],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_COMPLETED,
            expense_id=expense_id,
            correlation_id=correlation_id,
            description="Receipt extraction completed",
            details={"missing_fields": missing_fields, "timing": timing},
        )

    @staticmethod
    def extraction_failed(
        expense_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_FAILED,
            severity=AuditSeverity.WARNING,
            expense_id=expense_id,
            correlation_id=correlation_id,
            description="Receipt extraction failed; expense left for manual review",
            error_message=error_message,
        )

    @staticmethod
    def expense_confirmed(
        expense_id: str,
        amount: int,
        currency: str,
        base_amount: int,
        base_currency: str,
        automatic: bool,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        event_type = (
            AuditEventType.EXPENSE_AUTO_CONFIRMED if automatic
            else AuditEventType.EXPENSE_CONFIRMED
        )
        return AuditEvent(
            event_type=event_type,
            expense_id=expense_id,
            correlation_id=correlation_id,
            description="Expense confirmed automatically" if automatic else "Expense confirmed by user",
            details={
                "amount": amount,
                "currency": currency,
                "base_amount": base_amount,
                "base_currency": base_currency,
            },
        )

    @staticmethod
    def expense_updated(
        expense_id: str,
        state: str,
        changed_fields: list[str],
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_UPDATED,
            expense_id=expense_id,
            correlation_id=correlation_id,
            description=f"Expense updated while {state}",
            details={"changed_fields": sorted(changed_fields)},
        )

    @staticmethod
    def expense_deleted(
        expense_id: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            expense_id=expense_id,
            correlation_id=correlation_id,
            description="Expense deleted",
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"External service error: {service}",
            details={"service": service},
            error_message=error_message,
        )
