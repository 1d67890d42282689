"""
Audit Logger

DESIGN DECISION: Every significant step of an expense is logged.
This provides:
1. Traceability from receipt image to confirmed expense
2. Debugging capability when extraction or conversion misbehaves
3. A short in-process history of recent events for diagnostics

The audit logger:
- Is async so call sites read like the rest of the pipeline
- Never raises into the main flow
- Supports correlation IDs to tie together the events of one capture
"""

from collections import deque
from typing import Optional
from uuid import UUID, uuid4

import structlog

from expense_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


DEFAULT_HISTORY_SIZE = 200


class AuditLogger:
    """
    Central audit logging service.

    Logs events to:
    1. The structured local log (JSON via structlog)
    2. A bounded in-memory history, newest last
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE):
        self._logger = structlog.get_logger("expense_ledger.audit")
        self._history: deque[AuditEvent] = deque(maxlen=history_size)

    async def log(self, event: AuditEvent) -> None:
        """Log an audit event locally and remember it."""
        self._history.append(event)
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.ERROR:
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

    def recent_events(
        self,
        limit: int = 50,
        expense_id: Optional[str] = None,
    ) -> list[AuditEvent]:
        """
        Most recent events, newest first.

        Args:
            limit: Maximum number of events to return
            expense_id: Only events for this expense
        """
        events = [
            event for event in reversed(self._history)
            if expense_id is None or event.expense_id == expense_id
        ]
        return events[:limit]

    async def log_image_stored(
        self,
        image_key: str,
        content_type: str,
        size_bytes: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.image_stored(
            image_key=image_key,
            content_type=content_type,
            size_bytes=size_bytes,
            correlation_id=correlation_id,
        ))

    async def log_expense_created(
        self,
        expense_id: str,
        user_id: str,
        correlation_id: Optional[UUID],
    ) -> None:
        await self.log(AuditEventBuilder.expense_created(
            expense_id=expense_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_extraction_completed(
        self,
        expense_id: str,
        missing_fields: list[str],
        timing: dict[str, int],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.extraction_completed(
            expense_id=expense_id,
            missing_fields=missing_fields,
            timing=timing,
            correlation_id=correlation_id,
        ))

    async def log_extraction_failed(
        self,
        expense_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.extraction_failed(
            expense_id=expense_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_expense_confirmed(
        self,
        expense_id: str,
        amount: int,
        currency: str,
        base_amount: int,
        base_currency: str,
        automatic: bool,
        correlation_id: Optional[UUID],
    ) -> None:
        await self.log(AuditEventBuilder.expense_confirmed(
            expense_id=expense_id,
            amount=amount,
            currency=currency,
            base_amount=base_amount,
            base_currency=base_currency,
            automatic=automatic,
            correlation_id=correlation_id,
        ))

    async def log_expense_updated(
        self,
        expense_id: str,
        state: str,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expense_updated(
            expense_id=expense_id,
            state=state,
            changed_fields=changed_fields,
            correlation_id=correlation_id,
        ))

    async def log_expense_deleted(
        self,
        expense_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expense_deleted(
            expense_id=expense_id,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a user action (e.g. a capture) and pass it
    through all subsequent operations.
    """
    return uuid4()
