"""
Audit Logger

DESIGN DECISION: Every significant engine action is logged.
This provides:
1. Traceability of each notification decision
2. Visibility into failures the engine deliberately swallows
   (per-entity sweep errors, background hook errors, prune errors)
3. A history of automatic goal credits

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (never crashes the engine if logging fails)
- Supports correlation IDs to trace all events of one sweep or hook run
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from reconciler.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from reconciler.services.storage import AuditStorageInterface


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


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("reconciler.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    # Sweeps

    async def log_sweep_started(
        self,
        correlation_id: UUID,
        now: datetime,
        owner_id: Optional[str] = None,
        category: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.sweep_started(
            correlation_id=correlation_id,
            now=now,
            owner_id=owner_id,
            category=category,
        ))

    async def log_sweep_completed(
        self,
        correlation_id: UUID,
        summary: dict[str, Any],
        owner_id: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.sweep_completed(
            correlation_id=correlation_id,
            summary=summary,
            owner_id=owner_id,
        ))

    async def log_sweep_skipped(self, scheduled_at: datetime) -> None:
        await self.log(AuditEventBuilder.sweep_skipped(scheduled_at))

    async def log_sweep_failed(
        self,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.sweep_failed(
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_entity_failed(
        self,
        entity_type: str,
        entity_id: UUID,
        owner_id: Optional[str],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a single budget/goal/transaction that could not be evaluated."""
        await self.log(AuditEventBuilder.entity_evaluation_failed(
            entity_type=entity_type,
            entity_id=entity_id,
            owner_id=owner_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    # Notifications

    async def log_notification_created(
        self,
        notification_id: UUID,
        owner_id: str,
        notification_type: str,
        dedup_key: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.notification_created(
            notification_id=notification_id,
            owner_id=owner_id,
            notification_type=notification_type,
            dedup_key=dedup_key,
            correlation_id=correlation_id,
        ))

    async def log_notification_suppressed(
        self,
        owner_id: str,
        notification_type: str,
        dedup_key: str,
        race_lost: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.notification_suppressed(
            owner_id=owner_id,
            notification_type=notification_type,
            dedup_key=dedup_key,
            race_lost=race_lost,
            correlation_id=correlation_id,
        ))

    async def log_notification_read(
        self,
        notification_id: UUID,
        owner_id: str,
    ) -> None:
        await self.log(AuditEventBuilder.notification_read(
            notification_id=notification_id,
            owner_id=owner_id,
        ))

    async def log_notifications_pruned(
        self,
        deleted: int,
        cutoff: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.notifications_pruned(
            deleted=deleted,
            cutoff=cutoff,
            correlation_id=correlation_id,
        ))

    async def log_prune_failed(
        self,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.prune_failed(
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    # Goals

    async def log_allocation_applied(
        self,
        goal_id: UUID,
        owner_id: str,
        amount: Decimal,
        previous_percentage: Decimal,
        new_percentage: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.allocation_applied(
            goal_id=goal_id,
            owner_id=owner_id,
            amount=amount,
            previous_percentage=previous_percentage,
            new_percentage=new_percentage,
            correlation_id=correlation_id,
        ))

    async def log_allocation_failed(
        self,
        goal_id: UUID,
        owner_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.allocation_failed(
            goal_id=goal_id,
            owner_id=owner_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    # Transaction creation

    async def log_transaction_recorded(
        self,
        transaction_id: UUID,
        owner_id: str,
        transaction_type: str,
        amount: Decimal,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_recorded(
            transaction_id=transaction_id,
            owner_id=owner_id,
            transaction_type=transaction_type,
            amount=amount,
        ))

    async def log_currency_fallback(
        self,
        from_currency: str,
        to_currency: str,
        error_message: str,
    ) -> None:
        await self.log(AuditEventBuilder.currency_fallback(
            from_currency=from_currency,
            to_currency=to_currency,
            error_message=error_message,
        ))

    async def log_hook_failed(
        self,
        task_name: str,
        error_message: str,
        owner_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.hook_failed(
            task_name=task_name,
            error_message=error_message,
            owner_id=owner_id,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a sweep or a hook run.
    Pass it through all subsequent operations.
    """
    return uuid4()
