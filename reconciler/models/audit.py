"""
Audit Models for the Reconciliation Engine

Every significant engine action is recorded as an audit event:
sweeps, notification decisions, goal credits and swallowed failures.
This provides:
1. Traceability of why a notification exists (or was suppressed)
2. Debugging information for per-entity failures that do not abort a sweep
3. A record of every automatic change to goal balances

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from reconciler.models.finance import utcnow


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Grouped by the engine component that emits them.
    """
    # Sweeps (scheduler and hook-scoped runs)
    SWEEP_STARTED = "sweep_started"
    SWEEP_COMPLETED = "sweep_completed"
    SWEEP_SKIPPED = "sweep_skipped"
    SWEEP_FAILED = "sweep_failed"
    ENTITY_EVALUATION_FAILED = "entity_evaluation_failed"

    # Notifications
    NOTIFICATION_CREATED = "notification_created"
    NOTIFICATION_SUPPRESSED = "notification_suppressed"
    NOTIFICATION_RACE_LOST = "notification_race_lost"
    NOTIFICATION_READ = "notification_read"
    NOTIFICATIONS_PRUNED = "notifications_pruned"
    PRUNE_FAILED = "prune_failed"

    # Goals
    ALLOCATION_APPLIED = "allocation_applied"
    ALLOCATION_FAILED = "allocation_failed"

    # Transaction creation
    TRANSACTION_RECORDED = "transaction_recorded"
    CURRENCY_FALLBACK = "currency_fallback"
    HOOK_FAILED = "hook_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'budget', 'goal', 'notification')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    owner_id: Optional[str] = Field(
        default=None,
        description="User the entity belongs to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one sweep)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "owner_id": self.owner_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         owner_id, correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            self.owner_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.sweep_started(correlation_id, scope)
        event = AuditEventBuilder.notification_created(notification, correlation_id)
    """

    @staticmethod
    def sweep_started(
        correlation_id: UUID,
        now: datetime,
        owner_id: Optional[str] = None,
        category: Optional[str] = None,
    ) -> AuditEvent:
        scope = "all users" if owner_id is None else f"owner {owner_id}"
        return AuditEvent(
            event_type=AuditEventType.SWEEP_STARTED,
            entity_type="sweep",
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"Reconciliation started for {scope}",
            details={
                "now": now.isoformat(),
                "category": category,
            },
        )

    @staticmethod
    def sweep_completed(
        correlation_id: UUID,
        summary: dict[str, Any],
        owner_id: Optional[str] = None,
    ) -> AuditEvent:
        failures = summary.get("failures", 0)
        return AuditEvent(
            event_type=AuditEventType.SWEEP_COMPLETED,
            severity=AuditSeverity.WARNING if failures else AuditSeverity.INFO,
            entity_type="sweep",
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=(
                f"Reconciliation completed: {summary.get('notifications_created', 0)} "
                f"notifications, {failures} failures"
            ),
            details=summary,
        )

    @staticmethod
    def sweep_skipped(scheduled_at: datetime) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SWEEP_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type="sweep",
            description="Scheduled sweep skipped: previous sweep still running",
            details={
                "scheduled_at": scheduled_at.isoformat(),
            },
        )

    @staticmethod
    def sweep_failed(
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SWEEP_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="sweep",
            correlation_id=correlation_id,
            description="Reconciliation sweep failed",
            error_message=error_message,
        )

    @staticmethod
    def entity_evaluation_failed(
        entity_type: str,
        entity_id: UUID,
        owner_id: Optional[str],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTITY_EVALUATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type=entity_type,
            entity_id=entity_id,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"Failed to evaluate {entity_type} {entity_id}",
            error_message=error_message,
        )

    @staticmethod
    def notification_created(
        notification_id: UUID,
        owner_id: str,
        notification_type: str,
        dedup_key: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_CREATED,
            entity_type="notification",
            entity_id=notification_id,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"Notification created: {notification_type}",
            details={
                "dedup_key": dedup_key,
            },
        )

    @staticmethod
    def notification_suppressed(
        owner_id: str,
        notification_type: str,
        dedup_key: str,
        race_lost: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        if race_lost:
            return AuditEvent(
                event_type=AuditEventType.NOTIFICATION_RACE_LOST,
                severity=AuditSeverity.WARNING,
                entity_type="notification",
                owner_id=owner_id,
                correlation_id=correlation_id,
                description=f"Concurrent insert already created {notification_type}",
                details={
                    "dedup_key": dedup_key,
                },
            )
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_SUPPRESSED,
            severity=AuditSeverity.DEBUG,
            entity_type="notification",
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"Duplicate {notification_type} suppressed",
            details={
                "dedup_key": dedup_key,
            },
        )

    @staticmethod
    def notification_read(
        notification_id: UUID,
        owner_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_READ,
            entity_type="notification",
            entity_id=notification_id,
            owner_id=owner_id,
            description="Notification marked as read",
        )

    @staticmethod
    def notifications_pruned(
        deleted: int,
        cutoff: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATIONS_PRUNED,
            entity_type="notification",
            correlation_id=correlation_id,
            description=f"Pruned {deleted} notifications older than {cutoff.date().isoformat()}",
            details={
                "deleted": deleted,
                "cutoff": cutoff.isoformat(),
            },
        )

    @staticmethod
    def prune_failed(
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PRUNE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="notification",
            correlation_id=correlation_id,
            description="Notification retention sweep failed",
            error_message=error_message,
        )

    @staticmethod
    def allocation_applied(
        goal_id: UUID,
        owner_id: str,
        amount: Decimal,
        previous_percentage: Decimal,
        new_percentage: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALLOCATION_APPLIED,
            entity_type="goal",
            entity_id=goal_id,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"Allocated {amount} to goal",
            details={
                "amount": str(amount),
                "previous_percentage": f"{previous_percentage:.2f}",
                "new_percentage": f"{new_percentage:.2f}",
            },
        )

    @staticmethod
    def allocation_failed(
        goal_id: UUID,
        owner_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALLOCATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="goal",
            entity_id=goal_id,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description="Failed to allocate income to goal",
            error_message=error_message,
        )

    @staticmethod
    def transaction_recorded(
        transaction_id: UUID,
        owner_id: str,
        transaction_type: str,
        amount: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_RECORDED,
            entity_type="transaction",
            entity_id=transaction_id,
            owner_id=owner_id,
            description=f"Transaction recorded: {transaction_type} {amount}",
            details={
                "type": transaction_type,
                "amount": str(amount),
            },
        )

    @staticmethod
    def currency_fallback(
        from_currency: str,
        to_currency: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CURRENCY_FALLBACK,
            severity=AuditSeverity.WARNING,
            description=f"Conversion {from_currency}->{to_currency} degraded to rate 1.0",
            error_message=error_message,
            details={
                "from_currency": from_currency,
                "to_currency": to_currency,
            },
        )

    @staticmethod
    def hook_failed(
        task_name: str,
        error_message: str,
        owner_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.HOOK_FAILED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"Background task failed: {task_name}",
            error_message=error_message,
            details={
                "task": task_name,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
