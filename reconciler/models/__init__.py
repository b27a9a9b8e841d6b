"""
Data Models Package

This package contains all Pydantic models used by the reconciliation engine.
All data flowing through the engine must conform to these schemas.
"""

from reconciler.models.finance import (
    AUTO_SAVINGS_CATEGORY,
    GENERAL_CATEGORY_LABEL,
    AllocationMode,
    Budget,
    BudgetPeriod,
    ConversionResult,
    Goal,
    RecurrencePattern,
    Transaction,
    TransactionType,
    compute_budget_end_date,
    same_category,
    utcnow,
)
from reconciler.models.notification import (
    DedupKey,
    Notification,
    NotificationCandidate,
    NotificationRefs,
    NotificationType,
)
from reconciler.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Finance models
    "AUTO_SAVINGS_CATEGORY",
    "GENERAL_CATEGORY_LABEL",
    "AllocationMode",
    "Budget",
    "BudgetPeriod",
    "ConversionResult",
    "Goal",
    "RecurrencePattern",
    "Transaction",
    "TransactionType",
    "compute_budget_end_date",
    "same_category",
    "utcnow",
    # Notification models
    "DedupKey",
    "Notification",
    "NotificationCandidate",
    "NotificationRefs",
    "NotificationType",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
