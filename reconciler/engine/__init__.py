"""Reconciliation and notification engine."""

from reconciler.engine.allocation import (
    AllocationEngine,
    AllocationResult,
    AllocationSummary,
)
from reconciler.engine.deduplicator import NotificationDeduplicator
from reconciler.engine.hook import BackgroundDispatcher, TransactionHook
from reconciler.engine.milestones import (
    MILESTONES,
    MilestoneEvaluator,
    crossed_milestones,
)
from reconciler.engine.reconciliation import (
    ReconciliationEngine,
    ReconciliationReport,
)
from reconciler.engine.recurrence import (
    RecurrenceClassification,
    RecurrenceEvaluator,
    RecurrenceMonitor,
    occurrence_at,
    parse_recurrence_pattern,
)
from reconciler.engine.scheduler import ReconciliationScheduler
from reconciler.engine.thresholds import (
    AdjustmentDirection,
    BudgetMonitor,
    BudgetStatus,
    ThresholdBand,
    ThresholdEvaluator,
    band_for,
    days_remaining,
    recommend_adjustment,
)

__all__ = [
    # Recurrence
    "RecurrenceClassification",
    "RecurrenceEvaluator",
    "RecurrenceMonitor",
    "occurrence_at",
    "parse_recurrence_pattern",
    # Thresholds
    "AdjustmentDirection",
    "BudgetMonitor",
    "BudgetStatus",
    "ThresholdBand",
    "ThresholdEvaluator",
    "band_for",
    "days_remaining",
    "recommend_adjustment",
    # Goals
    "AllocationEngine",
    "AllocationResult",
    "AllocationSummary",
    "MILESTONES",
    "MilestoneEvaluator",
    "crossed_milestones",
    # Notifications
    "NotificationDeduplicator",
    # Triggers
    "BackgroundDispatcher",
    "ReconciliationEngine",
    "ReconciliationReport",
    "ReconciliationScheduler",
    "TransactionHook",
]
