"""
Reconciliation Engine

Single entry point shared by both triggers:
- The scheduler calls run_reconciliation(now) unscoped: prune, every
  recurring transaction, every active budget.
- The transaction hook calls it scoped to one owner (and category), which
  re-evaluates only the matching budgets, and calls handle_income() for
  income transactions.

ERROR HANDLING:
- One failing transaction or budget is audited and counted; the run goes on.
- A failing prune is audited and does not stop evaluation.
- Failures listing the entities themselves propagate to the caller.

Every evaluator proposes notifications through the same
NotificationDeduplicator, so a second run with unchanged data writes nothing.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from reconciler.audit import AuditLogger, create_correlation_id
from reconciler.config import ReconciliationSettings, get_settings
from reconciler.engine.allocation import AllocationEngine, AllocationSummary
from reconciler.engine.deduplicator import NotificationDeduplicator
from reconciler.engine.milestones import MilestoneEvaluator
from reconciler.engine.recurrence import RecurrenceMonitor
from reconciler.engine.thresholds import BudgetMonitor, ThresholdEvaluator
from reconciler.models.finance import Transaction, TransactionType, utcnow
from reconciler.models.notification import Notification
from reconciler.services.storage import (
    BudgetStorageInterface,
    GoalStorageInterface,
    NotFoundError,
    NotificationStorageInterface,
    TransactionStorageInterface,
)


class ReconciliationReport(BaseModel):
    """Counters for one reconciliation run."""

    correlation_id: UUID
    started_at: datetime
    finished_at: Optional[datetime] = None
    owner_id: Optional[str] = None
    category: Optional[str] = None

    recurring_checked: int = 0
    budgets_checked: int = 0
    notifications_created: int = 0
    pruned: int = 0
    prune_failed: bool = False
    failures: int = 0

    @property
    def scoped(self) -> bool:
        return self.owner_id is not None

    def summary(self) -> dict:
        return self.model_dump(mode="json", exclude={"correlation_id"})


class ReconciliationEngine:
    """
    Runs all evaluators against storage.

    Usage:
        engine = ReconciliationEngine(storage, storage, storage, storage)
        report = await engine.run_reconciliation()
    """

    def __init__(
        self,
        transactions: TransactionStorageInterface,
        budgets: BudgetStorageInterface,
        goals: GoalStorageInterface,
        notifications: NotificationStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[ReconciliationSettings] = None,
        base_currency: str = "USD",
    ):
        self._transactions = transactions
        self._budgets = budgets
        self._notifications = notifications
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().reconciliation

        self._deduplicator = NotificationDeduplicator(
            notifications=notifications,
            budgets=budgets,
            audit_logger=self._audit,
            retention=self._settings.retention_window,
        )
        self._recurrence = RecurrenceMonitor(transactions, self._deduplicator)
        self._thresholds = BudgetMonitor(
            transactions,
            self._deduplicator,
            ThresholdEvaluator(self._settings),
        )
        self._allocation = AllocationEngine(goals, self._audit, base_currency)
        self._milestones = MilestoneEvaluator()

    @property
    def deduplicator(self) -> NotificationDeduplicator:
        return self._deduplicator

    @property
    def allocation(self) -> AllocationEngine:
        return self._allocation

    async def _prune(
        self,
        report: ReconciliationReport,
        now: datetime,
        recurring: list[Transaction],
    ) -> None:
        try:
            live_keys = self._recurrence.live_keys(recurring, now)
            report.pruned = await self._deduplicator.prune(
                now, report.correlation_id, keep_keys=live_keys
            )
        except Exception as e:
            report.prune_failed = True
            await self._audit.log_prune_failed(
                error_message=str(e),
                correlation_id=report.correlation_id,
            )

    async def _check_recurring(
        self,
        report: ReconciliationReport,
        now: datetime,
        recurring: list[Transaction],
    ) -> None:
        for transaction in recurring:
            report.recurring_checked += 1
            try:
                report.notifications_created += await self._recurrence.check_transaction(
                    transaction, now, report.correlation_id
                )
            except Exception as e:
                report.failures += 1
                await self._audit.log_entity_failed(
                    entity_type="transaction",
                    entity_id=transaction.id,
                    owner_id=transaction.owner_id,
                    error_message=str(e),
                    correlation_id=report.correlation_id,
                )

    async def _check_budgets(self, report: ReconciliationReport, now: datetime) -> None:
        budgets = await self._budgets.list_active_budgets(
            now,
            owner_id=report.owner_id,
            category=report.category,
        )
        for budget in budgets:
            report.budgets_checked += 1
            try:
                report.notifications_created += await self._thresholds.check_budget(
                    budget, now, report.correlation_id
                )
            except Exception as e:
                report.failures += 1
                await self._audit.log_entity_failed(
                    entity_type="budget",
                    entity_id=budget.id,
                    owner_id=budget.owner_id,
                    error_message=str(e),
                    correlation_id=report.correlation_id,
                )

    async def run_reconciliation(
        self,
        now: Optional[datetime] = None,
        owner_id: Optional[str] = None,
        category: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationReport:
        """
        Run one reconciliation pass.

        Args:
            now: Evaluation instant (defaults to the current UTC time)
            owner_id: Restrict to one owner's budgets (hook trigger)
            category: Restrict to budgets covering this category
            correlation_id: Reuse an existing correlation id

        Returns:
            ReconciliationReport with run counters
        """
        now = now or utcnow()
        report = ReconciliationReport(
            correlation_id=correlation_id or create_correlation_id(),
            started_at=now,
            owner_id=owner_id,
            category=category,
        )
        await self._audit.log_sweep_started(
            correlation_id=report.correlation_id,
            now=now,
            owner_id=owner_id,
            category=category,
        )

        if not report.scoped:
            recurring = await self._transactions.list_recurring_transactions()
            await self._prune(report, now, recurring)
            await self._check_recurring(report, now, recurring)
        await self._check_budgets(report, now)

        report.finished_at = utcnow()
        await self._audit.log_sweep_completed(
            correlation_id=report.correlation_id,
            summary=report.summary(),
            owner_id=owner_id,
        )
        return report

    async def handle_income(
        self,
        transaction: Transaction,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AllocationSummary:
        """Allocate an income transaction and report crossed goal milestones."""
        now = now or utcnow()
        if transaction.type != TransactionType.INCOME:
            raise ValueError(f"Expected an income transaction, got {transaction.type.value}")

        summary = await self._allocation.allocate(transaction, now, correlation_id)

        for result in summary.allocations:
            try:
                candidates = self._milestones.candidates(
                    result.goal,
                    result.previous_percentage,
                    result.new_percentage,
                )
                for candidate in candidates:
                    if await self._deduplicator.propose_notification(candidate, now, correlation_id):
                        summary.milestone_notifications += 1
            except Exception as e:
                await self._audit.log_entity_failed(
                    entity_type="goal",
                    entity_id=result.goal.id,
                    owner_id=result.goal.owner_id,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )

        return summary

    async def list_notifications(
        self,
        owner_id: str,
        include_read: bool = False,
    ) -> list[Notification]:
        """An owner's notifications, newest first."""
        return await self._notifications.list_notifications(owner_id, include_read)

    async def mark_read(self, notification_id: UUID, owner_id: str) -> Notification:
        """
        Mark a notification read.

        Raises:
            NotFoundError: If it does not exist or belongs to another owner
        """
        notification = await self._notifications.get_notification(notification_id)
        if notification is None or notification.owner_id != owner_id:
            raise NotFoundError(f"Notification not found: {notification_id}")

        if notification.is_read:
            return notification

        updated = await self._notifications.update_notification(
            notification.model_copy(update={"is_read": True})
        )
        await self._audit.log_notification_read(
            notification_id=updated.id,
            owner_id=owner_id,
        )
        return updated
