"""
In-Memory Storage Implementation

Implements every storage interface on plain dictionaries. Used for tests
and for running the engine without a configured backend.

All mutations happen under a single asyncio.Lock, which gives
credit_goal its atomicity and insert_notification its uniqueness check
without a check-then-insert gap. Records are copied on the way in and out
so callers never share state with the store.
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from reconciler.models.audit import AuditEvent
from reconciler.models.finance import (
    Budget,
    Goal,
    Transaction,
    TransactionType,
    utcnow,
)
from reconciler.models.notification import Notification
from reconciler.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    DuplicateError,
    GoalStorageInterface,
    NotFoundError,
    NotificationStorageInterface,
    TransactionStorageInterface,
)


class InMemoryStorage(
    TransactionStorageInterface,
    BudgetStorageInterface,
    GoalStorageInterface,
    NotificationStorageInterface,
    AuditStorageInterface,
):
    """Dictionary-backed implementation of all storage interfaces."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._transactions: dict[UUID, Transaction] = {}
        self._budgets: dict[UUID, Budget] = {}
        self._goals: dict[UUID, Goal] = {}
        self._notifications: dict[UUID, Notification] = {}
        self._audit_events: list[AuditEvent] = []

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def insert_transaction(self, transaction: Transaction) -> Transaction:
        async with self._lock:
            if transaction.id in self._transactions:
                raise DuplicateError(f"Transaction already exists: {transaction.id}")
            self._transactions[transaction.id] = transaction.model_copy(deep=True)
        return transaction.model_copy(deep=True)

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        transaction = self._transactions.get(transaction_id)
        return transaction.model_copy(deep=True) if transaction else None

    async def list_transactions(
        self,
        owner_id: str,
        transaction_type: Optional[TransactionType] = None,
        category: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        exclude_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        results = []
        for transaction in self._transactions.values():
            if transaction.owner_id != owner_id:
                continue
            if transaction_type and transaction.type != transaction_type:
                continue
            if category and not transaction.matches_category(category):
                continue
            if date_from and transaction.transaction_date < date_from:
                continue
            if date_to and transaction.transaction_date > date_to:
                continue
            if exclude_id and transaction.id == exclude_id:
                continue
            results.append(transaction.model_copy(deep=True))

        results.sort(key=lambda t: (t.transaction_date, t.created_at))
        return results

    async def list_recurring_transactions(
        self,
        owner_id: Optional[str] = None,
    ) -> list[Transaction]:
        return [
            transaction.model_copy(deep=True)
            for transaction in self._transactions.values()
            if transaction.recurring
            and (owner_id is None or transaction.owner_id == owner_id)
        ]

    async def sum_expenses(
        self,
        owner_id: str,
        date_from: datetime,
        date_to: datetime,
        category: Optional[str] = None,
    ) -> Decimal:
        expenses = await self.list_transactions(
            owner_id=owner_id,
            transaction_type=TransactionType.EXPENSE,
            category=category,
            date_from=date_from,
            date_to=date_to,
        )
        return sum((t.effective_amount for t in expenses), Decimal("0"))

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    async def insert_budget(self, budget: Budget) -> Budget:
        async with self._lock:
            for existing in self._budgets.values():
                if existing.overlaps(budget):
                    raise DuplicateError(
                        "A budget with the same category and overlapping period "
                        f"already exists: {existing.id}"
                    )
            self._budgets[budget.id] = budget.model_copy(deep=True)
        return budget.model_copy(deep=True)

    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        budget = self._budgets.get(budget_id)
        return budget.model_copy(deep=True) if budget else None

    async def delete_budget(self, budget_id: UUID) -> bool:
        async with self._lock:
            return self._budgets.pop(budget_id, None) is not None

    async def list_active_budgets(
        self,
        now: datetime,
        owner_id: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[Budget]:
        results = []
        for budget in self._budgets.values():
            if owner_id is not None and budget.owner_id != owner_id:
                continue
            if not budget.is_active(now):
                continue
            if category is not None and not budget.covers_category(category):
                continue
            results.append(budget.model_copy(deep=True))

        results.sort(key=lambda b: (b.start_date, str(b.id)))
        return results

    # -------------------------------------------------------------------------
    # Goals
    # -------------------------------------------------------------------------

    async def insert_goal(self, goal: Goal) -> Goal:
        async with self._lock:
            if goal.id in self._goals:
                raise DuplicateError(f"Goal already exists: {goal.id}")
            self._goals[goal.id] = goal.model_copy(deep=True)
        return goal.model_copy(deep=True)

    async def get_goal(self, goal_id: UUID) -> Optional[Goal]:
        goal = self._goals.get(goal_id)
        return goal.model_copy(deep=True) if goal else None

    async def update_goal(self, goal: Goal) -> Goal:
        async with self._lock:
            if goal.id not in self._goals:
                raise NotFoundError(f"Goal not found: {goal.id}")
            self._goals[goal.id] = goal.model_copy(update={"updated_at": utcnow()}, deep=True)
            return self._goals[goal.id].model_copy(deep=True)

    async def list_auto_allocation_goals(self, owner_id: str) -> list[Goal]:
        goals = [
            goal.model_copy(deep=True)
            for goal in self._goals.values()
            if goal.owner_id == owner_id and goal.auto_allocation
        ]
        goals.sort(key=lambda g: (g.created_at, str(g.id)))
        return goals

    async def credit_goal(
        self,
        goal_id: UUID,
        amount: Decimal,
        savings_transaction: Transaction,
    ) -> tuple[Goal, Goal]:
        async with self._lock:
            before = self._goals.get(goal_id)
            if before is None:
                raise NotFoundError(f"Goal not found: {goal_id}")
            if savings_transaction.id in self._transactions:
                raise DuplicateError(f"Transaction already exists: {savings_transaction.id}")

            after = before.model_copy(
                update={
                    "current_amount": before.current_amount + amount,
                    "updated_at": utcnow(),
                },
                deep=True,
            )
            # Both writes happen with the lock held; nothing can fail in between.
            self._goals[goal_id] = after
            self._transactions[savings_transaction.id] = savings_transaction.model_copy(deep=True)

            return before.model_copy(deep=True), after.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    async def insert_notification(self, notification: Notification) -> Notification:
        async with self._lock:
            for existing in self._notifications.values():
                if existing.dedup_key == notification.dedup_key:
                    raise DuplicateError(
                        f"Notification already exists for key: {notification.dedup_key}"
                    )
            self._notifications[notification.id] = notification.model_copy(deep=True)
        return notification.model_copy(deep=True)

    async def notification_exists(
        self,
        dedup_key: Optional[str] = None,
        dedup_scope: Optional[str] = None,
        created_since: Optional[datetime] = None,
    ) -> bool:
        for notification in self._notifications.values():
            if dedup_key is not None and notification.dedup_key != dedup_key:
                continue
            if dedup_scope is not None and notification.dedup_scope != dedup_scope:
                continue
            if created_since is not None and notification.created_at < created_since:
                continue
            return True
        return False

    async def get_notification(self, notification_id: UUID) -> Optional[Notification]:
        notification = self._notifications.get(notification_id)
        return notification.model_copy(deep=True) if notification else None

    async def update_notification(self, notification: Notification) -> Notification:
        async with self._lock:
            if notification.id not in self._notifications:
                raise NotFoundError(f"Notification not found: {notification.id}")
            self._notifications[notification.id] = notification.model_copy(deep=True)
        return notification.model_copy(deep=True)

    async def list_notifications(
        self,
        owner_id: str,
        include_read: bool = False,
    ) -> list[Notification]:
        results = [
            notification.model_copy(deep=True)
            for notification in self._notifications.values()
            if notification.owner_id == owner_id
            and (include_read or not notification.is_read)
        ]
        results.sort(key=lambda n: n.created_at, reverse=True)
        return results

    async def list_notifications_created_before(
        self,
        cutoff: datetime,
    ) -> list[Notification]:
        return [
            notification.model_copy(deep=True)
            for notification in self._notifications.values()
            if notification.created_at < cutoff
        ]

    async def delete_notifications(self, notification_ids: Iterable[UUID]) -> int:
        deleted = 0
        async with self._lock:
            for notification_id in notification_ids:
                if self._notifications.pop(notification_id, None) is not None:
                    deleted += 1
        return deleted

    # -------------------------------------------------------------------------
    # Audit log
    # -------------------------------------------------------------------------

    async def append_event(self, event: AuditEvent) -> bool:
        self._audit_events.append(event.model_copy(deep=True))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._audit_events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._audit_events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
