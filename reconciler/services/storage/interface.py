"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface per record type.
The engine only depends on these interfaces, which allows us to:
1. Run against Google Sheets or a real document store
2. Use in-memory storage for testing
3. Keep evaluation logic decoupled from storage implementation

The interface is intentionally small - we're not building a full ORM.
Just the queries, aggregates and writes the reconciliation engine needs.

Two operations carry stronger guarantees than plain CRUD:
- insert_notification enforces uniqueness of the dedup key
- credit_goal applies a goal increment and its audit transaction atomically
"""

from abc import ABC, abstractmethod
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
)
from reconciler.models.notification import Notification


class TransactionStorageInterface(ABC):
    """
    Abstract interface for transaction storage operations.
    """

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction) -> Transaction:
        """
        Save a transaction.

        Returns:
            The stored transaction

        Raises:
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        """Retrieve a transaction by its ID, or None."""
        pass

    @abstractmethod
    async def list_transactions(
        self,
        owner_id: str,
        transaction_type: Optional[TransactionType] = None,
        category: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        exclude_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        List an owner's transactions with optional filters.

        Args:
            owner_id: Owning user
            transaction_type: Filter by type
            category: Case-insensitive category match
            date_from: Transactions on or after this instant
            date_to: Transactions on or before this instant
            exclude_id: Leave this transaction out of the results

        Returns:
            Matching transactions, oldest first
        """
        pass

    @abstractmethod
    async def list_recurring_transactions(
        self,
        owner_id: Optional[str] = None,
    ) -> list[Transaction]:
        """
        List transactions flagged recurring.

        Args:
            owner_id: Restrict to one owner; None means all owners
        """
        pass

    @abstractmethod
    async def sum_expenses(
        self,
        owner_id: str,
        date_from: datetime,
        date_to: datetime,
        category: Optional[str] = None,
    ) -> Decimal:
        """
        Sum expense transactions in a window.

        Sums converted_amount, falling back to amount, over expense-type
        transactions dated within [date_from, date_to]. When category is
        given, only case-insensitively equal categories count.
        """
        pass


class BudgetStorageInterface(ABC):
    """
    Abstract interface for budget storage.
    """

    @abstractmethod
    async def insert_budget(self, budget: Budget) -> Budget:
        """
        Save a budget.

        Raises:
            DuplicateError: If an overlapping budget exists for the same
                            (owner, category, period)
        """
        pass

    @abstractmethod
    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        pass

    @abstractmethod
    async def delete_budget(self, budget_id: UUID) -> bool:
        """Delete a budget. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def list_active_budgets(
        self,
        now: datetime,
        owner_id: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[Budget]:
        """
        List budgets whose window contains now.

        Args:
            now: Reference instant
            owner_id: Restrict to one owner; None means all owners
            category: Only budgets that cover this category
                      (general budgets always do)
        """
        pass


class GoalStorageInterface(ABC):
    """
    Abstract interface for savings goal storage.
    """

    @abstractmethod
    async def insert_goal(self, goal: Goal) -> Goal:
        pass

    @abstractmethod
    async def get_goal(self, goal_id: UUID) -> Optional[Goal]:
        pass

    @abstractmethod
    async def update_goal(self, goal: Goal) -> Goal:
        """
        Replace a goal.

        Raises:
            NotFoundError: If goal doesn't exist
        """
        pass

    @abstractmethod
    async def list_auto_allocation_goals(self, owner_id: str) -> list[Goal]:
        """
        List an owner's goals with auto_allocation enabled.

        Returns:
            Goals ordered by created_at ascending, then id
        """
        pass

    @abstractmethod
    async def credit_goal(
        self,
        goal_id: UUID,
        amount: Decimal,
        savings_transaction: Transaction,
    ) -> tuple[Goal, Goal]:
        """
        Add amount to a goal and record its audit transaction, atomically.

        Either both the goal increment and the savings transaction are
        stored, or neither is.

        Returns:
            (goal_before, goal_after)

        Raises:
            NotFoundError: If goal doesn't exist
            StorageError: If the write fails
        """
        pass


class NotificationStorageInterface(ABC):
    """
    Abstract interface for notification storage.
    """

    @abstractmethod
    async def insert_notification(self, notification: Notification) -> Notification:
        """
        Save a notification.

        Raises:
            DuplicateError: If a notification with the same dedup_key exists
        """
        pass

    @abstractmethod
    async def notification_exists(
        self,
        dedup_key: Optional[str] = None,
        dedup_scope: Optional[str] = None,
        created_since: Optional[datetime] = None,
    ) -> bool:
        """
        Check for an existing notification.

        Args:
            dedup_key: Exact dedup key match
            dedup_scope: Scope match (any day bucket)
            created_since: Only consider notifications created at or after this
        """
        pass

    @abstractmethod
    async def get_notification(self, notification_id: UUID) -> Optional[Notification]:
        pass

    @abstractmethod
    async def update_notification(self, notification: Notification) -> Notification:
        """
        Replace a notification.

        Raises:
            NotFoundError: If notification doesn't exist
        """
        pass

    @abstractmethod
    async def list_notifications(
        self,
        owner_id: str,
        include_read: bool = False,
    ) -> list[Notification]:
        """List an owner's notifications, newest first."""
        pass

    @abstractmethod
    async def list_notifications_created_before(
        self,
        cutoff: datetime,
    ) -> list[Notification]:
        """List notifications (all owners) created strictly before cutoff."""
        pass

    @abstractmethod
    async def delete_notifications(self, notification_ids: Iterable[UUID]) -> int:
        """Delete notifications by ID. Returns the number deleted."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one sweep).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
