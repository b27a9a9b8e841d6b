"""
Notification Deduplicator

CRITICAL: This is the only path by which notifications are written.
Every evaluator hands its candidates to propose_notification(), which
performs an existence check on the candidate's dedup key before inserting.

Two triggers (the periodic sweep and the transaction hook) can race past
the existence check together. The storage layer enforces uniqueness of
the dedup key, so the losing insert raises DuplicateError and is treated
exactly like a suppressed duplicate.

Retention pruning also lives here: old notifications are deleted unless
they still point at a currently active budget or their key is still live.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional
from uuid import UUID

from reconciler.audit import AuditLogger
from reconciler.models.notification import Notification, NotificationCandidate
from reconciler.services.storage import (
    BudgetStorageInterface,
    DuplicateError,
    NotificationStorageInterface,
)


DEFAULT_RETENTION = timedelta(days=30)


class NotificationDeduplicator:
    """
    Gate between evaluators and notification storage.

    Repeated proposals of the same candidate are no-ops.
    """

    def __init__(
        self,
        notifications: NotificationStorageInterface,
        budgets: BudgetStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        retention: timedelta = DEFAULT_RETENTION,
    ):
        """
        Initialize the deduplicator.

        Args:
            notifications: Notification storage (enforces dedup_key uniqueness)
            budgets: Budget storage, consulted by prune()
            audit_logger: Optional audit logger
            retention: Minimum age before a notification may be pruned
        """
        self._notifications = notifications
        self._budgets = budgets
        self._audit = audit_logger or AuditLogger()
        self._retention = retention

    async def _already_notified(
        self,
        candidate: NotificationCandidate,
        now: datetime,
    ) -> bool:
        key = candidate.key
        if candidate.window is not None:
            # Any notification in the same scope inside the window counts,
            # whatever its day bucket.
            return await self._notifications.notification_exists(
                dedup_scope=key.scope,
                created_since=now - candidate.window,
            )
        return await self._notifications.notification_exists(dedup_key=key.value)

    async def propose_notification(
        self,
        candidate: NotificationCandidate,
        now: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Persist the candidate unless an equivalent notification exists.

        Args:
            candidate: Notification proposed by an evaluator
            now: Creation timestamp to record
            correlation_id: Ties audit events to the current run

        Returns:
            True if a notification was written, False if suppressed
        """
        dedup_key = candidate.key.value

        if await self._already_notified(candidate, now):
            await self._audit.log_notification_suppressed(
                owner_id=candidate.owner_id,
                notification_type=candidate.type.value,
                dedup_key=dedup_key,
                correlation_id=correlation_id,
            )
            return False

        notification = Notification.from_candidate(candidate, created_at=now)
        try:
            await self._notifications.insert_notification(notification)
        except DuplicateError:
            # Another trigger inserted the same key after our check
            await self._audit.log_notification_suppressed(
                owner_id=candidate.owner_id,
                notification_type=candidate.type.value,
                dedup_key=dedup_key,
                race_lost=True,
                correlation_id=correlation_id,
            )
            return False

        await self._audit.log_notification_created(
            notification_id=notification.id,
            owner_id=notification.owner_id,
            notification_type=notification.type.value,
            dedup_key=dedup_key,
            correlation_id=correlation_id,
        )
        return True

    async def prune(
        self,
        now: datetime,
        correlation_id: Optional[UUID] = None,
        keep_keys: Iterable[str] = (),
    ) -> int:
        """
        Delete expired notifications.

        A notification is expired when it is older than the retention
        window AND its budget is not among the currently active budgets.
        Notifications without a budget reference have no active budget
        and expire by age alone.

        Args:
            now: Evaluation instant
            correlation_id: Ties audit events to the current run
            keep_keys: Dedup keys that are still proposable and must not
                be deleted (e.g. a missed occurrence not yet superseded)

        Returns:
            Number of notifications deleted
        """
        cutoff = now - self._retention
        stale = await self._notifications.list_notifications_created_before(cutoff)
        if not stale:
            return 0

        active_budgets = await self._budgets.list_active_budgets(now)
        active_ids = {budget.id for budget in active_budgets}
        live = set(keep_keys)

        expired = [
            notification.id
            for notification in stale
            if notification.dedup_key not in live
            and (notification.budget_id is None or notification.budget_id not in active_ids)
        ]
        if not expired:
            return 0

        deleted = await self._notifications.delete_notifications(expired)
        await self._audit.log_notifications_pruned(
            deleted=deleted,
            cutoff=cutoff,
            correlation_id=correlation_id,
        )
        return deleted
