"""
Recurring Transaction Evaluation

A recurring transaction is its own series definition: its date is the
anchor, its recurrence_pattern the period and its id the series identity.
Occurrences are derived on every run; nothing about the series is stored.

Classifications for a given "today":
- due_today: the next occurrence is today
- reminder: the next occurrence is tomorrow
- missed: the most recent occurrence strictly before today

DESIGN DECISION: "missed" is emitted once per occurrence date, for the
single most recent occurrence only. RecurrenceMonitor suppresses it when
the occurrence was reconciled, i.e. another transaction with the same
owner, type and category was logged on that day.
"""

from datetime import date, datetime, time, timedelta
from typing import Optional
from uuid import UUID

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel

from reconciler.engine.deduplicator import NotificationDeduplicator
from reconciler.models.finance import RecurrencePattern, Transaction
from reconciler.models.notification import (
    DedupKey,
    NotificationCandidate,
    NotificationRefs,
    NotificationType,
)
from reconciler.services.storage import TransactionStorageInterface


_FIXED_STEPS = {
    RecurrencePattern.DAILY: timedelta(days=1),
    RecurrencePattern.WEEKLY: timedelta(days=7),
}


def parse_recurrence_pattern(value: Optional[str]) -> Optional[RecurrencePattern]:
    """Map free-form pattern text to a known pattern, or None."""
    if not value:
        return None
    try:
        return RecurrencePattern(value.strip().lower())
    except ValueError:
        return None


def occurrence_at(anchor: date, pattern: RecurrencePattern, k: int) -> date:
    """
    The k-th occurrence of a series (k=0 is the anchor).

    Monthly occurrences are computed from the anchor, not from the
    previous occurrence, so a Jan 31 anchor gives Feb 28/29 then Mar 31.
    """
    if pattern == RecurrencePattern.MONTHLY:
        return anchor + relativedelta(months=k)
    return anchor + _FIXED_STEPS[pattern] * k


def next_occurrence_index(anchor: date, pattern: RecurrencePattern, today: date) -> int:
    """Smallest k whose occurrence falls on or after today."""
    if today <= anchor:
        return 0

    if pattern == RecurrencePattern.MONTHLY:
        k = (today.year - anchor.year) * 12 + (today.month - anchor.month)
    else:
        step_days = _FIXED_STEPS[pattern].days
        k = (today - anchor).days // step_days

    while occurrence_at(anchor, pattern, k) < today:
        k += 1
    return k


class RecurrenceClassification(BaseModel):
    """One classification of a series relative to today."""

    kind: NotificationType
    occurrence: date


class RecurrenceEvaluator:
    """Pure date arithmetic over a recurring series."""

    def classify(
        self,
        anchor: date,
        pattern: Optional[str],
        today: date,
        end_date: Optional[date] = None,
    ) -> list[RecurrenceClassification]:
        """
        Classify a series for today.

        Args:
            anchor: Date of the recurring transaction
            pattern: Free-form recurrence pattern; unknown values yield nothing
            today: Evaluation date
            end_date: Last date the series may occur on

        Returns:
            Zero or more classifications, each with its occurrence date
        """
        recurrence = parse_recurrence_pattern(pattern)
        if recurrence is None:
            return []
        if end_date is not None and end_date < today:
            return []

        results = []
        k = next_occurrence_index(anchor, recurrence, today)
        upcoming = occurrence_at(anchor, recurrence, k)

        if end_date is None or upcoming <= end_date:
            if upcoming == today:
                results.append(RecurrenceClassification(
                    kind=NotificationType.DUE_TODAY,
                    occurrence=upcoming,
                ))
            elif upcoming == today + timedelta(days=1):
                results.append(RecurrenceClassification(
                    kind=NotificationType.REMINDER,
                    occurrence=upcoming,
                ))

        if k > 0:
            results.append(RecurrenceClassification(
                kind=NotificationType.MISSED,
                occurrence=occurrence_at(anchor, recurrence, k - 1),
            ))

        return results


def build_recurrence_message(
    kind: NotificationType,
    transaction: Transaction,
    occurrence: date,
) -> str:
    """Notification text for one classification of a series."""
    if kind == NotificationType.DUE_TODAY:
        return f"Your recurring transaction ({transaction.category}) is due today."
    if kind == NotificationType.REMINDER:
        return (
            f"Reminder: your recurring transaction ({transaction.category}) "
            f"is due tomorrow, {occurrence.isoformat()}."
        )
    return (
        f"You missed a recurring transaction ({transaction.category}) "
        f"due on {occurrence.isoformat()}."
    )


class RecurrenceMonitor:
    """
    Turns series classifications into notifications.

    Owns the one storage-dependent rule: a missed occurrence is ignored
    when a matching transaction was logged that day.
    """

    def __init__(
        self,
        transactions: TransactionStorageInterface,
        deduplicator: NotificationDeduplicator,
        evaluator: Optional[RecurrenceEvaluator] = None,
    ):
        self._transactions = transactions
        self._deduplicator = deduplicator
        self._evaluator = evaluator or RecurrenceEvaluator()

    async def is_reconciled(self, transaction: Transaction, occurrence: date) -> bool:
        """Was another matching transaction logged on the occurrence date?"""
        matches = await self._transactions.list_transactions(
            owner_id=transaction.owner_id,
            transaction_type=transaction.type,
            category=transaction.category,
            date_from=datetime.combine(occurrence, time.min),
            date_to=datetime.combine(occurrence, time.max),
            exclude_id=transaction.id,
        )
        return len(matches) > 0

    def build_candidate(
        self,
        transaction: Transaction,
        classification: RecurrenceClassification,
    ) -> NotificationCandidate:
        return NotificationCandidate(
            key=DedupKey(
                owner_id=transaction.owner_id,
                type=classification.kind,
                reference_id=transaction.id,
                day=classification.occurrence,
            ),
            message=build_recurrence_message(
                classification.kind, transaction, classification.occurrence
            ),
            refs=NotificationRefs(transaction_id=transaction.id),
        )

    def classify_transaction(
        self,
        transaction: Transaction,
        now: datetime,
    ) -> list[RecurrenceClassification]:
        if not transaction.recurring:
            return []
        end_date = transaction.recurrence_end_date
        return self._evaluator.classify(
            anchor=transaction.transaction_date.date(),
            pattern=transaction.recurrence_pattern,
            today=now.date(),
            end_date=end_date.date() if end_date else None,
        )

    def live_keys(self, transactions: list[Transaction], now: datetime) -> set[str]:
        """
        Dedup keys the series would still propose today.

        Retention pruning keeps notifications under these keys. A missed
        occurrence stays live until the following occurrence replaces it.
        """
        keys = set()
        for transaction in transactions:
            for classification in self.classify_transaction(transaction, now):
                keys.add(self.build_candidate(transaction, classification).key.value)
        return keys

    async def check_transaction(
        self,
        transaction: Transaction,
        now: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Evaluate one recurring transaction.

        Returns:
            Number of notifications created
        """
        created = 0
        for classification in self.classify_transaction(transaction, now):
            if classification.kind == NotificationType.MISSED:
                if await self.is_reconciled(transaction, classification.occurrence):
                    continue
            candidate = self.build_candidate(transaction, classification)
            if await self._deduplicator.propose_notification(candidate, now, correlation_id):
                created += 1
        return created
