"""
Budget Threshold Evaluation

Spend for a budget is the sum of base-currency amounts of the owner's
expense transactions inside the budget window, restricted to the budget
category (case-insensitive) unless the budget is general.

Bands:
- [80, 90)   budget_warning "80"
- [90, 100)  budget_warning "90"
- [100, inf) budget_exceeded

Each band is proposed on every run while spend sits in it; the
deduplicator turns that into a single notification per band.

Adjustment recommendations share one dedup scope per budget with a
rolling window, so at most one recommendation (increase or decrease)
is made per window.
"""

import math
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from reconciler.config import ReconciliationSettings, get_settings
from reconciler.engine.deduplicator import NotificationDeduplicator
from reconciler.models.finance import Budget
from reconciler.models.notification import (
    DedupKey,
    NotificationCandidate,
    NotificationRefs,
    NotificationType,
)
from reconciler.services.storage import TransactionStorageInterface


ADJUSTMENT_DISCRIMINATOR = "adjustment"


class ThresholdBand(str, Enum):
    """Percentage-of-budget bands, each notified once."""
    WARNING_80 = "80"
    WARNING_90 = "90"
    EXCEEDED = "exceeded"


class AdjustmentDirection(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"


def band_for(percentage_spent: Decimal) -> Optional[ThresholdBand]:
    if percentage_spent >= 100:
        return ThresholdBand.EXCEEDED
    if percentage_spent >= 90:
        return ThresholdBand.WARNING_90
    if percentage_spent >= 80:
        return ThresholdBand.WARNING_80
    return None


def days_remaining(end_date: datetime, now: datetime) -> int:
    """Whole days until end_date, rounded up. Negative once the window has ended."""
    return math.ceil((end_date - now).total_seconds() / 86400)


def recommend_adjustment(
    percentage_spent: Decimal,
    remaining_days: int,
    settings: ReconciliationSettings,
) -> Optional[AdjustmentDirection]:
    """
    Recommend a budget change, increase first.

    Increase when spend is at or above the increase threshold; otherwise
    decrease when spend is below the decrease threshold and the window
    is nearly over.
    """
    if percentage_spent >= settings.adjustment_increase_percent:
        return AdjustmentDirection.INCREASE
    if (
        percentage_spent < settings.adjustment_decrease_percent
        and remaining_days <= settings.adjustment_decrease_days_remaining
    ):
        return AdjustmentDirection.DECREASE
    return None


class BudgetStatus(BaseModel):
    """Evaluated state of one budget at one instant."""

    budget_id: UUID
    spent: Decimal
    percentage_spent: Decimal
    band: Optional[ThresholdBand] = None
    days_remaining: int
    adjustment: Optional[AdjustmentDirection] = None


def _format_percent(value: Decimal) -> str:
    return f"{value.quantize(Decimal('0.1'))}%"


class ThresholdEvaluator:
    """Computes bands and adjustment recommendations for a budget."""

    def __init__(self, settings: Optional[ReconciliationSettings] = None):
        self._settings = settings or get_settings().reconciliation

    def evaluate(self, budget: Budget, spent: Decimal, now: datetime) -> BudgetStatus:
        percentage_spent = spent / budget.amount * 100
        remaining = days_remaining(budget.end_date, now)
        return BudgetStatus(
            budget_id=budget.id,
            spent=spent,
            percentage_spent=percentage_spent,
            band=band_for(percentage_spent),
            days_remaining=remaining,
            adjustment=recommend_adjustment(percentage_spent, remaining, self._settings),
        )

    def candidates(
        self,
        budget: Budget,
        status: BudgetStatus,
        now: datetime,
    ) -> list[NotificationCandidate]:
        """Notification candidates for a budget status, band first."""
        results = []
        refs = NotificationRefs(budget_id=budget.id)
        label = budget.display_category
        spent_text = _format_percent(status.percentage_spent)

        if status.band == ThresholdBand.EXCEEDED:
            results.append(NotificationCandidate(
                key=DedupKey(
                    owner_id=budget.owner_id,
                    type=NotificationType.BUDGET_EXCEEDED,
                    reference_id=budget.id,
                    discriminator="100",
                ),
                message=(
                    f"You have exceeded your {label} budget: "
                    f"{status.spent} spent of {budget.amount} ({spent_text})."
                ),
                refs=refs,
            ))
        elif status.band is not None:
            results.append(NotificationCandidate(
                key=DedupKey(
                    owner_id=budget.owner_id,
                    type=NotificationType.BUDGET_WARNING,
                    reference_id=budget.id,
                    discriminator=status.band.value,
                ),
                message=(
                    f"You have used {status.band.value}% of your {label} budget "
                    f"({status.spent} of {budget.amount}, {spent_text})."
                ),
                refs=refs,
            ))

        if status.adjustment == AdjustmentDirection.INCREASE:
            message = (
                f"Your {label} spending is at {spent_text} of budget. "
                f"Consider increasing this budget."
            )
        elif status.adjustment == AdjustmentDirection.DECREASE:
            message = (
                f"Only {spent_text} of your {label} budget is used with "
                f"{max(status.days_remaining, 0)} day(s) left. Consider decreasing this budget."
            )
        else:
            return results

        results.append(NotificationCandidate(
            key=DedupKey(
                owner_id=budget.owner_id,
                type=NotificationType.BUDGET_ADJUSTMENT,
                reference_id=budget.id,
                discriminator=ADJUSTMENT_DISCRIMINATOR,
                day=now.date(),
            ),
            message=message,
            refs=refs,
            window=self._settings.adjustment_window,
        ))
        return results


class BudgetMonitor:
    """Loads spend for a budget and proposes its notifications."""

    def __init__(
        self,
        transactions: TransactionStorageInterface,
        deduplicator: NotificationDeduplicator,
        evaluator: Optional[ThresholdEvaluator] = None,
    ):
        self._transactions = transactions
        self._deduplicator = deduplicator
        self._evaluator = evaluator or ThresholdEvaluator()

    async def budget_status(self, budget: Budget, now: datetime) -> BudgetStatus:
        spent = await self._transactions.sum_expenses(
            owner_id=budget.owner_id,
            date_from=budget.start_date,
            date_to=budget.end_date,
            category=budget.category,
        )
        return self._evaluator.evaluate(budget, spent, now)

    async def check_budget(
        self,
        budget: Budget,
        now: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Evaluate one budget.

        Returns:
            Number of notifications created
        """
        status = await self.budget_status(budget, now)
        created = 0
        for candidate in self._evaluator.candidates(budget, status, now):
            if await self._deduplicator.propose_notification(candidate, now, correlation_id):
                created += 1
        return created
