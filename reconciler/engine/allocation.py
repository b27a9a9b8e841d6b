"""
Income Allocation

When income arrives, a share of it is moved into each of the owner's
auto-allocation goals.

Ordering: goals are processed by created_at ascending, then id, as
returned by GoalStorageInterface.list_auto_allocation_goals().

Share per goal:
- percentage mode: total_income * percentage / 100 (always against the
  original income, never the shrinking remainder)
- fixed mode: allocation_amount, only while the remainder covers it
- capped at what remains; rounded down to cents

CRITICAL: Each credit goes through GoalStorageInterface.credit_goal(),
which writes the goal increment and its Auto-Savings transaction as one
unit. Credits to the same goal are additionally serialized per goal id.
"""

import asyncio
import weakref
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from reconciler.audit import AuditLogger
from reconciler.models.finance import (
    AUTO_SAVINGS_CATEGORY,
    AllocationMode,
    Goal,
    Transaction,
    TransactionType,
    utcnow,
)
from reconciler.services.storage import GoalStorageInterface


CENT = Decimal("0.01")


class AllocationResult(BaseModel):
    """One goal credit."""

    goal: Goal = Field(..., description="Goal state after the credit")
    amount: Decimal
    previous_percentage: Decimal
    new_percentage: Decimal
    savings_transaction_id: UUID


class AllocationSummary(BaseModel):
    """Outcome of allocating one income transaction."""

    income_transaction_id: UUID
    owner_id: str
    total_income: Decimal
    remaining: Decimal
    allocations: list[AllocationResult] = Field(default_factory=list)
    failed_goal_ids: list[UUID] = Field(default_factory=list)
    milestone_notifications: int = 0

    @property
    def total_allocated(self) -> Decimal:
        return sum((a.amount for a in self.allocations), Decimal("0"))


class AllocationEngine:
    """Distributes income across auto-allocation goals."""

    def __init__(
        self,
        goals: GoalStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        base_currency: str = "USD",
    ):
        self._goals = goals
        self._audit = audit_logger or AuditLogger()
        self._base_currency = base_currency
        # Entries disappear once no allocation holds or waits on the lock
        self._goal_locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, goal_id: UUID) -> asyncio.Lock:
        lock = self._goal_locks.get(goal_id)
        if lock is None:
            lock = asyncio.Lock()
            self._goal_locks[goal_id] = lock
        return lock

    @staticmethod
    def plan_share(goal: Goal, total_income: Decimal, remaining: Decimal) -> Decimal:
        """Amount this goal should receive, never more than remaining."""
        mode = goal.allocation_mode
        if mode == AllocationMode.PERCENTAGE:
            share = total_income * goal.allocation_percentage / 100
        elif mode == AllocationMode.FIXED and remaining >= goal.allocation_amount:
            share = goal.allocation_amount
        else:
            share = Decimal("0")

        share = min(share, remaining)
        return share.quantize(CENT, rounding=ROUND_DOWN)

    def _savings_transaction(
        self,
        income: Transaction,
        goal: Goal,
        amount: Decimal,
        now: datetime,
    ) -> Transaction:
        return Transaction(
            owner_id=income.owner_id,
            amount=amount,
            currency=self._base_currency,
            converted_amount=amount,
            type=TransactionType.SAVINGS,
            category=AUTO_SAVINGS_CATEGORY,
            description=f"Automatically saved for goal: {goal.name}",
            transaction_date=now,
            is_system_generated=True,
            created_at=now,
        )

    async def allocate(
        self,
        income: Transaction,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AllocationSummary:
        """
        Allocate an income transaction.

        A goal whose credit fails is audited and skipped; its share stays
        in the remainder for later goals.
        """
        now = now or utcnow()
        total_income = income.effective_amount
        summary = AllocationSummary(
            income_transaction_id=income.id,
            owner_id=income.owner_id,
            total_income=total_income,
            remaining=total_income,
        )
        if income.type != TransactionType.INCOME or total_income <= 0:
            return summary

        goals = await self._goals.list_auto_allocation_goals(income.owner_id)
        remaining = total_income

        for goal in goals:
            if remaining <= 0:
                break

            share = self.plan_share(goal, total_income, remaining)
            if share <= 0:
                continue

            savings = self._savings_transaction(income, goal, share, now)
            try:
                async with self._lock_for(goal.id):
                    before, after = await self._goals.credit_goal(goal.id, share, savings)
            except Exception as e:
                summary.failed_goal_ids.append(goal.id)
                await self._audit.log_allocation_failed(
                    goal_id=goal.id,
                    owner_id=goal.owner_id,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
                continue

            result = AllocationResult(
                goal=after,
                amount=share,
                previous_percentage=before.progress_percentage,
                new_percentage=after.progress_percentage,
                savings_transaction_id=savings.id,
            )
            summary.allocations.append(result)
            remaining -= share

            await self._audit.log_allocation_applied(
                goal_id=goal.id,
                owner_id=goal.owner_id,
                amount=share,
                previous_percentage=result.previous_percentage,
                new_percentage=result.new_percentage,
                correlation_id=correlation_id,
            )

        summary.remaining = remaining
        return summary
