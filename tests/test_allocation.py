"""Tests for income allocation and goal milestones."""

import asyncio
import gc
import pytest
from decimal import Decimal

from reconciler.engine.allocation import AllocationEngine
from reconciler.engine.milestones import (
    MilestoneEvaluator,
    crossed_milestones,
    exceeded_target,
)
from reconciler.models.finance import (
    AUTO_SAVINGS_CATEGORY,
    TransactionType,
)
from reconciler.models.notification import NotificationType


def income(make_transaction, amount, **overrides):
    return make_transaction(
        amount=Decimal(amount),
        type=TransactionType.INCOME,
        category="Salary",
        **overrides,
    )


class TestPlanShare:
    """Tests for AllocationEngine.plan_share."""

    def test_percentage_uses_total_income(self, make_goal):
        """Test percentage shares are computed on the original income."""
        goal = make_goal(allocation_percentage=Decimal("40"))
        assert AllocationEngine.plan_share(goal, Decimal("1000"), Decimal("700")) == Decimal("400.00")

    def test_percentage_clamped_to_remaining(self, make_goal):
        """Test a share never exceeds what remains."""
        goal = make_goal(allocation_percentage=Decimal("60"))
        assert AllocationEngine.plan_share(goal, Decimal("1000"), Decimal("250")) == Decimal("250.00")

    def test_fixed_requires_enough_remaining(self, make_goal):
        """Test fixed mode only applies when the remainder covers it."""
        goal = make_goal(allocation_amount=Decimal("300"))
        assert AllocationEngine.plan_share(goal, Decimal("1000"), Decimal("300")) == Decimal("300.00")
        assert AllocationEngine.plan_share(goal, Decimal("1000"), Decimal("299")) == Decimal("0.00")

    def test_percentage_wins_over_fixed(self, make_goal):
        """Test percentage is authoritative when both are set."""
        goal = make_goal(allocation_percentage=Decimal("10"), allocation_amount=Decimal("500"))
        assert AllocationEngine.plan_share(goal, Decimal("1000"), Decimal("1000")) == Decimal("100.00")

    def test_rounds_down_to_cents(self, make_goal):
        """Test fractional cents are dropped."""
        goal = make_goal(allocation_percentage=Decimal("33.333"))
        assert AllocationEngine.plan_share(goal, Decimal("100"), Decimal("100")) == Decimal("33.33")


class TestAllocationEngine:
    """Tests for AllocationEngine.allocate."""

    @pytest.fixture
    def allocation(self, storage, audit_logger):
        return AllocationEngine(storage, audit_logger)

    @pytest.mark.asyncio
    async def test_single_goal_allocation(self, allocation, storage, make_goal, make_transaction, now):
        """Test 50% of 1200 lands 600 in the goal."""
        goal = await storage.insert_goal(make_goal(allocation_percentage=Decimal("50")))

        summary = await allocation.allocate(income(make_transaction, "1200"), now)

        stored = await storage.get_goal(goal.id)
        assert stored.current_amount == Decimal("600.00")
        assert summary.allocations[0].previous_percentage == Decimal("0")
        assert summary.allocations[0].new_percentage == Decimal("60")
        assert summary.remaining == Decimal("600.00")

    @pytest.mark.asyncio
    async def test_multi_goal_allocation(self, allocation, storage, make_goal, make_transaction, now):
        """Test 30% and 40% goals split 1000 into 300 and 400 with 300 left."""
        first = await storage.insert_goal(make_goal(allocation_percentage=Decimal("30")))
        second = await storage.insert_goal(make_goal(allocation_percentage=Decimal("40")))

        summary = await allocation.allocate(income(make_transaction, "1000"), now)

        assert (await storage.get_goal(first.id)).current_amount == Decimal("300.00")
        assert (await storage.get_goal(second.id)).current_amount == Decimal("400.00")
        assert summary.remaining == Decimal("300.00")
        assert summary.total_allocated == Decimal("700.00")

        savings = await storage.list_transactions("user-1", transaction_type=TransactionType.SAVINGS)
        assert sorted(t.amount for t in savings) == [Decimal("300.00"), Decimal("400.00")]
        assert all(t.category == AUTO_SAVINGS_CATEGORY for t in savings)
        assert all(t.is_system_generated for t in savings)

    @pytest.mark.asyncio
    async def test_order_is_creation_time(self, allocation, storage, make_goal, make_transaction, now):
        """Test older goals are served first when income runs out."""
        older = make_goal(allocation_amount=Decimal("80"))
        newer = make_goal(allocation_amount=Decimal("80"))
        # Insert newest first; order must not depend on insertion
        await storage.insert_goal(newer)
        await storage.insert_goal(older)

        summary = await allocation.allocate(income(make_transaction, "100"), now)

        assert [a.goal.id for a in summary.allocations] == [older.id]
        assert (await storage.get_goal(newer.id)).current_amount == Decimal("0")

    @pytest.mark.asyncio
    async def test_skips_goals_without_allocation(self, allocation, storage, make_goal, make_transaction, now):
        """Test zero-share goals get no write and no savings transaction."""
        await storage.insert_goal(make_goal())
        await storage.insert_goal(make_goal(auto_allocation=False, allocation_percentage=Decimal("50")))

        summary = await allocation.allocate(income(make_transaction, "1000"), now)

        assert summary.allocations == []
        assert await storage.list_transactions("user-1", transaction_type=TransactionType.SAVINGS) == []

    @pytest.mark.asyncio
    async def test_expense_is_not_allocated(self, allocation, storage, make_goal, make_transaction, now):
        """Test only income transactions are allocated."""
        await storage.insert_goal(make_goal(allocation_percentage=Decimal("50")))
        summary = await allocation.allocate(make_transaction(amount=Decimal("100")), now)
        assert summary.allocations == []

    @pytest.mark.asyncio
    async def test_failed_credit_is_audited_and_skipped(
        self, allocation, storage, make_goal, make_transaction, now, monkeypatch
    ):
        """Test a failing goal does not stop the others."""
        broken = await storage.insert_goal(make_goal(allocation_percentage=Decimal("10")))
        healthy = await storage.insert_goal(make_goal(allocation_percentage=Decimal("10")))
        original = storage.credit_goal

        async def flaky_credit(goal_id, amount, savings_transaction):
            if goal_id == broken.id:
                raise RuntimeError("sheet unavailable")
            return await original(goal_id, amount, savings_transaction)

        monkeypatch.setattr(storage, "credit_goal", flaky_credit)

        summary = await allocation.allocate(income(make_transaction, "1000"), now)

        assert summary.failed_goal_ids == [broken.id]
        assert [a.goal.id for a in summary.allocations] == [healthy.id]
        events = await storage.get_recent_events()
        assert any(e.event_type.value == "allocation_failed" for e in events)

    @pytest.mark.asyncio
    async def test_concurrent_incomes_do_not_lose_updates(
        self, allocation, storage, make_goal, make_transaction, now
    ):
        """Test parallel allocations to one goal all land."""
        goal = await storage.insert_goal(make_goal(allocation_amount=Decimal("10")))

        await asyncio.gather(*[
            allocation.allocate(income(make_transaction, "50"), now)
            for _ in range(10)
        ])

        assert (await storage.get_goal(goal.id)).current_amount == Decimal("100")
        savings = await storage.list_transactions("user-1", transaction_type=TransactionType.SAVINGS)
        assert len(savings) == 10
        gc.collect()
        assert len(allocation._goal_locks) == 0


class TestMilestones:
    """Tests for milestone detection."""

    def test_crossed_milestones(self):
        """Test milestones between previous (exclusive) and new (inclusive)."""
        assert crossed_milestones(Decimal("0"), Decimal("60")) == [Decimal("50")]
        assert crossed_milestones(Decimal("50"), Decimal("80")) == [Decimal("75")]
        assert crossed_milestones(Decimal("40"), Decimal("100")) == [
            Decimal("50"), Decimal("75"), Decimal("100"),
        ]
        assert crossed_milestones(Decimal("60"), Decimal("70")) == []

    def test_exceeded_is_strictly_above(self):
        """Test exactly 100% is not exceeded."""
        assert exceeded_target(Decimal("90"), Decimal("100")) is False
        assert exceeded_target(Decimal("90"), Decimal("120")) is True
        assert exceeded_target(Decimal("100"), Decimal("120")) is False

    def test_candidates_for_overshoot(self, make_goal):
        """Test jumping past 100% proposes 100 and exceeded separately."""
        goal = make_goal()
        candidates = MilestoneEvaluator().candidates(goal, Decimal("80"), Decimal("130"))

        assert [c.key.discriminator for c in candidates] == ["100", "exceeded"]
        assert all(c.type == NotificationType.GOAL_MILESTONE for c in candidates)
        assert all(c.refs.goal_id == goal.id for c in candidates)
