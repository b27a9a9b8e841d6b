"""Tests for budget threshold evaluation."""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from reconciler.config import ReconciliationSettings
from reconciler.engine.deduplicator import NotificationDeduplicator
from reconciler.engine.thresholds import (
    AdjustmentDirection,
    BudgetMonitor,
    ThresholdBand,
    ThresholdEvaluator,
    band_for,
    days_remaining,
    recommend_adjustment,
)
from reconciler.models.finance import TransactionType
from reconciler.models.notification import NotificationType


class TestBands:
    """Tests for band and adjustment helpers."""

    def test_band_boundaries(self):
        """Test band edges are inclusive at the bottom."""
        assert band_for(Decimal("79.99")) is None
        assert band_for(Decimal("80")) == ThresholdBand.WARNING_80
        assert band_for(Decimal("89.9")) == ThresholdBand.WARNING_80
        assert band_for(Decimal("90")) == ThresholdBand.WARNING_90
        assert band_for(Decimal("100")) == ThresholdBand.EXCEEDED
        assert band_for(Decimal("250")) == ThresholdBand.EXCEEDED

    def test_days_remaining_rounds_up(self):
        """Test partial days count as a whole day."""
        now = datetime(2024, 6, 15, 12, 0)
        assert days_remaining(datetime(2024, 6, 16, 0, 0), now) == 1
        assert days_remaining(datetime(2024, 6, 20, 12, 0), now) == 5
        assert days_remaining(datetime(2024, 6, 20, 12, 1), now) == 6

    def test_increase_takes_precedence(self):
        """Test that increase is recommended at or above 120%."""
        settings = ReconciliationSettings()
        assert recommend_adjustment(Decimal("120"), 1, settings) == AdjustmentDirection.INCREASE
        assert recommend_adjustment(Decimal("119"), 1, settings) is None

    def test_decrease_only_near_end(self):
        """Test decrease needs low spend and few days remaining."""
        settings = ReconciliationSettings()
        assert recommend_adjustment(Decimal("30"), 5, settings) == AdjustmentDirection.DECREASE
        assert recommend_adjustment(Decimal("30"), 6, settings) is None
        assert recommend_adjustment(Decimal("50"), 2, settings) is None


class TestThresholdEvaluator:
    """Tests for candidate generation."""

    def test_warning_candidate_keyed_by_band(self, make_budget, now):
        """Test an 85% budget proposes one 80% warning."""
        evaluator = ThresholdEvaluator(ReconciliationSettings())
        budget = make_budget()
        status = evaluator.evaluate(budget, Decimal("85"), now)
        candidates = evaluator.candidates(budget, status, now)

        assert len(candidates) == 1
        assert candidates[0].type == NotificationType.BUDGET_WARNING
        assert candidates[0].key.discriminator == "80"
        assert candidates[0].refs.budget_id == budget.id

    def test_general_budget_message(self, make_budget, now):
        """Test general budgets are labelled General."""
        evaluator = ThresholdEvaluator(ReconciliationSettings())
        budget = make_budget(category=None)
        status = evaluator.evaluate(budget, Decimal("150"), now)
        candidates = evaluator.candidates(budget, status, now)

        assert [c.type for c in candidates] == [
            NotificationType.BUDGET_EXCEEDED,
            NotificationType.BUDGET_ADJUSTMENT,
        ]
        assert "General" in candidates[0].message
        assert candidates[1].window == timedelta(days=30)


class TestBudgetMonitor:
    """Tests for the threshold ladder against storage."""

    @pytest.fixture
    def monitor(self, storage, audit_logger):
        settings = ReconciliationSettings()
        deduplicator = NotificationDeduplicator(storage, storage, audit_logger)
        return BudgetMonitor(storage, deduplicator, ThresholdEvaluator(settings))

    async def spend(self, storage, make_transaction, amount, **overrides):
        await storage.insert_transaction(make_transaction(amount=Decimal(amount), **overrides))

    async def types_and_discriminators(self, storage):
        notifications = await storage.list_notifications("user-1", include_read=True)
        return sorted((n.type.value, n.dedup_scope.split("|")[-1]) for n in notifications)

    @pytest.mark.asyncio
    async def test_threshold_ladder(self, monitor, storage, make_budget, make_transaction, now):
        """Test 85 then 95 of 100 gives one 80% then one 90% warning."""
        budget = await storage.insert_budget(make_budget())
        await self.spend(storage, make_transaction, "85")

        assert await monitor.check_budget(budget, now) == 1
        assert await self.types_and_discriminators(storage) == [("budget_warning", "80")]

        await self.spend(storage, make_transaction, "10")
        assert await monitor.check_budget(budget, now + timedelta(hours=1)) == 1
        assert await self.types_and_discriminators(storage) == [
            ("budget_warning", "80"),
            ("budget_warning", "90"),
        ]

    @pytest.mark.asyncio
    async def test_exceeded_fires_once(self, monitor, storage, make_budget, make_transaction, now):
        """Test spend held at 110% notifies exceeded once over three runs."""
        budget = await storage.insert_budget(make_budget())
        await self.spend(storage, make_transaction, "110")

        created = [
            await monitor.check_budget(budget, now + timedelta(days=day))
            for day in range(3)
        ]

        assert created == [1, 0, 0]
        assert await self.types_and_discriminators(storage) == [("budget_exceeded", "100")]

    @pytest.mark.asyncio
    async def test_spend_filters(self, monitor, storage, make_budget, make_transaction, now):
        """Test only matching, in-window expenses count."""
        budget = await storage.insert_budget(make_budget())
        await self.spend(storage, make_transaction, "50", category="GROCERIES")
        await self.spend(storage, make_transaction, "500", category="Travel")
        await self.spend(storage, make_transaction, "500", type=TransactionType.INCOME)
        await self.spend(storage, make_transaction, "500", transaction_date=datetime(2024, 5, 31))
        await self.spend(storage, make_transaction, "500", owner_id="user-2")

        status = await monitor.budget_status(budget, now)
        assert status.spent == Decimal("50")
        assert status.band is None

    @pytest.mark.asyncio
    async def test_converted_amount_used(self, monitor, storage, make_budget, make_transaction, now):
        """Test base-currency amounts are summed when present."""
        budget = await storage.insert_budget(make_budget())
        await self.spend(
            storage, make_transaction, "80",
            currency="EUR", converted_amount=Decimal("86.40"), exchange_rate=Decimal("1.08"),
        )

        status = await monitor.budget_status(budget, now)
        assert status.spent == Decimal("86.40")
        assert status.band == ThresholdBand.WARNING_80

    @pytest.mark.asyncio
    async def test_adjustment_once_per_window(self, monitor, storage, make_budget, make_transaction, now):
        """Test an increase recommendation is not repeated inside 30 days."""
        budget = await storage.insert_budget(make_budget(
            period="yearly",
            start_date=datetime(2024, 1, 1),
        ))
        await self.spend(storage, make_transaction, "130")

        await monitor.check_budget(budget, now)
        await monitor.check_budget(budget, now + timedelta(days=10))
        await monitor.check_budget(budget, now + timedelta(days=29))

        notifications = await storage.list_notifications("user-1")
        adjustments = [n for n in notifications if n.type == NotificationType.BUDGET_ADJUSTMENT]
        assert len(adjustments) == 1
        assert "increasing" in adjustments[0].message

        await monitor.check_budget(budget, now + timedelta(days=31))
        notifications = await storage.list_notifications("user-1")
        adjustments = [n for n in notifications if n.type == NotificationType.BUDGET_ADJUSTMENT]
        assert len(adjustments) == 2

    @pytest.mark.asyncio
    async def test_decrease_near_end(self, monitor, storage, make_budget, make_transaction):
        """Test low spend close to the end recommends a decrease."""
        budget = await storage.insert_budget(make_budget())  # ends 2024-07-01
        await self.spend(storage, make_transaction, "20")

        created = await monitor.check_budget(budget, datetime(2024, 6, 27, 9, 0))

        assert created == 1
        notifications = await storage.list_notifications("user-1")
        assert notifications[0].type == NotificationType.BUDGET_ADJUSTMENT
        assert "decreasing" in notifications[0].message
