"""
Tests for the Finance Reconciler models

Test strategy:
1. Unit tests for individual components (models, validators)
2. Integration tests for flows (in-memory storage, fake Sheets client)
3. No real API calls in tests
"""

import pytest
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from reconciler.models.finance import (
    AllocationMode,
    Budget,
    BudgetPeriod,
    Goal,
    Transaction,
    TransactionType,
    compute_budget_end_date,
    same_category,
)
from reconciler.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestFinanceModels:
    """Tests for transaction, budget and goal models."""

    def test_transaction_rejects_negative_amount(self):
        """Test that negative amounts are rejected."""
        with pytest.raises(ValueError):
            Transaction(
                owner_id="user-1",
                amount=Decimal("-1"),
                type=TransactionType.EXPENSE,
                category="Groceries",
            )

    def test_effective_amount_prefers_converted(self):
        """Test effective_amount falls back to the raw amount."""
        raw = Transaction(owner_id="u", amount=Decimal("10"), type=TransactionType.EXPENSE, category="x")
        converted = raw.model_copy(update={"converted_amount": Decimal("12")})
        assert raw.effective_amount == Decimal("10")
        assert converted.effective_amount == Decimal("12")

    def test_category_comparison(self):
        """Test categories compare case-insensitively and blanks never match."""
        assert same_category("Groceries", " groceries ")
        assert not same_category("Groceries", "Rent")
        assert not same_category(None, None)

    def test_budget_end_date_derived(self):
        """Test end_date is computed from start and period."""
        budget = Budget(
            owner_id="user-1",
            category="Groceries",
            amount=Decimal("100"),
            period=BudgetPeriod.MONTHLY,
            start_date=datetime(2024, 1, 31),
        )
        assert budget.end_date == datetime(2024, 2, 29)
        assert compute_budget_end_date(datetime(2024, 6, 1), BudgetPeriod.WEEKLY) == datetime(2024, 6, 8)

    def test_budget_rejects_inverted_window(self):
        """Test start after end is invalid."""
        with pytest.raises(ValueError):
            Budget(
                owner_id="user-1",
                amount=Decimal("100"),
                period=BudgetPeriod.MONTHLY,
                start_date=datetime(2024, 6, 10),
                end_date=datetime(2024, 6, 1),
            )

    def test_blank_category_is_general(self):
        """Test an empty category becomes a general budget."""
        budget = Budget(owner_id="user-1", category="  ", amount=Decimal("50"), period=BudgetPeriod.WEEKLY)
        assert budget.is_general
        assert budget.display_category == "General"
        assert budget.covers_category("Anything")

    def test_goal_allocation_mode(self):
        """Test percentage is authoritative over a fixed amount."""
        base = {
            "owner_id": "user-1",
            "name": "Holiday",
            "target_amount": Decimal("1000"),
            "deadline": datetime(2025, 1, 1),
        }
        assert Goal(**base).allocation_mode == AllocationMode.NONE
        assert Goal(**base, allocation_amount=Decimal("50")).allocation_mode == AllocationMode.FIXED
        assert Goal(
            **base, allocation_amount=Decimal("50"), allocation_percentage=Decimal("5"),
        ).allocation_mode == AllocationMode.PERCENTAGE

    def test_goal_percentage_bounds(self):
        """Test allocation percentage above 100 is rejected."""
        with pytest.raises(ValueError):
            Goal(
                owner_id="user-1",
                name="Too much",
                target_amount=Decimal("1000"),
                deadline=datetime(2025, 1, 1),
                allocation_percentage=Decimal("101"),
            )


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.SWEEP_STARTED,
            description="Reconciliation started",
        )
        assert event.event_type == AuditEventType.SWEEP_STARTED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.NOTIFICATION_CREATED,
            description="Notification created",
            details={"dedup_key": "user-1|budget_warning|-|80"},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "notification_created"
        assert log_dict["details"]["dedup_key"].endswith("|80")

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.PRUNE_FAILED,
            description="Prune failed",
            error_message="sheet unavailable",
        )
        row = event.to_sheets_row()
        assert len(row) == 11  # Expected number of columns
        assert row[2] == "prune_failed"  # event_type
        assert row[10] == "sheet unavailable"  # error_message

    def test_audit_event_builder_allocation_applied(self):
        """Test AuditEventBuilder.allocation_applied."""
        goal_id = uuid4()
        correlation_id = uuid4()

        event = AuditEventBuilder.allocation_applied(
            goal_id=goal_id,
            owner_id="user-1",
            amount=Decimal("600.00"),
            previous_percentage=Decimal("0"),
            new_percentage=Decimal("60"),
            correlation_id=correlation_id,
        )

        assert event.event_type == AuditEventType.ALLOCATION_APPLIED
        assert event.entity_id == goal_id
        assert event.correlation_id == correlation_id
        assert event.details["new_percentage"] == "60.00"

    def test_audit_event_builder_currency_fallback(self):
        """Test AuditEventBuilder.currency_fallback."""
        event = AuditEventBuilder.currency_fallback(
            from_currency="EUR",
            to_currency="USD",
            error_message="timeout",
        )

        assert event.event_type == AuditEventType.CURRENCY_FALLBACK
        assert event.severity == AuditSeverity.WARNING
        assert event.details["from_currency"] == "EUR"
