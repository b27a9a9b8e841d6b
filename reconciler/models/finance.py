"""
Core Finance Models

These models define the records the reconciliation engine reads and writes:
transactions, budgets and savings goals.

DESIGN DECISION: We use Pydantic v2 models with explicit constraints.
Amounts are Decimal, timestamps are naive UTC datetimes, and categories
remain free-form strings compared case-insensitively.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from dateutil.relativedelta import relativedelta
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


AUTO_SAVINGS_CATEGORY = "Auto-Savings"
GENERAL_CATEGORY_LABEL = "General"


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def same_category(left: Optional[str], right: Optional[str]) -> bool:
    """Case-insensitive category equality. Blank values never match."""
    if not left or not right:
        return False
    return left.strip().casefold() == right.strip().casefold()


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """Direction of a transaction."""
    INCOME = "income"
    EXPENSE = "expense"
    SAVINGS = "savings"  # Synthetic, created by the allocation engine only


class RecurrencePattern(str, Enum):
    """
    Recognised recurrence periods.

    Transactions store the pattern as free text; anything outside this
    set is treated as non-recurring.
    """
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class BudgetPeriod(str, Enum):
    """Budget window length."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class AllocationMode(str, Enum):
    """How a goal takes its share of incoming income."""
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    NONE = "none"


_PERIOD_STEPS = {
    BudgetPeriod.DAILY: relativedelta(days=1),
    BudgetPeriod.WEEKLY: relativedelta(days=7),
    BudgetPeriod.MONTHLY: relativedelta(months=1),
    BudgetPeriod.YEARLY: relativedelta(years=1),
}


def compute_budget_end_date(start_date: datetime, period: BudgetPeriod) -> datetime:
    """End of a budget window that starts at start_date."""
    return start_date + _PERIOD_STEPS[BudgetPeriod(period)]


# =============================================================================
# TRANSACTIONS
# =============================================================================

class Transaction(BaseModel):
    """
    A single money movement.

    Recurring transactions double as the definition of their series:
    the transaction date is the anchor and the transaction id is the
    series identity.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique transaction ID"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="Owning user"
    )

    # Amounts
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Amount in the transaction currency"
    )
    currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
    )
    converted_amount: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Amount in the base currency"
    )
    exchange_rate: Decimal = Field(
        default=Decimal("1"),
        gt=0,
        description="Rate used to produce converted_amount"
    )

    type: TransactionType
    category: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    description: Optional[str] = Field(
        default=None,
        max_length=500,
    )
    transaction_date: datetime = Field(
        default_factory=utcnow,
        description="When the money moved"
    )
    tags: list[str] = Field(default_factory=list)

    # Recurrence
    recurring: bool = False
    recurrence_pattern: Optional[str] = None
    recurrence_end_date: Optional[datetime] = None

    is_system_generated: bool = Field(
        default=False,
        description="Created by the engine (auto-savings), never user-editable"
    )
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def effective_amount(self) -> Decimal:
        """Base-currency amount, falling back to the raw amount."""
        if self.converted_amount is not None:
            return self.converted_amount
        return self.amount

    def matches_category(self, category: Optional[str]) -> bool:
        return same_category(self.category, category)


# =============================================================================
# BUDGETS
# =============================================================================

class Budget(BaseModel):
    """
    A spending limit over a time window.

    A budget without a category is a "General" budget that matches
    all expense categories.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    category: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Category this budget tracks; None for a general budget"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Budgeted amount in the base currency"
    )
    period: BudgetPeriod
    start_date: datetime = Field(default_factory=utcnow)
    end_date: Optional[datetime] = Field(
        default=None,
        description="Derived from start_date and period when omitted"
    )
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode='after')
    def validate_window(self) -> 'Budget':
        """Fill in and check the budget window."""
        if not self.category:
            self.category = None
        if self.end_date is None:
            self.end_date = compute_budget_end_date(self.start_date, self.period)
        if self.start_date > self.end_date:
            raise ValueError("Start date cannot be after end date")
        return self

    @property
    def is_general(self) -> bool:
        return self.category is None

    @property
    def display_category(self) -> str:
        return self.category or GENERAL_CATEGORY_LABEL

    def is_active(self, now: datetime) -> bool:
        return self.start_date <= now <= self.end_date

    def covers_category(self, category: Optional[str]) -> bool:
        """Does spending in this category count against the budget?"""
        if self.is_general:
            return True
        return same_category(self.category, category)

    def overlaps(self, other: 'Budget') -> bool:
        """Would both budgets break the one-window-per-(owner, category, period) rule?"""
        if self.owner_id != other.owner_id or self.period != other.period:
            return False
        if self.is_general != other.is_general:
            return False
        if not self.is_general and not same_category(self.category, other.category):
            return False
        return self.start_date <= other.end_date and self.end_date >= other.start_date


# =============================================================================
# SAVINGS GOALS
# =============================================================================

class Goal(BaseModel):
    """
    A savings goal.

    current_amount is only mutated by the allocation engine or user edits.
    When both allocation_percentage and allocation_amount are set,
    the percentage is authoritative.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    target_amount: Decimal = Field(..., gt=0)
    current_amount: Decimal = Field(default=Decimal("0"), ge=0)
    deadline: datetime
    notes: Optional[str] = Field(default=None, max_length=1000)

    # Auto-allocation
    auto_allocation: bool = False
    allocation_percentage: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        le=100,
        description="Share of each income to allocate"
    )
    allocation_amount: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Fixed sum to allocate from each income"
    )

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def allocation_mode(self) -> AllocationMode:
        if self.allocation_percentage > 0:
            return AllocationMode.PERCENTAGE
        if self.allocation_amount > 0:
            return AllocationMode.FIXED
        return AllocationMode.NONE

    @property
    def progress_percentage(self) -> Decimal:
        return self.current_amount / self.target_amount * 100


class ConversionResult(BaseModel):
    """Result of converting an amount into the base currency."""

    converted_amount: Decimal
    exchange_rate: Decimal = Field(..., gt=0)
    degraded: bool = Field(
        default=False,
        description="True when the rate lookup failed and 1.0 was used"
    )
    error: Optional[str] = None
