"""
Shared fixtures for the reconciler tests.

Everything runs against InMemoryStorage or a fake gspread client;
no test talks to a real service.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import gspread
import pytest

from reconciler.audit import AuditLogger
from reconciler.config import GoogleSheetsSettings, ReconciliationSettings
from reconciler.engine import ReconciliationEngine
from reconciler.models.finance import (
    Budget,
    BudgetPeriod,
    Goal,
    Transaction,
    TransactionType,
)
from reconciler.services.storage import InMemoryStorage


NOW = datetime(2024, 6, 15, 12, 0, 0)


@pytest.fixture
def now() -> datetime:
    """Fixed evaluation instant."""
    return NOW


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def audit_logger(storage) -> AuditLogger:
    """Audit logger persisting into the same in-memory store."""
    return AuditLogger(storage)


@pytest.fixture
def reconciliation_settings() -> ReconciliationSettings:
    return ReconciliationSettings(
        notification_retention_days=30,
        adjustment_window_days=30,
    )


@pytest.fixture
def engine(storage, audit_logger, reconciliation_settings) -> ReconciliationEngine:
    return ReconciliationEngine(
        transactions=storage,
        budgets=storage,
        goals=storage,
        notifications=storage,
        audit_logger=audit_logger,
        settings=reconciliation_settings,
    )


@pytest.fixture
def make_transaction():
    """Factory for transactions with sensible defaults."""
    def _make(**overrides) -> Transaction:
        data = {
            "owner_id": "user-1",
            "amount": Decimal("10.00"),
            "type": TransactionType.EXPENSE,
            "category": "Groceries",
            "transaction_date": NOW,
        }
        data.update(overrides)
        return Transaction(**data)
    return _make


@pytest.fixture
def make_budget():
    """Factory for a monthly Groceries budget active at NOW."""
    def _make(**overrides) -> Budget:
        data = {
            "owner_id": "user-1",
            "category": "Groceries",
            "amount": Decimal("100"),
            "period": BudgetPeriod.MONTHLY,
            "start_date": datetime(2024, 6, 1),
        }
        data.update(overrides)
        return Budget(**data)
    return _make


@pytest.fixture
def make_goal():
    """Factory for auto-allocation goals."""
    counter = {"n": 0}

    def _make(**overrides) -> Goal:
        counter["n"] += 1
        data = {
            "owner_id": "user-1",
            "name": f"Goal {counter['n']}",
            "target_amount": Decimal("1000"),
            "deadline": NOW + timedelta(days=365),
            "auto_allocation": True,
            # Distinct creation times keep allocation order predictable
            "created_at": NOW - timedelta(days=100 - counter["n"]),
        }
        data.update(overrides)
        return Goal(**data)
    return _make


# =============================================================================
# Fake gspread objects
# =============================================================================

class FakeWorksheet:
    """Minimal in-memory stand-in for gspread.Worksheet."""

    def __init__(self, title: str):
        self.title = title
        self.rows: list[list[str]] = []
        self.fail_updates = False

    def get_all_values(self) -> list[list[str]]:
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option=None):
        self.rows.append([str(v) for v in values])

    def update(self, range_name=None, values=None, value_input_option=None):
        if self.fail_updates:
            raise RuntimeError("update rejected")
        row_index = int(range_name.lstrip("A")) - 1
        self.rows[row_index] = [str(v) for v in values[0]]

    def delete_rows(self, index):
        del self.rows[index - 1]


class FakeSpreadsheet:
    def __init__(self):
        self.worksheets: dict[str, FakeWorksheet] = {}

    def worksheet(self, title: str) -> FakeWorksheet:
        if title not in self.worksheets:
            raise gspread.WorksheetNotFound(title)
        return self.worksheets[title]

    def add_worksheet(self, title: str, rows: int, cols: int) -> FakeWorksheet:
        sheet = FakeWorksheet(title)
        self.worksheets[title] = sheet
        return sheet


class FakeSheetsClient:
    """Replaces GoogleSheetsClient; worksheets are created on first use."""

    def __init__(self):
        self.spreadsheet = FakeSpreadsheet()
        self._settings = GoogleSheetsSettings.model_construct(
            credentials_path="unused.json",
            spreadsheet_id="test-spreadsheet",
        )

    @property
    def settings(self):
        return self._settings

    def get_spreadsheet(self):
        return self.spreadsheet

    def get_worksheet(self, title: str, columns: list[str]) -> FakeWorksheet:
        try:
            return self.spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = self.spreadsheet.add_worksheet(title=title, rows=1000, cols=len(columns))
            sheet.append_row(columns)
            return sheet


@pytest.fixture
def sheets_client() -> FakeSheetsClient:
    return FakeSheetsClient()
