"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the default persistent backend:
1. Users can inspect budgets, goals and notifications directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions: credit_goal appends the audit transaction first and
  deletes it again if the goal row cannot be updated
- Uniqueness of notification dedup keys is checked under a process-local
  lock; it does not protect against a second process writing the sheet
- Limited query capabilities (we filter in Python)

Each record type lives in its own worksheet with one record per row.
List fields are JSON-serialized into columns suffixed with "_json".
"""

import asyncio
import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional, TypeVar
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from reconciler.config import get_settings
from reconciler.models.audit import AuditEvent, AuditEventType, AuditSeverity
from reconciler.models.finance import (
    Budget,
    Goal,
    Transaction,
    TransactionType,
    utcnow,
)
from reconciler.models.notification import Notification
from reconciler.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    ConnectionError,
    DuplicateError,
    GoalStorageInterface,
    NotFoundError,
    NotificationStorageInterface,
    StorageError,
    TransactionStorageInterface,
)


# Column mappings for each worksheet
TRANSACTION_COLUMNS = [
    "id",
    "owner_id",
    "amount",
    "currency",
    "converted_amount",
    "exchange_rate",
    "type",
    "category",
    "description",
    "transaction_date",
    "tags_json",
    "recurring",
    "recurrence_pattern",
    "recurrence_end_date",
    "is_system_generated",
    "created_at",
]

BUDGET_COLUMNS = [
    "id",
    "owner_id",
    "category",
    "amount",
    "period",
    "start_date",
    "end_date",
    "created_at",
]

GOAL_COLUMNS = [
    "id",
    "owner_id",
    "name",
    "target_amount",
    "current_amount",
    "deadline",
    "notes",
    "auto_allocation",
    "allocation_percentage",
    "allocation_amount",
    "created_at",
    "updated_at",
]

NOTIFICATION_COLUMNS = [
    "id",
    "owner_id",
    "message",
    "type",
    "transaction_id",
    "budget_id",
    "goal_id",
    "dedup_key",
    "dedup_scope",
    "is_read",
    "created_at",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "owner_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]

# Writes are retried, but not when the storage rejected the record itself.
write_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_not_exception_type((DuplicateError, NotFoundError)),
    reraise=True,
)

RecordT = TypeVar("RecordT", bound=BaseModel)


def _to_cell(value) -> str:
    """Serialize a single field value for a spreadsheet cell."""
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (Decimal, UUID, bool)):
        return str(value)
    if isinstance(value, (list, dict)):
        return json.dumps(value, default=str)
    return str(value)


def record_to_row(record: BaseModel, columns: list[str]) -> list[str]:
    """Convert a record to a spreadsheet row in column order."""
    row = []
    for column in columns:
        field = column.removesuffix("_json")
        row.append(_to_cell(getattr(record, field)))
    return row


def row_to_record(model: type[RecordT], row: list, columns: list[str]) -> RecordT:
    """
    Convert a spreadsheet row back into a record.

    Empty cells are left out so model defaults apply.
    """
    data = {}
    for index, column in enumerate(columns):
        try:
            raw = row[index]
        except IndexError:
            continue
        if raw == "" or raw is None:
            continue
        if column.endswith("_json"):
            data[column.removesuffix("_json")] = json.loads(raw)
        else:
            data[column] = raw
    return model.model_validate(data)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @property
    def settings(self):
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str]) -> gspread.Worksheet:
        """Get a worksheet, creating it with a header row if missing."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet


class _SheetTable:
    """
    Shared row plumbing for one worksheet holding one record type.

    Subclasses set sheet_setting (the GoogleSheetsSettings attribute
    naming the worksheet), columns and model.
    """

    sheet_setting: str = ""
    columns: list[str] = []
    model: type[BaseModel] = BaseModel

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._lock = asyncio.Lock()

    def _sheet(self) -> gspread.Worksheet:
        title = getattr(self._client.settings, self.sheet_setting)
        return self._client.get_worksheet(title, self.columns)

    def _rows(self) -> list[tuple[int, BaseModel]]:
        """All parseable records with their 1-based sheet row index."""
        all_rows = self._sheet().get_all_values()
        records = []
        for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is header
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                records.append((idx, row_to_record(self.model, row, self.columns)))
            except Exception:
                continue  # Skip malformed rows
        return records

    def _records(self) -> list:
        return [record for _, record in self._rows()]

    def _find(self, record_id: UUID) -> Optional[tuple[int, BaseModel]]:
        for idx, record in self._rows():
            if record.id == record_id:
                return idx, record
        return None

    def _append(self, record: BaseModel) -> None:
        self._sheet().append_row(
            record_to_row(record, self.columns),
            value_input_option="RAW",
        )

    def _replace(self, row_index: int, record: BaseModel) -> None:
        self._sheet().update(
            range_name=f"A{row_index}",
            values=[record_to_row(record, self.columns)],
            value_input_option="RAW",
        )

    def _delete(self, row_index: int) -> None:
        self._sheet().delete_rows(row_index)


class GoogleSheetsTransactionStorage(_SheetTable, TransactionStorageInterface):
    """Google Sheets implementation of transaction storage."""

    sheet_setting = "transactions_sheet_name"
    columns = TRANSACTION_COLUMNS
    model = Transaction

    @write_retry
    async def insert_transaction(self, transaction: Transaction) -> Transaction:
        try:
            self._append(transaction)
            return transaction
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}")

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        try:
            found = self._find(transaction_id)
            return found[1] if found else None
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

    async def list_transactions(
        self,
        owner_id: str,
        transaction_type: Optional[TransactionType] = None,
        category: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        exclude_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        try:
            records = self._records()
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")

        transactions = []
        for transaction in records:
            # Apply filters
            if transaction.owner_id != owner_id:
                continue
            if transaction_type and transaction.type != transaction_type:
                continue
            if category and not transaction.matches_category(category):
                continue
            if date_from and transaction.transaction_date < date_from:
                continue
            if date_to and transaction.transaction_date > date_to:
                continue
            if exclude_id and transaction.id == exclude_id:
                continue
            transactions.append(transaction)

        transactions.sort(key=lambda t: (t.transaction_date, t.created_at))
        return transactions

    async def list_recurring_transactions(
        self,
        owner_id: Optional[str] = None,
    ) -> list[Transaction]:
        try:
            records = self._records()
        except Exception as e:
            raise StorageError(f"Failed to list recurring transactions: {e}")
        return [
            t for t in records
            if t.recurring and (owner_id is None or t.owner_id == owner_id)
        ]

    async def sum_expenses(
        self,
        owner_id: str,
        date_from: datetime,
        date_to: datetime,
        category: Optional[str] = None,
    ) -> Decimal:
        expenses = await self.list_transactions(
            owner_id=owner_id,
            transaction_type=TransactionType.EXPENSE,
            category=category,
            date_from=date_from,
            date_to=date_to,
        )
        return sum((t.effective_amount for t in expenses), Decimal("0"))

    def delete_transaction_row(self, transaction_id: UUID) -> bool:
        """Remove a transaction row. Only used to undo a partial credit_goal."""
        found = self._find(transaction_id)
        if found is None:
            return False
        self._delete(found[0])
        return True


class GoogleSheetsBudgetStorage(_SheetTable, BudgetStorageInterface):
    """Google Sheets implementation of budget storage."""

    sheet_setting = "budgets_sheet_name"
    columns = BUDGET_COLUMNS
    model = Budget

    @write_retry
    async def insert_budget(self, budget: Budget) -> Budget:
        async with self._lock:
            try:
                for existing in self._records():
                    if existing.overlaps(budget):
                        raise DuplicateError(
                            "A budget with the same category and overlapping period "
                            f"already exists: {existing.id}"
                        )
                self._append(budget)
                return budget
            except DuplicateError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to save budget: {e}")

    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        try:
            found = self._find(budget_id)
            return found[1] if found else None
        except Exception as e:
            raise StorageError(f"Failed to get budget: {e}")

    async def delete_budget(self, budget_id: UUID) -> bool:
        async with self._lock:
            try:
                found = self._find(budget_id)
                if found is None:
                    return False
                self._delete(found[0])
                return True
            except Exception as e:
                raise StorageError(f"Failed to delete budget: {e}")

    async def list_active_budgets(
        self,
        now: datetime,
        owner_id: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[Budget]:
        try:
            records = self._records()
        except Exception as e:
            raise StorageError(f"Failed to list budgets: {e}")

        budgets = [
            b for b in records
            if (owner_id is None or b.owner_id == owner_id)
            and b.is_active(now)
            and (category is None or b.covers_category(category))
        ]
        budgets.sort(key=lambda b: (b.start_date, str(b.id)))
        return budgets


class GoogleSheetsGoalStorage(_SheetTable, GoalStorageInterface):
    """
    Google Sheets implementation of goal storage.

    credit_goal needs the transactions worksheet as well, so the goal
    storage keeps its own transaction storage on the same client.
    """

    sheet_setting = "goals_sheet_name"
    columns = GOAL_COLUMNS
    model = Goal

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        super().__init__(client)
        self._transactions = GoogleSheetsTransactionStorage(self._client)

    @write_retry
    async def insert_goal(self, goal: Goal) -> Goal:
        try:
            self._append(goal)
            return goal
        except Exception as e:
            raise StorageError(f"Failed to save goal: {e}")

    async def get_goal(self, goal_id: UUID) -> Optional[Goal]:
        try:
            found = self._find(goal_id)
            return found[1] if found else None
        except Exception as e:
            raise StorageError(f"Failed to get goal: {e}")

    async def update_goal(self, goal: Goal) -> Goal:
        async with self._lock:
            try:
                found = self._find(goal.id)
                if found is None:
                    raise NotFoundError(f"Goal not found: {goal.id}")
                updated = goal.model_copy(update={"updated_at": utcnow()})
                self._replace(found[0], updated)
                return updated
            except NotFoundError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to update goal: {e}")

    async def list_auto_allocation_goals(self, owner_id: str) -> list[Goal]:
        try:
            records = self._records()
        except Exception as e:
            raise StorageError(f"Failed to list goals: {e}")

        goals = [g for g in records if g.owner_id == owner_id and g.auto_allocation]
        goals.sort(key=lambda g: (g.created_at, str(g.id)))
        return goals

    async def credit_goal(
        self,
        goal_id: UUID,
        amount: Decimal,
        savings_transaction: Transaction,
    ) -> tuple[Goal, Goal]:
        async with self._lock:
            found = self._find(goal_id)
            if found is None:
                raise NotFoundError(f"Goal not found: {goal_id}")
            row_index, before = found
            after = before.model_copy(
                update={
                    "current_amount": before.current_amount + amount,
                    "updated_at": utcnow(),
                }
            )

            try:
                self._transactions._append(savings_transaction)
            except Exception as e:
                raise StorageError(f"Failed to record savings transaction: {e}")

            try:
                self._replace(row_index, after)
            except Exception as e:
                # Undo the audit record so the goal is not left uncredited with one
                try:
                    self._transactions.delete_transaction_row(savings_transaction.id)
                except Exception as cleanup_error:
                    raise StorageError(
                        f"Failed to credit goal ({e}) and to remove its savings "
                        f"transaction {savings_transaction.id} ({cleanup_error})"
                    )
                raise StorageError(f"Failed to credit goal: {e}")

            return before, after


class GoogleSheetsNotificationStorage(_SheetTable, NotificationStorageInterface):
    """Google Sheets implementation of notification storage."""

    sheet_setting = "notifications_sheet_name"
    columns = NOTIFICATION_COLUMNS
    model = Notification

    @write_retry
    async def insert_notification(self, notification: Notification) -> Notification:
        async with self._lock:
            try:
                for existing in self._records():
                    if existing.dedup_key == notification.dedup_key:
                        raise DuplicateError(
                            f"Notification already exists for key: {notification.dedup_key}"
                        )
                self._append(notification)
                return notification
            except DuplicateError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to save notification: {e}")

    async def notification_exists(
        self,
        dedup_key: Optional[str] = None,
        dedup_scope: Optional[str] = None,
        created_since: Optional[datetime] = None,
    ) -> bool:
        try:
            records = self._records()
        except Exception as e:
            raise StorageError(f"Failed to query notifications: {e}")

        for notification in records:
            if dedup_key is not None and notification.dedup_key != dedup_key:
                continue
            if dedup_scope is not None and notification.dedup_scope != dedup_scope:
                continue
            if created_since is not None and notification.created_at < created_since:
                continue
            return True
        return False

    async def get_notification(self, notification_id: UUID) -> Optional[Notification]:
        try:
            found = self._find(notification_id)
            return found[1] if found else None
        except Exception as e:
            raise StorageError(f"Failed to get notification: {e}")

    async def update_notification(self, notification: Notification) -> Notification:
        async with self._lock:
            try:
                found = self._find(notification.id)
                if found is None:
                    raise NotFoundError(f"Notification not found: {notification.id}")
                self._replace(found[0], notification)
                return notification
            except NotFoundError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to update notification: {e}")

    async def list_notifications(
        self,
        owner_id: str,
        include_read: bool = False,
    ) -> list[Notification]:
        try:
            records = self._records()
        except Exception as e:
            raise StorageError(f"Failed to list notifications: {e}")

        notifications = [
            n for n in records
            if n.owner_id == owner_id and (include_read or not n.is_read)
        ]
        # Newest first
        notifications.sort(key=lambda n: n.created_at, reverse=True)
        return notifications

    async def list_notifications_created_before(
        self,
        cutoff: datetime,
    ) -> list[Notification]:
        try:
            return [n for n in self._records() if n.created_at < cutoff]
        except Exception as e:
            raise StorageError(f"Failed to list notifications: {e}")

    async def delete_notifications(self, notification_ids: Iterable[UUID]) -> int:
        doomed = set(notification_ids)
        if not doomed:
            return 0
        async with self._lock:
            try:
                # Delete bottom-up so earlier row indexes stay valid
                rows = [idx for idx, n in self._rows() if n.id in doomed]
                for idx in sorted(rows, reverse=True):
                    self._delete(idx)
                return len(rows)
            except Exception as e:
                raise StorageError(f"Failed to delete notifications: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.audit_sheet_name,
            AUDIT_COLUMNS,
        )

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            owner_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
        )

    def _all_events(self) -> list[AuditEvent]:
        all_rows = self._sheet().get_all_values()[1:]
        events = []
        for row in all_rows:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except Exception:
                    continue
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            self._sheet().append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = [e for e in self._all_events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        # Sort chronologically
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._all_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
