"""Services package."""

from reconciler.services.storage import (
    AuditStorageInterface,
    BudgetStorageInterface,
    ConnectionError,
    DuplicateError,
    GoalStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    GoogleSheetsGoalStorage,
    GoogleSheetsNotificationStorage,
    GoogleSheetsTransactionStorage,
    InMemoryStorage,
    NotFoundError,
    NotificationStorageInterface,
    StorageError,
    TransactionStorageInterface,
)
from reconciler.services.currency import (
    CurrencyConversionError,
    CurrencyConverter,
    IdentityCurrencyConverter,
    ResilientCurrencyConverter,
    StaticRateCurrencyConverter,
    build_currency_converter,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoalStorageInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsBudgetStorage",
    "GoogleSheetsClient",
    "GoogleSheetsGoalStorage",
    "GoogleSheetsNotificationStorage",
    "GoogleSheetsTransactionStorage",
    "InMemoryStorage",
    "NotFoundError",
    "NotificationStorageInterface",
    "StorageError",
    "TransactionStorageInterface",
    # Currency services
    "CurrencyConversionError",
    "CurrencyConverter",
    "IdentityCurrencyConverter",
    "ResilientCurrencyConverter",
    "StaticRateCurrencyConverter",
    "build_currency_converter",
]
