"""
Main Orchestrator for the Finance Reconciler

This module ties the components together and defines the two flows the
surrounding service calls into:
1. Transaction recording (convert → save → audit → fire hook)
2. Reconciliation (scheduled sweep, or on demand)

run_service() keeps the scheduler running for the service process
(see reconciler/__main__.py).

DESIGN DECISION: Recording a transaction never waits on, and never fails
because of, the evaluation work it triggers:
- A failed currency lookup degrades to rate 1.0
- The hook runs as a background task whose failures are audited only

create_app_components() builds everything against Google Sheets when it
is configured, and falls back to in-memory storage otherwise.
"""

import asyncio
import logging
from datetime import datetime
from typing import NamedTuple, Optional

import structlog

from reconciler.audit import AuditLogger
from reconciler.config import get_settings
from reconciler.engine import (
    BackgroundDispatcher,
    ReconciliationEngine,
    ReconciliationScheduler,
    TransactionHook,
)
from reconciler.models.finance import Transaction
from reconciler.services.currency import CurrencyConverter, build_currency_converter
from reconciler.services.storage import (
    BudgetStorageInterface,
    GoalStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    GoogleSheetsGoalStorage,
    GoogleSheetsNotificationStorage,
    GoogleSheetsTransactionStorage,
    InMemoryStorage,
    NotificationStorageInterface,
    TransactionStorageInterface,
)


logger = structlog.get_logger("reconciler.orchestrator")


class TransactionRecorder:
    """
    Records transactions and fires the creation hook.

    Flow:
    1. Convert the amount into the base currency (degrades to 1.0)
    2. Save the transaction
    3. Audit it
    4. Dispatch the hook in the background and return
    """

    def __init__(
        self,
        transactions: TransactionStorageInterface,
        converter: CurrencyConverter,
        hook: TransactionHook,
        audit_logger: Optional[AuditLogger] = None,
        base_currency: str = "USD",
    ):
        self._transactions = transactions
        self._converter = converter
        self._hook = hook
        self._audit = audit_logger or AuditLogger()
        self._base_currency = base_currency

    async def record_transaction(
        self,
        transaction: Transaction,
        now: Optional[datetime] = None,
    ) -> Transaction:
        """
        Save a user transaction.

        Returns the stored transaction as soon as it is written; the
        hook's evaluation continues in the background.
        """
        conversion = await self._converter.convert(
            transaction.amount,
            transaction.currency,
            self._base_currency,
        )
        if conversion.degraded:
            await self._audit.log_currency_fallback(
                from_currency=transaction.currency,
                to_currency=self._base_currency,
                error_message=conversion.error or "conversion failed",
            )

        saved = await self._transactions.insert_transaction(
            transaction.model_copy(update={
                "converted_amount": conversion.converted_amount,
                "exchange_rate": conversion.exchange_rate,
            })
        )
        await self._audit.log_transaction_recorded(
            transaction_id=saved.id,
            owner_id=saved.owner_id,
            transaction_type=saved.type.value,
            amount=saved.effective_amount,
        )

        self._hook.on_transaction_created(saved, now)
        return saved


class AppComponents(NamedTuple):
    """Everything the operator console and service runtime need."""

    transactions: TransactionStorageInterface
    budgets: BudgetStorageInterface
    goals: GoalStorageInterface
    notifications: NotificationStorageInterface
    audit_logger: AuditLogger
    engine: ReconciliationEngine
    dispatcher: BackgroundDispatcher
    recorder: TransactionRecorder
    scheduler: ReconciliationScheduler
    sheets_client: Optional[GoogleSheetsClient]


def create_app_components(
    use_storage: bool = True,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False to run entirely in memory.
    """
    settings = get_settings()
    logging.basicConfig(level=settings.app.log_level.upper())

    sheets_client = None
    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            sheets_client.get_spreadsheet()
            transactions = GoogleSheetsTransactionStorage(sheets_client)
            budgets = GoogleSheetsBudgetStorage(sheets_client)
            goals = GoogleSheetsGoalStorage(sheets_client)
            notifications = GoogleSheetsNotificationStorage(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None

    if sheets_client is None:
        memory = InMemoryStorage()
        transactions = budgets = goals = notifications = memory
        audit_logger = AuditLogger(memory)

    base_currency = settings.currency.base_currency
    engine = ReconciliationEngine(
        transactions=transactions,
        budgets=budgets,
        goals=goals,
        notifications=notifications,
        audit_logger=audit_logger,
        settings=settings.reconciliation,
        base_currency=base_currency,
    )
    dispatcher = BackgroundDispatcher(audit_logger)
    recorder = TransactionRecorder(
        transactions=transactions,
        converter=build_currency_converter(settings.currency),
        hook=TransactionHook(engine, dispatcher),
        audit_logger=audit_logger,
        base_currency=base_currency,
    )
    scheduler = ReconciliationScheduler(
        run=lambda now: engine.run_reconciliation(now),
        interval=settings.reconciliation.sweep_interval,
        audit_logger=audit_logger,
    )

    return AppComponents(
        transactions=transactions,
        budgets=budgets,
        goals=goals,
        notifications=notifications,
        audit_logger=audit_logger,
        engine=engine,
        dispatcher=dispatcher,
        recorder=recorder,
        scheduler=scheduler,
        sheets_client=sheets_client,
    )


async def run_service(
    components: AppComponents,
    shutdown: asyncio.Event,
) -> None:
    """
    Run the periodic sweep until shutdown is set.

    The first sweep fires immediately when run_sweep_on_start is enabled,
    otherwise one interval after startup. On shutdown the scheduler is
    stopped and pending hook tasks are awaited.
    """
    settings = get_settings().reconciliation
    logger.info(
        "service_starting",
        interval_seconds=settings.sweep_interval_seconds,
        run_sweep_on_start=settings.run_sweep_on_start,
    )
    components.scheduler.start(run_immediately=settings.run_sweep_on_start)
    try:
        await shutdown.wait()
    finally:
        await components.scheduler.stop()
        await components.dispatcher.join()
        logger.info(
            "service_stopped",
            completed=components.scheduler.completed,
            skipped=components.scheduler.skipped,
            failed=components.scheduler.failed,
        )
