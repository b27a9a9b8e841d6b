"""
Transaction-Creation Hook

Invoked when a transaction is recorded. The evaluation work runs as a
background task so the caller that recorded the transaction is never
delayed and never sees its failures.

- Income: allocate to auto-allocation goals, report goal milestones
- Any type: re-evaluate the owner's budgets covering the category

BackgroundDispatcher keeps a handle on every task it starts; join()
waits for all of them, which is how tests and shutdown observe completion.
"""

import asyncio
from datetime import datetime
from typing import Any, Coroutine, Optional
from uuid import UUID

from reconciler.audit import AuditLogger, create_correlation_id
from reconciler.engine.reconciliation import ReconciliationEngine
from reconciler.models.finance import Transaction, TransactionType


class BackgroundDispatcher:
    """Runs coroutines as tracked tasks whose failures are audited, not raised."""

    def __init__(self, audit_logger: Optional[AuditLogger] = None):
        self._audit = audit_logger or AuditLogger()
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def _guard(
        self,
        coro: Coroutine[Any, Any, Any],
        name: str,
        owner_id: Optional[str],
        correlation_id: Optional[UUID],
    ) -> Any:
        try:
            return await coro
        except Exception as e:
            await self._audit.log_hook_failed(
                task_name=name,
                error_message=str(e),
                owner_id=owner_id,
                correlation_id=correlation_id,
            )
            return None

    def dispatch(
        self,
        coro: Coroutine[Any, Any, Any],
        name: str,
        owner_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> asyncio.Task:
        """Schedule coro on the running loop and return its task."""
        task = asyncio.create_task(
            self._guard(coro, name, owner_id, correlation_id),
            name=name,
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def join(self) -> None:
        """Wait until every dispatched task, including ones started meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))


class TransactionHook:
    """Dispatches post-creation evaluation for new transactions."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        dispatcher: BackgroundDispatcher,
    ):
        self._engine = engine
        self._dispatcher = dispatcher

    async def _process(
        self,
        transaction: Transaction,
        now: Optional[datetime],
        correlation_id: UUID,
    ) -> None:
        if transaction.type == TransactionType.INCOME and not transaction.is_system_generated:
            await self._engine.handle_income(transaction, now, correlation_id)

        await self._engine.run_reconciliation(
            now=now,
            owner_id=transaction.owner_id,
            category=transaction.category,
            correlation_id=correlation_id,
        )

    def on_transaction_created(
        self,
        transaction: Transaction,
        now: Optional[datetime] = None,
    ) -> asyncio.Task:
        """Start background evaluation for a new transaction and return immediately."""
        correlation_id = create_correlation_id()
        return self._dispatcher.dispatch(
            self._process(transaction, now, correlation_id),
            name=f"transaction-hook-{transaction.id}",
            owner_id=transaction.owner_id,
            correlation_id=correlation_id,
        )
