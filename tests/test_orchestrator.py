"""Tests for currency conversion, transaction recording and the service loop."""

import asyncio
import pytest
from decimal import Decimal

from reconciler.config import CurrencySettings
from reconciler.engine import BackgroundDispatcher, TransactionHook
from reconciler.models.audit import AuditEventType
from reconciler.models.finance import ConversionResult, TransactionType
from reconciler.orchestrator import TransactionRecorder, create_app_components, run_service
from reconciler.services.currency import (
    CurrencyConversionError,
    CurrencyConverter,
    IdentityCurrencyConverter,
    ResilientCurrencyConverter,
    StaticRateCurrencyConverter,
    build_currency_converter,
)
from reconciler.services.storage import InMemoryStorage


class FailingConverter(CurrencyConverter):
    """Converter whose rate source is down."""

    def __init__(self, failures: int = 100):
        self.calls = 0
        self.failures = failures

    async def convert(self, amount, from_currency, to_currency):
        self.calls += 1
        if self.calls <= self.failures:
            raise CurrencyConversionError("rate service unavailable")
        return ConversionResult(converted_amount=amount * 2, exchange_rate=Decimal("2"))


class TestCurrencyConverters:
    """Tests for the currency collaborator."""

    @pytest.mark.asyncio
    async def test_identity(self):
        """Test identity conversion keeps the amount."""
        result = await IdentityCurrencyConverter().convert(Decimal("12.50"), "EUR", "USD")
        assert result.converted_amount == Decimal("12.50")
        assert result.exchange_rate == Decimal("1")
        assert result.degraded is False

    @pytest.mark.asyncio
    async def test_static_rates_cross_convert(self):
        """Test conversion through the base currency."""
        converter = StaticRateCurrencyConverter(
            {"EUR": Decimal("1.10"), "GBP": Decimal("1.32")}, base_currency="USD"
        )

        to_base = await converter.convert(Decimal("100"), "eur", "USD")
        assert to_base.converted_amount == Decimal("110.00")

        cross = await converter.convert(Decimal("132"), "GBP", "EUR")
        assert cross.converted_amount == Decimal("158.4")

    @pytest.mark.asyncio
    async def test_static_rates_unknown_currency(self):
        """Test a missing rate raises CurrencyConversionError."""
        converter = StaticRateCurrencyConverter({}, base_currency="USD")
        with pytest.raises(CurrencyConversionError):
            await converter.convert(Decimal("1"), "JPY", "USD")

    @pytest.mark.asyncio
    async def test_resilient_degrades_to_identity(self):
        """Test persistent failure degrades to rate 1.0 instead of raising."""
        inner = FailingConverter()
        converter = ResilientCurrencyConverter(inner, retry_attempts=3, retry_wait_seconds=0)

        result = await converter.convert(Decimal("40"), "EUR", "USD")

        assert inner.calls == 3
        assert result.degraded is True
        assert result.converted_amount == Decimal("40")
        assert result.exchange_rate == Decimal("1")
        assert "unavailable" in result.error

    @pytest.mark.asyncio
    async def test_resilient_retries_then_succeeds(self):
        """Test a transient failure is retried."""
        inner = FailingConverter(failures=1)
        converter = ResilientCurrencyConverter(inner, retry_attempts=3, retry_wait_seconds=0)

        result = await converter.convert(Decimal("40"), "EUR", "USD")

        assert inner.calls == 2
        assert result.degraded is False
        assert result.converted_amount == Decimal("80")

    def test_build_from_settings(self):
        """Test configured rates select the static converter."""
        with_rates = build_currency_converter(CurrencySettings(static_rates="EUR=1.08"))
        without_rates = build_currency_converter(CurrencySettings(static_rates=""))
        assert isinstance(with_rates._inner, StaticRateCurrencyConverter)
        assert isinstance(without_rates._inner, IdentityCurrencyConverter)


class TestTransactionRecorder:
    """Tests for TransactionRecorder.record_transaction."""

    @pytest.fixture
    def dispatcher(self, audit_logger):
        return BackgroundDispatcher(audit_logger)

    def recorder(self, storage, engine, dispatcher, audit_logger, converter):
        return TransactionRecorder(
            transactions=storage,
            converter=converter,
            hook=TransactionHook(engine, dispatcher),
            audit_logger=audit_logger,
            base_currency="USD",
        )

    @pytest.mark.asyncio
    async def test_records_converted_amount(
        self, storage, engine, dispatcher, audit_logger, make_transaction
    ):
        """Test the stored transaction carries the base-currency amount."""
        converter = StaticRateCurrencyConverter({"EUR": Decimal("1.10")}, "USD")
        recorder = self.recorder(storage, engine, dispatcher, audit_logger, converter)

        saved = await recorder.record_transaction(
            make_transaction(amount=Decimal("50"), currency="EUR")
        )
        await dispatcher.join()

        stored = await storage.get_transaction(saved.id)
        assert stored.converted_amount == Decimal("55.00")
        assert stored.exchange_rate == Decimal("1.10")

    @pytest.mark.asyncio
    async def test_conversion_failure_still_records(
        self, storage, engine, dispatcher, audit_logger, make_transaction
    ):
        """Test a failed rate lookup degrades and is audited."""
        converter = ResilientCurrencyConverter(FailingConverter(), retry_attempts=2, retry_wait_seconds=0)
        recorder = self.recorder(storage, engine, dispatcher, audit_logger, converter)

        saved = await recorder.record_transaction(
            make_transaction(amount=Decimal("50"), currency="EUR")
        )
        await dispatcher.join()

        assert saved.converted_amount == Decimal("50")
        assert saved.exchange_rate == Decimal("1")
        events = await storage.get_recent_events()
        assert AuditEventType.CURRENCY_FALLBACK in [e.event_type for e in events]

    @pytest.mark.asyncio
    async def test_hook_runs_in_background(
        self, storage, engine, dispatcher, audit_logger, make_goal, make_transaction
    ):
        """Test recording returns before the hook work has completed."""
        goal = await storage.insert_goal(make_goal(allocation_percentage=Decimal("10")))
        recorder = self.recorder(storage, engine, dispatcher, audit_logger, IdentityCurrencyConverter())

        await recorder.record_transaction(
            make_transaction(amount=Decimal("1000"), type=TransactionType.INCOME, category="Salary")
        )

        assert dispatcher.pending == 1
        assert (await storage.get_goal(goal.id)).current_amount == Decimal("0")

        await dispatcher.join()
        assert (await storage.get_goal(goal.id)).current_amount == Decimal("100")


class TestCreateAppComponents:
    """Tests for the component factory."""

    def test_in_memory_components(self):
        """Test the factory wires everything to one in-memory store without Sheets."""
        components = create_app_components(use_storage=False)

        assert components.sheets_client is None
        assert isinstance(components.transactions, InMemoryStorage)
        assert components.transactions is components.notifications
        assert components.scheduler.is_running is False


class TestRunService:
    """Tests for the service loop."""

    async def wait_for_sweep(self, scheduler):
        for _ in range(200):
            if scheduler.completed:
                return
            await asyncio.sleep(0.01)

    @pytest.mark.asyncio
    async def test_sweep_on_start_then_clean_shutdown(self, monkeypatch):
        """Test run_sweep_on_start triggers a sweep and shutdown stops the scheduler."""
        monkeypatch.setenv("RECONCILER_RUN_SWEEP_ON_START", "true")
        components = create_app_components(use_storage=False)
        shutdown = asyncio.Event()

        service = asyncio.create_task(run_service(components, shutdown))
        await self.wait_for_sweep(components.scheduler)
        assert components.scheduler.is_running is True

        shutdown.set()
        await service

        assert components.scheduler.is_running is False
        assert components.scheduler.completed == 1
        events = await components.transactions.get_recent_events()
        assert AuditEventType.SWEEP_COMPLETED in [e.event_type for e in events]

    @pytest.mark.asyncio
    async def test_no_sweep_before_first_interval(self, monkeypatch):
        """Test the first sweep waits one interval when run_sweep_on_start is off."""
        monkeypatch.setenv("RECONCILER_RUN_SWEEP_ON_START", "false")
        components = create_app_components(use_storage=False)
        shutdown = asyncio.Event()

        service = asyncio.create_task(run_service(components, shutdown))
        await asyncio.sleep(0.05)
        shutdown.set()
        await service

        assert components.scheduler.is_running is False
        assert components.scheduler.completed == 0
