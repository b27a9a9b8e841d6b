"""
Currency Conversion

The engine tracks budgets and goals in a single base currency. Transactions
in other currencies are converted when they are recorded.

CRITICAL: A failed rate lookup must never fail the transaction write.
ResilientCurrencyConverter retries the underlying converter and then
degrades to an identity conversion (rate 1.0), marking the result as
degraded so callers can audit it.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

import structlog
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from reconciler.config import CurrencySettings
from reconciler.models.finance import ConversionResult


logger = structlog.get_logger("reconciler.currency")


class CurrencyConversionError(Exception):
    """A rate could not be determined."""
    pass


class CurrencyConverter(ABC):
    """Converts amounts between currencies."""

    @abstractmethod
    async def convert(
        self,
        amount: Decimal,
        from_currency: str,
        to_currency: str,
    ) -> ConversionResult:
        """
        Convert amount from one currency to another.

        Raises:
            CurrencyConversionError: If no rate is available
        """
        pass


class IdentityCurrencyConverter(CurrencyConverter):
    """Treats every currency pair as 1:1."""

    async def convert(
        self,
        amount: Decimal,
        from_currency: str,
        to_currency: str,
    ) -> ConversionResult:
        return ConversionResult(converted_amount=amount, exchange_rate=Decimal("1"))


class StaticRateCurrencyConverter(CurrencyConverter):
    """
    Converts using a fixed rate table.

    Rates are expressed as the value of one unit of the currency in the
    base currency, e.g. {"EUR": Decimal("1.08")} with base USD.
    """

    def __init__(self, rates: dict[str, Decimal], base_currency: str = "USD"):
        self._base_currency = base_currency.upper()
        self._rates = {code.upper(): rate for code, rate in rates.items()}
        self._rates[self._base_currency] = Decimal("1")

    def _rate_to_base(self, currency: str) -> Decimal:
        try:
            return self._rates[currency.upper()]
        except KeyError:
            raise CurrencyConversionError(f"No exchange rate configured for {currency}")

    async def convert(
        self,
        amount: Decimal,
        from_currency: str,
        to_currency: str,
    ) -> ConversionResult:
        if from_currency.upper() == to_currency.upper():
            return ConversionResult(converted_amount=amount, exchange_rate=Decimal("1"))

        rate = self._rate_to_base(from_currency) / self._rate_to_base(to_currency)
        return ConversionResult(converted_amount=amount * rate, exchange_rate=rate)


class ResilientCurrencyConverter(CurrencyConverter):
    """
    Wraps a converter with retries and an identity fallback.

    convert() never raises for rate failures.
    """

    def __init__(
        self,
        inner: CurrencyConverter,
        retry_attempts: int = 3,
        retry_wait_seconds: float = 1.0,
    ):
        self._inner = inner
        self._retry_attempts = retry_attempts
        self._retry_wait_seconds = retry_wait_seconds

    async def convert(
        self,
        amount: Decimal,
        from_currency: str,
        to_currency: str,
    ) -> ConversionResult:
        result: Optional[ConversionResult] = None
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._retry_attempts),
                wait=wait_exponential(
                    multiplier=self._retry_wait_seconds,
                    max=self._retry_wait_seconds * 10,
                ),
                reraise=True,
            ):
                with attempt:
                    result = await self._inner.convert(amount, from_currency, to_currency)
        except Exception as e:
            logger.warning(
                "currency_conversion_degraded",
                from_currency=from_currency,
                to_currency=to_currency,
                error=str(e),
            )
            return ConversionResult(
                converted_amount=amount,
                exchange_rate=Decimal("1"),
                degraded=True,
                error=str(e),
            )
        return result


def build_currency_converter(settings: CurrencySettings) -> ResilientCurrencyConverter:
    """Create the converter described by configuration."""
    rates = settings.rates_map
    if rates:
        inner: CurrencyConverter = StaticRateCurrencyConverter(rates, settings.base_currency)
    else:
        inner = IdentityCurrencyConverter()
    return ResilientCurrencyConverter(
        inner,
        retry_attempts=settings.retry_attempts,
        retry_wait_seconds=settings.retry_wait_seconds,
    )
