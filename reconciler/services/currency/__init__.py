"""Currency conversion package."""

from reconciler.services.currency.converter import (
    CurrencyConversionError,
    CurrencyConverter,
    IdentityCurrencyConverter,
    ResilientCurrencyConverter,
    StaticRateCurrencyConverter,
    build_currency_converter,
)

__all__ = [
    "CurrencyConversionError",
    "CurrencyConverter",
    "IdentityCurrencyConverter",
    "ResilientCurrencyConverter",
    "StaticRateCurrencyConverter",
    "build_currency_converter",
]
