"""Currency services package."""

from expense_ledger.services.currency.money import (
    InvalidCurrencyError,
    convert_amount,
    format_money,
    get_exponent,
    get_exponent_safe,
    is_valid_currency,
    rescale_amount,
    to_display_amount,
    to_display_string,
    to_smallest_unit,
)
from expense_ledger.services.currency.service import (
    CurrencyConversionError,
    CurrencyService,
    RateCache,
)

__all__ = [
    "CurrencyConversionError",
    "CurrencyService",
    "InvalidCurrencyError",
    "RateCache",
    "convert_amount",
    "format_money",
    "get_exponent",
    "get_exponent_safe",
    "is_valid_currency",
    "rescale_amount",
    "to_display_amount",
    "to_display_string",
    "to_smallest_unit",
]
