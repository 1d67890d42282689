"""
Money Utilities

All amounts in Expense Ledger are integers in the currency's smallest
unit (cents, yen, fils). These helpers move between that representation
and display amounts without floating-point error.

CRITICAL: The number of decimal places is looked up per currency
(USD 2, JPY 0, KWD 3). Never assume 2.

Currency metadata comes from Babel's CLDR data.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from babel.numbers import format_currency, get_currency_precision, list_currencies


Numeric = Union[int, float, str, Decimal]


class InvalidCurrencyError(ValueError):
    """Raised when a string is not a known ISO 4217 currency code."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Invalid ISO 4217 currency code: {code}")


_KNOWN_CURRENCIES = frozenset(list_currencies())


def is_valid_currency(code: str) -> bool:
    """True when `code` is an upper-case ISO 4217 code Babel knows about."""
    return isinstance(code, str) and code in _KNOWN_CURRENCIES


def get_exponent(code: str) -> int:
    """
    Number of decimal places for a currency.

    Raises:
        InvalidCurrencyError: If the code is unknown
    """
    if not is_valid_currency(code):
        raise InvalidCurrencyError(code)
    return get_currency_precision(code)


def get_exponent_safe(code: str, default: int = 2) -> int:
    """Like get_exponent, but falls back to `default` for unknown codes."""
    if not is_valid_currency(code):
        return default
    return get_currency_precision(code)


def _round(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def to_smallest_unit(display_amount: Numeric, currency: str) -> int:
    """
    Convert a display amount to the smallest unit.

    Example: 19.99 USD -> 1999, 1500 JPY -> 1500
    """
    exponent = get_exponent(currency)
    try:
        value = Decimal(str(display_amount))
    except InvalidOperation as e:
        raise ValueError(f"Not a number: {display_amount!r}") from e
    return _round(value.scaleb(exponent))


def to_display_amount(smallest_unit: int, currency: str) -> Decimal:
    """Example: 1999 USD -> Decimal('19.99')"""
    exponent = get_exponent(currency)
    return Decimal(smallest_unit).scaleb(-exponent)


def to_display_string(smallest_unit: int, currency: str) -> str:
    """Display amount with exactly the currency's decimal places: 1999 USD -> '19.99'."""
    exponent = get_exponent(currency)
    return f"{Decimal(smallest_unit).scaleb(-exponent):.{exponent}f}"


def convert_amount(
    amount: int,
    from_currency: str,
    to_currency: str,
    rate: Numeric,
) -> int:
    """
    Convert between currencies at `rate` (units of `to_currency` per
    one unit of `from_currency`), honouring both exponents.

    Example: convert_amount(1000, "JPY", "USD", "0.0067") -> 670
    """
    if from_currency == to_currency:
        return amount

    from_exponent = get_exponent(from_currency)
    to_exponent = get_exponent(to_currency)

    display = Decimal(amount).scaleb(-from_exponent)
    converted = display * Decimal(str(rate))
    return _round(converted.scaleb(to_exponent))


def rescale_amount(amount: int, from_exponent: int, to_exponent: int) -> int:
    """Move an amount between exponents at a 1:1 rate: rescale_amount(1500, 0, 2) -> 150000."""
    return _round(Decimal(amount).scaleb(to_exponent - from_exponent))


def format_money(smallest_unit: int, currency: str, locale: str = "en_US") -> str:
    """
    Localized currency string: 1999 USD -> '$19.99'.

    Unknown codes render as '<CODE> <amount>' with two decimals.
    """
    if not is_valid_currency(currency):
        exponent = get_exponent_safe(currency)
        return f"{currency} {Decimal(smallest_unit).scaleb(-exponent):.{exponent}f}"
    return format_currency(to_display_amount(smallest_unit, currency), currency, locale=locale)
