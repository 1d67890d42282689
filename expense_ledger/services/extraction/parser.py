"""
LLM Response Parser

Local models rarely return clean JSON. This module turns whatever came
back into an ExtractedExpense, or None when nothing usable is there.

Steps:
1. Strip markdown code fences
2. Take the first {...} block
3. Drop thousands separators from bare "amount" numbers (501,380)
4. json.loads
5. Validate and normalize each field on its own; a bad field becomes
   null, it never fails the whole parse

CRITICAL: Amounts leave this module as integers in the smallest unit of
the parsed currency (exponent 2 when the currency is unknown). This is
the only place where display amounts, symbols and separators are handled.
"""

import json
import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from expense_ledger.models.expense import Ambiguity, ExtractedExpense
from expense_ledger.services.currency.money import get_exponent_safe, is_valid_currency


PARSE_FAILURE_MESSAGE = "Failed to parse LLM response"

_CODE_FENCE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_AMOUNT_THOUSANDS = re.compile(r'"amount":\s*(\d{1,3}(?:,\d{3})+)')
_NON_NUMERIC = re.compile(r"[^\d.\-]")

# Symbols local models return instead of ISO codes. Keys are upper-cased.
CURRENCY_SYMBOLS = {
    "£": "GBP",
    "$": "USD",
    "US$": "USD",
    "€": "EUR",
    "¥": "JPY",
    "₹": "INR",
    "RP": "IDR",
}

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%Y/%m/%d",
    "%d %b %Y",
    "%d %B %Y",
    "%d %b %Y %H:%M",
)

MAX_MERCHANT_LENGTH = 200


def _extract_json_text(raw: str) -> Optional[str]:
    cleaned = _CODE_FENCE.sub("", raw)
    match = _JSON_OBJECT.search(cleaned)
    if not match:
        return None
    return _AMOUNT_THOUSANDS.sub(
        lambda m: '"amount": ' + m.group(1).replace(",", ""),
        match.group(0),
    )


def normalize_currency(value: Any) -> Optional[str]:
    """ISO code for a code or known symbol, None otherwise."""
    if not isinstance(value, str):
        return None
    code = value.strip().upper()
    code = CURRENCY_SYMBOLS.get(code, code)
    return code if is_valid_currency(code) else None


def normalize_amount(value: Any, currency: Optional[str]) -> Optional[int]:
    """
    Smallest-unit integer for a display amount.

    Accepts numbers and numeric strings with symbols or thousands
    separators ("Rp 501,380"). Zero, negatives and garbage become None.
    """
    if isinstance(value, bool) or value is None:
        return None

    if isinstance(value, (int, Decimal)):
        number = Decimal(value)
    elif isinstance(value, float):
        number = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = _NON_NUMERIC.sub("", value.replace(",", ""))
        if not cleaned:
            return None
        try:
            number = Decimal(cleaned)
        except InvalidOperation:
            return None
    else:
        return None

    if not number.is_finite() or number <= 0:
        return None

    exponent = get_exponent_safe(currency) if currency else 2
    smallest = int(number.scaleb(exponent).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return smallest if smallest > 0 else None


def normalize_date(value: Any) -> Optional[str]:
    """ISO 8601 string for an ISO-ish or common day-first date, None otherwise."""
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    try:
        return datetime.fromisoformat(text).isoformat()
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).isoformat()
        except ValueError:
            continue
    return None


def _normalize_merchant(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    merchant = value.strip()
    return merchant[:MAX_MERCHANT_LENGTH] or None


def _normalize_categories(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _normalize_ambiguous(value: Any) -> Optional[Ambiguity]:
    if isinstance(value, dict) and isinstance(value.get("reason"), str):
        return Ambiguity(reason=value["reason"])
    return None


def parse_llm_response(raw: str) -> Optional[ExtractedExpense]:
    """
    Parse an LLM reply into an ExtractedExpense.

    Returns:
        The extracted fields (each individually nullable), or None when
        no JSON object can be read from the reply
    """
    if not raw:
        return None

    json_text = _extract_json_text(raw)
    if json_text is None:
        return None

    try:
        parsed = json.loads(json_text, parse_float=Decimal)
    except json.JSONDecodeError:
        return None

    if not isinstance(parsed, dict):
        return None

    currency = normalize_currency(parsed.get("currency"))

    return ExtractedExpense(
        amount=normalize_amount(parsed.get("amount"), currency),
        currency=currency,
        date=normalize_date(parsed.get("date")),
        merchant=_normalize_merchant(parsed.get("merchant")),
        category=_normalize_categories(parsed.get("category")),
        ambiguous=_normalize_ambiguous(parsed.get("ambiguous")),
    )
