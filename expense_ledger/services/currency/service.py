"""
Currency Conversion Service

Converts amounts into the user's base currency using live rates from
the Frankfurter API (ECB reference rates).

DESIGN DECISION: Two modes, chosen by the caller:
1. convert() is STRICT - a missing rate or failed fetch raises
   CurrencyConversionError. Used when confirming, where a wrong base
   amount would be persisted.
2. convert_with_fallback() is BEST-EFFORT - it logs a warning and
   converts 1:1 (still respecting both exponents). Used for display only.

Rate tables are cached per base currency in a RateCache owned by the
service instance. Concurrent refreshes are tolerated: both fetch, the
last write wins.
"""

import time
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from expense_ledger.config import CurrencySettings, get_settings
from expense_ledger.services.currency.money import (
    convert_amount,
    get_exponent,
    get_exponent_safe,
    is_valid_currency,
    rescale_amount,
)


logger = structlog.get_logger(__name__)


class CurrencyConversionError(Exception):
    """A conversion could not be performed (no rate, fetch failed, unknown code)."""

    def __init__(self, from_currency: str, to_currency: str, reason: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.reason = reason
        super().__init__(f"Failed to convert {from_currency} to {to_currency}: {reason}")


class RateCache:
    """
    Rate tables keyed by base currency, each valid for `ttl_seconds`.

    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[dict[str, Decimal], float]] = {}

    def get(self, base_currency: str) -> Optional[dict[str, Decimal]]:
        """Fresh rates for `base_currency`, or None when absent or expired."""
        entry = self._entries.get(base_currency)
        if entry is None:
            return None
        rates, fetched_at = entry
        if self._clock() - fetched_at >= self._ttl_seconds:
            return None
        return rates

    def put(self, base_currency: str, rates: dict[str, Decimal]) -> None:
        self._entries[base_currency] = (rates, self._clock())

    def clear(self) -> None:
        self._entries.clear()


class CurrencyService:
    """
    Exchange-rate lookup and conversion between smallest-unit amounts.

    Rates are "units of `to` per one unit of `from`". A table fetched
    with base B maps each currency C to "units of C per one B", so the
    rate from C to B is 1 / table[C].
    """

    def __init__(
        self,
        settings: Optional[CurrencySettings] = None,
        cache: Optional[RateCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings or get_settings().currency
        self._cache = cache or RateCache(self._settings.cache_ttl_seconds)
        self._transport = transport

    # =========================================================================
    # RATE TABLES
    # =========================================================================

    async def _fetch_rates(self, base_currency: str) -> dict[str, Decimal]:
        timeout = self._settings.fetch_timeout_seconds
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(3) | stop_after_delay(timeout),
                    wait=wait_exponential(multiplier=0.2, max=1),
                    retry=retry_if_exception_type(httpx.TransportError),
                    reraise=True,
                ):
                    with attempt:
                        response = await client.get(
                            self._settings.rates_url,
                            params={"from": base_currency},
                        )
        except httpx.TransportError as e:
            raise CurrencyConversionError(base_currency, "*", f"API request failed: {e}") from e

        if response.status_code != 200:
            raise CurrencyConversionError(
                base_currency, "*", f"API returned status {response.status_code}"
            )

        try:
            payload = response.json()
            rates = {
                code: Decimal(str(value))
                for code, value in payload["rates"].items()
            }
        except (ValueError, KeyError, TypeError, AttributeError, InvalidOperation) as e:
            raise CurrencyConversionError(base_currency, "*", "Failed to parse API response") from e

        logger.info("exchange_rates_fetched", base_currency=base_currency, count=len(rates))
        return rates

    async def get_rates(self, base_currency: str) -> dict[str, Decimal]:
        """
        Rate table for `base_currency`, served from cache while fresh.

        Raises:
            CurrencyConversionError: If the table cannot be fetched
        """
        cached = self._cache.get(base_currency)
        if cached is not None:
            return cached

        rates = await self._fetch_rates(base_currency)
        self._cache.put(base_currency, rates)
        return rates

    async def get_rate(self, from_currency: str, to_currency: str) -> Decimal:
        """
        Units of `to_currency` per one unit of `from_currency`.

        Raises:
            CurrencyConversionError: If no rate is available
        """
        if from_currency == to_currency:
            return Decimal(1)

        try:
            rates = await self.get_rates(to_currency)
        except CurrencyConversionError as e:
            raise CurrencyConversionError(from_currency, to_currency, e.reason) from e

        rate_from_base = rates.get(from_currency)
        if rate_from_base is None or rate_from_base == 0:
            raise CurrencyConversionError(
                from_currency, to_currency, f"No exchange rate available for {from_currency}"
            )
        return Decimal(1) / rate_from_base

    # =========================================================================
    # CONVERSION
    # =========================================================================

    async def convert(self, amount: int, from_currency: str, to_currency: str) -> int:
        """
        Strict conversion between smallest-unit amounts.

        Same currency returns the amount unchanged without any lookup.

        Raises:
            CurrencyConversionError: On unknown currency, missing rate or failed fetch
        """
        if from_currency == to_currency:
            return amount

        for code in (from_currency, to_currency):
            if not is_valid_currency(code):
                raise CurrencyConversionError(
                    from_currency, to_currency, f"Unknown currency {code}"
                )

        rate = await self.get_rate(from_currency, to_currency)
        return convert_amount(amount, from_currency, to_currency, rate)

    async def convert_with_fallback(self, amount: int, from_currency: str, to_currency: str) -> int:
        """Best-effort conversion: on failure, logs a warning and converts 1:1."""
        try:
            return await self.convert(amount, from_currency, to_currency)
        except CurrencyConversionError as e:
            logger.warning(
                "currency_conversion_fallback",
                from_currency=from_currency,
                to_currency=to_currency,
                reason=e.reason,
            )
            return rescale_amount(
                amount,
                get_exponent_safe(from_currency),
                get_exponent_safe(to_currency),
            )

    def get_exponent(self, currency: str) -> int:
        return get_exponent(currency)

    def clear_cache(self) -> None:
        """Drop all cached rate tables."""
        self._cache.clear()
