"""
Shared fixtures for Expense Ledger tests.

No test talks to a real service: Ollama and the rate API are replaced
with httpx.MockTransport, OCR with a fake engine, the database with a
temporary SQLite file and the blob store with tmp_path.
"""

import json
from decimal import Decimal
from typing import Callable, Optional

import httpx
import pytest
import pytest_asyncio

from expense_ledger.audit import AuditLogger
from expense_ledger.config import AppSettings, CurrencySettings, OllamaSettings, StorageSettings
from expense_ledger.models.expense import ExtractionResult, OllamaHealth
from expense_ledger.orchestrator import ExpenseService
from expense_ledger.services.currency import CurrencyService, RateCache
from expense_ledger.services.extraction import OcrEngine, OcrError
from expense_ledger.services.storage import (
    LocalBlobStore,
    SqlExpenseRepository,
    SqlMerchantStore,
    SqlSettingsStore,
    create_engine_from_settings,
    init_schema,
)


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64

# Value of one unit of each currency in USD. Rate tables are derived from
# this, so every pair is exactly invertible.
USD_VALUE = {
    "USD": Decimal("1"),
    "EUR": Decimal("2"),
    "GBP": Decimal("1.25"),
    "JPY": Decimal("0.01"),
}


def rate_table(base: str) -> dict[str, float]:
    """Frankfurter-style table: units of each currency per one `base`."""
    return {
        code: float(USD_VALUE[base] / value)
        for code, value in USD_VALUE.items()
        if code != base
    }


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RatesApi:
    """MockTransport handler for the Frankfurter API that counts calls."""

    def __init__(self, fail: bool = False, status_code: int = 200):
        self.calls: list[str] = []
        self.fail = fail
        self.status_code = status_code

    def __call__(self, request: httpx.Request) -> httpx.Response:
        base = request.url.params["from"]
        self.calls.append(base)
        if self.fail:
            raise httpx.ConnectError("rate API unreachable", request=request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"message": "error"})
        return httpx.Response(
            200,
            json={"amount": 1.0, "base": base, "date": "2024-03-15", "rates": rate_table(base)},
        )


class FakeOcrEngine(OcrEngine):
    """Returns canned text, or raises OcrError when `error` is set."""

    def __init__(self, text: str = "", error: Optional[str] = None):
        self.text = text
        self.error = error
        self.calls = 0

    async def recognize(self, image_bytes: bytes) -> str:
        self.calls += 1
        if self.error:
            raise OcrError(self.error)
        return self.text


class OllamaApi:
    """MockTransport handler for the Ollama HTTP API."""

    def __init__(
        self,
        reply: str = "",
        models: Optional[list[str]] = None,
        generate_status: int = 200,
    ):
        self.reply = reply
        self.models = models or []
        self.generate_status = generate_status
        self.generate_payloads: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/generate":
            self.generate_payloads.append(json.loads(request.content))
            if self.generate_status != 200:
                return httpx.Response(self.generate_status, json={"error": "model crashed"})
            return httpx.Response(200, json={"model": "x", "response": self.reply, "done": True})
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": name} for name in self.models]})
        return httpx.Response(404)


class StubExtractionService:
    """
    Stands in for ExtractionService in orchestrator tests.

    Returns `result` from extract_from_image, or raises `error` if set.
    """

    def __init__(
        self,
        result: Optional[ExtractionResult] = None,
        error: Optional[Exception] = None,
        health: Optional[OllamaHealth] = None,
    ):
        self.result = result
        self.error = error
        self.health = health
        self.calls = 0

    async def extract_from_image(self, image_bytes: bytes) -> ExtractionResult:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result

    async def check_ollama_health(self) -> OllamaHealth:
        return self.health


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rates_api() -> RatesApi:
    return RatesApi()


@pytest.fixture
def currency_settings() -> CurrencySettings:
    return CurrencySettings(
        rates_url="https://rates.test/latest",
        cache_ttl_seconds=6 * 60 * 60,
        fetch_timeout_seconds=5.0,
        default_base_currency="USD",
    )


@pytest.fixture
def make_currency_service(currency_settings, fake_clock) -> Callable[[RatesApi], CurrencyService]:
    def factory(api: RatesApi) -> CurrencyService:
        return CurrencyService(
            settings=currency_settings,
            cache=RateCache(currency_settings.cache_ttl_seconds, clock=fake_clock),
            transport=httpx.MockTransport(api),
        )
    return factory


@pytest.fixture
def currency_service(make_currency_service, rates_api) -> CurrencyService:
    return make_currency_service(rates_api)


@pytest.fixture
def ollama_settings() -> OllamaSettings:
    return OllamaSettings(
        host="http://ollama.test",
        model="llama3.1:8b",
        request_timeout_seconds=5.0,
        max_retries=1,
        temperature=0.0,
    )


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings(max_upload_size_mb=1)


@pytest_asyncio.fixture
async def engine(tmp_path):
    settings = StorageSettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'expenses.db'}",
        blob_dir=str(tmp_path / "blobs"),
    )
    engine = create_engine_from_settings(settings)
    await init_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def repository(engine) -> SqlExpenseRepository:
    return SqlExpenseRepository(engine)


@pytest.fixture
def settings_store(engine, currency_settings) -> SqlSettingsStore:
    return SqlSettingsStore(engine, currency_settings)


@pytest.fixture
def merchant_store(engine) -> SqlMerchantStore:
    return SqlMerchantStore(engine)


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(base_dir=str(tmp_path / "blobs"))


@pytest.fixture
def make_service(
    repository,
    settings_store,
    blob_store,
    merchant_store,
    currency_service,
    app_settings,
) -> Callable[..., ExpenseService]:
    def factory(
        extraction: StubExtractionService,
        audit_logger: Optional[AuditLogger] = None,
    ) -> ExpenseService:
        return ExpenseService(
            repository=repository,
            settings_store=settings_store,
            blob_store=blob_store,
            extraction_service=extraction,
            currency_service=currency_service,
            merchant_store=merchant_store,
            audit_logger=audit_logger or AuditLogger(),
            app_settings=app_settings,
        )
    return factory
