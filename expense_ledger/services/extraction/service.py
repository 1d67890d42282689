"""
Receipt Extraction Service (OCR -> LLM -> parse)

DESIGN DECISION: Extraction runs fully locally:
1. Tesseract reads the image
2. A local Ollama model turns the OCR text into JSON
3. The parser validates and normalizes that JSON

The stages are strictly sequential. OCR failure raises OcrError and no
LLM call happens. LLM transport/HTTP failure raises LlmError. A reply
that cannot be parsed is NOT an exception from extract_from_image: it
comes back as success=False so the raw reply can be shown to the user.

IMPORTANT BOUNDARIES:
1. This service only extracts - it does not decide whether an expense
   can be confirmed
2. This service never stores anything
3. The "ambiguous" flag is passed through untouched
"""

import time
from typing import Optional

import httpx
import structlog
from pydantic import BaseModel, ConfigDict
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from expense_ledger.config import OllamaSettings, get_settings
from expense_ledger.models.expense import (
    ExtractedExpense,
    ExtractionResult,
    ExtractionTiming,
    OllamaHealth,
)
from expense_ledger.services.extraction.errors import (
    ExtractionConfigError,
    LlmError,
    ParseError,
)
from expense_ledger.services.extraction.ocr import OcrEngine, TesseractOcrEngine
from expense_ledger.services.extraction.parser import (
    PARSE_FAILURE_MESSAGE,
    parse_llm_response,
)
from expense_ledger.services.extraction.prompts import build_extraction_prompt


logger = structlog.get_logger(__name__)

NOT_CONFIGURED_MODEL = "(not configured)"


class ExtractionConfig(BaseModel):
    """The LLM backend this service talks to."""
    model_config = ConfigDict(frozen=True)

    ollama_host: str
    ollama_model: str


class OcrText(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    duration_ms: int


class LlmExtraction(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: ExtractedExpense
    raw_response: str
    duration_ms: int


def _elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))


class ExtractionService:
    """
    Extracts expense fields from receipt images.

    The OCR engine and HTTP transport are injectable so tests run without
    tesseract or a running Ollama.
    """

    def __init__(
        self,
        settings: Optional[OllamaSettings] = None,
        ocr_engine: Optional[OcrEngine] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings or get_settings().ollama
        self._ocr = ocr_engine or TesseractOcrEngine()
        self._transport = transport

        if not self._settings.is_configured:
            logger.warning(
                "ollama_model_not_configured",
                host=self._settings.host,
                hint="Set OLLAMA_MODEL; every capture will need manual review",
            )

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._settings.host,
            timeout=timeout,
            transport=self._transport,
        )

    def _require_model(self) -> str:
        if not self._settings.is_configured:
            raise ExtractionConfigError(
                "OLLAMA_MODEL is required. Set it to an installed model "
                "(e.g. llama3.1:8b)."
            )
        return self._settings.model

    def get_config(self) -> ExtractionConfig:
        return ExtractionConfig(
            ollama_host=self._settings.host,
            ollama_model=self._settings.model,
        )

    # =========================================================================
    # PIPELINE STAGES
    # =========================================================================

    async def extract_ocr_text(self, image_bytes: bytes) -> OcrText:
        """
        Run OCR on an image.

        Raises:
            OcrError: If the image cannot be read
        """
        start = time.perf_counter()
        text = await self._ocr.recognize(image_bytes)
        return OcrText(text=text, duration_ms=_elapsed_ms(start))

    async def _generate(self, model: str, prompt: str) -> str:
        """One non-streaming generate call. Transport errors are retried."""
        payload = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": self._settings.temperature},
        }

        try:
            async with self._client(self._settings.request_timeout_seconds) as client:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(self._settings.max_retries),
                    wait=wait_exponential(multiplier=1, min=1, max=10),
                    retry=retry_if_exception_type(httpx.TransportError),
                    reraise=True,
                ):
                    with attempt:
                        response = await client.post("/api/generate", json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise LlmError(model, str(e) or type(e).__name__) from e
        except ValueError as e:
            raise LlmError(model, "response was not JSON") from e

        reply = body.get("response") if isinstance(body, dict) else None
        if not isinstance(reply, str):
            raise LlmError(model, "response had no 'response' field")
        return reply

    async def extract_from_ocr_text(self, ocr_text: str) -> LlmExtraction:
        """
        Run only the LLM + parse stages on existing OCR text.

        Raises:
            ExtractionConfigError: If no model is configured
            LlmError: If the LLM call fails
            ParseError: If the reply cannot be parsed
        """
        model = self._require_model()

        start = time.perf_counter()
        raw = await self._generate(model, build_extraction_prompt(ocr_text))
        duration_ms = _elapsed_ms(start)

        data = parse_llm_response(raw)
        if data is None:
            raise ParseError(raw)

        return LlmExtraction(data=data, raw_response=raw, duration_ms=duration_ms)

    async def extract_from_image(self, image_bytes: bytes) -> ExtractionResult:
        """
        Full pipeline: image -> OCR -> LLM -> parsed fields.

        Returns:
            ExtractionResult; success=False when the reply was unparseable

        Raises:
            ExtractionConfigError: If no model is configured
            OcrError: If OCR fails (the LLM is not called)
            LlmError: If the LLM call fails
        """
        model = self._require_model()
        total_start = time.perf_counter()

        ocr = await self.extract_ocr_text(image_bytes)

        llm_start = time.perf_counter()
        raw = await self._generate(model, build_extraction_prompt(ocr.text))
        llm_ms = _elapsed_ms(llm_start)

        data = parse_llm_response(raw)
        timing = ExtractionTiming(
            ocr_ms=ocr.duration_ms,
            llm_ms=llm_ms,
            total_ms=_elapsed_ms(total_start),
        )

        logger.info(
            "extraction_finished",
            model=model,
            parsed=data is not None,
            ocr_ms=timing.ocr_ms,
            llm_ms=timing.llm_ms,
        )

        return ExtractionResult(
            success=data is not None,
            data=data,
            ocr_text=ocr.text,
            raw_llm_response=raw,
            timing=timing,
            error=None if data is not None else PARSE_FAILURE_MESSAGE,
        )

    # =========================================================================
    # HEALTH
    # =========================================================================

    async def check_ollama_health(self) -> OllamaHealth:
        """
        Report reachability, configuration and model installation separately.

        Never raises; connection problems come back as available=False.
        """
        host = self._settings.host
        configured = self._settings.is_configured
        model = self._settings.model if configured else NOT_CONFIGURED_MODEL

        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get("/api/tags")
            response.raise_for_status()
            names = [
                entry["name"]
                for entry in response.json().get("models", [])
                if isinstance(entry, dict) and "name" in entry
            ]
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            return OllamaHealth(
                available=False,
                configured=configured,
                model_available=False,
                models=[],
                host=host,
                model=model,
                error=str(e) or "Connection failed",
            )

        return OllamaHealth(
            available=True,
            configured=configured,
            model_available=configured and self._settings.model in names,
            models=names,
            host=host,
            model=model,
        )
