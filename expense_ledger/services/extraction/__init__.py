"""Receipt extraction services package."""

from expense_ledger.services.extraction.errors import (
    ExtractionConfigError,
    ExtractionError,
    LlmError,
    OcrError,
    ParseError,
)
from expense_ledger.services.extraction.ocr import OcrEngine, TesseractOcrEngine
from expense_ledger.services.extraction.parser import (
    PARSE_FAILURE_MESSAGE,
    parse_llm_response,
)
from expense_ledger.services.extraction.prompts import (
    OCR_TO_JSON_PROMPT,
    build_extraction_prompt,
)
from expense_ledger.services.extraction.service import (
    ExtractionConfig,
    ExtractionService,
    LlmExtraction,
    OcrText,
)

__all__ = [
    "ExtractionConfig",
    "ExtractionConfigError",
    "ExtractionError",
    "ExtractionService",
    "LlmError",
    "LlmExtraction",
    "OCR_TO_JSON_PROMPT",
    "OcrEngine",
    "OcrError",
    "OcrText",
    "PARSE_FAILURE_MESSAGE",
    "ParseError",
    "TesseractOcrEngine",
    "build_extraction_prompt",
    "parse_llm_response",
]
