"""Extraction pipeline errors. The orchestrator absorbs all of these into a failed result."""


class ExtractionError(Exception):
    """Base exception for extraction errors."""
    pass


class ExtractionConfigError(ExtractionError):
    """The LLM backend is not configured (no model set)."""
    pass


class OcrError(ExtractionError):
    """Tesseract could not read the image."""
    pass


class LlmError(ExtractionError):
    """The LLM call failed at the HTTP or transport level."""

    def __init__(self, model: str, message: str):
        self.model = model
        super().__init__(f"LLM extraction failed (model: {model}): {message}")


class ParseError(ExtractionError):
    """The LLM answered, but not with JSON we could read."""

    def __init__(self, raw_response: str, message: str = "Failed to parse LLM response as JSON"):
        self.raw_response = raw_response
        super().__init__(message)
