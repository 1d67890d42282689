"""
OCR Engine using Tesseract

DESIGN DECISION: OCR runs locally through pytesseract so receipt images
never leave the machine. Tesseract is a blocking subprocess call, so it
runs in the default executor to keep the event loop free.
"""

import asyncio
import io
from abc import ABC, abstractmethod
from typing import Optional

import pytesseract
from PIL import Image

from expense_ledger.config import OcrSettings, get_settings
from expense_ledger.services.extraction.errors import OcrError


class OcrEngine(ABC):
    """Turns image bytes into raw text."""

    @abstractmethod
    async def recognize(self, image_bytes: bytes) -> str:
        """
        Read all text from an image.

        Raises:
            OcrError: If the image cannot be decoded or read
        """
        pass


class TesseractOcrEngine(OcrEngine):
    """OcrEngine backed by the local tesseract binary."""

    def __init__(self, settings: Optional[OcrSettings] = None):
        self._settings = settings or get_settings().ocr
        if self._settings.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self._settings.tesseract_cmd

    def _recognize_sync(self, image_bytes: bytes) -> str:
        with Image.open(io.BytesIO(image_bytes)) as image:
            # Grayscale reads noticeably better on phone screenshots
            gray = image.convert("L")
        return pytesseract.image_to_string(gray, lang=self._settings.language)

    async def recognize(self, image_bytes: bytes) -> str:
        if not image_bytes:
            raise OcrError("OCR failed: empty image")

        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._recognize_sync, image_bytes)
        except (OSError, ValueError, pytesseract.TesseractError) as e:
            raise OcrError(f"OCR failed: {e}") from e
