"""
Tesseract OCR Provider

The classic open-source OCR engine.
https://github.com/tesseract-ocr/tesseract

License: Apache 2.0 - Commercial use allowed
Requires: tesseract-ocr installed on system + pytesseract

Two catalog entries share this engine: "tesseract" runs inside the web
service, "tesseract-local" runs in the caller's own process so the document
never leaves the machine.
"""

import asyncio
import io
import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import pytesseract
from PIL import Image, UnidentifiedImageError

from ..base import OCRProvider, PageImage, ProviderType, RunContext
from ..config import Settings
from ..exceptions import ProviderError
from ..registry import register_provider


# Set Tesseract path for Windows if not in PATH
if os.name == 'nt':
    for _path in (
        r"C:\Program Files\Tesseract-OCR\tesseract.exe",
        r"C:\Program Files (x86)\Tesseract-OCR\tesseract.exe",
    ):
        if os.path.exists(_path):
            pytesseract.pytesseract.tesseract_cmd = _path
            break


@register_provider
class TesseractProvider(OCRProvider):
    """
    Tesseract OCR Provider

    Recognizes one page per call; multi-page documents are handled page by
    page, in order. The engine is blocking, so every call runs in the
    default executor.
    """

    PROVIDER_ID = "tesseract"
    DISPLAY_NAME = "Tesseract"
    DESCRIPTION = "Local OCR - Free, runs on server"
    PROVIDER_TYPE = ProviderType.LOCAL
    LICENSE = "Apache-2.0"

    def __init__(self, lang: Optional[str] = None, config: str = "", tesseract_cmd: Optional[str] = None):
        """
        Initialize Tesseract provider.

        Args:
            lang: Language code (default from JUSTOCR_TESSERACT_LANG, else 'eng')
            config: Additional tesseract config options
            tesseract_cmd: Path to tesseract executable (if not in PATH)
        """
        settings = Settings.from_env()
        self.lang = lang or settings.tesseract_lang
        self.config = config

        tesseract_cmd = tesseract_cmd or settings.tesseract_cmd
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    @asynccontextmanager
    async def open_run(self, api_key: Optional[str] = None) -> AsyncIterator[RunContext]:
        loop = asyncio.get_running_loop()
        try:
            version = await loop.run_in_executor(None, pytesseract.get_tesseract_version)
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            raise ProviderError(f"Tesseract not available: {e}", provider_id=self.PROVIDER_ID) from e

        logging.debug(f"Tesseract run started, version: {version}")
        run = RunContext()
        try:
            yield run
        finally:
            logging.debug("Tesseract run finished")

    def _image_to_string(self, data: bytes) -> str:
        with Image.open(io.BytesIO(data)) as image:
            return pytesseract.image_to_string(image, lang=self.lang, config=self.config).strip()

    async def recognize(self, page: PageImage, run: RunContext) -> str:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._image_to_string, page.data)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
            logging.error(f"Tesseract processing error on page {page.page_number}: {e}")
            raise ProviderError(f"Tesseract failed: {e}", provider_id=self.PROVIDER_ID) from e
        except (UnidentifiedImageError, OSError) as e:
            logging.error(f"Tesseract could not read page {page.page_number}: {e}")
            raise ProviderError(f"Could not read page image: {e}", provider_id=self.PROVIDER_ID) from e


@register_provider
class LocalTesseractProvider(TesseractProvider):
    """Tesseract in the caller's process; data never leaves the device."""

    PROVIDER_ID = "tesseract-local"
    DISPLAY_NAME = "Tesseract (Local)"
    DESCRIPTION = "Privacy Mode - Data never leaves your device"
    EXECUTES_LOCALLY = True


__all__ = [
    'TesseractProvider',
    'LocalTesseractProvider',
]
