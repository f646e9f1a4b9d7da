"""
OCR Providers package.

Each provider implements a common interface for OCR processing.
All providers inherit from OCRProvider base class and register
with the ProviderRegistry when this package is imported.
"""

# Local providers
from .tesseract_provider import TesseractProvider, LocalTesseractProvider

# Cloud providers (BYOK)
from .mistral_ocr import MistralOCRProvider
from .google_vision import GoogleVisionOCR

__all__ = [
    'TesseractProvider',
    'LocalTesseractProvider',
    'MistralOCRProvider',
    'GoogleVisionOCR',
]
