"""
Endpoint URLs and environment-driven settings for JustOCR.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional


class API_URLS:
    MISTRAL_BASE_URL = "https://api.mistral.ai/v1"
    MISTRAL_OCR = f"{MISTRAL_BASE_URL}/ocr"
    MISTRAL_MODELS = f"{MISTRAL_BASE_URL}/models"
    GOOGLE_VISION_ANNOTATE = "https://vision.googleapis.com/v1/images:annotate"
    GOOGLE_VISION_SCOPE = "https://www.googleapis.com/auth/cloud-vision"

    # Paths served by justocr.server
    OCR_PATH = "/api/ocr"
    CREDENTIALS_PATH = "/api/ocr/credentials"
    PROVIDERS_PATH = "/api/ocr/providers"


MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
MAX_PAGES_SIZE = 100 * 1024 * 1024  # all rasterized pages of one request
MAX_BENCHMARK_PROVIDERS = 4
PDF_DPI = 300

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


@dataclass
class Settings:
    """Runtime settings, read from the environment."""
    server_url: str = "http://127.0.0.1:8080"
    host: str = "127.0.0.1"
    port: int = 8080
    log_level: str = "INFO"
    request_timeout_s: float = 60.0
    tesseract_cmd: Optional[str] = None
    tesseract_lang: str = "eng"

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            server_url=os.environ.get("JUSTOCR_SERVER_URL", defaults.server_url).rstrip("/"),
            host=os.environ.get("JUSTOCR_HOST", defaults.host),
            port=int(os.environ.get("JUSTOCR_PORT", defaults.port)),
            log_level=os.environ.get("JUSTOCR_LOG_LEVEL", defaults.log_level),
            request_timeout_s=float(os.environ.get("JUSTOCR_REQUEST_TIMEOUT", defaults.request_timeout_s)),
            tesseract_cmd=os.environ.get("JUSTOCR_TESSERACT_CMD") or None,
            tesseract_lang=os.environ.get("JUSTOCR_TESSERACT_LANG", defaults.tesseract_lang),
        )


def get_mistral_api_key() -> Optional[str]:
    """System-held Mistral key from the environment."""
    return os.environ.get("MISTRAL_API_KEY") or None


def configure_logging(level: str = "INFO") -> None:
    """Set up root logging the same way for the CLI and the web service."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT
    )


__all__ = [
    'API_URLS',
    'MAX_FILE_SIZE',
    'MAX_PAGES_SIZE',
    'MAX_BENCHMARK_PROVIDERS',
    'PDF_DPI',
    'Settings',
    'get_mistral_api_key',
    'configure_logging',
]
