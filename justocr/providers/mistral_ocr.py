"""
Mistral OCR Provider

Uses Mistral's dedicated OCR endpoint (mistral-ocr-latest).
https://docs.mistral.ai/capabilities/document/

License: Commercial API
Authentication: MISTRAL_API_KEY (system-held) or a user-supplied key (BYOK)
"""

import asyncio
import base64
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import aiohttp

from ..base import OCRProvider, PageImage, ProviderType, RunContext
from ..config import API_URLS, Settings, get_mistral_api_key
from ..exceptions import ProviderError, ProviderErrorKind
from ..registry import register_provider
from .http_errors import classify_mistral_error


@register_provider
class MistralOCRProvider(OCRProvider):
    """
    Mistral OCR Provider

    Sends one page image per request as a base64 data URL and combines the
    markdown of every page Mistral returns.
    """

    PROVIDER_ID = "mistral"
    DISPLAY_NAME = "Mistral OCR"
    DESCRIPTION = "Cloud OCR - High accuracy with Mistral OCR (BYOK supported)"
    PROVIDER_TYPE = ProviderType.CLOUD
    LICENSE = "Commercial API"
    ACCEPTS_USER_CREDENTIALS = True
    REQUIRES_NETWORK = True

    DEFAULT_MODEL = "mistral-ocr-latest"

    def __init__(self, model: Optional[str] = None, ocr_url: Optional[str] = None, timeout_s: Optional[float] = None):
        self.model = model or self.DEFAULT_MODEL
        self.ocr_url = ocr_url or API_URLS.MISTRAL_OCR
        self.timeout_s = timeout_s or Settings.from_env().request_timeout_s

    @asynccontextmanager
    async def open_run(self, api_key: Optional[str] = None) -> AsyncIterator[RunContext]:
        key = (api_key or "").strip() or get_mistral_api_key()
        if not key:
            raise ProviderError(
                "MISTRAL_API_KEY environment variable is not set.",
                ProviderErrorKind.INVALID_CREDENTIALS,
                self.PROVIDER_ID
            )

        timeout = aiohttp.ClientTimeout(total=self.timeout_s)
        async with aiohttp.ClientSession(timeout=timeout) as http:
            yield RunContext(api_key=key, http=http)

    async def recognize(self, page: PageImage, run: RunContext) -> str:
        image_base64 = base64.b64encode(page.data).decode("utf-8")
        payload = {
            "model": self.model,
            "document": {
                "type": "image_url",
                "image_url": f"data:{page.media_type};base64,{image_base64}",
            },
        }
        headers = {"Authorization": f"Bearer {run.api_key}"}

        try:
            async with run.http.post(self.ocr_url, json=payload, headers=headers) as response:
                if response.status != 200:
                    body = await response.text()
                    logging.error(f"Mistral OCR error on page {page.page_number}: HTTP {response.status}")
                    raise classify_mistral_error(response.status, body, self.PROVIDER_ID)
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logging.error(f"Mistral OCR request failed: {e}")
            raise ProviderError(f"Mistral OCR request failed: {e}", provider_id=self.PROVIDER_ID) from e
        except ValueError as e:
            raise ProviderError("Invalid response from Mistral OCR", provider_id=self.PROVIDER_ID) from e

        if not isinstance(data, dict):
            raise ProviderError("Invalid response from Mistral OCR", provider_id=self.PROVIDER_ID)

        pages = data.get("pages") or []
        return "\n\n".join(p.get("markdown") for p in pages if p.get("markdown")).strip()


__all__ = ['MistralOCRProvider']
