#!/usr/bin/env python3
"""
Google Cloud Vision OCR Provider

This module provides OCR capabilities using Google Cloud Vision API
(DOCUMENT_TEXT_DETECTION, which handles dense text better than TEXT_DETECTION).
Supports two authentication methods:
- API key (REST API), used for user-supplied keys
- Application default credentials (SDK), used for system-held credentials:
  GOOGLE_APPLICATION_CREDENTIALS or `gcloud auth application-default login`

All pages of a document go out in a single annotate call, one request per page.
"""

import asyncio
import base64
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Sequence

import aiohttp
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import vision

from ..base import OCRProvider, PageImage, ProviderType, RunContext
from ..config import API_URLS, Settings
from ..exceptions import ProviderError, ProviderErrorKind
from ..registry import register_provider
from .http_errors import classify_google_error


# images:annotate accepts at most this many requests per call
MAX_IMAGES_PER_CALL = 16


def _sdk_error(e: Exception, provider_id: str) -> ProviderError:
    if isinstance(e, google_exceptions.Unauthenticated):
        kind = ProviderErrorKind.INVALID_CREDENTIALS
    elif isinstance(e, google_exceptions.PermissionDenied):
        kind = ProviderErrorKind.PERMISSION_DENIED
    elif isinstance(e, google_exceptions.ResourceExhausted):
        kind = ProviderErrorKind.RATE_LIMITED
    else:
        kind = ProviderErrorKind.OTHER
    return ProviderError(f"Google Vision API error: {e}", kind, provider_id)


@register_provider
class GoogleVisionOCR(OCRProvider):
    """
    Google Cloud Vision OCR Provider

    Handles OCR operations using Google Cloud Vision API with either a
    user-supplied API key (REST) or application default credentials (SDK).
    """

    PROVIDER_ID = "google"
    DISPLAY_NAME = "Google Cloud Vision"
    DESCRIPTION = "Cloud OCR - Enterprise grade document text detection (BYOK supported)"
    PROVIDER_TYPE = ProviderType.CLOUD
    LICENSE = "Commercial API"
    ACCEPTS_USER_CREDENTIALS = True
    REQUIRES_NETWORK = True
    SUPPORTS_BATCH = True

    def __init__(self, annotate_url: Optional[str] = None, timeout_s: Optional[float] = None):
        self.annotate_url = annotate_url or API_URLS.GOOGLE_VISION_ANNOTATE
        self.timeout_s = timeout_s or Settings.from_env().request_timeout_s

    @asynccontextmanager
    async def open_run(self, api_key: Optional[str] = None) -> AsyncIterator[RunContext]:
        key = (api_key or "").strip()

        # API key available: REST mode, no SDK client needed
        if key:
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            async with aiohttp.ClientSession(timeout=timeout) as http:
                yield RunContext(api_key=key, http=http)
            return

        try:
            client = vision.ImageAnnotatorClient()
        except auth_exceptions.DefaultCredentialsError as e:
            logging.error(f"Failed to initialize Google Cloud Vision client: {e}")
            raise ProviderError(
                "Google Cloud credentials are not configured. Set GOOGLE_APPLICATION_CREDENTIALS "
                "or run: gcloud auth application-default login",
                ProviderErrorKind.INVALID_CREDENTIALS,
                self.PROVIDER_ID
            ) from e

        logging.info("Google Vision OCR initialized with default credentials")
        try:
            yield RunContext(client=client)
        finally:
            client.transport.close()

    async def recognize(self, page: PageImage, run: RunContext) -> str:
        texts = await self.recognize_all([page], run)
        return texts[0]

    async def recognize_all(self, pages: Sequence[PageImage], run: RunContext) -> List[str]:
        texts: List[str] = []
        for start in range(0, len(pages), MAX_IMAGES_PER_CALL):
            chunk = pages[start:start + MAX_IMAGES_PER_CALL]
            if run.api_key:
                texts.extend(await self._annotate_with_api_key(chunk, run))
            else:
                texts.extend(await self._annotate_with_sdk(chunk, run))
        return texts

    async def _annotate_with_api_key(self, pages: Sequence[PageImage], run: RunContext) -> List[str]:
        """Process pages using REST API with API key authentication."""
        payload = {
            "requests": [
                {
                    "image": {"content": base64.b64encode(page.data).decode("utf-8")},
                    "features": [{"type": "DOCUMENT_TEXT_DETECTION", "maxResults": 1}],
                }
                for page in pages
            ]
        }

        try:
            async with run.http.post(self.annotate_url, params={"key": run.api_key}, json=payload) as response:
                if response.status != 200:
                    body = await response.text()
                    logging.error(f"Vision API error: HTTP {response.status}")
                    raise classify_google_error(response.status, body, self.PROVIDER_ID)
                result = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logging.error(f"Vision API request failed: {e}")
            raise ProviderError(f"Google Vision request failed: {e}", provider_id=self.PROVIDER_ID) from e
        except ValueError as e:
            raise ProviderError("Invalid response from Google Vision", provider_id=self.PROVIDER_ID) from e

        responses = result.get("responses") if isinstance(result, dict) else None
        if not isinstance(responses, list) or len(responses) != len(pages):
            raise ProviderError("No response from Vision API", provider_id=self.PROVIDER_ID)

        texts = []
        for response_data in responses:
            error = response_data.get("error")
            if error:
                raise ProviderError(
                    f"Google Vision API error: {error.get('message', 'Unknown error')}",
                    provider_id=self.PROVIDER_ID
                )
            annotation = response_data.get("fullTextAnnotation") or {}
            texts.append((annotation.get("text") or "").strip())
        return texts

    async def _annotate_with_sdk(self, pages: Sequence[PageImage], run: RunContext) -> List[str]:
        """Process pages using the Google Cloud Vision SDK."""
        feature = vision.Feature(type_=vision.Feature.Type.DOCUMENT_TEXT_DETECTION)
        requests = [
            vision.AnnotateImageRequest(image=vision.Image(content=page.data), features=[feature])
            for page in pages
        ]

        loop = asyncio.get_running_loop()
        try:
            batch = await loop.run_in_executor(
                None,
                lambda: run.client.batch_annotate_images(requests=requests)
            )
        except google_exceptions.GoogleAPICallError as e:
            logging.error(f"Error performing OCR with SDK: {e}")
            raise _sdk_error(e, self.PROVIDER_ID) from e

        texts = []
        for response in batch.responses:
            if response.error.message:
                logging.error(f"Vision API error: {response.error.message}")
                raise ProviderError(
                    f"Google Vision API error: {response.error.message}",
                    provider_id=self.PROVIDER_ID
                )
            annotation = response.full_text_annotation
            texts.append((annotation.text if annotation else "").strip())
        return texts


__all__ = [
    'GoogleVisionOCR',
    'MAX_IMAGES_PER_CALL',
]
