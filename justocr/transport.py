"""
Mediated execution: run several providers behind one call and deliver each
provider's outcome as soon as it finishes.

Two transports share the same event shape:
- InProcessMediatedTransport runs the providers concurrently in this process
  with system-held credentials (the web service uses it too)
- HttpMediatedTransport posts the pages to the web service and reads its
  NDJSON response stream

Events are {"type": "result", providerId, providerName, result, error, status}
followed by a final {"type": "done"}.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional, Sequence

import aiohttp

from .base import OCRResult, PageImage
from .config import API_URLS, Settings
from .exceptions import OCRError, ProviderError
from .registry import ProviderRegistry
from .runner import run_provider
from .streaming import iter_ndjson


DONE_EVENT = {"type": "done"}


def event_for(
    provider_id: str,
    provider_name: str,
    result: Optional[OCRResult] = None,
    error: Optional[str] = None
) -> Dict[str, Any]:
    """The stream record for one finished provider."""
    return {
        "type": "result",
        "providerId": provider_id,
        "providerName": provider_name,
        "result": result.to_dict() if result else None,
        "error": error,
        "status": "completed" if result else "error",
    }


def is_done(event: Dict[str, Any]) -> bool:
    return event.get("type") == "done"


class MediatedTransport(ABC):
    """Runs a group of providers on the caller's behalf."""

    @abstractmethod
    def stream(self, provider_ids: Sequence[str], pages: Sequence[PageImage]) -> AsyncIterator[Dict[str, Any]]:
        """Yield one result event per provider as it finishes, then DONE_EVENT."""


class InProcessMediatedTransport(MediatedTransport):
    """Runs every provider concurrently in this process with system-held credentials."""

    def __init__(self, registry=ProviderRegistry):
        self.registry = registry

    async def _run_one(self, provider_id: str, pages: Sequence[PageImage]) -> Dict[str, Any]:
        try:
            result = await run_provider(provider_id, pages, registry=self.registry)
        except OCRError as e:
            logging.error(f"Provider {provider_id} failed: {e}")
            return event_for(provider_id, self.registry.display_name(provider_id), error=str(e))
        return event_for(provider_id, result.provider_label, result=result)

    async def stream(self, provider_ids: Sequence[str], pages: Sequence[PageImage]) -> AsyncIterator[Dict[str, Any]]:
        tasks = [asyncio.ensure_future(self._run_one(provider_id, pages)) for provider_id in provider_ids]
        try:
            for next_done in asyncio.as_completed(tasks):
                yield await next_done
            yield dict(DONE_EVENT)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()


class HttpMediatedTransport(MediatedTransport):
    """
    Client of the web service's multi-provider stream.

    Pages are sent already normalized, so the service does no conversion.
    """

    def __init__(self, server_url: Optional[str] = None, session: Optional[aiohttp.ClientSession] = None,
                 timeout_s: Optional[float] = None):
        settings = Settings.from_env()
        self.server_url = (server_url or settings.server_url).rstrip("/")
        self.session = session
        self.timeout_s = timeout_s or settings.request_timeout_s

    def _open_session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None, sock_read=self.timeout_s))

    async def stream(self, provider_ids: Sequence[str], pages: Sequence[PageImage]) -> AsyncIterator[Dict[str, Any]]:
        form = aiohttp.FormData()
        for page in pages:
            form.add_field(
                "page",
                page.data,
                filename=f"page-{page.page_number}.png",
                content_type=page.media_type
            )
        form.add_field("providers", json.dumps(list(provider_ids)))

        owns_session = self.session is None
        session = self.session or self._open_session()
        try:
            async with session.post(f"{self.server_url}{API_URLS.OCR_PATH}", data=form) as response:
                if response.status != 200:
                    body = await response.text()
                    message = _error_from_body(body) or f"HTTP {response.status}"
                    raise ProviderError(f"OCR service error: {message}", status=response.status)

                async for event in iter_ndjson(response.content.iter_any()):
                    yield event
                    if is_done(event):
                        return
        except aiohttp.ClientError as e:
            logging.error(f"OCR service request failed: {e}")
            raise ProviderError(f"OCR service request failed: {e}") from e
        finally:
            if owns_session:
                await session.close()

    async def fetch_credentials(self) -> Dict[str, bool]:
        """Ask the service which system-held credentials it has."""
        owns_session = self.session is None
        session = self.session or self._open_session()
        try:
            async with session.get(f"{self.server_url}{API_URLS.CREDENTIALS_PATH}") as response:
                if response.status != 200:
                    logging.warning(f"Credential check failed: HTTP {response.status}")
                    return {}
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logging.warning(f"Credential check failed: {e}")
            return {}
        finally:
            if owns_session:
                await session.close()
        return {key: bool(value) for key, value in data.items()} if isinstance(data, dict) else {}


def _error_from_body(body: str) -> Optional[str]:
    try:
        data = json.loads(body)
    except ValueError:
        return body.strip() or None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return None


__all__ = [
    'DONE_EVENT',
    'event_for',
    'is_done',
    'MediatedTransport',
    'InProcessMediatedTransport',
    'HttpMediatedTransport',
]
