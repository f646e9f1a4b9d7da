"""Shared test doubles: generated images, fake providers, a local HTTP server."""

import asyncio
import io
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from aiohttp import test_utils
from PIL import Image

from justocr.base import OCRProvider, PageImage, RunContext
from justocr.exceptions import ProviderError


def make_png(width: int = 40, height: int = 20, color: str = "white") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def make_pages(count: int) -> List[PageImage]:
    return [PageImage(number, make_png(), 40, 20) for number in range(1, count + 1)]


def make_noise_png(size: int) -> bytes:
    """A PNG that does not compress, about 3 bytes per pixel."""
    buf = io.BytesIO()
    Image.frombytes("RGB", (size, size), os.urandom(size * size * 3)).save(buf, format="PNG")
    return buf.getvalue()


@asynccontextmanager
async def serve(app):
    """Run an aiohttp app on a local port for the duration of the block."""
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


class FakeProvider(OCRProvider):
    """Deterministic adapter: returns '<name> page <n>' for each page."""

    PROVIDER_ID = "fake"
    DISPLAY_NAME = "Fake OCR"
    delay = 0.0
    fail_on_page: Optional[int] = None
    error = "Fake engine failed"

    def __init__(self):
        self.calls = []
        self.api_keys = []
        self.open_runs = 0
        self.closed_runs = 0

    @asynccontextmanager
    async def open_run(self, api_key=None):
        self.open_runs += 1
        self.api_keys.append(api_key)
        try:
            yield RunContext(api_key=api_key)
        finally:
            self.closed_runs += 1

    async def recognize(self, page, run):
        if self.delay:
            await asyncio.sleep(self.delay)
        self.calls.append(page.page_number)
        if self.fail_on_page == page.page_number:
            raise ProviderError(self.error, provider_id=self.PROVIDER_ID)
        return f"{self.DISPLAY_NAME} page {page.page_number}"


class FakeBatchProvider(FakeProvider):
    SUPPORTS_BATCH = True

    def __init__(self):
        super().__init__()
        self.batch_calls = 0

    async def recognize_all(self, pages, run):
        self.batch_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return [f"batch {page.page_number}" for page in pages]


