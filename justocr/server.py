"""
JustOCR web service (aiohttp).

Routes:
    POST /api/ocr               - OCR one document with one provider, or stream
                                  the results of several providers as NDJSON
    GET  /api/ocr/credentials   - which system-held credentials work
    GET  /api/ocr/providers     - provider catalog
"""

import asyncio
import io
import json
import logging
from typing import List, Optional

from aiohttp import web
from PIL import Image, UnidentifiedImageError

from .base import PageImage
from .benchmark import validate_selection
from .config import API_URLS, MAX_FILE_SIZE, MAX_PAGES_SIZE, Settings, configure_logging
from .credentials import probe_system_credentials
from .document import IMAGE_MEDIA_TYPES, ingest, normalize
from .exceptions import OCRError, PayloadTooLarge, UnsupportedMediaType
from .registry import ProviderRegistry
from .runner import run_provider
from .streaming import encode_event
from .transport import InProcessMediatedTransport


class BadRequest(Exception):
    pass


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"success": False, "error": message}, status=status)


class _Upload:
    def __init__(self):
        self.file: Optional[bytes] = None
        self.file_type: Optional[str] = None
        self.filename: Optional[str] = None
        self.pages: List[tuple] = []
        self.provider: Optional[str] = None
        self.providers_json: Optional[str] = None
        self.file_size = 0
        self.pages_size = 0


async def _read_part(part, size: int, limit: int) -> tuple:
    """Read one binary part; past the limit the rest is drained, not buffered."""
    chunks = []
    while True:
        chunk = await part.read_chunk()
        if not chunk:
            break
        size += len(chunk)
        if size <= limit:
            chunks.append(chunk)
    return b"".join(chunks), size


async def _read_upload(request: web.Request) -> _Upload:
    """
    Read the form body.

    An uploaded file is capped at MAX_FILE_SIZE before normalization; pages
    a client has already rasterized share the larger MAX_PAGES_SIZE.
    """
    upload = _Upload()

    if request.content_type == "application/x-www-form-urlencoded":
        # Text fields only, so there is never a file here
        fields = await request.post()
        upload.provider = fields.get("provider", "").strip() or None
        upload.providers_json = fields.get("providers")
        return upload
    if not request.content_type.startswith("multipart/"):
        raise BadRequest("Expected multipart/form-data")

    reader = await request.multipart()
    async for part in reader:
        if part.name == "file":
            data, upload.file_size = await _read_part(part, upload.file_size, MAX_FILE_SIZE)
            upload.file, upload.file_type, upload.filename = data, part.headers.get("Content-Type"), part.filename
        elif part.name == "page":
            data, upload.pages_size = await _read_part(part, upload.pages_size, MAX_PAGES_SIZE)
            upload.pages.append((data, part.headers.get("Content-Type")))
        elif part.name == "provider":
            upload.provider = (await part.text()).strip()
        elif part.name == "providers":
            upload.providers_json = await part.text()

    if upload.file_size > MAX_FILE_SIZE:
        raise PayloadTooLarge(upload.file_size, MAX_FILE_SIZE)
    if upload.pages_size > MAX_PAGES_SIZE:
        raise PayloadTooLarge(upload.pages_size, MAX_PAGES_SIZE)
    return upload


def _parse_providers(upload: _Upload) -> List[str]:
    if upload.providers_json:
        try:
            providers = json.loads(upload.providers_json)
        except ValueError:
            raise BadRequest("Invalid providers format")
        if not isinstance(providers, list) or not all(isinstance(p, str) for p in providers):
            raise BadRequest("Invalid providers format")
        providers = list(dict.fromkeys(providers))
    elif upload.provider is not None:
        providers = [upload.provider]
    else:
        providers = ["tesseract"]

    if not providers:
        raise BadRequest("No providers specified")
    return providers


def _page_images(upload: _Upload) -> List[PageImage]:
    pages = []
    for number, (data, media_type) in enumerate(upload.pages, start=1):
        media_type = (media_type or "image/png").split(";")[0].strip().lower()
        if media_type not in IMAGE_MEDIA_TYPES:
            raise UnsupportedMediaType(media_type)
        try:
            with Image.open(io.BytesIO(data)) as image:
                width, height = image.size
        except (UnidentifiedImageError, OSError) as e:
            raise BadRequest(f"Could not read page {number}: {e}")
        pages.append(PageImage(number, data, width, height, media_type))
    return pages


async def handle_ocr(request: web.Request) -> web.StreamResponse:
    try:
        upload = await _read_upload(request)
        if upload.file is None and not upload.pages:
            raise BadRequest("No file provided")

        providers = _parse_providers(upload)
        for provider_id in providers:
            if not ProviderRegistry.is_registered(provider_id):
                raise BadRequest(f"Unknown provider: {provider_id}")
        if len(providers) > 1:
            validate_selection(providers)

        if upload.pages:
            pages = _page_images(upload)
        else:
            document = ingest(upload.file, upload.file_type, upload.filename)
            loop = asyncio.get_running_loop()
            pages = await loop.run_in_executor(None, normalize, document)
    except BadRequest as e:
        return _error(str(e), 400)
    except OCRError as e:
        logging.warning(f"Rejected OCR request: {e}")
        return _error(str(e), 400)

    logging.info(f"OCR request: providers={providers}, pages={len(pages)}")

    # A providers list always gets the stream, even with a single id
    if len(providers) == 1 and not upload.providers_json:
        try:
            result = await run_provider(providers[0], pages)
        except OCRError as e:
            logging.error(f"OCR processing error: {e}")
            return _error(str(e), 500)
        return web.json_response({"success": True, "result": result.to_dict()})

    response = web.StreamResponse(headers={"Content-Type": "application/x-ndjson", "Cache-Control": "no-cache"})
    await response.prepare(request)
    transport = InProcessMediatedTransport()
    async for event in transport.stream(providers, pages):
        await response.write(encode_event(event))
    await response.write_eof()
    return response


async def handle_credentials(request: web.Request) -> web.Response:
    return web.json_response(await probe_system_credentials())


async def handle_providers(request: web.Request) -> web.Response:
    return web.json_response([ProviderRegistry.get_info(provider_id) for provider_id in ProviderRegistry.list_all()])


def create_app() -> web.Application:
    app = web.Application()
    app.router.add_post(API_URLS.OCR_PATH, handle_ocr)
    app.router.add_get(API_URLS.CREDENTIALS_PATH, handle_credentials)
    app.router.add_get(API_URLS.PROVIDERS_PATH, handle_providers)
    return app


def run_server(settings: Optional[Settings] = None) -> None:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    logging.info(f"Starting JustOCR service on {settings.host}:{settings.port}")
    web.run_app(create_app(), host=settings.host, port=settings.port)


__all__ = [
    'create_app',
    'run_server',
]
