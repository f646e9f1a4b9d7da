"""
Document ingestion and normalization.

An uploaded document is turned into an ordered sequence of PageImage:
an image becomes a single page; a PDF is rasterized page by page at
PDF_DPI through Poppler (pdf2image).
"""

import io
import logging
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from PIL import Image, UnidentifiedImageError
from pdf2image import convert_from_bytes

from .base import PageImage
from .config import MAX_FILE_SIZE, PDF_DPI
from .exceptions import ConversionFailed, PayloadTooLarge, UnsupportedMediaType


PDF_MEDIA_TYPE = "application/pdf"

IMAGE_MEDIA_TYPES = (
    "image/png",
    "image/jpeg",
    "image/webp",
    "image/tiff",
    "image/gif",
    "image/bmp",
)

# Used when a caller does not declare a media type
_EXTENSION_MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".pdf": PDF_MEDIA_TYPE,
}


def guess_media_type(filename: str) -> Optional[str]:
    """Media type for a file name, by extension."""
    lowered = filename.lower()
    for extension, media_type in _EXTENSION_MEDIA_TYPES.items():
        if lowered.endswith(extension):
            return media_type
    return None


def _base_media_type(media_type: Optional[str]) -> str:
    # "image/png; charset=binary" -> "image/png"
    return (media_type or "").split(";")[0].strip().lower()


def is_supported_media_type(media_type: Optional[str]) -> bool:
    base = _base_media_type(media_type)
    return base == PDF_MEDIA_TYPE or base in IMAGE_MEDIA_TYPES


@dataclass(frozen=True)
class Document:
    """An uploaded payload and its declared media type."""
    data: bytes
    media_type: str
    filename: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_pdf(self) -> bool:
        return _base_media_type(self.media_type) == PDF_MEDIA_TYPE


def validate_document(document: Document, max_size: int = MAX_FILE_SIZE) -> None:
    """
    Reject a document before any processing.

    Raises:
        PayloadTooLarge: if the payload is above max_size
        UnsupportedMediaType: if the media type is neither an image nor a PDF
    """
    if document.size > max_size:
        raise PayloadTooLarge(document.size, max_size)
    if not is_supported_media_type(document.media_type):
        raise UnsupportedMediaType(document.media_type)


def ingest(data: bytes, media_type: Optional[str] = None, filename: Optional[str] = None) -> Document:
    """Build a validated Document; the media type falls back to the file extension."""
    if not media_type or _base_media_type(media_type) == "application/octet-stream":
        media_type = guess_media_type(filename or "") or media_type or ""
    document = Document(data=data, media_type=_base_media_type(media_type), filename=filename)
    validate_document(document)
    return document


class Rasterizer(ABC):
    """Splits a paginated document into one image per page."""

    @abstractmethod
    def pages_of(self, data: bytes) -> List[PageImage]:
        """Return the pages in order, numbered from 1."""


class PopplerRasterizer(Rasterizer):
    """
    Renders PDF pages with Poppler via pdf2image.

    Pages are written to a temporary directory that is removed whether
    rendering succeeds or fails.
    """

    def __init__(self, dpi: int = PDF_DPI, poppler_path: Optional[str] = None):
        self.dpi = dpi
        self.poppler_path = poppler_path

    def pages_of(self, data: bytes) -> List[PageImage]:
        with tempfile.TemporaryDirectory(prefix="ocr-pdf-") as tmpdir:
            paths = convert_from_bytes(
                data,
                dpi=self.dpi,
                fmt="png",
                output_folder=tmpdir,
                paths_only=True,
                poppler_path=self.poppler_path,
            )
            pages = []
            # pdf2image names output files so that sorting keeps page order
            for index, path in enumerate(sorted(paths), start=1):
                with open(path, "rb") as f:
                    page_data = f.read()
                with Image.open(io.BytesIO(page_data)) as image:
                    width, height = image.size
                pages.append(PageImage(index, page_data, width, height, "image/png"))
            return pages


def _image_page(document: Document) -> PageImage:
    try:
        with Image.open(io.BytesIO(document.data)) as image:
            width, height = image.size
    except (UnidentifiedImageError, OSError) as e:
        raise ConversionFailed(f"Could not read image: {e}") from e
    return PageImage(1, document.data, width, height, _base_media_type(document.media_type))


def normalize(document: Document, rasterizer: Optional[Rasterizer] = None) -> List[PageImage]:
    """
    Turn a document into its ordered page images.

    Raises:
        UnsupportedMediaType: if the type is neither an image nor a PDF
        ConversionFailed: if the image cannot be read or the PDF cannot be split
    """
    media_type = _base_media_type(document.media_type)

    if media_type in IMAGE_MEDIA_TYPES:
        return [_image_page(document)]

    if media_type != PDF_MEDIA_TYPE:
        raise UnsupportedMediaType(document.media_type)

    rasterizer = rasterizer or PopplerRasterizer()
    try:
        pages = rasterizer.pages_of(document.data)
    except ConversionFailed:
        raise
    except Exception as e:
        logging.error(f"PDF conversion failed: {e}")
        raise ConversionFailed(f"Failed to convert PDF: {e}") from e

    if not pages:
        raise ConversionFailed("Failed to convert PDF: document has no pages")

    logging.info(f"Converted PDF to {len(pages)} page image(s)")
    return pages


__all__ = [
    'PDF_MEDIA_TYPE',
    'IMAGE_MEDIA_TYPES',
    'Document',
    'Rasterizer',
    'PopplerRasterizer',
    'guess_media_type',
    'is_supported_media_type',
    'validate_document',
    'ingest',
    'normalize',
]
