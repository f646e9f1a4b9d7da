"""
Base classes for OCR providers.

This module defines the common interface that all OCR providers must implement,
along with the data structures that flow through normalization, single runs
and benchmarks.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Sequence, Tuple, AsyncIterator
from enum import Enum
import time


PAGE_SEPARATOR = "\n\n"


class ProviderType(Enum):
    """Classification of OCR provider types."""
    LOCAL = "local"      # OCR engine on this machine (Tesseract)
    CLOUD = "cloud"      # Hosted API (Mistral, Google Vision)


@dataclass(frozen=True)
class PageImage:
    """One rasterized page of a document. page_number is 1-based."""
    page_number: int
    data: bytes
    width: int
    height: int
    media_type: str = "image/png"

    def __post_init__(self):
        if self.page_number < 1:
            raise ValueError(f"page_number must be positive, got {self.page_number}")


@dataclass(frozen=True)
class OCRPageResult:
    """Recognized text for a single page."""
    page_number: int
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"pageNumber": self.page_number, "text": self.text}


@dataclass(frozen=True)
class OCRResult:
    """
    Standardized result of one completed provider run.

    full_text is always the page texts joined with a blank line, in page
    order; build instances with from_pages() rather than by hand.
    """
    full_text: str
    pages: Tuple[OCRPageResult, ...]
    processing_time_ms: int
    provider_label: str

    def __post_init__(self):
        if self.processing_time_ms < 0:
            raise ValueError("processing_time_ms must be non-negative")
        expected = PAGE_SEPARATOR.join(page.text for page in self.pages)
        if self.full_text != expected:
            raise ValueError("full_text does not match the joined page texts")

    @classmethod
    def from_pages(
        cls,
        pages: Sequence[OCRPageResult],
        processing_time_ms: float,
        provider_label: str
    ) -> "OCRResult":
        ordered = tuple(pages)
        return cls(
            full_text=PAGE_SEPARATOR.join(page.text for page in ordered),
            pages=ordered,
            processing_time_ms=max(0, int(round(processing_time_ms))),
            provider_label=provider_label,
        )

    @property
    def char_count(self) -> int:
        """Number of characters (code points, not bytes) in full_text."""
        return len(self.full_text)

    @property
    def word_count(self) -> int:
        return len(self.full_text.split())

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON wire shape."""
        return {
            "text": self.full_text,
            "pages": [page.to_dict() for page in self.pages],
            "processingTimeMs": self.processing_time_ms,
            "provider": self.provider_label,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OCRResult":
        """
        Rebuild a result from its wire shape.

        Pages are authoritative; a payload carrying only text becomes a
        single-page result.
        """
        raw_pages = data.get("pages") or []
        if raw_pages:
            pages = [
                OCRPageResult(page_number=int(p.get("pageNumber", i + 1)), text=p.get("text") or "")
                for i, p in enumerate(raw_pages)
            ]
        else:
            pages = [OCRPageResult(page_number=1, text=data.get("text") or "")]
        return cls.from_pages(
            pages,
            processing_time_ms=float(data.get("processingTimeMs") or 0),
            provider_label=str(data.get("provider") or ""),
        )


@dataclass(frozen=True)
class ProviderDescriptor:
    """Static, immutable facts about a provider."""
    id: str
    display_name: str
    executes_locally: bool
    accepts_user_credentials: bool
    is_available: bool = True
    requires_network: bool = False
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.display_name,
            "description": self.description,
            "executesLocally": self.executes_locally,
            "acceptsUserCredentials": self.accepts_user_credentials,
            "requiresNetwork": self.requires_network,
            "available": self.is_available,
        }


@dataclass
class ProgressEvent:
    """A progress update; the final 'complete' event carries the result."""
    status: str          # loading, initializing, recognizing, complete, error
    progress: int        # 0-100
    message: str
    result: Optional[OCRResult] = None


@dataclass
class RunContext:
    """
    Resources scoped to one provider run.

    Adapters fill in what they need (an HTTP session, an SDK client) inside
    open_run() and release it when the run ends.
    """
    api_key: Optional[str] = None
    http: Any = None
    client: Any = None


class OCRProvider(ABC):
    """
    Base interface for all OCR providers.

    All OCR providers must inherit from this class, set the class attributes
    below and implement recognize(). Providers that can handle a whole
    document in one call set SUPPORTS_BATCH and override recognize_all().
    """

    # Class attributes - must be defined by subclasses
    PROVIDER_ID: str = "base"
    DISPLAY_NAME: str = "Base"
    DESCRIPTION: str = ""
    PROVIDER_TYPE: ProviderType = ProviderType.LOCAL
    LICENSE: str = "Unknown"
    EXECUTES_LOCALLY: bool = False
    ACCEPTS_USER_CREDENTIALS: bool = False
    REQUIRES_NETWORK: bool = False
    SUPPORTS_BATCH: bool = False
    AVAILABLE: bool = True

    @classmethod
    def descriptor(cls) -> ProviderDescriptor:
        return ProviderDescriptor(
            id=cls.PROVIDER_ID,
            display_name=cls.DISPLAY_NAME,
            executes_locally=cls.EXECUTES_LOCALLY,
            accepts_user_credentials=cls.ACCEPTS_USER_CREDENTIALS,
            is_available=cls.AVAILABLE,
            requires_network=cls.REQUIRES_NETWORK,
            description=cls.DESCRIPTION,
        )

    @asynccontextmanager
    async def open_run(self, api_key: Optional[str] = None) -> AsyncIterator[RunContext]:
        """
        Acquire the resources one run needs and release them afterwards,
        whether the run succeeds or fails.

        Args:
            api_key: User-supplied key, or None for system-held credentials
        """
        yield RunContext(api_key=api_key)

    @abstractmethod
    async def recognize(self, page: PageImage, run: RunContext) -> str:
        """
        Recognize the text of a single page.

        Raises:
            ProviderError: on any engine, network or response failure
        """

    async def recognize_all(self, pages: Sequence[PageImage], run: RunContext) -> List[str]:
        """
        Recognize every page, returning texts in page order.

        The default calls recognize() one page at a time.
        """
        texts = []
        for page in pages:
            texts.append(await self.recognize(page, run))
        return texts


class Timer:
    """Simple context manager for timing operations."""

    def __init__(self):
        self.start_time = None
        self.end_time = None
        self.elapsed_ms = 0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.end_time = time.perf_counter()
        self.elapsed_ms = (self.end_time - self.start_time) * 1000


# Exports
__all__ = [
    'PAGE_SEPARATOR',
    'ProviderType',
    'PageImage',
    'OCRPageResult',
    'OCRResult',
    'ProviderDescriptor',
    'ProgressEvent',
    'RunContext',
    'OCRProvider',
    'Timer'
]
