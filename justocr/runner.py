"""
Single-run orchestration: one provider over one normalized document.
"""

import logging
from typing import AsyncIterator, List, Optional, Sequence

from .base import OCRPageResult, OCRResult, PageImage, ProgressEvent, Timer
from .credentials import ResolvedCredentials
from .exceptions import OCRError, ProviderError
from .registry import ProviderRegistry


async def run_provider(
    provider_id: str,
    pages: Sequence[PageImage],
    credentials: Optional[ResolvedCredentials] = None,
    registry=ProviderRegistry
) -> OCRResult:
    """
    Run one provider over every page and build its OCRResult.

    Page-by-page adapters are called sequentially in page order; batch
    capable adapters get all pages in one call. The first failure aborts
    the run and no partial text is returned.

    Raises:
        UnknownProvider: if provider_id is not registered
        ProviderError: if recognition of any page fails
    """
    provider = registry.resolve(provider_id)
    api_key = credentials.key if credentials else None

    logging.info(f"Running {provider_id} on {len(pages)} page(s)")
    try:
        with Timer() as timer:
            async with provider.open_run(api_key) as run:
                if provider.SUPPORTS_BATCH:
                    texts = list(await provider.recognize_all(pages, run))
                else:
                    texts = []
                    for page in pages:
                        texts.append(await provider.recognize(page, run))
    except OCRError:
        raise
    except Exception as e:
        logging.error(f"Error running {provider_id}: {e}")
        raise ProviderError(str(e) or type(e).__name__, provider_id=provider_id) from e

    if len(texts) != len(pages):
        raise ProviderError(
            f"{provider.DISPLAY_NAME} returned {len(texts)} page(s) for {len(pages)}",
            provider_id=provider_id
        )

    page_results = [
        OCRPageResult(page_number=page.page_number, text=text)
        for page, text in zip(pages, texts)
    ]
    result = OCRResult.from_pages(page_results, timer.elapsed_ms, provider.DISPLAY_NAME)
    logging.info(f"{provider_id} finished in {result.processing_time_ms}ms, {result.char_count} chars")
    return result


async def iter_provider_progress(
    provider_id: str,
    pages: Sequence[PageImage],
    credentials: Optional[ResolvedCredentials] = None,
    registry=ProviderRegistry
) -> AsyncIterator[ProgressEvent]:
    """
    Same as run_provider(), but yields ProgressEvents as it goes.

    The last event is either 'complete' (carrying the result) or 'error',
    in which case the error is raised after it is yielded.
    """
    yield ProgressEvent("loading", 0, "Loading OCR engine...")
    provider = registry.resolve(provider_id)
    api_key = credentials.key if credentials else None
    total = len(pages)

    try:
        with Timer() as timer:
            yield ProgressEvent("initializing", 10, f"Initializing {provider.DISPLAY_NAME}...")
            async with provider.open_run(api_key) as run:
                if provider.SUPPORTS_BATCH:
                    yield ProgressEvent("recognizing", 20, f"Recognizing {total} page(s)...")
                    texts: List[str] = list(await provider.recognize_all(pages, run))
                else:
                    texts = []
                    for index, page in enumerate(pages):
                        progress = 20 + int(80 * index / max(total, 1))
                        yield ProgressEvent("recognizing", progress, f"Recognizing page {index + 1} of {total}...")
                        texts.append(await provider.recognize(page, run))
        if len(texts) != total:
            raise ProviderError(
                f"{provider.DISPLAY_NAME} returned {len(texts)} page(s) for {total}",
                provider_id=provider_id
            )
    except Exception as e:
        error = e if isinstance(e, OCRError) else ProviderError(str(e) or type(e).__name__, provider_id=provider_id)
        yield ProgressEvent("error", 100, str(error))
        if error is e:
            raise
        raise error from e

    result = OCRResult.from_pages(
        [OCRPageResult(page.page_number, text) for page, text in zip(pages, texts)],
        timer.elapsed_ms,
        provider.DISPLAY_NAME
    )
    yield ProgressEvent("complete", 100, "Complete", result)


__all__ = [
    'run_provider',
    'iter_provider_progress',
]
