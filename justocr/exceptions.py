"""
Error taxonomy for document normalization, credential resolution and
provider runs.

Every error raised by this package derives from OCRError, so callers at the
edges (the web service, the CLI) can catch one type and report str(error).
"""

from enum import Enum
from typing import Optional


class OCRError(Exception):
    """Base class for all JustOCR errors."""


class UnsupportedMediaType(OCRError):
    """The declared media type is neither a supported image nor a PDF."""

    def __init__(self, media_type: str):
        self.media_type = media_type
        super().__init__(
            f"Unsupported file type: {media_type or 'unknown'}. Please upload a PDF or image."
        )


class PayloadTooLarge(OCRError):
    """The uploaded payload is above the ingestion cap."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"File too large. Maximum size is {limit // (1024 * 1024)}MB")


class ConversionFailed(OCRError):
    """Splitting a paginated document into page images failed."""


class UnknownProvider(OCRError):
    """A requested provider id is not in the registry."""

    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(f"Unknown provider: {provider_id}")


class InvalidSelection(OCRError):
    """A benchmark selection is empty or larger than the allowed cap."""


class NoCredentialsAvailable(OCRError):
    """System-held credentials were requested but are not configured."""

    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(f"No server credentials available for provider: {provider_id}")


class MissingUserCredential(OCRError):
    """User-supplied mode was selected but no key is stored for the provider."""

    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(f"API key is required for provider: {provider_id}")


class ProviderErrorKind(Enum):
    """Failure classes derivable from a provider response."""
    INVALID_CREDENTIALS = "invalid_credentials"
    PERMISSION_DENIED = "permission_denied"
    RATE_LIMITED = "rate_limited"
    OTHER = "other"


class ProviderError(OCRError):
    """
    Opaque failure of one provider's recognition call.

    The kind is informational; orchestration treats every kind the same way.
    """

    def __init__(
        self,
        message: str,
        kind: ProviderErrorKind = ProviderErrorKind.OTHER,
        provider_id: Optional[str] = None,
        status: Optional[int] = None
    ):
        self.message = message
        self.kind = kind
        self.provider_id = provider_id
        self.status = status
        super().__init__(message)


__all__ = [
    'OCRError',
    'UnsupportedMediaType',
    'PayloadTooLarge',
    'ConversionFailed',
    'UnknownProvider',
    'InvalidSelection',
    'NoCredentialsAvailable',
    'MissingUserCredential',
    'ProviderErrorKind',
    'ProviderError',
]
