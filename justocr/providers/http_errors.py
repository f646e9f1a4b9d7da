"""
Turn failed hosted-API responses into ProviderError.

Both hosted providers answer errors with JSON bodies of slightly different
shapes; extract_error_message() pulls out the human-readable part and the
classify_* helpers map status codes onto ProviderErrorKind.
"""

import json
from typing import Optional

from ..exceptions import ProviderError, ProviderErrorKind


def extract_error_message(body: str) -> str:
    """
    Pull a message out of an error body.

    Checks, in order: top-level "message", "error.message", a string
    "error", and finally falls back to the raw body.
    """
    try:
        data = json.loads(body)
    except (ValueError, TypeError):
        return body

    if not isinstance(data, dict):
        return body

    message = data.get("message")
    if isinstance(message, str) and message:
        return message

    error = data.get("error")
    if isinstance(error, dict):
        nested = error.get("message")
        if isinstance(nested, str) and nested:
            return nested
    elif isinstance(error, str) and error:
        return error

    return body


def classify_mistral_error(status: int, body: str, provider_id: Optional[str] = "mistral") -> ProviderError:
    message = extract_error_message(body)

    if status == 401:
        return ProviderError(
            "Invalid API key. Please check your Mistral API key and try again.",
            ProviderErrorKind.INVALID_CREDENTIALS, provider_id, status
        )
    if status == 403:
        return ProviderError(
            "API key does not have permission for OCR. Please ensure your Mistral API key has OCR access.",
            ProviderErrorKind.PERMISSION_DENIED, provider_id, status
        )
    if status == 429:
        return ProviderError(
            "Rate limit exceeded. Please wait a moment and try again.",
            ProviderErrorKind.RATE_LIMITED, provider_id, status
        )

    return ProviderError(
        f"Mistral API error ({status}): {message}",
        ProviderErrorKind.OTHER, provider_id, status
    )


def classify_google_error(status: int, body: str, provider_id: Optional[str] = "google") -> ProviderError:
    message = extract_error_message(body)

    if status == 400:
        if "API key not valid" in message:
            return ProviderError(
                "Invalid API key. Please check your Google Cloud API key and try again.",
                ProviderErrorKind.INVALID_CREDENTIALS, provider_id, status
            )
        return ProviderError(f"Invalid request: {message}", ProviderErrorKind.OTHER, provider_id, status)
    if status == 403:
        if "has not been used" in message or "disabled" in message:
            return ProviderError(
                "Cloud Vision API is not enabled. Please enable it in your Google Cloud Console.",
                ProviderErrorKind.PERMISSION_DENIED, provider_id, status
            )
        return ProviderError(
            "API key does not have permission for Vision API. Please check your API key restrictions.",
            ProviderErrorKind.PERMISSION_DENIED, provider_id, status
        )
    if status == 429:
        return ProviderError(
            "Rate limit exceeded. Please wait a moment and try again.",
            ProviderErrorKind.RATE_LIMITED, provider_id, status
        )

    return ProviderError(
        f"Google Vision API error ({status}): {message}",
        ProviderErrorKind.OTHER, provider_id, status
    )


__all__ = [
    'extract_error_message',
    'classify_mistral_error',
    'classify_google_error',
]
