"""
JustOCR: OCR orchestration and benchmarking.

Normalizes documents into page images, runs them through one or more
pluggable OCR providers, and compares the results.
"""

from .base import (
    ProviderType,
    PageImage,
    OCRPageResult,
    OCRResult,
    ProviderDescriptor,
    ProgressEvent,
    OCRProvider,
    Timer
)

from .exceptions import (
    OCRError,
    UnsupportedMediaType,
    PayloadTooLarge,
    ConversionFailed,
    UnknownProvider,
    InvalidSelection,
    NoCredentialsAvailable,
    MissingUserCredential,
    ProviderErrorKind,
    ProviderError
)

from .registry import (
    ProviderRegistry,
    register_provider
)

# Registers the built-in adapters
from . import providers

from .document import Document, ingest, normalize
from .credentials import CredentialMode, CredentialResolver, CredentialStore, probe_system_credentials
from .runner import run_provider, iter_provider_progress
from .benchmark import (
    OutcomeState,
    BenchmarkProviderOutcome,
    BenchmarkSession,
    BenchmarkStats,
    run_benchmark,
    compute_stats,
    export_json,
    export_csv
)

__version__ = "0.1.0"

__all__ = [
    # Base classes
    'ProviderType',
    'PageImage',
    'OCRPageResult',
    'OCRResult',
    'ProviderDescriptor',
    'ProgressEvent',
    'OCRProvider',
    'Timer',
    # Errors
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
    # Registry
    'ProviderRegistry',
    'register_provider',
    # Orchestration
    'Document',
    'ingest',
    'normalize',
    'CredentialMode',
    'CredentialResolver',
    'CredentialStore',
    'probe_system_credentials',
    'run_provider',
    'iter_provider_progress',
    'OutcomeState',
    'BenchmarkProviderOutcome',
    'BenchmarkSession',
    'BenchmarkStats',
    'run_benchmark',
    'compute_stats',
    'export_json',
    'export_csv',
]
