"""
OCR Provider Registry

Static catalog mapping provider ids to adapter classes, with lazy
instantiation and caching.
"""

from typing import Dict, List, Type, Optional, Any
import logging

from .base import OCRProvider, ProviderDescriptor
from .exceptions import UnknownProvider


class ProviderRegistry:
    """
    Registry for managing OCR providers.

    Providers are looked up by id only; there is no runtime type inspection.
    Registration order is preserved and is the order the catalog is listed in.
    """

    _providers: Dict[str, Type[OCRProvider]] = {}
    _instances: Dict[str, OCRProvider] = {}

    @classmethod
    def register(cls, provider_class: Type[OCRProvider]) -> Type[OCRProvider]:
        """
        Register a provider class.

        Can be used as a decorator:
            @ProviderRegistry.register
            class MyOCRProvider(OCRProvider):
                ...

        Args:
            provider_class: The provider class to register

        Returns:
            The provider class (for decorator usage)
        """
        provider_id = provider_class.PROVIDER_ID
        cls._providers[provider_id] = provider_class
        cls._instances.pop(provider_id, None)
        logging.debug(f"Registered OCR provider: {provider_id}")
        return provider_class

    @classmethod
    def unregister(cls, provider_id: str) -> None:
        """Remove a provider and its cached instance, if present."""
        cls._providers.pop(provider_id, None)
        cls._instances.pop(provider_id, None)

    @classmethod
    def get(cls, provider_id: str) -> Optional[OCRProvider]:
        """
        Get a provider instance by id.

        Creates and caches instances on first access.

        Returns:
            Provider instance or None if not found
        """
        if provider_id not in cls._providers:
            logging.warning(f"Provider not found: {provider_id}")
            return None

        if provider_id not in cls._instances:
            cls._instances[provider_id] = cls._providers[provider_id]()

        return cls._instances[provider_id]

    @classmethod
    def resolve(cls, provider_id: str) -> OCRProvider:
        """
        Like get(), but an unregistered id is an error.

        Raises:
            UnknownProvider: if provider_id is not registered
        """
        provider = cls.get(provider_id)
        if provider is None:
            raise UnknownProvider(provider_id)
        return provider

    @classmethod
    def is_registered(cls, provider_id: str) -> bool:
        return provider_id in cls._providers

    @classmethod
    def descriptor(cls, provider_id: str) -> ProviderDescriptor:
        """
        Get the static descriptor for a provider (without instantiating).

        Raises:
            UnknownProvider: if provider_id is not registered
        """
        provider_class = cls._providers.get(provider_id)
        if provider_class is None:
            raise UnknownProvider(provider_id)
        return provider_class.descriptor()

    @classmethod
    def display_name(cls, provider_id: str) -> str:
        """Display name for an id, falling back to the id itself."""
        provider_class = cls._providers.get(provider_id)
        return provider_class.DISPLAY_NAME if provider_class else provider_id

    @classmethod
    def list_all(cls) -> List[str]:
        """List all registered provider ids."""
        return list(cls._providers.keys())

    @classmethod
    def get_info(cls, provider_id: str) -> Optional[Dict[str, Any]]:
        """
        Get information about a provider.

        Returns:
            Dictionary with provider info or None
        """
        provider_class = cls._providers.get(provider_id)
        if provider_class is None:
            return None

        return {
            **provider_class.descriptor().to_dict(),
            "type": provider_class.PROVIDER_TYPE.value,
            "license": provider_class.LICENSE,
            "batch": provider_class.SUPPORTS_BATCH,
        }


def register_provider(provider_class: Type[OCRProvider]) -> Type[OCRProvider]:
    """
    Convenience function to register a provider.

    Usage:
        @register_provider
        class MyProvider(OCRProvider):
            ...
    """
    return ProviderRegistry.register(provider_class)


# Exports
__all__ = [
    'ProviderRegistry',
    'register_provider'
]
