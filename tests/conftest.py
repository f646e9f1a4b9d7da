from typing import List

import pytest

from justocr.base import PageImage
from justocr.registry import ProviderRegistry

from helpers import FakeProvider, make_pages, make_png


@pytest.fixture()
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture()
def pages() -> List[PageImage]:
    return make_pages(2)


@pytest.fixture()
def register_fake():
    """Register throwaway providers; they are removed after the test."""
    registered = []

    def register(provider_id: str, base=FakeProvider, **attrs):
        attrs.setdefault("DISPLAY_NAME", f"Fake {provider_id}")
        provider_class = type(f"Fake_{provider_id}", (base,), {"PROVIDER_ID": provider_id, **attrs})
        ProviderRegistry.register(provider_class)
        registered.append(provider_id)
        return ProviderRegistry.get(provider_id)

    yield register

    for provider_id in registered:
        ProviderRegistry.unregister(provider_id)
