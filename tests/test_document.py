import os

import pytest

from justocr import document as document_module
from justocr.base import PageImage
from justocr.config import MAX_FILE_SIZE
from justocr.document import (
    Document,
    PopplerRasterizer,
    Rasterizer,
    guess_media_type,
    ingest,
    normalize,
    validate_document,
)
from justocr.exceptions import ConversionFailed, PayloadTooLarge, UnsupportedMediaType

from helpers import make_png


class FakeRasterizer(Rasterizer):
    def __init__(self, page_count: int = 3, error: Exception = None):
        self.page_count = page_count
        self.error = error

    def pages_of(self, data):
        if self.error:
            raise self.error
        return [PageImage(n, make_png(30, 50), 30, 50) for n in range(1, self.page_count + 1)]


class TestIngest:
    def test_accepts_supported_image(self, png_bytes) -> None:
        doc = ingest(png_bytes, "image/png")
        assert doc.media_type == "image/png"
        assert doc.size == len(png_bytes)

    def test_media_type_parameters_are_ignored(self, png_bytes) -> None:
        assert ingest(png_bytes, "image/png; charset=binary").media_type == "image/png"

    def test_guesses_type_from_filename(self, png_bytes) -> None:
        assert ingest(png_bytes, None, "scan.PNG").media_type == "image/png"
        assert guess_media_type("report.pdf") == "application/pdf"
        assert guess_media_type("notes.txt") is None

    def test_rejects_unsupported_type(self) -> None:
        with pytest.raises(UnsupportedMediaType, match="Unsupported file type: text/plain"):
            ingest(b"hello", "text/plain")

    def test_rejects_payload_over_cap(self) -> None:
        with pytest.raises(PayloadTooLarge, match="File too large. Maximum size is 10MB"):
            validate_document(Document(b"\0" * (MAX_FILE_SIZE + 1), "image/png"))

    def test_payload_at_cap_is_accepted(self) -> None:
        validate_document(Document(b"\0" * MAX_FILE_SIZE, "application/pdf"))


class TestNormalizeImage:
    def test_image_is_single_page(self) -> None:
        pages = normalize(Document(make_png(64, 32), "image/png"))
        assert len(pages) == 1
        assert pages[0].page_number == 1
        assert (pages[0].width, pages[0].height) == (64, 32)

    def test_image_data_is_passed_through(self, png_bytes) -> None:
        pages = normalize(Document(png_bytes, "image/png"))
        assert pages[0].data == png_bytes

    def test_normalizing_twice_is_stable(self, png_bytes) -> None:
        doc = Document(png_bytes, "image/png")
        first, second = normalize(doc), normalize(doc)
        assert [(p.page_number, p.width, p.height) for p in first] == [
            (p.page_number, p.width, p.height) for p in second
        ]

    def test_corrupt_image_fails_conversion(self) -> None:
        with pytest.raises(ConversionFailed):
            normalize(Document(b"not an image", "image/jpeg"))

    def test_unsupported_type(self) -> None:
        with pytest.raises(UnsupportedMediaType):
            normalize(Document(b"{}", "application/json"))


class TestNormalizePdf:
    def test_pages_in_order(self) -> None:
        pages = normalize(Document(b"%PDF-1.4", "application/pdf"), FakeRasterizer(3))
        assert [p.page_number for p in pages] == [1, 2, 3]

    def test_rasterizer_failure_is_wrapped(self) -> None:
        rasterizer = FakeRasterizer(error=RuntimeError("corrupt xref table"))
        with pytest.raises(ConversionFailed, match="corrupt xref table"):
            normalize(Document(b"%PDF-1.4", "application/pdf"), rasterizer)

    def test_document_without_pages_fails(self) -> None:
        with pytest.raises(ConversionFailed):
            normalize(Document(b"%PDF-1.4", "application/pdf"), FakeRasterizer(0))


class TestPopplerRasterizer:
    def test_renders_pages_and_removes_temp_dir(self, monkeypatch) -> None:
        seen = {}

        def fake_convert(data, dpi, fmt, output_folder, paths_only, poppler_path):
            seen["folder"] = output_folder
            seen["dpi"] = dpi
            paths = []
            for n in (1, 2):
                path = os.path.join(output_folder, f"page-{n}.png")
                with open(path, "wb") as f:
                    f.write(make_png(10 * n, 20))
                paths.append(path)
            return paths

        monkeypatch.setattr(document_module, "convert_from_bytes", fake_convert)
        pages = PopplerRasterizer().pages_of(b"%PDF-1.4")

        assert seen["dpi"] == 300
        assert [(p.page_number, p.width) for p in pages] == [(1, 10), (2, 20)]
        assert not os.path.exists(seen["folder"])

    def test_temp_dir_removed_on_failure(self, monkeypatch) -> None:
        seen = {}

        def failing_convert(data, dpi, fmt, output_folder, paths_only, poppler_path):
            seen["folder"] = output_folder
            with open(os.path.join(output_folder, "partial.png"), "wb") as f:
                f.write(b"partial")
            raise RuntimeError("Syntax Error: Couldn't find trailer dictionary")

        monkeypatch.setattr(document_module, "convert_from_bytes", failing_convert)
        with pytest.raises(ConversionFailed, match="trailer dictionary"):
            normalize(Document(b"broken", "application/pdf"))
        assert not os.path.exists(seen["folder"])
