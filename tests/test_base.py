import pytest

from justocr.base import OCRPageResult, OCRResult, PageImage, ProviderDescriptor, Timer


def _pages(*texts):
    return [OCRPageResult(number, text) for number, text in enumerate(texts, start=1)]


class TestPageImage:
    def test_page_numbers_are_one_based(self) -> None:
        with pytest.raises(ValueError):
            PageImage(0, b"", 1, 1)

    def test_default_media_type_is_png(self) -> None:
        assert PageImage(1, b"x", 1, 1).media_type == "image/png"


class TestOCRResult:
    def test_full_text_joins_pages_with_blank_line(self) -> None:
        result = OCRResult.from_pages(_pages("first", "second", "third"), 12.4, "Fake")
        assert result.full_text == "first\n\nsecond\n\nthird"
        assert [p.page_number for p in result.pages] == [1, 2, 3]

    def test_processing_time_is_rounded(self) -> None:
        assert OCRResult.from_pages(_pages("a"), 12.6, "Fake").processing_time_ms == 13

    def test_rejects_full_text_that_does_not_match_pages(self) -> None:
        with pytest.raises(ValueError):
            OCRResult(full_text="other", pages=tuple(_pages("a")), processing_time_ms=1, provider_label="Fake")

    def test_rejects_negative_time(self) -> None:
        with pytest.raises(ValueError):
            OCRResult(full_text="a", pages=tuple(_pages("a")), processing_time_ms=-1, provider_label="Fake")

    def test_char_count_counts_code_points(self) -> None:
        result = OCRResult.from_pages(_pages("héllo 日本"), 0, "Fake")
        assert result.char_count == 8

    def test_counts(self) -> None:
        result = OCRResult.from_pages(_pages("one two", "three"), 0, "Fake")
        assert result.word_count == 3
        assert result.page_count == 2

    def test_wire_shape(self) -> None:
        result = OCRResult.from_pages(_pages("a", "b"), 42, "Fake OCR")
        assert result.to_dict() == {
            "text": "a\n\nb",
            "pages": [{"pageNumber": 1, "text": "a"}, {"pageNumber": 2, "text": "b"}],
            "processingTimeMs": 42,
            "provider": "Fake OCR",
        }

    def test_from_dict_restores_pages(self) -> None:
        original = OCRResult.from_pages(_pages("a", "b"), 42, "Fake OCR")
        assert OCRResult.from_dict(original.to_dict()) == original

    def test_from_dict_without_pages_builds_single_page(self) -> None:
        result = OCRResult.from_dict({"text": "only text", "processingTimeMs": 5, "provider": "X"})
        assert result.page_count == 1
        assert result.full_text == "only text"


class TestProviderDescriptor:
    def test_descriptor_is_immutable(self) -> None:
        descriptor = ProviderDescriptor("x", "X", executes_locally=False, accepts_user_credentials=True)
        with pytest.raises(AttributeError):
            descriptor.id = "y"


class TestTimer:
    def test_measures_elapsed_time(self) -> None:
        with Timer() as timer:
            sum(range(1000))
        assert timer.elapsed_ms >= 0
