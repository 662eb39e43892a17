"""
Unit tests for token extraction.
"""
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from ledgerline.exceptions import OCRError, TokenExtractionError
from ledgerline.pipeline.extraction import TokenExtractor, tokens_from_words
from ledgerline.pipeline.models import PositionedToken


def _fake_pdf(words_per_page):
    """A pdfplumber.open() stand-in whose pages return the given words."""
    pages = []
    for words in words_per_page:
        page = MagicMock()
        page.extract_words.return_value = words
        page.width = 612
        page.height = 792
        pages.append(page)
    pdf = MagicMock()
    pdf.pages = pages
    pdf.__enter__.return_value = pdf
    return pdf


WORDS = [
    {"text": "02/01/2025", "x0": 40, "x1": 90, "top": 100, "bottom": 110, "size": 9},
    {"text": "Salary", "x0": 110, "x1": 140, "top": 100, "bottom": 110, "size": 9},
    {"text": "ACME", "x0": 144, "x1": 164, "top": 100, "bottom": 110, "size": 9},
    {"text": "Corporation", "x0": 168, "x1": 223, "top": 100, "bottom": 110, "size": 9},
    {"text": "200.00", "x0": 420, "x1": 450, "top": 100, "bottom": 110, "size": 9},
    {"text": "1,200.00", "x0": 490, "x1": 530, "top": 100, "bottom": 110, "size": 9},
]


class TestTokensFromWords:
    """Tests for pdfplumber word conversion."""

    def test_converts_words(self):
        """Test coordinates, page and font size are carried over."""
        tokens = tokens_from_words(WORDS[:2], page_number=2)

        assert len(tokens) == 2
        assert tokens[1].text == "Salary"
        assert tokens[1].x0 == 110.0
        assert tokens[1].page == 2
        assert tokens[1].font_size == 9.0
        assert tokens[1].confidence == 1.0
        assert tokens[1].from_ocr is False

    def test_skips_blank_words(self):
        """Test whitespace-only words are dropped."""
        tokens = tokens_from_words([{"text": "  ", "x0": 0, "x1": 1, "top": 0}], page_number=1)

        assert tokens == []

    def test_missing_bottom_and_size(self):
        """Test OCR-style words without bottom or size."""
        tokens = tokens_from_words(
            [{"text": "50.00", "x0": 10, "x1": 35, "top": 200, "confidence": 0.6}],
            page_number=1,
            from_ocr=True,
        )

        assert tokens[0].bottom == 210.0
        assert tokens[0].font_size is None
        assert tokens[0].confidence == 0.6
        assert tokens[0].from_ocr is True


class TestTokenExtractor:
    """Tests for TokenExtractor class."""

    def test_extract_text_layer(self):
        """Test a native page is read from its words."""
        with patch("ledgerline.pipeline.extraction.pdfplumber.open", return_value=_fake_pdf([WORDS])):
            document = TokenExtractor().extract(Path("statement.pdf"))

        assert document.file_name == "statement.pdf"
        assert document.page_count == 1
        assert len(document.pages[0].tokens) == len(WORDS)
        assert document.pages[0].used_ocr is False
        assert document.ocr_pages() == []

    def test_scanned_page_uses_ocr_source(self):
        """Test a page without a text layer is re-read through OCR."""
        ocr_token = PositionedToken(
            text="Closing", x0=10, x1=45, top=10, bottom=20, page=1, confidence=0.7, from_ocr=True
        )
        ocr_source = MagicMock(return_value=[ocr_token])

        with patch("ledgerline.pipeline.extraction.pdfplumber.open", return_value=_fake_pdf([[]])):
            document = TokenExtractor(ocr_source=ocr_source).extract(Path("scan.pdf"))

        ocr_source.assert_called_once_with(Path("scan.pdf"), 1)
        assert document.pages[0].used_ocr is True
        assert document.pages[0].tokens == [ocr_token]
        assert document.ocr_pages() == [1]

    def test_scanned_page_without_ocr_source(self):
        """Test a page without text stays empty when no OCR is plugged in."""
        with patch("ledgerline.pipeline.extraction.pdfplumber.open", return_value=_fake_pdf([[]])):
            document = TokenExtractor().extract(Path("scan.pdf"))

        assert document.pages[0].tokens == []
        assert document.pages[0].used_ocr is False

    def test_ocr_failure_raises_ocr_error(self):
        """Test OCR source exceptions become OCRError."""
        ocr_source = MagicMock(side_effect=RuntimeError("engine crashed"))

        with patch("ledgerline.pipeline.extraction.pdfplumber.open", return_value=_fake_pdf([[]])):
            with pytest.raises(OCRError) as exc_info:
                TokenExtractor(ocr_source=ocr_source).extract(Path("scan.pdf"))

        assert exc_info.value.details["page"] == 1

    def test_unreadable_pdf(self):
        """Test open failures become TokenExtractionError."""
        with patch("ledgerline.pipeline.extraction.pdfplumber.open", side_effect=ValueError("not a PDF")):
            with pytest.raises(TokenExtractionError) as exc_info:
                TokenExtractor().extract(Path("broken.pdf"))

        assert exc_info.value.error_code == "LDG-200"
        assert exc_info.value.details == {"file_name": "broken.pdf"}

    def test_parallel_pages_keep_order(self):
        """Test page workers return pages in page order."""
        second_page = [dict(word, text=word["text"] + "x") for word in WORDS]
        fake = _fake_pdf([WORDS, second_page])

        with patch("ledgerline.pipeline.extraction.pdfplumber.open", return_value=fake):
            document = TokenExtractor(page_workers=2).extract(Path("two.pdf"))

        assert [p.page for p in document.pages] == [1, 2]
        assert document.pages[1].tokens[0].text == "02/01/2025x"
        assert document.pages[1].tokens[0].page == 2
