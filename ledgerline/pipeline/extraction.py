"""
Token extraction for the Ledgerline pipeline.

Reads positioned words from each PDF page with pdfplumber. Pages with no
usable text layer can be handed to a pluggable OCR token source; no OCR
engine ships with the pipeline.
"""

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import pdfplumber
import structlog

from ledgerline.exceptions import DocumentProcessingError, OCRError, TokenExtractionError
from ledgerline.pipeline.models import ExtractedDocument, PageTokens, PositionedToken

logger = structlog.get_logger(__name__)

# (pdf_path, page_number) -> tokens recognized on that page
OCRTokenSource = Callable[[Path, int], List[PositionedToken]]


def tokens_from_words(
    words: Iterable[Dict[str, Any]],
    page_number: int,
    from_ocr: bool = False,
) -> List[PositionedToken]:
    """Convert pdfplumber-style word dicts into PositionedTokens."""
    tokens: List[PositionedToken] = []
    for word in words:
        text = str(word.get("text", "")).strip()
        if not text:
            continue
        tokens.append(
            PositionedToken(
                text=text,
                x0=float(word["x0"]),
                x1=float(word["x1"]),
                top=float(word["top"]),
                bottom=float(word.get("bottom", float(word["top"]) + 10.0)),
                page=page_number,
                font_size=float(word["size"]) if word.get("size") is not None else None,
                confidence=float(word.get("confidence", 1.0)),
                from_ocr=from_ocr,
            )
        )
    return tokens


class TokenExtractor:
    """
    Layout-aware token extractor.

    Uses pdfplumber word boxes for text-layer pages. A page whose text layer
    holds fewer than MIN_TEXT_CHARS characters is treated as scanned and, if
    an OCR token source is configured, re-read through it.
    """

    MIN_TEXT_CHARS = 50

    def __init__(
        self,
        ocr_source: Optional[OCRTokenSource] = None,
        page_workers: int = 1,
        x_tolerance: float = 3,
        y_tolerance: float = 3,
    ):
        self._ocr_source = ocr_source
        self._page_workers = max(1, page_workers)
        self._x_tolerance = x_tolerance
        self._y_tolerance = y_tolerance

    def extract(self, pdf_path: Path) -> ExtractedDocument:
        """
        Extract positioned tokens from every page of a PDF.

        Args:
            pdf_path: Path to the PDF file.

        Returns:
            ExtractedDocument with one PageTokens per page, in page order.

        Raises:
            TokenExtractionError: The PDF cannot be opened or read.
            OCRError: The OCR token source failed on a scanned page.
        """
        pdf_path = Path(pdf_path)
        logger.info("Extracting tokens", path=str(pdf_path))

        try:
            with pdfplumber.open(pdf_path) as pdf:
                page_count = len(pdf.pages)
                parallel = self._page_workers > 1 and page_count > 1
                pages = [] if parallel else [
                    self._extract_page(page, page_num, pdf_path)
                    for page_num, page in enumerate(pdf.pages, start=1)
                ]
        except DocumentProcessingError:
            raise
        except Exception as e:
            logger.error("Token extraction failed", path=str(pdf_path), error=str(e))
            raise TokenExtractionError(
                f"Could not read PDF: {e}",
                details={"file_name": pdf_path.name},
            ) from e

        if parallel:
            pages = self._extract_pages_parallel(pdf_path, page_count)

        document = ExtractedDocument(file_name=pdf_path.name, pages=pages)
        logger.info(
            "Token extraction complete",
            path=str(pdf_path),
            pages=page_count,
            tokens=sum(len(p.tokens) for p in pages),
            ocr_pages=document.ocr_pages(),
        )
        return document

    def _extract_pages_parallel(self, pdf_path: Path, page_count: int) -> List[PageTokens]:
        """Fan pages out to worker threads, each with its own file handle."""
        with ThreadPoolExecutor(max_workers=self._page_workers) as executor:
            return list(executor.map(lambda n: self._extract_page_by_number(pdf_path, n), range(1, page_count + 1)))

    def _extract_page_by_number(self, pdf_path: Path, page_num: int) -> PageTokens:
        try:
            with pdfplumber.open(pdf_path) as pdf:
                return self._extract_page(pdf.pages[page_num - 1], page_num, pdf_path)
        except DocumentProcessingError:
            raise
        except Exception as e:
            logger.error("Page extraction failed", path=str(pdf_path), page=page_num, error=str(e))
            raise TokenExtractionError(
                f"Could not read page {page_num}: {e}",
                details={"file_name": pdf_path.name, "page": page_num},
            ) from e

    def _extract_page(self, page: "pdfplumber.page.Page", page_num: int, pdf_path: Path) -> PageTokens:
        """Extract tokens from a single page."""
        words = page.extract_words(
            x_tolerance=self._x_tolerance,
            y_tolerance=self._y_tolerance,
            extra_attrs=["size"],
        )
        tokens = tokens_from_words(words, page_num)
        text_chars = sum(len(t.text) for t in tokens)

        if text_chars < self.MIN_TEXT_CHARS and self._ocr_source is not None:
            logger.info("Page appears scanned, using OCR tokens", page=page_num, text_chars=text_chars)
            try:
                ocr_tokens = self._ocr_source(pdf_path, page_num)
            except Exception as e:
                raise OCRError(
                    f"OCR failed on page {page_num}: {e}",
                    details={"file_name": pdf_path.name, "page": page_num},
                ) from e
            return PageTokens(
                page=page_num,
                tokens=list(ocr_tokens),
                used_ocr=True,
                width=float(page.width),
                height=float(page.height),
            )

        return PageTokens(
            page=page_num,
            tokens=tokens,
            used_ocr=False,
            width=float(page.width),
            height=float(page.height),
        )


def get_token_extractor(
    ocr_source: Optional[OCRTokenSource] = None,
    page_workers: int = 1,
) -> TokenExtractor:
    """Get TokenExtractor instance."""
    return TokenExtractor(ocr_source=ocr_source, page_workers=page_workers)
