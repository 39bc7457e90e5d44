"""
PDF preprocessing: turn document bytes (or already-extracted text) into
page-segmented text.

Page boundaries matter downstream: the page-reference validator checks LLM
page claims against these pages, so pages keep their 1-based numbers.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

from .clients import OcrCapability
from .exceptions import PreprocessingError
from .models import OcrPage

logger = logging.getLogger(__name__)

_PAGE_BREAK_RE = re.compile(r"\f|\n\s*Page\s+\d+", re.IGNORECASE)


@dataclass
class PreprocessedDocument:
    """Page-segmented text of one document."""

    pages: list[OcrPage] = field(default_factory=list)

    @property
    def full_text(self) -> str:
        return "\n\n".join(p.text for p in self.pages)

    @property
    def page_count(self) -> int:
        return len(self.pages)


def preprocess(
    source: Union[bytes, str],
    ocr: OcrCapability,
    pages: Optional[Sequence[int]] = None,
) -> PreprocessedDocument:
    """Dispatch on input type: bytes go through OCR, text is split locally."""
    if isinstance(source, bytes):
        return preprocess_pdf(source, ocr, pages)
    document = preprocess_text(source)
    if pages is not None:
        wanted = set(pages)
        document = PreprocessedDocument(
            [p for p in document.pages if p.page_number in wanted]
        )
    return document


def preprocess_pdf(
    pdf_bytes: bytes,
    ocr: OcrCapability,
    pages: Optional[Sequence[int]] = None,
) -> PreprocessedDocument:
    """Run the OCR capability over PDF bytes.

    Raises:
        PreprocessingError: if the document yields no text at all.
    """
    if not pdf_bytes:
        raise PreprocessingError("Empty PDF payload")

    ocr_pages = sorted(ocr.ocr(pdf_bytes, pages), key=lambda p: p.page_number)
    if not any(p.text.strip() for p in ocr_pages):
        raise PreprocessingError(
            "OCR returned no text", {"pages_returned": len(ocr_pages)}
        )

    logger.info("Preprocessed PDF into %d page(s)", len(ocr_pages))
    return PreprocessedDocument(ocr_pages)


def preprocess_text(text: str) -> PreprocessedDocument:
    """Split plain text on form feeds or 'Page N' markers.

    Falls back to a single page when no break is found.
    """
    chunks = [c.strip() for c in _PAGE_BREAK_RE.split(text)]
    chunks = [c for c in chunks if c]
    if not chunks:
        chunks = [text]
    return PreprocessedDocument(
        [OcrPage(page_number=i, text=chunk) for i, chunk in enumerate(chunks, 1)]
    )

