"""Tests for PDF / text preprocessing into page-segmented documents."""

from __future__ import annotations

import pytest

from claim_auditor.exceptions import PreprocessingError
from claim_auditor.preprocess import (
    preprocess,
    preprocess_pdf,
    preprocess_text,
)


class TestPreprocessPdf:
    def test_pages_joined_with_blank_line(self, fake_ocr) -> None:
        fake_ocr.add(b"%PDF-estimate", ["Page one text", "Page two text"])
        doc = preprocess_pdf(b"%PDF-estimate", fake_ocr)
        assert doc.page_count == 2
        assert doc.full_text == "Page one text\n\nPage two text"
        assert [p.page_number for p in doc.pages] == [1, 2]

    def test_page_subset_is_forwarded(self, fake_ocr) -> None:
        fake_ocr.add(b"%PDF", ["one", "two", "three"])
        doc = preprocess_pdf(b"%PDF", fake_ocr, pages=[1, 2])
        assert [p.text for p in doc.pages] == ["one", "two"]
        assert fake_ocr.calls[-1] == (b"%PDF", [1, 2])

    def test_empty_bytes_rejected(self, fake_ocr) -> None:
        with pytest.raises(PreprocessingError):
            preprocess_pdf(b"", fake_ocr)

    def test_no_text_rejected(self, fake_ocr) -> None:
        fake_ocr.add(b"%PDF-scan", ["", "   "])
        with pytest.raises(PreprocessingError) as exc_info:
            preprocess_pdf(b"%PDF-scan", fake_ocr)
        assert exc_info.value.code == "PREPROCESSING_FAILED"


class TestPreprocessText:
    def test_form_feed_splits_pages(self) -> None:
        doc = preprocess_text("first page\fsecond page")
        assert [p.text for p in doc.pages] == ["first page", "second page"]

    def test_page_marker_splits_pages(self) -> None:
        doc = preprocess_text("Cover\nPage 2\nLine items\nPage 3\nTotals")
        assert doc.page_count == 3
        assert doc.pages[1].text == "Line items"

    def test_no_break_is_one_page(self) -> None:
        doc = preprocess_text("Eaves: 180 LF")
        assert doc.page_count == 1

    def test_dispatch_on_type(self, fake_ocr) -> None:
        fake_ocr.add(b"%PDF", ["from ocr"])
        assert preprocess(b"%PDF", fake_ocr).full_text == "from ocr"
        assert preprocess("a\fb", fake_ocr, pages=[2]).full_text == "b"

