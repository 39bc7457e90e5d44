"""Tests for correcting LLM page-number claims against the actual pages."""

from __future__ import annotations

from claim_auditor.models import MaterialLineItem, OcrPage
from claim_auditor.page_validator import description_pattern, validate_page_numbers


def _pages(*texts: str) -> list[OcrPage]:
    return [OcrPage(page_number=i, text=t) for i, t in enumerate(texts, 1)]


PAGES = _pages(
    "Insured: Jane Doe\nClaim 123",
    "Roof summary\nTear off composition shingles",
    "Drip edge 120 LF\nHip / Ridge cap - Standard profile 6 LF",
    "Totals\n" + "x" * 300 + "\nIce & water barrier 800 SF",
)


class TestValidatePageNumbers:
    def test_correct_claim_is_verified(self) -> None:
        item = MaterialLineItem(description="Drip edge", source_page=3)
        [result] = validate_page_numbers([item], PAGES)
        assert result.source_page == 3
        assert result.page_verified is True

    def test_off_by_one_corrected_to_previous_page(self) -> None:
        item = MaterialLineItem(description="Drip edge", source_page=4)
        [result] = validate_page_numbers([item], PAGES)
        assert result.source_page == 3
        assert result.page_verified is True

    def test_next_page_checked_before_previous(self) -> None:
        pages = _pages("Starter strip", "Other", "Starter strip")
        item = MaterialLineItem(description="Starter strip", source_page=2)
        [result] = validate_page_numbers([item], pages)
        assert result.source_page == 3

    def test_adjacent_match_must_be_near_top(self) -> None:
        """Page 4 mentions the barrier only after 300 chars; the full scan
        still finds it there, so the claim of page 3 moves to page 4."""
        item = MaterialLineItem(description="Ice & water barrier", source_page=3)
        [result] = validate_page_numbers([item], PAGES)
        assert result.source_page == 4
        assert result.page_verified is True

    def test_adjacent_deep_match_loses_to_earlier_page(self) -> None:
        pages = _pages("Gutter apron 200 LF", "Summary", "y" * 250 + " Gutter apron")
        item = MaterialLineItem(description="Gutter apron", source_page=2)
        [result] = validate_page_numbers([item], pages)
        assert result.source_page == 1

    def test_full_scan_when_far_off(self) -> None:
        item = MaterialLineItem(description="Insured: Jane Doe", source_page=9)
        [result] = validate_page_numbers([item], PAGES)
        assert result.source_page == 1

    def test_unclaimed_item_goes_to_full_scan(self) -> None:
        item = MaterialLineItem(description="hip / ridge cap - standard profile")
        [result] = validate_page_numbers([item], PAGES)
        assert result.source_page == 3
        assert result.page_verified is True

    def test_unresolvable_claim_left_unverified(self) -> None:
        item = MaterialLineItem(description="Satellite dish reset", source_page=2)
        [result] = validate_page_numbers([item], PAGES)
        assert result.source_page == 2
        assert result.page_verified is False

    def test_inputs_not_mutated(self) -> None:
        item = MaterialLineItem(description="Drip edge", source_page=4)
        validate_page_numbers([item], PAGES)
        assert item.source_page == 4
        assert item.page_verified is False


class TestDescriptionPattern:
    def test_uses_first_fifty_chars(self) -> None:
        description = "A" * 50 + " this tail never matches"
        pattern = description_pattern(description)
        assert pattern is not None
        assert pattern.search("a" * 50)

    def test_regex_characters_are_literal(self) -> None:
        pattern = description_pattern("Hip/Ridge (cap) + 3-tab?")
        assert pattern.search("hip/ridge (cap) + 3-tab?")
        assert not pattern.search("hip/ridge cap")

    def test_whitespace_runs_match_line_wraps(self) -> None:
        assert description_pattern("Ice & water  barrier").search("ICE &\nwater barrier")

    def test_blank_description_has_no_pattern(self) -> None:
        assert description_pattern("   ") is None
