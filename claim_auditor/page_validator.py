"""
Page-reference validator.

The LLM's sourcePage claims are frequently off by one (page headers, cover
sheets, zero-based counting). Before a reviewer is sent to "page 4", check
that the item's description actually appears there and correct the claim
when it does not.

Search order per item:
  1. The claimed page
  2. The adjacent pages (next, then previous), only near the top of the page
  3. Every page, in document order
Unresolvable claims are left as-is with page_verified=False.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Sequence

from .models import MaterialLineItem, OcrPage

logger = logging.getLogger(__name__)

PATTERN_CHARS = 50
ADJACENT_WINDOW_CHARS = 200


def validate_page_numbers(
    line_items: Sequence[MaterialLineItem], pages: Sequence[OcrPage]
) -> list[MaterialLineItem]:
    """Return corrected copies of `line_items`. Inputs are not modified."""
    page_text = {p.page_number: p.text for p in pages}
    return [_validate_item(item, page_text) for item in line_items]


def description_pattern(description: str) -> Optional[re.Pattern[str]]:
    """Case-insensitive literal pattern for the first 50 description chars.

    Runs of whitespace match any whitespace so OCR line wrapping does not
    defeat the search.
    """
    words = description[:PATTERN_CHARS].split()
    if not words:
        return None
    return re.compile(r"\s+".join(re.escape(w) for w in words), re.IGNORECASE)


def _validate_item(
    item: MaterialLineItem, page_text: dict[int, str]
) -> MaterialLineItem:
    pattern = description_pattern(item.description)
    if pattern is None:
        return item.model_copy(update={"page_verified": False})

    claimed = item.source_page
    if claimed is not None:
        if pattern.search(page_text.get(claimed, "")):
            return item.model_copy(update={"page_verified": True})

        for neighbor in (claimed + 1, claimed - 1):
            match = pattern.search(page_text.get(neighbor, ""))
            if match and match.start() < ADJACENT_WINDOW_CHARS:
                return _corrected(item, neighbor)

    for number in sorted(page_text):
        if pattern.search(page_text[number]):
            return _corrected(item, number)

    if claimed is not None:
        logger.warning(
            "Could not verify page %d for line item '%s'",
            claimed,
            item.description[:PATTERN_CHARS],
        )
    return item.model_copy(update={"page_verified": False})


def _corrected(item: MaterialLineItem, page: int) -> MaterialLineItem:
    if item.source_page is not None and item.source_page != page:
        logger.warning(
            "Corrected page for '%s': %d -> %d",
            item.description[:PATTERN_CHARS],
            item.source_page,
            page,
        )
    return item.model_copy(update={"source_page": page, "page_verified": True})
