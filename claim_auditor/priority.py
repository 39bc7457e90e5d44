"""
Priority-field fast path.

A reviewer wants to see WHO and WHICH CLAIM within seconds, long before the
full extraction finishes. The nine identity fields almost always sit in the
header of the first page or two, so this pass reads only those pages,
truncated hard, with a tiny prompt.

Design:
  - Cheap and best-effort: any failure yields empty PriorityFields
  - Each field carries its own confidence so later passes can supersede it
  - Merge is monotone: a field is only ever replaced by a strictly more
    confident one
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from pydantic.alias_generators import to_camel

from .clients import ServiceContext, TextCompletion
from .exceptions import ClaimAuditError
from .json_payload import parse_json_payload
from .models import PRIORITY_FIELD_NAMES, ExtractedField, OcrPage, PriorityFields

logger = logging.getLogger(__name__)

PRIORITY_PROMPT = """\
Extract these fields from the header of an insurance roofing claim document.
For each field return {"value": ..., "confidence": 0.0-1.0, "sourcePage": n}.
OMIT any field that is not present. Never guess.

Fields:
- customerName: the insured / property owner
- propertyAddress: the loss location address
- claimNumber
- policyNumber
- dateOfLoss: as YYYY-MM-DD
- carrier: the insurance company
- claimRep: the adjuster / claim representative
- estimator
- originalEstimate: the RCV / estimate total as a number

Return ONLY a JSON object keyed by field name.

Document header:
{document}"""


class PriorityExtractor:
    """Fast, low-budget extraction of the nine identity fields."""

    def __init__(
        self, context: ServiceContext, completion: TextCompletion | None = None
    ):
        self.settings = context.settings
        self.completion = completion or context.completion

    def extract(self, pages: Sequence[OcrPage]) -> PriorityFields:
        leading = sorted(pages, key=lambda p: p.page_number)[
            : self.settings.priority_pages
        ]
        text = "\n\n".join(p.text for p in leading)[: self.settings.priority_chars]
        if not text.strip():
            logger.info("No header text for priority extraction")
            return PriorityFields()

        try:
            completion = self.completion.complete(
                PRIORITY_PROMPT.replace("{document}", text), json_mode=True
            )
            payload = parse_json_payload(completion.text)
        except ClaimAuditError as e:
            logger.warning("Priority extraction failed [%s]: %s", e.code, e.message)
            return PriorityFields()

        fields = parse_priority_payload(payload)
        logger.info(
            "Priority extraction found %d/%d fields (avg confidence %.2f)",
            len(fields.present()),
            len(PRIORITY_FIELD_NAMES),
            average_confidence(fields),
        )
        return fields


def parse_priority_payload(payload: dict) -> PriorityFields:
    """Keep only known fields with a usable value and confidence.

    Accepts camelCase or snake_case keys. Confidence is clamped to [0, 1].
    """
    found: dict[str, ExtractedField] = {}
    for name in PRIORITY_FIELD_NAMES:
        entry = payload.get(to_camel(name), payload.get(name))
        field = _to_field(entry)
        if field is not None:
            found[name] = field
    return PriorityFields(**found)


def merge_priority_fields(
    existing: PriorityFields, new: PriorityFields
) -> PriorityFields:
    """Per field, `new` replaces `existing` only with strictly higher confidence."""
    merged: dict[str, Optional[ExtractedField]] = {}
    for name in PRIORITY_FIELD_NAMES:
        current = getattr(existing, name)
        candidate = getattr(new, name)
        if candidate is not None and (
            current is None or candidate.confidence > current.confidence
        ):
            merged[name] = candidate
        else:
            merged[name] = current
    return PriorityFields(**merged)


def average_confidence(fields: PriorityFields) -> float:
    """Mean confidence over present fields; 0.0 when nothing was found."""
    present = fields.present()
    if not present:
        return 0.0
    return sum(f.confidence for f in present.values()) / len(present)


def _to_field(entry: object) -> Optional[ExtractedField]:
    if not isinstance(entry, dict):
        return None

    value = entry.get("value")
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None

    try:
        confidence = float(entry.get("confidence"))
    except (TypeError, ValueError):
        return None
    confidence = min(1.0, max(0.0, confidence))

    page = entry.get("sourcePage", entry.get("source_page"))
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        page = None

    source_text = entry.get("sourceText")
    return ExtractedField(
        value=value,
        confidence=confidence,
        source_page=page,
        source_text=source_text if isinstance(source_text, str) else None,
    )
