"""
Multi-document merger.

One claim is described by two documents (and possibly several extraction
passes). Each pass yields an ExtractedData; this module folds them into one.

Strategy (uniform across every field set):
  - A present field always beats an absent one
  - Otherwise the strictly more confident field wins
  - Ties go to the document that is authoritative for that kind of field:
    the estimate for identity (priority, customer, claim) and the roof
    report for roofing measurements. With no authoritative side, the first
    input wins.
  - Line items and raw page text are concatenated (duplicates are the rule
    engine's concern)

Pure: inputs are never mutated.
"""

from __future__ import annotations

import logging
from functools import reduce
from typing import Sequence

from .models import DocumentType, ExtractedData, FieldSet, PriorityFields

logger = logging.getLogger(__name__)


def merge_extracted_data(first: ExtractedData, second: ExtractedData) -> ExtractedData:
    identity_tie_to_second = _second_is_authoritative(
        first, second, DocumentType.ESTIMATE
    )
    roofing_tie_to_second = _second_is_authoritative(
        first, second, DocumentType.ROOF_REPORT
    )

    classification = (
        second.classification
        if second.classification.confidence > first.classification.confidence
        else first.classification
    )

    priority = merge_field_sets(
        first.priority_fields.present(),
        second.priority_fields.present(),
        identity_tie_to_second,
    )

    merged = ExtractedData(
        classification=classification,
        priority_fields=PriorityFields(**priority),
        customer_info=merge_field_sets(
            first.customer_info, second.customer_info, identity_tie_to_second
        ),
        claim_info=merge_field_sets(
            first.claim_info, second.claim_info, identity_tie_to_second
        ),
        roofing_data=merge_field_sets(
            first.roofing_data, second.roofing_data, roofing_tie_to_second
        ),
        line_items=[*first.line_items, *second.line_items],
        raw_page_content=[*first.raw_page_content, *second.raw_page_content],
    )
    logger.debug(
        "Merged extraction: %d roofing fields, %d line items",
        len(merged.roofing_data),
        len(merged.line_items),
    )
    return merged


def merge_all(results: Sequence[ExtractedData]) -> ExtractedData:
    """Fold any number of extraction results, left to right."""
    if not results:
        return ExtractedData()
    return reduce(merge_extracted_data, results)


def merge_field_sets(
    first: FieldSet, second: FieldSet, second_wins_ties: bool = False
) -> FieldSet:
    """Per-field confidence merge of two field sets."""
    merged: FieldSet = dict(first)
    for name, candidate in second.items():
        current = merged.get(name)
        if current is None or candidate.confidence > current.confidence:
            merged[name] = candidate
        elif candidate.confidence == current.confidence and second_wins_ties:
            merged[name] = candidate
    return merged


def _second_is_authoritative(
    first: ExtractedData, second: ExtractedData, authority: DocumentType
) -> bool:
    return (
        second.classification.type == authority
        and first.classification.type != authority
    )
