"""Tests for per-field confidence merging of extraction results."""

from __future__ import annotations

from typing import Any

import pytest

from claim_auditor.merger import merge_all, merge_extracted_data, merge_field_sets
from claim_auditor.models import (
    PRIORITY_FIELD_NAMES,
    DocumentClassification,
    DocumentType,
    ExtractedData,
    ExtractedField,
    MaterialLineItem,
    PriorityFields,
)


def _f(value: Any, confidence: float) -> ExtractedField:
    return ExtractedField(value=value, confidence=confidence)


def _data(doc_type: DocumentType, confidence: float = 0.9, **overrides: Any) -> ExtractedData:
    kwargs: dict[str, Any] = {
        "classification": DocumentClassification(type=doc_type, confidence=confidence),
    }
    kwargs.update(overrides)
    return ExtractedData(**kwargs)


class TestMergeFieldSets:
    def test_present_beats_absent(self) -> None:
        merged = merge_field_sets({"eave_length": _f(180, 0.2)}, {"rake_length": _f(120, 0.1)})
        assert set(merged) == {"eave_length", "rake_length"}

    def test_higher_confidence_wins(self) -> None:
        merged = merge_field_sets({"pitch": _f("6/12", 0.6)}, {"pitch": _f("7/12", 0.9)})
        assert merged["pitch"].value == "7/12"

    def test_tie_keeps_first_by_default(self) -> None:
        merged = merge_field_sets({"pitch": _f("6/12", 0.8)}, {"pitch": _f("7/12", 0.8)})
        assert merged["pitch"].value == "6/12"

    def test_tie_can_prefer_second(self) -> None:
        merged = merge_field_sets(
            {"pitch": _f("6/12", 0.8)}, {"pitch": _f("7/12", 0.8)}, second_wins_ties=True
        )
        assert merged["pitch"].value == "7/12"


class TestMergeExtractedData:
    def test_roof_report_wins_measurement_ties(self) -> None:
        estimate = _data(DocumentType.ESTIMATE, roofing_data={"eave_length": _f(170, 0.9)})
        report = _data(DocumentType.ROOF_REPORT, roofing_data={"eave_length": _f(180, 0.9)})
        merged = merge_extracted_data(estimate, report)
        assert merged.roofing_data["eave_length"].value == 180

    def test_estimate_wins_identity_ties_in_either_order(self) -> None:
        estimate = _data(DocumentType.ESTIMATE, claim_info={"claim_number": _f("CLM-1", 0.9)})
        report = _data(DocumentType.ROOF_REPORT, claim_info={"claim_number": _f("CLM-7", 0.9)})
        assert merge_extracted_data(estimate, report).claim_info["claim_number"].value == "CLM-1"
        assert merge_extracted_data(report, estimate).claim_info["claim_number"].value == "CLM-1"

    def test_strictly_higher_confidence_beats_preference(self) -> None:
        estimate = _data(DocumentType.ESTIMATE, roofing_data={"pitch": _f("6/12", 0.95)})
        report = _data(DocumentType.ROOF_REPORT, roofing_data={"pitch": _f("5/12", 0.9)})
        assert merge_extracted_data(estimate, report).roofing_data["pitch"].value == "6/12"

    def test_priority_fields_merged_per_field(self) -> None:
        a = _data(
            DocumentType.ESTIMATE,
            priority_fields=PriorityFields(
                customer_name=_f("Jane Doe", 0.9), carrier=_f("Acme", 0.4)
            ),
        )
        b = _data(
            DocumentType.ROOF_REPORT,
            priority_fields=PriorityFields(
                customer_name=_f("J. Doe", 0.7), carrier=_f("Acme Mutual", 0.8)
            ),
        )
        merged = merge_extracted_data(a, b).priority_fields
        assert merged.customer_name.value == "Jane Doe"
        assert merged.carrier.value == "Acme Mutual"

    @pytest.mark.parametrize("order", ["ab", "ba"])
    def test_confidence_never_decreases(self, order: str) -> None:
        a = _data(
            DocumentType.ESTIMATE,
            priority_fields=PriorityFields(claim_number=_f("1", 0.3), estimator=_f("Bo", 0.9)),
        )
        b = _data(
            DocumentType.ROOF_REPORT,
            priority_fields=PriorityFields(claim_number=_f("2", 0.6), policy_number=_f("P", 0.5)),
        )
        first, second = (a, b) if order == "ab" else (b, a)
        merged = merge_extracted_data(first, second).priority_fields
        for name in PRIORITY_FIELD_NAMES:
            expected = max(
                getattr(x.priority_fields, name).confidence
                if getattr(x.priority_fields, name)
                else 0.0
                for x in (a, b)
            )
            got = getattr(merged, name)
            assert (got.confidence if got else 0.0) >= expected

    def test_classification_follows_confidence(self) -> None:
        merged = merge_extracted_data(
            _data(DocumentType.ESTIMATE, 0.7), _data(DocumentType.ROOF_REPORT, 0.95)
        )
        assert merged.classification.type == DocumentType.ROOF_REPORT

    def test_lists_concatenated(self) -> None:
        a = _data(
            DocumentType.ESTIMATE,
            line_items=[MaterialLineItem(description="Drip edge", quantity=120)],
            raw_page_content=["estimate p1"],
        )
        b = _data(
            DocumentType.ROOF_REPORT,
            line_items=[MaterialLineItem(description="Drip edge", quantity=120)],
            raw_page_content=["report p1"],
        )
        merged = merge_extracted_data(a, b)
        assert len(merged.line_items) == 2
        assert merged.raw_page_content == ["estimate p1", "report p1"]

    def test_inputs_not_mutated(self) -> None:
        a = _data(DocumentType.ESTIMATE, roofing_data={"pitch": _f("6/12", 0.5)})
        b = _data(DocumentType.ROOF_REPORT, roofing_data={"pitch": _f("7/12", 0.9)})
        merge_extracted_data(a, b)
        assert a.roofing_data["pitch"].value == "6/12"


class TestMergeAll:
    def test_empty(self) -> None:
        assert merge_all([]) == ExtractedData()

    def test_folds_left_to_right(self) -> None:
        parts = [
            _data(DocumentType.ESTIMATE, roofing_data={"eave_length": _f(1, 0.1)}),
            _data(DocumentType.ESTIMATE, roofing_data={"eave_length": _f(2, 0.5)}),
            _data(DocumentType.ESTIMATE, roofing_data={"eave_length": _f(3, 0.3)}),
        ]
        assert merge_all(parts).roofing_data["eave_length"].value == 2
