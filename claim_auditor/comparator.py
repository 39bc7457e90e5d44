"""
Extraction comparator — an offline harness for choosing extraction backends.

Runs several named extractors (different models, prompts or OCR stacks)
over the same corpus and reports, per field, how often they agree and
which backend tends to miss what. Nothing here is on the request path.

Canonical form:
  - Nested payloads flatten to "dotted.path" keys
  - Numbers normalise ("104.250" and 104.25 are the same value)
  - Strings compare case- and whitespace-insensitively
  - A field one backend found and another did not is a disagreement
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Mapping, Union

from pydantic import BaseModel, Field

from .extractor import MATERIALS_TEMPLATE, ExtractionTemplate, FieldExtractor
from .models import ExtractedData

logger = logging.getLogger(__name__)

FlatExtraction = dict[str, str]

_NUMERIC_RE = re.compile(r"^-?\d+(?:\.\d+)?$")
_ITEM_FIELDS = (
    "code", "description", "quantity", "unit", "unit_rate", "total", "source_page",
)


# ─── Flattening ──────────────────────────────────────────────────────


def flatten_extraction(data: Union[dict, ExtractedData, None]) -> FlatExtraction:
    """Map a schema payload or an ExtractedData to canonical dotted paths."""
    if data is None:
        return {}
    if isinstance(data, ExtractedData):
        return _flatten_extracted(data)
    flat: FlatExtraction = {}
    _flatten_into(flat, "", data)
    return flat


def canonical_value(value: object) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float, Decimal)):
        return _canonical_number(value)
    text = " ".join(str(value).split())
    if _NUMERIC_RE.match(text):
        return _canonical_number(text)
    return text.lower()


def _canonical_number(value: object) -> str:
    try:
        number = Decimal(str(value)).normalize()
    except InvalidOperation:
        return str(value)
    return format(number, "f")


def _flatten_into(flat: FlatExtraction, prefix: str, value: object) -> None:
    if isinstance(value, dict):
        for key, child in value.items():
            _flatten_into(flat, f"{prefix}.{key}" if prefix else str(key), child)
    elif isinstance(value, list):
        for i, child in enumerate(value):
            _flatten_into(flat, f"{prefix}.{i}", child)
    elif value is not None:
        flat[prefix] = canonical_value(value)


def _flatten_extracted(data: ExtractedData) -> FlatExtraction:
    flat: FlatExtraction = {}
    for section in ("customer_info", "claim_info", "roofing_data"):
        for name, extracted in getattr(data, section).items():
            flat[f"{section}.{name}"] = canonical_value(extracted.value)
    for name, extracted in data.priority_fields.present().items():
        flat[f"priority_fields.{name}"] = canonical_value(extracted.value)

    generic = 0
    for item in data.line_items:
        if item.category is not None:
            prefix = f"materials.{item.category.value}"
        else:
            prefix = f"line_items.{generic}"
            generic += 1
        for name in _ITEM_FIELDS:
            value = getattr(item, name)
            if value is not None:
                flat[f"{prefix}.{name}"] = canonical_value(value)
    return flat


# ─── Comparison ──────────────────────────────────────────────────────


@dataclass
class FieldComparison:
    """How every backend answered for one field of one document."""

    name: str
    values: dict[str, str] = field(default_factory=dict)  # backend → value
    missing: list[str] = field(default_factory=list)

    @property
    def distinct_values(self) -> list[str]:
        return sorted(set(self.values.values()))

    @property
    def agreed(self) -> bool:
        return not self.missing and len(self.distinct_values) == 1


def compare_outputs(outputs: Mapping[str, FlatExtraction]) -> dict[str, FieldComparison]:
    """Compare flattened outputs of several backends on the same document."""
    all_fields = sorted({name for flat in outputs.values() for name in flat})
    comparisons: dict[str, FieldComparison] = {}
    for name in all_fields:
        comparison = FieldComparison(name=name)
        for backend, flat in outputs.items():
            if name in flat:
                comparison.values[backend] = flat[name]
            else:
                comparison.missing.append(backend)
        comparisons[name] = comparison
    return comparisons


# ─── Corpus Run ──────────────────────────────────────────────────────


class FieldAgreement(BaseModel):
    """Per-field tally across a corpus."""

    documents: int = 0  # Documents where at least one backend found the field
    agreements: int = 0
    disagreements: int = 0
    missing: dict[str, int] = Field(default_factory=dict)

    @property
    def agreement_rate(self) -> float:
        return self.agreements / self.documents if self.documents else 0.0


class AgreementMatrix(BaseModel):
    backends: list[str]
    document_count: int = 0
    by_field: dict[str, FieldAgreement] = Field(default_factory=dict)
    failures: dict[str, int] = Field(default_factory=dict)
    total_cost: dict[str, float] = Field(default_factory=dict)

    def blind_spots(self, threshold: float = 0.5) -> dict[str, list[str]]:
        """Per field, the backends that miss it in at least `threshold` of
        the documents where the field was found at all."""
        spots: dict[str, list[str]] = {}
        for name, tally in self.by_field.items():
            if not tally.documents:
                continue
            blind = [
                backend
                for backend in self.backends
                if tally.missing.get(backend, 0) / tally.documents >= threshold
            ]
            if blind:
                spots[name] = blind
        return spots


def run_corpus(
    backends: Mapping[str, FieldExtractor],
    documents: Mapping[str, Union[bytes, str]],
    template: ExtractionTemplate = MATERIALS_TEMPLATE,
) -> AgreementMatrix:
    """Run every backend on every document and tally agreement per field.

    A failed extraction counts as every field missing for that backend and
    document.
    """
    matrix = AgreementMatrix(
        backends=list(backends),
        failures={name: 0 for name in backends},
        total_cost={name: 0.0 for name in backends},
    )

    for doc_id, document in documents.items():
        outputs: dict[str, FlatExtraction] = {}
        for name, extractor in backends.items():
            result = extractor.extract(document, template)
            matrix.total_cost[name] += result.cost
            if result.success:
                outputs[name] = flatten_extraction(result.data)
            else:
                matrix.failures[name] += 1
                outputs[name] = {}
                logger.warning(
                    "Backend %s failed on %s: %s", name, doc_id, result.error
                )

        matrix.document_count += 1
        for name, comparison in compare_outputs(outputs).items():
            tally = matrix.by_field.setdefault(name, FieldAgreement())
            tally.documents += 1
            if comparison.agreed:
                tally.agreements += 1
            else:
                tally.disagreements += 1
            for backend in comparison.missing:
                tally.missing[backend] = tally.missing.get(backend, 0) + 1

    logger.info(
        "Compared %d backend(s) over %d document(s): %d field(s)",
        len(matrix.backends),
        matrix.document_count,
        len(matrix.by_field),
    )
    return matrix
