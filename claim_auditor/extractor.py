"""
LLM-based field extraction from claim documents.

The LLM is used as a "smart OCR post-processor" — it understands estimate
layouts and roofing vocabulary better than regex. BUT we never trust it
blindly: every response goes through the payload parser and a declarative
schema before anything downstream sees it.

Design:
  - Input text is truncated to a fixed budget (recall of late pages is
    traded for cost and latency)
  - Absent fields are OMITTED, never coerced to null/0 — "not present" and
    "present but zero" mean different things to the rule engine
  - Failures never raise out of extract(): upstream errors, malformed JSON
    and schema violations all come back as success=False with the raw
    response preserved
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Annotated, Optional, Sequence, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .clients import Completion, ServiceContext, TextCompletion
from .exceptions import (
    ClaimAuditError,
    MalformedResponseError,
    PreprocessingError,
    SchemaViolationError,
    UpstreamCallError,
)
from .json_payload import parse_json_payload
from .models import (
    DocumentClassification,
    DocumentType,
    ExtractedData,
    ExtractedField,
    ExtractionResult,
    FieldSet,
    MaterialCategory,
    MaterialLineItem,
    OcrPage,
    PRIORITY_FIELD_NAMES,
    PriorityFields,
)
from .preprocess import preprocess

logger = logging.getLogger(__name__)


# ─── Lenient Scalars ─────────────────────────────────────────────────

_ABSENT_MARKERS = frozenset({"", "n/a", "na", "null", "none", "unknown", "not found"})
_NUMBER_RE = re.compile(r"-?\d[\d,]*(?:\.\d+)?|-?\.\d+")


def _coerce_number(value: object) -> object:
    """Accept "3,633 SF" or "$42.90" as numbers. Absent markers become None.
    Anything else is left for the schema to reject."""
    if not isinstance(value, str):
        return value
    text = value.strip()
    if text.lower() in _ABSENT_MARKERS:
        return None
    match = _NUMBER_RE.search(text)
    if match is None:
        return value
    return match.group(0).replace(",", "")


def _coerce_text(value: object) -> object:
    if isinstance(value, str) and value.strip().lower() in _ABSENT_MARKERS:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


Number = Annotated[Optional[float], BeforeValidator(_coerce_number)]
Money = Annotated[Optional[Decimal], BeforeValidator(_coerce_number)]
Count = Annotated[Optional[int], BeforeValidator(_coerce_number)]
Text = Annotated[Optional[str], BeforeValidator(_coerce_text)]


# ─── Declarative Schemas ─────────────────────────────────────────────


class _Schema(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class RoofMeasurementsSchema(_Schema):
    total_area: Number = None
    squares: Number = None
    pitch: Text = None
    stories: Number = None  # split-level reports give 1.5
    eaves: Number = None
    rakes: Number = None
    ridges: Number = None
    hips: Number = None
    ridge_hip: Number = None
    valleys: Number = None


class MaterialSchema(_Schema):
    code: Text = None
    description: Text = None
    quantity: Number = None
    unit: Text = None
    unit_rate: Money = None
    total: Money = None
    source_page: Count = None


class MaterialsSchema(_Schema):
    hip_ridge_cap: Optional[MaterialSchema] = None
    starter_strip: Optional[MaterialSchema] = None
    drip_edge: Optional[MaterialSchema] = None
    gutter_apron: Optional[MaterialSchema] = None
    ice_water_barrier: Optional[MaterialSchema] = None


class MaterialExtractionSchema(_Schema):
    """Roof measurements plus the five material categories."""

    roof_measurements: RoofMeasurementsSchema = Field(
        default_factory=RoofMeasurementsSchema
    )
    materials: MaterialsSchema = Field(default_factory=MaterialsSchema)


class CustomerInfoSchema(_Schema):
    name: Text = None
    address: Text = None
    phone: Text = None
    email: Text = None


class ClaimInfoSchema(_Schema):
    claim_number: Text = None
    policy_number: Text = None
    date_of_loss: Text = None
    carrier: Text = None
    claim_rep: Text = None
    estimator: Text = None
    original_estimate: Money = None


class DocumentExtractionSchema(MaterialExtractionSchema):
    """Full-document schema: materials + identity sections + every line item."""

    customer_info: Optional[CustomerInfoSchema] = None
    claim_info: Optional[ClaimInfoSchema] = None
    line_items: list[MaterialSchema] = Field(default_factory=list)


# ─── Prompt Templates ────────────────────────────────────────────────


@dataclass(frozen=True)
class ExtractionTemplate:
    """A prompt paired with the schema its response must satisfy."""

    name: str
    prompt: str  # Contains a literal {document} placeholder
    schema: type[BaseModel]

    def render(self, document_text: str) -> str:
        # str.replace, not format(): the prompt is full of JSON braces
        return self.prompt.replace("{document}", document_text)


_MATERIALS_GUIDE = """\
## ROOF MEASUREMENTS (usually in the roof report)
- totalArea: "Total Area: 3,633 SF", "Total Roof Area"
- squares: "Squares: 36.33", "SQ: 36.33"
- pitch: "Pitch: 5/12", "Slope: 5/12", "5:12"; keep ranges as written
- stories: "2 Story", "Stories: 2", "Single Story" = 1
- eaves: "Eaves: 220 LF", "Horizontal Edge"
- rakes: "Rakes: 140 LF", "Rake Edge", "Gable Edge"
- ridges / hips: "Ridges: 26 LF", "Hips: 93 LF"
- ridgeHip: a single combined "Hip/Ridge: 104.25 LF" figure
- valleys: "Valleys: 20 LF"

## MATERIALS (usually in the estimate)
- hipRidgeCap: "Hip / Ridge cap - Standard profile - composition shingles",
  "Cut from 3-tab shingles" (capture the full description: it decides quality)
- starterStrip: "Asphalt starter - universal starter course",
  "Self adhesive starter roll", "Cut shingles for starter"
- dripEdge: "Drip edge", "Drip Edge (Rake + Eave)"
- gutterApron: "Gutter apron", "Counterflashing - Apron flashing", "Eave flashing"
- iceWaterBarrier: "Ice & water barrier", "Ice/Water Shield",
  "Underlayment - ice and water"

## RULES
1. Extract numbers exactly as written (no commas, no units in numbers).
2. Put the unit (LF, SF, SQ, EA) in "unit".
3. unitRate and total are plain numbers without "$".
4. sourcePage is the 1-based page where the item appears.
5. If a field is not in the document, OMIT it. Never write null or 0 for
   something you did not see.
6. Do not correct, infer or complete values.
"""

_MATERIALS_SHAPE = """\
  "roofMeasurements": {
    "totalArea": number, "squares": number, "pitch": "string",
    "stories": number, "eaves": number, "rakes": number,
    "ridges": number, "hips": number, "ridgeHip": number, "valleys": number
  },
  "materials": {
    "hipRidgeCap": {"code": "string", "description": "string", "quantity": number,
                    "unit": "string", "unitRate": number, "total": number,
                    "sourcePage": number},
    "starterStrip": { ...same shape... },
    "dripEdge": { ...same shape... },
    "gutterApron": { ...same shape... },
    "iceWaterBarrier": { ...same shape... }
  }"""

MATERIALS_TEMPLATE = ExtractionTemplate(
    name="materials",
    schema=MaterialExtractionSchema,
    prompt=(
        "You extract data from insurance roofing estimates and roof "
        "measurement reports. Extract ONLY factual measurements and material "
        "descriptions. Return ONLY a valid JSON object.\n\n"
        + _MATERIALS_GUIDE
        + "\nReturn this JSON structure (omit fields not found):\n{\n"
        + _MATERIALS_SHAPE
        + "\n}\n\nDocument text:\n{document}"
    ),
)

FULL_DOCUMENT_TEMPLATE = ExtractionTemplate(
    name="full_document",
    schema=DocumentExtractionSchema,
    prompt=(
        "You extract data from insurance roofing estimates and roof "
        "measurement reports. Extract ONLY what is written. Return ONLY a "
        "valid JSON object.\n\n"
        + _MATERIALS_GUIDE
        + "\n## IDENTITY AND LINE ITEMS\n"
        "- customerInfo: insured name, property address, phone, email\n"
        "- claimInfo: claim number, policy number, date of loss (YYYY-MM-DD), "
        "carrier, claim rep, estimator, original estimate total\n"
        "- lineItems: every estimate row, one object per row\n"
        "\nReturn this JSON structure (omit fields not found):\n{\n"
        '  "customerInfo": {"name": "string", "address": "string", '
        '"phone": "string", "email": "string"},\n'
        '  "claimInfo": {"claimNumber": "string", "policyNumber": "string", '
        '"dateOfLoss": "string", "carrier": "string", "claimRep": "string", '
        '"estimator": "string", "originalEstimate": number},\n'
        + _MATERIALS_SHAPE
        + ',\n  "lineItems": [{"code": "string", "description": "string", '
        '"quantity": number, "unit": "string", "unitRate": number, '
        '"total": number, "sourcePage": number}]\n'
        "}\n\nDocument text:\n{document}"
    ),
)

CLASSIFICATION_PROMPT = """\
Classify this document as a "roof_report" or an "estimate".

ROOF REPORT indicators: roof measurements (squares, rakes, eaves, ridges,
valleys), pitch diagrams, report vendor branding, no pricing.

ESTIMATE indicators: priced line items, labor and material costs,
claim/policy numbers, insured and carrier details, RCV/ACV totals.

Respond with a JSON object:
{"type": "roof_report" | "estimate" | "unknown", "confidence": 0.0-1.0,
 "reasoning": "short explanation"}

Document text:
{document}"""


# ─── Field Extractor ─────────────────────────────────────────────────


class FieldExtractor:
    """Runs one structured-extraction prompt against a text-completion backend.

    Usage:
        extractor = FieldExtractor(context)
        result = extractor.extract(estimate_text, FULL_DOCUMENT_TEMPLATE)
        if result.success:
            data = to_extracted_data(result.data, classification, pages)
    """

    def __init__(
        self, context: ServiceContext, completion: TextCompletion | None = None
    ):
        self.context = context
        self.settings = context.settings
        self.completion = completion or context.completion

    def extract(
        self,
        document: Union[bytes, str],
        template: ExtractionTemplate = MATERIALS_TEMPLATE,
    ) -> ExtractionResult:
        """Extract `template.schema` fields from a document.

        Returns:
            ExtractionResult. `data` is the validated payload (snake_case,
            absent fields omitted) when `success` is True.
        """
        start = time.perf_counter()

        try:
            text = document if isinstance(document, str) else self._to_text(document)
        except PreprocessingError as e:
            return self._failure(e, start)

        prompt = template.render(self.truncate(text))
        try:
            completion = self.completion.complete(prompt, json_mode=True)
        except UpstreamCallError as e:
            logger.error("Extraction call failed (%s): %s", template.name, e)
            return self._failure(e, start)

        cost = self.cost_of(completion)
        try:
            payload = parse_json_payload(completion.text)
            validated = validate_payload(payload, template.schema)
        except (MalformedResponseError, SchemaViolationError) as e:
            logger.warning("Extraction response rejected (%s): %s", template.name, e)
            return self._failure(e, start, raw=completion.text, cost=cost)

        latency = _elapsed_ms(start)
        logger.info(
            "Extraction succeeded (%s) in %.0f ms, cost $%.5f",
            template.name,
            latency,
            cost,
        )
        return ExtractionResult(
            success=True,
            data=validated.model_dump(exclude_none=True),
            raw_response=completion.text,
            cost=cost,
            latency_ms=latency,
        )

    def classify_document(self, text: str) -> DocumentClassification:
        """Classify a document as estimate or roof report.

        Failure is NOT an error here: the document is reported as unknown
        with zero confidence and the caller falls back to the upload role.
        """
        prompt = CLASSIFICATION_PROMPT.replace(
            "{document}", text[: self.settings.classification_chars]
        )
        try:
            completion = self.completion.complete(prompt, json_mode=True)
            payload = parse_json_payload(completion.text)
            doc_type = str(payload.get("type", "")).strip().lower()
            if doc_type not in {t.value for t in DocumentType}:
                doc_type = DocumentType.UNKNOWN.value
            payload["type"] = doc_type
            classification = DocumentClassification.model_validate(payload)
        except (ClaimAuditError, ValidationError) as e:
            logger.warning("Document classification failed: %s", e)
            return DocumentClassification(
                reasoning=f"Classification failed: {e}"
            )

        logger.info(
            "Classified document as %s (%.0f%% confidence)",
            classification.type.value,
            classification.confidence * 100,
        )
        return classification

    def truncate(self, text: str) -> str:
        limit = self.settings.max_document_chars
        if len(text) > limit:
            logger.info("Truncating document from %d to %d chars", len(text), limit)
            return text[:limit]
        return text

    def cost_of(self, completion: Completion) -> float:
        return (
            completion.input_tokens / 1_000_000 * self.settings.input_cost_per_mtok
            + completion.output_tokens / 1_000_000 * self.settings.output_cost_per_mtok
        )

    def _to_text(self, pdf_bytes: bytes) -> str:
        return preprocess(pdf_bytes, self.context.ocr).full_text

    @staticmethod
    def _failure(
        error: ClaimAuditError,
        start: float,
        raw: str | None = None,
        cost: float = 0.0,
    ) -> ExtractionResult:
        return ExtractionResult(
            success=False,
            error=str(error),
            error_code=error.code,
            raw_response=raw,
            cost=cost,
            latency_ms=_elapsed_ms(start),
        )


def validate_payload(payload: dict, schema: type[BaseModel]) -> BaseModel:
    """Validate a parsed payload at the schema boundary.

    Raises:
        SchemaViolationError: with the individual pydantic errors in details.
    """
    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise SchemaViolationError(
            f"Response does not match the {schema.__name__} schema "
            f"({len(errors)} error(s))",
            {"errors": errors},
        ) from e


# ─── Conversion to ExtractedData ─────────────────────────────────────

# Schema key → RoofMeasurements field name
_MEASUREMENT_KEYS: dict[str, str] = {
    "total_area": "total_area",
    "squares": "squares",
    "pitch": "pitch",
    "stories": "stories",
    "eaves": "eave_length",
    "rakes": "rake_length",
    "ridges": "ridge_length",
    "hips": "hip_length",
    "ridge_hip": "ridge_hip_length",
    "valleys": "valley_length",
}

_CUSTOMER_PRIORITY_KEYS: dict[str, str] = {
    "name": "customer_name",
    "address": "property_address",
}

_CATEGORY_LABELS: dict[MaterialCategory, str] = {
    MaterialCategory.HIP_RIDGE_CAP: "Hip / Ridge cap",
    MaterialCategory.STARTER_STRIP: "Starter strip",
    MaterialCategory.DRIP_EDGE: "Drip edge",
    MaterialCategory.GUTTER_APRON: "Gutter apron",
    MaterialCategory.ICE_WATER_BARRIER: "Ice & water barrier",
}


def to_extracted_data(
    data: dict,
    classification: DocumentClassification,
    pages: Sequence[OcrPage] = (),
) -> ExtractedData:
    """Convert a validated schema payload into ExtractedData.

    Scalar fields carry the document's classification confidence; each
    material category becomes a tagged MaterialLineItem.
    """
    confidence = classification.confidence

    def as_fields(section: dict | None, keys: dict[str, str] | None = None) -> FieldSet:
        fields: FieldSet = {}
        for key, value in (section or {}).items():
            if value is None or isinstance(value, (dict, list)):
                continue
            if keys is not None and key not in keys:
                continue
            name = keys[key] if keys is not None else key
            if isinstance(value, Decimal):
                value = float(value)
            fields[name] = ExtractedField(value=value, confidence=confidence)
        return fields

    line_items: list[MaterialLineItem] = []
    for category in MaterialCategory:
        material = (data.get("materials") or {}).get(category.value)
        if material:
            line_items.append(_line_item(material, category))
    for item in data.get("line_items") or []:
        if item.get("description"):
            line_items.append(_line_item(item))

    customer_info = as_fields(data.get("customer_info"))
    claim_info = as_fields(data.get("claim_info"))

    # The identity sections double as priority fields so a full pass can
    # refine what the fast path found
    identity = dict(claim_info)
    for key, name in _CUSTOMER_PRIORITY_KEYS.items():
        if key in customer_info:
            identity[name] = customer_info[key]
    priority = PriorityFields(
        **{k: v for k, v in identity.items() if k in PRIORITY_FIELD_NAMES}
    )

    return ExtractedData(
        classification=classification,
        priority_fields=priority,
        customer_info=customer_info,
        claim_info=claim_info,
        roofing_data=as_fields(data.get("roof_measurements"), _MEASUREMENT_KEYS),
        line_items=line_items,
        raw_page_content=[p.text for p in pages],
    )


def _line_item(
    row: dict, category: Optional[MaterialCategory] = None
) -> MaterialLineItem:
    page = row.get("source_page")
    return MaterialLineItem(
        code=row.get("code"),
        description=row.get("description")
        or (_CATEGORY_LABELS[category] if category else ""),
        quantity=row.get("quantity"),
        unit=row.get("unit"),
        unit_rate=row.get("unit_rate"),
        total=row.get("total"),
        # A page claim below 1 is no claim at all; the page validator will search
        source_page=page if page is not None and page >= 1 else None,
        category=category,
    )


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
