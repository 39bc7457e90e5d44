"""
Pydantic models for claim data — strict typing as our first line of defense.

Extraction output is untrusted, so everything the LLM produces lands in a
typed model before any decision logic sees it. Rule results enforce their
own invariants: a result that claims compliance while carrying a cost, or a
shortage with a positive variance, fails loudly at construction time.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .exceptions import JobStateError, UnknownRuleError


# ─── Enumerations ───────────────────────────────────────────────────


class DocumentType(str, Enum):
    """What kind of claim document a PDF is (also used as the upload role)."""

    ESTIMATE = "estimate"
    ROOF_REPORT = "roof_report"
    UNKNOWN = "unknown"


class MaterialCategory(str, Enum):
    """The five material categories the rule engine cares about."""

    HIP_RIDGE_CAP = "hip_ridge_cap"
    STARTER_STRIP = "starter_strip"
    DRIP_EDGE = "drip_edge"
    GUTTER_APRON = "gutter_apron"
    ICE_WATER_BARRIER = "ice_water_barrier"


class RuleName(str, Enum):
    RIDGE_CAP = "ridge_cap"
    STARTER_STRIP = "starter_strip"
    DRIP_EDGE = "drip_edge"
    ICE_WATER_BARRIER = "ice_water_barrier"


class RuleStatus(str, Enum):
    """Verdict of a single business rule."""

    COMPLIANT = "COMPLIANT"
    SUPPLEMENT_NEEDED = "SUPPLEMENT_NEEDED"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"  # Never silently treated as compliant


class VarianceType(str, Enum):
    SHORTAGE = "shortage"
    ADEQUATE = "adequate"
    EXCESS = "excess"


class MaterialStatus(str, Enum):
    COMPLIANT = "compliant"
    NON_COMPLIANT = "non-compliant"


class Decision(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    MODIFIED = "modified"


class JobStatus(str, Enum):
    CREATED = "CREATED"
    PRIORITY_EXTRACTED = "PRIORITY_EXTRACTED"
    EXTRACTED = "EXTRACTED"
    ANALYZED = "ANALYZED"
    REVIEWED = "REVIEWED"  # Terminal: every rule carries a reviewer decision


# ─── Extracted Values ───────────────────────────────────────────────


class ExtractedField(BaseModel):
    """One extracted value with its confidence and provenance.

    Created per extraction pass and never mutated; during merge a
    higher-confidence instance simply replaces it.
    """

    model_config = ConfigDict(frozen=True)

    value: Union[int, float, str]
    confidence: float = Field(ge=0.0, le=1.0)
    source_page: Optional[int] = Field(default=None, ge=1)
    source_text: Optional[str] = None


FieldSet = dict[str, ExtractedField]


class RoofMeasurements(BaseModel):
    """Roof geometry from the measurement report. Every scalar is optional:
    absent means "not in the document", which is distinct from zero."""

    total_area: Optional[float] = None  # SF
    squares: Optional[float] = None
    pitch: Optional[str] = None  # e.g. "6/12"
    stories: Optional[float] = None
    eave_length: Optional[float] = None  # LF
    rake_length: Optional[float] = None
    ridge_length: Optional[float] = None
    hip_length: Optional[float] = None
    ridge_hip_length: Optional[float] = None  # Combined "Hip/Ridge" figure
    valley_length: Optional[float] = None
    soffit_depth: Optional[float] = None  # Inches
    wall_thickness: Optional[float] = None  # Inches

    @classmethod
    def from_field_set(cls, fields: FieldSet) -> RoofMeasurements:
        """Build measurements from merged roofing fields.

        Values that do not coerce to the measurement's type are dropped
        rather than guessed.
        """
        values = {
            name: fields[name].value for name in cls.model_fields if name in fields
        }
        try:
            return cls.model_validate(values)
        except ValidationError as exc:
            bad = {err["loc"][0] for err in exc.errors() if err["loc"]}
            return cls.model_validate(
                {k: v for k, v in values.items() if k not in bad}
            )


class MaterialLineItem(BaseModel):
    """One estimate row. The description is the only material-quality signal."""

    model_config = ConfigDict(frozen=True)

    code: Optional[str] = None
    description: str
    quantity: Optional[float] = None
    unit: Optional[str] = None
    unit_rate: Optional[Decimal] = None
    total: Optional[Decimal] = None
    source_page: Optional[int] = Field(default=None, ge=1)
    category: Optional[MaterialCategory] = None
    page_verified: bool = False


class DocumentClassification(BaseModel):
    type: DocumentType = DocumentType.UNKNOWN
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""


PRIORITY_FIELD_NAMES: tuple[str, ...] = (
    "customer_name",
    "property_address",
    "claim_number",
    "policy_number",
    "date_of_loss",
    "carrier",
    "claim_rep",
    "estimator",
    "original_estimate",
)


class PriorityFields(BaseModel):
    """The nine identity fields populated early for progressive display."""

    customer_name: Optional[ExtractedField] = None
    property_address: Optional[ExtractedField] = None
    claim_number: Optional[ExtractedField] = None
    policy_number: Optional[ExtractedField] = None
    date_of_loss: Optional[ExtractedField] = None
    carrier: Optional[ExtractedField] = None
    claim_rep: Optional[ExtractedField] = None
    estimator: Optional[ExtractedField] = None
    original_estimate: Optional[ExtractedField] = None

    def present(self) -> FieldSet:
        """Only the fields that were actually found."""
        return {
            name: getattr(self, name)
            for name in PRIORITY_FIELD_NAMES
            if getattr(self, name) is not None
        }


class ExtractedData(BaseModel):
    """Everything extracted from one document, or the merge of several."""

    classification: DocumentClassification = Field(
        default_factory=DocumentClassification
    )
    priority_fields: PriorityFields = Field(default_factory=PriorityFields)
    customer_info: FieldSet = Field(default_factory=dict)
    claim_info: FieldSet = Field(default_factory=dict)
    roofing_data: FieldSet = Field(default_factory=dict)
    line_items: list[MaterialLineItem] = Field(default_factory=list)
    raw_page_content: list[str] = Field(default_factory=list)


class OcrPage(BaseModel):
    """Text of one PDF page as returned by the OCR capability."""

    page_number: int = Field(ge=1)
    text: str
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class ExtractionResult(BaseModel):
    """Outcome of a single Field Extractor call.

    `data` holds the schema-validated payload with absent fields omitted;
    on failure `raw_response` keeps whatever the model said for diagnosis.
    """

    success: bool
    data: Optional[dict] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    raw_response: Optional[str] = None
    cost: float = 0.0  # USD
    latency_ms: float = 0.0


# ─── Rule Results ───────────────────────────────────────────────────


class ReviewerDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    decision: Decision
    notes: str = ""
    decided_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class BusinessRuleResult(BaseModel):
    """The verdict of one rule for one job.

    Immutable once computed. The reviewer decision is attached by swapping
    in a copy (see Job.record_decision), never by mutating in place.
    """

    model_config = ConfigDict(frozen=True)

    rule_name: RuleName
    status: RuleStatus
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str
    cost_impact: Decimal = Decimal("0.00")
    estimate_quantity: Optional[float] = None
    required_quantity: Optional[float] = None
    variance: Optional[float] = None  # estimate - required
    variance_type: Optional[VarianceType] = None
    material_status: Optional[MaterialStatus] = None
    unit: Optional[str] = None
    unit_rate: Optional[Decimal] = None
    evidence: list[str] = Field(default_factory=list)
    supplement_recommendation: Optional[str] = None
    reviewer_decision: Optional[ReviewerDecision] = None

    @model_validator(mode="after")
    def _check_invariants(self) -> BusinessRuleResult:
        if self.status == RuleStatus.COMPLIANT and self.cost_impact != 0:
            raise ValueError("a COMPLIANT result cannot carry a cost impact")
        if self.cost_impact < 0:
            raise ValueError("cost impact cannot be negative")
        if self.variance_type is not None:
            if self.variance is None:
                raise ValueError("variance_type requires a variance")
            if self.variance_type == VarianceType.SHORTAGE and self.variance >= 0:
                raise ValueError("a shortage must have a negative variance")
            if self.variance_type == VarianceType.EXCESS and self.variance <= 0:
                raise ValueError("an excess must have a positive variance")
        return self


# ─── Job ────────────────────────────────────────────────────────────


class DocumentRecord(BaseModel):
    """One uploaded document and what happened to it."""

    role: DocumentType
    filename: str
    source: Union[bytes, str] = Field(default=b"", exclude=True, repr=False)
    page_count: int = 0
    classification: Optional[DocumentClassification] = None
    extraction_cost: float = 0.0
    latency_ms: float = 0.0
    error: Optional[str] = None


class Job(BaseModel):
    """One estimate + one roof report, their merged fields, and rule verdicts."""

    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = JobStatus.CREATED
    documents: dict[DocumentType, DocumentRecord] = Field(default_factory=dict)
    priority_fields: PriorityFields = Field(default_factory=PriorityFields)
    extracted: Optional[ExtractedData] = None
    measurements: Optional[RoofMeasurements] = None
    rule_results: dict[RuleName, BusinessRuleResult] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return bool(self.rule_results) and all(
            r.reviewer_decision is not None for r in self.rule_results.values()
        )

    @property
    def total_cost_impact(self) -> Decimal:
        return sum(
            (r.cost_impact for r in self.rule_results.values()), Decimal("0.00")
        )

    def record_decision(
        self, rule_name: str | RuleName, decision: str | Decision, notes: str = ""
    ) -> BusinessRuleResult:
        """Attach a reviewer decision to one rule result.

        This is the only mutation a rule result ever sees after the engine
        produced it. The job becomes REVIEWED once every rule is decided.
        """
        try:
            rule = RuleName(rule_name)
        except ValueError:
            raise UnknownRuleError(
                f"Unknown rule '{rule_name}'",
                {"valid_rules": [r.value for r in RuleName]},
            ) from None

        if self.status not in (JobStatus.ANALYZED, JobStatus.REVIEWED):
            raise JobStateError(
                f"Job {self.job_id} has not been analyzed yet (status {self.status.value})",
                {"status": self.status.value},
            )
        if rule not in self.rule_results:
            raise JobStateError(
                f"Job {self.job_id} has no result for rule '{rule.value}'",
                {"rule_name": rule.value},
            )

        updated = self.rule_results[rule].model_copy(
            update={
                "reviewer_decision": ReviewerDecision(
                    decision=Decision(decision), notes=notes
                )
            }
        )
        self.rule_results[rule] = updated
        if self.is_terminal:
            self.status = JobStatus.REVIEWED
        return updated
