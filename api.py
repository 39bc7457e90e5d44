"""
Roof Claim Auditor — FastAPI Server
===================================

RESTful API for auditing roofing insurance claims.

Endpoints:
    POST /jobs                                              Upload estimate + roof report
    GET  /jobs/{job_id}                                     Job status, documents, errors
    GET  /jobs/{job_id}/priority-fields                     Identity fields (progressive)
    GET  /jobs/{job_id}/business-rules                      Rule verdicts
    POST /jobs/{job_id}/business-rules/{rule_name}/decision Reviewer decision
    POST /analyze                                           Run the rules on posted data
    GET  /health                                            Health check / readiness probe

Run:
    uvicorn api:app --reload              # Dev (http://localhost:8000)
    uvicorn api:app --host 0.0.0.0        # Production

Docs:
    http://localhost:8000/docs             # Swagger UI (auto-generated)
    http://localhost:8000/redoc            # ReDoc (alternative)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from claim_auditor import __version__
from claim_auditor.clients import ServiceContext
from claim_auditor.exceptions import ClaimAuditError
from claim_auditor.models import (
    BusinessRuleResult,
    Decision,
    DocumentClassification,
    DocumentType,
    ExtractedField,
    Job,
    JobStatus,
    MaterialLineItem,
    RoofMeasurements,
    RuleStatus,
)
from claim_auditor.pipeline import ClaimPipeline, JobStore
from claim_auditor.priority import average_confidence
from claim_auditor.rules import evaluate_rules

load_dotenv()

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 25 * 1_048_576

# Error code → HTTP status. Anything unlisted is an upstream failure.
_ERROR_STATUS: dict[str, int] = {
    "JOB_NOT_FOUND": 404,
    "UNKNOWN_RULE": 404,
    "INVALID_JOB_STATE": 409,
    "PREPROCESSING_FAILED": 422,
    "SCHEMA_VIOLATION": 502,
    "MALFORMED_RESPONSE": 502,
    "UPSTREAM_CALL_FAILED": 502,
}


# ─── Application Lifespan (build context once) ──────────────────────

_pipeline: ClaimPipeline | None = None
_store: JobStore | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service context and job store on startup."""
    global _pipeline, _store  # noqa: PLW0603
    _pipeline = ClaimPipeline(ServiceContext.from_settings())
    _store = JobStore()
    yield
    _pipeline = None
    _store = None


# ─── FastAPI App ─────────────────────────────────────────────────────

app = FastAPI(
    title="Roof Claim Auditor API",
    description=(
        "Audits roofing insurance claims. Extracts fields from an adjuster "
        "estimate and a roof-measurement report, reconciles them, and runs "
        "deterministic business rules for ridge cap, starter strip, drip edge "
        "and ice & water barrier."
    ),
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(ClaimAuditError)
async def claim_audit_error_handler(request: Request, exc: ClaimAuditError) -> JSONResponse:
    return JSONResponse(
        status_code=_ERROR_STATUS.get(exc.code, 502),
        content={
            "detail": {"code": exc.code, "message": exc.message, "details": exc.details}
        },
    )


# ─── Request / Response Schemas ─────────────────────────────────────


class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    role: DocumentType
    filename: str
    page_count: int
    classification: Optional[DocumentClassification] = None
    extraction_cost: float
    latency_ms: float
    error: Optional[str] = None


class JobResponse(BaseModel):
    job_id: str
    status: JobStatus
    created_at: datetime
    documents: list[DocumentOut]
    errors: list[str]
    total_cost_impact: Decimal


class PriorityFieldsResponse(BaseModel):
    job_id: str
    status: JobStatus
    fields: dict[str, ExtractedField]
    average_confidence: float


class RulesResponse(BaseModel):
    """Rule verdicts plus totals for the review screen."""

    job_id: Optional[str] = None
    status: Optional[JobStatus] = None
    results: list[BusinessRuleResult]
    supplements_needed: int
    total_cost_impact: Decimal


class DecisionRequest(BaseModel):
    decision: Decision
    notes: str = Field(default="", max_length=2_000)


class AnalyzeRequest(BaseModel):
    """Line items and measurements to run the rule engine on directly."""

    line_items: list[MaterialLineItem] = Field(default_factory=list)
    measurements: RoofMeasurements = Field(default_factory=RoofMeasurements)

    model_config = {"json_schema_extra": {"example": {
        "line_items": [
            {
                "description": "Hip / Ridge cap - Standard profile - composition shingles",
                "quantity": 6,
                "unit": "LF",
                "unit_rate": "42.90",
                "category": "hip_ridge_cap",
            },
            {"description": "Drip edge", "quantity": 120, "unit": "LF"},
        ],
        "measurements": {
            "ridge_length": 26,
            "hip_length": 93,
            "eave_length": 180,
            "rake_length": 120,
            "pitch": "6/12",
        },
    }}}


class HealthResponse(BaseModel):
    status: str
    version: str
    llm_configured: bool
    jobs: int


# ─── Helpers ─────────────────────────────────────────────────────────


def _get_pipeline() -> ClaimPipeline:
    if _pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialised")
    return _pipeline


def _get_store() -> JobStore:
    if _store is None:
        raise HTTPException(status_code=503, detail="Job store not initialised")
    return _store


def _job_response(job: Job) -> JobResponse:
    return JobResponse(
        job_id=job.job_id,
        status=job.status,
        created_at=job.created_at,
        documents=[DocumentOut.model_validate(d) for d in job.documents.values()],
        errors=job.errors,
        total_cost_impact=job.total_cost_impact,
    )


def _rules_response(
    results: list[BusinessRuleResult], job: Job | None = None
) -> RulesResponse:
    return RulesResponse(
        job_id=job.job_id if job else None,
        status=job.status if job else None,
        results=results,
        supplements_needed=sum(
            1 for r in results if r.status == RuleStatus.SUPPLEMENT_NEEDED
        ),
        total_cost_impact=sum((r.cost_impact for r in results), Decimal("0.00")),
    )


async def _read_upload(upload: UploadFile, field_name: str) -> bytes:
    if upload.size and upload.size > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"{field_name} too large (max 25 MB)")
    content = await upload.read()
    if not content:
        raise HTTPException(status_code=422, detail=f"{field_name} is empty")
    return content


async def _process_job(pipeline: ClaimPipeline, job: Job) -> None:
    try:
        await pipeline.process(job)
    except ClaimAuditError as e:
        logger.error("Job %s failed [%s]: %s", job.job_id, e.code, e.message)
        job.errors.append(f"[{e.code}] {e.message}")
    except Exception as e:
        logger.exception("Job %s failed unexpectedly", job.job_id)
        job.errors.append(f"[INTERNAL_ERROR] {type(e).__name__}: {e}")


# ─── Endpoints ───────────────────────────────────────────────────────


@app.post(
    "/jobs",
    status_code=202,
    summary="Upload an estimate and a roof report for auditing",
    tags=["Jobs"],
    responses={
        413: {"description": "File too large (max 25 MB)"},
        422: {"description": "Empty upload"},
        503: {"description": "Pipeline not yet initialised"},
    },
)
async def create_job(
    estimate: UploadFile,
    roof_report: UploadFile,
    background_tasks: BackgroundTasks,
) -> JobResponse:
    """Create a job and process it in the background.

    Poll `GET /jobs/{job_id}` (or the priority-fields endpoint for early
    identity data) until the status is `ANALYZED`.
    """
    pipeline = _get_pipeline()
    store = _get_store()

    estimate_bytes = await _read_upload(estimate, "estimate")
    report_bytes = await _read_upload(roof_report, "roof_report")

    job = pipeline.create_job(
        estimate_bytes,
        report_bytes,
        estimate_name=estimate.filename or "estimate.pdf",
        roof_report_name=roof_report.filename or "roof_report.pdf",
    )
    store.add(job)
    background_tasks.add_task(_process_job, pipeline, job)
    return _job_response(job)


@app.get("/jobs/{job_id}", summary="Job status", tags=["Jobs"])
def get_job(job_id: str) -> JobResponse:
    return _job_response(_get_store().get(job_id))


@app.get(
    "/jobs/{job_id}/priority-fields",
    summary="Identity fields found so far",
    tags=["Jobs"],
)
def get_priority_fields(job_id: str) -> PriorityFieldsResponse:
    """Available as soon as the job reaches `PRIORITY_EXTRACTED`; refined by
    the full extraction."""
    job = _get_store().get(job_id)
    return PriorityFieldsResponse(
        job_id=job.job_id,
        status=job.status,
        fields=job.priority_fields.present(),
        average_confidence=average_confidence(job.priority_fields),
    )


@app.get(
    "/jobs/{job_id}/business-rules",
    summary="Business rule verdicts",
    tags=["Rules"],
)
def get_business_rules(job_id: str) -> RulesResponse:
    """Empty until the job is `ANALYZED`."""
    job = _get_store().get(job_id)
    return _rules_response(list(job.rule_results.values()), job)


@app.post(
    "/jobs/{job_id}/business-rules/{rule_name}/decision",
    summary="Record a reviewer decision on one rule",
    tags=["Rules"],
    responses={
        404: {"description": "Unknown job or rule"},
        409: {"description": "Job has not been analyzed yet"},
    },
)
def record_decision(
    job_id: str, rule_name: str, request: DecisionRequest
) -> BusinessRuleResult:
    job = _get_store().get(job_id)
    result = job.record_decision(rule_name, request.decision, request.notes)
    logger.info(
        "Job %s: reviewer %s rule %s", job.job_id, request.decision.value, rule_name
    )
    return result


@app.post("/analyze", summary="Run the rule engine on posted data", tags=["Rules"])
def analyze(request: AnalyzeRequest) -> RulesResponse:
    """Deterministic rule evaluation only: no OCR, no LLM."""
    pipeline = _get_pipeline()
    results = evaluate_rules(
        request.line_items, request.measurements, pipeline.context.rules
    )
    return _rules_response(list(results.values()))


@app.get(
    "/health",
    summary="Health check",
    tags=["System"],
    responses={503: {"description": "Pipeline not yet initialised"}},
)
def health_check() -> HealthResponse:
    """Returns service status and configuration info."""
    pipeline = _get_pipeline()
    return HealthResponse(
        status="healthy",
        version=__version__,
        llm_configured=pipeline.context.settings.is_llm_configured(),
        jobs=len(_get_store()),
    )
