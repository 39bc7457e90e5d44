"""
Claim audit pipeline — orchestrates the full workflow for one job.

Flow:
  ┌──────────┐   ┌─────────────┐
  │ Estimate │   │ Roof report │        ← one job = one document pair
  └────┬─────┘   └──────┬──────┘
       │                │
  ┌────▼────────────────▼────┐
  │  Priority fast path      │   ← first pages only, concurrent
  └────────────┬─────────────┘
               │  PRIORITY_EXTRACTED
  ┌────────────▼─────────────┐
  │ Preprocess → classify →  │   ← per document, concurrent
  │ extract → validate pages │
  └────────────┬─────────────┘
               │
        ┌──────▼──────┐
        │   Merger    │   ← per-field confidence
        └──────┬──────┘
               │  EXTRACTED
        ┌──────▼──────┐
        │ Rule engine │   ← pure code checks
        └──────┬──────┘
               │  ANALYZED
        ┌──────▼──────┐
        │  Reviewer   │   ← Job.record_decision per rule
        └─────────────┘     REVIEWED

Design principles:
  - A failed document degrades the job, it does not kill it: the other
    document still contributes and the error is recorded on the job.
  - Blocking capability calls run in worker threads; merge and rules are
    synchronous pure functions.
  - No global state: every capability comes from the ServiceContext.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from functools import reduce
from typing import Callable, Optional, Union

from .clients import ServiceContext
from .exceptions import ClaimAuditError, JobNotFoundError, JobStateError
from .extractor import FULL_DOCUMENT_TEMPLATE, FieldExtractor, to_extracted_data
from .merger import merge_all
from .models import (
    BusinessRuleResult,
    DocumentRecord,
    DocumentType,
    ExtractedData,
    Job,
    JobStatus,
    PriorityFields,
    RoofMeasurements,
    RuleName,
)
from .page_validator import validate_page_numbers
from .preprocess import preprocess
from .priority import PriorityExtractor, average_confidence, merge_priority_fields
from .rules import evaluate_rules

logger = logging.getLogger(__name__)

DocumentSource = Union[bytes, str]
ProgressCallback = Callable[[Job], None]


class ClaimPipeline:
    """Runs one job through every stage.

    Usage:
        pipeline = ClaimPipeline(ServiceContext.from_settings())
        job = pipeline.run(estimate_pdf_bytes, roof_report_pdf_bytes)
        for rule, result in job.rule_results.items():
            print(rule.value, result.status.value, result.cost_impact)
    """

    def __init__(
        self,
        context: Optional[ServiceContext] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.context = context or ServiceContext.from_settings()
        self.extractor = FieldExtractor(self.context)
        self.priority_extractor = PriorityExtractor(self.context)
        self.on_progress = on_progress

    # ─── Job Creation ────────────────────────────────────────────────

    def create_job(
        self,
        estimate: DocumentSource,
        roof_report: DocumentSource,
        estimate_name: str = "estimate.pdf",
        roof_report_name: str = "roof_report.pdf",
    ) -> Job:
        job = Job(
            documents={
                DocumentType.ESTIMATE: DocumentRecord(
                    role=DocumentType.ESTIMATE, filename=estimate_name, source=estimate
                ),
                DocumentType.ROOF_REPORT: DocumentRecord(
                    role=DocumentType.ROOF_REPORT,
                    filename=roof_report_name,
                    source=roof_report,
                ),
            }
        )
        logger.info("Created job %s", job.job_id)
        return job

    # ─── Stages ──────────────────────────────────────────────────────

    async def run_priority(self, job: Job) -> PriorityFields:
        """Fast identity pass over the first pages of every document.

        The estimate is folded in first, so it keeps ties.
        """
        records = list(job.documents.values())
        results = await asyncio.gather(
            *(asyncio.to_thread(self._priority_for, record) for record in records)
        )
        job.priority_fields = reduce(
            merge_priority_fields, results, job.priority_fields
        )
        job.status = JobStatus.PRIORITY_EXTRACTED
        logger.info(
            "Job %s: %d priority field(s), avg confidence %.2f",
            job.job_id,
            len(job.priority_fields.present()),
            average_confidence(job.priority_fields),
        )
        self._notify(job)
        return job.priority_fields

    async def run_full_extraction(self, job: Job) -> ExtractedData:
        """Extract every document concurrently, then merge the survivors."""
        records = list(job.documents.values())
        outcomes = await asyncio.gather(
            *(asyncio.to_thread(self._extract_document, record) for record in records)
        )

        for record in records:
            if record.error:
                job.errors.append(f"{record.role.value}: {record.error}")

        extracted = [data for data in outcomes if data is not None]
        if not extracted:
            job.errors.append("No document could be extracted")
            logger.warning("Job %s: every document failed extraction", job.job_id)

        merged = merge_all(extracted)
        merged = merged.model_copy(
            update={
                "priority_fields": merge_priority_fields(
                    job.priority_fields, merged.priority_fields
                )
            }
        )

        job.extracted = merged
        job.priority_fields = merged.priority_fields
        job.measurements = RoofMeasurements.from_field_set(merged.roofing_data)
        job.status = JobStatus.EXTRACTED
        logger.info(
            "Job %s: extracted %d line item(s) from %d/%d document(s)",
            job.job_id,
            len(merged.line_items),
            len(extracted),
            len(records),
        )
        self._notify(job)
        return merged

    def run_rules(self, job: Job) -> dict[RuleName, BusinessRuleResult]:
        """Evaluate every business rule on the merged extraction."""
        if job.extracted is None:
            raise JobStateError(
                f"Job {job.job_id} has not been extracted yet",
                {"status": job.status.value},
            )
        measurements = job.measurements or RoofMeasurements()
        job.rule_results = evaluate_rules(
            job.extracted.line_items, measurements, self.context.rules
        )
        job.status = JobStatus.ANALYZED
        self._notify(job)
        return job.rule_results

    async def process(self, job: Job) -> Job:
        await self.run_priority(job)
        await self.run_full_extraction(job)
        self.run_rules(job)
        logger.info(
            "Job %s analyzed: total cost impact $%s", job.job_id, job.total_cost_impact
        )
        return job

    def run(
        self,
        estimate: DocumentSource,
        roof_report: DocumentSource,
        estimate_name: str = "estimate.pdf",
        roof_report_name: str = "roof_report.pdf",
    ) -> Job:
        """Synchronous entry point: create a job and run every stage."""
        job = self.create_job(estimate, roof_report, estimate_name, roof_report_name)
        return asyncio.run(self.process(job))

    # ─── Per-Document Work (worker threads) ──────────────────────────

    def _priority_for(self, record: DocumentRecord) -> PriorityFields:
        pages = range(1, self.context.settings.priority_pages + 1)
        try:
            document = preprocess(record.source, self.context.ocr, pages)
        except ClaimAuditError as e:
            logger.warning("Priority pass skipped %s: %s", record.filename, e)
            return PriorityFields()
        return self.priority_extractor.extract(document.pages)

    def _extract_document(self, record: DocumentRecord) -> Optional[ExtractedData]:
        try:
            document = preprocess(record.source, self.context.ocr)
        except ClaimAuditError as e:
            record.error = f"[{e.code}] {e.message}"
            logger.warning("Preprocessing failed for %s: %s", record.filename, e)
            return None
        record.page_count = document.page_count

        classification = self.extractor.classify_document(document.full_text)
        if classification.type == DocumentType.UNKNOWN:
            # Fall back to the role the document was uploaded under
            classification = classification.model_copy(update={"type": record.role})
        elif classification.type != record.role:
            logger.warning(
                "%s uploaded as %s but classified as %s",
                record.filename,
                record.role.value,
                classification.type.value,
            )
        record.classification = classification

        result = self.extractor.extract(document.full_text, FULL_DOCUMENT_TEMPLATE)
        record.extraction_cost = result.cost
        record.latency_ms = result.latency_ms
        if not result.success:
            record.error = f"[{result.error_code}] {result.error}"
            logger.warning("Extraction failed for %s: %s", record.filename, record.error)
            return None

        data = to_extracted_data(result.data or {}, classification, document.pages)
        verified = validate_page_numbers(data.line_items, document.pages)
        return data.model_copy(update={"line_items": verified})

    def _notify(self, job: Job) -> None:
        if self.on_progress is not None:
            self.on_progress(job)


# ─── Job Store ───────────────────────────────────────────────────────


class JobStore:
    """In-process job registry. Persistence is somebody else's problem."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def add(self, job: Job) -> Job:
        with self._lock:
            self._jobs[job.job_id] = job
        return job

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job '{job_id}' not found", {"job_id": job_id})
        return job

    def all(self) -> list[Job]:
        with self._lock:
            return list(self._jobs.values())

    def __len__(self) -> int:
        return len(self._jobs)
