"""
FastAPI endpoint tests for the Roof Claim Auditor API.

Uses httpx + FastAPI TestClient — no real server needed, no LLM calls.
Background processing runs to completion before TestClient returns, so a
freshly created job is already ANALYZED when the next request is made.
"""

from __future__ import annotations

from decimal import Decimal

import api
import pytest
from api import app
from fastapi.testclient import TestClient

from claim_auditor.pipeline import ClaimPipeline, JobStore

client = TestClient(app)

ESTIMATE_PDF = b"%PDF-estimate"
REPORT_PDF = b"%PDF-report"


@pytest.fixture(autouse=True)
def _wire_app(make_context, fake_completion, fake_ocr):
    """Point the app at the fakes for every test (bypasses lifespan)."""
    fake_ocr.add(ESTIMATE_PDF, ["ESTIMATE-DOC Insured: Jane Doe\nDrip edge 120 LF"])
    fake_ocr.add(REPORT_PDF, ["REPORT-DOC Eaves 180 LF Rakes 120 LF"])
    fake_completion.when(
        "header", "ESTIMATE-DOC",
        respond={"customerName": {"value": "Jane Doe", "confidence": 0.95}},
    )
    fake_completion.when(
        "lineItems", "ESTIMATE-DOC",
        respond={"materials": {"dripEdge": {"description": "Drip edge", "quantity": 120}}},
    )
    fake_completion.when(
        "lineItems", "REPORT-DOC",
        respond={"roofMeasurements": {"eaves": 180, "rakes": 120}},
    )
    api._pipeline = ClaimPipeline(make_context())
    api._store = JobStore()
    yield
    api._pipeline = None
    api._store = None


def _create_job() -> dict:
    resp = client.post(
        "/jobs",
        files={
            "estimate": ("estimate.pdf", ESTIMATE_PDF, "application/pdf"),
            "roof_report": ("eagleview.pdf", REPORT_PDF, "application/pdf"),
        },
    )
    assert resp.status_code == 202
    return resp.json()


# ─── Sample rule input (same as main.py --demo) ─────────────────────

ANALYZE_BODY = {
    "line_items": [
        {
            "description": "Hip / Ridge cap - Standard profile - composition shingles",
            "quantity": 6,
            "unit": "LF",
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
}


class TestHealthEndpoint:
    def test_health_returns_200(self) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200

    def test_health_response_shape(self) -> None:
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert data["llm_configured"] is False
        assert data["jobs"] == 0


class TestJobsEndpoint:
    def test_create_returns_job(self) -> None:
        data = _create_job()
        assert data["job_id"]
        assert {d["role"] for d in data["documents"]} == {"estimate", "roof_report"}
        filenames = {d["role"]: d["filename"] for d in data["documents"]}
        assert filenames["roof_report"] == "eagleview.pdf"

    def test_job_is_processed(self) -> None:
        job_id = _create_job()["job_id"]
        data = client.get(f"/jobs/{job_id}").json()
        assert data["status"] == "ANALYZED"
        assert data["errors"] == []
        assert Decimal(str(data["total_cost_impact"])) > 0

    def test_document_source_not_exposed(self) -> None:
        job_id = _create_job()["job_id"]
        data = client.get(f"/jobs/{job_id}").json()
        assert all("source" not in d for d in data["documents"])

    def test_unknown_job_is_404(self) -> None:
        resp = client.get("/jobs/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "JOB_NOT_FOUND"

    def test_empty_upload_rejected(self) -> None:
        resp = client.post(
            "/jobs",
            files={
                "estimate": ("estimate.pdf", b"", "application/pdf"),
                "roof_report": ("report.pdf", REPORT_PDF, "application/pdf"),
            },
        )
        assert resp.status_code == 422

    def test_missing_file_rejected(self) -> None:
        resp = client.post(
            "/jobs", files={"estimate": ("estimate.pdf", ESTIMATE_PDF, "application/pdf")}
        )
        assert resp.status_code == 422

    def test_jobs_counted_in_health(self) -> None:
        _create_job()
        assert client.get("/health").json()["jobs"] == 1

    def test_unexpected_failure_is_recorded(self, monkeypatch) -> None:
        async def _explode(job):
            raise RuntimeError("rule engine exploded")

        monkeypatch.setattr(api._pipeline, "process", _explode)
        job_id = _create_job()["job_id"]
        data = client.get(f"/jobs/{job_id}").json()
        assert data["status"] == "CREATED"
        assert data["errors"] == ["[INTERNAL_ERROR] RuntimeError: rule engine exploded"]


class TestPriorityFieldsEndpoint:
    def test_fields_present(self) -> None:
        job_id = _create_job()["job_id"]
        data = client.get(f"/jobs/{job_id}/priority-fields").json()
        assert data["fields"]["customer_name"]["value"] == "Jane Doe"
        assert data["average_confidence"] == pytest.approx(0.95)

    def test_unknown_job(self) -> None:
        assert client.get("/jobs/nope/priority-fields").status_code == 404


class TestBusinessRulesEndpoint:
    def test_results_for_every_rule(self) -> None:
        job_id = _create_job()["job_id"]
        data = client.get(f"/jobs/{job_id}/business-rules").json()
        names = {r["rule_name"] for r in data["results"]}
        assert names == {"ridge_cap", "starter_strip", "drip_edge", "ice_water_barrier"}
        drip = next(r for r in data["results"] if r["rule_name"] == "drip_edge")
        assert drip["status"] == "SUPPLEMENT_NEEDED"
        assert Decimal(str(drip["cost_impact"])) == Decimal("513.00")
        assert data["supplements_needed"] >= 1

    def test_record_decision(self) -> None:
        job_id = _create_job()["job_id"]
        resp = client.post(
            f"/jobs/{job_id}/business-rules/drip_edge/decision",
            json={"decision": "accepted", "notes": "Verified on site"},
        )
        assert resp.status_code == 200
        assert resp.json()["reviewer_decision"]["decision"] == "accepted"

    def test_all_decisions_review_the_job(self) -> None:
        job_id = _create_job()["job_id"]
        for rule in ("ridge_cap", "starter_strip", "drip_edge", "ice_water_barrier"):
            client.post(
                f"/jobs/{job_id}/business-rules/{rule}/decision",
                json={"decision": "rejected"},
            )
        assert client.get(f"/jobs/{job_id}").json()["status"] == "REVIEWED"

    def test_unknown_rule_is_404(self) -> None:
        job_id = _create_job()["job_id"]
        resp = client.post(
            f"/jobs/{job_id}/business-rules/gutter_guard/decision",
            json={"decision": "accepted"},
        )
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "UNKNOWN_RULE"

    def test_decision_before_analysis_is_409(self) -> None:
        job = api._store.add(api._pipeline.create_job(ESTIMATE_PDF, REPORT_PDF))
        resp = client.post(
            f"/jobs/{job.job_id}/business-rules/ridge_cap/decision",
            json={"decision": "accepted"},
        )
        assert resp.status_code == 409

    def test_invalid_decision_is_422(self) -> None:
        job_id = _create_job()["job_id"]
        resp = client.post(
            f"/jobs/{job_id}/business-rules/ridge_cap/decision",
            json={"decision": "maybe"},
        )
        assert resp.status_code == 422


class TestAnalyzeEndpoint:
    def test_runs_rules_directly(self) -> None:
        resp = client.post("/analyze", json=ANALYZE_BODY)
        assert resp.status_code == 200
        data = resp.json()
        assert data["job_id"] is None
        ridge = next(r for r in data["results"] if r["rule_name"] == "ridge_cap")
        assert ridge["status"] == "SUPPLEMENT_NEEDED"
        assert Decimal(str(ridge["cost_impact"])) == Decimal("4847.70")

    def test_totals(self) -> None:
        data = client.post("/analyze", json=ANALYZE_BODY).json()
        total = sum(Decimal(str(r["cost_impact"])) for r in data["results"])
        assert Decimal(str(data["total_cost_impact"])) == total
        assert data["supplements_needed"] == sum(
            1 for r in data["results"] if r["status"] == "SUPPLEMENT_NEEDED"
        )

    def test_missing_measurements_are_insufficient(self) -> None:
        data = client.post("/analyze", json={"line_items": []}).json()
        statuses = {r["rule_name"]: r["status"] for r in data["results"]}
        assert statuses["ridge_cap"] == "INSUFFICIENT_DATA"
        assert statuses["drip_edge"] == "INSUFFICIENT_DATA"
        assert statuses["ice_water_barrier"] == "INSUFFICIENT_DATA"

    def test_invalid_body(self) -> None:
        resp = client.post("/analyze", json={"line_items": [{"quantity": 5}]})
        assert resp.status_code == 422
