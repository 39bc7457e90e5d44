"""Tests for model-level invariants: rule results, job review and measurements."""

from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from claim_auditor.exceptions import JobStateError, UnknownRuleError
from claim_auditor.models import (
    BusinessRuleResult,
    Decision,
    ExtractedField,
    Job,
    JobStatus,
    RoofMeasurements,
    RuleName,
    RuleStatus,
    VarianceType,
)


def _make_result(rule: RuleName = RuleName.RIDGE_CAP, **overrides) -> BusinessRuleResult:
    kwargs = {
        "rule_name": rule,
        "status": RuleStatus.SUPPLEMENT_NEEDED,
        "confidence": 0.9,
        "reasoning": "Required 119 LF, estimate 6 LF.",
        "cost_impact": Decimal("4847.70"),
        "variance": -113.0,
        "variance_type": VarianceType.SHORTAGE,
    }
    kwargs.update(overrides)
    return BusinessRuleResult(**kwargs)


def _make_analyzed_job() -> Job:
    job = Job(status=JobStatus.ANALYZED)
    job.rule_results = {name: _make_result(name) for name in RuleName}
    return job


class TestBusinessRuleResult:
    def test_valid_result(self) -> None:
        assert _make_result().cost_impact == Decimal("4847.70")

    def test_compliant_cannot_cost(self) -> None:
        with pytest.raises(ValidationError):
            _make_result(status=RuleStatus.COMPLIANT, variance_type=None, variance=None)

    def test_negative_cost_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _make_result(cost_impact=Decimal("-1.00"))

    def test_shortage_needs_negative_variance(self) -> None:
        with pytest.raises(ValidationError):
            _make_result(variance=4.0)

    def test_excess_needs_positive_variance(self) -> None:
        with pytest.raises(ValidationError):
            _make_result(
                status=RuleStatus.COMPLIANT,
                cost_impact=Decimal("0.00"),
                variance=-1.0,
                variance_type=VarianceType.EXCESS,
            )

    def test_results_are_frozen(self) -> None:
        result = _make_result()
        with pytest.raises(ValidationError):
            result.status = RuleStatus.COMPLIANT


class TestRecordDecision:
    def test_decision_attached_to_copy(self) -> None:
        job = _make_analyzed_job()
        before = job.rule_results[RuleName.RIDGE_CAP]
        updated = job.record_decision("ridge_cap", "accepted", notes="Photos confirm")
        assert updated.reviewer_decision.decision == Decision.ACCEPTED
        assert updated.reviewer_decision.notes == "Photos confirm"
        assert before.reviewer_decision is None
        assert job.rule_results[RuleName.RIDGE_CAP] is updated

    def test_reviewed_once_every_rule_decided(self) -> None:
        job = _make_analyzed_job()
        for name in list(RuleName)[:-1]:
            job.record_decision(name, Decision.ACCEPTED)
            assert job.status == JobStatus.ANALYZED
        job.record_decision(list(RuleName)[-1], Decision.REJECTED)
        assert job.status == JobStatus.REVIEWED
        assert job.is_terminal

    def test_decision_can_be_revised_after_review(self) -> None:
        job = _make_analyzed_job()
        for name in RuleName:
            job.record_decision(name, Decision.ACCEPTED)
        job.record_decision(RuleName.DRIP_EDGE, Decision.MODIFIED, notes="Half the run")
        assert job.rule_results[RuleName.DRIP_EDGE].reviewer_decision.decision == Decision.MODIFIED
        assert job.status == JobStatus.REVIEWED

    def test_unknown_rule(self) -> None:
        with pytest.raises(UnknownRuleError) as exc_info:
            _make_analyzed_job().record_decision("gutter_guard", Decision.ACCEPTED)
        assert "ridge_cap" in exc_info.value.details["valid_rules"]

    def test_job_not_analyzed(self) -> None:
        with pytest.raises(JobStateError):
            Job().record_decision(RuleName.RIDGE_CAP, Decision.ACCEPTED)

    def test_total_cost_impact(self) -> None:
        assert _make_analyzed_job().total_cost_impact == Decimal("19390.80")


class TestRoofMeasurements:
    def test_from_field_set(self) -> None:
        m = RoofMeasurements.from_field_set(
            {
                "eave_length": ExtractedField(value=180.0, confidence=0.9),
                "pitch": ExtractedField(value="6/12", confidence=0.9),
                "unrelated": ExtractedField(value="x", confidence=0.9),
            }
        )
        assert m.eave_length == 180.0
        assert m.pitch == "6/12"

    def test_bad_values_dropped(self) -> None:
        m = RoofMeasurements.from_field_set(
            {
                "eave_length": ExtractedField(value="about a hundred", confidence=0.9),
                "rake_length": ExtractedField(value=120, confidence=0.9),
            }
        )
        assert m.eave_length is None
        assert m.rake_length == 120

    def test_empty(self) -> None:
        assert RoofMeasurements.from_field_set({}) == RoofMeasurements()

    def test_fractional_stories_kept(self) -> None:
        m = RoofMeasurements.from_field_set({"stories": ExtractedField(value=1.5, confidence=0.8)})
        assert m.stories == 1.5
