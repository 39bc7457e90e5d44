#!/usr/bin/env python3
"""
Roof Claim Auditor — Entry Point
================================

Runs the full audit pipeline on an estimate + roof report pair, or the rule
engine alone on built-in sample data.

Usage:
    python main.py --demo                                    # No API key needed
    OPENAI_API_KEY=sk-... python main.py estimate.pdf roof_report.pdf
"""

from __future__ import annotations

import argparse
import logging
import sys
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

from claim_auditor.config import get_settings
from claim_auditor.models import (
    BusinessRuleResult,
    MaterialCategory,
    MaterialLineItem,
    RoofMeasurements,
    RuleStatus,
)
from claim_auditor.pipeline import ClaimPipeline
from claim_auditor.rules import evaluate_rules

load_dotenv()


# ─── Sample Claim (under-scoped on purpose) ─────────────────────────

DEMO_LINE_ITEMS = [
    MaterialLineItem(
        code="RFG RIDGC",
        description="Hip / Ridge cap - Standard profile - composition shingles",
        quantity=6,
        unit="LF",
        unit_rate=Decimal("42.90"),
        source_page=3,
        category=MaterialCategory.HIP_RIDGE_CAP,
    ),
    MaterialLineItem(
        code="RFG ASTR",
        description="Asphalt starter - universal starter course",
        quantity=180,
        unit="LF",
        unit_rate=Decimal("2.25"),
        source_page=3,
    ),
    MaterialLineItem(
        code="RFG DRIP",
        description="Drip edge",
        quantity=120,
        unit="LF",
        unit_rate=Decimal("2.85"),
        source_page=3,
    ),
    MaterialLineItem(
        code="RFG IWS",
        description="Ice & water barrier",
        quantity=800,
        unit="SF",
        unit_rate=Decimal("1.85"),
        source_page=4,
    ),
]

DEMO_MEASUREMENTS = RoofMeasurements(
    total_area=3633,
    squares=36.33,
    pitch="6/12",
    stories=2,
    eave_length=180,
    rake_length=120,
    ridge_length=26,
    hip_length=93,
)


# ─── ANSI Color Constants ───────────────────────────────────────────

_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"
_BOLD = "\033[1m"
_RESET = "\033[0m"
_WIDTH = 72

_STATUS_COLOR = {
    RuleStatus.COMPLIANT: _GREEN,
    RuleStatus.SUPPLEMENT_NEEDED: _RED,
    RuleStatus.INSUFFICIENT_DATA: _YELLOW,
}


# ─── Pretty Printer Helpers ─────────────────────────────────────────


def _print_job_header(job) -> None:
    print(f"  Job:         {job.job_id}")
    print(f"  Status:      {job.status.value}")
    for name, field in job.priority_fields.present().items():
        label = name.replace("_", " ").title()
        print(f"  {label + ':':<13}{field.value} {_DIM}({field.confidence:.0%}){_RESET}")
    for record in job.documents.values():
        cost = f"${record.extraction_cost:.4f}"
        print(
            f"  {record.role.value + ':':<13}{record.filename} "
            f"{_DIM}{record.page_count} page(s), {cost}{_RESET}"
        )
    for error in job.errors:
        print(f"  {_YELLOW}! {error}{_RESET}")


def _print_result(result: BusinessRuleResult) -> None:
    color = _STATUS_COLOR[result.status]
    print(f"\n  {color}{_BOLD}[{result.status.value}]{_RESET} {_BOLD}{result.rule_name.value}{_RESET}")
    print(f"    {result.reasoning}")
    if result.material_status is not None:
        print(f"    {_DIM}material: {result.material_status.value}{_RESET}")
    for line in result.evidence:
        print(f"      {_DIM}{line}{_RESET}")
    if result.supplement_recommendation:
        print(f"    {color}→ {result.supplement_recommendation}{_RESET}")


# ─── Pretty Printer ─────────────────────────────────────────────────


def print_report(results: list[BusinessRuleResult], job=None) -> int:
    """Pretty-print the rule report with ANSI color codes.

    Returns:
        0 if every rule passed, 1 if any supplement is needed.
    """
    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  ROOF CLAIM AUDIT REPORT{_RESET}")
    print(f"{'=' * _WIDTH}")
    if job is not None:
        _print_job_header(job)
        print(f"{'─' * _WIDTH}")

    for result in results:
        _print_result(result)

    needed = [r for r in results if r.status == RuleStatus.SUPPLEMENT_NEEDED]
    total = sum((r.cost_impact for r in results), Decimal("0.00"))

    print(f"\n{'=' * _WIDTH}")
    if needed:
        print(
            f"  {_RED}{_BOLD}SUPPLEMENT NEEDED  --  {len(needed)} rule(s), "
            f"${total:,.2f} total{_RESET}"
        )
    else:
        print(f"  {_GREEN}{_BOLD}NO SUPPLEMENT NEEDED{_RESET}")
    print(f"{'=' * _WIDTH}\n")

    return 1 if needed else 0


# ─── Main ────────────────────────────────────────────────────────────


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Audit a roofing insurance claim.")
    parser.add_argument("estimate", nargs="?", type=Path, help="Adjuster estimate PDF")
    parser.add_argument("roof_report", nargs="?", type=Path, help="Roof measurement report PDF")
    parser.add_argument(
        "--demo", action="store_true", help="Run the rule engine on built-in sample data"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)
    if not args.demo and (args.estimate is None or args.roof_report is None):
        parser.error("ESTIMATE and ROOF_REPORT are required unless --demo is given")
    return args


def main(argv: list[str] | None = None):
    """Run the audit and print the report."""
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

    if args.demo:
        print("\n  Starting Roof Claim Auditor (demo data)...\n")
        results = evaluate_rules(DEMO_LINE_ITEMS, DEMO_MEASUREMENTS, get_settings().rules)
        sys.exit(print_report(list(results.values())))

    print("\n  Starting Roof Claim Auditor...")
    if not get_settings().is_llm_configured():
        print(f"  {_YELLOW}No OPENAI_API_KEY set: extraction will fail for every document{_RESET}")
    print(f"  Analyzing {args.estimate.name} and {args.roof_report.name}...\n")

    pipeline = ClaimPipeline()
    job = pipeline.run(
        args.estimate.read_bytes(),
        args.roof_report.read_bytes(),
        estimate_name=args.estimate.name,
        roof_report_name=args.roof_report.name,
    )
    sys.exit(print_report(list(job.rule_results.values()), job))


if __name__ == "__main__":
    main()
