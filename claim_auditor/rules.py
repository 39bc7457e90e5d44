"""
Deterministic business rule engine — the "paranoid" layer.

These rules run PURE CODE checks on extracted line items and roof
measurements. They NEVER call an LLM. They NEVER guess: a missing
measurement yields INSUFFICIENT_DATA, never a silent COMPLIANT.

Each rule function:
  - Takes (line_items, measurements, config)
  - Returns one BusinessRuleResult with templated reasoning that embeds
    every number it used
  - Is independently testable and idempotent (no clock, no randomness)

Item selection:
  - Items the extractor tagged with the rule's category, plus untagged
    items whose description matches the rule's vocabulary
  - Removal / repair / cleaning / inspection rows are not installed
    material and are dropped
  - Rows duplicated by document concatenation (same description and
    quantity) are collapsed before anything is summed

evaluate_rules() runs all four and returns them keyed by rule name.
"""

from __future__ import annotations

import logging
import math
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

from .config import RuleConfig
from .models import (
    BusinessRuleResult,
    MaterialCategory,
    MaterialLineItem,
    MaterialStatus,
    RoofMeasurements,
    RuleName,
    RuleStatus,
    VarianceType,
)

logger = logging.getLogger(__name__)


# ─── Vocabulary ──────────────────────────────────────────────────────

_EXCLUSION_RE = re.compile(
    r"\b(?:remov\w*|tear[\s-]?off|repair\w*|clean\w*|inspect\w*)\b", re.IGNORECASE
)

RIDGE_CAP_RE = re.compile(
    r"\bhip\s*(?:/|&|and)\s*ridge\b|\bridge\s*cap\b"
    r"|\bridge\b.*\b(?:shingles?|3[\s-]?tab|profile)\b",
    re.IGNORECASE,
)
_RIDGE_VENT_RE = re.compile(r"\bvent", re.IGNORECASE)

STARTER_RE = re.compile(r"\bstarter\b", re.IGNORECASE)
DRIP_EDGE_RE = re.compile(r"\bdrip\s*edge\b", re.IGNORECASE)
GUTTER_APRON_RE = re.compile(
    r"\bgutter\s+apron\b|\bapron\s+flashing\b|\beave\s+flashing\b", re.IGNORECASE
)
_EAVE_RE = re.compile(r"\beaves?\b", re.IGNORECASE)
ICE_WATER_RE = re.compile(
    r"\bice\b|\bi\s*&\s*w\b|\biws\b|\bwater\s*(?:proof\w*|shield|barrier)\b"
    r"|\bbarrier\b|\bmembrane\b|\bshield\b|\bmodified\s+bitumen\b"
    r"|\bself[\s-]adhering\b|\bpeel\s*(?:&|and)?\s*stick\b",
    re.IGNORECASE,
)

# Material quality. Non-compliant vocabulary is checked first.
_RIDGE_NON_COMPLIANT_RE = re.compile(r"\bcut\s+(?:from\s+)?3[\s-]?tab", re.IGNORECASE)
_RIDGE_COMPLIANT_RE = re.compile(
    r"standard\s+profile|high\s+profile|purpose[\s-]built|ridge\s*cap", re.IGNORECASE
)
_STARTER_NON_COMPLIANT_RE = re.compile(r"\bcut\s+shingles?\b", re.IGNORECASE)
_STARTER_COMPLIANT_RE = re.compile(
    r"universal\s+starter|self[\s-]adhesive|self[\s-]adhering", re.IGNORECASE
)

_PITCH_RE = re.compile(
    r"(\d+(?:\.\d+)?)\s*(?:/|:|\bin\b)\s*(\d+(?:\.\d+)?)", re.IGNORECASE
)
_BARE_PITCH_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*$")

_SQUARE_UNITS = frozenset({"SQ", "SQS", "SQUARE", "SQUARES"})
_CENTS = Decimal("0.01")


# ─── Orchestrator ────────────────────────────────────────────────────


def evaluate_rules(
    line_items: Sequence[MaterialLineItem],
    measurements: RoofMeasurements,
    config: Optional[RuleConfig] = None,
) -> dict[RuleName, BusinessRuleResult]:
    """Run ALL rules and key the results by rule name."""
    config = config or RuleConfig()
    results = {
        RuleName.RIDGE_CAP: ridge_cap_rule(line_items, measurements, config),
        RuleName.STARTER_STRIP: starter_strip_rule(line_items, measurements, config),
        RuleName.DRIP_EDGE: drip_edge_rule(line_items, measurements, config),
        RuleName.ICE_WATER_BARRIER: ice_water_barrier_rule(
            line_items, measurements, config
        ),
    }
    for name, result in results.items():
        logger.info(
            "Rule %s: %s (cost impact $%s)",
            name.value,
            result.status.value,
            result.cost_impact,
        )
    return results


# ─── Individual Rules ────────────────────────────────────────────────


def ridge_cap_rule(
    line_items: Sequence[MaterialLineItem],
    measurements: RoofMeasurements,
    config: Optional[RuleConfig] = None,
) -> BusinessRuleResult:
    """Ridge cap must cover every ridge and hip, in purpose-built material.

    Cut-up 3-tab shingles are not a ridge cap product: that alone requires
    a supplement, whatever the quantity.
    """
    config = config or RuleConfig()
    m = measurements
    evidence: list[str] = []
    confidence = 0.95

    if m.ridge_length is not None or m.hip_length is not None:
        ridge = m.ridge_length or 0.0
        hip = m.hip_length or 0.0
        required = ridge + hip
        required_text = (
            f"{_fmt(ridge)} LF ridge + {_fmt(hip)} LF hip = {_fmt(required)} LF"
        )
        evidence.append(f"Roof report: Ridges {_fmt(ridge)} LF, Hips {_fmt(hip)} LF")
    elif m.ridge_hip_length is not None:
        required = m.ridge_hip_length
        required_text = f"{_fmt(required)} LF combined hip/ridge"
        evidence.append(f"Roof report: Hip/Ridge {_fmt(required)} LF")
        confidence = 0.9
    else:
        return _insufficient(
            RuleName.RIDGE_CAP,
            "Roof report gives no ridge, hip or combined hip/ridge length; "
            "required ridge cap cannot be computed.",
            unit="LF",
        )

    items = select_items(
        line_items,
        (MaterialCategory.HIP_RIDGE_CAP,),
        RIDGE_CAP_RE,
        exclude=(_RIDGE_VENT_RE,),
    )
    item = items[0] if items else None
    estimate = (item.quantity or 0.0) if item else 0.0

    material_status: Optional[MaterialStatus] = None
    if item is None:
        material_text = "Estimate has no ridge cap line item."
        confidence = min(confidence, 0.85)
    else:
        evidence.append(_item_evidence(item))
        material_status = classify_ridge_material(item.description)
        if material_status is None:
            material_status = MaterialStatus.COMPLIANT
            confidence = min(confidence, 0.7)
            material_text = (
                f"Material '{item.description}' does not state its profile; "
                f"treated as compliant."
            )
        elif material_status == MaterialStatus.NON_COMPLIANT:
            material_text = (
                f"Material '{item.description}' is cut from 3-tab shingles, "
                f"not a purpose-built ridge cap."
            )
        else:
            material_text = f"Material '{item.description}' is a purpose-built ridge cap."

    variance = round(estimate - required, 2)
    if variance < -config.ridge_cap_tolerance_lf:
        variance_type = VarianceType.SHORTAGE
    elif variance > config.ridge_cap_excess_lf:
        variance_type = VarianceType.EXCESS
    else:
        variance_type = VarianceType.ADEQUATE

    needs_supplement = (
        variance_type == VarianceType.SHORTAGE
        or material_status == MaterialStatus.NON_COMPLIANT
    )
    rate = _unit_rate(item, config.ridge_cap_unit_rate)
    shortfall = max(0.0, required - estimate)
    cost = _cost(shortfall, rate) if needs_supplement else Decimal("0.00")

    reasoning = (
        f"Required ridge cap is {required_text}. Estimate includes "
        f"{_fmt(estimate)} LF. Variance {_signed(variance)} LF "
        f"({variance_type.value}). {material_text}"
    )

    recommendation = None
    if needs_supplement:
        parts = []
        if shortfall > 0:
            parts.append(
                f"add {_fmt(shortfall)} LF of hip/ridge cap at ${rate}/LF = ${cost}"
            )
        if material_status == MaterialStatus.NON_COMPLIANT:
            parts.append("replace cut 3-tab ridge with standard profile ridge cap")
        text = "; ".join(parts)
        recommendation = text[0].upper() + text[1:] + "."

    return BusinessRuleResult(
        rule_name=RuleName.RIDGE_CAP,
        status=RuleStatus.SUPPLEMENT_NEEDED if needs_supplement else RuleStatus.COMPLIANT,
        confidence=confidence,
        reasoning=reasoning,
        cost_impact=cost,
        estimate_quantity=estimate,
        required_quantity=round(required, 2),
        variance=variance,
        variance_type=variance_type,
        material_status=material_status,
        unit="LF",
        unit_rate=rate,
        evidence=evidence,
        supplement_recommendation=recommendation,
    )


def starter_strip_rule(
    line_items: Sequence[MaterialLineItem],
    measurements: RoofMeasurements,
    config: Optional[RuleConfig] = None,
) -> BusinessRuleResult:
    """Starter must be a manufactured starter product, not cut shingles.

    Classification only: the quantity is not checked. The eave length is
    used to price a missing or non-compliant starter.
    """
    config = config or RuleConfig()
    eave = measurements.eave_length
    items = select_items(line_items, (MaterialCategory.STARTER_STRIP,), STARTER_RE)
    item = items[0] if items else None
    rate = _unit_rate(item, config.starter_strip_unit_rate)
    evidence = [_item_evidence(item)] if item else []
    if eave is not None:
        evidence.append(f"Roof report: Eaves {_fmt(eave)} LF")

    if item is None:
        cost = _cost(eave, rate) if eave is not None else Decimal("0.00")
        return BusinessRuleResult(
            rule_name=RuleName.STARTER_STRIP,
            status=RuleStatus.SUPPLEMENT_NEEDED,
            confidence=0.85,
            reasoning=(
                "Estimate has no starter strip line item. "
                + _starter_cost_text(eave, rate, cost)
            ),
            cost_impact=cost,
            estimate_quantity=0.0,
            required_quantity=eave,
            unit="LF",
            unit_rate=rate,
            evidence=evidence,
            supplement_recommendation="Add universal starter course along the eaves.",
        )

    material_status = classify_starter_material(item.description)
    if material_status is None:
        return _insufficient(
            RuleName.STARTER_STRIP,
            f"Starter description '{item.description}' identifies neither a "
            f"manufactured starter nor cut shingles.",
            estimate_quantity=item.quantity,
            unit="LF",
            evidence=evidence,
        )

    if material_status == MaterialStatus.NON_COMPLIANT:
        cost = _cost(eave, rate) if eave is not None else Decimal("0.00")
        return BusinessRuleResult(
            rule_name=RuleName.STARTER_STRIP,
            status=RuleStatus.SUPPLEMENT_NEEDED,
            confidence=0.9,
            reasoning=(
                f"Starter '{item.description}' is cut shingles, not a "
                f"manufactured starter product. "
                + _starter_cost_text(eave, rate, cost)
            ),
            cost_impact=cost,
            estimate_quantity=item.quantity,
            required_quantity=eave,
            material_status=material_status,
            unit="LF",
            unit_rate=rate,
            evidence=evidence,
            supplement_recommendation=(
                "Replace cut-shingle starter with universal starter course."
            ),
        )

    return BusinessRuleResult(
        rule_name=RuleName.STARTER_STRIP,
        status=RuleStatus.COMPLIANT,
        confidence=0.95,
        reasoning=f"Starter '{item.description}' is a manufactured starter product.",
        estimate_quantity=item.quantity,
        required_quantity=eave,
        material_status=material_status,
        unit="LF",
        unit_rate=rate,
        evidence=evidence,
    )


def drip_edge_rule(
    line_items: Sequence[MaterialLineItem],
    measurements: RoofMeasurements,
    config: Optional[RuleConfig] = None,
) -> BusinessRuleResult:
    """Drip edge must cover the rakes and gutter apron the eaves.

    The pooled quantity is checked against the full perimeter (eaves +
    rakes) and each edge is checked on its own, both with the relative
    ``drip_edge_tolerance``. A drip edge line that names the eaves counts
    for both edges: it fills the rakes first and the rest goes to the eaves.
    """
    config = config or RuleConfig()
    eave, rake = measurements.eave_length, measurements.rake_length
    if eave is None or rake is None:
        missing = [n for n, v in (("eaves", eave), ("rakes", rake)) if v is None]
        return _insufficient(
            RuleName.DRIP_EDGE,
            f"Roof report is missing {' and '.join(missing)}; required drip "
            f"edge cannot be computed.",
            unit="LF",
        )

    required = eave + rake
    drip_items = select_items(line_items, (MaterialCategory.DRIP_EDGE,), DRIP_EDGE_RE)
    apron_items = select_items(
        line_items, (MaterialCategory.GUTTER_APRON,), GUTTER_APRON_RE
    )
    items = dedupe_items([*drip_items, *apron_items])
    estimate = sum(i.quantity or 0.0 for i in items)
    rake_cover, eave_cover = _edge_coverage(items, {id(i) for i in apron_items}, rake)

    evidence = [f"Roof report: Eaves {_fmt(eave)} LF, Rakes {_fmt(rake)} LF"]
    evidence.extend(_item_evidence(i) for i in items)

    tolerance = config.drip_edge_tolerance
    variance = round(estimate - required, 2)
    lower = required * (1 - tolerance)
    upper = required * (1 + tolerance)
    rate = _unit_rate(items[0] if items else None, config.drip_edge_unit_rate)
    tolerance_pct = f"{tolerance:.0%}"

    rake_gap = max(round(rake - rake_cover, 2), 0.0)
    eave_gap = max(round(eave - eave_cover, 2), 0.0)
    below_tolerance = (
        estimate < lower
        or rake_cover < rake * (1 - tolerance)
        or eave_cover < eave * (1 - tolerance)
    )
    shortfall = round(rake_gap + eave_gap, 2)

    base = (
        f"Perimeter is {_fmt(eave)} LF eaves + {_fmt(rake)} LF rakes = "
        f"{_fmt(required)} LF. Estimate includes {_fmt(estimate)} LF of drip "
        f"edge / gutter apron across {len(items)} line item(s): "
        f"{_fmt(rake_cover)} LF on the rakes, {_fmt(eave_cover)} LF on the eaves."
    )

    if below_tolerance and shortfall > 0:
        cost = _cost(shortfall, rate)
        work = []
        if rake_gap > 0:
            work.append(f"{_fmt(rake_gap)} LF of drip edge on the rakes")
        if eave_gap > 0:
            work.append(f"{_fmt(eave_gap)} LF of gutter apron on the eaves")
        if variance < 0:
            variance_type = VarianceType.SHORTAGE
        elif estimate > upper and variance > 0:
            variance_type = VarianceType.EXCESS
        else:
            variance_type = VarianceType.ADEQUATE
        return BusinessRuleResult(
            rule_name=RuleName.DRIP_EDGE,
            status=RuleStatus.SUPPLEMENT_NEEDED,
            confidence=0.9,
            reasoning=(
                f"{base} Shortfall of {_fmt(shortfall)} LF exceeds the "
                f"{tolerance_pct} tolerance; add {' and '.join(work)}."
            ),
            cost_impact=cost,
            estimate_quantity=estimate,
            required_quantity=required,
            variance=variance,
            variance_type=variance_type,
            unit="LF",
            unit_rate=rate,
            evidence=evidence,
            supplement_recommendation=(
                f"Add {' and '.join(work)} at ${rate}/LF = ${cost}."
            ),
        )

    if estimate > upper and variance > 0:
        variance_type = VarianceType.EXCESS
    else:
        variance_type = VarianceType.ADEQUATE
    return BusinessRuleResult(
        rule_name=RuleName.DRIP_EDGE,
        status=RuleStatus.COMPLIANT,
        confidence=0.9,
        reasoning=(
            f"{base} Variance {_signed(variance)} LF is "
            f"{'above' if variance_type == VarianceType.EXCESS else 'within'} "
            f"the {tolerance_pct} tolerance."
        ),
        estimate_quantity=estimate,
        required_quantity=required,
        variance=variance,
        variance_type=variance_type,
        unit="LF",
        unit_rate=rate,
        evidence=evidence,
    )


def ice_water_barrier_rule(
    line_items: Sequence[MaterialLineItem],
    measurements: RoofMeasurements,
    config: Optional[RuleConfig] = None,
) -> BusinessRuleResult:
    """Ice & water barrier must reach 24" inside the exterior wall line.

    The horizontal run (soffit overhang + wall + 24") is converted to a
    distance along the slope with the pitch multiplier, then multiplied by
    the eave length to give the square footage to cover.
    """
    config = config or RuleConfig()
    m = measurements
    if m.eave_length is None:
        return _insufficient(
            RuleName.ICE_WATER_BARRIER,
            "Roof report gives no eave length; required ice & water coverage "
            "cannot be computed.",
            unit="SF",
        )

    soffit = m.soffit_depth if m.soffit_depth is not None else config.default_soffit_depth_in
    wall = (
        m.wall_thickness if m.wall_thickness is not None else config.default_wall_thickness_in
    )
    multiplier = pitch_multiplier(m.pitch)
    width = required_ice_water_width(soffit, wall, m.pitch, config)
    coverage = m.eave_length * width / 12

    items = select_items(
        line_items,
        (MaterialCategory.ICE_WATER_BARRIER,),
        ICE_WATER_RE,
        exclude=(STARTER_RE, DRIP_EDGE_RE, GUTTER_APRON_RE),
    )
    item = max(items, key=_square_feet) if items else None
    estimate = _square_feet(item) if item else 0.0

    evidence = [
        f"Roof report: Eaves {_fmt(m.eave_length)} LF, Pitch {m.pitch or 'unknown'}"
    ]
    if item:
        evidence.append(_item_evidence(item))

    required = round(coverage, 2)
    variance = round(estimate - required, 2)
    rate = _ice_water_rate(item, config.ice_water_unit_rate)
    base = (
        f"Required width = ({_fmt(soffit)}\" soffit + {_fmt(wall)}\" wall + "
        f"{_fmt(config.ice_water_inside_wall_in)}\" inside wall line) x "
        f"{multiplier:.3f} pitch multiplier"
        + (
            f" x {1 + config.ice_water_safety_margin:.2f} margin"
            if config.ice_water_safety_margin
            else ""
        )
        + f" = {width:.1f}\". Coverage = {_fmt(m.eave_length)} LF eaves x "
        f"{width:.1f}\" / 12 = {_fmt(coverage)} SF. Estimate includes "
        f"{_fmt(estimate)} SF."
    )
    if m.pitch is None:
        base += " Pitch unknown; multiplier 1.0 used."

    if variance < 0 and variance < -config.ice_water_tolerance_sf:
        shortfall = -variance
        cost = _cost(shortfall, rate)
        return BusinessRuleResult(
            rule_name=RuleName.ICE_WATER_BARRIER,
            status=RuleStatus.SUPPLEMENT_NEEDED,
            confidence=0.9 if m.pitch is not None else 0.75,
            reasoning=f"{base} Shortfall of {_fmt(shortfall)} SF.",
            cost_impact=cost,
            estimate_quantity=estimate,
            required_quantity=required,
            variance=variance,
            variance_type=VarianceType.SHORTAGE,
            unit="SF",
            unit_rate=rate,
            evidence=evidence,
            supplement_recommendation=(
                f"Add {_fmt(shortfall)} SF of ice & water barrier at "
                f"${rate}/SF = ${cost}."
            ),
        )

    return BusinessRuleResult(
        rule_name=RuleName.ICE_WATER_BARRIER,
        status=RuleStatus.COMPLIANT,
        confidence=0.9 if m.pitch is not None else 0.75,
        reasoning=f"{base} Coverage is sufficient.",
        estimate_quantity=estimate,
        required_quantity=required,
        variance=variance,
        variance_type=VarianceType.EXCESS if variance > 0 else VarianceType.ADEQUATE,
        unit="SF",
        unit_rate=rate,
        evidence=evidence,
    )


# ─── Geometry ────────────────────────────────────────────────────────


def parse_pitch(pitch: Optional[str]) -> Optional[tuple[float, float]]:
    """Parse "6/12", "6:12" or "6 in 12" into (rise, run).

    A range such as "6/12 - 8/12" uses its first value. A bare number is
    read as rise over 12.
    """
    if not pitch:
        return None
    match = _PITCH_RE.search(pitch)
    if match:
        rise, run = float(match.group(1)), float(match.group(2))
    else:
        bare = _BARE_PITCH_RE.match(pitch)
        if not bare:
            return None
        rise, run = float(bare.group(1)), 12.0
    if run <= 0:
        return None
    return rise, run


def pitch_multiplier(pitch: Optional[str]) -> float:
    """Slope length per unit of horizontal run, rounded to 3 places.

    1.0 when the pitch is missing or unparseable.
    """
    parsed = parse_pitch(pitch)
    if parsed is None:
        return 1.0
    rise, run = parsed
    return round(math.sqrt(1 + (rise / run) ** 2), 3)


def required_ice_water_width(
    soffit_depth_in: float,
    wall_thickness_in: float,
    pitch: Optional[str],
    config: Optional[RuleConfig] = None,
) -> float:
    """Ice & water width up the slope, in inches."""
    config = config or RuleConfig()
    horizontal = soffit_depth_in + wall_thickness_in + config.ice_water_inside_wall_in
    return horizontal * pitch_multiplier(pitch) * (1 + config.ice_water_safety_margin)


# ─── Material Classification ─────────────────────────────────────────


def classify_ridge_material(description: str) -> Optional[MaterialStatus]:
    """None when the description names neither kind of ridge product."""
    if _RIDGE_NON_COMPLIANT_RE.search(description):
        return MaterialStatus.NON_COMPLIANT
    if _RIDGE_COMPLIANT_RE.search(description):
        return MaterialStatus.COMPLIANT
    return None


def classify_starter_material(description: str) -> Optional[MaterialStatus]:
    if _STARTER_NON_COMPLIANT_RE.search(description):
        return MaterialStatus.NON_COMPLIANT
    if _STARTER_COMPLIANT_RE.search(description):
        return MaterialStatus.COMPLIANT
    return None


# ─── Item Selection ──────────────────────────────────────────────────


def select_items(
    line_items: Sequence[MaterialLineItem],
    categories: tuple[MaterialCategory, ...],
    pattern: re.Pattern[str],
    exclude: tuple[re.Pattern[str], ...] = (),
) -> list[MaterialLineItem]:
    """Tagged items first, then untagged keyword matches, deduplicated."""
    tagged = [i for i in line_items if i.category in categories]
    matched = [
        i
        for i in line_items
        if i.category is None
        and pattern.search(i.description)
        and not any(p.search(i.description) for p in exclude)
    ]
    return dedupe_items(
        [i for i in (*tagged, *matched) if not _EXCLUSION_RE.search(i.description)]
    )


def dedupe_items(items: Sequence[MaterialLineItem]) -> list[MaterialLineItem]:
    """Collapse rows with the same description and quantity, keeping the first."""
    seen: set[tuple[str, Optional[float]]] = set()
    unique: list[MaterialLineItem] = []
    for item in items:
        key = (" ".join(item.description.lower().split()), item.quantity)
        if key not in seen:
            seen.add(key)
            unique.append(item)
    return unique


# ─── Helpers ─────────────────────────────────────────────────────────


def _insufficient(
    rule_name: RuleName, reasoning: str, **fields: object
) -> BusinessRuleResult:
    return BusinessRuleResult(
        rule_name=rule_name,
        status=RuleStatus.INSUFFICIENT_DATA,
        confidence=0.0,
        reasoning=reasoning,
        **fields,
    )


def _square_feet(item: MaterialLineItem) -> float:
    quantity = item.quantity or 0.0
    if (item.unit or "").strip().upper() in _SQUARE_UNITS:
        return quantity * 100
    return quantity


def _edge_coverage(
    items: Sequence[MaterialLineItem], apron_ids: set[int], rake: float
) -> tuple[float, float]:
    """Split edge flashing into (rakes, eaves) linear feet.

    Gutter apron covers the eaves and plain drip edge the rakes. A drip edge
    line that also names the eaves, or that matches both patterns, covers
    the rakes first and carries the remainder onto the eaves.
    """
    rakes = eaves = both = 0.0
    for item in items:
        quantity = item.quantity or 0.0
        is_apron = id(item) in apron_ids
        is_drip = item.category == MaterialCategory.DRIP_EDGE or (
            item.category is None and bool(DRIP_EDGE_RE.search(item.description))
        )
        if is_apron and not is_drip:
            eaves += quantity
        elif is_apron or _EAVE_RE.search(item.description):
            both += quantity
        else:
            rakes += quantity
    to_rakes = min(both, max(rake - rakes, 0.0))
    return rakes + to_rakes, eaves + both - to_rakes


def _unit_rate(item: Optional[MaterialLineItem], default: Decimal) -> Decimal:
    if item is not None and item.unit_rate is not None and item.unit_rate > 0:
        return item.unit_rate
    return default


def _ice_water_rate(item: Optional[MaterialLineItem], default: Decimal) -> Decimal:
    """Per-SF rate; an estimate priced per square is converted."""
    if item is None or item.unit_rate is None or item.unit_rate <= 0:
        return default
    if (item.unit or "").strip().upper() in _SQUARE_UNITS:
        return (item.unit_rate / 100).quantize(_CENTS, rounding=ROUND_HALF_UP)
    return item.unit_rate


def _cost(quantity: float, rate: Decimal) -> Decimal:
    return (Decimal(str(round(quantity, 2))) * rate).quantize(
        _CENTS, rounding=ROUND_HALF_UP
    )


def _item_evidence(item: MaterialLineItem) -> str:
    quantity = _fmt(item.quantity) if item.quantity is not None else "?"
    page = f" (page {item.source_page})" if item.source_page else ""
    return f"Estimate: '{item.description}' {quantity} {item.unit or ''}".rstrip() + page


def _starter_cost_text(eave: Optional[float], rate: Decimal, cost: Decimal) -> str:
    if eave is None:
        return "Eave length unknown; cost impact not computed."
    return f"Priced at {_fmt(eave)} LF eaves x ${rate}/LF = ${cost}."


def _fmt(value: float) -> str:
    """119.0 -> "119", 1167.192 -> "1,167.19"."""
    text = f"{value:,.2f}"
    return text.rstrip("0").rstrip(".")


def _signed(value: float) -> str:
    return ("+" if value > 0 else "") + _fmt(value)
