"""
Grading confidence synthesizer.

Combines the model's own confidence, per-criterion confidence and the
density of cited evidence into one score, adjusts it with a small bonus
and independent penalties, then applies hard caps that no weighted
average can exceed. The result is floored so that zero always means
"no signal" rather than "no trust".
"""

from typing import Any, Mapping, NamedTuple

from gradegate.grading.evidence import build_evidence_density, summarize_evidence_density
from gradegate.models import (
    ConfidenceBonuses,
    ConfidenceCap,
    ConfidenceInputs,
    ConfidencePenalties,
    ConfidencePolicy,
    ConfidenceResult,
    ConfidenceSignals,
    CriteriaAlignment,
    CriterionDecision,
    CriterionSignal,
    GradeDecision,
    clamp01,
)


def _round3(value: float) -> float:
    return round(value, 3)


def _ratio(count: int, total: int) -> float:
    return clamp01(count / max(1, total))


class _Derived(NamedTuple):
    """Unrounded signals used by the formulas."""

    criterion_average: float
    evidence_score: float
    total_criteria: int
    unclear_count: int
    low_count: int
    achieved_without_evidence: int
    criteria_without_evidence: int
    total_citations: int
    citations_per_criterion: float
    no_evidence_ratio: float
    unclear_ratio: float
    low_ratio: float
    readiness_failures: tuple[str, ...]


def _derive(inputs: ConfidenceInputs, policy: ConfidencePolicy) -> _Derived:
    rows = inputs.criterion_checks
    summary = inputs.evidence_density

    criteria_count = summary.criteria_count if summary and summary.criteria_count > 0 else len(rows)
    total_criteria = max(1, criteria_count)

    if rows:
        criterion_average = clamp01(sum(r.confidence for r in rows) / len(rows))
    else:
        criterion_average = inputs.model_confidence

    unclear_count = sum(1 for r in rows if r.decision is CriterionDecision.UNCLEAR)
    low_count = sum(1 for r in rows if r.confidence < policy.low_criterion_confidence)
    achieved_without_evidence = sum(
        1 for r in rows if r.decision is CriterionDecision.ACHIEVED and r.evidence_count == 0
    )

    if summary is not None:
        criteria_without_evidence = summary.criteria_without_evidence
        total_citations = summary.total_citations
    else:
        criteria_without_evidence = sum(1 for r in rows if r.evidence_count == 0)
        total_citations = sum(r.evidence_count for r in rows)

    citations_per_criterion = total_citations / total_criteria
    no_evidence_ratio = _ratio(criteria_without_evidence, total_criteria)
    citation_score = clamp01(citations_per_criterion / policy.citations_for_full_evidence)
    evidence_score = clamp01(citation_score - no_evidence_ratio * policy.no_evidence_score_penalty)

    return _Derived(
        criterion_average=criterion_average,
        evidence_score=evidence_score,
        total_criteria=total_criteria,
        unclear_count=unclear_count,
        low_count=low_count,
        achieved_without_evidence=achieved_without_evidence,
        criteria_without_evidence=criteria_without_evidence,
        total_citations=total_citations,
        citations_per_criterion=citations_per_criterion,
        no_evidence_ratio=no_evidence_ratio,
        unclear_ratio=_ratio(unclear_count, total_criteria),
        low_ratio=_ratio(low_count, total_criteria),
        readiness_failures=tuple(k for k, ok in inputs.readiness_checklist.items() if not ok),
    )


def _penalties(inputs: ConfidenceInputs, d: _Derived, policy: ConfidencePolicy) -> dict[str, float]:
    alignment_shortfall = 1 - inputs.criteria_alignment_overlap_ratio
    return {
        "unclear_ratio_penalty": d.unclear_ratio * policy.unclear_ratio_weight,
        "low_criterion_confidence_penalty": d.low_ratio * policy.low_confidence_ratio_weight,
        "missing_evidence_penalty": d.no_evidence_ratio * policy.missing_evidence_weight,
        "achieved_without_evidence_penalty": (
            policy.achieved_without_evidence_penalty if d.achieved_without_evidence else 0.0
        ),
        "modality_missing_penalty": min(
            policy.modality_penalty_max,
            inputs.modality_missing_count * policy.modality_penalty_per_missing,
        ),
        "readiness_penalty": min(
            policy.readiness_penalty_max,
            len(d.readiness_failures) * policy.readiness_penalty_per_failure,
        ),
        "criteria_alignment_penalty": min(
            policy.alignment_penalty_max,
            alignment_shortfall * policy.alignment_shortfall_weight
            + inputs.criteria_alignment_mismatch_count * policy.alignment_mismatch_weight,
        ),
    }


def _extraction_bonus(extraction_confidence: float, policy: ConfidencePolicy) -> float:
    threshold = policy.extraction_bonus_threshold
    if extraction_confidence < threshold:
        return 0.0
    scaled = (extraction_confidence - threshold) / (1 - threshold) * policy.extraction_bonus_max
    return min(policy.extraction_bonus_max, scaled)


def _candidate_caps(
    inputs: ConfidenceInputs, d: _Derived, policy: ConfidencePolicy
) -> list[tuple[str, float, str]]:
    """Caps that apply to this attempt, in the order they are enforced."""
    caps: list[tuple[str, float, str]] = []

    if inputs.modality_missing_count > 0:
        caps.append(
            (
                "modality_missing_cap",
                policy.modality_missing_cap,
                f"Required modality evidence missing in {inputs.modality_missing_count} section(s).",
            )
        )

    for tier in policy.evidence_gap_tiers:
        if d.no_evidence_ratio >= tier.min_no_evidence_ratio:
            caps.append(("evidence_gap_cap", tier.cap, tier.reason))
            break

    failures = len(d.readiness_failures)
    if failures:
        reduction = min(policy.readiness_cap_max_reduction, failures * policy.readiness_cap_step)
        caps.append(
            (
                "readiness_cap",
                max(policy.readiness_cap_floor, policy.readiness_cap_base - reduction),
                f"{failures} readiness check(s) are not satisfied.",
            )
        )

    if d.achieved_without_evidence:
        caps.append(
            (
                "achieved_without_evidence_cap",
                policy.achieved_without_evidence_cap,
                "One or more criteria are marked ACHIEVED without evidence.",
            )
        )

    return caps


def compute_grading_confidence(
    inputs: ConfidenceInputs, policy: ConfidencePolicy | None = None
) -> ConfidenceResult:
    """
    Compute the calibrated confidence for one grading attempt.

    Args:
        inputs: Decision, extraction and scope signals.
        policy: Calibration constants. Defaults apply when omitted.

    Returns:
        ConfidenceResult; the final score lies in [floor, 1] and never
        exceeds a cap that bound it.
    """
    policy = policy or ConfidencePolicy()
    d = _derive(inputs, policy)

    weighted_base = clamp01(
        inputs.model_confidence * policy.model_weight
        + d.criterion_average * policy.criterion_weight
        + d.evidence_score * policy.evidence_weight
    )
    bonus = _extraction_bonus(inputs.extraction_confidence, policy)
    penalties = _penalties(inputs, d, policy)
    raw = clamp01(weighted_base + bonus - sum(penalties.values()))

    capped = raw
    caps_applied: list[ConfidenceCap] = []
    for name, value, reason in _candidate_caps(inputs, d, policy):
        cap = clamp01(value)
        # caps only ever lower the running value
        if capped > cap:
            capped = cap
            caps_applied.append(ConfidenceCap(name=name, value=_round3(cap), reason=reason))

    final = clamp01(max(policy.confidence_floor, capped))

    signals = ConfidenceSignals(
        model_confidence=_round3(inputs.model_confidence),
        criterion_average_confidence=_round3(d.criterion_average),
        evidence_score=_round3(d.evidence_score),
        extraction_confidence=_round3(inputs.extraction_confidence),
        extraction_mode=inputs.extraction_mode,
        total_criteria=d.total_criteria,
        unclear_count=d.unclear_count,
        unclear_ratio=_round3(d.unclear_ratio),
        low_criterion_confidence_count=d.low_count,
        low_confidence_ratio=_round3(d.low_ratio),
        criteria_without_evidence=d.criteria_without_evidence,
        no_evidence_ratio=_round3(d.no_evidence_ratio),
        achieved_without_evidence_count=d.achieved_without_evidence,
        total_citations=d.total_citations,
        citations_per_criterion=_round3(d.citations_per_criterion),
        readiness_failures=d.readiness_failures,
        modality_missing_count=inputs.modality_missing_count,
        criteria_alignment_overlap_ratio=_round3(inputs.criteria_alignment_overlap_ratio),
        criteria_alignment_mismatch_count=inputs.criteria_alignment_mismatch_count,
    )

    return ConfidenceResult(
        final_confidence=_round3(final),
        weighted_base_confidence=_round3(weighted_base),
        raw_confidence_before_caps=_round3(raw),
        bonuses=ConfidenceBonuses(extraction_high_confidence_bonus=_round3(bonus)),
        penalties=ConfidencePenalties(**{k: _round3(v) for k, v in penalties.items()}),
        caps_applied=tuple(caps_applied),
        signals=signals,
        was_capped=bool(caps_applied),
    )


def confidence_inputs_for_decision(
    decision: GradeDecision,
    extraction_confidence: float | None = None,
    extraction_mode: str | None = None,
    readiness_checklist: Mapping[str, bool] | None = None,
    modality_missing_count: int = 0,
    alignment: CriteriaAlignment | None = None,
) -> ConfidenceInputs:
    """
    Assemble synthesizer inputs for a validated decision.

    Args:
        decision: Validated grade decision.
        extraction_confidence: Overall extraction confidence, if known.
        extraction_mode: Extraction mode of the run.
        readiness_checklist: Named readiness checks.
        modality_missing_count: Required modalities not found in the submission.
        alignment: Criteria alignment between mapping and brief, if compared.

    Returns:
        ConfidenceInputs ready for `compute_grading_confidence`.
    """
    fields: dict[str, Any] = {}
    if alignment is not None:
        fields["criteria_alignment_overlap_ratio"] = alignment.overlap_ratio
        fields["criteria_alignment_mismatch_count"] = alignment.mismatch_count

    return ConfidenceInputs(
        model_confidence=decision.confidence,
        extraction_confidence=clamp01(extraction_confidence or 0.0),
        extraction_mode=extraction_mode,
        criterion_checks=tuple(CriterionSignal.from_check(c) for c in decision.criterion_checks),
        evidence_density=summarize_evidence_density(
            build_evidence_density(decision.criterion_checks)
        ),
        readiness_checklist=dict(readiness_checklist or {}),
        modality_missing_count=modality_missing_count,
        **fields,
    )
