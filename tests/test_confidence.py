"""
Unit tests for evidence density and the confidence synthesizer.
"""

import itertools

import pytest

from gradegate.grading import (
    build_evidence_density,
    compute_grading_confidence,
    confidence_inputs_for_decision,
    summarize_evidence_density,
)
from gradegate.models import (
    ConfidenceInputs,
    ConfidencePolicy,
    CriterionCheck,
    CriterionDecision,
    CriterionSignal,
    EvidenceCitation,
    EvidenceGapTier,
    GradeDecision,
    OverallGrade,
)


def signal(decision: str, citations: int, confidence: float = 1.0) -> CriterionSignal:
    return CriterionSignal(decision=decision, confidence=confidence, evidence_count=citations)


def check(code: str, decision: CriterionDecision, pages: tuple[int, ...]) -> CriterionCheck:
    return CriterionCheck(
        code=code,
        decision=decision,
        rationale="Checked against the submission.",
        evidence=tuple(EvidenceCitation(page=p, quote="three word quote") for p in pages),
        confidence=0.9,
    )


class TestEvidenceDensity:
    """Tests for evidence density statistics."""

    def test_per_criterion_density(self) -> None:
        """Test citation counts, cited words and distinct pages."""
        rows = build_evidence_density(
            (
                check("P1", CriterionDecision.ACHIEVED, (2, 2, 5)),
                check("P2", CriterionDecision.NOT_ACHIEVED, ()),
            )
        )

        assert rows[0].citation_count == 3
        assert rows[0].total_words_cited == 9
        assert rows[0].page_distribution == (2, 5)
        assert rows[0].page_spread == 2
        assert rows[1].citation_count == 0

    def test_summary(self) -> None:
        """Test aggregation over a decision."""
        summary = summarize_evidence_density(
            build_evidence_density(
                (
                    check("P1", CriterionDecision.ACHIEVED, (1,)),
                    check("P2", CriterionDecision.NOT_ACHIEVED, ()),
                    check("M1", CriterionDecision.UNCLEAR, ()),
                )
            )
        )

        assert summary.criteria_count == 3
        assert summary.total_citations == 1
        assert summary.total_words_cited == 3
        assert summary.criteria_without_evidence == 2


class TestConfidenceScenarios:
    """Worked examples of the synthesizer."""

    def test_evidence_gap_cap_binds(self) -> None:
        """Test three of five criteria without evidence caps at 0.72."""
        inputs = ConfidenceInputs(
            model_confidence=1.0,
            extraction_confidence=0.9,
            criterion_checks=(
                signal("NOT_ACHIEVED", 0),
                signal("NOT_ACHIEVED", 0),
                signal("NOT_ACHIEVED", 0),
                signal("ACHIEVED", 5),
                signal("ACHIEVED", 5),
            ),
        )

        result = compute_grading_confidence(inputs)

        assert result.weighted_base_confidence == pytest.approx(0.948, abs=0.001)
        assert result.penalties.missing_evidence_penalty == pytest.approx(0.12)
        assert result.raw_confidence_before_caps == pytest.approx(0.828, abs=0.001)
        assert [c.name for c in result.caps_applied] == ["evidence_gap_cap"]
        assert result.final_confidence == pytest.approx(0.72)
        assert result.was_capped is True
        assert result.signals.no_evidence_ratio == pytest.approx(0.6)

    def test_achieved_without_evidence_cap_binds(self) -> None:
        """Test an unevidenced ACHIEVED row caps the score at 0.40."""
        inputs = ConfidenceInputs(
            model_confidence=1.0,
            criterion_checks=(
                signal("ACHIEVED", 3),
                signal("ACHIEVED", 3),
                signal("ACHIEVED", 3),
                signal("ACHIEVED", 0),
            ),
        )

        result = compute_grading_confidence(inputs)

        assert result.raw_confidence_before_caps == pytest.approx(0.728, abs=0.001)
        assert result.penalties.achieved_without_evidence_penalty == pytest.approx(0.2)
        assert [c.name for c in result.caps_applied] == ["achieved_without_evidence_cap"]
        assert result.final_confidence == pytest.approx(0.4)
        assert result.signals.achieved_without_evidence_count == 1

    def test_clean_decision_is_uncapped(self) -> None:
        """Test a fully evidenced, confident decision keeps its score."""
        inputs = ConfidenceInputs(
            model_confidence=0.9,
            extraction_confidence=0.99,
            criterion_checks=tuple(signal("ACHIEVED", 2, 0.9) for _ in range(4)),
            readiness_checklist={"studentLinked": True, "assignmentLinked": True},
        )

        result = compute_grading_confidence(inputs)

        assert result.caps_applied == ()
        assert result.was_capped is False
        assert result.bonuses.extraction_high_confidence_bonus == pytest.approx(0.027, abs=0.001)
        assert result.penalties.total == 0.0
        assert result.final_confidence == pytest.approx(0.952, abs=0.001)

    def test_modality_cap(self) -> None:
        """Test missing modality evidence caps at the configured value."""
        inputs = ConfidenceInputs(
            model_confidence=1.0,
            criterion_checks=(signal("ACHIEVED", 2), signal("ACHIEVED", 2)),
            modality_missing_count=1,
        )

        result = compute_grading_confidence(inputs)

        assert result.penalties.modality_missing_penalty == pytest.approx(0.08)
        assert result.caps_applied[0].name == "modality_missing_cap"
        assert result.final_confidence == pytest.approx(0.65)

    def test_readiness_cap_and_penalty(self) -> None:
        """Test failed readiness checks reduce and cap the score."""
        inputs = ConfidenceInputs(
            model_confidence=1.0,
            criterion_checks=(signal("ACHIEVED", 2), signal("ACHIEVED", 2)),
            readiness_checklist={
                "extractionCompleteness": False,
                "studentLinked": False,
                "assignmentLinked": True,
            },
        )

        result = compute_grading_confidence(inputs)

        assert result.signals.readiness_failures == ("extractionCompleteness", "studentLinked")
        assert result.penalties.readiness_penalty == pytest.approx(0.1)
        assert [c.name for c in result.caps_applied] == ["readiness_cap"]
        assert result.caps_applied[0].value == pytest.approx(0.82)
        assert result.final_confidence == pytest.approx(0.82)

    def test_alignment_penalty(self) -> None:
        """Test a criteria mismatch costs confidence."""
        inputs = ConfidenceInputs(
            model_confidence=0.8,
            criterion_checks=(signal("ACHIEVED", 2, 0.8),),
            criteria_alignment_overlap_ratio=0.5,
            criteria_alignment_mismatch_count=2,
        )

        result = compute_grading_confidence(inputs)

        assert result.penalties.criteria_alignment_penalty == pytest.approx(0.12)

    def test_floor_applies(self) -> None:
        """Test an empty signal still yields the floor."""
        result = compute_grading_confidence(ConfidenceInputs())

        assert result.final_confidence == pytest.approx(0.2)

    def test_custom_policy(self) -> None:
        """Test a cohort-specific policy replaces the defaults."""
        policy = ConfidencePolicy(
            evidence_gap_tiers=(
                EvidenceGapTier(min_no_evidence_ratio=0.1, cap=0.5, reason="Any gap."),
            )
        )
        inputs = ConfidenceInputs(
            model_confidence=1.0,
            criterion_checks=(signal("ACHIEVED", 3),) * 4 + (signal("NOT_ACHIEVED", 0),),
        )

        result = compute_grading_confidence(inputs, policy)

        assert result.caps_applied[0].reason == "Any gap."
        assert result.final_confidence == pytest.approx(0.5)

    def test_policy_rejects_cap_below_floor(self) -> None:
        """Test a cap that could never be honored is rejected."""
        with pytest.raises(ValueError):
            ConfidencePolicy(achieved_without_evidence_cap=0.1)


class TestConfidenceProperties:
    """Properties that hold for every input."""

    @pytest.mark.parametrize(
        "model,unclear,missing,modality",
        list(itertools.product((0.0, 0.5, 1.0), (0, 2), (0, 1, 3), (0, 2))),
    )
    def test_bounds_and_caps(self, model: float, unclear: int, missing: int, modality: int) -> None:
        """Test the score stays in [floor, 1] and under every applied cap."""
        rows = (
            tuple(signal("UNCLEAR", 1, 0.4) for _ in range(unclear))
            + tuple(signal("NOT_ACHIEVED", 0, 0.8) for _ in range(missing))
            + (signal("ACHIEVED", 2, 0.9),)
        )
        inputs = ConfidenceInputs(
            model_confidence=model,
            extraction_confidence=0.98,
            criterion_checks=rows,
            modality_missing_count=modality,
        )

        result = compute_grading_confidence(inputs)

        assert 0.2 <= result.final_confidence <= 1.0
        for cap in result.caps_applied:
            assert result.final_confidence <= cap.value
        assert result.was_capped == bool(result.caps_applied)

    def test_more_missing_evidence_never_helps(self) -> None:
        """Test confidence is monotone in missing evidence."""
        previous = 1.0
        for missing in range(6):
            rows = tuple(signal("ACHIEVED", 2) for _ in range(6 - missing)) + tuple(
                signal("NOT_ACHIEVED", 0) for _ in range(missing)
            )
            result = compute_grading_confidence(
                ConfidenceInputs(model_confidence=1.0, criterion_checks=rows)
            )
            assert result.final_confidence <= previous
            previous = result.final_confidence

    def test_deterministic(self) -> None:
        """Test identical inputs give identical results."""
        inputs = ConfidenceInputs(
            model_confidence=0.7,
            criterion_checks=(signal("ACHIEVED", 1, 0.6), signal("UNCLEAR", 0, 0.3)),
        )

        assert compute_grading_confidence(inputs) == compute_grading_confidence(inputs)


class TestCriterionSignal:
    """Tests for the loosely-typed criterion rows."""

    def test_lenient_parsing(self) -> None:
        """Test unknown decisions and bad confidences are neutralized."""
        row = CriterionSignal(decision="maybe", confidence="n/a")

        assert row.decision is None
        assert row.confidence == 0.0

    def test_confidence_clamped(self) -> None:
        """Test out-of-range confidence is clamped."""
        assert CriterionSignal(decision="achieved", confidence=3).confidence == 1.0

    def test_oversized_integer_confidence(self) -> None:
        """Test an integer too large for a float counts as zero."""
        assert CriterionSignal(decision="achieved", confidence=10**400).confidence == 0.0


class TestInputsForDecision:
    """Tests for building synthesizer inputs from a decision."""

    def test_from_decision(self) -> None:
        """Test a validated decision maps onto synthesizer inputs."""
        decision = GradeDecision(
            overall_grade=OverallGrade.PASS,
            resubmission_required=False,
            feedback_summary="Meets the pass criteria.",
            feedback_bullets=("Solid work.",),
            criterion_checks=(
                check("P1", CriterionDecision.ACHIEVED, (1, 2)),
                check("P2", CriterionDecision.NOT_ACHIEVED, ()),
            ),
            confidence=0.8,
        )

        inputs = confidence_inputs_for_decision(
            decision, extraction_confidence=None, extraction_mode="full"
        )

        assert inputs.model_confidence == pytest.approx(0.8)
        assert inputs.extraction_confidence == 0.0
        assert inputs.extraction_mode == "FULL"
        assert [r.evidence_count for r in inputs.criterion_checks] == [2, 0]
        assert inputs.evidence_density is not None
        assert inputs.evidence_density.criteria_without_evidence == 1
