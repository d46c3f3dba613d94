"""
Integration tests for the grading pipeline and the CLI.

Run the full pre-grading and post-grading path on realistic inputs
to verify the stages work together.
"""

import copy
import json
from pathlib import Path
from typing import Any, Generator
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from gradegate.config import Settings, get_settings
from gradegate.grading import (
    AssessmentBundle,
    GradingBlockedError,
    GradingPipeline,
    build_readiness_checklist,
)
from gradegate.main import app
from gradegate.models import (
    AssessmentStatus,
    ExtractionMetrics,
    GradingInputMode,
    RequestedInputMode,
)


@pytest.fixture
def pipeline(test_settings: Settings) -> GradingPipeline:
    return GradingPipeline(test_settings)


class TestPrepare:
    """Tests for the pre-grading stages."""

    def test_strong_extraction(
        self, pipeline: GradingPipeline, strong_metrics: ExtractionMetrics
    ) -> None:
        """Test a strong extraction is graded from its text."""
        prepared = pipeline.prepare(strong_metrics, requested_mode="AUTO")

        assert prepared.can_grade is True
        assert prepared.input_decision.mode is GradingInputMode.EXTRACTED_TEXT
        assert prepared.criteria_alignment is None

    def test_default_mode_comes_from_settings(self, strong_metrics: ExtractionMetrics) -> None:
        """Test the configured default applies when no mode is requested."""
        settings = Settings(_env_file=None, default_input_mode=RequestedInputMode.RAW)
        prepared = GradingPipeline(settings).prepare(strong_metrics)

        assert prepared.input_decision.requested_mode is RequestedInputMode.RAW
        assert prepared.input_decision.mode is GradingInputMode.RAW_PAGE_IMAGES

    def test_missing_run_blocks(self, pipeline: GradingPipeline) -> None:
        """Test grading is blocked without an extraction run."""
        prepared = pipeline.prepare(None)

        assert prepared.can_grade is False
        assert prepared.blockers == ("No extraction run found.",)

    def test_misaligned_criteria_block(
        self, pipeline: GradingPipeline, strong_metrics: ExtractionMetrics
    ) -> None:
        """Test a mapping far from the brief blocks grading."""
        prepared = pipeline.prepare(
            strong_metrics,
            mapped_codes=["P1", "P2", "M1"],
            brief_codes=["P1", "M2", "D1", "D2"],
        )

        assert prepared.can_grade is False
        assert prepared.readiness.ok is True
        assert len(prepared.blockers) == 1
        assert "out of sync" in prepared.blockers[0]
        assert prepared.criteria_alignment is not None
        assert prepared.criteria_alignment.overlap_ratio == pytest.approx(0.25)

    def test_prepare_or_raise(self, pipeline: GradingPipeline) -> None:
        """Test the raising convenience lists the blockers."""
        with pytest.raises(GradingBlockedError) as exc_info:
            pipeline.prepare_or_raise(None)

        assert exc_info.value.blockers == ["No extraction run found."]

    def test_prepare_or_raise_passes_through(
        self, pipeline: GradingPipeline, strong_metrics: ExtractionMetrics
    ) -> None:
        """Test a gradable submission is returned unchanged."""
        prepared = pipeline.prepare_or_raise(strong_metrics, submission_status="EXTRACTED")

        assert prepared.can_grade is True


class TestReadinessChecklist:
    """Tests for build_readiness_checklist."""

    def test_page_images_satisfy_completeness(
        self, pipeline: GradingPipeline, strong_metrics: ExtractionMetrics
    ) -> None:
        """Test raw page images count as a complete extraction."""
        weak = strong_metrics.model_copy(update={"overall_confidence": 0.5})
        prepared = pipeline.prepare(weak, requested_mode="RAW")

        checklist = build_readiness_checklist(prepared, student_linked=False)

        assert prepared.readiness.ok is False
        assert checklist == {
            "extractionCompleteness": True,
            "studentLinked": False,
            "assignmentLinked": True,
            "lockedReferencesAvailable": True,
            "resubmissionStatusVerified": True,
        }


class TestAssess:
    """Tests for the post-grading stages."""

    def test_valid_answer_is_assessed(
        self,
        pipeline: GradingPipeline,
        strong_metrics: ExtractionMetrics,
        valid_answer: dict[str, Any],
        criteria_codes: list[str],
    ) -> None:
        """Test a valid answer yields a decision with calibrated confidence."""
        prepared = pipeline.prepare(strong_metrics)
        outcome = pipeline.assess(prepared, valid_answer, criteria_codes)

        assert outcome.status is AssessmentStatus.ASSESSED
        assert outcome.decision is not None
        assert outcome.errors == ()
        assert outcome.confidence is not None
        assert outcome.confidence.caps_applied == ()
        assert outcome.confidence.final_confidence == pytest.approx(0.917, abs=0.001)
        assert outcome.audit.status is AssessmentStatus.ASSESSED
        assert outcome.audit.final_confidence == outcome.confidence.final_confidence

    def test_blocked_submission_skips_validation(
        self, pipeline: GradingPipeline, valid_answer: dict[str, Any], criteria_codes: list[str]
    ) -> None:
        """Test nothing is validated for a blocked submission."""
        prepared = pipeline.prepare(None)
        outcome = pipeline.assess(prepared, valid_answer, criteria_codes)

        assert outcome.status is AssessmentStatus.BLOCKED
        assert outcome.decision is None
        assert outcome.confidence is None
        assert outcome.audit.final_confidence is None

    def test_invalid_answer_is_rejected(
        self,
        pipeline: GradingPipeline,
        strong_metrics: ExtractionMetrics,
        valid_answer: dict[str, Any],
        criteria_codes: list[str],
    ) -> None:
        """Test an answer missing a criterion is rejected with its error."""
        answer = copy.deepcopy(valid_answer)
        answer["criterionChecks"] = answer["criterionChecks"][:2]

        outcome = pipeline.assess(pipeline.prepare(strong_metrics), answer, criteria_codes)

        assert outcome.status is AssessmentStatus.REJECTED
        assert outcome.decision is None
        assert outcome.errors == ("Missing criterion check for code: M1.",)

    def test_unlinked_student_caps_confidence(
        self,
        pipeline: GradingPipeline,
        strong_metrics: ExtractionMetrics,
        valid_answer: dict[str, Any],
        criteria_codes: list[str],
    ) -> None:
        """Test a failed readiness check lowers the final confidence."""
        prepared = pipeline.prepare(strong_metrics)
        outcome = pipeline.assess(prepared, valid_answer, criteria_codes, student_linked=False)

        assert outcome.confidence is not None
        assert outcome.confidence.signals.readiness_failures == ("studentLinked",)
        assert [c.name for c in outcome.confidence.caps_applied] == ["readiness_cap"]
        assert outcome.confidence.final_confidence == pytest.approx(0.86)

    def test_page_images_ignore_missing_modalities(
        self,
        pipeline: GradingPipeline,
        cover_only_metrics: ExtractionMetrics,
        valid_answer: dict[str, Any],
        criteria_codes: list[str],
    ) -> None:
        """Test modality gaps do not count when the model saw page images."""
        prepared = pipeline.prepare(cover_only_metrics)
        outcome = pipeline.assess(
            prepared, valid_answer, criteria_codes, modality_missing_count=2
        )

        assert prepared.input_decision.mode is GradingInputMode.RAW_PAGE_IMAGES
        assert outcome.confidence is not None
        assert outcome.confidence.signals.modality_missing_count == 0
        assert outcome.confidence.penalties.modality_missing_penalty == 0.0

    def test_text_mode_counts_missing_modalities(
        self,
        pipeline: GradingPipeline,
        strong_metrics: ExtractionMetrics,
        valid_answer: dict[str, Any],
        criteria_codes: list[str],
    ) -> None:
        """Test modality gaps cap confidence when grading from text."""
        outcome = pipeline.assess(
            pipeline.prepare(strong_metrics), valid_answer, criteria_codes, modality_missing_count=1
        )

        assert outcome.confidence is not None
        assert outcome.confidence.caps_applied[0].name == "modality_missing_cap"
        assert outcome.confidence.final_confidence == pytest.approx(0.65)

    def test_audit_hashes_are_reproducible(
        self,
        pipeline: GradingPipeline,
        strong_metrics: ExtractionMetrics,
        valid_answer: dict[str, Any],
        criteria_codes: list[str],
    ) -> None:
        """Test identical inputs give identical hashes under distinct audit ids."""
        first = pipeline.assess(pipeline.prepare(strong_metrics), valid_answer, criteria_codes)
        second = pipeline.assess(pipeline.prepare(strong_metrics), valid_answer, criteria_codes)

        assert first.audit.answer_hash == second.audit.answer_hash
        assert first.audit.criteria_hash == second.audit.criteria_hash
        assert first.audit.result_hash == second.audit.result_hash
        assert first.audit.audit_id != second.audit.audit_id
        assert len(first.audit.answer_hash) == 64


class TestRun:
    """Tests for running a bundled attempt."""

    def test_run_from_extraction_record(
        self,
        pipeline: GradingPipeline,
        extraction_run: dict[str, Any],
        valid_answer: dict[str, Any],
        criteria_codes: list[str],
    ) -> None:
        """Test a bundle carrying a raw run record is assessed end to end."""
        bundle = AssessmentBundle.model_validate(
            {
                "extractionRun": extraction_run,
                "criteriaCodes": criteria_codes,
                "briefCriteriaCodes": criteria_codes,
                "answer": valid_answer,
            }
        )

        outcome = pipeline.run(bundle)

        assert outcome.status is AssessmentStatus.ASSESSED
        assert outcome.prepared.input_decision.mode is GradingInputMode.EXTRACTED_TEXT
        assert outcome.prepared.readiness.warnings == (
            "Extraction warning: Table on page 3 may be incomplete",
        )
        assert outcome.prepared.criteria_alignment is not None
        assert outcome.prepared.criteria_alignment.overlap_ratio == 1.0


# ==============================================================================
# CLI
# ==============================================================================


runner = CliRunner()


@pytest.fixture(autouse=True)
def no_logfire() -> Generator[MagicMock, None, None]:
    """Keep CLI invocations from configuring logfire."""
    with patch("gradegate.main.configure_logging") as mock_configure:
        yield mock_configure


class TestCli:
    """Tests for the gradegate command line."""

    def test_config(self) -> None:
        """Test the effective configuration is shown."""
        result = runner.invoke(app, ["config"])

        assert result.exit_code == 0
        assert "GradeGate Configuration" in result.output

    def test_readiness_blocked(self, temp_dir: Path) -> None:
        """Test a blocked extraction exits with status 2."""
        metrics_file = temp_dir / "metrics.json"
        metrics_file.write_text(
            json.dumps({"extractedCharCount": 300, "pageCount": 2, "runStatus": "DONE"}),
            encoding="utf-8",
        )

        result = runner.invoke(app, ["readiness", str(metrics_file)])

        assert result.exit_code == 2
        assert "Extracted text too short" in result.output

    def test_readiness_missing_file(self, temp_dir: Path) -> None:
        """Test a missing metrics file exits with status 1."""
        result = runner.invoke(app, ["readiness", str(temp_dir / "missing.json")])

        assert result.exit_code == 1

    def test_validate_valid_answer(
        self, temp_dir: Path, valid_answer: dict[str, Any]
    ) -> None:
        """Test a valid answer file is accepted."""
        answer_file = temp_dir / "answer.txt"
        answer_file.write_text(f"```json\n{json.dumps(valid_answer)}\n```", encoding="utf-8")

        result = runner.invoke(app, ["validate", str(answer_file), "--codes", "P1,P2,M1"])

        assert result.exit_code == 0
        assert "Valid Decision" in result.output

    def test_readiness_invalid_configuration(
        self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test a bad environment setting is reported as configuration, not metrics."""
        metrics_file = temp_dir / "metrics.json"
        metrics_file.write_text(json.dumps({"extractedCharCount": 5000}), encoding="utf-8")
        monkeypatch.setenv("GRADEGATE_READINESS_MIN_CHARS", "10")
        get_settings.cache_clear()

        try:
            result = runner.invoke(app, ["readiness", str(metrics_file)])
        finally:
            get_settings.cache_clear()

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
        assert "Invalid metrics" not in result.output

    def test_validate_non_utf8_answer(
        self, temp_dir: Path, valid_answer: dict[str, Any]
    ) -> None:
        """Test an answer file with undecodable bytes is still validated."""
        answer_file = temp_dir / "answer.txt"
        answer_file.write_bytes(b"\xff\xfe Model output: " + json.dumps(valid_answer).encode("utf-8"))

        result = runner.invoke(app, ["validate", str(answer_file), "--codes", "P1,P2,M1"])

        assert result.exit_code == 0
        assert "Valid Decision" in result.output

    def test_validate_invalid_answer(
        self, temp_dir: Path, valid_answer: dict[str, Any]
    ) -> None:
        """Test a rejected answer lists its errors and exits with status 2."""
        answer_file = temp_dir / "answer.json"
        answer_file.write_text(json.dumps(valid_answer), encoding="utf-8")

        result = runner.invoke(app, ["validate", str(answer_file), "--codes", "P1,P2,M1,D1"])

        assert result.exit_code == 2
        assert "Missing criterion check for code: D1." in result.output

    def test_assess_writes_audit(
        self,
        temp_dir: Path,
        strong_metrics: ExtractionMetrics,
        valid_answer: dict[str, Any],
        criteria_codes: list[str],
    ) -> None:
        """Test a bundle is assessed and the outcome saved."""
        bundle_file = temp_dir / "bundle.json"
        bundle_file.write_text(
            json.dumps(
                {
                    "metrics": strong_metrics.model_dump(by_alias=True, mode="json"),
                    "criteriaCodes": criteria_codes,
                    "answer": valid_answer,
                }
            ),
            encoding="utf-8",
        )
        output = temp_dir / "out" / "outcome.json"

        result = runner.invoke(app, ["assess", str(bundle_file), "--output", str(output)])

        assert result.exit_code == 0
        saved = json.loads(output.read_text(encoding="utf-8"))
        assert saved["status"] == "ASSESSED"
        assert saved["audit"]["status"] == "ASSESSED"
        assert saved["decision"]["overallGrade"] == "MERIT"

    def test_assess_invalid_bundle(self, temp_dir: Path) -> None:
        """Test a bundle without criteria codes is rejected."""
        bundle_file = temp_dir / "bundle.json"
        bundle_file.write_text(json.dumps({"answer": {}}), encoding="utf-8")

        result = runner.invoke(app, ["assess", str(bundle_file)])

        assert result.exit_code == 1
        assert "Invalid bundle" in result.output
