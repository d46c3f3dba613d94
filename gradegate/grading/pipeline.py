"""
Grading pipeline - the orchestrator.

Runs the quality-assurance stages for one grading attempt:
readiness gate -> input strategy -> (external model call) -> decision
validation -> confidence synthesis, and produces an audit record.
The pipeline holds no state between attempts.
"""

import json
from typing import Any, Iterable, Mapping

import logfire
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from gradegate import GradeGateError
from gradegate.config import Settings, get_settings
from gradegate.criteria.alignment import compare_criteria_alignment
from gradegate.criteria.codes import authoritative_codes
from gradegate.gating.extraction import metrics_from_run
from gradegate.gating.readiness import evaluate_extraction_readiness
from gradegate.gating.strategy import choose_for_report
from gradegate.grading.confidence import compute_grading_confidence, confidence_inputs_for_decision
from gradegate.grading.validator import DecisionValidator
from gradegate.models import (
    AssessmentOutcome,
    AssessmentStatus,
    AuditRecord,
    ExtractionMetrics,
    GradingInputMode,
    PreparedSubmission,
    RequestedInputMode,
)


class GradingBlockedError(GradeGateError):
    """Raised by `prepare_or_raise` when grading must not proceed."""

    def __init__(self, blockers: Iterable[str]):
        self.blockers = list(blockers)
        message = "Grading is blocked:\n" + "\n".join(f"  - {b}" for b in self.blockers)
        super().__init__(message)


class AssessmentBundle(BaseModel):
    """
    Everything needed to run one grading attempt through the pipeline.

    Either `metrics` or a raw `extraction_run` record may be given; the
    run record is read through the extraction adapter.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    metrics: ExtractionMetrics | None = None
    extraction_run: dict[str, Any] | None = None
    extracted_text: str | None = None
    submission_status: str | None = None
    requested_mode: str | None = None
    page_image_capable: bool = True
    criteria_codes: list[str] = Field(..., min_length=1)
    brief_criteria_codes: list[str] | None = None
    answer: Any = None
    student_linked: bool = True
    assignment_linked: bool = True
    references_locked: bool = True
    resubmission_status_verified: bool = True
    modality_missing_count: int = Field(default=0, ge=0)

    def resolved_metrics(self) -> ExtractionMetrics | None:
        """Metrics given directly, else read from the run record."""
        if self.metrics is not None:
            return self.metrics
        return metrics_from_run(self.extraction_run, self.extracted_text)


def build_readiness_checklist(
    prepared: PreparedSubmission,
    student_linked: bool = True,
    assignment_linked: bool = True,
    references_locked: bool = True,
    resubmission_status_verified: bool = True,
) -> dict[str, bool]:
    """
    Named readiness checks for the confidence synthesizer.

    Extraction completeness is satisfied by page images even when the
    extracted text did not pass the gate.
    """
    raw_images = prepared.input_decision.mode is GradingInputMode.RAW_PAGE_IMAGES
    return {
        "extractionCompleteness": raw_images or prepared.readiness.ok,
        "studentLinked": student_linked,
        "assignmentLinked": assignment_linked,
        "lockedReferencesAvailable": references_locked,
        "resubmissionStatusVerified": resubmission_status_verified,
    }


def _canonical(value: Any) -> str:
    """Stable text form of an arbitrary answer for hashing."""
    if isinstance(value, str):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump_json(by_alias=True)
    return json.dumps(value, sort_keys=True, default=str)


class GradingPipeline:
    """
    Quality-assurance pipeline around an untrusted grading model.

    Configuration is read once, at construction, and passed to each stage
    as immutable threshold objects.
    """

    def __init__(self, settings: Settings | None = None):
        """
        Initialize the pipeline.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
        """
        self._settings = settings or get_settings()
        self._readiness_thresholds = self._settings.readiness_thresholds()
        self._input_thresholds = self._settings.input_strategy_thresholds()
        self._confidence_policy = self._settings.confidence_policy()
        self._validator = DecisionValidator()

    def prepare(
        self,
        metrics: ExtractionMetrics | None,
        submission_status: str | None = None,
        requested_mode: RequestedInputMode | str | None = None,
        page_image_capable: bool = True,
        mapped_codes: Iterable[str] | None = None,
        brief_codes: Iterable[str] | None = None,
    ) -> PreparedSubmission:
        """
        Run the pre-grading stages.

        Args:
            metrics: Metrics of the latest extraction run, or None.
            submission_status: Lifecycle status of the submission.
            requested_mode: Caller's input mode preference.
            page_image_capable: Whether the file can be rendered to page images.
            mapped_codes: Criteria codes the submission will be graded against.
            brief_codes: Criteria codes found in the brief.

        Returns:
            PreparedSubmission; `can_grade` says whether to call the model.
        """
        readiness = evaluate_extraction_readiness(
            metrics, submission_status, self._readiness_thresholds
        )
        input_decision = choose_for_report(
            readiness,
            requested_mode or self._settings.default_input_mode,
            page_image_capable,
            self._input_thresholds,
        )

        blockers = list(readiness.blockers)
        alignment = None
        if mapped_codes is not None and brief_codes is not None:
            alignment = compare_criteria_alignment(mapped_codes, brief_codes)
            if alignment.is_blocking(
                self._settings.alignment_min_overlap_ratio,
                self._settings.alignment_mismatch_block_count,
            ):
                blockers.append(
                    "Brief criteria and mapped criteria are out of sync "
                    f"(overlap {alignment.overlap_ratio:.2f}, {alignment.mismatch_count} mismatched); "
                    "re-lock the criteria mapping before grading."
                )

        logfire.info(
            "Submission prepared",
            readiness_ok=readiness.ok,
            blocker_count=len(blockers),
            warning_count=len(readiness.warnings),
            input_mode=input_decision.mode.value,
        )

        return PreparedSubmission(
            readiness=readiness,
            input_decision=input_decision,
            criteria_alignment=alignment,
            blockers=tuple(blockers),
        )

    def prepare_or_raise(self, metrics: ExtractionMetrics | None, **kwargs: Any) -> PreparedSubmission:
        """
        Run the pre-grading stages and raise if grading is blocked.

        Raises:
            GradingBlockedError: If any blocker was found.
        """
        prepared = self.prepare(metrics, **kwargs)
        if not prepared.can_grade:
            raise GradingBlockedError(prepared.blockers)
        return prepared

    def assess(
        self,
        prepared: PreparedSubmission,
        raw_answer: Any,
        criteria_codes: Iterable[str],
        student_linked: bool = True,
        assignment_linked: bool = True,
        references_locked: bool = True,
        resubmission_status_verified: bool = True,
        modality_missing_count: int = 0,
    ) -> AssessmentOutcome:
        """
        Validate the model's answer and compute its confidence.

        Args:
            prepared: Result of `prepare` for this submission.
            raw_answer: The grading model's untrusted answer.
            criteria_codes: Authoritative criteria codes.
            student_linked: Whether the submission is linked to a student.
            assignment_linked: Whether the submission is linked to an assignment.
            references_locked: Whether the brief and unit references are locked.
            resubmission_status_verified: Whether resubmission status was checked.
            modality_missing_count: Required modalities not found in the extraction.

        Returns:
            AssessmentOutcome with status BLOCKED, REJECTED or ASSESSED.
        """
        codes = authoritative_codes(criteria_codes)

        if not prepared.can_grade:
            logfire.warning("Grading blocked", blockers=list(prepared.blockers))
            return self._outcome(
                AssessmentStatus.BLOCKED, prepared, raw_answer, codes, "\n".join(prepared.blockers)
            )

        validation = self._validator.validate(raw_answer, codes)
        if not validation.ok or validation.data is None:
            logfire.warning("Grade decision rejected", errors=list(validation.errors))
            return self._outcome(
                AssessmentStatus.REJECTED,
                prepared,
                raw_answer,
                codes,
                "\n".join(validation.errors),
                errors=validation.errors,
            )

        decision = validation.data
        checklist = build_readiness_checklist(
            prepared,
            student_linked=student_linked,
            assignment_linked=assignment_linked,
            references_locked=references_locked,
            resubmission_status_verified=resubmission_status_verified,
        )
        # Page images carry every modality the extraction may have missed.
        if prepared.input_decision.mode is GradingInputMode.RAW_PAGE_IMAGES:
            modality_missing_count = 0

        metrics = prepared.readiness.metrics
        confidence = compute_grading_confidence(
            confidence_inputs_for_decision(
                decision,
                extraction_confidence=metrics.overall_confidence,
                extraction_mode=metrics.extraction_mode,
                readiness_checklist=checklist,
                modality_missing_count=modality_missing_count,
                alignment=prepared.criteria_alignment,
            ),
            self._confidence_policy,
        )

        logfire.info(
            "Grade decision assessed",
            overall_grade=decision.overall_grade.value,
            final_confidence=confidence.final_confidence,
            caps=[c.name for c in confidence.caps_applied],
        )

        return self._outcome(
            AssessmentStatus.ASSESSED,
            prepared,
            raw_answer,
            codes,
            decision.model_dump_json(by_alias=True) + confidence.model_dump_json(by_alias=True),
            decision=decision,
            confidence=confidence,
        )

    def run(self, bundle: AssessmentBundle) -> AssessmentOutcome:
        """Prepare and assess one bundled grading attempt."""
        prepared = self.prepare(
            bundle.resolved_metrics(),
            submission_status=bundle.submission_status,
            requested_mode=bundle.requested_mode,
            page_image_capable=bundle.page_image_capable,
            mapped_codes=bundle.criteria_codes if bundle.brief_criteria_codes is not None else None,
            brief_codes=bundle.brief_criteria_codes,
        )
        return self.assess(
            prepared,
            bundle.answer,
            bundle.criteria_codes,
            student_linked=bundle.student_linked,
            assignment_linked=bundle.assignment_linked,
            references_locked=bundle.references_locked,
            resubmission_status_verified=bundle.resubmission_status_verified,
            modality_missing_count=bundle.modality_missing_count,
        )

    def _outcome(
        self,
        status: AssessmentStatus,
        prepared: PreparedSubmission,
        raw_answer: Any,
        codes: list[str],
        result_content: str,
        **fields: Any,
    ) -> AssessmentOutcome:
        """Build the outcome with its audit record."""
        confidence = fields.get("confidence")
        audit = AuditRecord(
            answer_hash=AuditRecord.compute_hash(_canonical(raw_answer)),
            criteria_hash=AuditRecord.compute_hash(",".join(codes)),
            result_hash=AuditRecord.compute_hash(result_content),
            status=status,
            input_mode=prepared.input_decision.mode,
            final_confidence=confidence.final_confidence if confidence else None,
        )
        return AssessmentOutcome(status=status, prepared=prepared, audit=audit, **fields)


def assessment_to_record(outcome: AssessmentOutcome) -> Mapping[str, Any]:
    """Serializable audit-trail form of an outcome."""
    return outcome.model_dump(by_alias=True, mode="json")
