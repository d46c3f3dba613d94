"""
Grading Module.

Validation of the grading model's answer, evidence density, confidence
synthesis and the pipeline that ties the stages together.
"""

from gradegate.grading.confidence import compute_grading_confidence, confidence_inputs_for_decision
from gradegate.grading.evidence import build_evidence_density, summarize_evidence_density
from gradegate.grading.pipeline import (
    AssessmentBundle,
    GradingBlockedError,
    GradingPipeline,
    build_readiness_checklist,
)
from gradegate.grading.validator import (
    DecisionValidationError,
    DecisionValidator,
    validate_grade_decision,
)

__all__ = [
    "AssessmentBundle",
    "DecisionValidationError",
    "DecisionValidator",
    "GradingBlockedError",
    "GradingPipeline",
    "build_evidence_density",
    "build_readiness_checklist",
    "compute_grading_confidence",
    "confidence_inputs_for_decision",
    "summarize_evidence_density",
    "validate_grade_decision",
]
