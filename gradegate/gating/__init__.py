"""
Gating Module.

Pre-grading decisions: whether an extraction is fit to grade and which
representation of the submission the grading model should see.
"""

from gradegate.gating.extraction import is_cover_metadata_ready, metrics_from_run
from gradegate.gating.readiness import READINESS_RULES, evaluate_extraction_readiness
from gradegate.gating.strategy import (
    choose_for_report,
    choose_grading_input_strategy,
    normalize_requested_mode,
)

__all__ = [
    "READINESS_RULES",
    "choose_for_report",
    "choose_grading_input_strategy",
    "evaluate_extraction_readiness",
    "is_cover_metadata_ready",
    "metrics_from_run",
    "normalize_requested_mode",
]
