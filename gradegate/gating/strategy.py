"""
Grading input strategy selector.

Chooses whether the grading model sees the derived text or the page
images of a submission. Explicit requests win; in AUTO mode extracted
text is used only when every quality condition holds.
"""

from typing import Any

import logfire

from gradegate.models import (
    COVER_ONLY_MODE,
    GradingInputDecision,
    GradingInputMode,
    InputStrategyThresholds,
    ReadinessReport,
    RequestedInputMode,
    clamp01,
)

_REQUESTED_MODE_ALIASES = {
    "RAW": RequestedInputMode.RAW,
    "RAW_PAGE_IMAGES": RequestedInputMode.RAW,
    "RAW_PDF_IMAGES": RequestedInputMode.RAW,
    "EXTRACTED": RequestedInputMode.EXTRACTED,
    "EXTRACTED_TEXT": RequestedInputMode.EXTRACTED,
}


def normalize_requested_mode(value: Any) -> RequestedInputMode:
    """Read a requested mode token; anything unrecognized means AUTO."""
    if isinstance(value, RequestedInputMode):
        return value
    token = str(value or "").strip().upper().replace("-", "_")
    return _REQUESTED_MODE_ALIASES.get(token, RequestedInputMode.AUTO)


def choose_grading_input_strategy(
    requested_mode: RequestedInputMode | str | None,
    page_image_capable: bool,
    readiness_ok: bool,
    extracted_chars: int | None,
    extraction_confidence: float | None,
    extraction_mode: str | None = None,
    cover_ready: bool = False,
    thresholds: InputStrategyThresholds | None = None,
) -> GradingInputDecision:
    """
    Choose the representation of the submission to send to the model.

    Args:
        requested_mode: AUTO, EXTRACTED or RAW (aliases accepted).
        page_image_capable: Whether the source file can be rendered to page images.
        readiness_ok: Outcome of the readiness gate.
        extracted_chars: Extracted character count.
        extraction_confidence: Overall extraction confidence.
        extraction_mode: Extraction mode of the run (e.g. COVER_ONLY).
        cover_ready: Whether cover metadata is ready.
        thresholds: Selector thresholds. Defaults apply when omitted.

    Returns:
        GradingInputDecision with the chosen mode and the reason for it.
    """
    requested = normalize_requested_mode(requested_mode)
    used = thresholds or InputStrategyThresholds()
    chars = max(0, int(extracted_chars or 0))
    confidence = clamp01(float(extraction_confidence or 0.0))
    cover_only = str(extraction_mode or "").strip().upper().replace("-", "_") == COVER_ONLY_MODE

    def decide(mode: GradingInputMode, reason: str) -> GradingInputDecision:
        return GradingInputDecision(
            mode=mode,
            requested_mode=requested,
            reason=reason,
            thresholds_used=used,
        )

    if requested is RequestedInputMode.EXTRACTED:
        return decide(GradingInputMode.EXTRACTED_TEXT, "Forced extracted mode by configuration.")

    if requested is RequestedInputMode.RAW:
        if page_image_capable:
            return decide(GradingInputMode.RAW_PAGE_IMAGES, "Forced raw mode by configuration.")
        return decide(
            GradingInputMode.EXTRACTED_TEXT,
            "Raw mode requested but submission cannot be rendered to page images; "
            "using extracted mode.",
        )

    if not page_image_capable:
        return decide(
            GradingInputMode.EXTRACTED_TEXT,
            "AUTO mode: submission without page images uses extracted mode.",
        )

    weak_reasons: list[str] = []
    if not readiness_ok:
        weak_reasons.append("extraction gate not ready")
    if chars < used.min_extracted_chars:
        weak_reasons.append(f"chars {chars} < {used.min_extracted_chars}")
    if confidence < used.min_extraction_confidence:
        weak_reasons.append(
            f"confidence {confidence:.2f} < {used.min_extraction_confidence:.2f}"
        )
    if cover_only and not cover_ready:
        weak_reasons.append("cover-only not ready")

    if not weak_reasons:
        return decide(
            GradingInputMode.EXTRACTED_TEXT,
            f"AUTO mode: extraction strong (chars={chars}, conf={confidence:.2f}).",
        )

    logfire.debug("Falling back to page images", reasons=weak_reasons)
    return decide(
        GradingInputMode.RAW_PAGE_IMAGES,
        f"AUTO mode: extraction weak ({'; '.join(weak_reasons)}); switching to raw page images.",
    )


def choose_for_report(
    report: ReadinessReport,
    requested_mode: RequestedInputMode | str | None,
    page_image_capable: bool,
    thresholds: InputStrategyThresholds | None = None,
) -> GradingInputDecision:
    """Choose the input strategy from a readiness report's metrics."""
    metrics = report.metrics
    return choose_grading_input_strategy(
        requested_mode=requested_mode,
        page_image_capable=page_image_capable,
        readiness_ok=report.ok,
        extracted_chars=metrics.extracted_char_count,
        extraction_confidence=metrics.overall_confidence,
        extraction_mode=metrics.extraction_mode,
        cover_ready=metrics.cover_metadata_ready,
        thresholds=thresholds,
    )
