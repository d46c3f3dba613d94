"""
Adapter from extraction-run records to ExtractionMetrics.

The extraction engine stores loosely-typed run records. This module reads
them once, at the boundary, so the readiness gate only ever sees a
validated ExtractionMetrics.
"""

import math
from typing import Any, Mapping

from gradegate.models import ExtractionMetrics

# Cover fields that identify the submission.
COVER_IDENTITY_FIELDS = (
    "studentName",
    "studentId",
    "unitCode",
    "assignmentCode",
    "submissionDate",
)

MIN_COVER_FIELDS = 2
MIN_COVER_CONFIDENCE = 0.5


def _as_number(value: Any) -> float | None:
    """Read a finite number, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def is_cover_metadata_ready(cover: Any) -> bool:
    """
    Check whether cover metadata can stand in for short body text.

    Ready when at least two identity fields carry a value and the overall
    cover confidence is at least 0.5.
    """
    if not isinstance(cover, Mapping):
        return False
    present = 0
    for name in COVER_IDENTITY_FIELDS:
        value = _as_mapping(cover.get(name)).get("value")
        if str(value or "").strip():
            present += 1
    confidence = _as_number(cover.get("confidence")) or 0.0
    return present >= MIN_COVER_FIELDS and confidence >= MIN_COVER_CONFIDENCE


def _parse_warnings(raw: Any) -> tuple[str, ...]:
    if isinstance(raw, Mapping):
        raw = raw.get("warnings")
    if not isinstance(raw, (list, tuple)):
        return ()
    return tuple(str(w).strip() for w in raw if str(w or "").strip())


def _infer_char_count(extracted_text: str, source_meta: Mapping[str, Any]) -> int | None:
    """Character count of the body text, falling back to run metadata."""
    text_chars = len(extracted_text.strip())
    if text_chars > 0:
        return text_chars
    candidates = [
        _as_number(source_meta.get("derivedTextChars")),
        _as_number(source_meta.get("extractedChars")),
        _as_number(_as_mapping(source_meta.get("qualitySignals")).get("derivedTextChars")),
    ]
    positive = [int(c) for c in candidates if c is not None and c > 0]
    return max(positive) if positive else None


def metrics_from_run(
    run: Mapping[str, Any] | None, extracted_text: str | None = None
) -> ExtractionMetrics | None:
    """
    Build ExtractionMetrics from an extraction run record.

    Args:
        run: Run record (status, overallConfidence, pageCount, warnings,
            sourceMeta). None when no run exists.
        extracted_text: Body text stored for the submission, if any.

    Returns:
        ExtractionMetrics, or None when there is no run.
    """
    if run is None:
        return None

    source_meta = _as_mapping(run.get("sourceMeta"))

    page_count = _as_number(run.get("pageCount"))
    confidence = _as_number(run.get("overallConfidence"))
    if confidence is not None:
        confidence = max(0.0, min(1.0, confidence))

    return ExtractionMetrics(
        extracted_char_count=_infer_char_count(str(extracted_text or ""), source_meta),
        page_count=int(page_count) if page_count is not None and page_count >= 0 else None,
        overall_confidence=confidence,
        run_status=run.get("status"),
        warnings=_parse_warnings(run.get("warnings")),
        extraction_mode=source_meta.get("extractionMode"),
        cover_metadata_ready=is_cover_metadata_ready(source_meta.get("coverMetadata")),
    )
