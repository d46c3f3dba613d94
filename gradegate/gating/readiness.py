"""
Extraction readiness gate.

Decides whether an extraction attempt is good enough to grade at all.
Rules are evaluated in a fixed order; each one contributes blockers
(grading must not proceed) or warnings (surfaced, never blocking).
"""

from typing import Callable, Iterable, NamedTuple

from gradegate.models import ExtractionMetrics, ReadinessReport, ReadinessThresholds

KNOWN_RUN_STATUSES = frozenset({"DONE", "NEEDS_OCR", "FAILED", "RUNNING", "PENDING"})

WARNING_PREFIX = "Extraction warning: "


class Finding(NamedTuple):
    """One rule outcome."""

    blocking: bool
    message: str


class ReadinessContext(NamedTuple):
    """Inputs shared by every readiness rule."""

    metrics: ExtractionMetrics | None
    submission_status: str
    thresholds: ReadinessThresholds

    @property
    def cover_only(self) -> bool:
        return self.metrics is not None and self.metrics.is_cover_only


ReadinessRule = Callable[[ReadinessContext], Iterable[Finding]]


def _blocker(message: str) -> Finding:
    return Finding(blocking=True, message=message)


def _warning(message: str) -> Finding:
    return Finding(blocking=False, message=message)


# ==============================================================================
# Rules
# ==============================================================================


def check_run_present(ctx: ReadinessContext) -> Iterable[Finding]:
    if ctx.metrics is None:
        yield _blocker("No extraction run found.")


def check_run_status(ctx: ReadinessContext) -> Iterable[Finding]:
    if ctx.metrics is None:
        return
    status = ctx.metrics.run_status
    if status == "NEEDS_OCR":
        if ctx.cover_only:
            yield _warning(
                "Extraction flagged as NEEDS_OCR, but cover-only mode is allowed to continue."
            )
        else:
            yield _blocker("Extraction flagged as NEEDS_OCR. Run OCR/correction before grading.")
    elif status == "FAILED":
        yield _blocker("Latest extraction run failed.")
    elif status in ("RUNNING", "PENDING"):
        yield _blocker("Extraction is still in progress.")
    elif status and status not in KNOWN_RUN_STATUSES:
        yield _warning(f"Unknown extraction status: {status}.")


def check_cover_metadata(ctx: ReadinessContext) -> Iterable[Finding]:
    if ctx.cover_only and not ctx.metrics.cover_metadata_ready:  # type: ignore[union-attr]
        yield _warning(
            "Cover-only extraction has incomplete cover metadata; "
            "complete it in submission review if needed."
        )


def check_text_length(ctx: ReadinessContext) -> Iterable[Finding]:
    """Short body text only passes with a structured fallback signal."""
    if ctx.metrics is None:
        return
    chars = ctx.metrics.extracted_char_count
    min_chars = ctx.thresholds.min_chars
    if chars is None:
        yield _warning("Extracted text length signal is unavailable for this run.")
    elif chars >= min_chars:
        return
    elif ctx.cover_only:
        yield _warning(
            f"Cover-only extraction has short body text ({chars} chars), "
            "which is expected for this mode."
        )
    elif ctx.metrics.cover_metadata_ready:
        yield _warning(
            f"Extracted body text is short ({chars} chars), but cover metadata is available."
        )
    else:
        yield _blocker(f"Extracted text too short ({chars} chars; minimum {min_chars}).")


def check_confidence(ctx: ReadinessContext) -> Iterable[Finding]:
    if ctx.metrics is None:
        return
    confidence = ctx.metrics.overall_confidence
    minimum = ctx.thresholds.min_confidence
    # zero means the engine did not score the run
    if confidence and confidence < minimum:
        yield _blocker(
            f"Extraction confidence too low ({confidence:.2f}; minimum {minimum:.2f})."
        )


def check_page_count(ctx: ReadinessContext) -> Iterable[Finding]:
    if ctx.metrics is None:
        return
    pages = ctx.metrics.page_count or 0
    if pages <= 0:
        yield _warning("Extraction page count is missing.")
    elif pages < ctx.thresholds.min_pages:
        yield _blocker(
            f"Extraction page count too low ({pages}; minimum {ctx.thresholds.min_pages})."
        )


def check_run_warnings(ctx: ReadinessContext) -> Iterable[Finding]:
    if ctx.metrics is None:
        return
    for warning in ctx.metrics.warnings:
        yield _warning(f"{WARNING_PREFIX}{warning}")


def check_warning_volume(ctx: ReadinessContext) -> Iterable[Finding]:
    """Many small extraction problems compound into one big one."""
    if ctx.metrics is None:
        return
    count = len(ctx.metrics.warnings)
    limit = ctx.thresholds.max_warnings
    if count >= limit:
        yield _blocker(
            f"Extraction produced too many warnings ({count}; maximum {limit - 1})."
        )


def check_submission_status(ctx: ReadinessContext) -> Iterable[Finding]:
    if ctx.submission_status != "NEEDS_OCR":
        return
    if ctx.cover_only:
        yield _warning("Submission status is NEEDS_OCR, but cover-only mode is allowed to continue.")
    else:
        yield _blocker("Submission status is NEEDS_OCR.")


READINESS_RULES: tuple[ReadinessRule, ...] = (
    check_run_present,
    check_run_status,
    check_cover_metadata,
    check_text_length,
    check_confidence,
    check_page_count,
    check_run_warnings,
    check_warning_volume,
    check_submission_status,
)


# ==============================================================================
# Gate
# ==============================================================================


def evaluate_extraction_readiness(
    metrics: ExtractionMetrics | None,
    submission_status: str | None = None,
    thresholds: ReadinessThresholds | None = None,
    rules: tuple[ReadinessRule, ...] = READINESS_RULES,
) -> ReadinessReport:
    """
    Decide whether an extraction attempt may be graded.

    Args:
        metrics: Metrics of the latest extraction run, or None if there is none.
        submission_status: Lifecycle status of the submission.
        thresholds: Gate thresholds. Defaults apply when omitted.
        rules: Rules to evaluate, in order.

    Returns:
        ReadinessReport; `ok` is true exactly when no rule produced a blocker.
    """
    ctx = ReadinessContext(
        metrics=metrics,
        submission_status=str(submission_status or "").strip().upper(),
        thresholds=thresholds or ReadinessThresholds(),
    )

    blockers: list[str] = []
    warnings: list[str] = []
    for rule in rules:
        for finding in rule(ctx):
            (blockers if finding.blocking else warnings).append(finding.message)

    return ReadinessReport(
        ok=not blockers,
        blockers=tuple(blockers),
        warnings=tuple(warnings),
        metrics=metrics or ExtractionMetrics(),
    )
