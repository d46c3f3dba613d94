"""
Pydantic models for the GradeGate quality-assurance pipeline.

These models define the strict schemas for:
- Extraction metrics and readiness reports
- Grading input decisions
- Validated grade decisions with per-criterion checks
- Confidence policy, signals and results
- Audit records for reproducibility

Every record is immutable and serializes with camelCase aliases so it can be
stored verbatim as an audit trail alongside the submission.
"""

from datetime import datetime, timezone
from enum import Enum
from hashlib import sha256
from typing import Any
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

# Extraction mode that only reliably captures the cover/identity page.
COVER_ONLY_MODE = "COVER_ONLY"

# Strict config for records the pipeline builds itself.
_RECORD_CONFIG = ConfigDict(
    frozen=True,
    strict=True,
    alias_generator=to_camel,
    populate_by_name=True,
    protected_namespaces=(),
)

# Lax config for records handed over by external collaborators.
_INPUT_CONFIG = ConfigDict(
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
    protected_namespaces=(),
)


def clamp01(value: float) -> float:
    """Clamp a number into [0, 1]."""
    return max(0.0, min(1.0, value))


# ==============================================================================
# Enumerations
# ==============================================================================


class OverallGrade(str, Enum):
    """Overall grade bands a decision may carry."""

    REFER = "REFER"
    PASS = "PASS"
    PASS_ON_RESUBMISSION = "PASS_ON_RESUBMISSION"
    MERIT = "MERIT"
    DISTINCTION = "DISTINCTION"


class CriterionDecision(str, Enum):
    """Outcome of a single criterion check."""

    ACHIEVED = "ACHIEVED"
    NOT_ACHIEVED = "NOT_ACHIEVED"
    UNCLEAR = "UNCLEAR"


class GradingInputMode(str, Enum):
    """Representation of the submission sent to the grading model."""

    EXTRACTED_TEXT = "EXTRACTED_TEXT"
    RAW_PAGE_IMAGES = "RAW_PAGE_IMAGES"


class RequestedInputMode(str, Enum):
    """Caller preference for the grading input representation."""

    AUTO = "AUTO"
    EXTRACTED = "EXTRACTED"
    RAW = "RAW"


class AssessmentStatus(str, Enum):
    """Terminal state of one pass through the pipeline."""

    BLOCKED = "BLOCKED"  # readiness or criteria mapping stopped grading
    REJECTED = "REJECTED"  # model answer failed schema validation
    ASSESSED = "ASSESSED"


# ==============================================================================
# Policy Models
# ==============================================================================


class ReadinessThresholds(BaseModel):
    """Thresholds for the extraction readiness gate."""

    model_config = _INPUT_CONFIG

    min_chars: int = Field(
        default=700,
        ge=200,
        description="Minimum extracted body characters before grading",
    )

    min_confidence: float = Field(
        default=0.68,
        ge=0.4,
        le=0.99,
        description="Minimum overall extraction confidence",
    )

    min_pages: int = Field(
        default=1,
        ge=1,
        description="Minimum page count when a page count is reported",
    )

    max_warnings: int = Field(
        default=8,
        ge=2,
        description="Per-run warning count that becomes a blocker",
    )


class InputStrategyThresholds(BaseModel):
    """
    Thresholds for choosing extracted text over page images.

    Deliberately stricter than the readiness gate: weak text is worse
    for the model than falling back to images.
    """

    model_config = _INPUT_CONFIG

    min_extracted_chars: int = Field(default=2200, ge=300)
    min_extraction_confidence: float = Field(default=0.84, ge=0.55, le=0.99)


class EvidenceGapTier(BaseModel):
    """One step of the tiered evidence-gap confidence cap."""

    model_config = _INPUT_CONFIG

    min_no_evidence_ratio: float = Field(..., ge=0, le=1)
    cap: float = Field(..., ge=0, le=1)
    reason: str = Field(..., min_length=1)


DEFAULT_EVIDENCE_GAP_TIERS: tuple[EvidenceGapTier, ...] = (
    EvidenceGapTier(
        min_no_evidence_ratio=0.5,
        cap=0.72,
        reason="Half or more criteria have no cited evidence.",
    ),
    EvidenceGapTier(
        min_no_evidence_ratio=0.3,
        cap=0.8,
        reason="Many criteria have no cited evidence.",
    ),
    EvidenceGapTier(
        min_no_evidence_ratio=0.2,
        cap=0.86,
        reason="Some criteria have no cited evidence.",
    ),
)


class ConfidencePolicy(BaseModel):
    """
    Calibration constants for the confidence synthesizer.

    The values are tuned empirically. Override them per cohort by
    constructing a new policy rather than editing the defaults.
    """

    model_config = _INPUT_CONFIG

    # Weighted base
    model_weight: float = 0.40
    criterion_weight: float = 0.35
    evidence_weight: float = 0.25

    # Signal derivation
    low_criterion_confidence: float = 0.55
    citations_for_full_evidence: float = Field(default=1.5, gt=0)
    no_evidence_score_penalty: float = 0.35

    # Bonus
    extraction_bonus_threshold: float = Field(default=0.97, ge=0, lt=1)
    extraction_bonus_max: float = 0.04

    # Penalties
    unclear_ratio_weight: float = 0.18
    low_confidence_ratio_weight: float = 0.12
    missing_evidence_weight: float = 0.20
    achieved_without_evidence_penalty: float = 0.20
    modality_penalty_per_missing: float = 0.08
    modality_penalty_max: float = 0.25
    readiness_penalty_per_failure: float = 0.05
    readiness_penalty_max: float = 0.20
    alignment_shortfall_weight: float = 0.18
    alignment_mismatch_weight: float = 0.02
    alignment_penalty_max: float = 0.12

    # Caps
    modality_missing_cap: float = Field(default=0.65, ge=0.2, le=0.95)
    evidence_gap_tiers: tuple[EvidenceGapTier, ...] = DEFAULT_EVIDENCE_GAP_TIERS
    readiness_cap_base: float = 0.90
    readiness_cap_step: float = 0.04
    readiness_cap_max_reduction: float = 0.20
    readiness_cap_floor: float = 0.68
    achieved_without_evidence_cap: float = 0.40
    confidence_floor: float = Field(default=0.20, ge=0, le=1)

    @field_validator("evidence_gap_tiers")
    @classmethod
    def sort_tiers(cls, v: tuple[EvidenceGapTier, ...]) -> tuple[EvidenceGapTier, ...]:
        """Order tiers from the worst gap to the mildest."""
        return tuple(sorted(v, key=lambda t: t.min_no_evidence_ratio, reverse=True))

    @model_validator(mode="after")
    def validate_caps_above_floor(self) -> "ConfidencePolicy":
        """A cap below the floor could never be honored."""
        caps = [
            self.modality_missing_cap,
            self.readiness_cap_floor,
            self.achieved_without_evidence_cap,
            *(t.cap for t in self.evidence_gap_tiers),
        ]
        too_low = [c for c in caps if c < self.confidence_floor]
        if too_low:
            raise ValueError(
                f"Caps {too_low} are below the confidence floor ({self.confidence_floor})"
            )
        return self


# ==============================================================================
# Extraction Readiness Models
# ==============================================================================


class ExtractionMetrics(BaseModel):
    """
    Metrics of one extraction attempt, as reported by the extraction engine.

    A missing count or confidence is kept as None so the gate can tell
    "signal unavailable" apart from "signal is zero".
    """

    model_config = _INPUT_CONFIG

    extracted_char_count: int | None = Field(
        default=None,
        ge=0,
        description="Characters of extracted body text; None when unavailable",
    )

    page_count: int | None = Field(
        default=None,
        ge=0,
        description="Pages seen by the extraction run",
    )

    overall_confidence: float | None = Field(
        default=None,
        ge=0,
        le=1,
        description="Overall extraction confidence in [0, 1]",
    )

    run_status: str = Field(
        default="",
        description="Extraction run status (DONE, NEEDS_OCR, FAILED, ...)",
    )

    warnings: tuple[str, ...] = Field(
        default=(),
        description="Raw warnings reported by the extraction run",
    )

    extraction_mode: str = Field(
        default="UNKNOWN",
        description="Extraction mode reported by the run (e.g. COVER_ONLY)",
    )

    cover_metadata_ready: bool = Field(
        default=False,
        description="Whether structured cover metadata is complete enough to use",
    )

    @field_validator("run_status", mode="before")
    @classmethod
    def normalize_status(cls, v: Any) -> str:
        """Upper-case and trim the run status."""
        return str(v or "").strip().upper()

    @field_validator("extraction_mode", mode="before")
    @classmethod
    def normalize_mode(cls, v: Any) -> str:
        """Upper-case the mode, falling back to UNKNOWN."""
        return str(v or "").strip().upper().replace("-", "_") or "UNKNOWN"

    @field_validator("warnings", mode="before")
    @classmethod
    def normalize_warnings(cls, v: Any) -> tuple[str, ...]:
        """Trim warnings and drop empty ones."""
        if v is None:
            return ()
        if isinstance(v, str):
            v = [v]
        return tuple(str(w).strip() for w in v if str(w or "").strip())

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_cover_only(self) -> bool:
        """Whether the run used cover-only extraction."""
        return self.extraction_mode == COVER_ONLY_MODE


class ReadinessReport(BaseModel):
    """
    Outcome of the extraction readiness gate.

    `ok` holds exactly when there are no blockers. Warnings never block
    but are always surfaced.
    """

    model_config = _RECORD_CONFIG

    ok: bool
    blockers: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    metrics: ExtractionMetrics

    @model_validator(mode="after")
    def validate_ok_matches_blockers(self) -> "ReadinessReport":
        """Ensure `ok` is consistent with the blocker list."""
        if self.ok != (len(self.blockers) == 0):
            raise ValueError("ok must be true exactly when blockers is empty")
        return self


# ==============================================================================
# Grading Input Models
# ==============================================================================


class GradingInputDecision(BaseModel):
    """Which representation of the submission to send to the model, and why."""

    model_config = _RECORD_CONFIG

    mode: GradingInputMode
    requested_mode: RequestedInputMode
    reason: str = Field(..., min_length=1)
    thresholds_used: InputStrategyThresholds


# ==============================================================================
# Grade Decision Models
# ==============================================================================


class EvidenceCitation(BaseModel):
    """A page reference with a quoted or visually described excerpt."""

    model_config = _RECORD_CONFIG

    page: int = Field(..., ge=1)
    quote: str | None = None
    visual_description: str | None = None

    @model_validator(mode="after")
    def validate_has_content(self) -> "EvidenceCitation":
        """Require a quote or a visual description."""
        if not (self.quote or self.visual_description):
            raise ValueError("Evidence needs a quote or a visual description")
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def word_count(self) -> int:
        """Words cited by this excerpt."""
        return len((self.quote or "").split()) + len((self.visual_description or "").split())


class CriterionCheck(BaseModel):
    """
    The model's decision for one criterion.

    An ACHIEVED decision must always cite evidence.
    """

    model_config = _RECORD_CONFIG

    code: str = Field(..., pattern=r"^[PMD]\d+$")
    decision: CriterionDecision
    rationale: str = Field(..., min_length=1)
    evidence: tuple[EvidenceCitation, ...] = ()
    confidence: float = Field(..., ge=0, le=1)

    @model_validator(mode="after")
    def validate_achieved_has_evidence(self) -> "CriterionCheck":
        """No unearned achievement."""
        if self.decision is CriterionDecision.ACHIEVED and not self.evidence:
            raise ValueError(f"{self.code} cannot be ACHIEVED without evidence")
        return self


class GradeDecision(BaseModel):
    """
    A fully validated grade decision.

    Only the decision validator builds these; the criterion codes always
    match the authoritative criteria set exactly.
    """

    model_config = _RECORD_CONFIG

    overall_grade: OverallGrade
    resubmission_required: bool
    feedback_summary: str = Field(..., min_length=1)
    feedback_bullets: tuple[str, ...] = Field(..., min_length=1, max_length=24)
    criterion_checks: tuple[CriterionCheck, ...]
    confidence: float = Field(..., ge=0, le=1)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def overall_grade_word(self) -> OverallGrade:
        """Alias kept for consumers of the older payload shape."""
        return self.overall_grade

    @computed_field  # type: ignore[prop-decorator]
    @property
    def criterion_codes(self) -> tuple[str, ...]:
        """Codes covered by this decision, in answer order."""
        return tuple(c.code for c in self.criterion_checks)


class DecisionValidationResult(BaseModel):
    """Either a validated decision or the full list of schema violations."""

    model_config = _RECORD_CONFIG

    ok: bool
    data: GradeDecision | None = None
    errors: tuple[str, ...] = ()

    @model_validator(mode="after")
    def validate_exclusive(self) -> "DecisionValidationResult":
        """Never expose a decision alongside errors."""
        if self.ok and (self.data is None or self.errors):
            raise ValueError("A successful result carries data and no errors")
        if not self.ok and (self.data is not None or not self.errors):
            raise ValueError("A failed result carries errors and no data")
        return self


# ==============================================================================
# Criteria and Evidence Models
# ==============================================================================


class CriteriaAlignment(BaseModel):
    """Agreement between the mapped criteria set and the brief's criteria."""

    model_config = _RECORD_CONFIG

    mapped: tuple[str, ...]
    brief: tuple[str, ...]
    intersection: tuple[str, ...]
    missing_in_map: tuple[str, ...]
    extra_in_map: tuple[str, ...]
    overlap_ratio: float = Field(..., ge=0, le=1)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def mismatch_count(self) -> int:
        """Codes present on one side only."""
        return len(self.missing_in_map) + len(self.extra_in_map)

    def is_blocking(self, min_overlap_ratio: float, mismatch_block_count: int) -> bool:
        """Whether the mapping is too far out of sync to grade."""
        return (
            len(self.brief) >= 2
            and self.mismatch_count >= mismatch_block_count
            and self.overlap_ratio < min_overlap_ratio
        )


class CriterionEvidenceDensity(BaseModel):
    """Evidence statistics for one criterion check."""

    model_config = _RECORD_CONFIG

    code: str
    citation_count: int = Field(..., ge=0)
    total_words_cited: int = Field(..., ge=0)
    page_distribution: tuple[int, ...] = ()

    @computed_field  # type: ignore[prop-decorator]
    @property
    def page_spread(self) -> int:
        """Distinct pages cited."""
        return len(self.page_distribution)


class EvidenceDensitySummary(BaseModel):
    """Evidence statistics aggregated over a whole decision."""

    model_config = _INPUT_CONFIG

    criteria_count: int = Field(default=0, ge=0)
    total_citations: int = Field(default=0, ge=0)
    total_words_cited: int = Field(default=0, ge=0)
    criteria_without_evidence: int = Field(default=0, ge=0)


# ==============================================================================
# Confidence Models
# ==============================================================================


class CriterionSignal(BaseModel):
    """
    Loosely-typed criterion row consumed by the confidence synthesizer.

    Unlike CriterionCheck this does not enforce the evidence invariant, so
    relaxed call sites can still be scored (and penalized).
    """

    model_config = _INPUT_CONFIG

    decision: CriterionDecision | None = None
    confidence: float = 0.0
    evidence_count: int = Field(default=0, ge=0)

    @field_validator("decision", mode="before")
    @classmethod
    def normalize_decision(cls, v: Any) -> Any:
        """Accept any casing; unknown tokens count as no decision."""
        if v is None or isinstance(v, CriterionDecision):
            return v
        token = str(v).strip().upper().replace(" ", "_")
        return token if token in CriterionDecision.__members__ else None

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        """Non-numeric confidence counts as zero."""
        try:
            number = float(v)
        except (TypeError, ValueError, OverflowError):
            return 0.0
        if number != number or number in (float("inf"), float("-inf")):
            return 0.0
        return clamp01(number)

    @classmethod
    def from_check(cls, check: CriterionCheck) -> "CriterionSignal":
        """Build a signal row from a validated check."""
        return cls(
            decision=check.decision,
            confidence=check.confidence,
            evidence_count=len(check.evidence),
        )


class ConfidenceInputs(BaseModel):
    """Everything the confidence synthesizer reads for one grading attempt."""

    model_config = _INPUT_CONFIG

    model_confidence: float = Field(default=0.0, ge=0, le=1)
    extraction_confidence: float = Field(default=0.0, ge=0, le=1)
    extraction_mode: str = "UNKNOWN"
    criterion_checks: tuple[CriterionSignal, ...] = ()
    evidence_density: EvidenceDensitySummary | None = None
    readiness_checklist: dict[str, bool] = Field(default_factory=dict)
    modality_missing_count: int = Field(default=0, ge=0)
    criteria_alignment_overlap_ratio: float = Field(default=1.0, ge=0, le=1)
    criteria_alignment_mismatch_count: int = Field(default=0, ge=0)

    @field_validator("extraction_mode", mode="before")
    @classmethod
    def normalize_mode(cls, v: Any) -> str:
        """Upper-case the mode, falling back to UNKNOWN."""
        return str(v or "").strip().upper().replace("-", "_") or "UNKNOWN"


class ConfidenceCap(BaseModel):
    """A named ceiling the final confidence may not exceed."""

    model_config = _RECORD_CONFIG

    name: str
    value: float = Field(..., ge=0, le=1)
    reason: str


class ConfidenceBonuses(BaseModel):
    """Additive adjustments."""

    model_config = _RECORD_CONFIG

    extraction_high_confidence_bonus: float = 0.0


class ConfidencePenalties(BaseModel):
    """Subtractive adjustments, all independent."""

    model_config = _RECORD_CONFIG

    unclear_ratio_penalty: float = 0.0
    low_criterion_confidence_penalty: float = 0.0
    missing_evidence_penalty: float = 0.0
    achieved_without_evidence_penalty: float = 0.0
    modality_missing_penalty: float = 0.0
    readiness_penalty: float = 0.0
    criteria_alignment_penalty: float = 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> float:
        """Sum of all penalties."""
        return round(
            self.unclear_ratio_penalty
            + self.low_criterion_confidence_penalty
            + self.missing_evidence_penalty
            + self.achieved_without_evidence_penalty
            + self.modality_missing_penalty
            + self.readiness_penalty
            + self.criteria_alignment_penalty,
            3,
        )


class ConfidenceSignals(BaseModel):
    """Derived, read-only signals behind a confidence score."""

    model_config = _RECORD_CONFIG

    model_confidence: float
    criterion_average_confidence: float
    evidence_score: float
    extraction_confidence: float
    extraction_mode: str
    total_criteria: int
    unclear_count: int
    unclear_ratio: float
    low_criterion_confidence_count: int
    low_confidence_ratio: float
    criteria_without_evidence: int
    no_evidence_ratio: float
    achieved_without_evidence_count: int
    total_citations: int
    citations_per_criterion: float
    readiness_failures: tuple[str, ...]
    modality_missing_count: int
    criteria_alignment_overlap_ratio: float
    criteria_alignment_mismatch_count: int


class ConfidenceResult(BaseModel):
    """Calibrated confidence for one grading attempt."""

    model_config = _RECORD_CONFIG

    final_confidence: float = Field(..., ge=0, le=1)
    weighted_base_confidence: float
    raw_confidence_before_caps: float
    bonuses: ConfidenceBonuses
    penalties: ConfidencePenalties
    caps_applied: tuple[ConfidenceCap, ...] = ()
    signals: ConfidenceSignals
    was_capped: bool

    @model_validator(mode="after")
    def validate_caps_respected(self) -> "ConfidenceResult":
        """The final score never exceeds a cap that bound it."""
        if self.was_capped != bool(self.caps_applied):
            raise ValueError("was_capped must reflect caps_applied")
        if self.caps_applied and self.final_confidence > min(c.value for c in self.caps_applied):
            raise ValueError("final_confidence exceeds an applied cap")
        return self


# ==============================================================================
# Pipeline Models
# ==============================================================================


class PreparedSubmission(BaseModel):
    """Pre-grading decisions for one submission."""

    model_config = _RECORD_CONFIG

    readiness: ReadinessReport
    input_decision: GradingInputDecision
    criteria_alignment: CriteriaAlignment | None = None
    blockers: tuple[str, ...] = ()

    @computed_field  # type: ignore[prop-decorator]
    @property
    def can_grade(self) -> bool:
        """Whether the model may be called at all."""
        return not self.blockers


class AuditRecord(BaseModel):
    """
    Immutable audit record for reproducibility.

    Contains hashes of inputs and outputs to enable verification
    that the same inputs produce the same outputs.
    """

    model_config = _RECORD_CONFIG

    audit_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    answer_hash: str
    criteria_hash: str
    result_hash: str
    status: AssessmentStatus
    input_mode: GradingInputMode
    final_confidence: float | None = None

    @staticmethod
    def compute_hash(content: str) -> str:
        """Compute SHA-256 hash of content."""
        return sha256(content.encode("utf-8")).hexdigest()


class AssessmentOutcome(BaseModel):
    """Everything the persistence layer stores for one grading attempt."""

    model_config = _RECORD_CONFIG

    status: AssessmentStatus
    prepared: PreparedSubmission
    decision: GradeDecision | None = None
    errors: tuple[str, ...] = ()
    confidence: ConfidenceResult | None = None
    audit: AuditRecord
