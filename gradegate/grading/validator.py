"""
Grade decision validator.

Treats the grading model's answer as hostile input. The answer is parsed
(if it arrives as text), every field is checked against the decision
schema and the authoritative criteria set, and only a fully valid answer
is projected into a GradeDecision. All violations are collected so one
answer yields a complete diagnostic list.
"""

import json
import math
import re
from typing import Any, Iterable, Mapping

import logfire
from pydantic import BaseModel

from gradegate import GradeGateError
from gradegate.criteria.codes import authoritative_codes, normalize_criterion_code
from gradegate.models import (
    CriterionCheck,
    CriterionDecision,
    DecisionValidationResult,
    EvidenceCitation,
    GradeDecision,
    OverallGrade,
    clamp01,
)

MAX_FEEDBACK_BULLETS = 24

_GRADE_ALIASES = {
    "FAIL": OverallGrade.REFER,
    "PASS_ON_RESUB": OverallGrade.PASS_ON_RESUBMISSION,
    "PASS_RESUBMISSION": OverallGrade.PASS_ON_RESUBMISSION,
}

_DECISION_ALIASES = {
    "NOTACHIEVED": CriterionDecision.NOT_ACHIEVED,
    "NOT-ACHIEVED": CriterionDecision.NOT_ACHIEVED,
}


class DecisionValidationError(GradeGateError):
    """Raised by `validate_or_raise` when a model answer is invalid."""

    def __init__(self, errors: Iterable[str]):
        self.errors = list(errors)
        message = "Grade decision validation failed:\n" + "\n".join(
            f"  - {e}" for e in self.errors
        )
        super().__init__(message)


# ==============================================================================
# Normalization helpers
# ==============================================================================


def normalize_text(value: Any) -> str:
    """Trim a text field and tidy its whitespace; non-text becomes empty."""
    if not isinstance(value, str):
        return ""
    text = value.replace("\u00a0", " ")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" ?\n ?", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def parse_unit_interval(value: Any) -> float | None:
    """Read a finite number and clamp it to [0, 1]; None if not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(number):
        return None
    return clamp01(number)


def _parse_page(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        page = value
    elif isinstance(value, float) and value.is_integer():
        page = int(value)
    elif isinstance(value, str) and re.fullmatch(r"[0-9]{1,6}", value.strip()):
        page = int(value.strip())
    else:
        return None
    return page if page >= 1 else None


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    """First non-null value among camelCase and snake_case spellings."""
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def _as_list(value: Any) -> list[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _preview(value: Any, limit: int = 40) -> str:
    """Short form of an untrusted value for error messages."""
    if not isinstance(value, str):
        return type(value).__name__
    return value if len(value) <= limit else value[:limit] + "..."


def normalize_grade(value: Any) -> OverallGrade | None:
    """Normalize an overall grade token; None when it is not a grade."""
    if isinstance(value, OverallGrade):
        return value
    if not isinstance(value, str):
        return None
    token = re.sub(r"\s+", "_", value.strip().upper())
    if token in _GRADE_ALIASES:
        return _GRADE_ALIASES[token]
    return OverallGrade.__members__.get(token)


def normalize_decision(value: Any, met_fallback: Any = None) -> CriterionDecision | None:
    """
    Normalize a criterion decision.

    An explicit token wins and must be valid. The legacy boolean `met`
    flag is only consulted when no token was given.
    """
    if isinstance(value, CriterionDecision):
        return value
    token = re.sub(r"\s+", "_", str(value).strip().upper()) if value is not None else ""
    if token:
        if token in _DECISION_ALIASES:
            return _DECISION_ALIASES[token]
        return CriterionDecision.__members__.get(token)
    if isinstance(met_fallback, bool):
        return CriterionDecision.ACHIEVED if met_fallback else CriterionDecision.NOT_ACHIEVED
    return None


def normalize_evidence(value: Any) -> EvidenceCitation | None:
    """Normalize one evidence entry; malformed entries become None."""
    if not isinstance(value, Mapping):
        return None
    page = _parse_page(value.get("page"))
    quote = normalize_text(value.get("quote"))
    visual = normalize_text(_pick(value, "visualDescription", "visual_description"))
    if page is None or not (quote or visual):
        return None
    return EvidenceCitation(
        page=page,
        quote=quote or None,
        visual_description=visual or None,
    )


# ==============================================================================
# Validator
# ==============================================================================


class DecisionValidator:
    """
    Validates grading model answers against the decision schema.

    Ensures:
    1. The overall grade is a known band
    2. Feedback summary and bullets are present
    3. Every authoritative criterion is checked exactly once
    4. ACHIEVED criteria always cite evidence
    5. Confidences are finite numbers in [0, 1]
    """

    def validate(self, raw: Any, criteria_codes: Iterable[str]) -> DecisionValidationResult:
        """
        Validate a raw model answer.

        Args:
            raw: Answer as JSON text, a mapping, or a GradeDecision.
            criteria_codes: Authoritative criteria codes, in order.

        Returns:
            DecisionValidationResult with either the decision or every error.
        """
        errors: list[str] = []
        payload = self._to_payload(raw, errors)

        grade = normalize_grade(
            _pick(payload, "overallGradeWord", "overallGrade", "overall_grade_word", "overall_grade")
        )
        if grade is None:
            errors.append(
                "overallGrade must be one of REFER/PASS/PASS_ON_RESUBMISSION/MERIT/DISTINCTION "
                "(FAIL accepted and normalized to REFER)."
            )

        feedback_summary = normalize_text(_pick(payload, "feedbackSummary", "feedback_summary"))
        if not feedback_summary:
            errors.append("feedbackSummary is required.")

        bullets = [
            b
            for b in (
                normalize_text(item)
                for item in _as_list(_pick(payload, "feedbackBullets", "feedback_bullets"))
            )
            if b
        ][:MAX_FEEDBACK_BULLETS]
        if not bullets:
            errors.append("feedbackBullets must contain at least one non-empty bullet.")

        resubmission_raw = _pick(payload, "resubmissionRequired", "resubmission_required")
        if isinstance(resubmission_raw, bool):
            resubmission_required = resubmission_raw
        else:
            resubmission_required = grade is OverallGrade.REFER
            if resubmission_raw is not None:
                errors.append("resubmissionRequired must be boolean when provided.")

        expected = authoritative_codes(criteria_codes)
        checks = self._validate_checks(
            _as_list(_pick(payload, "criterionChecks", "criterion_checks")),
            expected,
            errors,
        )

        confidence = parse_unit_interval(payload.get("confidence"))
        if confidence is None:
            errors.append("confidence must be a number between 0 and 1.")

        if errors:
            logfire.debug("Grade decision rejected", error_count=len(errors))
            return DecisionValidationResult(ok=False, errors=tuple(errors))

        decision = GradeDecision(
            overall_grade=grade,  # type: ignore[arg-type]
            resubmission_required=resubmission_required,
            feedback_summary=feedback_summary,
            feedback_bullets=tuple(bullets),
            criterion_checks=tuple(checks),
            confidence=confidence,  # type: ignore[arg-type]
        )
        return DecisionValidationResult(ok=True, data=decision)

    def validate_or_raise(self, raw: Any, criteria_codes: Iterable[str]) -> GradeDecision:
        """
        Validate a raw model answer and raise if invalid.

        Raises:
            DecisionValidationError: If the answer violates the schema.
        """
        result = self.validate(raw, criteria_codes)
        if not result.ok or result.data is None:
            raise DecisionValidationError(result.errors)
        return result.data

    def _to_payload(self, raw: Any, errors: list[str]) -> Mapping[str, Any]:
        """Turn the raw answer into a mapping, recording why if it cannot be."""
        if isinstance(raw, BaseModel):
            return raw.model_dump(by_alias=True, mode="json")
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        if isinstance(raw, str):
            json_str = self._extract_json(raw, errors)
            if json_str is None:
                return {}
            try:
                raw = json.loads(json_str)
            except (ValueError, RecursionError) as e:
                errors.append(f"Answer is not valid JSON: {e}.")
                return {}
        if isinstance(raw, Mapping):
            return raw
        errors.append("Answer must be a JSON object.")
        return {}

    def _extract_json(self, response: str, errors: list[str]) -> str | None:
        """
        Extract JSON from answer text, handling common formats.

        Args:
            response: Raw answer text.
            errors: Error list to append to.

        Returns:
            Extracted JSON string, or None.
        """
        # Remove markdown code block if present
        json_match = re.search(r"```(?:json)?\s*([\s\S]*?)```", response)
        if json_match:
            return json_match.group(1).strip()

        # Look for the outermost { }
        brace_start = response.find("{")
        if brace_start == -1:
            errors.append("No JSON object found in answer.")
            return None

        depth = 0
        for i, char in enumerate(response[brace_start:], start=brace_start):
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return response[brace_start : i + 1]

        errors.append("Unclosed JSON object in answer.")
        return None

    def _validate_checks(
        self, rows: list[Any], expected: list[str], errors: list[str]
    ) -> list[CriterionCheck]:
        """
        Validate criterion rows against the authoritative codes.

        Args:
            rows: Raw criterion rows from the answer.
            expected: Authoritative codes.
            errors: Error list to append to.

        Returns:
            CriterionCheck objects for the rows that passed.
        """
        if not rows:
            errors.append("criterionChecks is required.")

        expected_set = set(expected)
        seen: set[str] = set()
        checks: list[CriterionCheck] = []

        for index, row in enumerate(rows):
            if not isinstance(row, Mapping):
                errors.append(f"criterionChecks[{index}] must be an object.")
                continue

            raw_code = row.get("code")
            if raw_code is None or (isinstance(raw_code, str) and not raw_code.strip()):
                errors.append(f"criterionChecks[{index}].code is required.")
                continue
            code = normalize_criterion_code(raw_code)
            if code is None:
                errors.append(
                    f"criterionChecks[{index}].code is not a valid criterion code: {_preview(raw_code)}."
                )
                continue
            if code not in expected_set:
                errors.append(f"criterionChecks contains unknown code: {code}.")
                continue
            if code in seen:
                errors.append(f"criterionChecks contains duplicate code: {code}.")
                continue
            seen.add(code)

            check = self._validate_row(code, row, errors)
            if check is not None:
                checks.append(check)

        for code in expected:
            if code not in seen:
                errors.append(f"Missing criterion check for code: {code}.")

        return checks

    def _validate_row(
        self, code: str, row: Mapping[str, Any], errors: list[str]
    ) -> CriterionCheck | None:
        """Validate one criterion row whose code is already known to be valid."""
        row_errors: list[str] = []

        decision = normalize_decision(row.get("decision"), row.get("met"))
        if decision is None:
            row_errors.append(
                f"criterionChecks[{code}].decision is required and must be "
                "ACHIEVED/NOT_ACHIEVED/UNCLEAR."
            )

        rationale = normalize_text(_pick(row, "rationale", "comment"))
        if not rationale:
            row_errors.append(f"criterionChecks[{code}].rationale is required.")

        # Malformed citations are dropped; only an ACHIEVED row needs one to survive.
        evidence = [
            e for e in (normalize_evidence(item) for item in _as_list(row.get("evidence"))) if e
        ]
        if decision is CriterionDecision.ACHIEVED and not evidence:
            row_errors.append(f"criterionChecks[{code}] cannot be ACHIEVED without evidence.")

        confidence = parse_unit_interval(row.get("confidence"))
        if confidence is None:
            row_errors.append(f"criterionChecks[{code}].confidence must be a number between 0 and 1.")

        if row_errors:
            errors.extend(row_errors)
            return None

        return CriterionCheck(
            code=code,
            decision=decision,  # type: ignore[arg-type]
            rationale=rationale,
            evidence=tuple(evidence),
            confidence=confidence,  # type: ignore[arg-type]
        )


def validate_grade_decision(raw: Any, criteria_codes: Iterable[str]) -> DecisionValidationResult:
    """Validate a raw model answer with a default validator."""
    return DecisionValidator().validate(raw, criteria_codes)
