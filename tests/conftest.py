"""
Pytest configuration and fixtures.

Provides common test fixtures for all test modules.
"""

import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Generator

import pytest

# Log calls made before configure_logging() must not warn during tests.
os.environ["LOGFIRE_IGNORE_NO_CONFIG"] = "1"

from gradegate.config import Settings  # noqa: E402
from gradegate.models import ExtractionMetrics  # noqa: E402


# ==============================================================================
# Directory Fixtures
# ==============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ==============================================================================
# Extraction Fixtures
# ==============================================================================


@pytest.fixture
def strong_metrics() -> ExtractionMetrics:
    """A long, confident, completed extraction."""
    return ExtractionMetrics(
        extracted_char_count=5200,
        page_count=6,
        overall_confidence=0.93,
        run_status="DONE",
        extraction_mode="FULL",
    )


@pytest.fixture
def cover_only_metrics() -> ExtractionMetrics:
    """A cover-only extraction with usable cover metadata."""
    return ExtractionMetrics(
        extracted_char_count=120,
        page_count=3,
        overall_confidence=0.9,
        run_status="DONE",
        extraction_mode="COVER_ONLY",
        cover_metadata_ready=True,
    )


@pytest.fixture
def extraction_run() -> dict[str, Any]:
    """A raw extraction run record as stored by the extraction engine."""
    return {
        "status": "done",
        "overallConfidence": 0.91,
        "pageCount": 4,
        "warnings": ["Table on page 3 may be incomplete"],
        "sourceMeta": {
            "extractionMode": "full",
            "derivedTextChars": 4100,
            "coverMetadata": {
                "studentName": {"value": "A. Student"},
                "unitCode": {"value": "U4"},
                "confidence": 0.8,
            },
        },
    }


# ==============================================================================
# Answer Fixtures
# ==============================================================================


@pytest.fixture
def criteria_codes() -> list[str]:
    """Authoritative criteria for a small brief."""
    return ["P1", "P2", "M1"]


def make_row(
    code: str,
    decision: str = "ACHIEVED",
    citations: int = 1,
    confidence: float = 0.9,
) -> dict[str, Any]:
    """Build one criterion row of a model answer."""
    return {
        "code": code,
        "decision": decision,
        "rationale": f"Assessment of {code} against the submitted work.",
        "evidence": [
            {"page": i + 1, "quote": f"Evidence sentence {i + 1} for {code}."}
            for i in range(citations)
        ],
        "confidence": confidence,
    }


@pytest.fixture
def row_factory() -> Callable[..., dict[str, Any]]:
    """Factory for criterion rows."""
    return make_row


@pytest.fixture
def valid_answer(criteria_codes: list[str]) -> dict[str, Any]:
    """A model answer that satisfies the decision schema."""
    return {
        "overallGrade": "MERIT",
        "resubmissionRequired": False,
        "feedbackSummary": "A well-evidenced submission that meets the merit criteria.",
        "feedbackBullets": [
            "Clear explanation of the core concepts.",
            "Merit analysis is supported by worked examples.",
        ],
        "criterionChecks": [make_row(code, citations=2) for code in criteria_codes],
        "confidence": 0.88,
    }


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings with the default thresholds, independent of the environment."""
    return Settings(_env_file=None)
