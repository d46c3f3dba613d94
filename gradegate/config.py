"""
Configuration management for the GradeGate pipeline.

Uses Pydantic Settings for type-safe configuration loading from environment variables.
All configuration is validated at startup to fail fast on misconfiguration.

Components never read settings themselves: the settings build immutable
threshold objects that are passed into each component by value.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from gradegate.models import (
    ConfidencePolicy,
    InputStrategyThresholds,
    ReadinessThresholds,
    RequestedInputMode,
)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every option can be overridden with a ``GRADEGATE_`` prefixed variable,
    e.g. ``GRADEGATE_READINESS_MIN_CHARS=900``. Operators tune these per
    cohort or assignment type.
    """

    model_config = SettingsConfigDict(
        env_prefix="GRADEGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Readiness Gate
    # ==========================================================================
    readiness_min_chars: int = Field(
        default=700,
        ge=200,
        description="Minimum extracted characters before grading may proceed",
    )

    readiness_min_confidence: float = Field(
        default=0.68,
        ge=0.4,
        le=0.99,
        description="Minimum overall extraction confidence",
    )

    readiness_min_pages: int = Field(
        default=1,
        ge=1,
        description="Minimum page count when a page count is reported",
    )

    readiness_max_warnings: int = Field(
        default=8,
        ge=2,
        description="Number of extraction warnings that blocks grading",
    )

    # ==========================================================================
    # Input Strategy
    # ==========================================================================
    input_min_extracted_chars: int = Field(
        default=2200,
        ge=300,
        description="Minimum characters to grade from extracted text in AUTO mode",
    )

    input_min_extraction_confidence: float = Field(
        default=0.84,
        ge=0.55,
        le=0.99,
        description="Minimum extraction confidence to grade from extracted text in AUTO mode",
    )

    default_input_mode: RequestedInputMode = Field(
        default=RequestedInputMode.AUTO,
        description="Input mode used when the caller does not request one",
    )

    # ==========================================================================
    # Confidence
    # ==========================================================================
    modality_missing_confidence_cap: float = Field(
        default=0.65,
        ge=0.2,
        le=0.95,
        description="Confidence ceiling when required modality evidence is missing",
    )

    # ==========================================================================
    # Criteria Mapping
    # ==========================================================================
    alignment_min_overlap_ratio: float = Field(
        default=0.65,
        ge=0.3,
        le=0.95,
        description="Overlap ratio below which a mapping mismatch can block grading",
    )

    alignment_mismatch_block_count: int = Field(
        default=2,
        ge=1,
        le=8,
        description="Mismatched criteria codes needed before a mapping blocks grading",
    )

    def readiness_thresholds(self) -> ReadinessThresholds:
        """Thresholds for the readiness gate."""
        return ReadinessThresholds(
            min_chars=self.readiness_min_chars,
            min_confidence=self.readiness_min_confidence,
            min_pages=self.readiness_min_pages,
            max_warnings=self.readiness_max_warnings,
        )

    def input_strategy_thresholds(self) -> InputStrategyThresholds:
        """Thresholds for the input strategy selector."""
        return InputStrategyThresholds(
            min_extracted_chars=self.input_min_extracted_chars,
            min_extraction_confidence=self.input_min_extraction_confidence,
        )

    def confidence_policy(self) -> ConfidencePolicy:
        """Default calibration with the configured modality cap."""
        return ConfidencePolicy(modality_missing_cap=self.modality_missing_confidence_cap)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.
    """
    return Settings()
