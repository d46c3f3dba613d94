"""
Criteria Module.

Criterion code normalization and alignment between criteria sets.
"""

from gradegate.criteria.alignment import compare_criteria_alignment
from gradegate.criteria.codes import (
    authoritative_codes,
    extract_criteria_codes,
    normalize_criterion_code,
    sort_criteria_codes,
    unique_sorted_codes,
)

__all__ = [
    "authoritative_codes",
    "compare_criteria_alignment",
    "extract_criteria_codes",
    "normalize_criterion_code",
    "sort_criteria_codes",
    "unique_sorted_codes",
]
