"""
Criteria alignment between a mapped criteria set and the brief.

The grading criteria come from a locked mapping; the brief's own text
names criteria too. When the two disagree the grading scope is suspect,
which lowers confidence and, past a threshold, blocks grading.
"""

from typing import Iterable

from gradegate.criteria.codes import authoritative_codes
from gradegate.models import CriteriaAlignment


def compare_criteria_alignment(
    mapped_codes: Iterable[str], brief_codes: Iterable[str]
) -> CriteriaAlignment:
    """
    Compare the mapped criteria set with the brief's criteria.

    Args:
        mapped_codes: Codes the submission will be graded against.
        brief_codes: Codes found in the brief.

    Returns:
        CriteriaAlignment with overlap ratio and mismatches.
    """
    mapped = authoritative_codes(mapped_codes)
    brief = authoritative_codes(brief_codes)
    mapped_set = set(mapped)
    brief_set = set(brief)

    intersection = [c for c in mapped if c in brief_set]
    denominator = max(1, len(mapped), len(brief))

    return CriteriaAlignment(
        mapped=tuple(mapped),
        brief=tuple(brief),
        intersection=tuple(intersection),
        missing_in_map=tuple(c for c in brief if c not in mapped_set),
        extra_in_map=tuple(c for c in mapped if c not in brief_set),
        overlap_ratio=len(intersection) / denominator,
    )
