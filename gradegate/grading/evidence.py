"""
Evidence density statistics for a validated decision.

Counts how much evidence the model cited per criterion. The summary feeds
the confidence synthesizer and is stored with the audit trail.
"""

from typing import Iterable

from gradegate.models import CriterionCheck, CriterionEvidenceDensity, EvidenceDensitySummary


def build_evidence_density(
    checks: Iterable[CriterionCheck],
) -> tuple[CriterionEvidenceDensity, ...]:
    """Per-criterion citation counts, cited words and cited pages."""
    return tuple(
        CriterionEvidenceDensity(
            code=check.code,
            citation_count=len(check.evidence),
            total_words_cited=sum(e.word_count for e in check.evidence),
            page_distribution=tuple(sorted({e.page for e in check.evidence})),
        )
        for check in checks
    )


def summarize_evidence_density(
    rows: Iterable[CriterionEvidenceDensity],
) -> EvidenceDensitySummary:
    """Aggregate per-criterion density into one summary."""
    rows = list(rows)
    return EvidenceDensitySummary(
        criteria_count=len(rows),
        total_citations=sum(r.citation_count for r in rows),
        total_words_cited=sum(r.total_words_cited for r in rows),
        criteria_without_evidence=sum(1 for r in rows if r.citation_count == 0),
    )
