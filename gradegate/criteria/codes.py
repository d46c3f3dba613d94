"""
Criterion code handling.

A criterion code is a band letter (P = Pass, M = Merit, D = Distinction)
followed by a number, e.g. ``M2``. Codes are normalized before any
comparison so that ``"p 01"`` and ``"P1"`` are the same criterion.
"""

import re
from typing import Any, Iterable

BAND_ORDER = ("P", "M", "D")

_CODE_PATTERN = re.compile(r"^([PMD])\s*([0-9]{1,4})$")
_CODE_IN_TEXT_PATTERN = re.compile(r"\b([PMD])\s*([0-9]{1,4})\b", re.IGNORECASE)

# Synthetic extraction markers such as [[EQ:p4-eq1]] look like codes.
_MARKER_PATTERN = re.compile(r"\[\[[^\]]+\]\]")


def normalize_criterion_code(value: Any) -> str | None:
    """
    Normalize a criterion code.

    Args:
        value: Raw code, e.g. ``" m 02 "``.

    Returns:
        The canonical code (``"M2"``), or None when the value is not a code.
    """
    if not isinstance(value, str):
        return None
    match = _CODE_PATTERN.match(value.strip().upper())
    if not match:
        return None
    return f"{match.group(1)}{int(match.group(2))}"


def _sort_key(code: str) -> tuple[int, int, str]:
    band = BAND_ORDER.index(code[0]) if code[:1] in BAND_ORDER else len(BAND_ORDER)
    digits = re.search(r"[0-9]{1,4}", code)
    return band, int(digits.group(0)) if digits else 0, code


def sort_criteria_codes(codes: Iterable[str]) -> list[str]:
    """Sort codes by band (P, M, D) then by number."""
    return sorted(codes, key=_sort_key)


def unique_sorted_codes(codes: Iterable[Any]) -> list[str]:
    """Normalize, de-duplicate and sort codes, dropping anything invalid."""
    normalized = {c for c in (normalize_criterion_code(v) for v in codes) if c}
    return sort_criteria_codes(normalized)


def extract_criteria_codes(text: str) -> list[str]:
    """
    Find every criterion code mentioned in free text.

    Args:
        text: Brief or unit handbook text.

    Returns:
        Unique codes in band order.
    """
    if not text:
        return []
    scrubbed = _MARKER_PATTERN.sub(" ", text)
    return unique_sorted_codes(f"{m.group(1)}{m.group(2)}" for m in _CODE_IN_TEXT_PATTERN.finditer(scrubbed))


def authoritative_codes(codes: Iterable[Any]) -> list[str]:
    """
    Prepare the authoritative criteria set for validation.

    Order is preserved and duplicates removed. A code that does not
    normalize is kept upper-cased so that it is still reported as missing
    rather than silently dropped from the set.
    """
    seen: dict[str, None] = {}
    for value in codes:
        raw = str(value or "").strip().upper()
        if not raw:
            continue
        seen.setdefault(normalize_criterion_code(raw) or raw, None)
    return list(seen)
