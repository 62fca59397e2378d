"""
Similarity primitives.

Pure, deterministic functions shared by duplicate detection and
correction clustering:
- text_similarity: normalized Levenshtein similarity in [0, 1]
- dates_within_tolerance: day-window check on timestamps
- amounts_within_tolerance: absolute/relative amount check

No function here has side effects.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Union

SECONDS_PER_DAY = 86400

# One cent, expressed in currency units
DEFAULT_ABSOLUTE_TOLERANCE = Decimal("0.01")

Number = Union[Decimal, float, int]

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # Keep the shorter string in the inner loop
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(
                min(
                    previous[j] + 1,  # deletion
                    current[j - 1] + 1,  # insertion
                    previous[j - 1] + cost,  # substitution
                )
            )
        previous = current
    return previous[-1]


def text_similarity(a: str, b: str) -> float:
    """
    Normalized edit-distance similarity.

    1 - levenshtein(a, b) / max(len(a), len(b)).
    Two empty strings are identical (1.0); exactly one empty string gives 0.0.
    """
    a = a or ""
    b = b or ""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    longest = max(len(a), len(b))
    return 1.0 - levenshtein_distance(a, b) / longest


def normalize_description(description: str) -> str:
    """Lowercase, replace punctuation with spaces, collapse whitespace."""
    text = _NON_WORD.sub(" ", (description or "").lower())
    return _WHITESPACE.sub(" ", text).strip()


def description_similarity(a: str, b: str) -> float:
    """text_similarity over normalized descriptions."""
    return text_similarity(normalize_description(a), normalize_description(b))


def word_similarity(a: str, b: str) -> float:
    """Jaccard overlap of words longer than two characters."""
    words_a = {w for w in normalize_description(a).split(" ") if len(w) > 2}
    words_b = {w for w in normalize_description(b).split(" ") if len(w) > 2}
    if not words_a and not words_b:
        return 1.0
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def dates_within_tolerance(d1: datetime, d2: datetime, tolerance_days: float) -> bool:
    """True if the two timestamps are at most tolerance_days apart."""
    delta = abs((d1 - d2).total_seconds())
    return delta <= tolerance_days * SECONDS_PER_DAY


def days_between(d1: datetime, d2: datetime) -> float:
    """Absolute distance in (fractional) days."""
    return abs((d1 - d2).total_seconds()) / SECONDS_PER_DAY


def _as_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def amounts_within_tolerance(
    a1: Number,
    a2: Number,
    absolute: Number = DEFAULT_ABSOLUTE_TOLERANCE,
    percent: Number = 0,
) -> bool:
    """
    True if |a1 - a2| <= max(absolute, percent * max(|a1|, |a2|)).

    Args:
        a1: First amount (signed).
        a2: Second amount (signed).
        absolute: Absolute tolerance in currency units (default one cent).
        percent: Relative tolerance as a fraction (0.2 = 20%).
    """
    x = _as_decimal(a1)
    y = _as_decimal(a2)
    allowed = max(_as_decimal(absolute), _as_decimal(percent) * max(abs(x), abs(y)))
    return abs(x - y) <= allowed
