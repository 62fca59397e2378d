"""Similarity primitives and duplicate detection."""

from ledger_learning.matching.duplicates import (
    DuplicateDetectionResult,
    DuplicateDetector,
    DuplicateGroup,
    DuplicateResolutionSuggestion,
    DuplicateType,
    ResolutionAction,
)
from ledger_learning.matching.similarity import (
    amounts_within_tolerance,
    dates_within_tolerance,
    levenshtein_distance,
    text_similarity,
)

__all__ = [
    "DuplicateDetectionResult",
    "DuplicateDetector",
    "DuplicateGroup",
    "DuplicateResolutionSuggestion",
    "DuplicateType",
    "ResolutionAction",
    "amounts_within_tolerance",
    "dates_within_tolerance",
    "levenshtein_distance",
    "text_similarity",
]
