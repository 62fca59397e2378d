"""Rule suggestion mining.

Analyzes accumulated user corrections, grouped by corrected category, and
proposes candidate rules of three kinds:
- merchant: merchant name contains X           (confidence min(0.9, n * 0.2))
- description: description contains token X    (confidence min(0.8, n * 0.15))
- amount: amount between +/-10% of a bucket mean (confidence min(0.7, n * 0.1))

Mining is pure: it reads corrections and returns suggestions. Keeping and
accepting suggestions is the rule manager's job.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Iterable
from decimal import Decimal

from ..learning.features import suggestion_tokens
from ..schemas.feedback import UserCorrection
from ..schemas.rules import (
    ActionType,
    RuleAction,
    RuleSuggestion,
    numeric_condition,
    string_condition,
)

logger = logging.getLogger(__name__)

MERCHANT_CONFIDENCE_STEP = 0.2
MERCHANT_CONFIDENCE_CAP = 0.9
DESCRIPTION_CONFIDENCE_STEP = 0.15
DESCRIPTION_CONFIDENCE_CAP = 0.8
AMOUNT_CONFIDENCE_STEP = 0.1
AMOUNT_CONFIDENCE_CAP = 0.7
AMOUNT_BUCKET_WIDTH = 10
AMOUNT_RANGE = Decimal("0.1")


def _suggestion_id(kind: str) -> str:
    return f"{kind}_suggestion_{uuid.uuid4().hex[:12]}"


def amount_bucket(amount: Decimal) -> int:
    """Round |amount| to the nearest multiple of 10 (halves round up)."""
    return int(math.floor(float(abs(amount)) / AMOUNT_BUCKET_WIDTH + 0.5)) * AMOUNT_BUCKET_WIDTH


class RuleSuggestionGenerator:
    """Mines correction history for candidate rules."""

    def __init__(self, min_corrections: int = 2, max_suggestions: int = 5) -> None:
        """Initialize the generator.

        Args:
            min_corrections: Minimum group size (and per-pattern count) to suggest.
            max_suggestions: Maximum suggestions returned per run.
        """
        self.min_corrections = min_corrections
        self.max_suggestions = max_suggestions

    def generate(
        self,
        corrections: Iterable[UserCorrection],
        exclude: set[tuple] | None = None,
    ) -> list[RuleSuggestion]:
        """Generate ranked suggestions from all corrections.

        Args:
            corrections: Correction history to mine.
            exclude: Signatures of rules that already exist. Matching
                suggestions are dropped before truncation.

        Returns:
            Suggestions sorted by confidence descending, one per signature,
            truncated to max_suggestions.
        """
        groups: dict[str, list[UserCorrection]] = {}
        for correction in corrections:
            errors = correction.validation_errors()
            if errors:
                logger.warning(
                    "Skipping malformed correction %r: %s", correction.id, ", ".join(errors)
                )
                continue
            groups.setdefault(correction.corrected_classification, []).append(correction)

        suggestions: list[RuleSuggestion] = []
        for category, group in groups.items():
            if len(group) < self.min_corrections:
                continue
            suggestions.extend(self.merchant_suggestions(category, group))
            suggestions.extend(self.description_suggestions(category, group))
            suggestions.extend(self.amount_suggestions(category, group))

        suggestions.sort(key=lambda s: s.confidence, reverse=True)
        seen = set(exclude or ())
        unique = []
        for suggestion in suggestions:
            signature = suggestion.signature()
            if signature in seen:
                continue
            seen.add(signature)
            unique.append(suggestion)
        return unique[: self.max_suggestions]

    def merchant_suggestions(
        self, category: str, corrections: list[UserCorrection]
    ) -> list[RuleSuggestion]:
        """One suggestion per merchant seen often enough in this category."""
        by_merchant: dict[str, list[UserCorrection]] = {}
        for correction in corrections:
            if correction.merchant_name:
                by_merchant.setdefault(correction.merchant_name.lower(), []).append(correction)

        suggestions = []
        for merchant, matches in by_merchant.items():
            if len(matches) < self.min_corrections:
                continue
            suggestions.append(
                RuleSuggestion(
                    id=_suggestion_id("merchant"),
                    name=f"Auto-classify {merchant} as {category}",
                    description=(
                        f"Based on {len(matches)} corrections, automatically classify "
                        f'transactions from "{merchant}" as "{category}"'
                    ),
                    conditions=[string_condition("merchantName", "contains", merchant)],
                    action=RuleAction(ActionType.SET_CATEGORY, category),
                    confidence=min(MERCHANT_CONFIDENCE_CAP, len(matches) * MERCHANT_CONFIDENCE_STEP),
                    based_on_corrections=[c.id for c in matches],
                    estimated_matches=len(matches),
                )
            )
        return suggestions

    def description_suggestions(
        self, category: str, corrections: list[UserCorrection]
    ) -> list[RuleSuggestion]:
        """One suggestion per description token shared by enough corrections."""
        by_token: dict[str, list[UserCorrection]] = {}
        for correction in corrections:
            for token in sorted(suggestion_tokens(correction.description)):
                by_token.setdefault(token, []).append(correction)

        suggestions = []
        for token, matches in by_token.items():
            if len(matches) < self.min_corrections:
                continue
            suggestions.append(
                RuleSuggestion(
                    id=_suggestion_id("description"),
                    name=f'Auto-classify transactions containing "{token}" as {category}',
                    description=(
                        f"Based on {len(matches)} corrections, automatically classify "
                        f'transactions containing "{token}" as "{category}"'
                    ),
                    conditions=[string_condition("description", "contains", token)],
                    action=RuleAction(ActionType.SET_CATEGORY, category),
                    confidence=min(
                        DESCRIPTION_CONFIDENCE_CAP, len(matches) * DESCRIPTION_CONFIDENCE_STEP
                    ),
                    based_on_corrections=[c.id for c in matches],
                    estimated_matches=len(matches),
                )
            )
        return suggestions

    def amount_suggestions(
        self, category: str, corrections: list[UserCorrection]
    ) -> list[RuleSuggestion]:
        """One two-condition range suggestion per populated amount bucket."""
        by_bucket: dict[int, list[UserCorrection]] = {}
        for correction in corrections:
            by_bucket.setdefault(amount_bucket(correction.amount), []).append(correction)

        suggestions = []
        for _bucket, matches in by_bucket.items():
            if len(matches) < self.min_corrections:
                continue
            mean = sum((abs(c.amount) for c in matches), Decimal(0)) / len(matches)
            lower = (mean * (1 - AMOUNT_RANGE)).quantize(Decimal("0.01"))
            upper = (mean * (1 + AMOUNT_RANGE)).quantize(Decimal("0.01"))
            suggestions.append(
                RuleSuggestion(
                    id=_suggestion_id("amount"),
                    name=f"Auto-classify transactions around ${mean:.2f} as {category}",
                    description=(
                        f"Based on {len(matches)} corrections, automatically classify "
                        f'transactions around ${mean:.2f} as "{category}"'
                    ),
                    conditions=[
                        numeric_condition("greaterThan", lower),
                        numeric_condition("lessThan", upper),
                    ],
                    action=RuleAction(ActionType.SET_CATEGORY, category),
                    confidence=min(AMOUNT_CONFIDENCE_CAP, len(matches) * AMOUNT_CONFIDENCE_STEP),
                    based_on_corrections=[c.id for c in matches],
                    estimated_matches=len(matches),
                )
            )
        return suggestions
