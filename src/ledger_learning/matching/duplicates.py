"""Duplicate transaction detection.

Pairs of transactions are classified as exact / likely / possible
duplicates using the similarity primitives, then merged transitively
into groups with a union-find. Each group gets a representative (the
member with the highest extraction confidence) and a resolution
suggestion for the review layer.

Results never depend on input order: transactions are put into a
canonical (date, id) order before any comparison.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from ..schemas.transaction import Transaction
from .similarity import (
    amounts_within_tolerance,
    dates_within_tolerance,
    days_between,
    description_similarity,
)

if TYPE_CHECKING:
    from ..config import DuplicateConfig

logger = logging.getLogger(__name__)


class DuplicateType(str, Enum):
    """Certainty that a group represents one real-world event."""

    EXACT = "exact"
    LIKELY = "likely"
    POSSIBLE = "possible"

    @property
    def rank(self) -> int:
        """Higher is more certain."""
        return {"exact": 3, "likely": 2, "possible": 1}[self.value]


class ResolutionAction(str, Enum):
    """Suggested handling of a duplicate group.

    MERGE: collapse the group into its representative
    FLAG: surface the group for manual review
    KEEP: keep every member; the match is informational only
    """

    KEEP = "keep"
    MERGE = "merge"
    FLAG = "flag"


@dataclass
class PairMatch:
    """A single pairwise duplicate match."""

    first_id: str
    second_id: str
    duplicate_type: DuplicateType
    similarity: float


@dataclass
class DuplicateResolutionSuggestion:
    """Proposed action for one duplicate group."""

    group_id: str
    action: ResolutionAction
    confidence: float
    reasoning: str

    def to_dict(self) -> dict:
        return {
            "group_id": self.group_id,
            "action": self.action.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }


@dataclass
class DuplicateGroup:
    """Cluster of transactions judged to be the same event."""

    id: str
    transactions: list[str]
    duplicate_type: DuplicateType
    similarity_score: float
    reason: list[str] = field(default_factory=list)
    representative_id: str | None = None
    representative_confidence: float | None = None
    suggestion: DuplicateResolutionSuggestion | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transactions": list(self.transactions),
            "duplicate_type": self.duplicate_type.value,
            "similarity_score": self.similarity_score,
            "reason": list(self.reason),
            "representative_id": self.representative_id,
            "representative_confidence": self.representative_confidence,
            "suggestion": self.suggestion.to_dict() if self.suggestion else None,
        }


@dataclass
class DuplicateDetectionResult:
    """Output of one detection run."""

    duplicate_groups: list[DuplicateGroup] = field(default_factory=list)
    total_duplicates: int = 0

    @property
    def suggestions(self) -> list[DuplicateResolutionSuggestion]:
        return [g.suggestion for g in self.duplicate_groups if g.suggestion is not None]


class _UnionFind:
    """Disjoint sets over transaction ids."""

    def __init__(self, ids: list[str]) -> None:
        self.parent = {i: i for i in ids}

    def find(self, item: str) -> str:
        root = item
        while self.parent[root] != root:
            root = self.parent[root]
        # Path compression
        while self.parent[item] != root:
            self.parent[item], item = root, self.parent[item]
        return root

    def union(self, a: str, b: str) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return
        # Smaller id wins so roots do not depend on union order
        if root_b < root_a:
            root_a, root_b = root_b, root_a
        self.parent[root_b] = root_a


class DuplicateDetector:
    """Groups transactions into exact / likely / possible duplicate clusters.

    Pair rules (all require the same transaction type and dates within
    date_tolerance_days):
    - exact: identical amount, same calendar day, description similarity
      >= exact_match_threshold
    - likely: amount within the strict tolerance, similarity
      >= likely_match_threshold
    - possible: amount within the drift tolerance (tips, FX), similarity
      >= possible_match_threshold
    """

    # Weights for calculate_similarity (sum to 1.0)
    WEIGHT_DATE = 0.2
    WEIGHT_AMOUNT = 0.3
    WEIGHT_DESCRIPTION = 0.4
    WEIGHT_TYPE = 0.1

    def __init__(self, config: DuplicateConfig | None = None) -> None:
        """Initialize the detector.

        Args:
            config: Duplicate detection settings. Defaults are used if omitted.
        """
        if config is None:
            from ..config import DuplicateConfig

            config = DuplicateConfig()
        self.config = config

    def detect_duplicates(self, transactions: list[Transaction]) -> DuplicateDetectionResult:
        """Detect duplicate groups in a batch.

        Args:
            transactions: Batch to analyze. An empty batch yields an empty result.

        Returns:
            DuplicateDetectionResult with groups sorted by similarity descending.
        """
        ordered = self._canonical_order(transactions)
        if len(ordered) < 2:
            return DuplicateDetectionResult()

        by_id = {t.id: t for t in ordered}
        matches: list[PairMatch] = []
        for first, second in self._candidate_pairs(ordered):
            match = self.classify_pair(first, second)
            if match is not None:
                matches.append(match)

        if not matches:
            return DuplicateDetectionResult()

        union_find = _UnionFind([t.id for t in ordered])
        for match in matches:
            union_find.union(match.first_id, match.second_id)

        members_by_root: dict[str, list[str]] = {}
        for tx in ordered:
            members_by_root.setdefault(union_find.find(tx.id), []).append(tx.id)

        matches_by_root: dict[str, list[PairMatch]] = {}
        for match in matches:
            matches_by_root.setdefault(union_find.find(match.first_id), []).append(match)

        groups: list[DuplicateGroup] = []
        for root, member_ids in members_by_root.items():
            if len(member_ids) < 2:
                continue
            members = [by_id[i] for i in member_ids]
            groups.append(self._build_group(members, matches_by_root[root]))

        groups.sort(key=lambda g: (-g.similarity_score, g.id))
        total = sum(len(g.transactions) for g in groups)

        logger.debug(
            "Duplicate detection: %d transactions, %d pair matches, %d groups",
            len(ordered),
            len(matches),
            len(groups),
        )
        return DuplicateDetectionResult(duplicate_groups=groups, total_duplicates=total)

    def classify_pair(self, first: Transaction, second: Transaction) -> PairMatch | None:
        """Classify one pair, or return None if it is not a duplicate."""
        cfg = self.config
        if first.type != second.type:
            return None
        if not dates_within_tolerance(first.date, second.date, cfg.date_tolerance_days):
            return None

        similarity = description_similarity(first.description, second.description)
        if similarity < cfg.possible_match_threshold:
            return None

        duplicate_type: DuplicateType | None = None
        if (
            first.amount == second.amount
            and first.date.date() == second.date.date()
            and similarity >= cfg.exact_match_threshold
        ):
            duplicate_type = DuplicateType.EXACT
        elif (
            amounts_within_tolerance(
                first.amount,
                second.amount,
                absolute=cfg.amount_tolerance_absolute,
                percent=cfg.amount_tolerance_percent,
            )
            and similarity >= cfg.likely_match_threshold
        ):
            duplicate_type = DuplicateType.LIKELY
        elif amounts_within_tolerance(
            first.amount,
            second.amount,
            absolute=cfg.amount_tolerance_absolute,
            percent=max(cfg.amount_drift_percent, cfg.amount_tolerance_percent),
        ):
            duplicate_type = DuplicateType.POSSIBLE

        if duplicate_type is None:
            return None
        return PairMatch(
            first_id=first.id,
            second_id=second.id,
            duplicate_type=duplicate_type,
            similarity=similarity,
        )

    def calculate_similarity(self, first: Transaction, second: Transaction) -> float:
        """Weighted pair similarity for display (date, amount, description, type)."""
        date_score = self._date_similarity(first, second)
        amount_score = self._amount_similarity(first, second)
        description_score = description_similarity(first.description, second.description)
        type_score = 1.0 if first.type == second.type else 0.0

        return (
            date_score * self.WEIGHT_DATE
            + amount_score * self.WEIGHT_AMOUNT
            + description_score * self.WEIGHT_DESCRIPTION
            + type_score * self.WEIGHT_TYPE
        )

    def _date_similarity(self, first: Transaction, second: Transaction) -> float:
        days = days_between(first.date, second.date)
        if days == 0:
            return 1.0
        if days <= self.config.date_tolerance_days:
            return 0.9
        if days <= 7:
            return 0.6
        if days <= 30:
            return 0.2
        return 0.0

    def _amount_similarity(self, first: Transaction, second: Transaction) -> float:
        if first.amount == second.amount:
            return 1.0
        largest = max(abs(first.amount), abs(second.amount))
        if largest == 0:
            return 1.0
        diff_pct = float(abs(first.amount - second.amount) / largest)
        if diff_pct <= 0.01:
            return 0.95
        if diff_pct <= 0.05:
            return 0.8
        if diff_pct <= 0.10:
            return 0.6
        if diff_pct <= 0.20:
            return 0.3
        return 0.0

    def _canonical_order(self, transactions: list[Transaction]) -> list[Transaction]:
        seen: set[str] = set()
        unique: list[Transaction] = []
        for tx in transactions:
            errors = tx.validation_errors()
            if errors:
                logger.warning("Skipping malformed transaction %r: %s", tx.id, ", ".join(errors))
                continue
            if tx.id in seen:
                logger.warning("Skipping repeated transaction id %s in duplicate batch", tx.id)
                continue
            seen.add(tx.id)
            unique.append(tx)
        return sorted(unique, key=lambda t: (t.date, t.id))

    def _candidate_pairs(
        self, ordered: list[Transaction]
    ) -> Iterator[tuple[Transaction, Transaction]]:
        """Yield pairs to compare.

        Small batches compare every unordered pair; large batches only pairs
        inside the date tolerance window of the date-sorted batch. Every
        duplicate type requires dates within tolerance, so both strategies
        yield the same matches.
        """
        if len(ordered) <= self.config.window_size:
            for i in range(len(ordered)):
                for j in range(i + 1, len(ordered)):
                    yield ordered[i], ordered[j]
            return

        tolerance = self.config.date_tolerance_days
        for i in range(len(ordered)):
            for j in range(i + 1, len(ordered)):
                if not dates_within_tolerance(ordered[i].date, ordered[j].date, tolerance):
                    break
                yield ordered[i], ordered[j]

    def _build_group(self, members: list[Transaction], matches: list[PairMatch]) -> DuplicateGroup:
        member_ids = [t.id for t in members]
        group_id = "dup_" + hashlib.sha256("|".join(member_ids).encode("utf-8")).hexdigest()[:16]

        duplicate_type = min((m.duplicate_type for m in matches), key=lambda d: d.rank)
        similarity = sum(m.similarity for m in matches) / len(matches)

        representative = members[0]
        for tx in members[1:]:
            if tx.extraction_confidence > representative.extraction_confidence:
                representative = tx
        # Reported on the group; the caller's transaction is left untouched
        boosted = min(1.0, representative.extraction_confidence + self.config.representative_boost)

        group = DuplicateGroup(
            id=group_id,
            transactions=member_ids,
            duplicate_type=duplicate_type,
            similarity_score=similarity,
            reason=self._reasons(members, representative),
            representative_id=representative.id,
            representative_confidence=boosted,
        )
        group.suggestion = self._suggest(group)
        return group

    def _reasons(self, members: list[Transaction], representative: Transaction) -> list[str]:
        reasons: list[str] = []
        others = [t for t in members if t.id != representative.id]

        if all(t.amount == representative.amount for t in others):
            reasons.append("Identical amounts")
        else:
            reasons.append("Amounts differ within tolerance")
        if all(t.date.date() == representative.date.date() for t in others):
            reasons.append("Same transaction date")
        if all(
            description_similarity(representative.description, t.description) > 0.8
            for t in others
        ):
            reasons.append("Very similar descriptions")
        if representative.merchant_name and all(
            (t.merchant_name or "").lower() == representative.merchant_name.lower() for t in others
        ):
            reasons.append("Same merchant")
        if representative.reference_number and all(
            t.reference_number == representative.reference_number for t in others
        ):
            reasons.append("Same reference number")
        return reasons

    def _suggest(self, group: DuplicateGroup) -> DuplicateResolutionSuggestion:
        if group.duplicate_type == DuplicateType.EXACT and self.config.enable_auto_merge:
            action = ResolutionAction.MERGE
            reasoning = (
                f"Transactions are identical; merge into {group.representative_id} "
                "(highest extraction confidence)"
            )
        elif group.duplicate_type in (DuplicateType.EXACT, DuplicateType.LIKELY):
            action = ResolutionAction.FLAG
            reasoning = "High similarity detected, manual review recommended"
        else:
            action = ResolutionAction.KEEP
            reasoning = "Possible duplicates detected; keeping all transactions, review to confirm"

        return DuplicateResolutionSuggestion(
            group_id=group.id,
            action=action,
            confidence=group.similarity_score,
            reasoning=reasoning,
        )
