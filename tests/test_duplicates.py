"""Tests for duplicate detection."""

from datetime import datetime

import pytest

from conftest import make_transaction
from ledger_learning.config import DuplicateConfig
from ledger_learning.matching import (
    DuplicateDetector,
    DuplicateType,
    ResolutionAction,
)
from ledger_learning.schemas import TransactionType


def _grouping(result):
    return [(g.id, g.transactions, g.duplicate_type) for g in result.duplicate_groups]


class TestDuplicateDetector:
    """Tests for DuplicateDetector."""

    @pytest.fixture
    def detector(self):
        return DuplicateDetector()

    def test_empty_input(self, detector):
        """Empty input yields an empty result, not an error."""
        result = detector.detect_duplicates([])
        assert result.duplicate_groups == []
        assert result.total_duplicates == 0

    def test_single_transaction(self, detector):
        assert detector.detect_duplicates([make_transaction()]).duplicate_groups == []

    def test_exact_duplicate(self, detector):
        """Same description, amount and day form one exact group proposed for merging."""
        a = make_transaction("t1", extraction_confidence=0.8)
        b = make_transaction("t2", extraction_confidence=0.9)

        result = detector.detect_duplicates([a, b])

        assert len(result.duplicate_groups) == 1
        group = result.duplicate_groups[0]
        assert group.transactions == ["t1", "t2"]
        assert group.duplicate_type == DuplicateType.EXACT
        assert group.similarity_score == pytest.approx(1.0)
        assert "Identical amounts" in group.reason
        assert "Same transaction date" in group.reason
        assert group.suggestion.action == ResolutionAction.MERGE
        assert result.total_duplicates == 2

    def test_representative_boosted(self, detector):
        """The member with the highest extraction confidence is kept and boosted."""
        a = make_transaction("t1", extraction_confidence=0.6)
        b = make_transaction("t2", extraction_confidence=0.7)

        group = detector.detect_duplicates([a, b]).duplicate_groups[0]

        assert group.representative_id == "t2"
        assert group.representative_confidence == pytest.approx(0.8)
        assert group.to_dict()["representative_confidence"] == pytest.approx(0.8)

    def test_boost_capped(self, detector):
        a = make_transaction("t1", extraction_confidence=0.95)
        b = make_transaction("t2", extraction_confidence=0.5)
        group = detector.detect_duplicates([a, b]).duplicate_groups[0]
        assert group.representative_confidence == 1.0

    def test_repeated_detection_does_not_inflate(self, detector):
        """Running detection again on the same objects reports the same boost."""
        a = make_transaction("t1", extraction_confidence=0.5)
        b = make_transaction("t2", extraction_confidence=0.6)

        groups = [
            detector.detect_duplicates(batch).duplicate_groups[0]
            for batch in ([a, b], [b, a], [a, b])
        ]

        assert [g.representative_confidence for g in groups] == [pytest.approx(0.7)] * 3
        assert a.extraction_confidence == pytest.approx(0.5)
        assert b.extraction_confidence == pytest.approx(0.6)

    def test_mixed_timezone_dates(self, detector):
        """Naive and UTC-suffixed dates in one batch compare as the same instant."""
        a = make_transaction("t1", date="2024-03-15T10:00:00Z")
        b = make_transaction("t2", date=datetime(2024, 3, 15, 10, 0))

        result = detector.detect_duplicates([a, b])

        assert len(result.duplicate_groups) == 1
        assert result.duplicate_groups[0].duplicate_type == DuplicateType.EXACT

    def test_symmetric(self, detector):
        """Input order does not change the grouping."""
        forward = detector.detect_duplicates(
            [make_transaction("t1"), make_transaction("t2"), make_transaction("t3", "NETFLIX")]
        )
        backward = detector.detect_duplicates(
            [make_transaction("t3", "NETFLIX"), make_transaction("t2"), make_transaction("t1")]
        )
        assert _grouping(forward) == _grouping(backward)

    def test_transitive_grouping(self, detector):
        """a~b and b~c put a, b and c in one group even though a and c are two days apart."""
        a = make_transaction("a", "AMAZON MARKETPLACE", "19.99", "2024-03-01")
        b = make_transaction("b", "AMAZON MARKETPLACE", "19.99", "2024-03-02")
        c = make_transaction("c", "AMAZON MARKETPLACE", "19.99", "2024-03-03")

        result = detector.detect_duplicates([c, a, b])

        assert len(result.duplicate_groups) == 1
        group = result.duplicate_groups[0]
        assert group.transactions == ["a", "b", "c"]
        assert group.duplicate_type == DuplicateType.LIKELY
        assert group.suggestion.action == ResolutionAction.FLAG

    def test_amount_drift_is_possible(self, detector):
        """A tip on top of the same charge is a possible duplicate, kept for review."""
        a = make_transaction("t1", "UBER TRIP", "20.00")
        b = make_transaction("t2", "UBER TRIP", "23.00")

        group = detector.detect_duplicates([a, b]).duplicate_groups[0]

        assert group.duplicate_type == DuplicateType.POSSIBLE
        assert group.suggestion.action == ResolutionAction.KEEP
        assert "Amounts differ within tolerance" in group.reason

    def test_different_types_never_match(self, detector):
        a = make_transaction("t1", type=TransactionType.DEBIT)
        b = make_transaction("t2", type=TransactionType.CREDIT)
        assert detector.detect_duplicates([a, b]).duplicate_groups == []

    def test_dissimilar_descriptions(self, detector):
        a = make_transaction("t1", "STARBUCKS #1234")
        b = make_transaction("t2", "HOME DEPOT 4410")
        assert detector.detect_duplicates([a, b]).duplicate_groups == []

    def test_outside_date_tolerance(self, detector):
        a = make_transaction("t1", date="2024-03-01")
        b = make_transaction("t2", date="2024-03-05")
        assert detector.detect_duplicates([a, b]).duplicate_groups == []

    def test_auto_merge_disabled_flags_exact(self):
        detector = DuplicateDetector(DuplicateConfig(enable_auto_merge=False))
        result = detector.detect_duplicates([make_transaction("t1"), make_transaction("t2")])
        assert result.duplicate_groups[0].suggestion.action == ResolutionAction.FLAG

    def test_malformed_and_repeated_skipped(self, detector):
        broken = make_transaction("t3", description="")
        result = detector.detect_duplicates(
            [make_transaction("t1"), make_transaction("t1"), broken]
        )
        assert result.duplicate_groups == []

    def test_windowed_matches_full_comparison(self):
        """Large batches compared inside a date window give the same groups."""
        batch = [
            make_transaction("a", "STARBUCKS #1234", date="2024-03-01"),
            make_transaction("b", "STARBUCKS #1234", date="2024-03-01"),
            make_transaction("c", "SHELL OIL 57442", "40.00", "2024-03-10"),
            make_transaction("d", "SHELL OIL 57442", "40.00", "2024-03-10"),
        ]
        full = DuplicateDetector().detect_duplicates(batch)
        windowed = DuplicateDetector(DuplicateConfig(window_size=2)).detect_duplicates(batch)

        assert len(full.duplicate_groups) == 2
        assert _grouping(full) == _grouping(windowed)

    def test_calculate_similarity(self, detector):
        a = make_transaction("t1")
        b = make_transaction("t2")
        assert detector.calculate_similarity(a, b) == pytest.approx(1.0)

        c = make_transaction("t3", "HOME DEPOT", "250.00", "2024-06-01", type=TransactionType.CREDIT)
        assert detector.calculate_similarity(a, c) < 0.3
