"""Tests for confidence scoring."""

from decimal import Decimal

import pytest

from conftest import make_transaction
from ledger_learning.config import ConfidenceConfig
from ledger_learning.confidence import ConfidenceScorer, DecisionTier, UncertainItemType


def _tx(tx_id="tx-1", extraction=1.0, classification=1.0, **kwargs):
    return make_transaction(
        tx_id,
        extraction_confidence=extraction,
        classification_confidence=classification,
        **kwargs,
    )


class TestConfidenceScorer:
    """Tests for confidence combination and tiers."""

    @pytest.fixture
    def scorer(self):
        return ConfidenceScorer()

    def test_combine_equal_weights(self, scorer):
        assert scorer.combine(0.9, 0.74) == pytest.approx(0.82)

    def test_combine_clamps_inputs(self, scorer):
        assert scorer.combine(1.5, -0.2) == pytest.approx(0.5)

    def test_combine_with_account_info(self, scorer):
        assert scorer.combine(1.0, 1.0, 0.4) == pytest.approx(2.4 / 3)

    def test_custom_weights(self):
        scorer = ConfidenceScorer(ConfidenceConfig(extraction_weight=3.0, classification_weight=1.0))
        assert scorer.combine(1.0, 0.0) == pytest.approx(0.75)

    @pytest.mark.parametrize(
        "overall,tier",
        [
            (1.0, DecisionTier.AUTO_ACCEPT),
            (0.95, DecisionTier.AUTO_ACCEPT),
            (0.9499, DecisionTier.TARGETED_REVIEW),
            (0.80, DecisionTier.TARGETED_REVIEW),
            (0.7999, DecisionTier.FULL_REVIEW),
            (0.0, DecisionTier.FULL_REVIEW),
        ],
    )
    def test_tier_boundaries(self, scorer, overall, tier):
        """Lower bounds are inclusive."""
        assert scorer.tier_for(overall) == tier

    def test_custom_thresholds(self):
        scorer = ConfidenceScorer(
            ConfidenceConfig(auto_process_threshold=0.90, targeted_review_threshold=0.70)
        )
        assert scorer.tier_for(0.91) == DecisionTier.AUTO_ACCEPT
        assert scorer.tier_for(0.75) == DecisionTier.TARGETED_REVIEW
        assert scorer.tier_for(0.65) == DecisionTier.FULL_REVIEW


class TestEvaluateTransaction:
    """Tests for per-transaction decisions."""

    @pytest.fixture
    def scorer(self):
        return ConfidenceScorer()

    def test_targeted_review_flags_weakest_field(self, scorer):
        tx = _tx(extraction=0.9, classification=0.74)

        decision = scorer.evaluate_transaction(tx)

        assert tx.overall_confidence == pytest.approx(0.82)
        assert decision.tier == DecisionTier.TARGETED_REVIEW
        assert decision.flagged_field == "classification_confidence"

    def test_account_info_can_be_flagged(self, scorer):
        decision = scorer.evaluate_transaction(_tx(), account_info_confidence=0.5)
        assert decision.flagged_field == "account_info_confidence"

    def test_tie_flags_first_field(self, scorer):
        decision = scorer.evaluate_transaction(_tx(extraction=0.85, classification=0.85))
        assert decision.flagged_field == "extraction_confidence"

    def test_auto_accept_flags_nothing(self, scorer):
        decision = scorer.evaluate_transaction(_tx())
        assert decision.tier == DecisionTier.AUTO_ACCEPT
        assert decision.flagged_field is None

    def test_full_review_flags_nothing(self, scorer):
        decision = scorer.evaluate_transaction(_tx(extraction=0.3, classification=0.3))
        assert decision.tier == DecisionTier.FULL_REVIEW
        assert decision.flagged_field is None

    def test_validation_confidence(self, scorer):
        complete = _tx(merchant_name="Starbucks", reference_number="REF-1")
        assert scorer.validation_confidence(complete) == pytest.approx(1.0)
        assert scorer.validation_confidence(_tx()) == pytest.approx(0.85)

    def test_zero_amount_loses_points(self, scorer):
        tx = _tx()
        tx.amount = Decimal("0")
        assert scorer.validation_confidence(tx) == pytest.approx(0.55)


class TestEvaluateBatch:
    """Tests for batch decisions and uncertain items."""

    @pytest.fixture
    def scorer(self):
        return ConfidenceScorer()

    def test_empty_batch(self, scorer):
        decision = scorer.evaluate_batch([])

        assert decision.overall_confidence == 0.0
        assert decision.tier == DecisionTier.FULL_REVIEW
        assert decision.decisions == []
        assert decision.uncertain_items == []
        assert decision.reasoning == "No transactions to evaluate."

    def test_confident_batch_auto_accepted(self, scorer):
        decision = scorer.evaluate_batch([_tx("a"), _tx("b")])

        assert decision.tier == DecisionTier.AUTO_ACCEPT
        assert decision.uncertain_items == []
        assert "automatic processing" in decision.reasoning

    def test_batch_means(self, scorer):
        decision = scorer.evaluate_batch(
            [
                _tx("a", extraction=1.0, classification=0.9),
                _tx("b", extraction=0.8, classification=0.7),
            ]
        )
        assert decision.extraction_confidence == pytest.approx(0.9)
        assert decision.classification_confidence == pytest.approx(0.8)
        assert decision.overall_confidence == pytest.approx(0.85)
        assert decision.tier == DecisionTier.TARGETED_REVIEW
        assert "need attention" in decision.reasoning

    def test_uncertain_items(self, scorer):
        shaky = _tx("shaky", extraction=0.5, classification=0.9)
        empty = _tx("empty")
        empty.amount = Decimal("0")

        items = scorer.identify_uncertain_items([shaky, empty])

        assert [(i.type, i.affected_transactions) for i in items] == [
            (UncertainItemType.EXTRACTION, ["shaky"]),
            (UncertainItemType.CLASSIFICATION, ["shaky"]),
            (UncertainItemType.VALIDATION, ["empty"]),
        ]

    def test_low_account_info_reported(self, scorer):
        items = scorer.identify_uncertain_items([_tx()], account_info_confidence=0.5)
        assert [i.type for i in items] == [UncertainItemType.ACCOUNT_INFO]

    def test_full_review_reasoning(self, scorer):
        decision = scorer.evaluate_batch([_tx(extraction=0.2, classification=0.2)])
        assert decision.tier == DecisionTier.FULL_REVIEW
        assert "below acceptable threshold" in decision.reasoning

    def test_to_dict(self, scorer):
        data = scorer.evaluate_batch([_tx()]).to_dict()
        assert data["tier"] == "auto_accept"
        assert data["decisions"][0]["transaction_id"] == "tx-1"
