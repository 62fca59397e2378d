"""Tests for the learning engine."""

import pytest

from conftest import make_correction, make_transaction
from ledger_learning.config import LearningConfig
from ledger_learning.learning import MODEL_NAME, CategoryClassifier, LearningEngine
from ledger_learning.schemas import RuleSource
from ledger_learning.state_store import StorageUnavailableError


def coffee_corrections(count=3):
    return [
        make_correction(
            category="Coffee",
            description="STARBUCKS #1234",
            amount="5.75",
            merchant_name="Starbucks",
            transaction_id=f"coffee-{i}",
        )
        for i in range(count)
    ]


@pytest.fixture
def engine(store, learning_config):
    return LearningEngine(store, learning_config)


@pytest.fixture
def trained_engine(engine, shell_corrections):
    for correction in shell_corrections + coffee_corrections():
        engine.learn_from_correction(correction)
    return engine


class TestLearnFromCorrection:
    """Tests for pattern extraction and rule induction."""

    def test_first_correction_stores_pattern(self, engine, store, shell_corrections):
        outcome = engine.learn_from_correction(shell_corrections[0])

        assert outcome.pattern.pattern == "shell oil 57442"
        assert outcome.pattern.category == "Gas"
        assert outcome.created_rule is None
        assert not outcome.retraining_scheduled
        assert store.count_corrections() == 1

    def test_malformed_correction_skipped(self, engine, store):
        assert engine.learn_from_correction(make_correction(category="")) is None
        assert store.count_corrections() == 0

    def test_merchant_rule_induced(self, engine, store, shell_corrections):
        """The third Shell correction creates 'merchant contains shell' at 0.9."""
        outcomes = [engine.learn_from_correction(c) for c in shell_corrections]

        assert outcomes[0].created_rule is None
        assert outcomes[1].created_rule is None
        rule = outcomes[2].created_rule
        assert rule is not None
        assert rule.id.startswith("auto_rule_")
        assert rule.source == RuleSource.AUTO
        assert rule.confidence == pytest.approx(0.9)
        assert [c.to_dict() for c in rule.conditions] == [
            {"field": "merchantName", "operator": "contains", "value": "shell"}
        ]
        assert rule.action.value == "Gas"

        creations = store.list_rule_creations(rule.id)
        assert creations[0].trigger_corrections == [c.id for c in shell_corrections]

    def test_rule_not_duplicated(self, engine, store, shell_corrections):
        for correction in shell_corrections:
            engine.learn_from_correction(correction)

        outcome = engine.learn_from_correction(make_correction(transaction_id="tx-4"))

        assert outcome.created_rule is None
        assert len(store.list_rules()) == 1

    def test_description_rule_without_merchant(self, engine):
        corrections = [
            make_correction(
                category="Streaming",
                description="NETFLIX.COM SUBSCRIPTION",
                amount="15.49",
                merchant_name=None,
                transaction_id=f"nf-{i}",
            )
            for i in range(3)
        ]
        outcomes = [engine.learn_from_correction(c) for c in corrections]

        rule = outcomes[-1].created_rule
        assert rule.confidence == pytest.approx(0.8)
        assert [c.to_dict() for c in rule.conditions] == [
            {"field": "description", "operator": "contains", "value": "netflix.com"}
        ]

    def test_other_categories_not_counted(self, engine):
        engine.learn_from_correction(make_correction(transaction_id="a"))
        engine.learn_from_correction(make_correction(transaction_id="b"))
        outcome = engine.learn_from_correction(make_correction(category="Auto", transaction_id="c"))
        assert outcome.created_rule is None


class TestRetraining:
    """Tests for classifier retraining."""

    def test_retrains_after_enough_corrections(self, engine, store, shell_corrections):
        outcomes = [engine.learn_from_correction(c) for c in shell_corrections]

        assert outcomes[-1].retraining_scheduled
        assert engine.classifier.categories == ["Gas"]
        assert store.get_corrections_at_last_training(MODEL_NAME) == 3

    def test_second_run_learns_new_category(self, trained_engine, store):
        assert trained_engine.classifier.categories == ["Gas", "Coffee"]
        assert store.get_stats()["training_metadata"] == 2

        prediction = trained_engine.predict_category(
            make_transaction("new", "SHELL OIL 99999", "41.00", merchant_name="Shell")
        )
        assert prediction.category == "Gas"
        assert prediction.confidence > 0.8

    def test_interval_blocks_retraining(self, store, shell_corrections):
        config = LearningConfig(
            background_training=False,
            min_corrections_for_retraining=3,
            retraining_interval_hours=24.0,
        )
        engine = LearningEngine(store, config)

        for correction in shell_corrections + coffee_corrections():
            engine.learn_from_correction(correction)

        assert store.get_stats()["training_metadata"] == 1
        assert not engine.should_retrain()

    def test_not_enough_corrections(self, engine, shell_corrections):
        engine.learn_from_correction(shell_corrections[0])
        assert not engine.should_retrain()
        assert engine.classifier is None

    def test_failed_fit_keeps_previous_model(self, trained_engine, store, monkeypatch):
        previous = trained_engine.classifier

        def boom(self, *args, **kwargs):
            raise RuntimeError("diverged")

        monkeypatch.setattr(CategoryClassifier, "fit", boom)

        assert trained_engine.retrain_model() is False
        assert trained_engine.classifier is previous
        assert store.get_stats()["training_metadata"] == 2
        assert not trained_engine.is_training

    def test_failed_save_keeps_previous_model(self, trained_engine, store, monkeypatch):
        previous = trained_engine.classifier

        def unavailable(*args, **kwargs):
            raise StorageUnavailableError("disk full")

        monkeypatch.setattr(store, "save_model_blob", unavailable)

        assert trained_engine.retrain_model() is False
        assert trained_engine.classifier is previous

    def test_single_run_at_a_time(self, trained_engine):
        """A run that finds the training lock held is skipped."""
        with trained_engine._training_lock:
            assert trained_engine.retrain_model() is False

    def test_shutdown_abandons_training(self, trained_engine, store):
        previous = trained_engine.classifier
        trained_engine.shutdown()

        assert trained_engine.retrain_model() is False
        assert trained_engine.classifier is previous
        assert trained_engine.maybe_schedule_retraining() is False

    def test_background_training(self, store, shell_corrections):
        config = LearningConfig(min_corrections_for_retraining=3, retraining_interval_hours=0.0)
        engine = LearningEngine(store, config)

        outcomes = [engine.learn_from_correction(c) for c in shell_corrections]
        engine.wait_for_training(timeout=30)

        assert outcomes[-1].retraining_scheduled
        assert engine.classifier is not None
        assert not engine.is_training

    def test_model_reloaded_by_new_engine(self, trained_engine, store, learning_config):
        reloaded = LearningEngine(store, learning_config)

        assert reloaded.classifier.categories == trained_engine.classifier.categories
        tx = make_transaction("x", "STARBUCKS #9", merchant_name="Starbucks")
        assert reloaded.predict_category(tx) == trained_engine.predict_category(tx)

    def test_unreadable_model_ignored(self, store, learning_config):
        store.save_model_blob(MODEL_NAME, '{"version": 99}', corrections_seen=0)
        assert LearningEngine(store, learning_config).classifier is None


class TestPredictionAndMetrics:
    """Tests for predict_category and get_learning_metrics."""

    def test_untrained_predicts_nothing(self, engine):
        assert engine.predict_category(make_transaction()) is None

    def test_metrics(self, engine, shell_corrections):
        for correction in shell_corrections:
            engine.learn_from_correction(correction)

        metrics = engine.get_learning_metrics()

        assert metrics.total_corrections == 3
        assert metrics.patterns_learned == 3
        assert metrics.rules_created == 1
        assert metrics.accuracy_improvement == pytest.approx(0.03)
        assert metrics.last_training_date is not None
        assert metrics.is_training is False

    def test_improvement_capped(self, store):
        engine = LearningEngine(store, LearningConfig(background_training=False))
        for i in range(60):
            engine.learn_from_correction(
                make_correction(description=f"VENDOR {i}", merchant_name=None, transaction_id=str(i))
            )
        assert engine.get_learning_metrics().accuracy_improvement == pytest.approx(0.5)
