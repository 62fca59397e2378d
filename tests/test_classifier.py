"""Tests for text features and the category classifier."""

import json
import threading

import numpy as np
import pytest

from ledger_learning.learning import CategoryClassifier, HashedVocabulary, TrainingAbandoned
from ledger_learning.learning.features import (
    common_tokens,
    pattern_tokens,
    suggestion_tokens,
    tokenize,
)

TEXTS = [
    "SHELL OIL 57442 Shell",
    "SHELL OIL 12345 Shell",
    "STARBUCKS #1234 Starbucks",
    "STARBUCKS COFFEE Starbucks",
]
LABELS = ["Gas", "Gas", "Coffee", "Coffee"]


@pytest.fixture
def trained():
    model = CategoryClassifier(feature_size=50)
    model.fit(TEXTS, LABELS)
    return model


class TestFeatures:
    """Tests for tokenization helpers."""

    def test_tokenize(self):
        assert tokenize("SHELL  Oil\t57442") == ["shell", "oil", "57442"]
        assert tokenize(None) == []

    def test_pattern_tokens(self):
        assert pattern_tokens("SHELL OIL 57442", "Shell") == ["shell", "oil", "57442"]

    def test_pattern_tokens_skip_short_and_connectors(self):
        assert pattern_tokens("PAY AT THE GAS STATION NO 5") == ["pay", "gas", "station"]

    def test_suggestion_tokens(self):
        assert suggestion_tokens("ONLINE PAYMENT FROM ACME CORP") == {"online", "acme", "corp"}

    def test_common_tokens(self):
        descriptions = ["SHELL OIL 57442", "SHELL OIL 12345", "SHELL SERVICE STATION"]
        assert common_tokens(descriptions) == ["shell", "oil"]
        assert common_tokens([]) == []


class TestHashedVocabulary:
    """Tests for HashedVocabulary."""

    def test_indices_wrap(self):
        vocab = HashedVocabulary(feature_size=2)
        assert [vocab.index_of(t) for t in ("a", "b", "c")] == [0, 1, 0]

    def test_transform_normalized(self):
        vector = HashedVocabulary(feature_size=10).transform("shell shell oil")
        assert vector.sum() == pytest.approx(1.0)
        assert sorted(vector[vector > 0]) == pytest.approx([1 / 3, 2 / 3])

    def test_no_growth_when_frozen(self):
        vocab = HashedVocabulary(feature_size=10, vocabulary={"shell": 0})
        vector = vocab.transform("shell unknown", grow=False)
        assert len(vocab) == 1
        assert vector[0] == pytest.approx(1.0)

    def test_copy_is_independent(self):
        vocab = HashedVocabulary(feature_size=10, vocabulary={"shell": 0})
        clone = vocab.copy()
        clone.index_of("oil")
        assert len(vocab) == 1
        assert len(clone) == 2


class TestCategoryClassifier:
    """Tests for CategoryClassifier."""

    def test_untrained_predicts_nothing(self):
        model = CategoryClassifier()
        assert not model.is_trained
        assert model.predict("SHELL OIL") is None
        assert model.predict_proba("SHELL OIL") == {}

    def test_fit_and_predict(self, trained):
        assert trained.categories == ["Gas", "Coffee"]

        category, probability = trained.predict("SHELL OIL 99999")
        assert category == "Gas"
        assert probability > 0.7

        category, _ = trained.predict("STARBUCKS #5555")
        assert category == "Coffee"

    def test_training_accuracy(self):
        assert CategoryClassifier(feature_size=50).fit(TEXTS, LABELS) == pytest.approx(1.0)

    def test_probabilities_sum_to_one(self, trained):
        assert sum(trained.predict_proba("SHELL COFFEE").values()) == pytest.approx(1.0)

    def test_prediction_does_not_grow_vocabulary(self, trained):
        size = len(trained.vocabulary)
        trained.predict("NEVER SEEN BEFORE")
        assert len(trained.vocabulary) == size

    def test_deterministic(self):
        first = CategoryClassifier(feature_size=50)
        second = CategoryClassifier(feature_size=50)
        first.fit(TEXTS, LABELS)
        second.fit(TEXTS, LABELS)
        assert np.array_equal(first.weights, second.weights)

    def test_refit_adds_category(self, trained):
        trained.fit(TEXTS + ["NETFLIX.COM Netflix"], LABELS + ["Streaming"])
        assert trained.categories == ["Gas", "Coffee", "Streaming"]
        assert trained.weights.shape == (50, 3)

    def test_rejects_empty_dataset(self):
        with pytest.raises(ValueError):
            CategoryClassifier().fit([], [])

    def test_rejects_mismatched_lengths(self):
        with pytest.raises(ValueError):
            CategoryClassifier().fit(["a", "b"], ["x"])

    def test_stop_event_abandons(self):
        """A set stop event aborts training and leaves the model untouched."""
        stop = threading.Event()
        stop.set()
        model = CategoryClassifier(feature_size=50)

        with pytest.raises(TrainingAbandoned):
            model.fit(TEXTS, LABELS, stop_event=stop)

        assert not model.is_trained


class TestSerialization:
    """Tests for model blobs."""

    def test_blob_roundtrip(self, trained):
        restored = CategoryClassifier.from_blob(trained.to_blob())

        assert restored.categories == trained.categories
        assert restored.vocabulary.vocabulary == trained.vocabulary.vocabulary
        assert restored.trained_at == trained.trained_at
        assert restored.predict_proba("SHELL OIL") == trained.predict_proba("SHELL OIL")

    def test_unsupported_version(self, trained):
        data = trained.to_json_dict()
        data["version"] = 99
        with pytest.raises(ValueError, match="version"):
            CategoryClassifier.from_blob(json.dumps(data))
