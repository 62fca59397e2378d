"""
Category classifier over hashed bag-of-words features.

Single-layer softmax regression (multinomial logistic regression):
- Input: feature_size normalized token counts (see features.HashedVocabulary)
- Output: one probability per known category
- Training: full-batch gradient descent on cross-entropy from zero weights

Deterministic: identical training data yields identical weights. The output
layer is rebuilt on every fit, so new categories need no special handling.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Optional

import numpy as np

from .features import DEFAULT_FEATURE_SIZE, HashedVocabulary

logger = logging.getLogger(__name__)

BLOB_VERSION = 1


class TrainingAbandoned(Exception):
    """A training cycle was stopped before completion (process shutting down)."""


def _softmax(logits: np.ndarray) -> np.ndarray:
    shifted = logits - logits.max(axis=1, keepdims=True)
    exp = np.exp(shifted)
    return exp / exp.sum(axis=1, keepdims=True)


class CategoryClassifier:
    """Softmax classifier with its vocabulary and category list."""

    def __init__(
        self,
        feature_size: int = DEFAULT_FEATURE_SIZE,
        vocabulary: Optional[HashedVocabulary] = None,
    ) -> None:
        self.feature_size = feature_size
        self.vocabulary = vocabulary or HashedVocabulary(feature_size)
        self.categories: list[str] = []
        self.weights = np.zeros((feature_size, 0), dtype=np.float64)
        self.bias = np.zeros(0, dtype=np.float64)
        self.trained_at: Optional[datetime] = None

    @property
    def is_trained(self) -> bool:
        return bool(self.categories)

    def fit(
        self,
        texts: list[str],
        labels: list[str],
        epochs: int = 200,
        learning_rate: float = 1.0,
        stop_event: Optional[threading.Event] = None,
    ) -> float:
        """
        Train from scratch on (text, label) pairs.

        The vocabulary grows to include every training token. Categories are
        ordered by first appearance in labels.

        Args:
            texts: Training texts (description + merchant, or pattern text)
            labels: Category per text
            epochs: Gradient descent iterations
            learning_rate: Step size
            stop_event: Checked between epochs; when set, raises TrainingAbandoned

        Returns:
            Training-set accuracy after the final epoch.
        """
        if len(texts) != len(labels):
            raise ValueError("texts and labels must have the same length")
        if not texts:
            raise ValueError("cannot train on an empty dataset")

        categories = list(dict.fromkeys(labels))
        index = {category: i for i, category in enumerate(categories)}
        features = self.vocabulary.transform_many(texts, grow=True)
        targets = np.zeros((len(labels), len(categories)), dtype=np.float64)
        targets[np.arange(len(labels)), [index[label] for label in labels]] = 1.0

        weights = np.zeros((self.feature_size, len(categories)), dtype=np.float64)
        bias = np.zeros(len(categories), dtype=np.float64)
        n = float(len(labels))

        for _ in range(epochs):
            if stop_event is not None and stop_event.is_set():
                raise TrainingAbandoned("shutdown requested during training")
            probs = _softmax(features @ weights + bias)
            error = probs - targets
            weights -= learning_rate * (features.T @ error) / n
            bias -= learning_rate * error.sum(axis=0) / n

        self.categories = categories
        self.weights = weights
        self.bias = bias
        self.trained_at = datetime.now(timezone.utc)

        predicted = np.argmax(_softmax(features @ weights + bias), axis=1)
        actual = np.array([index[label] for label in labels])
        return float((predicted == actual).mean())

    def predict_proba(self, text: str) -> dict[str, float]:
        """Probability per category. Unknown tokens are ignored."""
        if not self.is_trained:
            return {}
        features = self.vocabulary.transform(text, grow=False).reshape(1, -1)
        probs = _softmax(features @ self.weights + self.bias)[0]
        return {category: float(p) for category, p in zip(self.categories, probs)}

    def predict(self, text: str) -> Optional[tuple[str, float]]:
        """Most probable category and its probability, or None when untrained."""
        probs = self.predict_proba(text)
        if not probs:
            return None
        category = max(self.categories, key=lambda c: probs[c])
        return category, probs[category]

    def to_blob(self) -> str:
        """Serialize weights, vocabulary, categories and timestamp as JSON."""
        return json.dumps(self.to_json_dict())

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "version": BLOB_VERSION,
            "feature_size": self.feature_size,
            "vocabulary": self.vocabulary.vocabulary,
            "categories": list(self.categories),
            "weights": self.weights.tolist(),
            "bias": self.bias.tolist(),
            "trained_at": self.trained_at.isoformat() if self.trained_at else None,
        }

    @classmethod
    def from_blob(cls, blob: str) -> "CategoryClassifier":
        return cls.from_json_dict(json.loads(blob))

    @classmethod
    def from_json_dict(cls, data: dict[str, Any]) -> "CategoryClassifier":
        if data.get("version") != BLOB_VERSION:
            raise ValueError(f"Unsupported model blob version: {data.get('version')!r}")
        feature_size = int(data["feature_size"])
        model = cls(feature_size, HashedVocabulary(feature_size, data["vocabulary"]))
        model.categories = list(data["categories"])
        model.weights = np.array(data["weights"], dtype=np.float64).reshape(
            feature_size, len(model.categories)
        )
        model.bias = np.array(data["bias"], dtype=np.float64)
        trained_at = data.get("trained_at")
        model.trained_at = datetime.fromisoformat(trained_at) if trained_at else None
        return model
