"""Learning from corrections: features, classifier and the learning engine."""

from ledger_learning.learning.classifier import CategoryClassifier, TrainingAbandoned
from ledger_learning.learning.engine import (
    MODEL_NAME,
    CategoryPrediction,
    LearningEngine,
    LearningOutcome,
)
from ledger_learning.learning.features import HashedVocabulary, pattern_tokens, tokenize

__all__ = [
    "MODEL_NAME",
    "CategoryClassifier",
    "CategoryPrediction",
    "HashedVocabulary",
    "LearningEngine",
    "LearningOutcome",
    "TrainingAbandoned",
    "pattern_tokens",
    "tokenize",
]
