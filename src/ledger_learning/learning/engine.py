"""
Learning engine: turns user corrections into patterns, rules and a classifier.

Per correction:
1. Persist the correction
2. Upsert a learning pattern from its top-3 significant tokens
3. Induce a rule once enough similar corrections share the category
4. Schedule classifier retraining when enough new corrections arrived

Retraining runs at most once at a time. It trains on a snapshot of the
stored corrections and patterns; corrections recorded meanwhile count
toward the next run. A failed or abandoned run leaves the previous model
and its training metadata in place.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ..config import LearningConfig
from ..matching.similarity import text_similarity
from ..schemas.feedback import LearningMetrics, LearningPattern, PatternSource, UserCorrection
from ..schemas.rules import (
    ActionType,
    Rule,
    RuleAction,
    RuleCreation,
    RuleSource,
    string_condition,
)
from ..schemas.transaction import Transaction
from ..state_store import StateStore
from .classifier import CategoryClassifier, TrainingAbandoned
from .features import combined_text, common_tokens, pattern_tokens

logger = logging.getLogger(__name__)

MODEL_NAME = "category_classifier"

MERCHANT_RULE_CONFIDENCE = 0.9
DESCRIPTION_RULE_CONFIDENCE = 0.8
SIMILAR_DESCRIPTION_THRESHOLD = 0.7
ACCURACY_PER_CORRECTION = 0.01
ACCURACY_IMPROVEMENT_CAP = 0.5


@dataclass
class CategoryPrediction:
    """Classifier output that cleared the confidence threshold."""

    category: str
    confidence: float

    def to_dict(self) -> dict:
        return {"category": self.category, "confidence": self.confidence}


@dataclass
class LearningOutcome:
    """What one correction changed."""

    correction_id: str
    pattern: Optional[LearningPattern] = None
    created_rule: Optional[Rule] = None
    retraining_scheduled: bool = False


def _is_similar(candidate: UserCorrection, correction: UserCorrection) -> bool:
    """Same category and either the same merchant or a close description."""
    if candidate.corrected_classification != correction.corrected_classification:
        return False
    if (
        candidate.merchant_name
        and correction.merchant_name
        and candidate.merchant_name.lower() == correction.merchant_name.lower()
    ):
        return True
    return (
        text_similarity(candidate.description.lower(), correction.description.lower())
        > SIMILAR_DESCRIPTION_THRESHOLD
    )


class LearningEngine:
    """Learns from corrections and predicts categories for new transactions."""

    def __init__(self, store: StateStore, config: Optional[LearningConfig] = None) -> None:
        self.store = store
        self.config = config or LearningConfig()
        self._classifier: Optional[CategoryClassifier] = None
        self._model_lock = threading.Lock()
        self._training_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self.is_training = False
        self._load_model()

    def _load_model(self) -> None:
        blob = self.store.get_model_blob(MODEL_NAME)
        if blob is None:
            return
        try:
            self._classifier = CategoryClassifier.from_blob(blob)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable stored model %s: %s", MODEL_NAME, e)
            return
        logger.info(
            "Loaded classifier with %d categories", len(self._classifier.categories)
        )

    @property
    def classifier(self) -> Optional[CategoryClassifier]:
        with self._model_lock:
            return self._classifier

    # Corrections

    def learn_from_correction(self, correction: UserCorrection) -> Optional[LearningOutcome]:
        """
        Record a correction and learn from it.

        Malformed corrections are skipped with a warning and return None.
        Storage failures propagate.
        """
        errors = correction.validation_errors()
        if errors:
            logger.warning("Skipping malformed correction %r: %s", correction.id, ", ".join(errors))
            return None

        self.store.add_correction(correction)
        outcome = LearningOutcome(correction_id=correction.id)

        tokens = pattern_tokens(correction.description, correction.merchant_name)
        if tokens:
            outcome.pattern = self.store.upsert_learning_pattern(
                " ".join(tokens),
                correction.corrected_classification,
                PatternSource.USER_CORRECTION,
                seen_at=correction.timestamp,
            )
        else:
            logger.debug("No significant tokens in correction %s", correction.id)

        outcome.created_rule = self._maybe_induce_rule(correction)
        outcome.retraining_scheduled = self.maybe_schedule_retraining()
        return outcome

    def _maybe_induce_rule(self, correction: UserCorrection) -> Optional[Rule]:
        similar = [
            c
            for c in self.store.list_corrections(correction.corrected_classification)
            if _is_similar(c, correction)
        ]
        if len(similar) < self.config.min_corrections_for_rule:
            return None

        category = correction.corrected_classification
        action = RuleAction(ActionType.SET_CATEGORY, category)
        if correction.merchant_name:
            rule = Rule.create(
                f"Auto-classify {correction.merchant_name} as {category}",
                [string_condition("merchantName", "contains", correction.merchant_name.lower())],
                action,
                confidence=MERCHANT_RULE_CONFIDENCE,
                source=RuleSource.AUTO,
            )
        else:
            words = common_tokens([c.description for c in similar])
            if not words:
                return None
            rule = Rule.create(
                f'Auto-classify transactions containing "{words[0]}" as {category}',
                [string_condition("description", "contains", words[0])],
                action,
                confidence=DESCRIPTION_RULE_CONFIDENCE,
                source=RuleSource.AUTO,
            )

        existing = {r.signature() for r in self.store.list_rules()}
        if rule.signature() in existing:
            logger.debug("Rule for %r already exists; not inducing another", rule.name)
            return None

        creation = RuleCreation.for_rule(rule, [c.id for c in similar])
        self.store.add_rule_with_provenance(rule, creation)
        logger.info(
            "Induced rule %s (%s) from %d corrections", rule.id, rule.name, len(similar)
        )
        return rule

    # Retraining

    def should_retrain(self) -> bool:
        """Enough new corrections, and the retraining interval has passed."""
        total = self.store.count_corrections()
        since_last = total - self.store.get_corrections_at_last_training(MODEL_NAME)
        if since_last < self.config.min_corrections_for_retraining:
            return False
        last = self.store.get_last_training_date(MODEL_NAME)
        if last is None:
            return True
        elapsed = (datetime.now(timezone.utc) - last).total_seconds()
        return elapsed >= self.config.retraining_interval_seconds

    def maybe_schedule_retraining(self) -> bool:
        """Start a retraining run if one is due and none is in flight.

        Returns:
            True if a run was started (or, inline, completed successfully).
        """
        if self.is_training or self._stop_event.is_set() or not self.should_retrain():
            return False

        if not self.config.background_training:
            return self.retrain_model()

        worker = threading.Thread(
            target=self.retrain_model, name="ledger-learning-retrain", daemon=True
        )
        self._worker = worker
        worker.start()
        return True

    def retrain_model(self) -> bool:
        """
        Retrain the classifier from scratch on all corrections and patterns.

        Returns:
            True if a new model was trained, stored and swapped in.
        """
        if not self._training_lock.acquire(blocking=False):
            logger.debug("Retraining already in progress; skipping")
            return False

        self.is_training = True
        try:
            return self._train()
        except TrainingAbandoned:
            logger.info("Retraining abandoned; keeping previous model")
            return False
        except Exception:
            logger.error("Retraining failed; keeping previous model", exc_info=True)
            return False
        finally:
            self.is_training = False
            self._training_lock.release()

    def _train(self) -> bool:
        corrections = self.store.list_corrections()
        patterns = self.store.list_learning_patterns()

        texts: list[str] = []
        labels: list[str] = []
        for correction in corrections:
            if correction.validation_errors():
                continue
            texts.append(combined_text(correction.description, correction.merchant_name))
            labels.append(correction.corrected_classification)
        for pattern in patterns:
            texts.append(pattern.pattern)
            labels.append(pattern.category)

        if not texts:
            logger.info("No training data; skipping retraining")
            return False

        logger.info(
            "Retraining classifier on %d samples (%d corrections, %d patterns)",
            len(texts),
            len(corrections),
            len(patterns),
        )

        current = self.classifier
        vocabulary = current.vocabulary.copy() if current is not None else None
        if vocabulary is not None and vocabulary.feature_size != self.config.feature_size:
            vocabulary = None
        candidate = CategoryClassifier(self.config.feature_size, vocabulary)
        accuracy = candidate.fit(
            texts,
            labels,
            epochs=self.config.training_epochs,
            learning_rate=self.config.learning_rate,
            stop_event=self._stop_event,
        )

        self.store.save_model_blob(
            MODEL_NAME,
            candidate.to_blob(),
            corrections_seen=len(corrections),
            sample_count=len(texts),
            accuracy=accuracy,
        )
        with self._model_lock:
            self._classifier = candidate

        logger.info(
            "Retraining finished: %d categories, training accuracy %.2f",
            len(candidate.categories),
            accuracy,
        )
        return True

    def wait_for_training(self, timeout: Optional[float] = None) -> None:
        """Block until the current background run (if any) finishes."""
        worker = self._worker
        if worker is not None:
            worker.join(timeout)

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Abandon any in-flight training and stop scheduling new runs."""
        self._stop_event.set()
        self.wait_for_training(timeout)

    # Prediction and metrics

    def predict_category(self, transaction: Transaction) -> Optional[CategoryPrediction]:
        """Classifier prediction if its probability exceeds confidence_threshold."""
        classifier = self.classifier
        if classifier is None or not classifier.is_trained:
            return None

        result = classifier.predict(combined_text(transaction.description, transaction.merchant_name))
        if result is None:
            return None
        category, probability = result
        if probability > self.config.confidence_threshold:
            return CategoryPrediction(category=category, confidence=probability)
        return None

    def get_learning_metrics(self) -> LearningMetrics:
        """Correction, pattern and auto-rule counts plus a rough improvement estimate.

        accuracy_improvement is a heuristic (1% per correction, capped at 50%),
        not a measured accuracy.
        """
        stats = self.store.get_stats()
        total = stats["user_corrections"]
        return LearningMetrics(
            total_corrections=total,
            patterns_learned=stats["learning_patterns"],
            rules_created=stats["rules_by_source"].get(RuleSource.AUTO.value, 0),
            accuracy_improvement=min(total * ACCURACY_PER_CORRECTION, ACCURACY_IMPROVEMENT_CAP),
            last_training_date=self.store.get_last_training_date(MODEL_NAME),
            is_training=self.is_training,
        )
