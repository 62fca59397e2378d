"""
Classification service: the host-facing entry point.

classify():
    rules first; if no rule set the category, the learned classifier is
    consulted; the confidence scorer then assigns the review tier.
    User-validated transactions keep their category.

record_correction():
    a reviewer changed a category; the transaction is updated and the
    learning engine and suggestion pool learn from it.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..config import Config
from ..confidence import BatchDecision, ConfidenceScorer, TransactionDecision
from ..learning import LearningEngine, LearningOutcome
from ..matching import DuplicateDetectionResult, DuplicateDetector
from ..rules import RuleConflict, RuleManager, RuleResolution
from ..schemas.feedback import FeedbackType, LearningMetrics, UserCorrection
from ..schemas.rules import Rule, RuleSuggestion
from ..schemas.transaction import Transaction
from ..state_store import StateStore

logger = logging.getLogger(__name__)

SOURCE_RULE = "rule"
SOURCE_MODEL = "model"


@dataclass
class ClassificationResult:
    """Per-transaction output for review UIs."""

    transaction_id: str
    category: Optional[str]
    subcategory: Optional[str]
    confidence: float
    applied_rules: list[str]
    decision: TransactionDecision
    # "rule", "model" or None when nothing classified the transaction
    source: Optional[str] = None
    conflicts: list[RuleConflict] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "category": self.category,
            "subcategory": self.subcategory,
            "confidence": self.confidence,
            "applied_rules": list(self.applied_rules),
            "decision": self.decision.to_dict(),
            "source": self.source,
            "conflicts": [c.to_dict() for c in self.conflicts],
        }


class ClassificationService:
    """Wires the store, rules, learning, duplicate and confidence engines together."""

    def __init__(self, config: Optional[Config] = None, store: Optional[StateStore] = None):
        self.config = config or Config()
        self.store = store or StateStore(
            self.config.state_db_path,
            max_patterns_to_store=self.config.learning.max_patterns_to_store,
        )
        self.rules = RuleManager(self.store, self.config.rules)
        self.learning = LearningEngine(self.store, self.config.learning)
        self.duplicates = DuplicateDetector(self.config.duplicates)
        self.scorer = ConfidenceScorer(self.config.confidence)

    def classify(
        self,
        transaction: Transaction,
        account_info_confidence: Optional[float] = None,
    ) -> Optional[ClassificationResult]:
        """
        Classify one transaction and persist it.

        Returns None (with a warning) for malformed transactions.
        """
        errors = transaction.validation_errors()
        if errors:
            logger.warning(
                "Skipping malformed transaction %r: %s", transaction.id, ", ".join(errors)
            )
            return None

        # A reviewer's category is final
        if transaction.user_validated:
            resolution = RuleResolution(transaction_id=transaction.id)
        else:
            resolution = self.rules.evaluator.apply_rules(self.rules.get_all_rules(), transaction)

        source = None
        if resolution.category_confidence is not None:
            transaction.classification_confidence = resolution.category_confidence
            source = SOURCE_RULE
        elif not transaction.user_validated:
            prediction = self.learning.predict_category(transaction)
            if prediction is not None:
                transaction.category = prediction.category
                transaction.classification_confidence = prediction.confidence
                source = SOURCE_MODEL

        decision = self.scorer.evaluate_transaction(transaction, account_info_confidence)
        self.store.upsert_transaction(transaction)

        logger.debug(
            "Classified %s as %r via %s (%s)",
            transaction.id,
            transaction.category,
            source or "nothing",
            decision.tier.value,
        )
        return ClassificationResult(
            transaction_id=transaction.id,
            category=transaction.category,
            subcategory=transaction.subcategory,
            confidence=transaction.classification_confidence,
            applied_rules=list(transaction.applied_rules),
            decision=decision,
            source=source,
            conflicts=resolution.conflicts,
        )

    def classify_batch(
        self,
        transactions: list[Transaction],
        account_info_confidence: Optional[float] = None,
    ) -> tuple[list[ClassificationResult], BatchDecision]:
        """Classify each transaction, then decide for the batch as a whole."""
        results = []
        classified = []
        for transaction in transactions:
            result = self.classify(transaction, account_info_confidence)
            if result is not None:
                results.append(result)
                classified.append(transaction)
        return results, self.scorer.evaluate_batch(classified, account_info_confidence)

    def detect_duplicates(self, transactions: list[Transaction]) -> DuplicateDetectionResult:
        return self.duplicates.detect_duplicates(transactions)

    def record_correction(
        self,
        transaction: Transaction,
        new_category: str,
        feedback_type: FeedbackType = FeedbackType.CATEGORY_CORRECTION,
    ) -> Optional[LearningOutcome]:
        """
        Apply a reviewer's category change and learn from it.

        The transaction becomes user-validated with classification
        confidence 1.0 once the correction is stored; if storing it fails
        the transaction is left unchanged. The suggestion pool is refreshed
        afterwards.
        """
        correction = UserCorrection.create(
            transaction_id=transaction.id,
            original_classification=transaction.category or "",
            corrected_classification=new_category,
            description=transaction.description,
            amount=transaction.amount,
            merchant_name=transaction.merchant_name,
            feedback_type=feedback_type,
            original_confidence=transaction.classification_confidence,
        )
        errors = correction.validation_errors()
        if errors:
            logger.warning(
                "Ignoring correction for transaction %r: %s", transaction.id, ", ".join(errors)
            )
            return None

        # The correction is stored before the transaction is marked validated
        outcome = self.learning.learn_from_correction(correction)

        transaction.category = new_category
        transaction.user_validated = True
        transaction.classification_confidence = 1.0
        self.scorer.evaluate_transaction(transaction)
        self.store.upsert_transaction(transaction)

        self.rules.analyze_corrections_for_rule_suggestions()
        return outcome

    # Pass-throughs for review UIs

    def get_rule_suggestions(self) -> list[RuleSuggestion]:
        return self.rules.get_rule_suggestions()

    def accept_suggestion(self, suggestion_id: str) -> Optional[Rule]:
        return self.rules.accept_suggestion(suggestion_id)

    def reject_suggestion(self, suggestion_id: str) -> bool:
        return self.rules.reject_suggestion(suggestion_id)

    def get_learning_metrics(self) -> LearningMetrics:
        return self.learning.get_learning_metrics()

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop background training; call before the host exits."""
        self.learning.shutdown(timeout)
