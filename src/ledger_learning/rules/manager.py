"""
Rule management: CRUD, application, testing and the suggestion pool.

Rules live in the state store. Suggestions are mined from stored
corrections and held in memory only; accepting one materializes a
persisted Rule, rejecting one discards it.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from ..config import RuleConfig
from ..schemas.rules import (
    ActionType,
    Condition,
    Rule,
    RuleAction,
    RuleSource,
    RuleSuggestion,
    condition_from_dict,
)
from ..schemas.transaction import Transaction, clamp_confidence
from ..state_store import StateStore
from .evaluator import RuleEvaluator, RuleResolution
from .suggestions import RuleSuggestionGenerator

logger = logging.getLogger(__name__)


class RuleNotFoundError(KeyError):
    """No rule with the given id exists."""


@dataclass
class RuleTestResult:
    """Dry-run outcome of a rule definition over stored transactions."""

    match_count: int
    sample_matches: list[Transaction] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "match_count": self.match_count,
            "sample_matches": [t.to_dict() for t in self.sample_matches],
        }


def _coerce_conditions(conditions: list[Condition | dict[str, Any]]) -> list[Condition]:
    return [condition_from_dict(c) if isinstance(c, dict) else c for c in conditions]


def _coerce_action(action: RuleAction | dict[str, Any]) -> RuleAction:
    return RuleAction.from_dict(action) if isinstance(action, dict) else action


class RuleManager:
    """Owns the persisted rule set and the in-memory suggestion pool."""

    def __init__(self, store: StateStore, config: RuleConfig | None = None) -> None:
        self.store = store
        self.config = config or RuleConfig()
        self.evaluator = RuleEvaluator(self.config.conflict_resolution_strategy)
        self.generator = RuleSuggestionGenerator(
            min_corrections=self.config.min_corrections_for_suggestion,
            max_suggestions=self.config.max_suggestions_per_session,
        )
        self._suggestions: dict[str, RuleSuggestion] = {}
        self._lock = threading.Lock()

    # Rule CRUD

    def create_rule(
        self,
        name: str,
        conditions: list[Condition | dict[str, Any]],
        action: RuleAction | dict[str, Any],
    ) -> Rule:
        """Create and persist a user rule (confidence 1.0).

        Raises:
            ValueError: If the rule has no conditions.
        """
        parsed = _coerce_conditions(conditions)
        if not parsed:
            raise ValueError("A rule needs at least one condition")
        rule = Rule.create(name, parsed, _coerce_action(action), confidence=1.0)
        self.store.add_rule(rule)
        logger.info("Created rule %s (%s)", rule.id, rule.name)
        return rule

    def update_rule(
        self,
        rule_id: str,
        name: str | None = None,
        conditions: list[Condition | dict[str, Any]] | None = None,
        action: RuleAction | dict[str, Any] | None = None,
        confidence: float | None = None,
    ) -> Rule:
        """Edit selected fields of a stored rule.

        Raises:
            RuleNotFoundError: If no rule has that id.
            ValueError: If the update would leave the rule without conditions.
        """
        rule = self.store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)

        if name is not None:
            rule.name = name
        if conditions is not None:
            parsed = _coerce_conditions(conditions)
            if not parsed:
                raise ValueError("A rule needs at least one condition")
            rule.conditions = parsed
        if action is not None:
            rule.action = _coerce_action(action)
        if confidence is not None:
            rule.confidence = clamp_confidence(confidence)

        if not self.store.update_rule(rule):
            raise RuleNotFoundError(rule_id)
        logger.info("Updated rule %s", rule_id)
        return rule

    def delete_rule(self, rule_id: str) -> bool:
        """Delete a rule. Returns False if it did not exist."""
        deleted = self.store.delete_rule(rule_id)
        if deleted:
            logger.info("Deleted rule %s", rule_id)
        return deleted

    def get_rule(self, rule_id: str) -> Rule | None:
        return self.store.get_rule(rule_id)

    def get_all_rules(self) -> list[Rule]:
        return self.store.list_rules()

    # Application

    def apply_rules(self, transaction: Transaction) -> RuleResolution:
        """Apply every stored rule to a transaction and persist the result."""
        resolution = self.evaluator.apply_rules(self.store.list_rules(), transaction)
        if resolution.category_confidence is not None:
            transaction.classification_confidence = resolution.category_confidence
        self.store.upsert_transaction(transaction)
        return resolution

    def test_rule(
        self,
        conditions: list[Condition | dict[str, Any]],
        action: RuleAction | dict[str, Any] | None = None,
    ) -> RuleTestResult:
        """Count stored transactions a rule definition would match.

        Nothing is applied or persisted.
        """
        if action is None:
            action = RuleAction(ActionType.SET_CATEGORY, "")
        candidate = Rule(
            id="rule_test",
            name="rule test",
            conditions=_coerce_conditions(conditions),
            action=_coerce_action(action),
        )
        if not candidate.conditions:
            return RuleTestResult(match_count=0)

        matches = [
            t for t in self.store.list_transactions() if self.evaluator.evaluate(candidate, t).applied
        ]
        return RuleTestResult(
            match_count=len(matches),
            sample_matches=matches[: self.config.test_sample_size],
        )

    # Suggestions

    def analyze_corrections_for_rule_suggestions(self) -> list[RuleSuggestion]:
        """Re-mine stored corrections and replace the suggestion pool.

        Suggestions identical to an existing rule (same conditions and
        action) are dropped.
        """
        existing = {rule.signature() for rule in self.store.list_rules()}
        fresh = self.generator.generate(self.store.list_corrections(), exclude=existing)

        with self._lock:
            self._suggestions = {s.id: s for s in fresh}
        logger.debug("Suggestion pool refreshed: %d suggestions", len(fresh))
        return fresh

    def get_rule_suggestions(self) -> list[RuleSuggestion]:
        """Current suggestion pool, highest confidence first."""
        with self._lock:
            pool = list(self._suggestions.values())
        return sorted(pool, key=lambda s: s.confidence, reverse=True)

    def accept_suggestion(self, suggestion_id: str) -> Rule | None:
        """Materialize a suggestion as a persisted rule, keeping its confidence.

        Returns None if the suggestion is not in the pool.
        """
        with self._lock:
            suggestion = self._suggestions.pop(suggestion_id, None)
        if suggestion is None:
            logger.warning("Suggestion %s not found", suggestion_id)
            return None

        rule = Rule.create(
            suggestion.name,
            suggestion.conditions,
            suggestion.action,
            confidence=suggestion.confidence,
            source=RuleSource.SUGGESTION,
        )
        try:
            self.store.add_rule(rule)
        except Exception:
            with self._lock:
                self._suggestions.setdefault(suggestion.id, suggestion)
            raise
        logger.info("Accepted suggestion %s as rule %s (%s)", suggestion_id, rule.id, rule.name)
        return rule

    def reject_suggestion(self, suggestion_id: str) -> bool:
        """Discard a suggestion. Returns False if it was not in the pool."""
        with self._lock:
            removed = self._suggestions.pop(suggestion_id, None)
        if removed is not None:
            logger.info("Rejected suggestion %s", suggestion_id)
        return removed is not None
