"""Rule evaluation and conflict resolution.

A rule fires when every condition holds (AND). When several rules fire
for one transaction they are taken in descending confidence order and
grouped by action type:
- all rules in a group write the same value: no conflict, apply once
- rules write different values: conflict, resolved by the configured
  strategy (highest_confidence, most_recent or user_choice)

Rules whose action type is alone in its group always apply, even when
their confidence is lower than a rule in another group.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from ..schemas.rules import ActionType, Rule, describe_condition
from ..schemas.transaction import Transaction

logger = logging.getLogger(__name__)


class ConflictStrategy(str, Enum):
    """How to pick a winner among rules writing different values."""

    HIGHEST_CONFIDENCE = "highest_confidence"
    MOST_RECENT = "most_recent"
    USER_CHOICE = "user_choice"


@dataclass
class RuleEvaluation:
    """Outcome of evaluating one rule against one transaction."""

    rule_id: str
    rule_name: str
    applied: bool
    confidence: float
    reason: str

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "applied": self.applied,
            "confidence": self.confidence,
            "reason": self.reason,
        }


@dataclass
class RuleConflict:
    """Structured report of rules that disagree on one action type.

    recommended_rule is None when the strategy defers to the user.
    """

    transaction_id: str
    action_type: ActionType
    conflicting_rules: list[Rule]
    recommended_rule: Rule | None
    strategy: ConflictStrategy
    reason: str

    @property
    def requires_user_choice(self) -> bool:
        return self.recommended_rule is None

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "action_type": self.action_type.value,
            "conflicting_rules": [r.id for r in self.conflicting_rules],
            "recommended_rule": self.recommended_rule.id if self.recommended_rule else None,
            "strategy": self.strategy.value,
            "reason": self.reason,
        }


@dataclass
class RuleResolution:
    """Everything that happened when a rule set met a transaction."""

    transaction_id: str
    evaluations: list[RuleEvaluation] = field(default_factory=list)
    applied_rule_ids: list[str] = field(default_factory=list)
    conflicts: list[RuleConflict] = field(default_factory=list)
    # Confidence of the rule that set the category, if any
    category_confidence: float | None = None

    @property
    def matched_rule_ids(self) -> list[str]:
        return [e.rule_id for e in self.evaluations if e.applied]


class RuleEvaluator:
    """Evaluates rules against transactions and applies the winners."""

    def __init__(
        self,
        strategy: ConflictStrategy | str = ConflictStrategy.HIGHEST_CONFIDENCE,
    ) -> None:
        self.strategy = ConflictStrategy(strategy)

    def evaluate(self, rule: Rule, transaction: Transaction) -> RuleEvaluation:
        """Check a rule's conditions in declaration order.

        The first failing condition fails the rule. Conditions that cannot
        be evaluated (type mismatches) simply fail.
        """
        for index, condition in enumerate(rule.conditions):
            if not condition.matches(transaction):
                return RuleEvaluation(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    applied=False,
                    confidence=0.0,
                    reason=f"Condition {index + 1} not met: {describe_condition(condition)}",
                )

        return RuleEvaluation(
            rule_id=rule.id,
            rule_name=rule.name,
            applied=True,
            confidence=rule.confidence,
            reason="All conditions met",
        )

    def condition_satisfaction(self, rule: Rule, transaction: Transaction) -> list[bool]:
        """Evaluate every condition independently (no short-circuit).

        Used for incremental scoring of suggestions; never applies the action.
        """
        return [condition.matches(transaction) for condition in rule.conditions]

    def apply(self, rule: Rule, transaction: Transaction) -> None:
        """Write the rule's action to the transaction and record the rule id."""
        action = rule.action
        if action.type == ActionType.SET_CATEGORY:
            transaction.category = action.value
        elif action.type == ActionType.SET_SUBCATEGORY:
            transaction.subcategory = action.value
        elif action.type == ActionType.SET_MERCHANT_NAME:
            transaction.merchant_name = action.value
        transaction.add_applied_rule(rule.id)

    def apply_rules(self, rules: list[Rule], transaction: Transaction) -> RuleResolution:
        """Evaluate a rule set against a transaction and apply the winners.

        Args:
            rules: Candidate rules, in any order.
            transaction: Transaction to mutate.

        Returns:
            RuleResolution with per-rule evaluations and conflict reports.
        """
        resolution = RuleResolution(transaction_id=transaction.id)
        ordered = sorted(rules, key=lambda r: r.confidence, reverse=True)

        matched: list[Rule] = []
        for rule in ordered:
            evaluation = self.evaluate(rule, transaction)
            resolution.evaluations.append(evaluation)
            if evaluation.applied:
                matched.append(rule)

        groups: dict[ActionType, list[Rule]] = {}
        for rule in matched:
            groups.setdefault(rule.action.type, []).append(rule)

        for action_type, group in groups.items():
            values = {rule.action.value for rule in group}
            if len(values) == 1:
                winner: Rule | None = group[0]
            else:
                winner = self._resolve_conflict(action_type, group, transaction, resolution)

            if winner is None:
                continue

            self.apply(winner, transaction)
            for rule in group:
                if rule.action.value == winner.action.value:
                    transaction.add_applied_rule(rule.id)
                    if rule.id not in resolution.applied_rule_ids:
                        resolution.applied_rule_ids.append(rule.id)
            if action_type == ActionType.SET_CATEGORY:
                resolution.category_confidence = winner.confidence

        logger.debug(
            "Transaction %s: %d rules evaluated, %d matched, %d conflicts",
            transaction.id,
            len(ordered),
            len(matched),
            len(resolution.conflicts),
        )
        return resolution

    def _resolve_conflict(
        self,
        action_type: ActionType,
        group: list[Rule],
        transaction: Transaction,
        resolution: RuleResolution,
    ) -> Rule | None:
        if self.strategy == ConflictStrategy.HIGHEST_CONFIDENCE:
            winner: Rule | None = group[0]
            for rule in group[1:]:
                if rule.confidence > winner.confidence:
                    winner = rule
        elif self.strategy == ConflictStrategy.MOST_RECENT:
            winner = group[0]
            for rule in group[1:]:
                if rule.created_date > winner.created_date:
                    winner = rule
        else:
            winner = None

        values = ", ".join(sorted({r.action.value for r in group}))
        if winner is None:
            reason = (
                f"Multiple rules set {action_type.value} to different values ({values}); "
                "awaiting user choice"
            )
        else:
            reason = (
                f"Multiple rules set {action_type.value} to different values ({values}); "
                f"using {self.strategy.value} strategy"
            )

        resolution.conflicts.append(
            RuleConflict(
                transaction_id=transaction.id,
                action_type=action_type,
                conflicting_rules=list(group),
                recommended_rule=winner,
                strategy=self.strategy,
                reason=reason,
            )
        )
        logger.info("Rule conflict on transaction %s: %s", transaction.id, reason)
        return winner
