"""
Canonical data model (SSOT).

Every engine reads and writes these types; no other module may invent
another transaction, rule or correction schema.
"""

from .feedback import (
    FeedbackType,
    LearningMetrics,
    LearningPattern,
    PatternSource,
    UserCorrection,
)
from .rules import (
    ActionType,
    Condition,
    NumericCondition,
    NumericField,
    NumericOperator,
    Rule,
    RuleAction,
    RuleCreation,
    RuleSource,
    RuleSuggestion,
    StringCondition,
    StringField,
    StringOperator,
    UnsupportedCondition,
    condition_from_dict,
    numeric_condition,
    string_condition,
)
from .transaction import Transaction, TransactionType, clamp_confidence

__all__ = [
    "ActionType",
    "Condition",
    "FeedbackType",
    "LearningMetrics",
    "LearningPattern",
    "NumericCondition",
    "NumericField",
    "NumericOperator",
    "PatternSource",
    "Rule",
    "RuleAction",
    "RuleCreation",
    "RuleSource",
    "RuleSuggestion",
    "StringCondition",
    "StringField",
    "StringOperator",
    "Transaction",
    "TransactionType",
    "UnsupportedCondition",
    "UserCorrection",
    "clamp_confidence",
    "condition_from_dict",
    "numeric_condition",
    "string_condition",
]
