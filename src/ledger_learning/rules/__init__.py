"""Rule evaluation, suggestion mining and rule management."""

from ledger_learning.rules.evaluator import (
    ConflictStrategy,
    RuleConflict,
    RuleEvaluation,
    RuleEvaluator,
    RuleResolution,
)
from ledger_learning.rules.manager import RuleManager, RuleNotFoundError, RuleTestResult
from ledger_learning.rules.suggestions import RuleSuggestionGenerator

__all__ = [
    "ConflictStrategy",
    "RuleConflict",
    "RuleEvaluation",
    "RuleEvaluator",
    "RuleManager",
    "RuleNotFoundError",
    "RuleResolution",
    "RuleSuggestionGenerator",
    "RuleTestResult",
]
