"""
Rule, condition and action types.

Conditions are a tagged union:
- StringCondition: merchant_name / description / category with string operators
- NumericCondition: amount with numeric operators
- UnsupportedCondition: anything else loaded from storage or user input

An UnsupportedCondition never matches, so malformed rules fail closed
instead of raising during evaluation.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Union

from .transaction import Transaction, clamp_confidence, to_datetime

logger = logging.getLogger(__name__)


class StringField(str, Enum):
    """Transaction fields compared as lowercase strings."""

    MERCHANT_NAME = "merchantName"
    DESCRIPTION = "description"
    CATEGORY = "category"


class NumericField(str, Enum):
    """Transaction fields compared as numbers (magnitude)."""

    AMOUNT = "amount"


class StringOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"


class NumericOperator(str, Enum):
    EQUALS = "equals"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"


class ActionType(str, Enum):
    """Field a rule writes when it fires."""

    SET_CATEGORY = "setCategory"
    SET_SUBCATEGORY = "setSubcategory"
    SET_MERCHANT_NAME = "setMerchantName"


class RuleSource(str, Enum):
    """Who created a rule."""

    USER = "user"
    AUTO = "auto"  # Induced by the learning engine
    SUGGESTION = "suggestion"  # Accepted rule suggestion


@dataclass(frozen=True)
class StringCondition:
    """String comparison against a lowercased transaction field."""

    field: StringField
    operator: StringOperator
    value: str

    def field_value(self, transaction: Transaction) -> str:
        if self.field == StringField.MERCHANT_NAME:
            return (transaction.merchant_name or "").lower()
        if self.field == StringField.DESCRIPTION:
            return (transaction.description or "").lower()
        return (transaction.category or "").lower()

    def matches(self, transaction: Transaction) -> bool:
        actual = self.field_value(transaction)
        expected = self.value.lower()
        if self.operator == StringOperator.EQUALS:
            return actual == expected
        if self.operator == StringOperator.CONTAINS:
            return expected in actual
        if self.operator == StringOperator.STARTS_WITH:
            return actual.startswith(expected)
        return actual.endswith(expected)

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field.value, "operator": self.operator.value, "value": self.value}


@dataclass(frozen=True)
class NumericCondition:
    """Numeric comparison against the transaction amount magnitude."""

    operator: NumericOperator
    value: Decimal
    field: NumericField = NumericField.AMOUNT

    def matches(self, transaction: Transaction) -> bool:
        if not isinstance(transaction.amount, Decimal):
            return False
        actual = abs(transaction.amount)
        if self.operator == NumericOperator.EQUALS:
            return actual == self.value
        if self.operator == NumericOperator.GREATER_THAN:
            return actual > self.value
        return actual < self.value

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field.value, "operator": self.operator.value, "value": float(self.value)}


@dataclass(frozen=True)
class UnsupportedCondition:
    """A field/operator/value combination that cannot be evaluated."""

    field: str
    operator: str
    value: Any
    reason: str = ""

    def matches(self, transaction: Transaction) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "operator": self.operator, "value": self.value}


Condition = Union[StringCondition, NumericCondition, UnsupportedCondition]


def condition_from_dict(data: dict[str, Any]) -> Condition:
    """
    Build a condition from its serialized form.

    Never raises: type mismatches (numeric operator on a string field,
    non-numeric value for amount, unknown field) yield UnsupportedCondition.
    """
    field_name = data.get("field")
    operator = data.get("operator")
    value = data.get("value")

    if field_name == NumericField.AMOUNT.value:
        try:
            numeric_op = NumericOperator(operator)
        except ValueError:
            return UnsupportedCondition(
                str(field_name), str(operator), value, "string operator on numeric field"
            )
        if isinstance(value, bool):
            return UnsupportedCondition(str(field_name), str(operator), value, "non-numeric value")
        try:
            number = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return UnsupportedCondition(str(field_name), str(operator), value, "non-numeric value")
        if not number.is_finite():
            return UnsupportedCondition(str(field_name), str(operator), value, "non-finite value")
        return NumericCondition(operator=numeric_op, value=number)

    try:
        string_field = StringField(field_name)
    except ValueError:
        return UnsupportedCondition(str(field_name), str(operator), value, "unknown field")
    try:
        string_op = StringOperator(operator)
    except ValueError:
        return UnsupportedCondition(
            str(field_name), str(operator), value, "numeric operator on string field"
        )
    if not isinstance(value, str):
        return UnsupportedCondition(str(field_name), str(operator), value, "non-string value")
    return StringCondition(field=string_field, operator=string_op, value=value)


@dataclass(frozen=True)
class RuleAction:
    """Mutation applied when a rule fires."""

    type: ActionType
    value: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RuleAction":
        return cls(type=ActionType(data["type"]), value=str(data["value"]))


def _new_rule_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Rule:
    """
    Condition set (AND semantics) plus an action.

    User-created rules carry confidence 1.0; induced rules 0.8-0.9.
    """

    id: str
    name: str
    conditions: list[Condition]
    action: RuleAction
    confidence: float = 1.0
    created_date: datetime = field(default_factory=_utcnow)
    source: RuleSource = RuleSource.USER

    def __post_init__(self) -> None:
        self.confidence = clamp_confidence(self.confidence)
        if self.created_date.tzinfo is None:
            self.created_date = self.created_date.replace(tzinfo=timezone.utc)

    @classmethod
    def create(
        cls,
        name: str,
        conditions: list[Condition],
        action: RuleAction,
        confidence: float = 1.0,
        source: RuleSource = RuleSource.USER,
    ) -> "Rule":
        """Create a rule with a fresh id."""
        prefix = "auto_rule" if source == RuleSource.AUTO else "user_rule"
        return cls(
            id=_new_rule_id(prefix),
            name=name,
            conditions=list(conditions),
            action=action,
            confidence=confidence,
            source=source,
        )

    def signature(self) -> tuple:
        """Identity of what the rule does, ignoring id, name and confidence."""
        conditions = tuple(
            (c.to_dict()["field"], c.to_dict()["operator"], str(c.to_dict()["value"]).lower())
            for c in self.conditions
        )
        return conditions, self.action.type.value, self.action.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "conditions": [c.to_dict() for c in self.conditions],
            "action": self.action.to_dict(),
            "confidence": self.confidence,
            "created_date": self.created_date.isoformat(),
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Rule":
        conditions = [condition_from_dict(c) for c in data.get("conditions", [])]
        for condition in conditions:
            if isinstance(condition, UnsupportedCondition):
                logger.warning(
                    "Rule %s has unsupported condition %s %s %r (%s); it will never match",
                    data.get("id"),
                    condition.field,
                    condition.operator,
                    condition.value,
                    condition.reason,
                )
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            conditions=conditions,
            action=RuleAction.from_dict(data["action"]),
            confidence=data.get("confidence", 1.0),
            created_date=to_datetime(data.get("created_date")) or _utcnow(),
            source=RuleSource(data.get("source", RuleSource.USER.value)),
        )


@dataclass
class RuleSuggestion:
    """Ephemeral, confidence-ranked candidate rule mined from corrections."""

    id: str
    name: str
    description: str
    conditions: list[Condition]
    action: RuleAction
    confidence: float
    based_on_corrections: list[str] = field(default_factory=list)
    estimated_matches: int = 0

    def __post_init__(self) -> None:
        self.confidence = clamp_confidence(self.confidence)

    def signature(self) -> tuple:
        """Same identity scheme as Rule.signature()."""
        return Rule(
            id=self.id, name=self.name, conditions=self.conditions, action=self.action
        ).signature()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "conditions": [c.to_dict() for c in self.conditions],
            "action": self.action.to_dict(),
            "confidence": self.confidence,
            "based_on_corrections": list(self.based_on_corrections),
            "estimated_matches": self.estimated_matches,
        }


@dataclass
class RuleCreation:
    """Provenance of an automatically induced rule."""

    id: str
    rule_id: str
    trigger_corrections: list[str]
    timestamp: datetime = field(default_factory=_utcnow)

    @classmethod
    def for_rule(cls, rule: Rule, trigger_corrections: list[str]) -> "RuleCreation":
        return cls(
            id=f"rule_creation_{uuid.uuid4().hex[:16]}",
            rule_id=rule.id,
            trigger_corrections=list(trigger_corrections),
        )


def string_condition(field_name: str, operator: str, value: str) -> StringCondition:
    """Shorthand used by rule builders."""
    return StringCondition(StringField(field_name), StringOperator(operator), value)


def numeric_condition(operator: str, value: Any) -> NumericCondition:
    """Shorthand used by rule builders."""
    return NumericCondition(NumericOperator(operator), Decimal(str(value)))


def describe_condition(condition: Condition) -> str:
    """Human-readable rendering for logs and reasons."""
    data = condition.to_dict()
    return f"{data['field']} {data['operator']} {data['value']!r}"
