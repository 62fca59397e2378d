"""
Canonical transaction record (SSOT).

Transactions arrive from the extraction pipeline already well formed.
This core mutates their classification fields and confidence triplet
and never deletes them.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

CONFIDENCE_FIELDS = frozenset(
    {"extraction_confidence", "classification_confidence", "overall_confidence"}
)


class TransactionType(str, Enum):
    """Direction of money movement."""

    DEBIT = "debit"
    CREDIT = "credit"


def clamp_confidence(value: Any) -> float:
    """Clamp any real number into [0.0, 1.0].

    NaN and non-numeric input collapse to 0.0.
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return min(1.0, max(0.0, number))


def to_datetime(value: Any) -> Optional[datetime]:
    """Coerce a date, datetime or ISO string to datetime. Returns None if unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def to_decimal(value: Any) -> Optional[Decimal]:
    """Coerce an amount to Decimal. Returns None if unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    try:
        if isinstance(value, str):
            cleaned = value.replace("$", "").replace("€", "").replace(",", "").strip()
            return Decimal(cleaned)
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


@dataclass
class Transaction:
    """
    A single bank or card transaction.

    Amounts are signed; rule comparisons use the magnitude.
    The three confidence fields are clamped to [0, 1] on every write.
    """

    id: str
    date: datetime
    description: str
    amount: Decimal
    type: TransactionType = TransactionType.DEBIT
    merchant_name: Optional[str] = None
    reference_number: Optional[str] = None

    # Classification data (set by rules, classifier or user)
    category: Optional[str] = None
    subcategory: Optional[str] = None

    extraction_confidence: float = 0.0
    classification_confidence: float = 0.0
    overall_confidence: float = 0.0
    user_validated: bool = False
    applied_rules: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        parsed_date = to_datetime(self.date)
        if parsed_date is not None:
            # Naive timestamps are taken as UTC
            if parsed_date.tzinfo is None:
                parsed_date = parsed_date.replace(tzinfo=timezone.utc)
            self.date = parsed_date.astimezone(timezone.utc)
        parsed_amount = to_decimal(self.amount)
        if parsed_amount is not None:
            self.amount = parsed_amount
        if not isinstance(self.type, TransactionType):
            self.type = TransactionType(str(self.type).lower())

    def __setattr__(self, name: str, value: Any) -> None:
        if name in CONFIDENCE_FIELDS:
            value = clamp_confidence(value)
        super().__setattr__(name, value)

    @property
    def normalized_description(self) -> str:
        """Uppercased, whitespace-collapsed description."""
        return " ".join(self.description.upper().split())

    def add_applied_rule(self, rule_id: str) -> None:
        """Record a rule id (idempotent)."""
        if rule_id not in self.applied_rules:
            self.applied_rules.append(rule_id)

    def validation_errors(self) -> list[str]:
        """Return a list of missing or malformed required fields."""
        errors = []
        if not self.id:
            errors.append("id is missing")
        if not isinstance(self.date, datetime):
            errors.append("date is missing or invalid")
        if not isinstance(self.amount, Decimal):
            errors.append("amount is missing or invalid")
        if not isinstance(self.description, str) or not self.description.strip():
            errors.append("description is missing")
        return errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "description": self.description,
            "amount": str(self.amount),
            "type": self.type.value,
            "merchant_name": self.merchant_name,
            "reference_number": self.reference_number,
            "category": self.category,
            "subcategory": self.subcategory,
            "extraction_confidence": self.extraction_confidence,
            "classification_confidence": self.classification_confidence,
            "overall_confidence": self.overall_confidence,
            "user_validated": self.user_validated,
            "applied_rules": list(self.applied_rules),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Transaction":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            date=data["date"],
            description=data.get("description", ""),
            amount=data.get("amount"),
            type=TransactionType(data.get("type", "debit")),
            merchant_name=data.get("merchant_name"),
            reference_number=data.get("reference_number"),
            category=data.get("category"),
            subcategory=data.get("subcategory"),
            extraction_confidence=data.get("extraction_confidence", 0.0),
            classification_confidence=data.get("classification_confidence", 0.0),
            overall_confidence=data.get("overall_confidence", 0.0),
            user_validated=bool(data.get("user_validated", False)),
            applied_rules=list(data.get("applied_rules", [])),
        )
