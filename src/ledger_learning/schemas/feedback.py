"""
User feedback records: corrections and the patterns learned from them.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from .transaction import clamp_confidence, to_datetime, to_decimal

# Upsert constants for learning patterns
PATTERN_INITIAL_CONFIDENCE = 0.7
PATTERN_CONFIDENCE_STEP = 0.1


class FeedbackType(str, Enum):
    """Kind of user edit that produced a correction."""

    CATEGORY_CORRECTION = "category_correction"
    MERCHANT_CORRECTION = "merchant_correction"
    VALIDATION_CORRECTION = "validation_correction"
    CLASSIFICATION_CORRECTION = "classification_correction"


class PatternSource(str, Enum):
    USER_CORRECTION = "user_correction"
    VALIDATION = "validation"
    RULE_APPLICATION = "rule_application"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UserCorrection:
    """
    Immutable historical record of one user edit of a transaction's category.

    Feeds pattern extraction, rule induction, suggestion mining and training.
    """

    id: str
    transaction_id: str
    original_classification: str
    corrected_classification: str
    description: str
    amount: Decimal
    merchant_name: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)
    feedback_type: FeedbackType = FeedbackType.CATEGORY_CORRECTION
    original_confidence: Optional[float] = None

    def __post_init__(self) -> None:
        parsed = to_decimal(self.amount)
        if parsed is not None:
            self.amount = parsed
        parsed_ts = to_datetime(self.timestamp)
        if parsed_ts is not None:
            self.timestamp = parsed_ts
        if self.timestamp.tzinfo is None:
            self.timestamp = self.timestamp.replace(tzinfo=timezone.utc)
        if not isinstance(self.feedback_type, FeedbackType):
            self.feedback_type = FeedbackType(self.feedback_type)

    @classmethod
    def create(
        cls,
        transaction_id: str,
        original_classification: str,
        corrected_classification: str,
        description: str,
        amount: Any,
        merchant_name: Optional[str] = None,
        feedback_type: FeedbackType = FeedbackType.CATEGORY_CORRECTION,
        original_confidence: Optional[float] = None,
    ) -> "UserCorrection":
        """Create a correction with a fresh id and the current timestamp."""
        return cls(
            id=f"correction_{uuid.uuid4().hex[:16]}",
            transaction_id=transaction_id,
            original_classification=original_classification,
            corrected_classification=corrected_classification,
            description=description,
            amount=amount,
            merchant_name=merchant_name,
            feedback_type=feedback_type,
            original_confidence=original_confidence,
        )

    def validation_errors(self) -> list[str]:
        """Return a list of missing or malformed required fields."""
        errors = []
        if not self.id:
            errors.append("id is missing")
        if not self.transaction_id:
            errors.append("transaction_id is missing")
        if not self.corrected_classification:
            errors.append("corrected_classification is missing")
        if not isinstance(self.description, str):
            errors.append("description is missing")
        if not isinstance(self.amount, Decimal):
            errors.append("amount is missing or invalid")
        return errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "original_classification": self.original_classification,
            "corrected_classification": self.corrected_classification,
            "description": self.description,
            "amount": str(self.amount),
            "merchant_name": self.merchant_name,
            "timestamp": self.timestamp.isoformat(),
            "feedback_type": self.feedback_type.value,
            "original_confidence": self.original_confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserCorrection":
        return cls(
            id=data["id"],
            transaction_id=data["transaction_id"],
            original_classification=data.get("original_classification") or "",
            corrected_classification=data["corrected_classification"],
            description=data.get("description") or "",
            amount=data.get("amount"),
            merchant_name=data.get("merchant_name"),
            timestamp=data.get("timestamp") or _utcnow(),
            feedback_type=FeedbackType(
                data.get("feedback_type", FeedbackType.CATEGORY_CORRECTION.value)
            ),
            original_confidence=data.get("original_confidence"),
        )


@dataclass
class LearningPattern:
    """
    A durable token fragment associated with a category.

    Strengthened each time the same (pattern, category) pair is seen again.
    """

    id: str
    pattern: str
    category: str
    confidence: float = PATTERN_INITIAL_CONFIDENCE
    occurrences: int = 1
    last_seen: datetime = field(default_factory=_utcnow)
    source: PatternSource = PatternSource.USER_CORRECTION

    def __post_init__(self) -> None:
        self.confidence = clamp_confidence(self.confidence)
        if not isinstance(self.source, PatternSource):
            self.source = PatternSource(self.source)

    def reinforce(self, seen_at: Optional[datetime] = None) -> None:
        """Apply one repeat observation: more occurrences, higher confidence."""
        self.occurrences += 1
        self.confidence = clamp_confidence(self.confidence + PATTERN_CONFIDENCE_STEP)
        self.last_seen = seen_at or _utcnow()


@dataclass
class LearningMetrics:
    """Summary of what the learning engine has accumulated."""

    total_corrections: int = 0
    patterns_learned: int = 0
    rules_created: int = 0
    accuracy_improvement: float = 0.0
    last_training_date: Optional[datetime] = None
    is_training: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_corrections": self.total_corrections,
            "patterns_learned": self.patterns_learned,
            "rules_created": self.rules_created,
            "accuracy_improvement": self.accuracy_improvement,
            "last_training_date": (
                self.last_training_date.isoformat() if self.last_training_date else None
            ),
            "is_training": self.is_training,
        }
