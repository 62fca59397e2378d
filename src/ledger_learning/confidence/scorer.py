"""
Confidence combination and review-tier decisions.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from ..config import ConfidenceConfig
from ..schemas.transaction import Transaction, clamp_confidence

EXTRACTION_FIELD = "extraction_confidence"
CLASSIFICATION_FIELD = "classification_confidence"
ACCOUNT_INFO_FIELD = "account_info_confidence"

# Data-completeness points per transaction field (out of 100)
VALIDATION_POINTS = {
    "date": 30,
    "amount": 30,
    "description": 20,
    "merchant_name": 10,
    "type": 5,
    "reference_number": 5,
}


class DecisionTier(str, Enum):
    """Review effort required for a transaction or batch."""

    AUTO_ACCEPT = "auto_accept"
    TARGETED_REVIEW = "targeted_review"  # Review only the flagged field
    FULL_REVIEW = "full_review"


class UncertainItemType(str, Enum):
    EXTRACTION = "extraction"
    CLASSIFICATION = "classification"
    VALIDATION = "validation"
    ACCOUNT_INFO = "account_info"


@dataclass
class UncertainItem:
    """Something in a batch a reviewer should look at."""

    id: str
    type: UncertainItemType
    description: str
    confidence: float
    suggested_action: str
    affected_transactions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "description": self.description,
            "confidence": self.confidence,
            "suggested_action": self.suggested_action,
            "affected_transactions": list(self.affected_transactions),
        }


@dataclass
class TransactionDecision:
    """Decision for one transaction."""

    transaction_id: str
    overall_confidence: float
    tier: DecisionTier
    # Lowest-confidence contributing field; set only for targeted review
    flagged_field: Optional[str] = None
    validation_confidence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "overall_confidence": self.overall_confidence,
            "tier": self.tier.value,
            "flagged_field": self.flagged_field,
            "validation_confidence": self.validation_confidence,
        }


@dataclass
class BatchDecision:
    """Aggregate decision for a batch of transactions."""

    extraction_confidence: float
    classification_confidence: float
    overall_confidence: float
    tier: DecisionTier
    decisions: list[TransactionDecision] = field(default_factory=list)
    uncertain_items: list[UncertainItem] = field(default_factory=list)
    reasoning: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "extraction_confidence": self.extraction_confidence,
            "classification_confidence": self.classification_confidence,
            "overall_confidence": self.overall_confidence,
            "tier": self.tier.value,
            "decisions": [d.to_dict() for d in self.decisions],
            "uncertain_items": [i.to_dict() for i in self.uncertain_items],
            "reasoning": self.reasoning,
        }


class ConfidenceScorer:
    """
    Combines per-transaction confidences and assigns review tiers.

    Tiers (lower bounds inclusive):
    - AUTO_ACCEPT: overall >= auto_process_threshold
    - TARGETED_REVIEW: overall >= targeted_review_threshold
    - FULL_REVIEW: otherwise

    When account-information confidence is unknown it is left out and the
    remaining weights are renormalized.
    """

    def __init__(self, config: Optional[ConfidenceConfig] = None):
        self.config = config or ConfidenceConfig()

    def _contributions(
        self,
        extraction: float,
        classification: float,
        account_info: Optional[float],
    ) -> list[tuple[str, float, float]]:
        parts = [
            (EXTRACTION_FIELD, clamp_confidence(extraction), self.config.extraction_weight),
            (CLASSIFICATION_FIELD, clamp_confidence(classification), self.config.classification_weight),
        ]
        if account_info is not None:
            parts.append(
                (ACCOUNT_INFO_FIELD, clamp_confidence(account_info), self.config.account_info_weight)
            )
        return parts

    def combine(
        self,
        extraction: float,
        classification: float,
        account_info: Optional[float] = None,
    ) -> float:
        """Weighted mean of the available confidences, clamped to [0, 1]."""
        parts = self._contributions(extraction, classification, account_info)
        total_weight = sum(weight for _, _, weight in parts)
        if total_weight <= 0:
            return 0.0
        return clamp_confidence(sum(value * weight for _, value, weight in parts) / total_weight)

    def tier_for(self, overall: float) -> DecisionTier:
        overall = clamp_confidence(overall)
        if overall >= self.config.auto_process_threshold:
            return DecisionTier.AUTO_ACCEPT
        if overall >= self.config.targeted_review_threshold:
            return DecisionTier.TARGETED_REVIEW
        return DecisionTier.FULL_REVIEW

    def evaluate_transaction(
        self,
        transaction: Transaction,
        account_info_confidence: Optional[float] = None,
    ) -> TransactionDecision:
        """Combine a transaction's confidences, store the result and pick a tier.

        Sets transaction.overall_confidence.
        """
        overall = self.combine(
            transaction.extraction_confidence,
            transaction.classification_confidence,
            account_info_confidence,
        )
        transaction.overall_confidence = overall
        tier = self.tier_for(overall)

        flagged = None
        if tier == DecisionTier.TARGETED_REVIEW:
            parts = self._contributions(
                transaction.extraction_confidence,
                transaction.classification_confidence,
                account_info_confidence,
            )
            # min() keeps the first of equal values
            flagged = min(parts, key=lambda part: part[1])[0]

        return TransactionDecision(
            transaction_id=transaction.id,
            overall_confidence=overall,
            tier=tier,
            flagged_field=flagged,
            validation_confidence=self.validation_confidence(transaction),
        )

    def validation_confidence(self, transaction: Transaction) -> float:
        """Data-completeness score in [0, 1]."""
        score = 0
        if transaction.date is not None:
            score += VALIDATION_POINTS["date"]
        if isinstance(transaction.amount, Decimal) and transaction.amount != 0:
            score += VALIDATION_POINTS["amount"]
        if isinstance(transaction.description, str) and transaction.description.strip():
            score += VALIDATION_POINTS["description"]
        if transaction.merchant_name:
            score += VALIDATION_POINTS["merchant_name"]
        if transaction.type:
            score += VALIDATION_POINTS["type"]
        if transaction.reference_number:
            score += VALIDATION_POINTS["reference_number"]
        return score / sum(VALIDATION_POINTS.values())

    def evaluate_batch(
        self,
        transactions: list[Transaction],
        account_info_confidence: Optional[float] = None,
    ) -> BatchDecision:
        """
        Decide for a whole batch.

        Batch extraction and classification confidences are means over the
        transactions; the batch tier comes from their weighted combination.
        An empty batch yields zero confidences and no items.
        """
        if not transactions:
            return BatchDecision(
                extraction_confidence=0.0,
                classification_confidence=0.0,
                overall_confidence=0.0,
                tier=self.tier_for(0.0),
                reasoning="No transactions to evaluate.",
            )

        decisions = [self.evaluate_transaction(t, account_info_confidence) for t in transactions]
        extraction = sum(t.extraction_confidence for t in transactions) / len(transactions)
        classification = sum(t.classification_confidence for t in transactions) / len(transactions)
        overall = self.combine(extraction, classification, account_info_confidence)
        tier = self.tier_for(overall)
        items = self.identify_uncertain_items(transactions, account_info_confidence)

        return BatchDecision(
            extraction_confidence=extraction,
            classification_confidence=classification,
            overall_confidence=overall,
            tier=tier,
            decisions=decisions,
            uncertain_items=items,
            reasoning=self._reasoning(extraction, classification, overall, tier, items),
        )

    def identify_uncertain_items(
        self,
        transactions: list[Transaction],
        account_info_confidence: Optional[float] = None,
    ) -> list[UncertainItem]:
        """List low-confidence or incomplete data a reviewer should check."""
        items: list[UncertainItem] = []
        for t in transactions:
            if t.extraction_confidence < self.config.targeted_review_threshold:
                items.append(
                    UncertainItem(
                        id=f"extraction_{t.id}",
                        type=UncertainItemType.EXTRACTION,
                        description=f"Low confidence in transaction extraction: {t.description}",
                        confidence=t.extraction_confidence,
                        suggested_action="Verify transaction details and amounts",
                        affected_transactions=[t.id],
                    )
                )
            if t.validation_errors() or t.amount == 0:
                items.append(
                    UncertainItem(
                        id=f"validation_{t.id}",
                        type=UncertainItemType.VALIDATION,
                        description=f"Missing critical transaction data: {t.description}",
                        confidence=0.0,
                        suggested_action="Manually enter missing date or amount",
                        affected_transactions=[t.id],
                    )
                )
            if t.classification_confidence < self.config.auto_process_threshold:
                items.append(
                    UncertainItem(
                        id=f"classification_{t.id}",
                        type=UncertainItemType.CLASSIFICATION,
                        description=f"Uncertain category classification for: {t.description}",
                        confidence=t.classification_confidence,
                        suggested_action=f"Review suggested category: {t.category or 'none'}",
                        affected_transactions=[t.id],
                    )
                )

        if (
            account_info_confidence is not None
            and clamp_confidence(account_info_confidence) < self.config.auto_process_threshold
        ):
            items.append(
                UncertainItem(
                    id="account_info_validation",
                    type=UncertainItemType.ACCOUNT_INFO,
                    description="Account information extraction has low confidence",
                    confidence=clamp_confidence(account_info_confidence),
                    suggested_action="Verify account number, type, and statement period",
                )
            )
        return items

    def _reasoning(
        self,
        extraction: float,
        classification: float,
        overall: float,
        tier: DecisionTier,
        items: list[UncertainItem],
    ) -> str:
        reasoning = (
            f"Overall confidence: {overall * 100:.1f}% "
            f"(Extraction: {extraction * 100:.1f}%, "
            f"Classification: {classification * 100:.1f}%). "
        )
        if tier == DecisionTier.AUTO_ACCEPT:
            return reasoning + "High confidence in all areas allows for automatic processing."

        if tier == DecisionTier.TARGETED_REVIEW:
            reasoning += "Moderate confidence requires targeted review of specific items."
            if items:
                shown = ", ".join(item.description for item in items[:3])
                reasoning += f" {len(items)} item(s) need attention: {shown}"
                if len(items) > 3:
                    reasoning += f" and {len(items) - 3} more"
                reasoning += "."
            return reasoning

        reasoning += "Low confidence requires comprehensive review before processing."
        if extraction < self.config.targeted_review_threshold:
            reasoning += " Extraction quality is below acceptable threshold."
        return reasoning
