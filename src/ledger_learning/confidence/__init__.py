"""
Confidence combination and review-tier decisions.

overall = weighted mean(extraction, classification, account info)
- overall >= auto_process_threshold -> auto accept
- overall >= targeted_review_threshold -> targeted review of the weakest field
- otherwise -> full review
"""

from .scorer import (
    BatchDecision,
    ConfidenceScorer,
    DecisionTier,
    TransactionDecision,
    UncertainItem,
    UncertainItemType,
)

__all__ = [
    "BatchDecision",
    "ConfidenceScorer",
    "DecisionTier",
    "TransactionDecision",
    "UncertainItem",
    "UncertainItemType",
]
