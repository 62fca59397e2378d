"""
Text tokenization and hashed bag-of-words features.

Feature layout:
- Tokens are lowercase whitespace-separated words of description + merchant
- Each new token gets the next index in a growing vocabulary
- Feature index = vocabulary index % feature_size
- Counts are normalized to sum to 1

Collisions: once the vocabulary outgrows feature_size, unrelated tokens
share a bucket. The vocabulary is persisted with the model so indices
stay stable across save/load.
"""

import math
from collections.abc import Iterable
from typing import Optional

import numpy as np

DEFAULT_FEATURE_SIZE = 100

# Connectors ignored when extracting learning patterns
PATTERN_STOPWORDS = frozenset(
    {"the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by"}
)

# Connectors and generic transaction words ignored when mining suggestions
SUGGESTION_STOPWORDS = PATTERN_STOPWORDS | frozenset(
    {
        "from",
        "up",
        "about",
        "into",
        "through",
        "during",
        "before",
        "after",
        "above",
        "below",
        "between",
        "among",
        "purchase",
        "payment",
        "transaction",
        "debit",
        "credit",
    }
)


def tokenize(text: Optional[str]) -> list[str]:
    """Lowercase whitespace split."""
    return (text or "").lower().split()


def combined_text(description: Optional[str], merchant_name: Optional[str] = None) -> str:
    """The text a transaction or correction is classified by."""
    return f"{description or ''} {merchant_name or ''}".strip()


def pattern_tokens(
    description: Optional[str],
    merchant_name: Optional[str] = None,
    limit: int = 3,
) -> list[str]:
    """Top significant tokens (longer than two characters, not connectors), in order."""
    tokens: list[str] = []
    for token in tokenize(combined_text(description, merchant_name)):
        if len(token) <= 2 or token in PATTERN_STOPWORDS or token in tokens:
            continue
        tokens.append(token)
        if len(tokens) == limit:
            break
    return tokens


def suggestion_tokens(description: Optional[str]) -> set[str]:
    """Distinct tokens worth proposing as description rules (longer than three characters)."""
    return {
        token
        for token in tokenize(description)
        if len(token) > 3 and token not in SUGGESTION_STOPWORDS
    }


def common_tokens(descriptions: list[str]) -> list[str]:
    """Tokens (longer than two characters) present in at least half of the descriptions.

    Sorted by how many descriptions contain them, most common first.
    """
    if not descriptions:
        return []

    counts: dict[str, int] = {}
    for description in descriptions:
        for token in dict.fromkeys(t for t in tokenize(description) if len(t) > 2):
            counts[token] = counts.get(token, 0) + 1

    threshold = math.ceil(len(descriptions) / 2)
    common = [(token, count) for token, count in counts.items() if count >= threshold]
    common.sort(key=lambda item: item[1], reverse=True)
    return [token for token, _ in common]


class HashedVocabulary:
    """Growing token -> index map folded into a fixed-size feature vector."""

    def __init__(
        self,
        feature_size: int = DEFAULT_FEATURE_SIZE,
        vocabulary: Optional[dict[str, int]] = None,
    ) -> None:
        self.feature_size = feature_size
        self.vocabulary: dict[str, int] = dict(vocabulary or {})

    def __len__(self) -> int:
        return len(self.vocabulary)

    def copy(self) -> "HashedVocabulary":
        return HashedVocabulary(self.feature_size, self.vocabulary)

    def index_of(self, token: str, grow: bool = True) -> Optional[int]:
        """Feature index for a token; unknown tokens are added only when grow is set."""
        if token not in self.vocabulary:
            if not grow:
                return None
            self.vocabulary[token] = len(self.vocabulary)
        return self.vocabulary[token] % self.feature_size

    def transform(self, text: str, grow: bool = True) -> np.ndarray:
        """Normalized bag-of-words vector for one text."""
        features = np.zeros(self.feature_size, dtype=np.float64)
        for token in tokenize(text):
            index = self.index_of(token, grow=grow)
            if index is not None:
                features[index] += 1.0
        total = features.sum()
        if total > 0:
            features /= total
        return features

    def transform_many(self, texts: Iterable[str], grow: bool = True) -> np.ndarray:
        """Stack feature vectors for several texts into a (n, feature_size) matrix."""
        rows = [self.transform(text, grow=grow) for text in texts]
        if not rows:
            return np.zeros((0, self.feature_size), dtype=np.float64)
        return np.vstack(rows)
