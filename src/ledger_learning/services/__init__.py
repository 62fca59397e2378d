"""Host-facing services."""

from .classification import ClassificationResult, ClassificationService

__all__ = ["ClassificationResult", "ClassificationService"]
