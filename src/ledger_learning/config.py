"""
Configuration management (SSOT).

This module defines ALL configuration for the classification core.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Every threshold and confidence default lives in [0, 1]
- Engines receive their config section by reference from the host; there is
  no module-level mutable configuration
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

CONFLICT_STRATEGIES = ("highest_confidence", "most_recent", "user_choice")


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class RuleConfig:
    """Rule evaluation and suggestion settings."""

    # Minimum corrections in a group before it is mined for suggestions
    min_corrections_for_suggestion: int = 2
    # Suggestions returned per analysis run
    max_suggestions_per_session: int = 5
    # highest_confidence | most_recent | user_choice
    conflict_resolution_strategy: str = "highest_confidence"
    # Sample size returned by rule testing
    test_sample_size: int = 10


@dataclass
class LearningConfig:
    """Learning engine settings."""

    # Similar corrections needed before a rule is induced automatically
    min_corrections_for_rule: int = 3
    # Classifier predictions at or below this probability are discarded
    confidence_threshold: float = 0.8
    # Learning patterns kept in the store (least recently seen pruned first)
    max_patterns_to_store: int = 1000
    # New corrections required since the last training run
    min_corrections_for_retraining: int = 10
    # Minimum time between two training runs
    retraining_interval_hours: float = 24.0
    # Hashed bag-of-words dimension
    feature_size: int = 100
    training_epochs: int = 200
    learning_rate: float = 1.0
    # Run retraining on a worker thread (False runs it inline)
    background_training: bool = True

    @property
    def retraining_interval_seconds(self) -> float:
        """Retraining interval in seconds."""
        return self.retraining_interval_hours * 3600.0


@dataclass
class DuplicateConfig:
    """Duplicate detection settings."""

    date_tolerance_days: int = 1
    # Strict amount tolerance (exact-cent match by default)
    amount_tolerance_absolute: float = 0.01
    amount_tolerance_percent: float = 0.0
    # Looser amount tolerance for "possible" duplicates (tips, FX drift)
    amount_drift_percent: float = 0.20
    exact_match_threshold: float = 0.99
    likely_match_threshold: float = 0.80
    possible_match_threshold: float = 0.70
    # Boost applied to the kept representative's extraction confidence
    representative_boost: float = 0.1
    # Batches larger than this are compared inside a sliding date window
    window_size: int = 500
    # Exact groups are proposed for merging; otherwise they are flagged
    enable_auto_merge: bool = True


@dataclass
class ConfidenceConfig:
    """Confidence combination weights and decision thresholds."""

    auto_process_threshold: float = 0.95
    targeted_review_threshold: float = 0.80
    extraction_weight: float = 1.0
    classification_weight: float = 1.0
    account_info_weight: float = 1.0


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    rules: RuleConfig = field(default_factory=RuleConfig)
    learning: LearningConfig = field(default_factory=LearningConfig)
    duplicates: DuplicateConfig = field(default_factory=DuplicateConfig)
    confidence: ConfidenceConfig = field(default_factory=ConfidenceConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.rules.conflict_resolution_strategy not in CONFLICT_STRATEGIES:
            errors.append(
                f"rules.conflict_resolution_strategy must be one of {CONFLICT_STRATEGIES}"
            )
        if self.rules.min_corrections_for_suggestion < 1:
            errors.append("rules.min_corrections_for_suggestion must be >= 1")
        if self.rules.max_suggestions_per_session < 0:
            errors.append("rules.max_suggestions_per_session must be >= 0")

        if self.learning.min_corrections_for_rule < 1:
            errors.append("learning.min_corrections_for_rule must be >= 1")
        if not 0.0 <= self.learning.confidence_threshold <= 1.0:
            errors.append("learning.confidence_threshold must be within [0, 1]")
        if self.learning.feature_size < 1:
            errors.append("learning.feature_size must be >= 1")
        if self.learning.retraining_interval_hours < 0:
            errors.append("learning.retraining_interval_hours must be >= 0")

        dup = self.duplicates
        for name in ("exact_match_threshold", "likely_match_threshold", "possible_match_threshold"):
            if not 0.0 <= getattr(dup, name) <= 1.0:
                errors.append(f"duplicates.{name} must be within [0, 1]")
        if not dup.possible_match_threshold <= dup.likely_match_threshold <= dup.exact_match_threshold:
            errors.append("duplicate thresholds must satisfy possible <= likely <= exact")
        if dup.date_tolerance_days < 0:
            errors.append("duplicates.date_tolerance_days must be >= 0")

        conf = self.confidence
        if not 0.0 <= conf.targeted_review_threshold <= 1.0:
            errors.append("confidence.targeted_review_threshold must be within [0, 1]")
        if not 0.0 <= conf.auto_process_threshold <= 1.0:
            errors.append("confidence.auto_process_threshold must be within [0, 1]")
        if conf.targeted_review_threshold > conf.auto_process_threshold:
            errors.append("targeted_review_threshold must be <= auto_process_threshold")
        weights = (conf.extraction_weight, conf.classification_weight, conf.account_info_weight)
        if any(w < 0 for w in weights) or sum(weights) <= 0:
            errors.append("confidence weights must be non-negative and not all zero")

        return errors


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name, "")
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default  # Keep default


def load_config(config_path: Path, strict: bool = False) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - LEDGER_LEARNING_DB (state database path)
    - LEDGER_LEARNING_CONFLICT_STRATEGY
    - LEDGER_LEARNING_RETRAIN_HOURS
    - LEDGER_LEARNING_CONFIDENCE_THRESHOLD (classifier cut-off)

    Args:
        config_path: Path to the YAML file. A missing file yields defaults.
        strict: Raise ConfigValidationError if validation fails.
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    rules_data = data.get("rules", {})
    rules = RuleConfig(
        min_corrections_for_suggestion=rules_data.get("min_corrections_for_suggestion", 2),
        max_suggestions_per_session=rules_data.get("max_suggestions_per_session", 5),
        conflict_resolution_strategy=os.environ.get(
            "LEDGER_LEARNING_CONFLICT_STRATEGY",
            rules_data.get("conflict_resolution_strategy", "highest_confidence"),
        ),
        test_sample_size=rules_data.get("test_sample_size", 10),
    )

    learning_data = data.get("learning", {})
    learning = LearningConfig(
        min_corrections_for_rule=learning_data.get("min_corrections_for_rule", 3),
        confidence_threshold=_env_float(
            "LEDGER_LEARNING_CONFIDENCE_THRESHOLD",
            learning_data.get("confidence_threshold", 0.8),
        ),
        max_patterns_to_store=learning_data.get("max_patterns_to_store", 1000),
        min_corrections_for_retraining=learning_data.get("min_corrections_for_retraining", 10),
        retraining_interval_hours=_env_float(
            "LEDGER_LEARNING_RETRAIN_HOURS",
            learning_data.get("retraining_interval_hours", 24.0),
        ),
        feature_size=learning_data.get("feature_size", 100),
        training_epochs=learning_data.get("training_epochs", 200),
        learning_rate=learning_data.get("learning_rate", 1.0),
        background_training=learning_data.get("background_training", True),
    )

    dup_data = data.get("duplicates", {})
    duplicates = DuplicateConfig(
        date_tolerance_days=dup_data.get("date_tolerance_days", 1),
        amount_tolerance_absolute=dup_data.get("amount_tolerance_absolute", 0.01),
        amount_tolerance_percent=dup_data.get("amount_tolerance_percent", 0.0),
        amount_drift_percent=dup_data.get("amount_drift_percent", 0.20),
        exact_match_threshold=dup_data.get("exact_match_threshold", 0.99),
        likely_match_threshold=dup_data.get("likely_match_threshold", 0.80),
        possible_match_threshold=dup_data.get("possible_match_threshold", 0.70),
        representative_boost=dup_data.get("representative_boost", 0.1),
        window_size=dup_data.get("window_size", 500),
        enable_auto_merge=dup_data.get("enable_auto_merge", True),
    )

    conf_data = data.get("confidence", {})
    weights = conf_data.get("weights", {})
    confidence = ConfidenceConfig(
        auto_process_threshold=conf_data.get("auto_process_threshold", 0.95),
        targeted_review_threshold=conf_data.get("targeted_review_threshold", 0.80),
        extraction_weight=weights.get("extraction", 1.0),
        classification_weight=weights.get("classification", 1.0),
        account_info_weight=weights.get("account_info", 1.0),
    )

    state_db = os.environ.get("LEDGER_LEARNING_DB", data.get("state_db_path", "data/state.db"))

    config = Config(
        rules=rules,
        learning=learning,
        duplicates=duplicates,
        confidence=confidence,
        state_db_path=Path(state_db),
    )

    if strict:
        errors = config.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))

    return config


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for a host process."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Transaction classification core configuration

# Rule evaluation and suggestion mining
rules:
  min_corrections_for_suggestion: 2        # Corrections per group before mining
  max_suggestions_per_session: 5           # Suggestions returned per analysis
  conflict_resolution_strategy: "highest_confidence"  # or most_recent, user_choice
  test_sample_size: 10                     # Sample matches returned by rule tests

# Learning from user corrections
learning:
  min_corrections_for_rule: 3              # Similar corrections before auto rule
  confidence_threshold: 0.8                # Classifier cut-off for predictions
  max_patterns_to_store: 1000
  min_corrections_for_retraining: 10       # New corrections before retraining
  retraining_interval_hours: 24
  feature_size: 100                        # Hashed bag-of-words dimension
  training_epochs: 200
  learning_rate: 1.0
  background_training: true

# Duplicate detection
duplicates:
  date_tolerance_days: 1
  amount_tolerance_absolute: 0.01          # Exact-cent match
  amount_tolerance_percent: 0.0
  amount_drift_percent: 0.20               # Allowed drift for possible duplicates
  exact_match_threshold: 0.99
  likely_match_threshold: 0.80
  possible_match_threshold: 0.70
  representative_boost: 0.1
  window_size: 500
  enable_auto_merge: true

# Review routing
confidence:
  auto_process_threshold: 0.95   # At or above: auto-accept
  targeted_review_threshold: 0.80  # At or above: targeted review, below: full review
  weights:
    extraction: 1.0
    classification: 1.0
    account_info: 1.0

# State database path
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
