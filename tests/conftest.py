"""Test fixtures and utilities."""

from decimal import Decimal
from pathlib import Path

import pytest

from ledger_learning.config import Config, LearningConfig
from ledger_learning.schemas import Transaction, TransactionType, UserCorrection
from ledger_learning.state_store import StateStore


def make_transaction(
    tx_id: str = "tx-1",
    description: str = "STARBUCKS #1234",
    amount: str = "5.75",
    date: str = "2024-03-15",
    **kwargs,
) -> Transaction:
    """Build a transaction with sensible defaults."""
    kwargs.setdefault("type", TransactionType.DEBIT)
    return Transaction(
        id=tx_id,
        date=date,
        description=description,
        amount=Decimal(amount),
        **kwargs,
    )


def make_correction(
    category: str = "Gas",
    description: str = "SHELL OIL 57442",
    amount: str = "40.00",
    merchant_name: str | None = "Shell",
    transaction_id: str = "tx-1",
    original: str = "Uncategorized",
) -> UserCorrection:
    """Build a correction with a fresh id."""
    return UserCorrection.create(
        transaction_id=transaction_id,
        original_classification=original,
        corrected_classification=category,
        description=description,
        amount=Decimal(amount),
        merchant_name=merchant_name,
    )


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store."""
    return StateStore(temp_db)


@pytest.fixture
def learning_config() -> LearningConfig:
    """Learning settings that train inline and without an interval."""
    return LearningConfig(
        background_training=False,
        min_corrections_for_retraining=3,
        retraining_interval_hours=0.0,
    )


@pytest.fixture
def config(temp_db, learning_config) -> Config:
    """Full configuration pointed at the temporary database."""
    return Config(learning=learning_config, state_db_path=temp_db)


@pytest.fixture
def shell_corrections() -> list[UserCorrection]:
    """Three corrections moving Shell purchases to Gas."""
    return [
        make_correction(description="SHELL OIL 57442", amount="40.00", transaction_id="tx-1"),
        make_correction(description="SHELL OIL 12345", amount="42.00", transaction_id="tx-2"),
        make_correction(description="SHELL SERVICE STATION", amount="38.00", transaction_id="tx-3"),
    ]
