"""
State Store (SQLite-based).

Persistent storage for the classification core:
- Transactions and classification rules
- User corrections and learned patterns
- Auto-rule provenance
- Trained classifier blobs and training history
"""

from .sqlite_store import StateStore, StorageUnavailableError, TrainingRecord

__all__ = [
    "StateStore",
    "StorageUnavailableError",
    "TrainingRecord",
]
