"""
Migration 002: Add model_blobs and training_metadata tables.

model_blobs holds the latest serialized classifier per name.
training_metadata logs every completed training cycle.
"""

import sqlite3

VERSION = 2
NAME = "model_storage"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create model storage tables."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS model_blobs (
            name TEXT PRIMARY KEY,
            blob TEXT NOT NULL,  -- JSON
            updated_at TEXT NOT NULL
        )
    """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS training_metadata (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            model_name TEXT NOT NULL,
            trained_at TEXT NOT NULL,
            corrections_seen INTEGER NOT NULL,
            sample_count INTEGER NOT NULL DEFAULT 0,
            accuracy REAL
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_training_metadata_model ON training_metadata(model_name)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove model storage tables."""
    conn.execute("DROP TABLE IF EXISTS training_metadata")
    conn.execute("DROP TABLE IF EXISTS model_blobs")
