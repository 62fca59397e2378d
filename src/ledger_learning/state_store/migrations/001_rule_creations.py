"""
Migration 001: Add rule_creations table.

Records which corrections triggered each automatically induced rule.
"""

import sqlite3

VERSION = 1
NAME = "rule_creations"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create rule_creations table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS rule_creations (
            id TEXT PRIMARY KEY,
            rule_id TEXT NOT NULL,
            trigger_corrections TEXT NOT NULL,  -- JSON array of correction ids
            timestamp TEXT NOT NULL
        )
    """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_rule_creations_rule ON rule_creations(rule_id)")


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove rule_creations table."""
    conn.execute("DROP TABLE IF EXISTS rule_creations")
