"""
SQLite-based state store implementation.

Tables:
- transactions: Canonical transaction records (JSON) keyed by id
- rules: Classification rules (JSON) keyed by id
- user_corrections: Append-only correction history
- learning_patterns: Token patterns, unique per (pattern, category)
- rule_creations: Provenance of auto-induced rules (migration 001)
- model_blobs / training_metadata: Classifier weights and training log (migration 002)
"""

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..schemas.feedback import LearningPattern, PatternSource, UserCorrection
from ..schemas.rules import Rule, RuleCreation
from ..schemas.transaction import Transaction, to_datetime

logger = logging.getLogger(__name__)

DEFAULT_MAX_PATTERNS = 1000


class StorageUnavailableError(Exception):
    """The backing store could not complete an operation.

    The operation was rolled back; the caller decides whether to retry.
    """


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class TrainingRecord:
    """One completed training cycle."""

    id: int
    model_name: str
    trained_at: str  # ISO timestamp
    corrections_seen: int
    sample_count: int
    accuracy: float | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "TrainingRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            model_name=row["model_name"],
            trained_at=row["trained_at"],
            corrections_seen=row["corrections_seen"],
            sample_count=row["sample_count"],
            accuracy=row["accuracy"],
        )


def _pattern_from_row(row: sqlite3.Row) -> LearningPattern:
    return LearningPattern(
        id=row["id"],
        pattern=row["pattern"],
        category=row["category"],
        confidence=row["confidence"],
        occurrences=row["occurrences"],
        last_seen=to_datetime(row["last_seen"]),
        source=PatternSource(row["source"]),
    )


class StateStore:
    """
    SQLite-based state store for the classification core.

    Provides persistent tracking of:
    - Transactions and the rules applied to them
    - Classification rules and their provenance
    - User corrections and learned patterns
    - Trained classifier blobs and training history

    Every public method runs in its own transaction. Thread-safe for
    single-writer scenarios (one connection per call).
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: Path | str,
        run_migrations: bool = True,
        max_patterns_to_store: int = DEFAULT_MAX_PATTERNS,
    ):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
            max_patterns_to_store: Upper bound on retained learning patterns
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.max_patterns_to_store = max_patterns_to_store
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        try:
            conn = sqlite3.connect(str(self.db_path))
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions.

        sqlite3 errors are rolled back and re-raised as StorageUnavailableError.
        """
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageUnavailableError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            # Schema version tracking
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transactions (
                    id TEXT PRIMARY KEY,
                    date TEXT NOT NULL,
                    category TEXT,
                    user_validated INTEGER NOT NULL DEFAULT 0,
                    data_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS rules (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    source TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    created_date TEXT NOT NULL,
                    rule_json TEXT NOT NULL
                )
            """
            )

            # Append-only: corrections are never updated
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS user_corrections (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    transaction_id TEXT NOT NULL,
                    corrected_classification TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    correction_json TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS learning_patterns (
                    id TEXT PRIMARY KEY,
                    pattern TEXT NOT NULL,
                    category TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    occurrences INTEGER NOT NULL DEFAULT 1,
                    last_seen TEXT NOT NULL,
                    source TEXT NOT NULL,
                    UNIQUE (pattern, category)
                )
            """
            )

            conn.execute("CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(date)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_corrections_category "
                "ON user_corrections(corrected_classification)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_patterns_last_seen ON learning_patterns(last_seen)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Migration failed: {e}") from e
        finally:
            conn.close()

    # Transaction methods

    def upsert_transaction(self, transaction: Transaction) -> None:
        """Insert or replace a transaction record."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO transactions (id, date, category, user_validated, data_json, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    date = excluded.date,
                    category = excluded.category,
                    user_validated = excluded.user_validated,
                    data_json = excluded.data_json,
                    updated_at = excluded.updated_at
            """,
                (
                    transaction.id,
                    transaction.date.isoformat(),
                    transaction.category,
                    1 if transaction.user_validated else 0,
                    json.dumps(transaction.to_dict()),
                    _now_iso(),
                ),
            )

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        """Get a transaction by id."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT data_json FROM transactions WHERE id = ?", (transaction_id,)
            ).fetchone()
        return Transaction.from_dict(json.loads(row["data_json"])) if row else None

    def list_transactions(self, limit: int | None = None) -> list[Transaction]:
        """List transactions, newest first."""
        query = "SELECT data_json FROM transactions ORDER BY date DESC, id"
        params: tuple[Any, ...] = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [Transaction.from_dict(json.loads(row["data_json"])) for row in rows]

    # Rule methods

    @staticmethod
    def _insert_rule(conn: sqlite3.Connection, rule: Rule) -> None:
        conn.execute(
            """
            INSERT INTO rules (id, name, source, confidence, created_date, rule_json)
            VALUES (?, ?, ?, ?, ?, ?)
        """,
            (
                rule.id,
                rule.name,
                rule.source.value,
                rule.confidence,
                _iso(rule.created_date),
                json.dumps(rule.to_dict()),
            ),
        )

    def add_rule(self, rule: Rule) -> None:
        """Insert a new rule. Raises StorageUnavailableError on duplicate id."""
        with self._transaction() as conn:
            self._insert_rule(conn, rule)

    def add_rule_with_provenance(self, rule: Rule, creation: RuleCreation) -> None:
        """Insert an induced rule and its provenance entry atomically."""
        with self._transaction() as conn:
            self._insert_rule(conn, rule)
            conn.execute(
                """
                INSERT INTO rule_creations (id, rule_id, trigger_corrections, timestamp)
                VALUES (?, ?, ?, ?)
            """,
                (
                    creation.id,
                    creation.rule_id,
                    json.dumps(creation.trigger_corrections),
                    _iso(creation.timestamp),
                ),
            )

    def update_rule(self, rule: Rule) -> bool:
        """Replace a stored rule. Returns False if no rule has that id."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE rules
                SET name = ?, source = ?, confidence = ?, created_date = ?, rule_json = ?
                WHERE id = ?
            """,
                (
                    rule.name,
                    rule.source.value,
                    rule.confidence,
                    _iso(rule.created_date),
                    json.dumps(rule.to_dict()),
                    rule.id,
                ),
            )
            return cursor.rowcount > 0

    def delete_rule(self, rule_id: str) -> bool:
        """Delete a rule. Returns False if no rule has that id."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
            return cursor.rowcount > 0

    def get_rule(self, rule_id: str) -> Rule | None:
        """Get a rule by id."""
        with self._transaction() as conn:
            row = conn.execute("SELECT rule_json FROM rules WHERE id = ?", (rule_id,)).fetchone()
        return Rule.from_dict(json.loads(row["rule_json"])) if row else None

    def list_rules(self) -> list[Rule]:
        """List all rules, oldest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT rule_json FROM rules ORDER BY created_date, id"
            ).fetchall()
        return [Rule.from_dict(json.loads(row["rule_json"])) for row in rows]

    def list_rule_creations(self, rule_id: str | None = None) -> list[RuleCreation]:
        """List provenance entries, optionally for one rule."""
        query = "SELECT * FROM rule_creations"
        params: tuple[Any, ...] = ()
        if rule_id is not None:
            query += " WHERE rule_id = ?"
            params = (rule_id,)
        query += " ORDER BY timestamp, id"
        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            RuleCreation(
                id=row["id"],
                rule_id=row["rule_id"],
                trigger_corrections=json.loads(row["trigger_corrections"]),
                timestamp=to_datetime(row["timestamp"]),
            )
            for row in rows
        ]

    # Correction methods

    def add_correction(self, correction: UserCorrection) -> None:
        """Append a correction to the history."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO user_corrections
                (id, transaction_id, corrected_classification, timestamp, correction_json)
                VALUES (?, ?, ?, ?, ?)
            """,
                (
                    correction.id,
                    correction.transaction_id,
                    correction.corrected_classification,
                    _iso(correction.timestamp),
                    json.dumps(correction.to_dict()),
                ),
            )

    def list_corrections(self, category: str | None = None) -> list[UserCorrection]:
        """List corrections in the order they were recorded."""
        query = "SELECT correction_json FROM user_corrections"
        params: tuple[Any, ...] = ()
        if category is not None:
            query += " WHERE corrected_classification = ?"
            params = (category,)
        query += " ORDER BY seq"
        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [UserCorrection.from_dict(json.loads(row["correction_json"])) for row in rows]

    def count_corrections(self) -> int:
        """Total number of recorded corrections."""
        with self._transaction() as conn:
            return conn.execute("SELECT COUNT(*) FROM user_corrections").fetchone()[0]

    def get_latest_correction(self) -> UserCorrection | None:
        """Most recently recorded correction."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT correction_json FROM user_corrections ORDER BY seq DESC LIMIT 1"
            ).fetchone()
        return UserCorrection.from_dict(json.loads(row["correction_json"])) if row else None

    # Learning pattern methods

    def upsert_learning_pattern(
        self,
        pattern: str,
        category: str,
        source: PatternSource = PatternSource.USER_CORRECTION,
        seen_at: datetime | None = None,
    ) -> LearningPattern:
        """
        Record one observation of (pattern, category).

        New pairs start at confidence 0.7 with one occurrence; repeats add one
        occurrence and 0.1 confidence (capped at 1.0). When the table grows past
        max_patterns_to_store, the least recently seen patterns are dropped.

        Returns:
            The pattern as stored after this observation.
        """
        seen_at = seen_at or datetime.now(timezone.utc)
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM learning_patterns WHERE pattern = ? AND category = ?",
                (pattern, category),
            ).fetchone()

            if row:
                learned = _pattern_from_row(row)
                learned.reinforce(seen_at)
                conn.execute(
                    """
                    UPDATE learning_patterns
                    SET confidence = ?, occurrences = ?, last_seen = ?
                    WHERE id = ?
                """,
                    (learned.confidence, learned.occurrences, _iso(learned.last_seen), learned.id),
                )
            else:
                learned = LearningPattern(
                    id=f"pattern_{uuid.uuid4().hex[:16]}",
                    pattern=pattern,
                    category=category,
                    last_seen=seen_at,
                    source=source,
                )
                conn.execute(
                    """
                    INSERT INTO learning_patterns
                    (id, pattern, category, confidence, occurrences, last_seen, source)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        learned.id,
                        learned.pattern,
                        learned.category,
                        learned.confidence,
                        learned.occurrences,
                        _iso(learned.last_seen),
                        learned.source.value,
                    ),
                )

            self._prune_patterns(conn)
        return learned

    def _prune_patterns(self, conn: sqlite3.Connection) -> None:
        count = conn.execute("SELECT COUNT(*) FROM learning_patterns").fetchone()[0]
        excess = count - self.max_patterns_to_store
        if excess <= 0:
            return
        conn.execute(
            """
            DELETE FROM learning_patterns WHERE id IN (
                SELECT id FROM learning_patterns ORDER BY last_seen ASC, occurrences ASC LIMIT ?
            )
        """,
            (excess,),
        )
        logger.debug("Pruned %d least recently seen learning patterns", excess)

    def list_learning_patterns(self, category: str | None = None) -> list[LearningPattern]:
        """List learned patterns, strongest first."""
        query = "SELECT * FROM learning_patterns"
        params: tuple[Any, ...] = ()
        if category is not None:
            query += " WHERE category = ?"
            params = (category,)
        query += " ORDER BY confidence DESC, occurrences DESC, pattern"
        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_pattern_from_row(row) for row in rows]

    def count_learning_patterns(self) -> int:
        with self._transaction() as conn:
            return conn.execute("SELECT COUNT(*) FROM learning_patterns").fetchone()[0]

    # Model methods

    def save_model_blob(
        self,
        name: str,
        blob: str,
        corrections_seen: int,
        sample_count: int = 0,
        accuracy: float | None = None,
    ) -> None:
        """Store a trained model and its training record in one transaction."""
        now = _now_iso()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO model_blobs (name, blob, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET blob = excluded.blob, updated_at = excluded.updated_at
            """,
                (name, blob, now),
            )
            conn.execute(
                """
                INSERT INTO training_metadata
                (model_name, trained_at, corrections_seen, sample_count, accuracy)
                VALUES (?, ?, ?, ?, ?)
            """,
                (name, now, corrections_seen, sample_count, accuracy),
            )

    def get_model_blob(self, name: str) -> str | None:
        """Get a stored model blob by name."""
        with self._transaction() as conn:
            row = conn.execute("SELECT blob FROM model_blobs WHERE name = ?", (name,)).fetchone()
        return row["blob"] if row else None

    def get_latest_training(self, name: str | None = None) -> TrainingRecord | None:
        """Most recent training record, optionally for one model."""
        query = "SELECT * FROM training_metadata"
        params: tuple[Any, ...] = ()
        if name is not None:
            query += " WHERE model_name = ?"
            params = (name,)
        query += " ORDER BY id DESC LIMIT 1"
        with self._transaction() as conn:
            row = conn.execute(query, params).fetchone()
        return TrainingRecord.from_row(row) if row else None

    def get_last_training_date(self, name: str | None = None) -> datetime | None:
        record = self.get_latest_training(name)
        return to_datetime(record.trained_at) if record else None

    def get_corrections_at_last_training(self, name: str | None = None) -> int:
        record = self.get_latest_training(name)
        return record.corrections_seen if record else 0

    # Statistics

    def get_stats(self) -> dict[str, Any]:
        """Get row counts for every table."""
        with self._transaction() as conn:
            stats: dict[str, Any] = {}
            for table in (
                "transactions",
                "rules",
                "user_corrections",
                "learning_patterns",
                "rule_creations",
                "training_metadata",
            ):
                stats[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            rows = conn.execute(
                "SELECT source, COUNT(*) AS n FROM rules GROUP BY source"
            ).fetchall()
            stats["rules_by_source"] = {row["source"]: row["n"] for row in rows}
        return stats
