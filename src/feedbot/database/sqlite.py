# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Processing state SQLite implementation."""

import json
import logging
import sqlite3
import threading
from pathlib import Path

from feedbot.llm_client import UsageMetadata
from feedbot.persistence import Combination, PersistenceError, ProcessingStateEntry

logger = logging.getLogger(__name__)


class SQLiteStateStore:
    """Persist processing state to a SQLite database."""

    def __init__(self, db_path: Path) -> None:
        """Initialize persistence backend.

        Args:
            db_path: SQLite database file path.
        """
        self._db_path = db_path
        self._lock = threading.Lock()

    def load(self, combination: Combination) -> dict[str, ProcessingStateEntry]:
        """Load persisted entries for a combination.

        Args:
            combination: Model and strategy pair.

        Returns:
            Entries keyed by fingerprint.

        Raises:
            PersistenceError: If the database cannot be read.
        """
        with self._lock:
            connection = self._connect()
            try:
                self._ensure_schema(connection=connection)
                rows = connection.execute(
                    "SELECT fingerprint, hint, timestamp, usage FROM processed "
                    "WHERE model = ? AND strategy = ?",
                    (combination.model, combination.strategy),
                ).fetchall()
            except sqlite3.DatabaseError as exc:
                logger.warning(
                    f"SQLite state load failed (db_path={self._db_path} "
                    f"model={combination.model} strategy={combination.strategy} error={exc})"
                )
                raise PersistenceError(str(exc)) from exc
            finally:
                connection.close()
        return {
            fingerprint: ProcessingStateEntry(
                hint=hint, timestamp=timestamp, usage=_decode_usage(usage)
            )
            for fingerprint, hint, timestamp, usage in rows
        }

    def record(
        self, combination: Combination, fingerprint: str, entry: ProcessingStateEntry
    ) -> bool:
        """Insert one entry unless the key already exists.

        Args:
            combination: Model and strategy pair.
            fingerprint: Group fingerprint.
            entry: Entry to persist.

        Returns:
            ``True`` when inserted, ``False`` when the row already existed.

        Raises:
            PersistenceError: If the write fails.
        """
        usage = json.dumps(entry.usage.to_dict()) if entry.usage is not None else None
        with self._lock:
            connection = self._connect()
            try:
                self._ensure_schema(connection=connection)
                connection.execute("BEGIN")
                cursor = connection.execute(
                    "INSERT OR IGNORE INTO processed ("
                    "model, strategy, fingerprint, hint, timestamp, usage"
                    ") VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        combination.model,
                        combination.strategy,
                        fingerprint,
                        entry.hint,
                        entry.timestamp,
                        usage,
                    ),
                )
                connection.commit()
                return cursor.rowcount == 1
            except sqlite3.DatabaseError as exc:
                connection.rollback()
                logger.warning(
                    f"SQLite state write failed (db_path={self._db_path} "
                    f"model={combination.model} strategy={combination.strategy} "
                    f"fingerprint={fingerprint} error={exc})"
                )
                raise PersistenceError(str(exc)) from exc
            finally:
                connection.close()

    def combinations(self) -> list[Combination]:
        """Return every combination that has persisted entries."""
        with self._lock:
            connection = self._connect()
            try:
                self._ensure_schema(connection=connection)
                rows = connection.execute(
                    "SELECT DISTINCT model, strategy FROM processed ORDER BY model, strategy"
                ).fetchall()
            except sqlite3.DatabaseError as exc:
                logger.warning(f"SQLite state scan failed (db_path={self._db_path} error={exc})")
                raise PersistenceError(str(exc)) from exc
            finally:
                connection.close()
        return [Combination(model=model, strategy=strategy) for model, strategy in rows]

    def _connect(self) -> sqlite3.Connection:
        # Explicit BEGIN/commit; autocommit mode otherwise.
        return sqlite3.connect(self._db_path, isolation_level=None)

    def _ensure_schema(self, connection: sqlite3.Connection) -> None:
        """Create required tables when missing.

        Args:
            connection: Open SQLite connection.
        """
        connection.execute(
            "CREATE TABLE IF NOT EXISTS processed ("
            "model TEXT NOT NULL, "
            "strategy TEXT NOT NULL, "
            "fingerprint TEXT NOT NULL, "
            "hint TEXT NOT NULL, "
            "timestamp TEXT NOT NULL, "
            "usage TEXT, "
            "PRIMARY KEY (model, strategy, fingerprint)"
            ")"
        )


def _decode_usage(raw: str | None) -> UsageMetadata | None:
    if raw is None:
        return None
    try:
        return UsageMetadata.from_dict(json.loads(raw))
    except json.JSONDecodeError:
        logger.warning("Ignoring unreadable usage column")
        return None
