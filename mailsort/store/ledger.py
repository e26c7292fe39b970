"""Dedup ledger for executed actions.

One row per (email, rule, action type). A row is claimed before the side
effect runs; the claim is a single INSERT OR IGNORE, so two executions of
the same tuple can never both proceed.
"""

import sqlite3
from datetime import UTC, datetime
from pathlib import Path

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS action_executions (
    email_id     TEXT NOT NULL,
    rule_id      TEXT NOT NULL,
    action_type  TEXT NOT NULL,
    status       TEXT NOT NULL,
    claimed_at   TEXT NOT NULL,
    completed_at TEXT,
    PRIMARY KEY (email_id, rule_id, action_type)
)
"""


class ExecutionLedger:
    """Usage::

        ledger = ExecutionLedger("/path/to/mailsort.db")
        if ledger.claim("1234", rule.id, "ARCHIVE"):
            try:
                await provider.archive("1234")
            except Exception:
                ledger.release("1234", rule.id, "ARCHIVE")
                raise
            ledger.complete("1234", rule.id, "ARCHIVE")
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_CREATE_TABLE)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "ExecutionLedger":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def claim(self, email_id: str, rule_id: str, action_type: str) -> bool:
        """Atomically claim a tuple. False means it was already claimed."""
        cursor = self._conn.execute(
            "INSERT OR IGNORE INTO action_executions"
            " (email_id, rule_id, action_type, status, claimed_at) VALUES (?, ?, ?, 'claimed', ?)",
            (email_id, rule_id, action_type, datetime.now(UTC).isoformat()),
        )
        self._conn.commit()
        return cursor.rowcount == 1

    def complete(self, email_id: str, rule_id: str, action_type: str) -> None:
        self._conn.execute(
            "UPDATE action_executions SET status = 'done', completed_at = ?"
            " WHERE email_id = ? AND rule_id = ? AND action_type = ?",
            (datetime.now(UTC).isoformat(), email_id, rule_id, action_type),
        )
        self._conn.commit()

    def release(self, email_id: str, rule_id: str, action_type: str) -> None:
        """Drop a claim after a failed attempt so a later run may retry."""
        self._conn.execute(
            "DELETE FROM action_executions WHERE email_id = ? AND rule_id = ? AND action_type = ?",
            (email_id, rule_id, action_type),
        )
        self._conn.commit()

    def status(self, email_id: str, rule_id: str, action_type: str) -> str | None:
        row = self._conn.execute(
            "SELECT status FROM action_executions"
            " WHERE email_id = ? AND rule_id = ? AND action_type = ?",
            (email_id, rule_id, action_type),
        ).fetchone()
        return row[0] if row else None
