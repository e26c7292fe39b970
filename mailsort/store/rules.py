"""SQLite-backed rule store.

Rules are stored as JSON alongside their evaluation position; every save
goes through rule validation first, so an invalid rule is never persisted.
"""

import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from mailsort.rules.validation import check_rule
from mailsort.schemas.rules import Rule, RuleSettings

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS rules (
    id          TEXT PRIMARY KEY,
    position    INTEGER NOT NULL,
    name        TEXT NOT NULL,
    rule_json   TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
)
"""

_CREATE_SETTINGS = """
CREATE TABLE IF NOT EXISTS settings (
    key          TEXT PRIMARY KEY,
    value        TEXT NOT NULL
)
"""

RULES_PROMPT_KEY = "rules_prompt"

_UPSERT = """
INSERT INTO rules (id, position, name, rule_json, created_at, updated_at)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    name = excluded.name,
    rule_json = excluded.rule_json,
    updated_at = excluded.updated_at
"""


class RuleStore:
    """Persistent, ordered rule list.

    Usage::

        with RuleStore("/path/to/mailsort.db") as store:
            store.save(parse_rule(payload))
            rules = store.list_rules()
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_CREATE_TABLE)
        self._conn.execute(_CREATE_SETTINGS)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "RuleStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def save(self, rule: Rule) -> Rule:
        """Validate and insert or update a rule. New rules go last.

        Raises:
            RuleValidationError: If the rule breaks an invariant.
        """
        check_rule(rule)
        now = datetime.now(UTC).isoformat()
        row = self._conn.execute("SELECT COALESCE(MAX(position), -1) + 1 FROM rules").fetchone()
        self._conn.execute(
            _UPSERT,
            (rule.id, row[0], rule.name, rule.model_dump_json(by_alias=True), now, now),
        )
        self._conn.commit()
        logger.info("Saved rule %s (%s)", rule.id, rule.name)
        return rule

    def get(self, rule_id: str) -> Rule | None:
        row = self._conn.execute(
            "SELECT rule_json FROM rules WHERE id = ?", (rule_id,)
        ).fetchone()
        if row is None:
            return None
        return Rule.model_validate_json(row["rule_json"])

    def list_rules(self) -> list[Rule]:
        """All rules in evaluation order."""
        rows = self._conn.execute("SELECT rule_json FROM rules ORDER BY position ASC").fetchall()
        return [Rule.model_validate_json(r["rule_json"]) for r in rows]

    def delete(self, rule_id: str) -> bool:
        cursor = self._conn.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
        self._conn.commit()
        return cursor.rowcount > 0

    def update_instructions(self, rule_id: str, instructions: str) -> Rule:
        """Replace a rule's free-text instructions.

        Raises:
            ValueError: If the rule doesn't exist.
        """
        rule = self.get(rule_id)
        if rule is None:
            raise ValueError(f"Rule not found: {rule_id}")
        rule.instructions = instructions
        return self.save(rule)

    def update_settings(self, settings: RuleSettings) -> Rule:
        """Apply instructions and reply-draft settings to an existing rule.

        Raises:
            ValueError: If the rule doesn't exist.
        """
        rule = self.get(settings.id)
        if rule is None:
            raise ValueError(f"Rule not found: {settings.id}")
        rule.instructions = settings.instructions.strip() or None
        rule.draft_replies = settings.draft_replies
        rule.draft_replies_instructions = settings.draft_replies_instructions.strip() or None
        return self.save(rule)

    # --- Rules prompt ---

    @property
    def rules_prompt(self) -> str:
        """The free-text prompt the current rules were last written from."""
        row = self._conn.execute(
            "SELECT value FROM settings WHERE key = ?", (RULES_PROMPT_KEY,)
        ).fetchone()
        return row["value"] if row else ""

    def set_rules_prompt(self, prompt: str) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
            (RULES_PROMPT_KEY, prompt.strip()),
        )
        self._conn.commit()
