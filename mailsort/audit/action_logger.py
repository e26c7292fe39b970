"""Append-only audit log for executed actions.

Writes ActionAuditEntry records as JSON Lines (one JSON object per line).
"""

import logging
from datetime import UTC, datetime
from pathlib import Path

from mailsort.schemas.actions import ActionAuditEntry, ActionOutcome, ActionStatus
from mailsort.schemas.email import EmailMessage
from mailsort.schemas.rules import Rule

logger = logging.getLogger(__name__)


class ActionAuditLog:
    """Append-only JSONL audit log.

    Usage::

        audit = ActionAuditLog("/path/to/action_audit.jsonl")
        audit.log_outcome(email, rule.id, rule.name, outcome)

        entries = audit.read_entries(since=some_datetime)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, entry: ActionAuditEntry) -> None:
        """Append a single audit entry to the log file."""
        with self._path.open("a") as f:
            f.write(entry.model_dump_json() + "\n")
        logger.debug(
            "Action audit: %s email=%s rule=%s action=%s",
            entry.event,
            entry.email_id,
            entry.rule_id,
            entry.action_type,
        )

    def log_outcome(
        self,
        email: EmailMessage,
        rule_id: str,
        rule_name: str,
        outcome: ActionOutcome,
    ) -> ActionAuditEntry | None:
        """Log an applied or failed action. Duplicates are not logged."""
        if outcome.status == ActionStatus.DUPLICATE:
            return None
        entry = ActionAuditEntry(
            timestamp=datetime.now(UTC),
            event="action_applied" if outcome.status == ActionStatus.APPLIED else "action_failed",
            email_id=email.uid,
            rule_id=rule_id,
            rule_name=rule_name,
            from_address=email.from_address,
            subject=email.subject,
            action_type=outcome.action_type,
            error=outcome.error,
        )
        self.log(entry)
        return entry

    def log_awaiting_approval(self, email: EmailMessage, rule: Rule) -> ActionAuditEntry:
        """Log a match on a rule that does not run automatically."""
        entry = ActionAuditEntry(
            timestamp=datetime.now(UTC),
            event="awaiting_approval",
            email_id=email.uid,
            rule_id=rule.id,
            rule_name=rule.name,
            from_address=email.from_address,
            subject=email.subject,
        )
        self.log(entry)
        return entry

    def read_entries(
        self,
        *,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[ActionAuditEntry]:
        """Read audit entries, oldest first, optionally after ``since``."""
        if not self._path.exists():
            return []

        entries: list[ActionAuditEntry] = []
        with self._path.open() as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                entry = ActionAuditEntry.model_validate_json(line)
                if since and entry.timestamp <= since:
                    continue
                entries.append(entry)

        if limit is not None:
            entries = entries[-limit:]
        return entries
