"""SQLite-backed store for categories, senders and categorization jobs."""

import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from mailsort.schemas.senders import (
    CategorizationJob,
    Category,
    Sender,
    SenderPage,
    SenderState,
)

logger = logging.getLogger(__name__)

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS categories (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    name         TEXT NOT NULL UNIQUE COLLATE NOCASE,
    description  TEXT NOT NULL DEFAULT ''
);
CREATE TABLE IF NOT EXISTS senders (
    address      TEXT PRIMARY KEY,
    category_id  INTEGER REFERENCES categories(id) ON DELETE SET NULL,
    state        TEXT NOT NULL DEFAULT 'uncategorized',
    updated_at   TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS categorization_jobs (
    address      TEXT PRIMARY KEY,
    status       TEXT NOT NULL,
    enqueued_at  TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS settings (
    key          TEXT PRIMARY KEY,
    value        TEXT NOT NULL
);
"""

_SELECT_SENDER = """
SELECT s.address, s.state, c.name AS category
FROM senders s LEFT JOIN categories c ON c.id = s.category_id
WHERE s.address = ?
"""

_SELECT_UNCATEGORIZED = """
SELECT address FROM senders
WHERE category_id IS NULL
ORDER BY address ASC
LIMIT ? OFFSET ?
"""

AUTO_CATEGORIZE_KEY = "auto_categorize_senders"


def _now() -> str:
    return datetime.now(UTC).isoformat()


def normalize_address(address: str) -> str:
    return address.strip().lower()


class SenderStore:
    """Categories, sender→category assignments and queue job records.

    Usage::

        with SenderStore("/path/to/mailsort.db") as store:
            store.add_category("Newsletter")
            store.upsert_senders(["news@example.com"])
            page = store.list_uncategorized(offset=0, limit=100)
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_CREATE_TABLES)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SenderStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # --- Categories ---

    def add_category(self, name: str, description: str = "") -> Category:
        """Create a category.

        Raises:
            ValueError: If the name is blank or already used (any case).
        """
        name = name.strip()
        if not name:
            raise ValueError("Category name must not be blank")
        try:
            cursor = self._conn.execute(
                "INSERT INTO categories (name, description) VALUES (?, ?)",
                (name, description),
            )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"Category already exists: {name}") from exc
        self._conn.commit()
        logger.info("Created category %s", name)
        return Category(id=cursor.lastrowid, name=name, description=description)

    def list_categories(self) -> list[Category]:
        rows = self._conn.execute(
            "SELECT id, name, description FROM categories ORDER BY name COLLATE NOCASE"
        ).fetchall()
        return [Category(id=r["id"], name=r["name"], description=r["description"]) for r in rows]

    def remove_category(self, name: str) -> bool:
        """Delete a category; its senders become uncategorized."""
        row = self._conn.execute(
            "SELECT id FROM categories WHERE name = ? COLLATE NOCASE", (name.strip(),)
        ).fetchone()
        if row is None:
            return False
        self._conn.execute(
            "UPDATE senders SET category_id = NULL, state = ?, updated_at = ? WHERE category_id = ?",
            (SenderState.UNCATEGORIZED.value, _now(), row["id"]),
        )
        self._conn.execute("DELETE FROM categories WHERE id = ?", (row["id"],))
        self._conn.commit()
        return True

    # --- Senders ---

    def upsert_senders(self, addresses: list[str]) -> list[str]:
        """Record senders seen in mail. Returns the addresses that were new."""
        now = _now()
        added: list[str] = []
        for address in sorted({normalize_address(a) for a in addresses if a.strip()}):
            cursor = self._conn.execute(
                "INSERT OR IGNORE INTO senders (address, state, updated_at) VALUES (?, ?, ?)",
                (address, SenderState.UNCATEGORIZED.value, now),
            )
            if cursor.rowcount:
                added.append(address)
        self._conn.commit()
        return added

    def get_sender(self, address: str) -> Sender | None:
        row = self._conn.execute(_SELECT_SENDER, (normalize_address(address),)).fetchone()
        if row is None:
            return None
        return Sender(address=row["address"], category=row["category"], state=SenderState(row["state"]))

    def get_sender_category(self, address: str) -> str | None:
        sender = self.get_sender(address)
        return sender.category if sender else None

    def assign_category(self, address: str, category: Category | None) -> None:
        """Persist a sender's category (None leaves it uncategorized)."""
        address = normalize_address(address)
        state = SenderState.CATEGORIZED if category else SenderState.UNCATEGORIZED
        self._conn.execute(
            "INSERT INTO senders (address, category_id, state, updated_at) VALUES (?, ?, ?, ?)"
            " ON CONFLICT(address) DO UPDATE SET category_id = excluded.category_id,"
            " state = excluded.state, updated_at = excluded.updated_at",
            (address, category.id if category else None, state.value, _now()),
        )
        self._conn.commit()

    def set_state(self, address: str, state: SenderState) -> None:
        self._conn.execute(
            "INSERT INTO senders (address, state, updated_at) VALUES (?, ?, ?)"
            " ON CONFLICT(address) DO UPDATE SET state = excluded.state,"
            " updated_at = excluded.updated_at",
            (normalize_address(address), state.value, _now()),
        )
        self._conn.commit()

    def list_uncategorized(self, *, offset: int = 0, limit: int = 100) -> SenderPage:
        """One page of senders without a category, ordered by address."""
        rows = self._conn.execute(_SELECT_UNCATEGORIZED, (limit + 1, offset)).fetchall()
        addresses = [r["address"] for r in rows]
        next_offset = offset + limit if len(addresses) > limit else None
        return SenderPage(senders=addresses[:limit], next_offset=next_offset)

    def count_uncategorized(self) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) FROM senders WHERE category_id IS NULL"
        ).fetchone()
        return row[0]

    # --- Categorization jobs ---

    def add_job(self, address: str) -> None:
        address = normalize_address(address)
        self._conn.execute(
            "INSERT OR REPLACE INTO categorization_jobs (address, status, enqueued_at)"
            " VALUES (?, ?, ?)",
            (address, SenderState.QUEUED.value, _now()),
        )
        self._conn.commit()
        self.set_state(address, SenderState.QUEUED)

    def mark_job_running(self, address: str) -> None:
        address = normalize_address(address)
        self._conn.execute(
            "UPDATE categorization_jobs SET status = ? WHERE address = ?",
            (SenderState.RUNNING.value, address),
        )
        self._conn.commit()
        self.set_state(address, SenderState.RUNNING)

    def remove_job(self, address: str) -> None:
        self._conn.execute(
            "DELETE FROM categorization_jobs WHERE address = ?", (normalize_address(address),)
        )
        self._conn.commit()

    def list_jobs(self) -> list[CategorizationJob]:
        rows = self._conn.execute(
            "SELECT address, status, enqueued_at FROM categorization_jobs ORDER BY enqueued_at"
        ).fetchall()
        return [
            CategorizationJob(
                address=r["address"],
                status=SenderState(r["status"]),
                enqueued_at=datetime.fromisoformat(r["enqueued_at"]),
            )
            for r in rows
        ]

    def reset_stale_jobs(self) -> int:
        """Drop job records left by a process that exited mid-run."""
        jobs = self.list_jobs()
        for job in jobs:
            self.remove_job(job.address)
            sender = self.get_sender(job.address)
            if sender and sender.state in (SenderState.QUEUED, SenderState.RUNNING):
                self.set_state(job.address, SenderState.UNCATEGORIZED)
        if jobs:
            logger.info("Reset %d stale categorization job(s)", len(jobs))
        return len(jobs)

    # --- Settings ---

    @property
    def auto_categorize(self) -> bool:
        row = self._conn.execute(
            "SELECT value FROM settings WHERE key = ?", (AUTO_CATEGORIZE_KEY,)
        ).fetchone()
        return row is not None and row["value"] == "true"

    def set_auto_categorize(self, enabled: bool) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
            (AUTO_CATEGORIZE_KEY, "true" if enabled else "false"),
        )
        self._conn.commit()
