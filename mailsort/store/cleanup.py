"""SQLite-backed state for cleanup jobs: phase, cursor and seen messages."""

import logging
import sqlite3
import uuid
from datetime import UTC, datetime
from pathlib import Path

from mailsort.schemas.cleanup import CleanupConfig, CleanupJob, CleanupPhase

logger = logging.getLogger(__name__)

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS cleanup_jobs (
    id           TEXT PRIMARY KEY,
    config_json  TEXT NOT NULL,
    cutoff       TEXT NOT NULL,
    phase        TEXT NOT NULL,
    cursor       INTEGER NOT NULL DEFAULT 0,
    acted        INTEGER NOT NULL DEFAULT 0,
    skipped      INTEGER NOT NULL DEFAULT 0,
    failed       INTEGER NOT NULL DEFAULT 0,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS cleanup_seen (
    job_id   TEXT NOT NULL REFERENCES cleanup_jobs(id) ON DELETE CASCADE,
    uid      TEXT NOT NULL,
    outcome  TEXT NOT NULL,
    seen_at  TEXT NOT NULL,
    PRIMARY KEY (job_id, uid)
);
"""

_UPDATE_JOB = """
UPDATE cleanup_jobs
SET phase = ?, cursor = ?, acted = ?, skipped = ?, failed = ?, updated_at = ?
WHERE id = ?
"""


def _row_to_job(row: sqlite3.Row) -> CleanupJob:
    return CleanupJob(
        id=row["id"],
        config=CleanupConfig.model_validate_json(row["config_json"]),
        cutoff=datetime.fromisoformat(row["cutoff"]),
        phase=CleanupPhase(row["phase"]),
        cursor=row["cursor"],
        acted=row["acted"],
        skipped=row["skipped"],
        failed=row["failed"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class CleanupJobStore:
    """Persistent cleanup job records.

    Usage::

        with CleanupJobStore("/path/to/mailsort.db") as store:
            job = store.create(config, cutoff)
            if store.mark_seen(job.id, "1234", "acted"):
                ...
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

    def __enter__(self) -> "CleanupJobStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def create(self, config: CleanupConfig, cutoff: datetime) -> CleanupJob:
        """Create a job in the previewing phase."""
        now = datetime.now(UTC)
        job = CleanupJob(
            id=str(uuid.uuid4()),
            config=config,
            cutoff=cutoff,
            phase=CleanupPhase.PREVIEWING,
            created_at=now,
            updated_at=now,
        )
        self._conn.execute(
            "INSERT INTO cleanup_jobs (id, config_json, cutoff, phase, created_at, updated_at)"
            " VALUES (?, ?, ?, ?, ?, ?)",
            (
                job.id,
                config.model_dump_json(),
                cutoff.isoformat(),
                job.phase.value,
                now.isoformat(),
                now.isoformat(),
            ),
        )
        self._conn.commit()
        logger.info("Created cleanup job %s (days_old=%d)", job.id, config.days_old)
        return job

    def get(self, job_id: str) -> CleanupJob | None:
        row = self._conn.execute("SELECT * FROM cleanup_jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            return None
        return _row_to_job(row)

    def list_jobs(self, limit: int = 20) -> list[CleanupJob]:
        rows = self._conn.execute(
            "SELECT * FROM cleanup_jobs ORDER BY created_at DESC LIMIT ?", (limit,)
        ).fetchall()
        return [_row_to_job(r) for r in rows]

    def save(self, job: CleanupJob) -> CleanupJob:
        """Persist the job's phase, cursor and counters."""
        job.updated_at = datetime.now(UTC)
        self._conn.execute(
            _UPDATE_JOB,
            (
                job.phase.value,
                job.cursor,
                job.acted,
                job.skipped,
                job.failed,
                job.updated_at.isoformat(),
                job.id,
            ),
        )
        self._conn.commit()
        return job

    def mark_seen(self, job_id: str, uid: str, outcome: str) -> bool:
        """Record a message as handled by this job.

        Returns False if it was already recorded, in which case the caller
        must not touch it again.
        """
        cursor = self._conn.execute(
            "INSERT OR IGNORE INTO cleanup_seen (job_id, uid, outcome, seen_at) VALUES (?, ?, ?, ?)",
            (job_id, uid, outcome, datetime.now(UTC).isoformat()),
        )
        self._conn.commit()
        return cursor.rowcount == 1

    def is_seen(self, job_id: str, uid: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM cleanup_seen WHERE job_id = ? AND uid = ?", (job_id, uid)
        ).fetchone()
        return row is not None

    def seen_uids(self, job_id: str) -> set[str]:
        rows = self._conn.execute(
            "SELECT uid FROM cleanup_seen WHERE job_id = ?", (job_id,)
        ).fetchall()
        return {r["uid"] for r in rows}
