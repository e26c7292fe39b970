"""Two-phase inbox cleanup: a bounded preview, then the rest on request.

Phases run previewing → awaiting_continuation → continuing → done. The job
cursor (highest UID examined) and the per-job seen table are persisted
after every batch, so a continuation never touches a message the preview
already handled. Actions go through ActionExecutor under the dedup key
``cleanup:<job id>``, which guards against double application even if the
seen record was lost.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from mailsort.capabilities import AiConditionCheck, MailProvider
from mailsort.cleanup.skips import matched_skip
from mailsort.errors import CleanupJobNotFoundError
from mailsort.router.actions import ActionExecutor
from mailsort.schemas.cleanup import (
    CleanAction,
    CleanupConfig,
    CleanupJob,
    CleanupPhase,
    CleanupResult,
)
from mailsort.schemas.email import EmailMessage
from mailsort.schemas.rules import Action, ActionType, LiteralValue
from mailsort.store.cleanup import CleanupJobStore

logger = logging.getLogger(__name__)

# Label applied alongside the cleanup action so touched mail can be found again.
CLEANUP_LABELS = {
    CleanAction.ARCHIVE: "Archived",
    CleanAction.MARK_READ: "Read",
}


def cleanup_actions(action: CleanAction) -> list[Action]:
    """Label first: on Gmail archiving removes the message from the inbox."""
    return [
        Action(type=ActionType.LABEL, label=LiteralValue(value=CLEANUP_LABELS[action])),
        Action(type=ActionType(action.value)),
    ]


class CleanupOrchestrator:
    """Runs cleanup jobs against the inbox.

    Usage::

        cleanup = CleanupOrchestrator(provider=imap, store=jobs, executor=executor)
        job_id = await cleanup.start_preview(CleanupConfig(days_old=7, max_emails=50))
        ...  # show the user what happened
        result = await cleanup.continue_job(job_id)
    """

    def __init__(
        self,
        *,
        provider: MailProvider,
        store: CleanupJobStore,
        executor: ActionExecutor,
        ai_check: AiConditionCheck | None = None,
        batch_size: int = 100,
        continue_limit: int = 0,
    ) -> None:
        self._provider = provider
        self._store = store
        self._executor = executor
        self._ai_check = ai_check
        self._batch_size = max(1, batch_size)
        self._continue_limit = continue_limit
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, job_id: str) -> asyncio.Lock:
        return self._locks.setdefault(job_id, asyncio.Lock())

    def get_job(self, job_id: str) -> CleanupJob:
        job = self._store.get(job_id)
        if job is None:
            raise CleanupJobNotFoundError(f"No cleanup job with id {job_id}")
        return job

    async def start_preview(self, config: CleanupConfig) -> str:
        """Act on up to ``config.max_emails`` old messages and pause.

        The age cutoff is fixed here and reused by the continuation.
        """
        cutoff = datetime.now(UTC) - timedelta(days=config.days_old)
        job = self._store.create(config, cutoff)
        async with self._lock(job.id):
            acted, skipped, failed = await self._run(job, limit=config.max_emails)
            job.phase = CleanupPhase.AWAITING_CONTINUATION
            self._store.save(job)
        logger.info(
            "Cleanup %s preview: %d acted, %d skipped, %d failed",
            job.id,
            acted,
            skipped,
            failed,
        )
        return job.id

    async def continue_job(self, job_id: str) -> CleanupResult:
        """Process everything after the preview's cursor.

        A no-op (``ran=False``) unless the job is awaiting continuation.

        Raises:
            CleanupJobNotFoundError: If ``job_id`` is unknown.
        """
        async with self._lock(job_id):
            try:
                job = self.get_job(job_id)
            except CleanupJobNotFoundError:
                self._locks.pop(job_id, None)
                raise
            if job.phase != CleanupPhase.AWAITING_CONTINUATION:
                self._locks.pop(job_id, None)
                logger.info("Cleanup %s is %s; nothing to continue", job_id, job.phase.value)
                return CleanupResult(job_id=job_id, phase=job.phase, ran=False)

            job.phase = CleanupPhase.CONTINUING
            self._store.save(job)

            limit = self._continue_limit if self._continue_limit > 0 else None
            acted, skipped, failed = await self._run(job, limit=limit)

            job.phase = CleanupPhase.DONE
            self._store.save(job)
            self._locks.pop(job_id, None)

        logger.info(
            "Cleanup %s done: %d acted, %d skipped, %d failed",
            job_id,
            acted,
            skipped,
            failed,
        )
        return CleanupResult(
            job_id=job_id, phase=job.phase, acted=acted, skipped=skipped, failed=failed
        )

    async def _run(self, job: CleanupJob, *, limit: int | None) -> tuple[int, int, int]:
        """Walk old messages after the cursor until ``limit`` actions were attempted.

        Skipped messages do not count against ``limit``. Returns this
        phase's (acted, skipped, failed) counts.
        """
        acted = skipped = failed = 0
        actions = cleanup_actions(job.config.action)

        while limit is None or acted + failed < limit:
            batch = await self._provider.fetch_older_than(
                job.cutoff, after_uid=job.cursor, limit=self._batch_size
            )
            if not batch:
                break

            for email in batch:
                if limit is not None and acted + failed >= limit:
                    break
                job.cursor = max(job.cursor, int(email.uid))

                if self._store.is_seen(job.id, email.uid):
                    continue

                reason = await self._skip_reason(job, email)
                if reason:
                    self._store.mark_seen(job.id, email.uid, f"skipped:{reason}")
                    skipped += 1
                    job.skipped += 1
                    continue

                report = await self._executor.apply(
                    email,
                    rule_id=f"cleanup:{job.id}",
                    rule_name="cleanup",
                    actions=actions,
                )
                if report.ok:
                    self._store.mark_seen(job.id, email.uid, "acted")
                    acted += 1
                    job.acted += 1
                else:
                    self._store.mark_seen(job.id, email.uid, "failed")
                    failed += 1
                    job.failed += 1

            self._store.save(job)

            if len(batch) < self._batch_size:
                break

        return acted, skipped, failed

    async def _skip_reason(self, job: CleanupJob, email: EmailMessage) -> str | None:
        reason = matched_skip(email, job.config.skips)
        if reason or not job.config.instructions.strip() or self._ai_check is None:
            return reason
        try:
            keep = await self._ai_check(email, job.config.instructions)
        except Exception:
            logger.exception("Keep-instructions check failed for email %s; keeping it", email.uid)
            return "instructions"
        return "instructions" if keep else None
