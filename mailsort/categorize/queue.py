"""Background queue that categorizes senders with the AI.

A FIFO of pending addresses drained by a bounded pool of asyncio worker
tasks. An address is in at most one of {pending, running} at a time.
``stop()`` is cooperative: pending work is dropped, in-flight work
finishes and is still persisted.
"""

import asyncio
import logging
import sqlite3
from collections import deque
from collections.abc import Awaitable, Callable

from mailsort.capabilities import SenderContextFetcher
from mailsort.errors import StoreUnavailableError, as_capability_error, as_store_error
from mailsort.executors.sender_classifier import resolve_category
from mailsort.schemas.senders import (
    CategorizationOutcome,
    Category,
    OutcomeStatus,
    QueueStats,
    SenderState,
)
from mailsort.store.senders import SenderStore, normalize_address

logger = logging.getLogger(__name__)

# (address, sender context, known categories) -> category name or None
SenderClassify = Callable[[str, str, list[Category]], Awaitable[str | None]]

OutcomeObserver = Callable[[CategorizationOutcome], None]


class SenderCategorizationQueue:
    """Deduplicating, cancellable worker pool.

    Usage::

        queue = SenderCategorizationQueue(store=store, classify=classify, fetch_context=ctx)
        queue.push(["a@example.com", "b@example.com"])
        ...
        if queue.is_processing():
            queue.stop()
        await queue.drain()
        print(queue.stats.summary())
    """

    def __init__(
        self,
        *,
        store: SenderStore,
        classify: SenderClassify,
        fetch_context: SenderContextFetcher,
        concurrency: int = 3,
        on_outcome: OutcomeObserver | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._store = store
        self._classify = classify
        self._fetch_context = fetch_context
        self._concurrency = concurrency
        self._on_outcome = on_outcome

        self._order: deque[str] = deque()
        self._pending: set[str] = set()
        self._running: set[str] = set()
        self._workers: set[asyncio.Task] = set()
        self.stats = QueueStats()
        self.error: StoreUnavailableError | None = None

    # --- Public API ---

    def push(self, addresses: list[str]) -> int:
        """Enqueue addresses not already pending or running.

        Returns immediately; must be called from within the event loop.
        Returns how many addresses were actually added.
        """
        added = 0
        for raw in addresses:
            address = normalize_address(raw)
            if not address or address in self._pending or address in self._running:
                continue
            self._store.add_job(address)
            self._pending.add(address)
            self._order.append(address)
            added += 1

        if added:
            logger.info("Queued %d sender(s) for categorization", added)
        self._spawn_workers()
        return added

    def stop(self) -> int:
        """Drop all pending work. In-flight jobs still complete.

        Returns how many pending addresses were cancelled; they can be
        pushed again later.
        """
        cancelled = list(self._order)
        self._order.clear()
        self._pending.clear()
        for address in cancelled:
            self._store.remove_job(address)
            self._store.set_state(address, SenderState.UNCATEGORIZED)
            self._report(CategorizationOutcome(address=address, status=OutcomeStatus.CANCELLED))
        if cancelled:
            logger.info("Stopped categorization queue, cancelled %d pending sender(s)", len(cancelled))
        return len(cancelled)

    def is_processing(self) -> bool:
        """True while anything is pending or a worker is mid-job."""
        return bool(self._pending) or bool(self._running)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def running_count(self) -> int:
        return len(self._running)

    async def drain(self) -> None:
        """Wait until every worker has exited."""
        while self._workers:
            await asyncio.gather(*list(self._workers), return_exceptions=True)

    # --- Workers ---

    def _spawn_workers(self) -> None:
        # A finished worker stays in the set until its done-callback runs.
        live = sum(1 for task in self._workers if not task.done())
        wanted = min(self._concurrency - live, len(self._order))
        for _ in range(max(0, wanted)):
            task = asyncio.create_task(self._worker())
            self._workers.add(task)
            task.add_done_callback(self._workers.discard)

    async def _worker(self) -> None:
        while self._order:
            address = self._order.popleft()
            self._pending.discard(address)
            self._running.add(address)
            try:
                outcome = await self._process(address)
            except sqlite3.Error as exc:
                self.error = as_store_error(exc)
                logger.exception("Sender store unavailable, stopping categorization queue")
                self._order.clear()
                self._pending.clear()
                return
            finally:
                self._running.discard(address)
            self._report(outcome)

    async def _process(self, address: str) -> CategorizationOutcome:
        self._store.mark_job_running(address)
        categories = self._store.list_categories()
        try:
            context = await self._fetch_context(address)
            name = await self._classify(address, context, categories)
        except Exception as exc:
            error = as_capability_error(exc)
            logger.warning("Categorizing %s failed: %s", address, error)
            self._store.set_state(address, SenderState.FAILED)
            self._store.remove_job(address)
            return CategorizationOutcome(address=address, status=OutcomeStatus.FAILED, error=str(error))

        category = resolve_category(name, categories)
        self._store.assign_category(address, category)
        self._store.remove_job(address)

        if category is None:
            logger.info("No known category matches %r for %s; left uncategorized", name, address)
            return CategorizationOutcome(address=address, status=OutcomeStatus.UNMATCHED)
        return CategorizationOutcome(
            address=address, status=OutcomeStatus.COMPLETED, category=category.name
        )

    def _report(self, outcome: CategorizationOutcome) -> None:
        if outcome.status == OutcomeStatus.COMPLETED:
            self.stats.completed += 1
        elif outcome.status == OutcomeStatus.UNMATCHED:
            self.stats.unmatched += 1
        elif outcome.status == OutcomeStatus.FAILED:
            self.stats.failed += 1
        else:
            self.stats.cancelled += 1
        if self._on_outcome:
            self._on_outcome(outcome)


