"""Categorize many senders with a single AI call.

Lower fidelity than the queue (no per-sender context) and all-or-nothing:
if the AI call fails, nothing is returned for any address. Classifying
and persisting are separate steps so a caller can review results first.

The fast path does not coordinate with SenderCategorizationQueue; callers
must not run both for the same address at the same time.
"""

import logging
from collections.abc import Awaitable, Callable

from mailsort.errors import as_capability_error
from mailsort.executors.sender_classifier import resolve_category
from mailsort.schemas.senders import Category
from mailsort.store.senders import SenderStore, normalize_address

logger = logging.getLogger(__name__)

# (addresses, known categories) -> raw category names keyed by lower-cased address
BulkClassify = Callable[[list[str], list[Category]], Awaitable[dict[str, str | None]]]


class FastCategorizer:
    """Usage::

    fast = FastCategorizer(bulk_classify=classify, store=store)
    results = await fast.classify(["a@x.com", "b@y.com"])
    fast.apply(results)
    """

    def __init__(self, *, bulk_classify: BulkClassify, store: SenderStore) -> None:
        self._bulk_classify = bulk_classify
        self._store = store

    async def classify(self, addresses: list[str]) -> dict[str, str | None]:
        """Map each address to a known category name, or None.

        Keys are the addresses as given. Names are returned in the
        category list's own spelling.

        Raises:
            CapabilityError: If the AI call fails. No partial results.
        """
        if not addresses:
            return {}
        categories = self._store.list_categories()
        try:
            raw = await self._bulk_classify(addresses, categories)
        except Exception as exc:
            error = as_capability_error(exc)
            logger.error("Fast categorization of %d sender(s) failed: %s", len(addresses), error)
            raise error from exc

        results: dict[str, str | None] = {}
        for address in addresses:
            category = resolve_category(raw.get(normalize_address(address)), categories)
            results[address] = category.name if category else None

        matched = sum(1 for name in results.values() if name)
        logger.info("Fast categorization matched %d of %d sender(s)", matched, len(results))
        return results

    def apply(self, results: dict[str, str | None]) -> int:
        """Persist matched assignments. Unmatched addresses are left alone.

        Returns how many senders were assigned.
        """
        categories = self._store.list_categories()
        assigned = 0
        for address, name in results.items():
            category = resolve_category(name, categories)
            if category is None:
                continue
            self._store.assign_category(address, category)
            assigned += 1
        return assigned
