"""Offset-based paging over uncategorized senders."""

from collections.abc import Iterator

from mailsort.schemas.senders import SenderPage
from mailsort.store.senders import SenderStore


class PaginationCursor:
    """Stateless page reader. Restartable from the first page at any time.

    Chaining ``next_page`` through each returned ``next_offset`` visits
    every sender once as long as nobody categorizes senders in between;
    under concurrent changes pages may skip or repeat addresses.
    """

    def __init__(self, store: SenderStore, *, page_size: int = 100) -> None:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self._store = store
        self._page_size = page_size

    def first_page(self) -> SenderPage:
        return self._store.list_uncategorized(offset=0, limit=self._page_size)

    def next_page(self, prev_offset: int) -> SenderPage:
        """Page starting at an offset previously returned as ``next_offset``."""
        return self._store.list_uncategorized(offset=prev_offset, limit=self._page_size)

    def iter_senders(self) -> Iterator[str]:
        page = self.first_page()
        yield from page.senders
        while page.next_offset is not None:
            page = self.next_page(page.next_offset)
            yield from page.senders
