"""Tests for offset paging over uncategorized senders."""

import pytest

from mailsort.categorize.pagination import PaginationCursor
from mailsort.store.senders import SenderStore


@pytest.fixture()
def store(db_path):
    with SenderStore(db_path) as s:
        yield s


def _senders(n: int) -> list[str]:
    return [f"sender{i:03d}@example.com" for i in range(n)]


class TestPages:
    def test_empty(self, store):
        page = PaginationCursor(store, page_size=10).first_page()
        assert page.senders == []
        assert page.next_offset is None

    def test_single_partial_page(self, store):
        store.upsert_senders(_senders(3))
        page = PaginationCursor(store, page_size=10).first_page()
        assert len(page.senders) == 3
        assert page.next_offset is None

    def test_exact_multiple_has_no_trailing_empty_page(self, store):
        store.upsert_senders(_senders(20))
        cursor = PaginationCursor(store, page_size=10)

        first = cursor.first_page()
        second = cursor.next_page(first.next_offset)

        assert first.next_offset == 10
        assert len(second.senders) == 10
        assert second.next_offset is None

    @pytest.mark.parametrize("total,page_size", [(1, 1), (25, 10), (99, 7), (100, 100)])
    def test_chained_pages_yield_every_sender_once(self, store, total, page_size):
        expected = _senders(total)
        store.upsert_senders(expected)
        cursor = PaginationCursor(store, page_size=page_size)

        seen: list[str] = []
        page = cursor.first_page()
        seen.extend(page.senders)
        while page.next_offset is not None:
            page = cursor.next_page(page.next_offset)
            seen.extend(page.senders)

        assert seen == sorted(expected)
        assert len(set(seen)) == len(seen)

    def test_iter_senders(self, store):
        store.upsert_senders(_senders(15))
        assert list(PaginationCursor(store, page_size=4).iter_senders()) == _senders(15)

    def test_categorized_senders_excluded(self, store):
        store.upsert_senders(_senders(3))
        category = store.add_category("Newsletter")
        store.assign_category("sender001@example.com", category)

        page = PaginationCursor(store).first_page()

        assert page.senders == ["sender000@example.com", "sender002@example.com"]

    def test_pages_are_repeatable(self, store):
        store.upsert_senders(_senders(12))
        cursor = PaginationCursor(store, page_size=5)
        assert cursor.next_page(5) == cursor.next_page(5)

    def test_page_size_must_be_positive(self, store):
        with pytest.raises(ValueError):
            PaginationCursor(store, page_size=0)
