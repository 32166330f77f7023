"""Tests for the cursor paginator."""

import pytest

from notion_mirror.pagination import CursorPaginator, Page, paginate


def scripted_fetch(pages):
    """Return a fetch callable serving `pages` in order and the call log."""
    calls = []

    def fetch(cursor):
        calls.append(cursor)
        page = pages[len(calls) - 1]
        if isinstance(page, Exception):
            raise page
        return page

    return fetch, calls


class TestPageFromResponse:
    def test_reads_envelope(self):
        page = Page.from_response({"results": [{"id": "a"}], "next_cursor": "c1", "has_more": True})
        assert page.results == [{"id": "a"}]
        assert page.next_cursor == "c1"
        assert page.has_more is True

    def test_missing_fields_mean_last_page(self):
        page = Page.from_response({})
        assert page.results == []
        assert page.next_cursor is None
        assert page.has_more is False


class TestPaginate:
    def test_single_page_makes_one_call(self):
        fetch, calls = scripted_fetch([Page([{"id": 1}, {"id": 2}], None, False)])
        assert list(paginate(fetch)) == [{"id": 1}, {"id": 2}]
        assert calls == [None]

    def test_threads_cursors_and_keeps_order(self):
        fetch, calls = scripted_fetch(
            [
                Page([{"id": 1}, {"id": 2}], "c1", True),
                Page([{"id": 3}], "c2", True),
                Page([{"id": 4}, {"id": 5}], "c3", True),
                Page([{"id": 6}], None, False),
            ]
        )
        items = list(paginate(fetch))
        assert [item["id"] for item in items] == [1, 2, 3, 4, 5, 6]
        # Three pages reporting more, then the last page: four calls.
        assert calls == [None, "c1", "c2", "c3"]

    def test_is_lazy(self):
        fetch, calls = scripted_fetch([Page([{"id": 1}], "c1", True), Page([{"id": 2}], None, False)])
        items = paginate(fetch)
        assert calls == []
        assert next(items) == {"id": 1}
        assert calls == [None]

    def test_failure_keeps_already_yielded_items(self):
        fetch, calls = scripted_fetch(
            [Page([{"id": 1}, {"id": 2}], "c1", True), RuntimeError("boom")]
        )
        seen = []
        with pytest.raises(RuntimeError, match="boom"):
            for item in paginate(fetch):
                seen.append(item)
        assert seen == [{"id": 1}, {"id": 2}]
        assert calls == [None, "c1"]

    def test_more_without_cursor_stops(self):
        fetch, calls = scripted_fetch([Page([{"id": 1}], None, True)])
        assert list(paginate(fetch)) == [{"id": 1}]
        assert calls == [None]

    def test_empty_pages_are_followed(self):
        fetch, calls = scripted_fetch([Page([], "c1", True), Page([{"id": 1}], None, False)])
        assert list(paginate(fetch)) == [{"id": 1}]
        assert calls == [None, "c1"]

    def test_paginator_counts_completed_pages(self):
        fetch, _ = scripted_fetch(
            [Page([{"id": 1}], "c1", True), Page([{"id": 2}], "c2", True), RuntimeError("x")]
        )
        paginator = CursorPaginator()
        with pytest.raises(RuntimeError):
            list(paginate(fetch, paginator))
        assert paginator.count == 2
        assert paginator.current_value == "c2"
        assert not paginator.finished
