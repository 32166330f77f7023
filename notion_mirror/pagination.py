"""Cursor pagination over Notion's list envelope.

Every Notion list endpoint answers with the same envelope::

    {"results": [...], "next_cursor": "...", "has_more": true}

`Page` is the parsed form of one such response. `CursorPaginator` tracks the
cursor between calls using the Singer SDK paginator protocol, and `paginate`
drives any `fetch(cursor) -> Page` callable until the source reports that
nothing more remains.
"""

from __future__ import annotations

import sys
import typing as t
from dataclasses import dataclass, field

from singer_sdk.pagination import BaseAPIPaginator

if sys.version_info >= (3, 12):
    from typing import override
else:
    from typing_extensions import override


@dataclass
class Page:
    """One page of results plus the cursor state returned with it."""

    results: list[dict] = field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False

    @classmethod
    def from_response(cls, data: dict, results: t.Iterable[dict] | None = None) -> Page:
        """Build a page from a decoded Notion list response."""
        if results is None:
            results = data.get("results") or []
        return cls(
            results=list(results),
            next_cursor=data.get("next_cursor"),
            has_more=bool(data.get("has_more")),
        )


FetchPage = t.Callable[[t.Optional[str]], Page]


class CursorPaginator(BaseAPIPaginator[t.Optional[str]]):
    """Paginator for Notion's `has_more`/`next_cursor` protocol.

    The cursor is passed through untouched. A page reporting `has_more`
    without a cursor ends pagination.
    """

    def __init__(self, start_value: str | None = None) -> None:
        super().__init__(start_value)

    @override
    def has_more(self, response: Page) -> bool:  # type: ignore[override]
        return response.has_more

    @override
    def get_next(self, response: Page) -> str | None:  # type: ignore[override]
        return response.next_cursor


def paginate(
    fetch: FetchPage,
    paginator: CursorPaginator | None = None,
) -> t.Iterator[dict]:
    """Yield every item from successive pages of `fetch`, in arrival order.

    `fetch` is called with `None` first and then with each cursor returned by
    the previous page. A failing call ends the sequence with that error; items
    already yielded stay yielded. No retries and no deduplication happen here.

    Args:
        fetch: Callable returning the page for a cursor.
        paginator: Optional paginator instance, useful to inspect how many
            pages were fetched once iteration stops.

    Yields:
        Each item of each page.
    """
    if paginator is None:
        paginator = CursorPaginator()

    while not paginator.finished:
        page = fetch(paginator.current_value)
        yield from page.results
        paginator.advance(page)  # type: ignore[arg-type]
