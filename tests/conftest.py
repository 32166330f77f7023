"""Shared fixtures: an in-memory stand-in for the Notion API."""

from __future__ import annotations

import typing as t

import pytest

from notion_mirror.pagination import Page
from notion_mirror.writer import MirrorWriter


def make_database(database_id: str, title: str = "") -> dict:
    return {
        "object": "database",
        "id": database_id,
        "title": [{"type": "text", "plain_text": title or database_id}],
        "properties": {"Name": {"id": "title", "type": "title", "title": {}}},
    }


def make_page(page_id: str, title: str = "", database_id: str = "db1") -> dict:
    return {
        "object": "page",
        "id": page_id,
        "parent": {"type": "database_id", "database_id": database_id},
        "last_edited_time": "2024-01-15T10:30:00.000Z",
        "properties": {
            "Name": {
                "id": "title",
                "type": "title",
                "title": [{"type": "text", "plain_text": title or page_id}],
            }
        },
    }


def make_block(block_id: str, text: str = "", has_children: bool = False) -> dict:
    return {
        "object": "block",
        "id": block_id,
        "type": "paragraph",
        "has_children": has_children,
        "paragraph": {"rich_text": [{"type": "text", "plain_text": text or block_id}]},
    }


class FakeNotion:
    """Serves fixed pages of databases, database pages and block children.

    Cursors have the form ``<context>:<page index>``, so a cursor handed to
    the wrong listing context is detected and recorded in
    `cursor_violations`. Failures are injected per ``(context, page index)``.
    """

    def __init__(
        self,
        databases: list[list[dict]] | None = None,
        listings: dict[str, list[list[dict]]] | None = None,
        children: dict[str, list[list[dict]]] | None = None,
    ) -> None:
        self.databases = databases or []
        self.listings = listings or {}
        self.children = children or {}
        self.failures: dict[tuple[str, int], Exception] = {}
        self.calls: list[tuple[str, str, str | None]] = []
        self.queries: dict[str, t.Any] = {}
        self.cursor_violations: list[tuple[str, str]] = []

    def fail(self, context: str, page_index: int, exc: Exception) -> None:
        self.failures[(context, page_index)] = exc

    def _serve(self, kind: str, context: str, pages: list[list[dict]], cursor: str | None) -> Page:
        self.calls.append((kind, context, cursor))
        if cursor is None:
            index = 0
        else:
            owner, _, raw_index = cursor.rpartition(":")
            if owner != context:
                self.cursor_violations.append((context, cursor))
            index = int(raw_index)

        exc = self.failures.get((context, index))
        if exc is not None:
            raise exc

        results = [dict(item) for item in pages[index]] if pages else []
        has_more = index + 1 < len(pages)
        return Page(
            results=results,
            next_cursor=f"{context}:{index + 1}" if has_more else None,
            has_more=has_more,
        )

    def search_databases(self, cursor: str | None) -> Page:
        return self._serve("search", "search", self.databases, cursor)

    def query_database(
        self,
        database_id: str,
        cursor: str | None,
        query: t.Mapping[str, t.Any] | None = None,
    ) -> Page:
        self.queries[database_id] = query
        return self._serve("listing", database_id, self.listings.get(database_id, []), cursor)

    def list_block_children(self, block_id: str, cursor: str | None) -> Page:
        return self._serve("children", block_id, self.children.get(block_id, []), cursor)

    def calls_for(self, kind: str, context: str | None = None) -> list[tuple[str, str, str | None]]:
        return [c for c in self.calls if c[0] == kind and (context is None or c[1] == context)]


@pytest.fixture
def writer(tmp_path) -> MirrorWriter:
    return MirrorWriter(tmp_path / "mirror")


def read_tree(root) -> dict[str, bytes]:
    """Return the bytes of every file below `root`, keyed by relative path."""
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }
