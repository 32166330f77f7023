"""notion_mirror package: mirror a Notion workspace into local JSON documents.

Contents:
- mirror.py: Entrypoint (configuration, wiring and the CLI).
- client.py: NotionClient (auth, headers, retries, response parsing).
- pagination.py: Page envelope and the cursor paginator shared by every walk.
- traversal.py: Database discovery, page listing and block expansion.
- writer.py: Atomic, id-keyed JSON document storage.
- report.py: Per-database results and warnings for the final summary.
"""

from .mirror import NotionMirror

__all__ = ["NotionMirror"]
