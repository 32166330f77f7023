"""Exception types raised while mirroring a Notion workspace.

Errors fall into four groups, each caught at the boundary that owns the unit
of work it affects:

- Transport/auth errors (`NotionAuthError`, `NotionTransportError`) are fatal
  to the whole run and are never caught by the traversal.
- `ListingError` aborts a single database walk.
- `ExpansionError` skips a single page.
- `PersistenceError` reports a local write failure for a single document.
"""

from __future__ import annotations

import typing as t

from singer_sdk.exceptions import FatalAPIError

if t.TYPE_CHECKING:
    from .report import CollectionResult


class NotionMirrorError(Exception):
    """Base class for traversal errors."""


class ConfigValidationError(NotionMirrorError):
    """Raised when the supplied configuration does not match the schema."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("Config validation failed: " + "; ".join(errors))
        self.errors = errors


class NotionAuthError(FatalAPIError):
    """The Notion API rejected the integration token."""


class NotionTransportError(FatalAPIError):
    """The Notion API could not be reached."""


# Errors that terminate the run wherever they are raised.
FATAL_ERRORS: tuple[type[Exception], ...] = (NotionAuthError, NotionTransportError)


class DiscoveryError(NotionMirrorError):
    """Searching the workspace for databases failed."""


class ListingError(NotionMirrorError):
    """Paginating a database's page listing failed part way through."""

    def __init__(
        self,
        collection_id: str,
        cause: BaseException,
        result: CollectionResult | None = None,
    ) -> None:
        super().__init__(f"Listing database {collection_id} failed: {cause}")
        self.collection_id = collection_id
        self.cause = cause
        self.result = result


class ExpansionError(NotionMirrorError):
    """A page's block children failed after the first page was fetched."""

    def __init__(self, entity_id: str, cause: BaseException) -> None:
        super().__init__(f"Expanding children of page {entity_id} failed: {cause}")
        self.entity_id = entity_id
        self.cause = cause


class PersistenceError(NotionMirrorError):
    """A document could not be committed to the mirror."""

    def __init__(self, key: str, cause: BaseException | str) -> None:
        super().__init__(f"Writing document {key} failed: {cause}")
        self.key = key
        self.cause = cause
