"""Traversal of a Notion workspace into the local mirror.

Three layers, each driving `paginate` with a fetch capability it is given:

- `BlockTreeMaterializer` expands one page with its direct block children.
- `ListingWalker` lists the pages of one database and materializes and
  writes each of them.
- `TraversalDriver` discovers databases and walks each one in order.

Failures are contained at the level that owns the unit of work: a page, a
database listing, or a single write. Authentication and transport errors are
never contained.

Only the direct children of a page are fetched. Blocks reporting
`has_children` are stored as returned, without their own children.
"""

from __future__ import annotations

import logging
import typing as t
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from functools import partial

from .exceptions import (
    FATAL_ERRORS,
    DiscoveryError,
    ExpansionError,
    ListingError,
    PersistenceError,
)
from .pagination import CursorPaginator, Page, paginate
from .report import CollectionResult, TraversalReport, TraversalWarning, WarningKind

if t.TYPE_CHECKING:
    from .writer import MirrorWriter

logger = logging.getLogger(__name__)

SearchCapability = t.Callable[[t.Optional[str]], Page]
ListingCapability = t.Callable[[str, t.Optional[str], t.Optional[t.Mapping[str, t.Any]]], Page]
ChildCapability = t.Callable[[str, t.Optional[str]], Page]


def plain_text(rich_text: t.Any) -> str:
    """Concatenate the plain text of a rich text array.

    Values that are not a list of span objects contribute nothing.
    """
    if not isinstance(rich_text, list):
        return ""
    return "".join(
        str(span.get("plain_text") or "") for span in rich_text if isinstance(span, dict)
    )


def database_title(database: t.Mapping[str, t.Any]) -> str:
    return plain_text(database.get("title"))


def page_title(page: t.Mapping[str, t.Any]) -> str:
    """Return the text of the page's title property, if any."""
    properties = page.get("properties")
    if not isinstance(properties, dict):
        return ""
    for prop in properties.values():
        if isinstance(prop, dict) and prop.get("type") == "title":
            return plain_text(prop.get("title"))
    return ""


@dataclass
class MaterializedEntity:
    """A page together with its direct block children.

    `children` is None when the children could not be fetched at all.
    """

    record: dict
    children: list[dict] | None
    children_error: str | None = None

    def to_document(self) -> dict:
        document = dict(self.record)
        if self.children is not None:
            document["children"] = self.children
        else:
            document.pop("children", None)
        return document


class BlockTreeMaterializer:
    """Expands a page stub with every page of its block children."""

    def __init__(self, fetch_children: ChildCapability) -> None:
        self.fetch_children = fetch_children

    def materialize(self, stub: t.Mapping[str, t.Any]) -> MaterializedEntity:
        """Fetch the direct children of `stub` in page order.

        If the very first children request fails the page is returned without
        children. A failure on any later request raises `ExpansionError`, so
        a partially expanded page is never mistaken for a complete one.

        Raises:
            ExpansionError: A children page after the first failed.
        """
        entity_id = str(stub["id"])
        record = dict(stub)
        if record.get("has_children") is False:
            return MaterializedEntity(record, [])

        paginator = CursorPaginator()
        children: list[dict] = []
        try:
            for child in paginate(partial(self.fetch_children, entity_id), paginator):
                children.append(child)
        except FATAL_ERRORS:
            raise
        except Exception as exc:
            if paginator.count == 0:
                logger.warning("Children of page %s unavailable: %s", entity_id, exc)
                return MaterializedEntity(record, None, children_error=str(exc))
            raise ExpansionError(entity_id, exc) from exc

        logger.debug("Page %s has %d children", entity_id, len(children))
        return MaterializedEntity(record, children)


@dataclass
class EntityOutcome:
    """What happened to a single page."""

    entity_id: str
    written: bool = False
    warnings: list[TraversalWarning] = field(default_factory=list)


class ListingWalker:
    """Walks every page of one database.

    With `max_workers` above 1, pages are expanded and written on a thread
    pool while the listing itself is still paginated on the calling thread.
    Write order within the database is then unspecified.
    """

    def __init__(
        self,
        fetch_listing: ListingCapability,
        materializer: BlockTreeMaterializer,
        writer: MirrorWriter,
        max_workers: int = 1,
    ) -> None:
        self.fetch_listing = fetch_listing
        self.materializer = materializer
        self.writer = writer
        self.max_workers = max(1, int(max_workers))

    def walk(
        self,
        collection_id: str,
        query: t.Mapping[str, t.Any] | None = None,
        result: CollectionResult | None = None,
    ) -> CollectionResult:
        """Materialize and write every page of a database.

        Raises:
            ListingError: The listing could not be paginated to the end. The
                partial result is attached to the error.
        """
        if result is None:
            result = CollectionResult(collection_id)

        def fetch(cursor: str | None) -> Page:
            return self.fetch_listing(collection_id, cursor, query)

        stubs = self._unique(paginate(fetch))
        try:
            if self.max_workers == 1:
                for stub in stubs:
                    self._record(result, self.process(stub))
            else:
                self._walk_parallel(stubs, result)
        except FATAL_ERRORS:
            raise
        except Exception as exc:
            # Page-level errors are contained in `process`; what reaches here ends the walk.
            result.error = str(exc)
            result.warn(WarningKind.LISTING_FAILED, collection_id, str(exc))
            raise ListingError(collection_id, exc, result) from exc

        result.completed = True
        return result

    def process(self, stub: t.Mapping[str, t.Any]) -> EntityOutcome:
        """Expand and write one page.

        Only transport and authentication errors propagate; anything else is
        returned as a warning on the outcome.
        """
        entity_id = str(stub.get("id"))
        outcome = EntityOutcome(entity_id)
        try:
            logger.info("Found page %s (%s)", entity_id, page_title(stub))
            entity = self.materializer.materialize(stub)
        except FATAL_ERRORS:
            raise
        except Exception as exc:
            logger.warning("Skipping page %s: %s", entity_id, exc)
            outcome.warnings.append(
                TraversalWarning(WarningKind.EXPANSION_FAILED, entity_id, str(exc))
            )
            return outcome

        if entity.children is None:
            outcome.warnings.append(
                TraversalWarning(
                    WarningKind.CHILDREN_UNAVAILABLE,
                    entity_id,
                    entity.children_error or "children unavailable",
                )
            )

        try:
            self.writer.write_entity(entity.to_document())
        except PersistenceError as exc:
            logger.warning("Could not write page %s: %s", entity_id, exc)
            outcome.warnings.append(
                TraversalWarning(WarningKind.PERSISTENCE_FAILED, entity_id, str(exc))
            )
        else:
            outcome.written = True
        return outcome

    def _walk_parallel(self, stubs: t.Iterable[dict], result: CollectionResult) -> None:
        in_flight: set[Future] = set()
        limit = 2 * self.max_workers
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            try:
                for stub in stubs:
                    if len(in_flight) >= limit:
                        done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                        error = self._collect(done, result)
                        if error is not None:
                            raise error
                    in_flight.add(executor.submit(self.process, stub))
            except BaseException:
                # Pages already handed to the pool are still accounted for, and a
                # fatal error from one of them outranks a listing failure.
                error = self._collect(in_flight, result)
                if isinstance(error, FATAL_ERRORS):
                    raise error
                raise
            error = self._collect(in_flight, result)
            if error is not None:
                raise error

    def _collect(
        self, futures: t.Iterable[Future], result: CollectionResult
    ) -> BaseException | None:
        """Record finished outcomes and return the first error, fatal ones first."""
        errors: list[BaseException] = []
        for future in futures:
            exc = future.exception()
            if exc is None:
                self._record(result, future.result())
            else:
                errors.append(exc)
        fatal = [exc for exc in errors if isinstance(exc, FATAL_ERRORS)]
        return (fatal or errors or [None])[0]

    @staticmethod
    def _record(result: CollectionResult, outcome: EntityOutcome) -> None:
        if outcome.written:
            result.entities_written += 1
        for warning in outcome.warnings:
            warning.collection_id = result.collection_id
            result.warnings.append(warning)

    @staticmethod
    def _unique(stubs: t.Iterable[dict]) -> t.Iterator[dict]:
        seen: set[str] = set()
        for stub in stubs:
            entity_id = str(stub.get("id"))
            if entity_id in seen:
                logger.debug("Page %s listed twice; skipping repeat", entity_id)
                continue
            seen.add(entity_id)
            yield stub


class TraversalDriver:
    """Discovers databases and walks each of them once, in discovery order."""

    def __init__(
        self,
        search: SearchCapability,
        walker: ListingWalker,
        writer: MirrorWriter,
        queries: t.Mapping[str, t.Mapping[str, t.Any]] | None = None,
        default_query: t.Mapping[str, t.Any] | None = None,
    ) -> None:
        self.search = search
        self.walker = walker
        self.writer = writer
        self.queries = dict(queries or {})
        self.default_query = default_query
        self.report = TraversalReport()

    def discover(self) -> list[dict]:
        """Return every database visible to the integration.

        Raises:
            DiscoveryError: The search could not be completed.
        """
        databases: list[dict] = []
        seen: set[str] = set()
        try:
            for database in paginate(self.search):
                database_id = str(database["id"])
                if database_id in seen:
                    continue
                seen.add(database_id)
                databases.append(database)
        except FATAL_ERRORS:
            raise
        except Exception as exc:
            raise DiscoveryError(f"Database search failed: {exc}") from exc
        return databases

    def query_for(self, collection_id: str) -> t.Mapping[str, t.Any] | None:
        return self.queries.get(collection_id, self.default_query)

    def run(self) -> TraversalReport:
        """Mirror every database and its pages.

        Database listing failures are recorded and the run moves on to the
        next database. A discovery failure is recorded and ends the run.
        Transport and authentication errors are recorded on `self.report`
        and re-raised.
        """
        self.report = report = TraversalReport()
        try:
            try:
                databases = self.discover()
            except DiscoveryError as exc:
                logger.error("%s", exc)
                report.discovery_error = str(exc)
                return report

            logger.info("Found %d databases", len(databases))
            for database in databases:
                result = CollectionResult(str(database["id"]))
                report.collections.append(result)
                try:
                    self.mirror_collection(database, result)
                except FATAL_ERRORS:
                    raise
                except Exception as exc:
                    logger.error("Database %s failed: %s", result.collection_id, exc)
                    result.error = str(exc)
                    result.warn(WarningKind.LISTING_FAILED, result.collection_id, str(exc))
        except FATAL_ERRORS as exc:
            logger.error("Aborting run: %s", exc)
            report.fatal_error = str(exc)
            raise

        return report

    def mirror_collection(
        self,
        database: t.Mapping[str, t.Any],
        result: CollectionResult | None = None,
    ) -> CollectionResult:
        """Write the database descriptor, then walk its pages."""
        database_id = str(database["id"])
        if result is None:
            result = CollectionResult(database_id)
        result.title = database_title(database)
        logger.info("Found database %s (%s)", database_id, result.title)

        try:
            self.writer.write_collection(database)
        except PersistenceError as exc:
            logger.warning("Could not write database %s: %s", database_id, exc)
            result.warn(WarningKind.PERSISTENCE_FAILED, database_id, str(exc))

        try:
            self.walker.walk(database_id, self.query_for(database_id), result)
        except ListingError as exc:
            logger.error("%s", exc)
        else:
            logger.info(
                "Database %s done: %d pages written, %d warnings",
                database_id,
                result.entities_written,
                len(result.warnings),
            )
        return result
