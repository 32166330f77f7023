"""Outcome records for a mirror run."""

from __future__ import annotations

import enum
import typing as t
from dataclasses import asdict, dataclass, field


class WarningKind(str, enum.Enum):
    """What went wrong for the identity a warning references."""

    # Page written without children: its first children request failed.
    CHILDREN_UNAVAILABLE = "children_unavailable"
    # Page not written: a later children request failed.
    EXPANSION_FAILED = "expansion_failed"
    # Document could not be written locally.
    PERSISTENCE_FAILED = "persistence_failed"
    # Database listing stopped part way.
    LISTING_FAILED = "listing_failed"


@dataclass
class TraversalWarning:
    kind: WarningKind
    identity: str
    message: str
    collection_id: str | None = None

    def to_dict(self) -> dict[str, t.Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.identity}: {self.message}"


@dataclass
class CollectionResult:
    """Outcome of walking one database."""

    collection_id: str
    title: str = ""
    entities_written: int = 0
    completed: bool = False
    error: str | None = None
    warnings: list[TraversalWarning] = field(default_factory=list)

    def warn(
        self,
        kind: WarningKind,
        identity: str,
        message: str,
    ) -> TraversalWarning:
        warning = TraversalWarning(kind, identity, message, self.collection_id)
        self.warnings.append(warning)
        return warning

    def to_dict(self) -> dict[str, t.Any]:
        return {
            "collection_id": self.collection_id,
            "title": self.title,
            "entities_written": self.entities_written,
            "completed": self.completed,
            "error": self.error,
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass
class TraversalReport:
    """Aggregate outcome of a whole run.

    A run succeeds when discovery succeeded and every discovered database was
    walked to the end of its listing. Page level warnings do not change that.
    """

    collections: list[CollectionResult] = field(default_factory=list)
    discovery_error: str | None = None
    fatal_error: str | None = None

    @property
    def collections_found(self) -> int:
        return len(self.collections)

    @property
    def collections_failed(self) -> list[CollectionResult]:
        return [c for c in self.collections if not c.completed]

    @property
    def entities_written(self) -> int:
        return sum(c.entities_written for c in self.collections)

    @property
    def warnings(self) -> list[TraversalWarning]:
        return [w for c in self.collections for w in c.warnings]

    @property
    def entity_failures(self) -> int:
        return sum(
            1
            for w in self.warnings
            if w.kind in (WarningKind.EXPANSION_FAILED, WarningKind.PERSISTENCE_FAILED)
            and w.identity != w.collection_id
        )

    @property
    def succeeded(self) -> bool:
        return (
            self.discovery_error is None
            and self.fatal_error is None
            and not self.collections_failed
        )

    @property
    def exit_code(self) -> int:
        if self.fatal_error is not None:
            return 2
        return 0 if self.succeeded else 1

    def to_dict(self) -> dict[str, t.Any]:
        return {
            "succeeded": self.succeeded,
            "collections_found": self.collections_found,
            "collections_failed": len(self.collections_failed),
            "entities_written": self.entities_written,
            "entity_failures": self.entity_failures,
            "discovery_error": self.discovery_error,
            "fatal_error": self.fatal_error,
            "collections": [c.to_dict() for c in self.collections],
        }

    def summary_lines(self) -> list[str]:
        """Human readable summary, one line per fact."""
        if self.succeeded:
            status = "succeeded with warnings" if self.warnings else "succeeded"
        else:
            status = "failed"
        lines = [
            f"Mirror run {status}.",
            f"Databases processed: {self.collections_found} "
            f"({len(self.collections_failed)} failed)",
            f"Pages written: {self.entities_written}",
        ]
        if self.discovery_error:
            lines.append(f"Database discovery failed: {self.discovery_error}")
        if self.fatal_error:
            lines.append(f"Run aborted: {self.fatal_error}")
        for collection in self.collections_failed:
            lines.append(f"Database {collection.collection_id} incomplete: {collection.error}")
        if self.warnings:
            lines.append(f"Warnings ({len(self.warnings)}):")
            lines.extend(f"  {w}" for w in self.warnings)
        return lines
