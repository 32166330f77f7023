"""Local mirror storage.

Documents are keyed by Notion object id and stored as one JSON file each::

    <root>/databases/<database_id>.json
    <root>/pages/<page_id>.json

Each write goes to a temporary file in the target directory and is moved into
place with `os.replace`, so a reader only ever sees a complete document.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import typing as t
from pathlib import Path

from .exceptions import PersistenceError

logger = logging.getLogger(__name__)

DATABASES_NAMESPACE = "databases"
PAGES_NAMESPACE = "pages"
# Writes to the same key share a lock; distinct keys may share one too.
LOCK_STRIPES = 64


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


def serialize(document: t.Mapping[str, t.Any]) -> str:
    """Serialize a document deterministically."""
    return json.dumps(document, ensure_ascii=False, indent=2, sort_keys=True) + "\n"


class MirrorWriter:
    """Writes database and page documents under a root directory."""

    def __init__(self, root: str | os.PathLike) -> None:
        self.root = Path(root)
        self.written_keys: set[tuple[str, str]] = set()
        self._keys_lock = threading.Lock()
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]
        self.file_mode = 0o666 & ~_current_umask()

    def path_for(self, namespace: str, key: str) -> Path:
        """Return the destination path of a document.

        Raises:
            PersistenceError: The key cannot be used as a file name.
        """
        if not key or key.startswith(".") or "/" in key or "\\" in key or "\x00" in key:
            raise PersistenceError(key, "invalid document key")
        return self.root / namespace / f"{key}.json"

    def write_collection(self, collection: t.Mapping[str, t.Any]) -> Path:
        return self.write(DATABASES_NAMESPACE, str(collection["id"]), collection)

    def write_entity(self, entity: t.Mapping[str, t.Any]) -> Path:
        return self.write(PAGES_NAMESPACE, str(entity["id"]), entity)

    def write(self, namespace: str, key: str, document: t.Mapping[str, t.Any]) -> Path:
        """Atomically replace the document stored under `namespace`/`key`.

        Raises:
            PersistenceError: Serialization or the file system failed.
        """
        path = self.path_for(namespace, key)
        try:
            content = serialize(document)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(key, exc) from exc

        with self._lock_for((namespace, key)):
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                self._commit(path, content)
            except OSError as exc:
                raise PersistenceError(key, exc) from exc

        with self._keys_lock:
            self.written_keys.add((namespace, key))
        logger.debug("Wrote %s", path)
        return path

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    def _commit(self, path: Path, content: str) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            # mkstemp creates owner-only files; match a plain open() instead.
            os.fchmod(fd, self.file_mode)
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                tmp.write(content)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
