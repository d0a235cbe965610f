"""Filesystem-based corpus indexes.

Layout under the index directory::

    <index_dir>/indexes/
    ├── docs.json
    ├── rules.json
    └── tasks.json

Each file holds a JSON array of :class:`CorpusEntry` objects.  A missing
file is an empty corpus.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from codegraph.config.logging import get_logger
from codegraph.core.exceptions import StoreError
from codegraph.domain.entities import CorpusEntry
from codegraph.domain.enums import RetrievalSource

logger = get_logger(__name__)

CORPUS_KINDS = ("docs", "rules", "tasks")

SOURCE_KINDS: dict[RetrievalSource, str] = {
    RetrievalSource.DOCUMENTATION: "docs",
    RetrievalSource.PREVENTION: "rules",
    RetrievalSource.TASK: "tasks",
}

_ENTRIES = TypeAdapter(list[CorpusEntry])


class FilesystemCorpusStore:
    """Read/write the JSON corpus indexes."""

    def __init__(self, index_path: str | Path) -> None:
        self._root = Path(index_path) / "indexes"

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, kind: str) -> Path:
        if kind not in CORPUS_KINDS:
            raise ValueError(f"Unknown corpus kind '{kind}', expected one of {CORPUS_KINDS}")
        return self._root / f"{kind}.json"

    def load(self, kind: str) -> list[CorpusEntry]:
        path = self._path(kind)
        if not path.exists():
            return []
        try:
            return _ENTRIES.validate_json(path.read_bytes())
        except (OSError, PydanticValidationError) as e:
            logger.warning("corpus_store.load.failed", kind=kind, error=str(e))
            raise StoreError(f"Cannot read corpus index {path}: {e}") from e

    def write(self, kind: str, entries: list[CorpusEntry]) -> Path:
        path = self._path(kind)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(_ENTRIES.dump_json(entries, indent=2))
        logger.info("corpus_store.write.complete", kind=kind, entries=len(entries))
        return path
