"""BuildCorpusIndex command.

Scans a directory of markdown files and writes one corpus index
(``docs``, ``rules`` or ``tasks``) used by the documentation, prevention
and task retrieval sources:
1. Read each ``.md`` / ``.mdx`` file and split off its front-matter
2. Take title, category and keywords from the front-matter, falling back
   to the first heading and the file name
3. Write the entries through the corpus store
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from codegraph.config.logging import get_logger
from codegraph.domain.entities import CorpusEntry
from codegraph.infrastructure.corpus.filesystem import FilesystemCorpusStore
from codegraph.infrastructure.parsing.markdown import (
    as_keyword_list,
    extract_frontmatter,
    first_heading,
)

logger = get_logger(__name__)

MARKDOWN_EXTENSIONS = (".md", ".mdx")


@dataclass
class BuildCorpusResult:
    kind: str
    entries: int = 0
    path: str | None = None
    skipped: list[str] = field(default_factory=list)


def build_corpus_index(
    docs_dir: Path,
    kind: str,
    *,
    corpus_store: FilesystemCorpusStore,
) -> BuildCorpusResult:
    """Index every markdown file under *docs_dir* as a *kind* corpus."""
    log = logger.bind(docs_dir=str(docs_dir), kind=kind)
    result = BuildCorpusResult(kind=kind)
    entries: list[CorpusEntry] = []

    files = sorted(
        p for p in docs_dir.rglob("*")
        if p.is_file() and p.suffix.lower() in MARKDOWN_EXTENSIONS
    )
    for path in files:
        relative = path.relative_to(docs_dir).as_posix()
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            log.warning("corpus.build.file_error", file=relative, error=str(e))
            result.skipped.append(relative)
            continue

        meta, body = extract_frontmatter(content)
        title = str(meta.get("title") or first_heading(body) or path.stem)
        category = meta.get("category") or (
            path.parent.name if path.parent != docs_dir else None
        )
        entries.append(CorpusEntry(
            id=str(meta.get("id") or f"{kind}:{relative}"),
            title=title,
            path=relative,
            content=body.strip(),
            category=str(category) if category else None,
            keywords=as_keyword_list(meta.get("keywords") or meta.get("tags")),
            last_modified=datetime.fromtimestamp(path.stat().st_mtime),
        ))

    written = corpus_store.write(kind, entries)
    result.entries = len(entries)
    result.path = str(written)
    log.info("corpus.build.complete", entries=len(entries), skipped=len(result.skipped))
    return result
