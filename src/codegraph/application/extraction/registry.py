"""Extractor registry: maps file extensions to extractor instances.

``extract_file`` is the entry point used by the indexing command.  It
never raises; every failure is reported on the returned result and
logged.
"""

from __future__ import annotations

from pathlib import Path, PurePath

from codegraph.application.extraction.base import ExtractionResult, SyntaxExtractor
from codegraph.config.logging import get_logger
from codegraph.core.exceptions import ExtractionError

logger = get_logger(__name__)


class ExtractorRegistry:
    """Registry that maps file extensions to :class:`SyntaxExtractor` instances."""

    def __init__(self) -> None:
        self._extractors: dict[str, SyntaxExtractor] = {}

    def register(self, extractor: SyntaxExtractor) -> None:
        """Register an extractor for each of its ``extensions``."""
        for ext in extractor.extensions:
            self._extractors[ext.lower()] = extractor

    def get(self, file_path: str | PurePath) -> SyntaxExtractor | None:
        """Return the extractor for *file_path*'s extension, or ``None``."""
        return self._extractors.get(PurePath(file_path).suffix.lower())

    def supports(self, file_path: str | PurePath) -> bool:
        return self.get(file_path) is not None

    @property
    def extensions(self) -> set[str]:
        return set(self._extractors.keys())

    def __len__(self) -> int:
        return len(self._extractors)

    def extract_file(self, file_path: str | Path, content: str | None = None) -> ExtractionResult:
        """Extract entities from one file.

        When *content* is None the file is read from disk.
        """
        path_str = str(file_path)
        log = logger.bind(file=path_str)
        extractor = self.get(path_str)
        if extractor is None:
            log.debug("extraction.file.unsupported")
            return ExtractionResult(
                file_path=path_str,
                language=None,
                error=f"UNSUPPORTED_FILE: no extractor for '{PurePath(path_str).suffix}'",
            )

        if content is None:
            try:
                content = Path(file_path).read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                log.warning("extraction.file.unreadable", error=str(e))
                return ExtractionResult(
                    file_path=path_str,
                    language=extractor.language,
                    error=f"FILE_ERROR: {e}",
                )

        try:
            result = extractor.extract(content, path_str)
        except ExtractionError as e:
            log.info("extraction.file.parse_error", error=e.message)
            return ExtractionResult(
                file_path=path_str,
                language=e.details.get("language", extractor.language),
                error=e.message,
            )
        except Exception as e:
            log.warning("extraction.file.failed", error=str(e))
            return ExtractionResult(
                file_path=path_str,
                language=extractor.language,
                error=f"EXTRACTION_ERROR: {e}",
            )

        log.debug("extraction.file.complete", entities=len(result.entities))
        return result


def create_default_registry() -> ExtractorRegistry:
    """Create a registry with the Python and JavaScript/TypeScript extractors."""
    from codegraph.application.extraction.python_extractor import PythonExtractor
    from codegraph.application.extraction.tree_sitter_extractor import TreeSitterExtractor

    registry = ExtractorRegistry()
    registry.register(PythonExtractor())
    registry.register(TreeSitterExtractor())
    return registry
