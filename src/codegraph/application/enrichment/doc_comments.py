"""Documentation-comment parsing.

Two sources are understood:

- a ``/** ... */`` block ending right before the entity's line (blank
  lines in between are skipped), parsed as JSDoc;
- a Python docstring captured by the extractor, parsed for a description
  and Google-style ``Args:`` / ``Returns:`` / ``Raises:`` sections.
"""

from __future__ import annotations

import re

from codegraph.domain.entities import DocComment, DocParam

_PARAM_TAGS = {"param", "arg", "argument"}
_RETURN_TAGS = {"returns", "return"}
_THROW_TAGS = {"throws", "throw", "exception"}
_KNOWN_TAGS = _PARAM_TAGS | _RETURN_TAGS | _THROW_TAGS | {
    "example", "deprecated", "since", "author", "async",
}

_TAG_LINE = re.compile(r"^@(\w+)\s*(.*)$")
_TYPED = re.compile(r"^\{([^}]*)\}\s*(.*)$", re.DOTALL)
_PARAM_NAME = re.compile(r"^\[?([\w.$]+)(?:=[^\]]*)?\]?\s*-?\s*(.*)$", re.DOTALL)


def find_doc_comment(source_lines: list[str], line: int) -> DocComment | None:
    """Return the JSDoc block ending just before 1-based *line*, if any."""
    end = line - 2
    while end >= 0 and not source_lines[end].strip():
        end -= 1
    if end < 0 or not source_lines[end].strip().endswith("*/"):
        return None

    start = end
    while start > 0 and not source_lines[start].strip().startswith("/**"):
        start -= 1
    if not source_lines[start].strip().startswith("/**"):
        return None

    return parse_jsdoc("\n".join(source_lines[start:end + 1]))


def _strip_comment(block: str) -> list[str]:
    lines: list[str] = []
    for raw in block.splitlines():
        line = raw.strip()
        if line.startswith("/**"):
            line = line[3:]
        if line.endswith("*/"):
            line = line[:-2]
        line = line.strip()
        if line.startswith("*"):
            line = line[1:]
        lines.append(line.rstrip())
    return lines


def _first_sentence(text: str) -> str:
    first_line = text.strip().split("\n")[0]
    match = re.match(r"^(.+?[.!?])(\s|$)", first_line)
    return match.group(1) if match else first_line


def parse_jsdoc(block: str) -> DocComment | None:
    """Parse a ``/** ... */`` block."""
    lines = _strip_comment(block)
    description_lines: list[str] = []
    tags: list[tuple[str, str]] = []

    for line in lines:
        stripped = line.strip()
        match = _TAG_LINE.match(stripped)
        if match:
            tags.append((match.group(1).lower(), match.group(2).strip()))
        elif tags:
            # continuation of the previous tag (multi-line @example, etc.)
            tag, body = tags[-1]
            tags[-1] = (tag, f"{body}\n{line}" if body else line)
        elif stripped or description_lines:
            description_lines.append(stripped)

    description = "\n".join(description_lines).strip()
    if not description and not tags:
        return None

    doc = DocComment(description=description, summary=_first_sentence(description))
    for tag, body in tags:
        body = body.strip()
        if tag in _PARAM_TAGS:
            type_, rest = _split_type(body)
            name_match = _PARAM_NAME.match(rest)
            if name_match:
                doc.params.append(DocParam(
                    name=name_match.group(1),
                    type=type_,
                    description=name_match.group(2).strip(),
                ))
        elif tag in _RETURN_TAGS:
            doc.returns = body
        elif tag in _THROW_TAGS:
            doc.throws.append(body)
        elif tag == "example":
            doc.examples.append(body)
        elif tag == "deprecated":
            doc.deprecated = body or "deprecated"
        elif tag == "since":
            doc.since = body
        elif tag == "author":
            doc.author = body
        elif tag == "async":
            doc.is_async = True
        else:
            doc.tags[tag] = body
    return doc


def _split_type(body: str) -> tuple[str | None, str]:
    match = _TYPED.match(body)
    if match:
        return match.group(1).strip(), match.group(2)
    return None, body


# ---------------------------------------------------------------------------
# Python docstrings
# ---------------------------------------------------------------------------

_SECTION = re.compile(r"^(Args|Arguments|Parameters|Returns|Return|Raises|Yields|Example|Examples):\s*$")
_ARG_LINE = re.compile(r"^(\*{0,2}\w+)\s*(?:\(([^)]*)\))?\s*:\s*(.*)$")


def parse_docstring(docstring: str) -> DocComment | None:
    """Parse a Google-style docstring."""
    if not docstring or not docstring.strip():
        return None

    description_lines: list[str] = []
    section: str | None = None
    doc = DocComment()
    returns_lines: list[str] = []

    for raw in docstring.splitlines():
        line = raw.strip()
        header = _SECTION.match(line)
        if header:
            section = header.group(1)
            continue
        if section is None:
            description_lines.append(line)
        elif section in ("Args", "Arguments", "Parameters"):
            match = _ARG_LINE.match(line)
            if match:
                doc.params.append(DocParam(
                    name=match.group(1),
                    type=match.group(2),
                    description=match.group(3).strip(),
                ))
            elif line and doc.params:
                doc.params[-1].description += " " + line
        elif section in ("Returns", "Return", "Yields"):
            if line:
                returns_lines.append(line)
        elif section == "Raises":
            if line:
                doc.throws.append(line)
        elif section in ("Example", "Examples"):
            if line:
                doc.examples.append(line)

    doc.description = "\n".join(description_lines).strip()
    doc.summary = _first_sentence(doc.description)
    doc.returns = " ".join(returns_lines) or None
    return doc
