"""Fixed-size character chunking for entity discovery."""

from __future__ import annotations

from codegraph.domain.entities import ChunkRecord


def chunk_text(content: str, document_id: str, size: int = 1000) -> list[ChunkRecord]:
    """Split *content* into consecutive windows of at most *size* characters.

    Windows do not overlap; ``end_position`` is exclusive.  Whitespace-only
    windows are skipped but keep their slot in the position sequence.
    """
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")

    chunks: list[ChunkRecord] = []
    for start in range(0, len(content), size):
        window = content[start:start + size]
        if not window.strip():
            continue
        chunks.append(ChunkRecord(
            document_id=document_id,
            content=window,
            start_position=start,
            end_position=start + len(window),
            chunk_index=len(chunks),
        ))
    return chunks


def chunk_node_id(document_id: str, chunk_index: int) -> str:
    return f"chunk:{document_id}:{chunk_index}"
