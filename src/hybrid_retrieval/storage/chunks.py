"""
Chunk content and the document -> ordered chunk-id index.
"""

from __future__ import annotations

from typing import Iterable

from ..models import Chunk

# Rough per-chunk overhead for ids, offsets and metadata
CHUNK_OVERHEAD_BYTES = 200


class ChunkStore:
    """Owns chunk records and the document index.

    The two maps are guarded by separate locks in `VectorStore`; this class
    itself performs no locking.
    """

    def __init__(self) -> None:
        self.chunks: dict[str, Chunk] = {}
        self.document_index: dict[str, list[str]] = {}

    def __len__(self) -> int:
        return len(self.chunks)

    def put_chunks(self, chunks: Iterable[Chunk]) -> None:
        for chunk in chunks:
            self.chunks[chunk.id] = chunk

    def index_chunks(self, chunks: Iterable[Chunk]) -> None:
        for chunk in chunks:
            chunk_ids = self.document_index.setdefault(chunk.document_id, [])
            if chunk.id not in chunk_ids:
                chunk_ids.append(chunk.id)

    def get(self, chunk_id: str) -> Chunk | None:
        return self.chunks.get(chunk_id)

    def chunk_ids_for(self, document_id: str) -> list[str]:
        return list(self.document_index.get(document_id, ()))

    def pop_document(self, document_id: str) -> list[str]:
        """Drop a document from the index and return the chunk ids it owned."""
        return self.document_index.pop(document_id, [])

    def drop_chunks(self, chunk_ids: Iterable[str]) -> None:
        for chunk_id in chunk_ids:
            self.chunks.pop(chunk_id, None)

    def document_chunks(self, chunk_ids: Iterable[str]) -> list[Chunk]:
        found = [self.chunks[chunk_id] for chunk_id in chunk_ids if chunk_id in self.chunks]
        return sorted(found, key=lambda chunk: chunk.chunk_index)

    def content_bytes(self) -> int:
        return sum(len(chunk.content.encode("utf-8")) for chunk in self.chunks.values())

    def unlink(self, chunk_id: str, document_id: str) -> None:
        """Remove *chunk_id* from one document's list, dropping the entry if emptied."""
        chunk_ids = self.document_index.get(document_id)
        if chunk_ids is None or chunk_id not in chunk_ids:
            return
        chunk_ids.remove(chunk_id)
        if not chunk_ids:
            del self.document_index[document_id]
