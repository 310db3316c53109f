"""
In-memory multi-index store: chunks, document index, vectors and keywords.

Each structure sits behind its own shared-read/exclusive-write lock. A
mutation takes the write locks one after another, never all at once, so a
reader running alongside a mutation may observe it half applied.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence, Union

from ..errors import DimensionMismatch
from ..models import (
    Chunk,
    EmbeddingRecord,
    SearchResult,
    Snapshot,
    VectorStoreStats,
)
from .chunks import CHUNK_OVERHEAD_BYTES, ChunkStore
from .keywords import KeywordIndex
from .locks import AsyncRWLock
from .vectors import VectorIndex

logger = logging.getLogger(__name__)

EmbeddingInput = Union[EmbeddingRecord, Sequence[float]]

# Raw TF-IDF + phrase scores are divided by this and capped at 1.0 to give a
# similarity on the same [0, 1] range as the other result kinds.
KEYWORD_SCORE_SCALE = 10.0


def vector_explanation(chunk: Chunk, similarity: float, *, in_document: bool = False) -> str:
    if in_document:
        return f"Found in chunk {chunk.chunk_index} with {similarity * 100:.2f}% similarity"
    return (
        f"Found in document '{chunk.document_id}' (chunk {chunk.chunk_index}) "
        f"with {similarity * 100:.2f}% similarity"
    )


def keyword_explanation(chunk: Chunk, score: float, *, in_document: bool = False) -> str:
    if in_document:
        return f"Keyword match in chunk {chunk.chunk_index} - TF-IDF score: {score:.2f}"
    return (
        f"Keyword match in document '{chunk.document_id}' (chunk {chunk.chunk_index}) "
        f"- TF-IDF score: {score:.2f}"
    )


class VectorStore:
    """Chunks, their embeddings and a keyword index for one fixed dimension."""

    def __init__(self, dimension: int, *, lock_timeout: float | None = None) -> None:
        self._vectors = VectorIndex(dimension)
        self._chunks = ChunkStore()
        self._keywords = KeywordIndex()
        self._embeddings_lock = AsyncRWLock("embeddings", timeout=lock_timeout)
        self._chunks_lock = AsyncRWLock("chunks", timeout=lock_timeout)
        self._document_index_lock = AsyncRWLock("document_index", timeout=lock_timeout)
        self._keyword_lock = AsyncRWLock("keyword_index", timeout=lock_timeout)

    @property
    def dimension(self) -> int:
        return self._vectors.dimension

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add_document_chunks(
        self,
        chunks: Sequence[Chunk],
        embeddings: Sequence[EmbeddingInput],
    ) -> None:
        """Insert *chunks* with their *embeddings* into every structure.

        `embeddings[i]` belongs to `chunks[i]`; it may be an `EmbeddingRecord`
        (whose `chunk_id` must match) or a bare vector. The whole batch is
        validated first, so a `ValueError` or `DimensionMismatch` leaves the
        store untouched. Documents named in the batch are purged before the
        insert, replacing any previous version. The structures are then written
        one at a time; if that phase is interrupted, retry the whole batch.
        """
        records = self.validate_batch(chunks, embeddings)
        if not records:
            return

        document_ids = list(dict.fromkeys(chunk.document_id for chunk in chunks))
        await self._purge(document_ids, moved_chunks=await self._moved_chunks(chunks))

        async with self._embeddings_lock.write():
            self._vectors.put(records)
        async with self._chunks_lock.write():
            self._chunks.put_chunks(chunks)
        async with self._document_index_lock.write():
            self._chunks.index_chunks(chunks)
        async with self._keyword_lock.write():
            for chunk in chunks:
                self._keywords.add_chunk(chunk.id, chunk.content)

        logger.debug(
            "Added %d chunks for %d document(s)", len(records), len(document_ids)
        )

    async def remove_document(self, document_id: str) -> bool:
        """Delete every chunk of *document_id*; False if it was not stored."""
        async with self._document_index_lock.read():
            known = document_id in self._chunks.document_index
        if not known:
            return False
        await self._purge([document_id])
        logger.debug("Removed document %s", document_id)
        return True

    def validate_batch(
        self,
        chunks: Sequence[Chunk],
        embeddings: Sequence[EmbeddingInput],
    ) -> list[EmbeddingRecord]:
        if len(chunks) != len(embeddings):
            raise ValueError(
                f"Got {len(chunks)} chunks but {len(embeddings)} embeddings"
            )
        records: list[EmbeddingRecord] = []
        seen: set[str] = set()
        for chunk, embedding in zip(chunks, embeddings):
            if chunk.id in seen:
                raise ValueError(f"Chunk '{chunk.id}' appears more than once in the batch")
            seen.add(chunk.id)
            if isinstance(embedding, EmbeddingRecord):
                if embedding.chunk_id != chunk.id:
                    raise ValueError(
                        f"Embedding for chunk '{embedding.chunk_id}' "
                        f"paired with chunk '{chunk.id}'"
                    )
                record = embedding
            else:
                record = EmbeddingRecord(chunk_id=chunk.id, vector=list(embedding))
            self._vectors.check_dimension(record.vector)
            records.append(record)
        return records

    async def _moved_chunks(self, chunks: Sequence[Chunk]) -> dict[str, str]:
        """Chunk ids in *chunks* currently stored under a different document."""
        moved: dict[str, str] = {}
        async with self._chunks_lock.read():
            for chunk in chunks:
                previous = self._chunks.get(chunk.id)
                if previous is not None and previous.document_id != chunk.document_id:
                    moved[chunk.id] = previous.document_id
        return moved

    async def _purge(
        self,
        document_ids: Iterable[str],
        *,
        moved_chunks: dict[str, str] | None = None,
    ) -> None:
        stale: list[str] = []
        async with self._document_index_lock.write():
            for document_id in document_ids:
                stale.extend(self._chunks.pop_document(document_id))
            for chunk_id, owner in (moved_chunks or {}).items():
                self._chunks.unlink(chunk_id, owner)
        if not stale:
            return

        async with self._embeddings_lock.write():
            self._vectors.remove(stale)
        async with self._chunks_lock.write():
            self._chunks.drop_chunks(stale)
        async with self._keyword_lock.write():
            self._keywords.remove_chunks(stale)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def search(self, query_vector: Sequence[float], k: int) -> list[SearchResult]:
        """Exact cosine search over all vectors, most similar first."""
        async with self._embeddings_lock.read():
            hits = self._vectors.search(query_vector, k)
        return await self._vector_results(hits, in_document=False)

    async def search_by_document(
        self,
        document_id: str,
        query_vector: Sequence[float],
        k: int,
    ) -> list[SearchResult]:
        self._vectors.check_dimension(query_vector, context="Query vector")
        chunk_ids = await self._document_chunk_ids(document_id)
        if not chunk_ids:
            return []
        async with self._embeddings_lock.read():
            hits = self._vectors.search(query_vector, k, candidates=chunk_ids)
        return await self._vector_results(hits, in_document=True)

    async def keyword_search(self, query: str, k: int) -> list[SearchResult]:
        """TF-IDF and phrase-bonus ranking over all chunks."""
        async with self._keyword_lock.read():
            hits = self._keywords.search(query, k)
        return await self._keyword_results(hits, in_document=False)

    async def keyword_search_by_document(
        self,
        document_id: str,
        query: str,
        k: int,
    ) -> list[SearchResult]:
        chunk_ids = await self._document_chunk_ids(document_id)
        if not chunk_ids:
            return []
        async with self._keyword_lock.read():
            hits = self._keywords.search(query, k, candidates=chunk_ids)
        return await self._keyword_results(hits, in_document=True)

    async def get_document_chunks(self, document_id: str) -> list[Chunk]:
        """Chunks of *document_id* ordered by `chunk_index`; empty if unknown."""
        chunk_ids = await self._document_chunk_ids(document_id)
        async with self._chunks_lock.read():
            return self._chunks.document_chunks(chunk_ids)

    async def get_stats(self) -> VectorStoreStats:
        async with self._document_index_lock.read():
            total_documents = len(self._chunks.document_index)
        async with self._chunks_lock.read():
            total_chunks = len(self._chunks)
            content_bytes = self._chunks.content_bytes()
        async with self._embeddings_lock.read():
            total_embeddings = len(self._vectors)
            vector_bytes = self._vectors.memory_bytes()
        return VectorStoreStats(
            total_documents=total_documents,
            total_chunks=total_chunks,
            total_embeddings=total_embeddings,
            dimension=self.dimension,
            memory_usage_estimate=vector_bytes
            + content_bytes
            + total_chunks * CHUNK_OVERHEAD_BYTES,
        )

    async def _document_chunk_ids(self, document_id: str) -> list[str]:
        async with self._document_index_lock.read():
            return self._chunks.chunk_ids_for(document_id)

    async def _vector_results(
        self,
        hits: list[tuple[str, float]],
        *,
        in_document: bool,
    ) -> list[SearchResult]:
        results: list[SearchResult] = []
        async with self._chunks_lock.read():
            for chunk_id, similarity in hits:
                chunk = self._chunks.get(chunk_id)
                if chunk is None:
                    continue
                results.append(
                    SearchResult(
                        chunk=chunk,
                        similarity=similarity,
                        explanation=vector_explanation(
                            chunk, similarity, in_document=in_document
                        ),
                    )
                )
        return results

    async def _keyword_results(
        self,
        hits: list[tuple[str, float]],
        *,
        in_document: bool,
    ) -> list[SearchResult]:
        results: list[SearchResult] = []
        async with self._chunks_lock.read():
            for chunk_id, score in hits:
                chunk = self._chunks.get(chunk_id)
                if chunk is None:
                    continue
                results.append(
                    SearchResult(
                        chunk=chunk,
                        similarity=min(score / KEYWORD_SCORE_SCALE, 1.0),
                        explanation=keyword_explanation(
                            chunk, score, in_document=in_document
                        ),
                    )
                )
        return results

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def export_snapshot(self) -> Snapshot:
        """Copy every structure into a `Snapshot`.

        The structures are read one after another, so a snapshot taken while
        a mutation is in flight may be torn.
        """
        async with self._embeddings_lock.read():
            embeddings = dict(self._vectors.records)
        async with self._chunks_lock.read():
            chunks = dict(self._chunks.chunks)
        async with self._document_index_lock.read():
            document_index = {
                doc_id: list(ids) for doc_id, ids in self._chunks.document_index.items()
            }
        return Snapshot(
            embeddings=embeddings,
            chunks=chunks,
            document_index=document_index,
            dimension=self.dimension,
        )

    async def restore_snapshot(self, snapshot: Snapshot) -> None:
        """Replace the store's contents with *snapshot*.

        Raises `DimensionMismatch` before touching anything when the snapshot
        or any vector it restores does not match this store's dimension.
        """
        if snapshot.dimension != self.dimension:
            raise DimensionMismatch(self.dimension, snapshot.dimension, context="Snapshot")
        # A torn snapshot may hold chunks without vectors or the reverse;
        # only ids with both, listed under some document, are restored.
        complete = snapshot.chunks.keys() & snapshot.embeddings.keys()
        document_index: dict[str, list[str]] = {}
        dangling = 0
        for doc_id, chunk_ids in snapshot.document_index.items():
            kept = [cid for cid in chunk_ids if cid in complete]
            dangling += len(chunk_ids) - len(kept)
            if kept:
                document_index[doc_id] = kept
        if dangling:
            logger.warning("Dropped %d dangling chunk ids from snapshot index", dangling)

        indexed = {cid for chunk_ids in document_index.values() for cid in chunk_ids}
        chunks = {cid: chunk for cid, chunk in snapshot.chunks.items() if cid in indexed}
        embeddings = {
            cid: record for cid, record in snapshot.embeddings.items() if cid in indexed
        }
        orphans = len(snapshot.chunks) - len(chunks) + len(snapshot.embeddings) - len(embeddings)
        if orphans:
            logger.warning("Dropped %d orphan chunks and embeddings from snapshot", orphans)

        staged = VectorIndex(self.dimension)
        staged.replace(embeddings)

        keywords = KeywordIndex()
        keywords.rebuild((cid, chunk.content) for cid, chunk in chunks.items())

        async with self._embeddings_lock.write():
            self._vectors = staged
        async with self._chunks_lock.write():
            self._chunks.chunks = chunks
        async with self._document_index_lock.write():
            self._chunks.document_index = document_index
        async with self._keyword_lock.write():
            self._keywords = keywords
