"""
Text-level search: embed the query, then search the store.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from ..embeddings import EmbeddingClient
from ..models import Chunk, EmbeddingRecord, SearchResult


class VectorSearcher(Protocol):
    async def add_document_chunks(
        self, chunks: Sequence[Chunk], embeddings: Sequence[EmbeddingRecord]
    ) -> None: ...

    async def search(self, query_vector: Sequence[float], k: int) -> list[SearchResult]: ...

    async def search_by_document(
        self, document_id: str, query_vector: Sequence[float], k: int
    ) -> list[SearchResult]: ...

    async def hybrid_search(
        self,
        query: str,
        query_vector: Sequence[float],
        k: int,
        keyword_weight: float = ...,
        vector_weight: float = ...,
    ) -> list[SearchResult]: ...


class SemanticSearchEngine:
    """Embed text through an `EmbeddingClient` and search stored chunk embeddings."""

    def __init__(
        self,
        searcher: VectorSearcher,
        embedding_client: EmbeddingClient,
    ) -> None:
        self.searcher = searcher
        self.embedding_client = embedding_client

    async def index_chunks(self, chunks: Sequence[Chunk]) -> int:
        """Embed *chunks* and add them to the store; returns the number indexed."""
        if not chunks:
            return 0
        records = await self.embedding_client.embed_chunks(chunks)
        await self.searcher.add_document_chunks(chunks, records)
        return len(records)

    async def search(self, query: str, *, limit: int = 5) -> list[SearchResult]:
        query_vector = await self.embedding_client.embed_query(query)
        return await self.searcher.search(query_vector, limit)

    async def search_document(
        self,
        document_id: str,
        query: str,
        *,
        limit: int = 5,
    ) -> list[SearchResult]:
        query_vector = await self.embedding_client.embed_query(query)
        return await self.searcher.search_by_document(document_id, query_vector, limit)

    async def hybrid_search(
        self,
        query: str,
        *,
        limit: int = 10,
        keyword_weight: float = 0.5,
        vector_weight: float = 0.5,
    ) -> list[SearchResult]:
        query_vector = await self.embedding_client.embed_query(query)
        return await self.searcher.hybrid_search(
            query,
            query_vector,
            limit,
            keyword_weight=keyword_weight,
            vector_weight=vector_weight,
        )
