"""
Persistent retrieval engine: the store, its snapshot file and hybrid search.
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import TracebackType
from typing import Sequence

from .config import StoreSettings
from .errors import PersistenceIOError
from .models import Chunk, SearchResult, StorageInfo, VectorStoreStats
from .search.hybrid import DEFAULT_KEYWORD_WEIGHT, DEFAULT_VECTOR_WEIGHT, HybridSearchEngine
from .storage.persistence import PersistenceManager
from .storage.store import EmbeddingInput, VectorStore

logger = logging.getLogger(__name__)


class RetrievalEngine:
    """Public operation set over a `VectorStore` backed by a snapshot file.

    Every mutation marks the store dirty; the auto-save task (or
    `force_save`) writes it back.

    Example usage:
        >>> async with await RetrievalEngine.open(settings) as engine:
        ...     await engine.add_document_chunks(chunks, vectors)
        ...     results = await engine.hybrid_search("query", query_vector, 5)
    """

    def __init__(self, store: VectorStore, persistence: PersistenceManager) -> None:
        self.store = store
        self.persistence = persistence
        self.hybrid = HybridSearchEngine(store)

    @classmethod
    async def open(
        cls,
        settings: StoreSettings,
        *,
        auto_save: bool = True,
    ) -> RetrievalEngine:
        """Create an engine and load its snapshot.

        An unreadable or corrupt snapshot is logged and the engine starts
        empty. A snapshot of another dimension raises `DimensionMismatch`.
        """
        store = VectorStore(settings.dimension, lock_timeout=settings.lock_timeout_seconds)
        persistence = PersistenceManager(store, settings)
        try:
            await persistence.load()
        except PersistenceIOError as exc:
            logger.warning("Could not load vector store, starting empty: %s", exc)
        engine = cls(store, persistence)
        if auto_save:
            persistence.start_auto_save()
        return engine

    async def close(self) -> None:
        """Stop auto-saving and write any unsaved changes."""
        await self.persistence.stop_auto_save()
        if self.persistence.is_dirty:
            await self.persistence.save()

    async def __aenter__(self) -> RetrievalEngine:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def dimension(self) -> int:
        return self.store.dimension

    async def add_document_chunks(
        self,
        chunks: Sequence[Chunk],
        embeddings: Sequence[EmbeddingInput],
    ) -> None:
        records = self.store.validate_batch(chunks, embeddings)
        if not records:
            return
        try:
            await self.store.add_document_chunks(chunks, records)
        finally:
            # Past validation, even an interrupted write has changed the store.
            self.persistence.mark_dirty()

    async def remove_document(self, document_id: str) -> bool:
        removed = await self.store.remove_document(document_id)
        if removed:
            self.persistence.mark_dirty()
        return removed

    async def search(self, query_vector: Sequence[float], k: int) -> list[SearchResult]:
        return await self.store.search(query_vector, k)

    async def search_by_document(
        self,
        document_id: str,
        query_vector: Sequence[float],
        k: int,
    ) -> list[SearchResult]:
        return await self.store.search_by_document(document_id, query_vector, k)

    async def keyword_search(self, query: str, k: int) -> list[SearchResult]:
        return await self.store.keyword_search(query, k)

    async def keyword_search_by_document(
        self,
        document_id: str,
        query: str,
        k: int,
    ) -> list[SearchResult]:
        return await self.store.keyword_search_by_document(document_id, query, k)

    async def hybrid_search(
        self,
        query: str,
        query_vector: Sequence[float],
        k: int,
        keyword_weight: float = DEFAULT_KEYWORD_WEIGHT,
        vector_weight: float = DEFAULT_VECTOR_WEIGHT,
    ) -> list[SearchResult]:
        return await self.hybrid.hybrid_search(
            query, query_vector, k, keyword_weight, vector_weight
        )

    async def get_document_chunks(self, document_id: str) -> list[Chunk]:
        return await self.store.get_document_chunks(document_id)

    async def get_stats(self) -> VectorStoreStats:
        return await self.store.get_stats()

    async def force_save(self) -> Path:
        path = await self.persistence.save()
        logger.debug("Vector store manually saved to %s", path)
        return path

    async def get_storage_info(self) -> StorageInfo:
        return await self.persistence.storage_info()
