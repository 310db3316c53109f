"""
Hybrid retrieval - vector and keyword search over chunked documents.

This package embeds text chunks through an external provider, keeps them in
an in-memory store with vector, keyword and document indexes, ranks queries
by cosine similarity, TF-IDF or a blend of both, and snapshots the store to a
JSON file.

Example usage:
    >>> from hybrid_retrieval import EmbeddingClient, RetrievalEngine, StoreSettings
    >>> client = EmbeddingClient()
    >>> engine = await RetrievalEngine.open(StoreSettings.from_env(dimension=client.dimension))
    >>> records = await client.embed_chunks(chunks)
    >>> await engine.add_document_chunks(chunks, records)
    >>> results = await engine.hybrid_search("purchase price", await client.embed_query("purchase price"), 5)
"""

from .config import EmbeddingSettings, StoreSettings
from .embeddings import EmbeddingClient
from .engine import RetrievalEngine
from .errors import (
    DimensionMismatch,
    EmbeddingError,
    EmbeddingTimeout,
    LockAcquisitionFailure,
    MissingCredential,
    PersistenceIOError,
    ProviderError,
    ProviderHttpError,
    RetrievalError,
)
from .models import (
    Chunk,
    EmbeddingRecord,
    SearchResult,
    Snapshot,
    StorageInfo,
    UsageStats,
    VectorStoreStats,
)
from .search import HybridSearchEngine, SemanticSearchEngine
from .storage import PersistenceManager, VectorStore

__all__ = [
    # Engine
    "RetrievalEngine",
    "VectorStore",
    "PersistenceManager",
    "HybridSearchEngine",
    "SemanticSearchEngine",
    # Embeddings
    "EmbeddingClient",
    # Config
    "EmbeddingSettings",
    "StoreSettings",
    # Models
    "Chunk",
    "EmbeddingRecord",
    "SearchResult",
    "Snapshot",
    "StorageInfo",
    "UsageStats",
    "VectorStoreStats",
    # Errors
    "RetrievalError",
    "EmbeddingError",
    "MissingCredential",
    "ProviderError",
    "ProviderHttpError",
    "EmbeddingTimeout",
    "DimensionMismatch",
    "LockAcquisitionFailure",
    "PersistenceIOError",
]
