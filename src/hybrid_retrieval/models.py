"""
Data model shared by the embedding client, the indexes and persistence.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

SNAPSHOT_VERSION = "1.0"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Chunk(BaseModel):
    """A contiguous slice of a document's text, the unit indexed for search."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Globally unique id, `<document_id>:<chunk_index>` by convention")
    document_id: str = Field(description="Owning document")
    content: str = Field(description="Chunk text")
    chunk_index: int = Field(ge=0, description="Position of the chunk in its document")
    start_char: int = Field(ge=0, description="Start offset in the source text")
    end_char: int = Field(ge=0, description="End offset in the source text")
    metadata: dict[str, str] = Field(default_factory=dict)

    @staticmethod
    def make_id(document_id: str, chunk_index: int) -> str:
        return f"{document_id}:{chunk_index}"


class EmbeddingRecord(BaseModel):
    """Embedding vector stored for a chunk"""

    chunk_id: str
    vector: list[float]
    created_at: datetime = Field(default_factory=utcnow)


class SearchResult(BaseModel):
    """A ranked chunk with its score and a human-readable explanation"""

    chunk: Chunk
    similarity: float
    explanation: str


class VectorStoreStats(BaseModel):
    total_documents: int
    total_chunks: int
    total_embeddings: int
    dimension: int
    memory_usage_estimate: int = Field(description="Approximate bytes held in memory")


class StorageInfo(BaseModel):
    storage_path: str
    last_save: datetime | None
    is_dirty: bool
    storage_size_bytes: int
    total_chunks: int
    total_documents: int
    auto_save_interval: float


class UsageStats(BaseModel):
    """Counters shared by every call through one embedding client"""

    total_requests: int = 0
    total_tokens: int = 0
    cache_hits: int = 0
    errors: int = 0


class Snapshot(BaseModel):
    """Complete, self-describing serialization of a store's state."""

    embeddings: dict[str, EmbeddingRecord]
    chunks: dict[str, Chunk]
    document_index: dict[str, list[str]]
    dimension: int
    created_at: datetime = Field(default_factory=utcnow)
    version: str = SNAPSHOT_VERSION
