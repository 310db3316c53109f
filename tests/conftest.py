"""Shared fixtures: a fake embedding backend and chunk builders."""

from __future__ import annotations

import time
from typing import Callable

import pytest

from hybrid_retrieval.config import EmbeddingSettings
from hybrid_retrieval.embeddings import simple_hash
from hybrid_retrieval.models import Chunk
from hybrid_retrieval.providers import EmbeddingBatch


class FakeBackend:
    """Deterministic in-process backend that records every batch it embeds."""

    name = "fake"

    def __init__(
        self,
        dim: int = 4,
        *,
        total_tokens: int | None = None,
        delay: float = 0.0,
        error: Exception | None = None,
        drop_last: bool = False,
    ) -> None:
        self.dim = dim
        self.total_tokens = total_tokens
        self.delay = delay
        self.error = error
        self.drop_last = drop_last
        self.calls: list[list[str]] = []
        self.query_flags: list[bool] = []

    def vector_for(self, text: str) -> list[float]:
        seed = simple_hash(text)
        return [float((seed >> (8 * i)) % 97 + 1) for i in range(self.dim)]

    def embed(self, texts: list[str], *, query: bool = False) -> EmbeddingBatch:
        self.calls.append(list(texts))
        self.query_flags.append(query)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        vectors = [self.vector_for(text) for text in texts]
        if self.drop_last:
            vectors = vectors[:-1]
        return EmbeddingBatch(vectors=vectors, total_tokens=self.total_tokens)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "OPENAI_API_KEY",
        "OPENROUTER_API_KEY",
        "GOOGLE_API_KEY",
        "EMBEDDING_DIMENSIONS",
        "HYBRID_RETRIEVAL_STORE_PATH",
        "HYBRID_RETRIEVAL_SETTINGS_PATH",
        "HYBRID_RETRIEVAL_AUTOSAVE_INTERVAL",
        "HYBRID_RETRIEVAL_EMBEDDING_PROVIDER",
        "HYBRID_RETRIEVAL_EMBEDDING_MODEL",
        "HYBRID_RETRIEVAL_EMBEDDING_DIM",
        "HYBRID_RETRIEVAL_EMBEDDING_BATCH_SIZE",
        "HYBRID_RETRIEVAL_EMBEDDING_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend(dim=4)


@pytest.fixture
def backend_factory() -> type[FakeBackend]:
    return FakeBackend


@pytest.fixture
def embedding_settings() -> EmbeddingSettings:
    return EmbeddingSettings(provider="openai", api_key="test-key", dimension=4)


@pytest.fixture
def make_chunk() -> Callable[..., Chunk]:
    def _make(document_id: str, chunk_index: int, content: str, **metadata: str) -> Chunk:
        return Chunk(
            id=Chunk.make_id(document_id, chunk_index),
            document_id=document_id,
            content=content,
            chunk_index=chunk_index,
            start_char=chunk_index * 100,
            end_char=chunk_index * 100 + len(content),
            metadata=metadata,
        )

    return _make
