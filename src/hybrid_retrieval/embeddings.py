"""
Embedding client for vector-based semantic search.

Wraps a provider backend with an in-memory cache, shared usage counters and a
hard timeout. Calls are order- and length-preserving, and only cache misses
reach the provider.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Sequence

from .config import EmbeddingSettings
from .errors import EmbeddingError, EmbeddingTimeout, ProviderError
from .models import Chunk, EmbeddingRecord, UsageStats
from .providers import EmbeddingBackend, create_backend

logger = logging.getLogger(__name__)

_HASH_MASK = (1 << 64) - 1


def simple_hash(text: str) -> int:
    """djb2 over the UTF-8 bytes of *text*, wrapped to 64 bits."""
    value = 5381
    for byte in text.encode("utf-8"):
        value = (value * 33 + byte) & _HASH_MASK
    return value


def estimate_tokens(text: str) -> int:
    # Roughly one token per four bytes of English text
    return math.ceil(len(text.encode("utf-8")) / 4)


class EmbeddingClient:
    """Generate text embeddings with caching, usage tracking and a hard timeout."""

    def __init__(
        self,
        settings: EmbeddingSettings | None = None,
        *,
        backend: EmbeddingBackend | None = None,
        **backend_options: Any,
    ) -> None:
        self.settings = settings or EmbeddingSettings.from_env()
        self.backend = backend or create_backend(self.settings, **backend_options)
        self._cache: dict[str, list[float]] = {}
        self._cache_lock = asyncio.Lock()
        self._stats = UsageStats()
        self._stats_lock = asyncio.Lock()
        logger.info(
            "Initializing embedding client with provider: %s, model: %s",
            self.settings.provider,
            self.settings.model_name,
        )

    @property
    def model(self) -> str:
        return str(self.settings.model_name)

    @property
    def dimension(self) -> int:
        return self.settings.request_dimensions or self.settings.dimension

    def cache_key(self, text: str, *, query: bool = False) -> str:
        key = f"{self.model}:{len(text.encode('utf-8'))}:{simple_hash(text)}"
        return f"{key}:query" if query else key

    async def get_embeddings(
        self, texts: Sequence[str], *, query: bool = False
    ) -> list[list[float]]:
        """Embed *texts*, returning one vector per input in input order.

        Raises `EmbeddingTimeout` when the provider does not answer within the
        configured timeout (capped at 20 seconds). Any other provider failure is
        raised unchanged; nothing is retried. Pass *query* for search text so
        providers with a separate query embedding use it.
        """
        texts = list(texts)
        if not texts:
            return []

        timeout = self.settings.effective_timeout
        logger.info(
            "Starting embedding generation for %d texts with %gs timeout",
            len(texts),
            timeout,
        )
        try:
            return await asyncio.wait_for(self._get_embeddings(texts, query), timeout)
        except EmbeddingError:
            await self._record_error()
            raise
        except asyncio.TimeoutError as exc:
            await self._record_error()
            logger.error(
                "Embedding generation timed out after %g seconds; provider may be hanging",
                timeout,
            )
            raise EmbeddingTimeout(timeout) from exc

    async def get_embedding(self, text: str, *, query: bool = False) -> list[float]:
        embeddings = await self.get_embeddings([text], query=query)
        return embeddings[0]

    async def embed_query(self, query: str) -> list[float]:
        """Embed a single query text for retrieval."""
        return await self.get_embedding(query, query=True)

    async def embed_chunks(self, chunks: Sequence[Chunk]) -> list[EmbeddingRecord]:
        """Embed chunk contents and wrap the vectors as records keyed by chunk id."""
        vectors = await self.get_embeddings([chunk.content for chunk in chunks])
        return [
            EmbeddingRecord(chunk_id=chunk.id, vector=vector)
            for chunk, vector in zip(chunks, vectors)
        ]

    async def _get_embeddings(self, texts: list[str], query: bool) -> list[list[float]]:
        keys = [self.cache_key(text, query=query) for text in texts]
        results: list[list[float] | None] = [None] * len(texts)
        miss_indices: list[int] = []

        async with self._cache_lock:
            for i, key in enumerate(keys):
                cached = self._cache.get(key)
                if cached is not None:
                    results[i] = list(cached)
                else:
                    miss_indices.append(i)

        hits = len(texts) - len(miss_indices)
        if hits:
            async with self._stats_lock:
                self._stats.cache_hits += hits

        if not miss_indices:
            logger.debug("All %d embeddings served from cache", len(texts))
            return [vector for vector in results if vector is not None]

        missed_texts = [texts[i] for i in miss_indices]
        new_vectors: list[list[float]] = []
        requests_made = 0
        tokens_used = 0
        batch_size = self.settings.batch_size
        for start in range(0, len(missed_texts), batch_size):
            batch = missed_texts[start : start + batch_size]
            outcome = await asyncio.to_thread(self.backend.embed, batch, query=query)
            requests_made += 1
            new_vectors.extend(outcome.vectors)
            if outcome.total_tokens is not None:
                tokens_used += outcome.total_tokens
            else:
                tokens_used += sum(estimate_tokens(text) for text in batch)

        if len(new_vectors) != len(missed_texts):
            raise ProviderError(
                f"{self.backend.name} returned {len(new_vectors)} embeddings "
                f"for {len(missed_texts)} inputs"
            )

        async with self._cache_lock:
            for i, vector in zip(miss_indices, new_vectors):
                self._cache[keys[i]] = vector
                results[i] = list(vector)

        async with self._stats_lock:
            self._stats.total_requests += requests_made
            self._stats.total_tokens += tokens_used

        return [vector for vector in results if vector is not None]

    async def _record_error(self) -> None:
        async with self._stats_lock:
            self._stats.errors += 1

    async def usage_stats(self) -> UsageStats:
        async with self._stats_lock:
            return self._stats.model_copy()

    async def clear_cache(self) -> None:
        async with self._cache_lock:
            self._cache.clear()

    async def cache_size(self) -> int:
        async with self._cache_lock:
            return len(self._cache)

    async def test_connection(self) -> bool:
        """Send a one-word request and report whether the provider answered."""
        try:
            await self.get_embeddings(["test"])
        except EmbeddingError as exc:
            logger.warning("Embedding provider connection test failed: %s", exc)
            return False
        logger.info("Embedding provider connection test successful")
        return True
