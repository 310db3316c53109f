"""
Hybrid keyword + vector search over a `VectorStore`.
"""

from __future__ import annotations

import asyncio
from typing import Sequence

from ..models import SearchResult
from ..storage.store import VectorStore
from .ranker import merge_results, rank_hits, validate_weights

DEFAULT_KEYWORD_WEIGHT = 0.5
DEFAULT_VECTOR_WEIGHT = 0.5
# Each underlying search returns this many times k candidates before merging.
OVERFETCH_FACTOR = 2


def hybrid_explanation(combined_score: float, explanation: str) -> str:
    return f"Hybrid search result (combined score: {combined_score:.3f}): {explanation}"


class HybridSearchEngine:
    """Blend `keyword_search` and `search` rankings by list position.

    Each list contributes `(1 - i / n) * weight` for its i-th result, so a
    chunk's combined score reflects where it ranked, not how strongly it
    matched. With one weight at zero the ranking is exactly that of the
    other search.
    """

    def __init__(self, store: VectorStore) -> None:
        self.store = store

    async def hybrid_search(
        self,
        query: str,
        query_vector: Sequence[float],
        k: int,
        keyword_weight: float = DEFAULT_KEYWORD_WEIGHT,
        vector_weight: float = DEFAULT_VECTOR_WEIGHT,
    ) -> list[SearchResult]:
        validate_weights(keyword_weight, vector_weight)
        if k <= 0:
            return []

        fetch = k * OVERFETCH_FACTOR
        keyword_results, vector_results = await asyncio.gather(
            self.store.keyword_search(query, fetch),
            self.store.search(query_vector, fetch),
        )
        hits = merge_results(
            keyword_results,
            vector_results,
            keyword_weight=keyword_weight,
            vector_weight=vector_weight,
        )
        return [
            hit.result.model_copy(
                update={
                    "similarity": hit.combined_score,
                    "explanation": hybrid_explanation(
                        hit.combined_score, hit.result.explanation
                    ),
                }
            )
            for hit in rank_hits(hits, limit=k)
        ]
