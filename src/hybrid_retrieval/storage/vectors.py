"""
Exact (brute-force) cosine-similarity index over chunk embeddings.
"""

from __future__ import annotations

import math
from typing import Iterable, Sequence

from ..errors import DimensionMismatch
from ..models import EmbeddingRecord

FLOAT32_BYTES = 4


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between *a* and *b*; 0.0 when either has zero norm."""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    # Rounding can push the ratio a hair outside [-1, 1].
    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))


class VectorIndex:
    """chunk id -> embedding record, with fixed dimension and insertion order."""

    def __init__(self, dimension: int) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be > 0")
        self.dimension = dimension
        self.records: dict[str, EmbeddingRecord] = {}

    def __len__(self) -> int:
        return len(self.records)

    def __contains__(self, chunk_id: object) -> bool:
        return chunk_id in self.records

    def check_dimension(self, vector: Sequence[float], *, context: str = "Embedding") -> None:
        if len(vector) != self.dimension:
            raise DimensionMismatch(self.dimension, len(vector), context=context)

    def put(self, records: Iterable[EmbeddingRecord]) -> None:
        for record in records:
            self.check_dimension(record.vector)
            self.records[record.chunk_id] = record

    def remove(self, chunk_ids: Iterable[str]) -> None:
        for chunk_id in chunk_ids:
            self.records.pop(chunk_id, None)

    def search(
        self,
        query_vector: Sequence[float],
        k: int,
        *,
        candidates: Iterable[str] | None = None,
    ) -> list[tuple[str, float]]:
        """Return up to *k* (chunk id, similarity) pairs, most similar first.

        Ties keep insertion order. *candidates* restricts the scan to the given
        chunk ids; ids without a stored vector are skipped.
        """
        self.check_dimension(query_vector, context="Query vector")
        if k <= 0:
            return []

        if candidates is None:
            pool: Iterable[EmbeddingRecord] = self.records.values()
        else:
            pool = (self.records[cid] for cid in candidates if cid in self.records)

        scored = [
            (record.chunk_id, cosine_similarity(query_vector, record.vector))
            for record in pool
        ]
        scored.sort(key=lambda pair: -pair[1])
        return scored[:k]

    def memory_bytes(self) -> int:
        return len(self.records) * self.dimension * FLOAT32_BYTES

    def replace(self, records: dict[str, EmbeddingRecord]) -> None:
        for record in records.values():
            self.check_dimension(record.vector)
        self.records = dict(records)
