"""
Rank-based merging of keyword and vector result lists.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from ..models import SearchResult


@dataclass(frozen=True)
class RankedHit:
    """Merged candidate with its per-list rank contributions."""

    result: SearchResult
    keyword_score: float
    vector_score: float
    first_seen: int

    @property
    def chunk_id(self) -> str:
        return self.result.chunk.id

    @property
    def combined_score(self) -> float:
        return self.keyword_score + self.vector_score

    @property
    def matched_by(self) -> str:
        if self.keyword_score > 0 and self.vector_score > 0:
            return "keyword+vector"
        if self.keyword_score > 0:
            return "keyword"
        return "vector"


def rank_contribution(position: int, total: int, weight: float) -> float:
    """Score of the result at 0-based *position* in a list of *total* results."""
    return (1.0 - position / total) * weight


def validate_weights(keyword_weight: float, vector_weight: float) -> None:
    if keyword_weight < 0 or vector_weight < 0:
        raise ValueError("keyword_weight and vector_weight must be >= 0")
    if keyword_weight == 0 and vector_weight == 0:
        raise ValueError("keyword_weight and vector_weight cannot both be 0")


def merge_results(
    keyword_results: Sequence[SearchResult],
    vector_results: Sequence[SearchResult],
    *,
    keyword_weight: float,
    vector_weight: float,
) -> list[RankedHit]:
    """Sum rank contributions per chunk id.

    Only list positions matter, never the raw scores, since cosine similarity
    and TF-IDF live on unrelated scales. A list with zero weight adds nothing.
    """
    validate_weights(keyword_weight, vector_weight)
    merged: dict[str, RankedHit] = {}

    if keyword_weight > 0:
        for i, result in enumerate(keyword_results):
            score = rank_contribution(i, len(keyword_results), keyword_weight)
            merged.setdefault(
                result.chunk.id,
                RankedHit(result, keyword_score=score, vector_score=0.0, first_seen=len(merged)),
            )

    if vector_weight > 0:
        for i, result in enumerate(vector_results):
            score = rank_contribution(i, len(vector_results), vector_weight)
            existing = merged.get(result.chunk.id)
            if existing is None:
                merged[result.chunk.id] = RankedHit(
                    result, keyword_score=0.0, vector_score=score, first_seen=len(merged)
                )
            else:
                merged[result.chunk.id] = RankedHit(
                    existing.result,
                    keyword_score=existing.keyword_score,
                    vector_score=existing.vector_score + score,
                    first_seen=existing.first_seen,
                )

    return list(merged.values())


def rank_hits(hits: list[RankedHit], *, limit: int) -> list[RankedHit]:
    """Sort merged hits by combined score, first-seen order breaking ties."""
    ordered = sorted(hits, key=lambda hit: (-hit.combined_score, hit.first_seen))
    return ordered[: max(limit, 0)]
