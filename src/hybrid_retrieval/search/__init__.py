"""Ranking and search engines built on the vector store."""

from .hybrid import HybridSearchEngine
from .ranker import RankedHit, merge_results, rank_hits
from .semantic import SemanticSearchEngine

__all__ = [
    "HybridSearchEngine",
    "RankedHit",
    "merge_results",
    "rank_hits",
    "SemanticSearchEngine",
]
