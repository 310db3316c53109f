"""In-memory indexes and snapshot persistence."""

from .chunks import ChunkStore
from .keywords import KeywordIndex
from .locks import AsyncRWLock
from .persistence import PersistenceManager
from .store import VectorStore
from .vectors import VectorIndex, cosine_similarity

__all__ = [
    "AsyncRWLock",
    "ChunkStore",
    "KeywordIndex",
    "PersistenceManager",
    "VectorIndex",
    "VectorStore",
    "cosine_similarity",
]
