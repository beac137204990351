"""Embedding persistence and nearest-neighbor search."""

from shelfrag.store.database import Database
from shelfrag.store.models import EmbeddingRow
from shelfrag.store.vector_store import EmbeddingRecord, SearchCandidate, VectorStore
from shelfrag.store.vectors import decode_vector, dot, encode_vector, normalize, top_k

__all__ = [
    "Database",
    "EmbeddingRecord",
    "EmbeddingRow",
    "SearchCandidate",
    "VectorStore",
    "decode_vector",
    "dot",
    "encode_vector",
    "normalize",
    "top_k",
]
