"""Embedding providers."""

from shelfrag.embedding.base import BatchOutcome, DelayPolicy, EmbeddingProvider, EmbeddingResult
from shelfrag.embedding.gemini import GeminiEmbeddingProvider, parse_retry_delay
from shelfrag.embedding.hybrid import HybridEmbeddingProvider, NetworkProbe
from shelfrag.embedding.local import LocalEmbeddingProvider
from shelfrag.embedding.query_cache import QueryEmbeddingCache

__all__ = [
    "BatchOutcome",
    "DelayPolicy",
    "EmbeddingProvider",
    "EmbeddingResult",
    "GeminiEmbeddingProvider",
    "HybridEmbeddingProvider",
    "LocalEmbeddingProvider",
    "NetworkProbe",
    "QueryEmbeddingCache",
    "parse_retry_delay",
]
