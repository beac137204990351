"""Small per-provider cache of query embeddings."""

from __future__ import annotations

import threading

from shelfrag.core.lru import LRUCache
from shelfrag.embedding.base import EmbeddingProvider, EmbeddingResult


class QueryEmbeddingCache:
    """LRU of query text to embedding, shared by parallel sub-searches.

    Keys include the provider's source and dimension so a hybrid provider
    that switches backends never serves a vector from the wrong space.
    """

    def __init__(self, max_size: int = 50) -> None:
        self._lock = threading.Lock()
        self._entries: LRUCache[tuple[str, int, str], EmbeddingResult] = LRUCache(max_size)

    @staticmethod
    def _key(provider: EmbeddingProvider, query: str) -> tuple[str, int, str]:
        return (provider.source_id, provider.embedding_dimension, query.strip().lower())

    def get(self, provider: EmbeddingProvider, query: str) -> EmbeddingResult | None:
        with self._lock:
            return self._entries.get(self._key(provider, query))

    def put(self, provider: EmbeddingProvider, query: str, result: EmbeddingResult) -> None:
        with self._lock:
            self._entries.put(self._key(provider, query), result)

    def get_or_embed(self, provider: EmbeddingProvider, query: str) -> EmbeddingResult | None:
        """Cached embedding, or embed now and cache on success."""
        cached = self.get(provider, query)
        if cached is not None:
            return cached
        result = provider.embed_query(query)
        if result is not None:
            with self._lock:
                self._entries.put((result.source, result.dimension, query.strip().lower()), result)
        return result

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
