"""Semantic library search with optional BM25 re-ranking.

A store may hold vectors from several providers (cloud and local have
different dimensions). Every provider whose dimension is present gets a
sub-search in parallel; cosine scores are mapped to [0, 1] and merged by
maximum per item. A provider failure only removes its sub-search.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from shelfrag.config.constants import SEARCH_MAX_LIMIT, SEARCH_PARALLEL_WORKERS
from shelfrag.config.models import SearchConfig
from shelfrag.core.errors import (
    EmbeddingError,
    ErrorCode,
    LibraryError,
    OperationCancelled,
    ShelfRagError,
)
from shelfrag.core.logging import operation
from shelfrag.embedding.query_cache import QueryEmbeddingCache
from shelfrag.text.bm25 import Bm25Reranker

if TYPE_CHECKING:
    from shelfrag.core.cancellation import CancellationToken
    from shelfrag.embedding.base import EmbeddingProvider, EmbeddingResult
    from shelfrag.library.models import LibraryItem
    from shelfrag.library.repository import LibraryRepository
    from shelfrag.store.vector_store import SearchCandidate, VectorStore

log = structlog.get_logger()

_CANCEL_POLL_SEC = 0.05


class SearchStatus(str, Enum):
    OK = "ok"
    EMPTY_INDEX = "empty_index"
    NOT_CONFIGURED = "not_configured"
    RATE_LIMITED = "rate_limited"
    NO_RESULTS = "no_results"


@dataclass(frozen=True, slots=True)
class SearchOutcome:
    """Results plus the state a host needs to explain an empty list."""

    items: list[LibraryItem] = field(default_factory=list)
    status: SearchStatus = SearchStatus.OK
    retry_after_seconds: int = 0

    @property
    def message(self) -> str:
        if self.status is SearchStatus.RATE_LIMITED:
            return f"Rate limited. Please wait {self.retry_after_seconds}s and try again."
        if self.status is SearchStatus.NOT_CONFIGURED:
            return "Semantic search is not configured."
        if self.status is SearchStatus.EMPTY_INDEX:
            return "The library has not been indexed yet."
        if self.status is SearchStatus.NO_RESULTS:
            return "No matching items found."
        return f"{len(self.items)} result(s)"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "retry_after_seconds": self.retry_after_seconds,
            "items": [item.model_dump() for item in self.items],
        }


@dataclass(slots=True)
class _SubSearch:
    candidates: list[SearchCandidate] = field(default_factory=list)
    error: EmbeddingError | None = None


class SearchLibrary:
    def __init__(
        self,
        repository: LibraryRepository,
        providers: Sequence[EmbeddingProvider],
        vector_store: VectorStore,
        *,
        config: SearchConfig | None = None,
        reranker: Bm25Reranker | None = None,
    ) -> None:
        if not providers:
            raise ValueError("SearchLibrary needs at least one embedding provider")
        self._repository = repository
        self._providers = list(providers)
        self._store = vector_store
        self._config = config or SearchConfig()
        self._reranker = reranker or Bm25Reranker(k1=self._config.bm25_k1, b=self._config.bm25_b)
        self._query_caches = [
            QueryEmbeddingCache(self._config.query_cache_size) for _ in self._providers
        ]
        self._executor = ThreadPoolExecutor(
            max_workers=SEARCH_PARALLEL_WORKERS,
            thread_name_prefix="library-search",
        )

    def run(
        self,
        query: str,
        limit: int | None = None,
        use_reranking: bool = True,
        cancel: CancellationToken | None = None,
    ) -> list[LibraryItem]:
        """Ordered matching items; empty when nothing matches or search is unavailable."""
        return self.search(query, limit, use_reranking, cancel).items

    def search(
        self,
        query: str,
        limit: int | None = None,
        use_reranking: bool = True,
        cancel: CancellationToken | None = None,
    ) -> SearchOutcome:
        """Search and report why the result is empty when it is.

        Raises:
            OperationCancelled: If ``cancel`` fires before the search finishes.
        """
        with operation("search"):
            return self._search(query, limit, use_reranking, cancel)

    def _search(
        self,
        query: str,
        limit: int | None,
        use_reranking: bool,
        cancel: CancellationToken | None,
    ) -> SearchOutcome:
        limit = min(max(1, limit or self._config.default_limit), SEARCH_MAX_LIMIT)
        if not query.strip():
            return SearchOutcome(status=SearchStatus.NO_RESULTS)

        start = time.monotonic()
        available = self._store.get_available_dimensions()
        if not available:
            log.info("search_library.empty_index")
            return SearchOutcome(status=SearchStatus.EMPTY_INDEX)
        _check(cancel)

        errors: dict[int, EmbeddingError] = {}
        merged = self._parallel_search(query, limit, available, errors, cancel)

        if merged:
            ranked = sorted(merged, key=lambda item_id: (-merged[item_id], item_id))
            candidate_limit = self._candidate_limit(limit, use_reranking, self._config.candidate_cap)
            candidate_ids = ranked[:candidate_limit]
        else:
            candidate_ids = self._fallback_search(query, limit, use_reranking, errors, cancel)

        _check(cancel)
        items = self._resolve(candidate_ids)

        if use_reranking and len(items) > limit:
            items = self._rerank(query, items, limit)

        items = items[:limit]
        outcome = self._outcome(items, list(errors.values()))
        log.info(
            "search_library.completed",
            status=outcome.status.value,
            results=len(items),
            candidates=len(candidate_ids),
            dimensions=sorted(available),
            elapsed_ms=round((time.monotonic() - start) * 1000, 1),
        )
        return outcome

    def _candidate_limit(self, limit: int, use_reranking: bool, cap: int) -> int:
        if not use_reranking:
            return limit
        return max(limit, min(limit * self._config.candidate_multiplier, cap))

    # =========================================================================
    # Vector retrieval
    # =========================================================================

    def _parallel_search(
        self,
        query: str,
        limit: int,
        available: set[int],
        errors: dict[int, EmbeddingError],
        cancel: CancellationToken | None,
    ) -> dict[int, float]:
        seen: set[int] = set()
        futures: list[Future[_SubSearch]] = []
        indices: list[int] = []
        sub_limit = limit * self._config.subsearch_multiplier
        for index, provider in enumerate(self._providers):
            dimension = provider.embedding_dimension
            if dimension not in available or dimension in seen:
                continue
            seen.add(dimension)
            futures.append(
                self._executor.submit(self._sub_search, index, query, sub_limit, cancel)
            )
            indices.append(index)

        pending = set(futures)
        while pending:
            if cancel is not None and cancel.is_cancelled:
                for future in pending:
                    future.cancel()
                raise OperationCancelled.cancelled("library search")
            _, pending = wait(pending, timeout=_CANCEL_POLL_SEC, return_when=FIRST_COMPLETED)

        merged: dict[int, float] = {}
        for index, future in zip(indices, futures, strict=True):
            sub = future.result()
            if sub.error is not None:
                errors[index] = sub.error
            for item_id, score in sub.candidates:
                normalized = min(1.0, max(0.0, (score + 1.0) / 2.0))
                merged[item_id] = max(merged.get(item_id, 0.0), normalized)
        return merged

    def _sub_search(
        self, index: int, query: str, limit: int, cancel: CancellationToken | None
    ) -> _SubSearch:
        provider = self._providers[index]
        try:
            embedding = self._embed_query(index, query, cancel)
            if isinstance(embedding, EmbeddingError):
                return _SubSearch(error=embedding)
            return _SubSearch(candidates=self._store.search_with_scores(embedding.vector, limit))
        except OperationCancelled:
            raise
        except ShelfRagError as e:
            log.warning("search_library.sub_search_failed", provider=provider.source_id, error=str(e))
            return _SubSearch()

    def _embed_query(
        self, index: int, query: str, cancel: CancellationToken | None
    ) -> EmbeddingResult | EmbeddingError:
        provider = self._providers[index]
        cache = self._query_caches[index]
        cached = cache.get(provider, query)
        if cached is not None:
            return cached
        if not provider.is_configured():
            return EmbeddingError.not_configured(provider.source_id, "provider not configured")
        _check(cancel)
        result = provider.embed_query(query)
        if result is None:
            return provider.last_error or EmbeddingError.transient(provider.source_id, "no embedding")
        # A cancelled search must not leave cache writes behind.
        _check(cancel)
        cache.put(provider, query, result)
        return result

    def _fallback_search(
        self,
        query: str,
        limit: int,
        use_reranking: bool,
        errors: dict[int, EmbeddingError],
        cancel: CancellationToken | None,
    ) -> list[int]:
        """Single-provider search using the store's predominant source.

        A provider that already came back rate limited or unconfigured in
        this search is not asked again; a transient failure gets one more try.
        """
        source = self._store.get_predominant_source()
        index = next(
            (i for i, p in enumerate(self._providers) if p.source_id == source),
            0,
        )
        provider = self._providers[index]
        previous = errors.get(index)
        if previous is not None and (
            previous.is_rate_limited or previous.code == ErrorCode.EMBEDDING_NOT_CONFIGURED
        ):
            log.debug("search_library.fallback_skipped", provider=provider.source_id)
            return []
        log.debug("search_library.fallback", source=source, provider=provider.source_id)

        embedding = self._embed_query(index, query, cancel)
        if isinstance(embedding, EmbeddingError):
            errors[index] = embedding
            return []
        candidate_limit = self._candidate_limit(
            limit, use_reranking, self._config.fallback_candidate_cap
        )
        try:
            return self._store.search(embedding.vector, candidate_limit)
        except ShelfRagError as e:
            log.warning("search_library.fallback_failed", error=str(e))
            return []

    # =========================================================================
    # Resolution and re-ranking
    # =========================================================================

    def _resolve(self, item_ids: Sequence[int]) -> list[LibraryItem]:
        items: list[LibraryItem] = []
        for item_id in item_ids:
            try:
                item = self._repository.get_item(item_id)
            except LibraryError:
                item = None
            if item is None:
                log.debug("search_library.missing_item", item_id=item_id)
                continue
            items.append(item)
        return items

    def searchable_text(self, item: LibraryItem) -> str:
        parts = [item.title]
        if item.author:
            parts.append(item.author)
        if item.artist:
            parts.append(item.artist)
        parts.extend(item.genres[: self._config.max_genres])
        if item.description:
            parts.append(item.description[: self._config.description_chars])
        return " ".join(p for p in parts if p)

    def _rerank(self, query: str, items: list[LibraryItem], limit: int) -> list[LibraryItem]:
        by_id = {item.id: item for item in items}
        documents = {item.id: self.searchable_text(item) for item in items}
        ranked_ids = self._reranker.hybrid_rerank(
            query,
            documents,
            vector_ranking=[item.id for item in items],
            vector_weight=self._config.vector_weight,
            limit=limit,
        )
        return [by_id[item_id] for item_id in ranked_ids if item_id in by_id]

    @staticmethod
    def _outcome(items: list[LibraryItem], errors: list[EmbeddingError]) -> SearchOutcome:
        if items:
            return SearchOutcome(items=items)
        rate_limited = [e for e in errors if e.is_rate_limited]
        if rate_limited:
            return SearchOutcome(
                status=SearchStatus.RATE_LIMITED,
                retry_after_seconds=max(e.cooldown_seconds for e in rate_limited),
            )
        if errors and all(e.code == ErrorCode.EMBEDDING_NOT_CONFIGURED for e in errors):
            return SearchOutcome(status=SearchStatus.NOT_CONFIGURED)
        return SearchOutcome(status=SearchStatus.NO_RESULTS)

    def clear_query_cache(self) -> None:
        for cache in self._query_caches:
            cache.clear()

    def close(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=True)


def _check(cancel: CancellationToken | None) -> None:
    if cancel is not None:
        cancel.raise_if_cancelled("library search")
