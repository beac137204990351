"""Host wiring: one instance of every component, built once and shared."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from shelfrag.config.loader import resolve_paths
from shelfrag.embedding.gemini import GeminiEmbeddingProvider
from shelfrag.embedding.hybrid import HybridEmbeddingProvider, NetworkProbe
from shelfrag.embedding.local import LocalEmbeddingProvider
from shelfrag.library.indexing import IndexingResult, IndexLibrary
from shelfrag.library.job import IndexingJob
from shelfrag.library.repository import InMemoryLibraryRepository
from shelfrag.library.search import SearchLibrary, SearchOutcome
from shelfrag.store.database import Database
from shelfrag.store.vector_store import VectorStore
from shelfrag.text.chunker import TextChunker

if TYPE_CHECKING:
    from types import TracebackType

    from shelfrag.config.models import ShelfRagConfig
    from shelfrag.core.cancellation import CancellationToken
    from shelfrag.embedding.base import EmbeddingProvider
    from shelfrag.library.indexing import ProgressCallback
    from shelfrag.library.invalidation import CacheInvalidationSink
    from shelfrag.library.models import LibraryItem
    from shelfrag.library.repository import LibraryRepository

log = structlog.get_logger()


class ShelfRag:
    """Owns the store, providers and orchestrators for one library.

    Construct once at startup and pass it (or its parts) to consumers.
    ``cloud``, ``local`` and ``database`` can be supplied to replace the
    defaults built from ``config``.
    """

    def __init__(
        self,
        config: ShelfRagConfig,
        repository: LibraryRepository | None = None,
        *,
        project_root: Path | None = None,
        invalidation_sink: CacheInvalidationSink | None = None,
        cloud: EmbeddingProvider | None = None,
        local: EmbeddingProvider | None = None,
        database: Database | None = None,
        probe_network: bool = True,
    ) -> None:
        self.config = config
        self.project_root = project_root or Path.cwd()
        self.repository = repository or InMemoryLibraryRepository()
        db_path, model_dir = resolve_paths(config, self.project_root)

        self.database = database or Database(db_path)
        self.store = VectorStore(
            self.database,
            max_cache_size=config.store.max_cache_size,
            parallel_threshold=config.store.parallel_threshold,
            parallel_chunks=config.store.parallel_chunks,
        )

        self.cloud = cloud or GeminiEmbeddingProvider(config.cloud)
        self.local = local or LocalEmbeddingProvider(config.local, cache_dir=model_dir)
        probe = None
        if probe_network and isinstance(self.cloud, GeminiEmbeddingProvider):
            probe = NetworkProbe(self.cloud.host)
        self.provider = HybridEmbeddingProvider(self.cloud, self.local, network_probe=probe)

        self.chunker = TextChunker(
            max_chunk_size=config.chunking.max_chunk_size,
            overlap_size=config.chunking.overlap_size,
            min_chunk_size=config.chunking.min_chunk_size,
        )
        self.indexer = IndexLibrary(
            self.repository,
            self.provider,
            self.store,
            config=config.indexing,
            chunker=self.chunker,
            invalidation_sink=invalidation_sink,
        )
        self.searcher = SearchLibrary(
            self.repository,
            [self.cloud, self.local],
            self.store,
            config=config.search,
        )
        self.job = IndexingJob(self.indexer)
        log.debug("shelfrag.ready", db_path=str(self.database.db_path))

    def index(
        self,
        force: bool = False,
        on_progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> IndexingResult:
        return self.indexer.run(force=force, on_progress=on_progress, cancel=cancel)

    def search(
        self,
        query: str,
        limit: int | None = None,
        use_reranking: bool = True,
        cancel: CancellationToken | None = None,
    ) -> SearchOutcome:
        return self.searcher.search(query, limit, use_reranking, cancel)

    def run_search(self, query: str, limit: int | None = None) -> list[LibraryItem]:
        return self.searcher.run(query, limit)

    def status(self) -> dict[str, Any]:
        """Summary for status displays."""
        return {
            "db_path": str(self.database.db_path),
            "indexed_items": self.store.count(),
            "dimensions": {
                str(dim): self.store.count_for_dimension(dim)
                for dim in sorted(self.store.get_available_dimensions())
            },
            "predominant_source": self.store.get_predominant_source(),
            "cloud_configured": self.cloud.is_configured(),
            "local_configured": self.local.is_configured(),
            "rate_limited": self.cloud.is_rate_limited(),
            "cooldown_seconds": self.cloud.remaining_cooldown_seconds(),
        }

    def close(self) -> None:
        self.job.shutdown()
        self.searcher.close()
        self.store.close()
        self.provider.close()
        self.database.dispose()

    def __enter__(self) -> ShelfRag:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
