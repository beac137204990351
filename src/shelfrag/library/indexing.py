"""Batch (re)indexing of the library into the vector store.

Items are embedded in fixed-size batches in library order. Between
requests the delay stretches to the provider's cooldown while it is rate
limited. Per-item failures are counted and skipped; only a provider that
turns out to be unconfigured, or a cancellation, ends a run early. Work
already written stays valid, so an interrupted run simply resumes next
time.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from shelfrag.config.models import IndexingConfig
from shelfrag.core.errors import EmbeddingError, ErrorCode, StorageError
from shelfrag.core.logging import operation
from shelfrag.library.invalidation import CacheInvalidationSink, NullInvalidationSink
from shelfrag.text.chunker import TextChunker

if TYPE_CHECKING:
    from shelfrag.core.cancellation import CancellationToken
    from shelfrag.embedding.base import BatchOutcome, EmbeddingProvider
    from shelfrag.library.models import LibraryItem
    from shelfrag.library.repository import LibraryRepository
    from shelfrag.store.vector_store import VectorStore

log = structlog.get_logger()

ProgressCallback = Callable[[int, int, str], None]
"""``(processed, total, current_title)``."""


@dataclass(frozen=True, slots=True)
class IndexingResult:
    """Counters for one indexing run.

    ``skipped`` covers items already indexed (non-forced runs) and items
    with no text to embed.
    """

    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    not_configured: bool = False
    source: str = "unknown"
    cancelled: bool = False
    last_error: EmbeddingError | None = None

    @property
    def rate_limited(self) -> bool:
        return self.last_error is not None and self.last_error.is_rate_limited

    def to_dict(self) -> dict[str, Any]:
        return {
            "indexed": self.indexed,
            "skipped": self.skipped,
            "failed": self.failed,
            "not_configured": self.not_configured,
            "source": self.source,
            "cancelled": self.cancelled,
            "last_error": self.last_error.to_dict() if self.last_error else None,
        }


class IndexLibrary:
    def __init__(
        self,
        repository: LibraryRepository,
        provider: EmbeddingProvider,
        vector_store: VectorStore,
        *,
        config: IndexingConfig | None = None,
        chunker: TextChunker | None = None,
        invalidation_sink: CacheInvalidationSink | None = None,
    ) -> None:
        self._repository = repository
        self._provider = provider
        self._store = vector_store
        self._config = config or IndexingConfig()
        self._chunker = chunker or TextChunker()
        self._sink = invalidation_sink or NullInvalidationSink()

    def build_embedding_text(self, item: LibraryItem) -> str:
        return self._chunker.build_primary_embedding_text(
            title=item.title,
            author=item.author,
            genres=item.genres,
            description=item.description,
        )

    def _delay_ms(self) -> float:
        if self._provider.is_rate_limited():
            cooldown_ms = self._provider.remaining_cooldown_seconds() * 1000
            return max(cooldown_ms + self._config.rate_limit_buffer_ms, self._config.default_delay_ms)
        return self._config.default_delay_ms

    def run(
        self,
        force: bool = False,
        on_progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> IndexingResult:
        """Index every item lacking an embedding (or every item with ``force``)."""
        with operation("index"):
            return self._run(force, on_progress, cancel)

    def _run(
        self,
        force: bool,
        on_progress: ProgressCallback | None,
        cancel: CancellationToken | None,
    ) -> IndexingResult:
        if not self._provider.is_configured():
            log.info("index_library.not_configured", provider=self._provider.source_id)
            return IndexingResult(not_configured=True, source=self._provider.source_id)

        items = self._repository.get_library_items()
        if force:
            candidates = items
        else:
            already = self._store.indexed_item_ids()
            candidates = [item for item in items if item.id not in already]

        total = len(candidates)
        skipped = len(items) - total
        indexed = 0
        failed = 0
        processed = 0
        cancelled = False
        not_configured = False
        last_error: EmbeddingError | None = None
        batch_size = self._config.batch_size
        start = time.monotonic()

        log.info(
            "index_library.started",
            force=force,
            library_size=len(items),
            candidates=total,
            batch_size=batch_size,
        )

        def report(title: str) -> None:
            if on_progress is not None:
                on_progress(processed, total, title)

        for batch_start in range(0, total, batch_size):
            if cancel is not None and cancel.is_cancelled:
                cancelled = True
                log.info("index_library.cancelled", processed=processed, total=total)
                break

            batch = candidates[batch_start : batch_start + batch_size]
            pending: list[tuple[LibraryItem, str]] = []
            for item in batch:
                text = self.build_embedding_text(item)
                if text.strip():
                    pending.append((item, text))
                else:
                    skipped += 1
                    processed += 1
                    log.debug("index_library.blank_item", item_id=item.id)

            if not pending:
                report(batch[-1].title)
                continue

            outcome = self._embed_pending([text for _, text in pending])
            results = outcome.results
            if outcome.errors:
                last_error = outcome.last_error

            for index in sorted(results):
                item = pending[index][0]
                try:
                    self._store.store_with_metadata(item.id, results[index])
                    indexed += 1
                except StorageError as e:
                    failed += 1
                    log.warning("index_library.store_failed", item_id=item.id, error=e.message)
                processed += 1
                report(item.title)

            batch_failed = len(pending) - len(results)
            if batch_failed:
                failed += batch_failed
                processed += batch_failed
                report(pending[-1][0].title)

            log.debug(
                "index_library.batch_done",
                batch=batch_start // batch_size,
                embedded=len(results),
                failed=batch_failed,
                processed=processed,
                total=total,
            )

            if not results and all(
                e.code == ErrorCode.EMBEDDING_NOT_CONFIGURED for e in outcome.errors.values()
            ):
                not_configured = True
                log.warning(
                    "index_library.provider_unavailable",
                    error=outcome.last_error.message if outcome.last_error else None,
                )
                break

        if indexed > 0:
            self._sink.on_library_changed()

        result = IndexingResult(
            indexed=indexed,
            skipped=skipped,
            failed=failed,
            not_configured=not_configured,
            source=self._provider.source_id,
            cancelled=cancelled,
            last_error=last_error if failed else None,
        )
        log.info(
            "index_library.completed",
            indexed=indexed,
            skipped=skipped,
            failed=failed,
            cancelled=cancelled,
            source=result.source,
            elapsed_s=round(time.monotonic() - start, 2),
        )
        return result

    def _embed_pending(self, texts: list[str]) -> BatchOutcome:
        """Embed a batch, re-trying items lost to transient network errors."""
        outcome = self._provider.embed_batch_detailed(texts, delay_policy=self._delay_ms)

        for attempt in range(self._config.transient_retries):
            transient = sorted(
                i for i, e in outcome.errors.items() if e.code == ErrorCode.EMBEDDING_TRANSIENT
            )
            if not transient:
                break
            log.info("index_library.retry_transient", items=len(transient), attempt=attempt + 1)
            retried = self._provider.embed_batch_detailed(
                [texts[i] for i in transient], delay_policy=self._delay_ms
            )
            for local_index, result in retried.results.items():
                outcome.results[transient[local_index]] = result
                outcome.errors.pop(transient[local_index], None)
            for local_index, error in retried.errors.items():
                outcome.errors[transient[local_index]] = error
        return outcome
