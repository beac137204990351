"""Persistent vector store with a bounded in-memory LRU cache.

Records live in SQLite (one row per item and source) and the authoritative
record per item is mirrored into an access-order LRU cache. Search scores
only records whose dimension equals the query's; mixing dimensions would
compare vectors from unrelated embedding spaces.

Locking:
- ``_lock`` guards the cache and its bookkeeping. Every LRU touch and
  every insert (with possible eviction) happens under it.
- A striped per-item lock serializes writers for the same item so the
  persist-then-cache upsert cannot interleave.
- Database writes happen outside ``_lock``; readers never wait on disk I/O
  issued by an unrelated writer.
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, NamedTuple

import numpy as np
import structlog
from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select

from shelfrag.core.errors import StorageError
from shelfrag.core.lru import LRUCache
from shelfrag.store.models import EmbeddingRow
from shelfrag.store.vectors import Vector, decode_vector, encode_vector, normalize, top_k

if TYPE_CHECKING:
    from sqlmodel import Session

    from shelfrag.embedding.base import EmbeddingResult
    from shelfrag.store.database import Database

log = structlog.get_logger()

_ITEM_LOCK_STRIPES = 64


@dataclass(frozen=True, slots=True, eq=False)
class EmbeddingRecord:
    """Authoritative embedding for one item. ``vector`` is unit length."""

    item_id: int
    vector: Vector
    dimension: int
    source: str
    indexed_at: int  # epoch ms


class SearchCandidate(NamedTuple):
    item_id: int
    score: float


class _RowMeta(NamedTuple):
    source: str
    dimension: int
    indexed_at: int


def _now_ms() -> int:
    return int(time.time() * 1000)


class VectorStore:
    """Normalized embeddings keyed by item id, tagged with dimension and source.

    The cache is loaded lazily on first access. While every authoritative
    record fits in the cache, queries are answered from memory alone. Once
    the library outgrows ``max_cache_size`` and records are evicted, the
    store marks itself incomplete and consults the table for the rest, so
    eviction never hides an item from search or counts.
    """

    def __init__(
        self,
        database: Database,
        *,
        max_cache_size: int = 2000,
        parallel_threshold: int = 100,
        parallel_chunks: int = 4,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._db = database
        self._db.create_all()
        self._cache: LRUCache[int, EmbeddingRecord] = LRUCache(max_cache_size)
        self._lock = threading.RLock()
        self._item_locks = [threading.Lock() for _ in range(_ITEM_LOCK_STRIPES)]
        self._loaded = False
        self._complete = True
        self._active_dimension: int | None = None
        self._parallel_threshold = parallel_threshold
        self._parallel_chunks = max(1, parallel_chunks)
        self._executor: ThreadPoolExecutor | None = None
        self._clock_ms = clock_ms
        self._last_indexed_at = 0

    # =========================================================================
    # Loading
    # =========================================================================

    def _ensure_loaded(self) -> None:
        with self._lock:
            if self._loaded:
                return
            try:
                with self._db.session() as session:
                    latest = self._latest_meta(session)
                    records = self._fetch_records(session, latest, latest.keys())
            except SQLAlchemyError as e:
                raise StorageError.read_failed(str(e)) from e

            # Oldest first so the most recently indexed records survive eviction.
            ordered = sorted(records, key=lambda r: (r.indexed_at, r.item_id))
            self._cache.clear()
            evicted = 0
            for record in ordered:
                evicted += len(self._cache.put(record.item_id, record))
            self._complete = evicted == 0

            dims = Counter(r.dimension for r in records)
            self._active_dimension = dims.most_common(1)[0][0] if dims else None
            self._loaded = True
            log.info(
                "vector_store.loaded",
                records=len(records),
                cached=len(self._cache),
                complete=self._complete,
                dimensions=sorted(dims),
            )

    @staticmethod
    def _latest_meta(session: Session) -> dict[int, _RowMeta]:
        """Authoritative (latest) row metadata per item, without blobs."""
        stmt = select(
            EmbeddingRow.item_id,
            EmbeddingRow.embedding_source,
            EmbeddingRow.embedding_dim,
            EmbeddingRow.indexed_at,
        ).order_by(col(EmbeddingRow.indexed_at), col(EmbeddingRow.embedding_source))
        latest: dict[int, _RowMeta] = {}
        for item_id, source, dim, indexed_at in session.exec(stmt):
            latest[item_id] = _RowMeta(source, dim, indexed_at)
        return latest

    @staticmethod
    def _fetch_records(
        session: Session,
        latest: dict[int, _RowMeta],
        item_ids: Iterable[int],
    ) -> list[EmbeddingRecord]:
        """Decode the authoritative rows for ``item_ids``; corrupt rows are skipped."""
        wanted = [i for i in item_ids if i in latest]
        records: list[EmbeddingRecord] = []
        # Bounded IN-lists keep the statement under SQLite's variable limit.
        for start in range(0, len(wanted), 500):
            batch = wanted[start : start + 500]
            stmt = select(EmbeddingRow).where(col(EmbeddingRow.item_id).in_(batch))
            for row in session.exec(stmt):
                meta = latest[row.item_id]
                if row.embedding_source != meta.source:
                    continue
                vector = decode_vector(row.embedding, row.embedding_dim)
                if vector is None:
                    err = StorageError.corrupt_record(
                        row.item_id, len(row.embedding), row.embedding_dim
                    )
                    log.warning("vector_store.corrupt_record", error=err.message)
                    continue
                records.append(
                    EmbeddingRecord(
                        item_id=row.item_id,
                        vector=vector,
                        dimension=row.embedding_dim,
                        source=row.embedding_source,
                        indexed_at=row.indexed_at,
                    )
                )
        return records

    def _read_latest_meta(self) -> dict[int, _RowMeta]:
        try:
            with self._db.session() as session:
                return self._latest_meta(session)
        except SQLAlchemyError as e:
            raise StorageError.read_failed(str(e)) from e

    def invalidate_cache(self) -> None:
        """Drop the cache; the next access reloads from the table."""
        with self._lock:
            self._cache.clear()
            self._loaded = False
            self._complete = True
        log.debug("vector_store.invalidated")

    # =========================================================================
    # Writes
    # =========================================================================

    def _item_lock(self, item_id: int) -> threading.Lock:
        return self._item_locks[hash(item_id) % _ITEM_LOCK_STRIPES]

    def _next_indexed_at(self) -> int:
        # Strictly increasing so "latest row wins" is unambiguous.
        with self._lock:
            ts = max(self._clock_ms(), self._last_indexed_at + 1)
            self._last_indexed_at = ts
            return ts

    def store_with_metadata(self, item_id: int, result: EmbeddingResult) -> EmbeddingRecord:
        """Normalize, persist and cache an embedding.

        Raises:
            StorageError: If the row could not be written. The cache is left
                untouched in that case.
        """
        self._ensure_loaded()
        vector = normalize(result.vector)
        record = EmbeddingRecord(
            item_id=item_id,
            vector=vector,
            dimension=int(vector.shape[0]),
            source=result.source,
            indexed_at=self._next_indexed_at(),
        )
        row = EmbeddingRow(
            item_id=item_id,
            embedding_source=record.source,
            embedding=encode_vector(vector),
            embedding_dim=record.dimension,
            indexed_at=record.indexed_at,
        )

        with self._item_lock(item_id):
            try:
                self._db.run_write(lambda session: session.merge(row))
            except SQLAlchemyError as e:
                raise StorageError.write_failed(item_id, str(e)) from e

            with self._lock:
                if self._loaded:
                    self._cache.pop(item_id)
                    if self._cache.put(item_id, record):
                        self._complete = False
                self._active_dimension = record.dimension

        log.debug(
            "vector_store.stored",
            item_id=item_id,
            dimension=record.dimension,
            source=record.source,
        )
        return record

    def store(self, item_id: int, vector: Sequence[float] | Vector, source: str = "unknown") -> None:
        """Store a bare vector, deriving dimension from its length."""
        from shelfrag.embedding.base import EmbeddingResult

        self.store_with_metadata(item_id, EmbeddingResult.of(vector, source))

    def delete(self, item_id: int) -> None:
        with self._item_lock(item_id):
            try:
                self._db.run_write(
                    lambda session: session.execute(
                        text("DELETE FROM item_embeddings WHERE item_id = :iid").bindparams(
                            iid=item_id
                        )
                    )
                )
            except SQLAlchemyError as e:
                raise StorageError.write_failed(item_id, str(e)) from e
            with self._lock:
                self._cache.pop(item_id)

    def delete_all(self) -> None:
        try:
            self._db.run_write(lambda session: session.execute(text("DELETE FROM item_embeddings")))
        except SQLAlchemyError as e:
            raise StorageError.write_failed(-1, str(e)) from e
        with self._lock:
            self._cache.clear()
            self._loaded = True
            self._complete = True
            self._active_dimension = None
        log.info("vector_store.cleared")

    def delete_by_source(self, source: str) -> int:
        """Remove every row written by ``source``. Returns rows deleted.

        Items that also have rows from another source fall back to their
        newest remaining row, so the cache is reloaded on next access.
        """

        def _delete(session: Session) -> int:
            result = session.execute(
                text("DELETE FROM item_embeddings WHERE embedding_source = :src").bindparams(
                    src=source
                )
            )
            return int(result.rowcount or 0)

        try:
            deleted = self._db.run_write(_delete)
        except SQLAlchemyError as e:
            raise StorageError.write_failed(-1, str(e)) from e
        self.invalidate_cache()
        log.info("vector_store.deleted_by_source", source=source, rows=deleted)
        return deleted

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_record(self, item_id: int) -> EmbeddingRecord | None:
        """Full record for ``item_id``, refreshing its recency."""
        self._ensure_loaded()
        with self._lock:
            record = self._cache.get(item_id)
            if record is not None or self._complete:
                return record

        # Evicted: reload on demand.
        try:
            with self._db.session() as session:
                latest = self._latest_meta(session)
                found = self._fetch_records(session, latest, [item_id])
        except SQLAlchemyError as e:
            log.warning("vector_store.lookup_failed", item_id=item_id, error=str(e))
            return None
        if not found:
            return None
        with self._lock:
            if item_id not in self._cache:
                self._cache.put(item_id, found[0])
        return found[0]

    def get_embedding(self, item_id: int) -> Vector | None:
        record = self.get_record(item_id)
        return record.vector if record is not None else None

    def count(self) -> int:
        self._ensure_loaded()
        with self._lock:
            if self._complete:
                return len(self._cache)
        return len(self._read_latest_meta())

    def count_for_dimension(self, dimension: int) -> int:
        return sum(1 for dim, _ in self._dims_and_sources() if dim == dimension)

    def get_available_dimensions(self) -> set[int]:
        return {dim for dim, _ in self._dims_and_sources()}

    def get_predominant_source(self) -> str | None:
        """Most common source tag over all authoritative records.

        Ties go to the alphabetically first source.
        """
        counts = Counter(source for _, source in self._dims_and_sources())
        if not counts:
            return None
        return min(counts.items(), key=lambda kv: (-kv[1], kv[0]))[0]

    def indexed_item_ids(self) -> set[int]:
        self._ensure_loaded()
        with self._lock:
            if self._complete:
                return set(self._cache.keys())
        return set(self._read_latest_meta())

    def cached_item_ids(self) -> list[int]:
        """Cached ids from least to most recently used."""
        with self._lock:
            return self._cache.keys()

    @property
    def active_dimension(self) -> int | None:
        self._ensure_loaded()
        with self._lock:
            return self._active_dimension

    def _dims_and_sources(self) -> list[tuple[int, str]]:
        self._ensure_loaded()
        with self._lock:
            if self._complete:
                return [(r.dimension, r.source) for r in self._cache.values()]
        return [(m.dimension, m.source) for m in self._read_latest_meta().values()]

    # =========================================================================
    # Search
    # =========================================================================

    def search(self, query: Sequence[float] | Vector, limit: int) -> list[int]:
        return [c.item_id for c in self.search_with_scores(query, limit)]

    def search_with_scores(
        self, query: Sequence[float] | Vector, limit: int
    ) -> list[SearchCandidate]:
        """Exact top-``limit`` by dot product among records of the query's dimension.

        Returns an empty list (never raises) when no record has a matching
        dimension.
        """
        if limit <= 0:
            return []
        q = normalize(query)
        dimension = int(q.shape[0])
        self._ensure_loaded()

        with self._lock:
            candidates = [r for r in self._cache.values() if r.dimension == dimension]
            complete = self._complete
            cached_ids = set(self._cache.keys())

        if not complete:
            candidates.extend(self._load_evicted(dimension, cached_ids))

        if not candidates:
            log.warning(
                "vector_store.no_matching_dimension",
                query_dimension=dimension,
                available_dimensions=sorted(self.get_available_dimensions()),
            )
            return []

        if len(candidates) > self._parallel_threshold:
            best = self._score_parallel(q, candidates, limit)
        else:
            best = self._score_chunk(q, candidates, limit)

        # Results count as reads for LRU purposes.
        with self._lock:
            for item_id, _ in best:
                self._cache.get(item_id)

        return [SearchCandidate(item_id, score) for item_id, score in best]

    def _load_evicted(self, dimension: int, cached_ids: set[int]) -> list[EmbeddingRecord]:
        try:
            with self._db.session() as session:
                latest = self._latest_meta(session)
                wanted = [
                    item_id
                    for item_id, meta in latest.items()
                    if meta.dimension == dimension and item_id not in cached_ids
                ]
                return self._fetch_records(session, latest, wanted)
        except SQLAlchemyError as e:
            log.warning("vector_store.evicted_read_failed", error=str(e))
            return []

    @staticmethod
    def _score_chunk(
        query: Vector, records: Sequence[EmbeddingRecord], limit: int
    ) -> list[tuple[int, float]]:
        if not records:
            return []
        matrix = np.stack([r.vector for r in records])
        scores = matrix @ query
        return top_k(zip((r.item_id for r in records), scores.tolist(), strict=True), limit)

    def _score_parallel(
        self, query: Vector, records: list[EmbeddingRecord], limit: int
    ) -> list[tuple[int, float]]:
        size = -(-len(records) // self._parallel_chunks)
        chunks = [records[i : i + size] for i in range(0, len(records), size)]
        executor = self._get_executor()
        partials = executor.map(lambda chunk: self._score_chunk(query, chunk, limit), chunks)
        merged = [pair for partial in partials for pair in partial]
        return top_k(merged, limit)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._parallel_chunks,
                    thread_name_prefix="vector-search",
                )
            return self._executor

    def row_count(self) -> int:
        """Rows in the table, including superseded rows from other sources."""
        try:
            with self._db.session() as session:
                return int(session.exec(select(func.count()).select_from(EmbeddingRow)).one())
        except SQLAlchemyError as e:
            raise StorageError.read_failed(str(e)) from e

    def close(self) -> None:
        """Stop search workers and fold the WAL into the database file."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
        try:
            self._db.checkpoint("TRUNCATE")
        except SQLAlchemyError as e:
            log.warning("vector_store.checkpoint_failed", error=str(e))
