"""SQLite engine holding the ``item_embeddings`` table.

Searches read while the indexer writes, so file databases run in WAL
mode. A write that still hits "database is locked" after SQLite's own
busy timeout is retried with capped exponential backoff.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from sqlalchemy import event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from shelfrag.store.models import EmbeddingRow

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = structlog.get_logger()

T = TypeVar("T")

MEMORY_PATH = ":memory:"

_CHECKPOINT_MODES = frozenset({"PASSIVE", "FULL", "RESTART", "TRUNCATE"})

_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA busy_timeout=30000",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA cache_size=-16000",
)


@dataclass(frozen=True, slots=True)
class BusyRetry:
    """Backoff for writes that find the database locked."""

    max_retries: int = 3
    base_delay: float = 0.1
    max_delay: float = 2.0

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * (2**attempt), self.max_delay)


def is_busy_error(error: OperationalError) -> bool:
    message = str(error).lower()
    return "database is locked" in message or "database is busy" in message


class Database:
    """Engine plus read sessions and retried write transactions.

    ``":memory:"`` gives a throwaway database on one shared connection, so
    every session sees the same rows.
    """

    def __init__(
        self,
        db_path: Path | str,
        max_retries: int = 3,
        retry_base_delay: float = 0.1,
        retry_max_delay: float = 2.0,
    ) -> None:
        self.db_path = db_path
        self.retry = BusyRetry(max_retries, retry_base_delay, retry_max_delay)
        self.engine = self._build_engine()

    @property
    def is_memory(self) -> bool:
        return str(self.db_path) == MEMORY_PATH

    def _build_engine(self) -> Engine:
        if self.is_memory:
            engine = create_engine(
                "sqlite://",
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(
                f"sqlite:///{path}",
                connect_args={"check_same_thread": False},
                pool_pre_ping=True,
            )
            event.listen(engine, "connect", _apply_pragmas)
        return engine

    def create_all(self) -> None:
        SQLModel.metadata.create_all(self.engine, tables=[EmbeddingRow.__table__])  # type: ignore[attr-defined]

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        with Session(self.engine) as session:
            yield session

    def run_write(self, fn: Callable[[Session], T], max_retries: int | None = None) -> T:
        """Run ``fn`` in one transaction; commit on return, roll back on raise.

        Raises:
            OperationalError: If the database stays locked past the retry
                budget, or on any other SQLite failure.
        """
        budget = self.retry.max_retries if max_retries is None else max_retries
        attempt = 0
        while True:
            try:
                return self._transaction(fn)
            except OperationalError as e:
                if not is_busy_error(e) or attempt >= budget:
                    raise
                delay = self.retry.delay(attempt)
                logger.warning(
                    "database.busy_retry",
                    attempt=attempt + 1,
                    max_retries=budget,
                    delay_sec=delay,
                )
                time.sleep(delay)
                attempt += 1

    def _transaction(self, fn: Callable[[Session], T]) -> T:
        with Session(self.engine) as session:
            try:
                result = fn(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result

    def checkpoint(self, mode: str = "PASSIVE") -> None:
        """Fold the WAL back into the database file (no-op in memory)."""
        mode = mode.upper()
        if mode not in _CHECKPOINT_MODES:
            valid = ", ".join(sorted(_CHECKPOINT_MODES))
            raise ValueError(f"Invalid checkpoint mode: {mode}. Must be one of {valid}")
        if self.is_memory:
            return
        with self.engine.connect() as conn:
            conn.execute(text(f"PRAGMA wal_checkpoint({mode})"))
        logger.debug("database.checkpoint", mode=mode, path=str(self.db_path))

    def dispose(self) -> None:
        self.engine.dispose()


def _apply_pragmas(dbapi_conn: Any, _connection_record: Any) -> None:
    cursor = dbapi_conn.cursor()
    for pragma in _PRAGMAS:
        cursor.execute(pragma)
    cursor.close()
