"""Background library indexing on a single worker thread."""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from shelfrag.core.cancellation import CancellationToken

if TYPE_CHECKING:
    from shelfrag.library.indexing import IndexingResult, IndexLibrary, ProgressCallback

logger = structlog.get_logger()


class JobState(Enum):
    """Indexing job state."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class JobStatus:
    """Snapshot of the indexing job."""

    state: JobState
    progress: tuple[int, int, str] | None = None
    last_result: IndexingResult | None = None
    last_error: str | None = None


@dataclass
class IndexingJob:
    """
    Runs ``IndexLibrary.run`` off the caller's thread.

    Design:
    - One worker, so at most one run is active (``start`` refuses a second)
    - ``stop`` requests cooperative cancellation; the run ends at the next
      batch boundary with everything indexed so far kept
    - Progress listeners see every update from the worker thread
    """

    indexer: IndexLibrary

    _state: JobState = field(default=JobState.IDLE, init=False)
    _executor: ThreadPoolExecutor | None = field(default=None, init=False)
    _future: Future[None] | None = field(default=None, init=False)
    _cancel: CancellationToken | None = field(default=None, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _progress: tuple[int, int, str] | None = field(default=None, init=False)
    _last_result: IndexingResult | None = field(default=None, init=False)
    _last_error: str | None = field(default=None, init=False)
    _listeners: list[ProgressCallback] = field(default_factory=list, init=False)
    _on_complete: Callable[[IndexingResult], None] | None = field(default=None, init=False)

    def start(self, force: bool = False) -> bool:
        """Start a run. Returns False if one is already running."""
        with self._lock:
            if self._state is JobState.RUNNING:
                logger.info("indexing_job.already_running")
                return False
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1,
                    thread_name_prefix="shelfrag-indexer",
                )
            self._cancel = CancellationToken()
            self._state = JobState.RUNNING
            self._progress = None
            self._last_error = None
            self._future = self._executor.submit(self._run, force, self._cancel)
        logger.info("indexing_job.started", force=force)
        return True

    def stop(self) -> None:
        """Request cancellation of the active run, if any."""
        with self._lock:
            if self._cancel is not None and self._state is JobState.RUNNING:
                self._cancel.cancel()
                logger.info("indexing_job.stop_requested")

    def wait(self, timeout: float | None = None) -> JobStatus:
        """Block until the active run finishes (or ``timeout`` passes)."""
        with self._lock:
            future = self._future
        if future is not None:
            future.exception(timeout=timeout)
        return self.status()

    def _run(self, force: bool, cancel: CancellationToken) -> None:
        try:
            result = self.indexer.run(force=force, on_progress=self._on_progress, cancel=cancel)
        except Exception as e:
            with self._lock:
                self._state = JobState.FAILED
                self._last_error = str(e)
            logger.error("indexing_job.failed", error=str(e), exc_info=True)
            return

        with self._lock:
            self._last_result = result
            self._state = JobState.CANCELLED if result.cancelled else JobState.COMPLETED
            callback = self._on_complete
        logger.info("indexing_job.finished", state=self._state.value, **result.to_dict())
        if callback is not None:
            callback(result)

    def _on_progress(self, current: int, total: int, title: str) -> None:
        with self._lock:
            self._progress = (current, total, title)
            listeners = list(self._listeners)
        for listener in listeners:
            listener(current, total, title)

    def add_progress_listener(self, listener: ProgressCallback) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_progress_listener(self, listener: ProgressCallback) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def set_on_complete(self, callback: Callable[[IndexingResult], None]) -> None:
        """Set callback to invoke after a run finishes without raising."""
        self._on_complete = callback

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._state is JobState.RUNNING

    def status(self) -> JobStatus:
        with self._lock:
            return JobStatus(
                state=self._state,
                progress=self._progress,
                last_result=self._last_result,
                last_error=self._last_error,
            )

    def shutdown(self) -> None:
        """Cancel any run and stop the worker thread."""
        self.stop()
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
