"""Notification hook fired after indexing changes the embedding set.

Downstream consumers (prompt-context builders, result caches) subscribe to
rebuild whatever they derived from the old embeddings. Delivery is
fire-and-forget: a slow or failing receiver never stalls indexing.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Protocol, runtime_checkable

import structlog

log = structlog.get_logger()


@runtime_checkable
class CacheInvalidationSink(Protocol):
    def on_library_changed(self) -> None: ...


class NullInvalidationSink:
    """Default sink for hosts with nothing to invalidate."""

    def on_library_changed(self) -> None:
        log.debug("invalidation.ignored")


class CallbackInvalidationSink:
    """Runs ``callback`` on a daemon thread each time the library changes."""

    def __init__(self, callback: Callable[[], None]) -> None:
        self._callback = callback
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()

    def on_library_changed(self) -> None:
        thread = threading.Thread(target=self._run, name="library-invalidation", daemon=True)
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()

    def _run(self) -> None:
        try:
            self._callback()
        except Exception:
            log.warning("invalidation.callback_failed", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        """Wait for pending notifications (tests and shutdown)."""
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)
