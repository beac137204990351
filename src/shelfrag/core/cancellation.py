"""Cooperative cancellation shared between a host and long-running work."""

from __future__ import annotations

import threading

from shelfrag.core.errors import OperationCancelled


class CancellationToken:
    """Thread-safe cancellation flag.

    Work checks the token at its suspension points (batch boundaries,
    before writing caches) and stops when it is set.
    """

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, operation: str) -> None:
        if self._event.is_set():
            raise OperationCancelled.cancelled(operation)

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True if cancelled meanwhile."""
        return self._event.wait(timeout)
