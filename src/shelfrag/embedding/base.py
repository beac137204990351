"""Embedding provider contract.

Providers turn text into a fixed-length float32 vector. Failures are
expected conditions (no key, no model, rate limits, flaky network), so the
public methods return ``None`` or omit indices instead of raising. The
typed error that caused the last failure is kept on ``last_error`` for
callers that need to tell "not configured" from "rate limited".
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import numpy as np
import numpy.typing as npt
import structlog

from shelfrag.core.errors import EmbeddingError

log = structlog.get_logger()

DelayPolicy = Callable[[], float]
"""Called before each batch request after the first; returns a delay in milliseconds."""


@dataclass(frozen=True, slots=True, eq=False)
class EmbeddingResult:
    """A vector and the provider that actually produced it."""

    vector: npt.NDArray[np.float32]
    source: str

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])

    @classmethod
    def of(cls, values: Sequence[float] | npt.ArrayLike, source: str) -> EmbeddingResult:
        vector = np.asarray(values, dtype=np.float32)
        if vector.ndim != 1 or vector.shape[0] == 0:
            raise ValueError(f"Embedding must be a non-empty 1-D vector, got shape {vector.shape}")
        return cls(vector=vector, source=source)


@dataclass(slots=True)
class BatchOutcome:
    """Per-index results and errors of one batch call."""

    results: dict[int, EmbeddingResult] = field(default_factory=dict)
    errors: dict[int, EmbeddingError] = field(default_factory=dict)

    @property
    def last_error(self) -> EmbeddingError | None:
        return self.errors[max(self.errors)] if self.errors else None


class EmbeddingProvider(ABC):
    """Base class for embedding backends.

    Subclasses implement ``is_configured`` and ``embed_or_raise``; the
    null-returning wrappers and sequential batching live here.
    """

    source_id: str = "unknown"

    def __init__(
        self,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sleep = sleep
        self._clock = clock
        self._error_lock = threading.Lock()
        self._last_error: EmbeddingError | None = None

    @property
    @abstractmethod
    def embedding_dimension(self) -> int:
        """Length of the vectors this provider produces."""

    @abstractmethod
    def is_configured(self) -> bool:
        """True when the provider has what it needs (a key, a model file)."""

    @abstractmethod
    def embed_or_raise(self, text: str) -> EmbeddingResult:
        """Embed ``text`` or raise ``EmbeddingError``."""

    @property
    def last_error(self) -> EmbeddingError | None:
        with self._error_lock:
            return self._last_error

    def _record_error(self, error: EmbeddingError | None) -> None:
        with self._error_lock:
            self._last_error = error

    def is_rate_limited(self) -> bool:
        return False

    def remaining_cooldown_seconds(self) -> int:
        return 0

    def query_or_raise(self, text: str) -> EmbeddingResult:
        """Embed a search query or raise ``EmbeddingError``.

        Query embeds sit on an interactive path, so providers that wait out
        a rate limit in ``embed_or_raise`` override this to fail fast.
        """
        return self.embed_or_raise(text)

    def _attempt(
        self,
        text: str,
        embed: Callable[[str], EmbeddingResult] | None = None,
    ) -> EmbeddingResult | EmbeddingError:
        try:
            result = (embed or self.embed_or_raise)(text)
        except EmbeddingError as e:
            self._record_error(e)
            if e.is_rate_limited:
                log.warning(
                    "embedding.rate_limited",
                    provider=self.source_id,
                    cooldown_seconds=e.cooldown_seconds,
                )
            else:
                log.warning("embedding.failed", provider=self.source_id, error=e.error_name)
            return e
        self._record_error(None)
        return result

    def embed_with_metadata(self, text: str) -> EmbeddingResult | None:
        outcome = self._attempt(text)
        return outcome if isinstance(outcome, EmbeddingResult) else None

    def embed_query(self, text: str) -> EmbeddingResult | None:
        """Embed a search query without waiting on a cooldown.

        A provider already cooling down records a rate-limited error and
        returns ``None`` without issuing a request.
        """
        if self.is_rate_limited():
            self._record_error(
                EmbeddingError.rate_limited(self.source_id, self.remaining_cooldown_seconds())
            )
            return None
        outcome = self._attempt(text, self.query_or_raise)
        return outcome if isinstance(outcome, EmbeddingResult) else None

    def embed(self, text: str) -> npt.NDArray[np.float32] | None:
        result = self.embed_with_metadata(text)
        return result.vector if result is not None else None

    def embed_batch_detailed(
        self,
        texts: Sequence[str],
        delay_policy: DelayPolicy | None = None,
    ) -> BatchOutcome:
        """Embed texts one at a time, in order, keeping each failure's error.

        ``delay_policy`` is consulted before every request except the first,
        so a caller can stretch the gap while the provider is rate limited.
        """
        outcome = BatchOutcome()
        for index, text in enumerate(texts):
            if index > 0 and delay_policy is not None:
                delay_ms = delay_policy()
                if delay_ms > 0:
                    self._sleep(delay_ms / 1000.0)
            attempt = self._attempt(text)
            if isinstance(attempt, EmbeddingResult):
                outcome.results[index] = attempt
            else:
                outcome.errors[index] = attempt
        return outcome

    def embed_batch(
        self,
        texts: Sequence[str],
        delay_policy: DelayPolicy | None = None,
    ) -> dict[int, EmbeddingResult]:
        """Successful results by input index; missing indices failed."""
        return self.embed_batch_detailed(texts, delay_policy).results

    def close(self) -> None:  # noqa: B027
        """Release network clients or model sessions."""
