"""Cloud-first embedding provider with on-device fallback.

The cloud provider is used while it is reachable, configured and not
cooling down from a rate limit. Anything else routes to the local model.
``last_source`` records which backend produced the last vector; the store
tags records with it because cloud and local vectors live in different
dimension spaces.
"""

from __future__ import annotations

import socket
import threading
import time
from collections.abc import Callable

import structlog

from shelfrag.config.constants import NETWORK_PROBE_TIMEOUT_SEC, NETWORK_PROBE_TTL_SEC
from shelfrag.core.errors import EmbeddingError
from shelfrag.embedding.base import EmbeddingProvider, EmbeddingResult

log = structlog.get_logger()


class NetworkProbe:
    """Cached TCP reachability check for the cloud host."""

    def __init__(
        self,
        host: str,
        port: int = 443,
        *,
        ttl_sec: float = NETWORK_PROBE_TTL_SEC,
        timeout_sec: float = NETWORK_PROBE_TIMEOUT_SEC,
        clock: Callable[[], float] = time.monotonic,
        connect: Callable[..., socket.socket] = socket.create_connection,
    ) -> None:
        self._address = (host, port)
        self._ttl = ttl_sec
        self._timeout = timeout_sec
        self._clock = clock
        self._connect = connect
        self._lock = threading.Lock()
        self._checked_at: float | None = None
        self._reachable = False

    def is_reachable(self) -> bool:
        with self._lock:
            now = self._clock()
            if self._checked_at is not None and now - self._checked_at < self._ttl:
                return self._reachable
            try:
                self._connect(self._address, timeout=self._timeout).close()
                self._reachable = True
            except OSError:
                self._reachable = False
            self._checked_at = now
            log.debug("network_probe.checked", host=self._address[0], reachable=self._reachable)
            return self._reachable

    def reset(self) -> None:
        with self._lock:
            self._checked_at = None


class HybridEmbeddingProvider(EmbeddingProvider):
    """Prefers ``cloud``; falls back to ``local`` when the cloud is unusable."""

    def __init__(
        self,
        cloud: EmbeddingProvider,
        local: EmbeddingProvider,
        *,
        network_probe: NetworkProbe | None = None,
    ) -> None:
        super().__init__()
        self._cloud = cloud
        self._local = local
        self._probe = network_probe
        self._source_lock = threading.Lock()
        self._last_source: str | None = None

    @property
    def cloud(self) -> EmbeddingProvider:
        return self._cloud

    @property
    def local(self) -> EmbeddingProvider:
        return self._local

    @property
    def last_source(self) -> str | None:
        with self._source_lock:
            return self._last_source

    @property
    def source_id(self) -> str:  # type: ignore[override]
        last = self.last_source
        if last is not None:
            return last
        return self._cloud.source_id if self.is_cloud_available() else self._local.source_id

    def is_cloud_available(self) -> bool:
        if not self._cloud.is_configured() or self._cloud.is_rate_limited():
            return False
        return self._probe is None or self._probe.is_reachable()

    @property
    def embedding_dimension(self) -> int:
        if self.is_cloud_available():
            return self._cloud.embedding_dimension
        return self._local.embedding_dimension

    def is_configured(self) -> bool:
        return self._cloud.is_configured() or self._local.is_configured()

    def is_rate_limited(self) -> bool:
        return self._cloud.is_rate_limited() and not self._local.is_configured()

    def remaining_cooldown_seconds(self) -> int:
        if self._local.is_configured():
            return 0
        return self._cloud.remaining_cooldown_seconds()

    def embed_or_raise(self, text: str) -> EmbeddingResult:
        return self._route(text, query=False)

    def query_or_raise(self, text: str) -> EmbeddingResult:
        return self._route(text, query=True)

    def _route(self, text: str, *, query: bool) -> EmbeddingResult:
        cloud_error: EmbeddingError | None = None
        if self.is_cloud_available():
            cloud_embed = self._cloud.query_or_raise if query else self._cloud.embed_or_raise
            try:
                return self._remember(cloud_embed(text))
            except EmbeddingError as e:
                cloud_error = e
                log.info("hybrid.cloud_failed", error=e.error_name, fallback=self._local.source_id)
        elif self._cloud.is_rate_limited():
            cloud_error = EmbeddingError.rate_limited(
                self._cloud.source_id, self._cloud.remaining_cooldown_seconds()
            )

        if self._local.is_configured():
            local_embed = self._local.query_or_raise if query else self._local.embed_or_raise
            return self._remember(local_embed(text))

        if cloud_error is not None:
            raise cloud_error
        raise EmbeddingError.not_configured(
            "hybrid", "no cloud key or network, and no local model available"
        )

    def _remember(self, result: EmbeddingResult) -> EmbeddingResult:
        with self._source_lock:
            self._last_source = result.source
        return result

    def close(self) -> None:
        self._cloud.close()
        self._local.close()
