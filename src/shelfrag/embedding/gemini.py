"""Gemini cloud embedding provider over httpx.

Wire format::

    POST {base_url}/models/{model}:embedContent
    x-goog-api-key: <key>
    {"model": "models/<model>", "content": {"parts": [{"text": ...}]},
     "outputDimensionality": <dimension>}

    200 -> {"embedding": {"values": [...]}}

Rate limiting: a 429 sets a shared cooldown from the ``retryDelay`` hint in
the error body (60 s when absent). Calls made during the cooldown either
sleep it out and retry, up to ``max_retries`` times, or fail fast with a
"try again in Ns" error once retries are spent. Query embeds never sleep.
"""

from __future__ import annotations

import math
import re
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import httpx
import numpy as np
import structlog

from shelfrag.core.errors import EmbeddingError
from shelfrag.embedding.base import EmbeddingProvider, EmbeddingResult

if TYPE_CHECKING:
    from shelfrag.config.models import CloudEmbeddingConfig

log = structlog.get_logger()

_RETRY_DELAY_RE = re.compile(r'"retryDelay"\s*:\s*"(\d+(?:\.\d+)?)s?"')

# Added to the cooldown before retrying so the retry lands after it expires.
_RETRY_BUFFER_SEC = 1.0


def parse_retry_delay(body: str, default: int = 60) -> int:
    """Extract the server's retry hint in whole seconds (at least 1)."""
    match = _RETRY_DELAY_RE.search(body)
    if match is None:
        return max(1, default)
    return max(1, math.ceil(float(match.group(1))))


class GeminiEmbeddingProvider(EmbeddingProvider):
    """Cloud embeddings via the Gemini ``embedContent`` endpoint."""

    source_id = "gemini"

    def __init__(
        self,
        config: CloudEmbeddingConfig,
        *,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(sleep=sleep, clock=clock)
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=httpx.Timeout(config.timeout_sec))
        self._cooldown_lock = threading.Lock()
        self._cooldown_until = 0.0

    @property
    def embedding_dimension(self) -> int:
        return self._config.dimension

    @property
    def host(self) -> str:
        return httpx.URL(self._config.base_url).host

    def _api_key(self) -> str | None:
        if self._config.api_key is None:
            return None
        key = self._config.api_key.get_secret_value().strip()
        return key or None

    def is_configured(self) -> bool:
        return self._api_key() is not None

    # =========================================================================
    # Cooldown state (shared by every thread using this provider)
    # =========================================================================

    def _remaining_cooldown(self) -> float:
        with self._cooldown_lock:
            return max(0.0, self._cooldown_until - self._clock())

    def _extend_cooldown(self, seconds: int) -> None:
        with self._cooldown_lock:
            until = self._clock() + seconds
            # Never shorten a cooldown another thread already observed.
            self._cooldown_until = max(self._cooldown_until, until)

    def is_rate_limited(self) -> bool:
        return self._remaining_cooldown() > 0

    def remaining_cooldown_seconds(self) -> int:
        return math.ceil(self._remaining_cooldown())

    # =========================================================================
    # Requests
    # =========================================================================

    def embed_or_raise(self, text: str) -> EmbeddingResult:
        return self._embed(text, self._config.max_retries)

    def query_or_raise(self, text: str) -> EmbeddingResult:
        # Searches report the cooldown instead of sleeping through it.
        return self._embed(text, max_retries=0)

    def _embed(self, text: str, max_retries: int) -> EmbeddingResult:
        key = self._api_key()
        if key is None:
            raise EmbeddingError.not_configured(self.source_id, "no API key set")
        if not text.strip():
            raise EmbeddingError.invalid_response(self.source_id, "empty input text")

        retries = 0
        while True:
            remaining = self._remaining_cooldown()
            if remaining > 0:
                if retries >= max_retries:
                    raise EmbeddingError.rate_limited(self.source_id, math.ceil(remaining))
                retries += 1
                wait = remaining + _RETRY_BUFFER_SEC
                log.info("gemini.cooldown_wait", wait_sec=round(wait, 1), attempt=retries)
                self._sleep(wait)
                continue

            response = self._post(key, text)
            if response.status_code == 429:
                delay = parse_retry_delay(response.text, self._config.default_cooldown_sec)
                self._extend_cooldown(delay)
                log.warning("gemini.rate_limited", retry_delay_sec=delay, attempt=retries)
                if retries >= max_retries:
                    raise EmbeddingError.rate_limited(self.source_id, delay)
                continue

            return self._parse(response)

    def _post(self, key: str, text: str) -> httpx.Response:
        model = self._config.model
        url = f"{self._config.base_url.rstrip('/')}/models/{model}:embedContent"
        body = {
            "model": f"models/{model}",
            "content": {"parts": [{"text": text}]},
            "outputDimensionality": self._config.dimension,
        }
        try:
            response = self._client.post(
                url,
                headers={"x-goog-api-key": key},
                json=body,
                timeout=httpx.Timeout(self._config.timeout_sec),
            )
        except httpx.TimeoutException as e:
            raise EmbeddingError.transient(self.source_id, f"timeout: {e}") from e
        except httpx.HTTPError as e:
            raise EmbeddingError.transient(self.source_id, str(e)) from e

        log.debug("gemini.response", status=response.status_code, chars=len(text))
        if response.status_code >= 500:
            raise EmbeddingError.transient(self.source_id, f"HTTP {response.status_code}")
        if response.status_code >= 400 and response.status_code != 429:
            raise EmbeddingError.rejected(self.source_id, response.status_code)
        return response

    def _parse(self, response: httpx.Response) -> EmbeddingResult:
        try:
            payload: Any = response.json()
            values = payload["embedding"]["values"]
            vector = np.asarray(values, dtype=np.float32)
        except (ValueError, KeyError, TypeError) as e:
            raise EmbeddingError.invalid_response(self.source_id, f"malformed body: {e}") from e

        if vector.ndim != 1 or vector.shape[0] == 0:
            raise EmbeddingError.invalid_response(self.source_id, "empty embedding")
        if vector.shape[0] != self._config.dimension:
            raise EmbeddingError.invalid_response(
                self.source_id,
                f"expected {self._config.dimension} values, got {vector.shape[0]}",
            )
        return EmbeddingResult(vector=vector, source=self.source_id)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
