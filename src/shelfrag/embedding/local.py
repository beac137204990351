"""On-device embeddings with fastembed (ONNX).

Model: BAAI/bge-small-en-v1.5 (384-dim, ~67 MB, 512-token context).
The model is loaded lazily on first use; a failed load disables the
provider until ``invalidate_model()`` so every call does not retry a
broken download.
"""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np
import structlog

from shelfrag.core.errors import EmbeddingError
from shelfrag.embedding.base import EmbeddingProvider, EmbeddingResult

if TYPE_CHECKING:
    from shelfrag.config.models import LocalEmbeddingConfig

log = structlog.get_logger()

_MAX_TEXT_CHARS = 1800  # 512-token context window


class LocalEmbeddingProvider(EmbeddingProvider):
    """fastembed ``TextEmbedding`` wrapped in the provider contract."""

    source_id = "local"

    def __init__(
        self,
        config: LocalEmbeddingConfig,
        *,
        cache_dir: Path | None = None,
        model: Any = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._config = config
        self._cache_dir = cache_dir or (Path(config.cache_dir) if config.cache_dir else None)
        self._model: Any = model
        self._model_lock = threading.Lock()
        self._disabled = False

    @property
    def embedding_dimension(self) -> int:
        return self._config.dimension

    def _model_files_present(self) -> bool:
        if self._cache_dir is None or not self._cache_dir.is_dir():
            return False
        return any(self._cache_dir.iterdir())

    def is_configured(self) -> bool:
        if not self._config.enabled or self._disabled:
            return False
        if self._model is not None:
            return True
        return self._config.allow_download or self._model_files_present()

    def invalidate_model(self) -> None:
        """Drop the loaded model and clear a previous load failure."""
        with self._model_lock:
            self._model = None
            self._disabled = False

    def _ensure_model(self) -> Any:
        """Lazy-load the fastembed model; ``None`` when unavailable."""
        with self._model_lock:
            if self._model is not None or self._disabled:
                return self._model

            try:
                from fastembed import TextEmbedding

                threads = self._config.threads or max(1, (os.cpu_count() or 4) // 2)
                start = time.monotonic()
                kwargs: dict[str, Any] = {
                    "model_name": self._config.model_name,
                    "threads": threads,
                    "local_files_only": not self._config.allow_download,
                }
                if self._cache_dir is not None:
                    kwargs["cache_dir"] = str(self._cache_dir)
                self._model = TextEmbedding(**kwargs)
                log.info(
                    "local_embedding.model_loaded",
                    model=self._config.model_name,
                    threads=threads,
                    elapsed_s=round(time.monotonic() - start, 2),
                )
            except Exception:
                log.warning(
                    "local_embedding.model_load_failed",
                    model=self._config.model_name,
                    exc_info=True,
                )
                self._disabled = True
            return self._model

    def embed_or_raise(self, text: str) -> EmbeddingResult:
        if not self._config.enabled:
            raise EmbeddingError.not_configured(self.source_id, "local embeddings disabled")
        if not text.strip():
            raise EmbeddingError.invalid_response(self.source_id, "empty input text")

        model = self._ensure_model()
        if model is None:
            raise EmbeddingError.not_configured(
                self.source_id, f"model {self._config.model_name} unavailable"
            )

        try:
            raw = next(iter(model.embed([text[:_MAX_TEXT_CHARS]])))
        except StopIteration as e:
            raise EmbeddingError.invalid_response(self.source_id, "model returned nothing") from e
        except Exception as e:
            log.warning("local_embedding.inference_failed", error=str(e))
            raise EmbeddingError.transient(self.source_id, f"inference failed: {e}") from e

        vector = np.asarray(raw, dtype=np.float32)
        if vector.ndim != 1 or vector.shape[0] != self._config.dimension:
            raise EmbeddingError.invalid_response(
                self.source_id,
                f"expected {self._config.dimension} values, got shape {vector.shape}",
            )
        return EmbeddingResult(vector=vector, source=self.source_id)
