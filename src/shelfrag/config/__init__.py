"""Config module exports."""

from shelfrag.config.loader import load_config, resolve_paths
from shelfrag.config.models import (
    ChunkingConfig,
    CloudEmbeddingConfig,
    IndexingConfig,
    LocalEmbeddingConfig,
    LoggingConfig,
    SearchConfig,
    ShelfRagConfig,
    StoreConfig,
)

__all__ = [
    "load_config",
    "resolve_paths",
    "ShelfRagConfig",
    "ChunkingConfig",
    "CloudEmbeddingConfig",
    "IndexingConfig",
    "LocalEmbeddingConfig",
    "LoggingConfig",
    "SearchConfig",
    "StoreConfig",
]
