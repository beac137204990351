"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (SHELFRAG__SECTION__KEY)
3. Project YAML (.shelfrag/config.yaml)
4. Global YAML (~/.config/shelfrag/config.yaml)
5. Built-in defaults (this file)

Environment Variable Format:
    SHELFRAG__<SECTION>__<KEY>=<VALUE>

Examples:
    SHELFRAG__LOGGING__LEVEL=DEBUG
    SHELFRAG__CLOUD__API_KEY=...
    SHELFRAG__STORE__MAX_CACHE_SIZE=10000
    SHELFRAG__INDEXING__BATCH_SIZE=50
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LogOutputConfig(BaseModel):
    """Single logging output configuration.

    Env vars: Not directly configurable via env (use YAML for multi-output).
    """

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        SHELFRAG__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every embedding request.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class StoreConfig(BaseModel):
    """Vector store configuration.

    Env vars:
        SHELFRAG__STORE__DB_PATH: SQLite file holding embeddings
        SHELFRAG__STORE__MAX_CACHE_SIZE: In-memory embedding cache entries
    """

    db_path: str | None = Field(
        default=None,
        description="SQLite database path. Default: .shelfrag/vectors.db under the project root.",
    )
    max_cache_size: int = Field(
        default=2000,
        description="Max cached embeddings (~4 bytes x dimension each). "
        "TRADEOFF: 2000 x 768 dims is ~6 MB; larger libraries fall back to disk reads.",
    )
    parallel_threshold: int = Field(
        default=100,
        description="Candidate count above which search scores chunks concurrently.",
    )
    parallel_chunks: int = Field(
        default=4,
        description="Number of concurrent scoring chunks for large searches.",
    )

    @field_validator("max_cache_size", "parallel_chunks")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Must be >= 1, got {v}")
        return v


class CloudEmbeddingConfig(BaseModel):
    """Cloud (Gemini) embedding provider configuration.

    Env vars:
        SHELFRAG__CLOUD__API_KEY: API key; the provider is unconfigured without it
        SHELFRAG__CLOUD__TIMEOUT_SEC: Per-request network timeout
    """

    api_key: SecretStr | None = Field(
        default=None,
        description="Gemini API key. Leave unset to use local embeddings only.",
    )
    model: str = Field(default="gemini-embedding-001")
    base_url: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    dimension: int = Field(
        default=768,
        description="Requested output dimensionality.",
    )
    timeout_sec: float = Field(
        default=30.0,
        description="Network timeout per request. Distinct from rate-limit cooldowns.",
    )
    max_retries: int = Field(
        default=2,
        description="Wait-and-retry attempts while rate limited before failing fast.",
    )
    default_cooldown_sec: int = Field(
        default=60,
        description="Cooldown applied when a 429 response carries no retry hint.",
    )


class LocalEmbeddingConfig(BaseModel):
    """On-device (fastembed/ONNX) embedding provider configuration.

    Env vars:
        SHELFRAG__LOCAL__ENABLED: Disable to force cloud-only embeddings
        SHELFRAG__LOCAL__CACHE_DIR: Directory holding downloaded model files
        SHELFRAG__LOCAL__ALLOW_DOWNLOAD: Fetch the model on first use
    """

    enabled: bool = True
    model_name: str = Field(default="BAAI/bge-small-en-v1.5")
    dimension: int = Field(default=384)
    cache_dir: str | None = Field(
        default=None,
        description="Model cache directory. Default: .shelfrag/models under the project root.",
    )
    allow_download: bool = Field(
        default=False,
        description="Download the model when it is not present on disk.",
    )
    threads: int | None = Field(default=None, description="ONNX threads. Default: half the CPUs.")


class ChunkingConfig(BaseModel):
    """Embedding text construction.

    Env vars:
        SHELFRAG__CHUNKING__MAX_CHUNK_SIZE: Max characters per embedding text
    """

    max_chunk_size: int = Field(default=1800)
    overlap_size: int = Field(default=150)
    min_chunk_size: int = Field(default=100)

    @model_validator(mode="after")
    def validate_sizes(self) -> "ChunkingConfig":
        if self.max_chunk_size < 1:
            raise ValueError("max_chunk_size must be >= 1")
        if not 0 <= self.overlap_size < self.max_chunk_size:
            raise ValueError("overlap_size must be in [0, max_chunk_size)")
        if not 0 <= self.min_chunk_size <= self.max_chunk_size:
            raise ValueError("min_chunk_size must be in [0, max_chunk_size]")
        return self


class IndexingConfig(BaseModel):
    """Library indexing configuration.

    Env vars:
        SHELFRAG__INDEXING__BATCH_SIZE: Items per embedding batch
        SHELFRAG__INDEXING__DEFAULT_DELAY_MS: Delay between requests when not rate limited
    """

    batch_size: int = Field(
        default=20,
        description="Items per batch. Cancellation and progress are checked per batch.",
    )
    default_delay_ms: int = Field(
        default=500,
        description="Delay between embedding requests inside a batch.",
    )
    rate_limit_buffer_ms: int = Field(
        default=1000,
        description="Added to the provider cooldown when rate limited.",
    )
    transient_retries: int = Field(
        default=1,
        description="Re-embed attempts for items that failed with transient network errors.",
    )

    @field_validator("batch_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"batch_size must be >= 1, got {v}")
        return v


class SearchConfig(BaseModel):
    """Library search configuration.

    Env vars:
        SHELFRAG__SEARCH__DEFAULT_LIMIT: Default number of results
        SHELFRAG__SEARCH__VECTOR_WEIGHT: Vector share of the hybrid re-rank score
    """

    default_limit: int = Field(default=5)
    query_cache_size: int = Field(
        default=50,
        description="Per-provider cache of query embeddings.",
    )
    candidate_multiplier: int = Field(
        default=3,
        description="Candidates retrieved per requested result when re-ranking.",
    )
    candidate_cap: int = Field(default=24)
    fallback_candidate_cap: int = Field(default=20)
    subsearch_multiplier: int = Field(
        default=2,
        description="Results requested from each dimension space per requested result.",
    )
    vector_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    bm25_k1: float = Field(default=1.2)
    bm25_b: float = Field(default=0.75)
    max_genres: int = Field(default=3)
    description_chars: int = Field(default=500)


class ShelfRagConfig(BaseModel):
    """Root configuration for ShelfRag.

    All settings can be configured via:
    1. Environment variables: SHELFRAG__SECTION__KEY
    2. YAML config files (project or global)
    3. Direct kwargs to load_config()
    """

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    cloud: CloudEmbeddingConfig = Field(default_factory=CloudEmbeddingConfig)
    local: LocalEmbeddingConfig = Field(default_factory=LocalEmbeddingConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
