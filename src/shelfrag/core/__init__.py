"""Core module exports."""

from shelfrag.core.cancellation import CancellationToken
from shelfrag.core.errors import (
    ConfigError,
    EmbeddingError,
    ErrorCode,
    InternalError,
    LibraryError,
    OperationCancelled,
    ShelfRagError,
    StorageError,
)
from shelfrag.core.logging import (
    clear_operation_id,
    configure_logging,
    get_logger,
    get_operation_id,
    operation,
    set_operation_id,
)
from shelfrag.core.lru import LRUCache

__all__ = [
    # Cancellation
    "CancellationToken",
    # Errors
    "ConfigError",
    "EmbeddingError",
    "ErrorCode",
    "InternalError",
    "LibraryError",
    "OperationCancelled",
    "ShelfRagError",
    "StorageError",
    # Logging
    "clear_operation_id",
    "configure_logging",
    "get_logger",
    "get_operation_id",
    "operation",
    "set_operation_id",
    # Caching
    "LRUCache",
]
