"""ShelfRag error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Embedding
- 4xxx: Storage
- 5xxx: Library
- 9xxx: Internal
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_MISSING_REQUIRED = 2003

    # Embedding (3xxx)
    EMBEDDING_NOT_CONFIGURED = 3001
    EMBEDDING_RATE_LIMITED = 3002
    EMBEDDING_TRANSIENT = 3003
    EMBEDDING_INVALID_RESPONSE = 3004
    EMBEDDING_REJECTED = 3005

    # Storage (4xxx)
    STORAGE_WRITE_FAILED = 4001
    STORAGE_READ_FAILED = 4002
    STORAGE_CORRUPT_RECORD = 4003

    # Library (5xxx)
    LIBRARY_ITEM_NOT_FOUND = 5001
    LIBRARY_INVALID = 5002

    # Internal (9xxx)
    INTERNAL_ERROR = 9001
    OPERATION_CANCELLED = 9002


@dataclass(frozen=True, slots=True)
class ShelfRagError(Exception):
    """Base error with structured context for host applications."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'EMBEDDING_RATE_LIMITED')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(ShelfRagError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def missing_required(cls, field: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_MISSING_REQUIRED,
            message=f"Missing required config field: {field}",
            details={"field": field},
        )


class EmbeddingError(ShelfRagError):
    """Embedding provider failures.

    The code tells callers which state they are in: not configured,
    rate limited (with a cooldown), transient network trouble, or a
    response the provider could not use.
    """

    @property
    def cooldown_seconds(self) -> int:
        """Seconds until a rate-limited provider accepts requests again."""
        return int(self.details.get("cooldown_seconds", 0))

    @property
    def is_rate_limited(self) -> bool:
        return self.code == ErrorCode.EMBEDDING_RATE_LIMITED

    @classmethod
    def not_configured(cls, provider: str, reason: str) -> "EmbeddingError":
        return cls(
            code=ErrorCode.EMBEDDING_NOT_CONFIGURED,
            message=f"{provider} embeddings not configured: {reason}",
            details={"provider": provider, "reason": reason},
        )

    @classmethod
    def rate_limited(cls, provider: str, cooldown_seconds: int) -> "EmbeddingError":
        return cls(
            code=ErrorCode.EMBEDDING_RATE_LIMITED,
            message=f"Rate limited. Please wait {cooldown_seconds}s and try again.",
            retryable=True,
            details={"provider": provider, "cooldown_seconds": cooldown_seconds},
        )

    @classmethod
    def transient(cls, provider: str, reason: str) -> "EmbeddingError":
        return cls(
            code=ErrorCode.EMBEDDING_TRANSIENT,
            message=f"{provider} embedding request failed: {reason}",
            retryable=True,
            details={"provider": provider, "reason": reason},
        )

    @classmethod
    def invalid_response(cls, provider: str, reason: str) -> "EmbeddingError":
        return cls(
            code=ErrorCode.EMBEDDING_INVALID_RESPONSE,
            message=f"{provider} returned an unusable embedding: {reason}",
            details={"provider": provider, "reason": reason},
        )

    @classmethod
    def rejected(cls, provider: str, status_code: int) -> "EmbeddingError":
        return cls(
            code=ErrorCode.EMBEDDING_REJECTED,
            message=f"Embedding API error: {status_code}",
            details={"provider": provider, "status_code": status_code},
        )


class StorageError(ShelfRagError):
    """Persistence layer failures."""

    @classmethod
    def write_failed(cls, item_id: int, reason: str) -> "StorageError":
        return cls(
            code=ErrorCode.STORAGE_WRITE_FAILED,
            message=f"Failed to persist embedding for item {item_id}: {reason}",
            retryable=True,
            details={"item_id": item_id, "reason": reason},
        )

    @classmethod
    def read_failed(cls, reason: str) -> "StorageError":
        return cls(
            code=ErrorCode.STORAGE_READ_FAILED,
            message=f"Failed to read embeddings: {reason}",
            retryable=True,
            details={"reason": reason},
        )

    @classmethod
    def corrupt_record(cls, item_id: int, byte_length: int, dimension: int) -> "StorageError":
        return cls(
            code=ErrorCode.STORAGE_CORRUPT_RECORD,
            message=(
                f"Embedding blob for item {item_id} has {byte_length} bytes, "
                f"expected {dimension * 4} for dimension {dimension}"
            ),
            details={"item_id": item_id, "byte_length": byte_length, "dimension": dimension},
        )


class LibraryError(ShelfRagError):
    """Library collaborator errors."""

    @classmethod
    def not_found(cls, item_id: int) -> "LibraryError":
        return cls(
            code=ErrorCode.LIBRARY_ITEM_NOT_FOUND,
            message=f"Library item not found: {item_id}",
            details={"item_id": item_id},
        )

    @classmethod
    def invalid_library(cls, path: str, reason: str) -> "LibraryError":
        return cls(
            code=ErrorCode.LIBRARY_INVALID,
            message=f"Invalid library file {path}: {reason}",
            details={"path": path, "reason": reason},
        )


class InternalError(ShelfRagError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )


class OperationCancelled(ShelfRagError):
    """Raised when a cooperative cancellation request is honoured."""

    @classmethod
    def cancelled(cls, operation: str) -> "OperationCancelled":
        return cls(
            code=ErrorCode.OPERATION_CANCELLED,
            message=f"{operation} was cancelled",
            details={"operation": operation},
        )
