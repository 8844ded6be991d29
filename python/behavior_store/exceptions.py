"""
Custom exception hierarchy for the behavior store.

Follows a clear hierarchy rooted at BehaviorStoreError:
- StorageUnavailable: store accessed before initialization completed
- StorageIOError: underlying medium failure (never retried internally)
- DecodeError: stored or imported value failed shape validation
- InvalidImportFormat: import document failed pre-commit validation
- QuotaExceeded: write rejected by the medium for lack of space
- InvalidKeyError / ImmutableRecordError: caller contract violations

Each exception includes:
- error_code: Machine-readable error identifier
- context: Additional structured data for debugging
- is_retryable: Whether the caller may safely retry
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes for categorization and monitoring."""

    # Configuration errors (1xxx)
    CONFIG_INVALID = "BSTORE_1001"
    CONFIG_MISSING = "BSTORE_1002"
    CONFIG_VALIDATION = "BSTORE_1003"

    # Lifecycle errors (2xxx)
    STORE_NOT_READY = "BSTORE_2001"
    STORE_CLOSED = "BSTORE_2002"
    MIGRATION_FAILED = "BSTORE_2003"

    # Medium errors (4xxx)
    STORAGE_READ_FAILED = "BSTORE_4001"
    STORAGE_WRITE_FAILED = "BSTORE_4002"
    STORAGE_CORRUPTED = "BSTORE_4003"
    STORAGE_QUOTA_EXCEEDED = "BSTORE_4004"

    # Data errors (5xxx)
    DECODE_FAILED = "BSTORE_5001"
    IMPORT_INVALID = "BSTORE_5002"
    KEY_INVALID = "BSTORE_5003"
    RECORD_IMMUTABLE = "BSTORE_5004"

    # General errors (9xxx)
    UNKNOWN = "BSTORE_9999"


@dataclass
class BehaviorStoreError(Exception):
    """
    Base exception for all behavior store errors.

    Provides structured error information for logging and monitoring.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error identifier
        context: Additional structured data for debugging
        is_retryable: Whether the operation can be safely retried
        cause: Original exception that caused this error
    """

    message: str
    error_code: ErrorCode = ErrorCode.UNKNOWN
    context: dict[str, Any] = field(default_factory=dict)
    is_retryable: bool = False
    cause: Exception | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.error_code.value}] {self.message}"]
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f" ({context_str})")
        return "".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"context={self.context!r}, "
            f"is_retryable={self.is_retryable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value,
            "message": self.message,
            "context": self.context,
            "is_retryable": self.is_retryable,
            "cause": str(self.cause) if self.cause else None,
        }


@dataclass
class ConfigurationError(BehaviorStoreError):
    """Raised when configuration is invalid or missing."""

    error_code: ErrorCode = ErrorCode.CONFIG_INVALID

    @classmethod
    def missing_file(cls, path: str) -> ConfigurationError:
        """Create error for missing configuration file."""
        return cls(
            message=f"Configuration file not found: {path}",
            error_code=ErrorCode.CONFIG_MISSING,
            context={"path": path},
        )

    @classmethod
    def validation_failed(cls, field: str, value: Any, reason: str) -> ConfigurationError:
        """Create error for validation failure."""
        return cls(
            message=f"Configuration validation failed for '{field}': {reason}",
            error_code=ErrorCode.CONFIG_VALIDATION,
            context={"field": field, "value": str(value), "reason": reason},
        )


@dataclass
class StorageUnavailable(BehaviorStoreError):
    """Raised when the store is used before initialization completes (or after close)."""

    error_code: ErrorCode = ErrorCode.STORE_NOT_READY
    is_retryable: bool = True

    @classmethod
    def not_ready(cls, state: str, operation: str) -> StorageUnavailable:
        """Create error for an operation issued before the store is ready."""
        return cls(
            message=f"Store is not ready for '{operation}' (state: {state})",
            error_code=ErrorCode.STORE_NOT_READY,
            context={"state": state, "operation": operation},
        )

    @classmethod
    def closed(cls, operation: str) -> StorageUnavailable:
        """Create error for an operation issued after close."""
        return cls(
            message=f"Store is closed; cannot run '{operation}'",
            error_code=ErrorCode.STORE_CLOSED,
            context={"operation": operation},
            is_retryable=False,
        )

    @classmethod
    def migration_failed(cls, version: int, reason: str) -> StorageUnavailable:
        """Create error for a migration step that did not complete."""
        return cls(
            message=f"Migration to schema version {version} failed: {reason}",
            error_code=ErrorCode.MIGRATION_FAILED,
            context={"version": version, "reason": reason},
        )


@dataclass
class StorageIOError(BehaviorStoreError):
    """Raised when the underlying medium fails. Never retried by the store."""

    error_code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED

    @classmethod
    def read_failed(cls, target: str, reason: str) -> StorageIOError:
        """Create error for read failure."""
        return cls(
            message=f"Failed to read from storage: {reason}",
            error_code=ErrorCode.STORAGE_READ_FAILED,
            context={"target": target, "reason": reason},
        )

    @classmethod
    def write_failed(cls, target: str, reason: str) -> StorageIOError:
        """Create error for write failure."""
        return cls(
            message=f"Failed to write to storage: {reason}",
            error_code=ErrorCode.STORAGE_WRITE_FAILED,
            context={"target": target, "reason": reason},
        )

    @classmethod
    def corrupted(cls, path: str, reason: str) -> StorageIOError:
        """Create error for a corrupted storage file."""
        return cls(
            message=f"Storage is corrupted: {path}",
            error_code=ErrorCode.STORAGE_CORRUPTED,
            context={"path": path, "reason": reason},
        )


@dataclass
class QuotaExceeded(StorageIOError):
    """Raised when the medium rejects a write because the quota is exhausted."""

    error_code: ErrorCode = ErrorCode.STORAGE_QUOTA_EXCEEDED

    @classmethod
    def rejected(cls, target: str, quota_bytes: int) -> QuotaExceeded:
        """Create error for a write rejected by the quota."""
        return cls(
            message=f"Write to '{target}' rejected: storage quota of {quota_bytes} bytes exhausted",
            error_code=ErrorCode.STORAGE_QUOTA_EXCEEDED,
            context={"target": target, "quota_bytes": quota_bytes},
        )


@dataclass
class DecodeError(BehaviorStoreError):
    """Raised when a stored value does not match its record shape."""

    error_code: ErrorCode = ErrorCode.DECODE_FAILED

    @classmethod
    def invalid_record(cls, kind: str, key: str | None, reason: str) -> DecodeError:
        """Create error for a record that failed validation."""
        return cls(
            message=f"Stored {kind} record failed validation: {reason}",
            error_code=ErrorCode.DECODE_FAILED,
            context={"kind": kind, "key": key, "reason": reason},
        )


@dataclass
class InvalidImportFormat(BehaviorStoreError):
    """Raised when an import document fails validation. Nothing is written."""

    error_code: ErrorCode = ErrorCode.IMPORT_INVALID

    @classmethod
    def malformed(cls, reason: str) -> InvalidImportFormat:
        """Create error for a document that is not valid JSON or has the wrong shape."""
        return cls(
            message=f"Invalid data format: {reason}",
            error_code=ErrorCode.IMPORT_INVALID,
            context={"reason": reason},
        )

    @classmethod
    def unsupported_version(cls, version: Any, supported: int) -> InvalidImportFormat:
        """Create error for a document written by a newer schema."""
        return cls(
            message=f"Unsupported export version {version!r} (newest supported: {supported})",
            error_code=ErrorCode.IMPORT_INVALID,
            context={"version": str(version), "supported": supported},
        )


@dataclass
class InvalidKeyError(BehaviorStoreError):
    """Raised when a key is malformed or outside its namespace."""

    error_code: ErrorCode = ErrorCode.KEY_INVALID

    @classmethod
    def bad_date(cls, value: Any) -> InvalidKeyError:
        """Create error for a date key that is not YYYY-MM-DD."""
        return cls(
            message=f"Date keys must be 10-character ISO dates (YYYY-MM-DD), got {value!r}",
            error_code=ErrorCode.KEY_INVALID,
            context={"value": str(value)},
        )

    @classmethod
    def unknown_blob(cls, key: str) -> InvalidKeyError:
        """Create error for a blob key outside the fixed namespace."""
        return cls(
            message=f"Blob key '{key}' is not in the store namespace",
            error_code=ErrorCode.KEY_INVALID,
            context={"key": key},
        )

    @classmethod
    def unknown_index(cls, collection: str, index_name: str) -> InvalidKeyError:
        """Create error for an index the collection does not define."""
        return cls(
            message=f"Collection '{collection}' has no index '{index_name}'",
            error_code=ErrorCode.KEY_INVALID,
            context={"collection": collection, "index_name": index_name},
        )

    @classmethod
    def wrong_record_type(cls, collection: str, expected: str, actual: str) -> InvalidKeyError:
        """Create error for a record written to the wrong collection."""
        return cls(
            message=f"Collection '{collection}' stores {expected}, got {actual}",
            error_code=ErrorCode.KEY_INVALID,
            context={"collection": collection, "expected": expected, "actual": actual},
        )


@dataclass
class ImmutableRecordError(BehaviorStoreError):
    """Raised when a write would change an immutable record or field."""

    error_code: ErrorCode = ErrorCode.RECORD_IMMUTABLE

    @classmethod
    def field_changed(cls, collection: str, key: str, field_name: str) -> ImmutableRecordError:
        """Create error for a rewrite that changes an immutable field."""
        return cls(
            message=f"Field '{field_name}' of {collection}/{key} cannot change once written",
            error_code=ErrorCode.RECORD_IMMUTABLE,
            context={"collection": collection, "key": key, "field": field_name},
        )

    @classmethod
    def record_changed(cls, collection: str, key: str) -> ImmutableRecordError:
        """Create error for a rewrite of an immutable record with different content."""
        return cls(
            message=f"Record {collection}/{key} is immutable once written",
            error_code=ErrorCode.RECORD_IMMUTABLE,
            context={"collection": collection, "key": key},
        )
