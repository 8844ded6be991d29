"""
Storage layer for the behavior store.

This package provides:
- A storage medium adapter (SQLite) behind an explicit backend interface
- A shared handle that serializes operations and returns futures
- A multi-collection document store with secondary indexes
- A key-value store for whole-value blobs
- Retention sweeps, schema migrations, export/import and quota reporting

Design Patterns:
- Adapter Pattern: StorageBackend over the embedded database
- Registry Pattern: Migration steps keyed by version
- Observer Pattern: Retention event notifications
"""

from behavior_store.storage.backend import DocumentRow, SQLiteBackend, StorageBackend
from behavior_store.storage.blobs import BlobKey, KeyValueStore
from behavior_store.storage.bundle import (
    CollectionSnapshot,
    ExportDocument,
    ExportImportCodec,
    ImportResult,
    validate_document,
)
from behavior_store.storage.codec import Codec
from behavior_store.storage.documents import COLLECTIONS, Collection, DocumentStore
from behavior_store.storage.handle import HandleState, StoreHandle
from behavior_store.storage.quota import QuotaReporter
from behavior_store.storage.retention import (
    RetentionEvent,
    RetentionEventType,
    RetentionManager,
    RetentionObserver,
    RetentionResult,
    compute_cutoff,
)
from behavior_store.storage.versioning import (
    CURRENT_SCHEMA_VERSION,
    Migration,
    MigrationManager,
    MigrationRegistry,
    default_registry,
)

__all__ = [
    # Backend
    "COLLECTIONS",
    "CURRENT_SCHEMA_VERSION",
    "BlobKey",
    "Codec",
    "Collection",
    # Bundle
    "CollectionSnapshot",
    "DocumentRow",
    "DocumentStore",
    "ExportDocument",
    "ExportImportCodec",
    "HandleState",
    "ImportResult",
    "KeyValueStore",
    # Versioning
    "Migration",
    "MigrationManager",
    "MigrationRegistry",
    "QuotaReporter",
    # Retention
    "RetentionEvent",
    "RetentionEventType",
    "RetentionManager",
    "RetentionObserver",
    "RetentionResult",
    "SQLiteBackend",
    "StorageBackend",
    "StoreHandle",
    "compute_cutoff",
    "default_registry",
    "validate_document",
]
