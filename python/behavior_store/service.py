"""
Behavior data store facade.

Builds the storage handle once at process start, runs schema migrations,
and exposes the document store, the key-value store and the lifecycle
services to every caller. Callers receive the facade explicitly; there is
no process-wide store instance.

Design Patterns:
- Facade Pattern: One entry point over the storage subsystems
- Dependency Inversion: Backend and migration registry injectable for testing
"""

from __future__ import annotations

from typing import Any

from behavior_store.config import Config, get_config
from behavior_store.exceptions import BehaviorStoreError
from behavior_store.logging import get_logger, setup_logging
from behavior_store.storage.backend import SQLiteBackend, StorageBackend
from behavior_store.storage.blobs import KeyValueStore
from behavior_store.storage.bundle import ExportImportCodec
from behavior_store.storage.documents import DocumentStore
from behavior_store.storage.handle import HandleState, StoreHandle
from behavior_store.storage.quota import QuotaReporter
from behavior_store.storage.retention import RetentionManager
from behavior_store.storage.versioning import MigrationManager, MigrationRegistry

logger = get_logger(__name__)


class BehaviorDataStore:
    """
    Local behavioral data store.

    Use ``BehaviorDataStore.open()`` rather than the constructor: it also
    migrates the schema and marks the store ready.
    """

    def __init__(
        self,
        backend: StorageBackend,
        config: Config | None = None,
        registry: MigrationRegistry | None = None,
    ) -> None:
        self.config = config or get_config()
        self._handle = StoreHandle(backend)

        self.retention = RetentionManager(self._handle, self.config.retention)
        self.documents = DocumentStore(self._handle, on_write=self.retention.maybe_schedule)
        self.blobs = KeyValueStore(self._handle, on_write=self.retention.maybe_schedule)
        self.migrations = MigrationManager(self._handle, registry)
        self.transfer = ExportImportCodec(self._handle)
        self.quota = QuotaReporter(self._handle, self.config.storage.effective_quota_bytes)

    @classmethod
    def open(
        cls,
        config: Config | None = None,
        backend: StorageBackend | None = None,
        registry: MigrationRegistry | None = None,
        timeout: float | None = None,
    ) -> BehaviorDataStore:
        """
        Open the store and bring its schema up to date.

        Logging is configured from ``config.logging`` first. The first
        opportunistic retention sweep runs no sooner than one
        ``retention.sweep_interval_seconds`` after opening; call
        ``retention.apply_retention()`` to sweep right away.

        Args:
            config: Store configuration (process configuration if None).
            backend: Storage medium; built from ``config.storage`` if None.
            registry: Migration steps; the built-in steps if None.
            timeout: Seconds to wait for migrations (None waits indefinitely).

        Raises:
            StorageUnavailable: if a migration step fails.
            DecodeError: if the persisted schema version is unreadable.
            StorageIOError: if the medium cannot be opened.
        """
        config = config or get_config()
        setup_logging(config.logging)
        if backend is None:
            backend = SQLiteBackend.from_config(config.storage)

        store = cls(backend, config=config, registry=registry)
        try:
            applied = store.migrations.run().result(timeout=timeout)
            store._handle.mark_ready()
        except Exception as e:
            if isinstance(e, BehaviorStoreError):
                logger.error("store_open_failed", **e.to_dict())
            else:
                logger.error("store_open_failed", error=str(e), error_type=type(e).__name__)
            store.close()
            raise

        logger.info("store_opened", migrations_applied=applied)
        return store

    @property
    def state(self) -> HandleState:
        return self._handle.state

    @property
    def is_ready(self) -> bool:
        return self._handle.is_ready

    @property
    def handle(self) -> StoreHandle:
        return self._handle

    def close(self) -> None:
        """Finish queued operations and release the medium."""
        self._handle.close()

    def __enter__(self) -> BehaviorDataStore:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
