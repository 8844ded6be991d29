"""
Schema versioning and startup migrations.

The persisted schema version lives in the SCHEMA_VERSION blob (0 when
absent). On startup every registered step between the persisted and the
target version is applied in order, and the version is written only after
its step succeeded. A step that fails leaves the version where it was, so
the next launch re-runs it: steps must be safe to run more than once.

Design Patterns:
- Registry Pattern: Central migration registry
- Command Pattern: Migrations as executable steps
- Chain of Responsibility: Sequential migration application
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from concurrent.futures import Future
from typing import Any

from behavior_store.exceptions import StorageUnavailable
from behavior_store.logging import get_logger
from behavior_store.models import Preferences
from behavior_store.storage.backend import StorageBackend
from behavior_store.storage.blobs import BlobKey, read_blob, read_schema_version, write_blob
from behavior_store.storage.handle import StoreHandle

logger = get_logger(__name__)

CURRENT_SCHEMA_VERSION = 2


class Migration(ABC):
    """One idempotent step that moves the schema from ``version - 1`` to ``version``."""

    @property
    @abstractmethod
    def version(self) -> int:
        """Schema version reached after this step."""

    @property
    def description(self) -> str:
        """Human-readable description of the step."""
        return ""

    @abstractmethod
    def apply(self, backend: StorageBackend) -> None:
        """Apply the step. Must be safe to run again after a partial run."""


class EnsureDefaultBlobs(Migration):
    """Create the reports, journal and preferences blobs when missing."""

    @property
    def version(self) -> int:
        return 1

    @property
    def description(self) -> str:
        return "Ensure reports, journal and preferences blobs exist"

    def apply(self, backend: StorageBackend) -> None:
        defaults: dict[BlobKey, Any] = {
            BlobKey.REPORTS: {},
            BlobKey.JOURNAL: {},
            BlobKey.PREFERENCES: Preferences(),
        }
        for key, value in defaults.items():
            if backend.get_blob(key.value) is None:
                write_blob(backend, key, value)


class BackfillSettings(Migration):
    """Add preference keys introduced after v1 and create empty settings blobs."""

    @property
    def version(self) -> int:
        return 2

    @property
    def description(self) -> str:
        return "Backfill preference defaults and settings blobs"

    def apply(self, backend: StorageBackend) -> None:
        stored = read_blob(backend, BlobKey.PREFERENCES, {})
        if not isinstance(stored, dict):
            stored = {}
        defaults = Preferences().model_dump(mode="json", by_alias=True)
        merged = {**defaults, **stored}
        if merged != stored:
            write_blob(backend, BlobKey.PREFERENCES, merged)

        for key in (BlobKey.NUDGE_SETTINGS, BlobKey.TAB_GROUPING_SETTINGS):
            if backend.get_blob(key.value) is None:
                write_blob(backend, key, {})


class MigrationRegistry:
    """Registry of migration steps keyed by the version they reach."""

    def __init__(self) -> None:
        self._migrations: dict[int, Migration] = {}

        logger.debug("migration_registry_initialized")

    def register(self, migration: Migration) -> None:
        """Register a step. A second step for the same version is ignored."""
        if migration.version in self._migrations:
            logger.warning("migration_already_registered", version=migration.version)
            return
        if migration.version < 1:
            msg = f"Migration versions start at 1, got {migration.version}"
            raise ValueError(msg)

        self._migrations[migration.version] = migration
        logger.debug(
            "migration_registered",
            version=migration.version,
            migration=type(migration).__name__,
        )

    def get(self, version: int) -> Migration | None:
        return self._migrations.get(version)

    @property
    def latest_version(self) -> int:
        return max(self._migrations, default=0)

    def list_migrations(self) -> list[Migration]:
        """Registered steps in version order."""
        return [self._migrations[v] for v in sorted(self._migrations)]


def default_registry() -> MigrationRegistry:
    """Registry holding the store's built-in steps."""
    registry = MigrationRegistry()
    registry.register(EnsureDefaultBlobs())
    registry.register(BackfillSettings())
    return registry


class MigrationManager:
    """
    Brings the persisted schema up to the target version at startup.

    Runs on the handle while it is still opening; ordinary operations are
    refused until the handle is marked ready afterwards.
    """

    def __init__(
        self,
        handle: StoreHandle,
        registry: MigrationRegistry | None = None,
        target_version: int | None = None,
    ) -> None:
        self._handle = handle
        self._registry = registry or default_registry()
        self._target = target_version if target_version is not None else CURRENT_SCHEMA_VERSION

        logger.info("migration_manager_initialized", target_version=self._target)

    @property
    def target_version(self) -> int:
        return self._target

    def run(self) -> Future[list[int]]:
        """Apply pending steps. Resolves to the versions reached, in order."""
        return self._handle.submit("migrate", self._migrate, allow_opening=True)

    def _migrate(self, backend: StorageBackend) -> list[int]:
        current = read_schema_version(backend)

        if current == self._target:
            logger.info("already_at_target_version", version=current)
            return []
        if current > self._target:
            logger.warning(
                "schema_newer_than_code",
                stored_version=current,
                target_version=self._target,
            )
            return []

        logger.info("migration_planned", from_version=current, to_version=self._target)

        applied: list[int] = []
        while current < self._target:
            next_version = current + 1
            migration = self._registry.get(next_version)
            if migration is None:
                raise StorageUnavailable.migration_failed(next_version, "no migration registered")

            start_time = time.perf_counter()
            try:
                migration.apply(backend)
            except Exception as e:
                logger.exception(
                    "migration_failed",
                    version=next_version,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise StorageUnavailable.migration_failed(next_version, str(e)) from e

            write_blob(backend, BlobKey.SCHEMA_VERSION, next_version)
            current = next_version
            applied.append(next_version)

            logger.info(
                "migration_applied",
                version=next_version,
                description=migration.description,
                duration_seconds=round(time.perf_counter() - start_time, 3),
            )

        return applied

    def get_status(self) -> Future[dict[str, Any]]:
        """Current and target versions plus the registered steps."""

        def job(backend: StorageBackend) -> dict[str, Any]:
            current = read_schema_version(backend)
            return {
                "current_version": current,
                "target_version": self._target,
                "needs_migration": current < self._target,
                "available_migrations": [
                    {"version": m.version, "description": m.description}
                    for m in self._registry.list_migrations()
                ],
            }

        return self._handle.submit("migration_status", job, allow_opening=True)
