"""
Indexed document store for metrics, patterns, site activity and reports.

Each collection is keyed by a natural key and may declare secondary
indexes. Daily metrics use their YYYY-MM-DD key directly for range scans,
since lexicographic order of fixed-width ISO dates is chronological order.

All operations return futures from the shared StoreHandle.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from behavior_store.exceptions import (
    DecodeError,
    ImmutableRecordError,
    InvalidKeyError,
)
from behavior_store.logging import get_logger
from behavior_store.models import (
    BehaviorPattern,
    BehaviorType,
    DailyMetric,
    Report,
    SiteActivity,
    SiteCategory,
    StoreModel,
    is_date_key,
)
from behavior_store.storage.backend import DocumentRow, StorageBackend
from behavior_store.storage.codec import Codec, default_codec
from behavior_store.storage.handle import StoreHandle

logger = get_logger(__name__)

DEFAULT_RECENT_LIMIT = 50


class Collection(str, Enum):
    """Document collections held by the store."""

    METRICS = "metrics"
    PATTERNS = "patterns"
    SITES = "sites"
    REPORTS = "reports"


@dataclass(frozen=True)
class CollectionSpec:
    """Shape of one collection: record type, primary key and indexes."""

    name: Collection
    model: type[StoreModel]
    key_field: str
    # index name -> model attribute
    indexes: dict[str, str] = field(default_factory=dict)
    immutable_fields: tuple[str, ...] = ()
    immutable: bool = False
    date_keyed: bool = False

    def key_of(self, record: StoreModel) -> str:
        return str(getattr(record, self.key_field))

    def index_values(self, record: StoreModel) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for index_name, attribute in self.indexes.items():
            values[index_name] = index_value(getattr(record, attribute))
        return values

    def to_row(self, record: StoreModel, codec: Codec) -> DocumentRow:
        return DocumentRow(
            key=self.key_of(record),
            body=codec.encode(record),
            index_values=self.index_values(record),
        )


def index_value(value: Any) -> Any:
    """Normalize a value to what the medium stores in an index entry."""
    if isinstance(value, Enum):
        return value.value
    return value


COLLECTIONS: dict[Collection, CollectionSpec] = {
    Collection.METRICS: CollectionSpec(
        name=Collection.METRICS,
        model=DailyMetric,
        key_field="date",
        date_keyed=True,
    ),
    Collection.PATTERNS: CollectionSpec(
        name=Collection.PATTERNS,
        model=BehaviorPattern,
        key_field="id",
        indexes={"type": "type", "startTime": "start_time"},
        immutable_fields=("start_time",),
    ),
    Collection.SITES: CollectionSpec(
        name=Collection.SITES,
        model=SiteActivity,
        key_field="domain",
        indexes={"category": "category", "lastVisit": "last_visit"},
    ),
    Collection.REPORTS: CollectionSpec(
        name=Collection.REPORTS,
        model=Report,
        key_field="id",
        indexes={"generatedAt": "generated_at"},
        immutable=True,
    ),
}


def get_spec(collection: Collection | str) -> CollectionSpec:
    """Look up a collection by enum or name."""
    try:
        return COLLECTIONS[Collection(collection)]
    except ValueError as e:
        raise InvalidKeyError(
            message=f"Unknown collection '{collection}'",
            context={"collection": str(collection)},
        ) from e


def decode_rows(
    spec: CollectionSpec,
    rows: Iterable[tuple[str, str]],
    codec: Codec = default_codec,
    limit: int | None = None,
) -> list[Any]:
    """Decode rows, skipping (and logging) any that fail validation."""
    records: list[Any] = []
    for key, body in rows:
        if limit is not None and len(records) >= limit:
            break
        try:
            records.append(codec.decode(spec.model, body, key=key))
        except DecodeError as e:
            logger.warning(
                "record_skipped",
                collection=spec.name.value,
                key=key,
                reason=e.context.get("reason"),
            )
    return records


class DocumentStore:
    """
    Multi-collection document store.

    Writes are full replacements (upsert by primary key). Merging, for
    example of site activity counters, is the caller's job.
    """

    def __init__(
        self,
        handle: StoreHandle,
        codec: Codec | None = None,
        on_write: Callable[[], Any] | None = None,
    ) -> None:
        self._handle = handle
        self._codec = codec or default_codec
        self._on_write = on_write

    def _after_write(self, future: Future[Any]) -> None:
        if self._on_write is None or future.cancelled() or future.exception() is not None:
            return
        self._on_write()

    def _write(self, operation: str, job: Callable[[StorageBackend], Any]) -> Future[Any]:
        future = self._handle.submit(operation, job)
        future.add_done_callback(self._after_write)
        return future

    # ------------------------------------------------------------------
    # Generic operations
    # ------------------------------------------------------------------

    def put(self, collection: Collection | str, record: StoreModel) -> Future[None]:
        """
        Upsert ``record`` by its primary key.

        Re-putting an identical record is a no-op. Changing an immutable
        field (pattern start time) or any part of an immutable record
        (report) raises ImmutableRecordError from the future.
        """
        spec = get_spec(collection)
        if not isinstance(record, spec.model):
            raise InvalidKeyError.wrong_record_type(
                spec.name.value, spec.model.__name__, type(record).__name__
            )
        row = spec.to_row(record, self._codec)

        def job(backend: StorageBackend) -> None:
            if spec.immutable or spec.immutable_fields:
                self._check_immutable(backend, spec, record, row.key)
            backend.put_document(spec.name.value, row)
            logger.debug("document_saved", collection=spec.name.value, key=row.key)

        return self._write(f"put:{spec.name.value}", job)

    def _check_immutable(
        self, backend: StorageBackend, spec: CollectionSpec, record: StoreModel, key: str
    ) -> None:
        existing_body = backend.get_document(spec.name.value, key)
        if existing_body is None:
            return
        try:
            existing = self._codec.decode(spec.model, existing_body, key=key)
        except DecodeError:
            # An unreadable stored record may be overwritten by a valid one
            return
        if spec.immutable and existing != record:
            raise ImmutableRecordError.record_changed(spec.name.value, key)
        for name in spec.immutable_fields:
            if getattr(existing, name) != getattr(record, name):
                raise ImmutableRecordError.field_changed(spec.name.value, key, name)

    def get(self, collection: Collection | str, key: str) -> Future[Any]:
        """Fetch one record, or None. A stored record that fails validation raises DecodeError."""
        spec = get_spec(collection)

        def job(backend: StorageBackend) -> Any:
            body = backend.get_document(spec.name.value, key)
            if body is None:
                return None
            return self._codec.decode(spec.model, body, key=key)

        return self._handle.submit(f"get:{spec.name.value}", job)

    def get_range(self, collection: Collection | str, lower: str, upper: str) -> Future[list[Any]]:
        """Records with ``lower <= key <= upper``, ascending by key."""
        spec = get_spec(collection)
        if spec.date_keyed:
            for bound in (lower, upper):
                if not is_date_key(bound):
                    raise InvalidKeyError.bad_date(bound)

        def job(backend: StorageBackend) -> list[Any]:
            if lower > upper:
                return []
            rows = backend.range_documents(spec.name.value, lower, upper)
            return decode_rows(spec, rows, self._codec)

        return self._handle.submit(f"range:{spec.name.value}", job)

    def query_by_index(
        self, collection: Collection | str, index_name: str, value: Any
    ) -> Future[list[Any]]:
        """Every record whose ``index_name`` entry equals ``value``. Order is unspecified."""
        spec = self._indexed_spec(collection, index_name)
        stored_value = index_value(value)

        def job(backend: StorageBackend) -> list[Any]:
            rows = backend.documents_by_index(spec.name.value, index_name, stored_value)
            return decode_rows(spec, rows, self._codec)

        return self._handle.submit(f"query:{spec.name.value}.{index_name}", job)

    def get_recent_by_index(
        self, collection: Collection | str, index_name: str, limit: int
    ) -> Future[list[Any]]:
        """
        The ``limit`` records with the largest index values, descending.

        Walks a descending cursor on the index and stops once ``limit``
        records have been decoded, so cost follows ``limit`` rather than
        the size of the collection.
        """
        spec = self._indexed_spec(collection, index_name)

        def job(backend: StorageBackend) -> list[Any]:
            if limit <= 0:
                return []
            cursor = backend.scan_index(spec.name.value, index_name, descending=True)
            try:
                return decode_rows(spec, cursor, self._codec, limit=limit)
            finally:
                cursor.close()

        return self._handle.submit(f"recent:{spec.name.value}.{index_name}", job)

    def get_all(self, collection: Collection | str) -> Future[list[Any]]:
        """Every record, ascending by primary key."""
        spec = get_spec(collection)

        def job(backend: StorageBackend) -> list[Any]:
            return decode_rows(spec, backend.all_documents(spec.name.value), self._codec)

        return self._handle.submit(f"all:{spec.name.value}", job)

    def delete(self, collection: Collection | str, key: str) -> Future[bool]:
        """Delete one record. Resolves to True if it existed."""
        spec = get_spec(collection)
        return self._handle.submit(
            f"delete:{spec.name.value}",
            lambda backend: backend.delete_document(spec.name.value, key),
        )

    def count(self, collection: Collection | str) -> Future[int]:
        spec = get_spec(collection)
        return self._handle.submit(
            f"count:{spec.name.value}",
            lambda backend: backend.count_documents(spec.name.value),
        )

    def clear(self, collection: Collection | str) -> Future[int]:
        """Delete every record in one collection."""
        spec = get_spec(collection)

        def job(backend: StorageBackend) -> int:
            removed = backend.clear_collection(spec.name.value)
            logger.info("collection_cleared", collection=spec.name.value, removed=removed)
            return removed

        return self._handle.submit(f"clear:{spec.name.value}", job)

    def clear_all_data(self) -> Future[dict[str, int]]:
        """Delete every record in every collection."""

        def job(backend: StorageBackend) -> dict[str, int]:
            removed = {c.value: backend.clear_collection(c.value) for c in Collection}
            logger.info("all_collections_cleared", removed=removed)
            return removed

        return self._handle.submit("clear_all", job)

    def _indexed_spec(self, collection: Collection | str, index_name: str) -> CollectionSpec:
        spec = get_spec(collection)
        if index_name not in spec.indexes:
            raise InvalidKeyError.unknown_index(spec.name.value, index_name)
        return spec

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def save_metrics(self, metric: DailyMetric) -> Future[None]:
        return self.put(Collection.METRICS, metric)

    def get_metrics(self, date: str) -> Future[DailyMetric | None]:
        if not is_date_key(date):
            raise InvalidKeyError.bad_date(date)
        return self.get(Collection.METRICS, date)

    def get_metrics_range(self, start_date: str, end_date: str) -> Future[list[DailyMetric]]:
        return self.get_range(Collection.METRICS, start_date, end_date)

    # ------------------------------------------------------------------
    # Patterns
    # ------------------------------------------------------------------

    def save_pattern(self, pattern: BehaviorPattern) -> Future[None]:
        return self.put(Collection.PATTERNS, pattern)

    def get_pattern(self, pattern_id: str) -> Future[BehaviorPattern | None]:
        return self.get(Collection.PATTERNS, pattern_id)

    def get_patterns_by_type(self, pattern_type: BehaviorType | str) -> Future[list[BehaviorPattern]]:
        return self.query_by_index(Collection.PATTERNS, "type", BehaviorType(pattern_type))

    def get_recent_patterns(self, limit: int = DEFAULT_RECENT_LIMIT) -> Future[list[BehaviorPattern]]:
        return self.get_recent_by_index(Collection.PATTERNS, "startTime", limit)

    # ------------------------------------------------------------------
    # Sites
    # ------------------------------------------------------------------

    def save_site_activity(self, site: SiteActivity) -> Future[None]:
        return self.put(Collection.SITES, site)

    def get_site_activity(self, domain: str) -> Future[SiteActivity | None]:
        return self.get(Collection.SITES, domain)

    def get_all_sites(self) -> Future[list[SiteActivity]]:
        return self.get_all(Collection.SITES)

    def get_sites_by_category(self, category: SiteCategory | str) -> Future[list[SiteActivity]]:
        return self.query_by_index(Collection.SITES, "category", SiteCategory(category))

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def save_report(self, report: Report) -> Future[None]:
        return self.put(Collection.REPORTS, report)

    def get_report(self, report_id: str) -> Future[Report | None]:
        return self.get(Collection.REPORTS, report_id)

    def get_all_reports(self) -> Future[list[Report]]:
        """Every report, oldest first by generation time."""
        spec = COLLECTIONS[Collection.REPORTS]

        def job(backend: StorageBackend) -> list[Report]:
            cursor = backend.scan_index(spec.name.value, "generatedAt", descending=False)
            try:
                return decode_rows(spec, cursor, self._codec)
            finally:
                cursor.close()

        return self._handle.submit("all:reports", job)
