"""
Whole-dataset export and import.

The export document is a single JSON object:

    {
      "version": <schema version>,
      "exportDate": <ISO-8601 UTC>,
      "reports": {date: DailyReport},
      "journal": {date: [JournalEntry, ...]},
      "preferences": {...},
      "nudgeSettings": {...},
      "tabGroupingSettings": {...},
      "collections": {"metrics": [...], "patterns": [...], "sites": [...], "reports": [...]}
    }

Import validates the entire document before touching storage and then
commits it in one transaction, so a rejected document writes nothing.
Import replaces whole blobs and collections; it never merges. Documents
without a "collections" section (older exports) leave collections alone.
"""

from __future__ import annotations

import json
import time
from collections.abc import Mapping
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import Field, ValidationError, model_validator

from behavior_store.exceptions import InvalidImportFormat
from behavior_store.logging import get_logger
from behavior_store.models import (
    BehaviorPattern,
    DailyMetric,
    DailyReport,
    DateKey,
    JournalEntry,
    Preferences,
    Report,
    SiteActivity,
    StoreModel,
)
from behavior_store.storage.backend import DocumentRow, StorageBackend
from behavior_store.storage.blobs import (
    BlobKey,
    decode_journal_map,
    decode_report_map,
    read_blob,
    read_map,
)
from behavior_store.storage.codec import Codec, default_codec
from behavior_store.storage.documents import COLLECTIONS, Collection, decode_rows
from behavior_store.storage.handle import StoreHandle
from behavior_store.storage.versioning import CURRENT_SCHEMA_VERSION

logger = get_logger(__name__)


class CollectionSnapshot(StoreModel):
    """Every record of every document collection."""

    metrics: list[DailyMetric] = Field(default_factory=list)
    patterns: list[BehaviorPattern] = Field(default_factory=list)
    sites: list[SiteActivity] = Field(default_factory=list)
    reports: list[Report] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_keys(self) -> CollectionSnapshot:
        for collection in Collection:
            spec = COLLECTIONS[collection]
            keys = [spec.key_of(r) for r in getattr(self, collection.value)]
            if len(keys) != len(set(keys)):
                msg = f"duplicate primary keys in collection '{collection.value}'"
                raise ValueError(msg)
        return self


class ExportDocument(StoreModel):
    """Portable snapshot of the whole store."""

    version: int = Field(..., ge=1)
    export_date: str
    reports: dict[DateKey, DailyReport]
    journal: dict[DateKey, list[JournalEntry]] = Field(default_factory=dict)
    preferences: dict[str, Any] = Field(default_factory=dict)
    nudge_settings: dict[str, Any] = Field(default_factory=dict)
    tab_grouping_settings: dict[str, Any] = Field(default_factory=dict)
    collections: CollectionSnapshot | None = None

    @model_validator(mode="after")
    def _consistent_buckets(self) -> ExportDocument:
        for date, report in self.reports.items():
            if report.date != date:
                msg = f"report filed under {date} is dated {report.date}"
                raise ValueError(msg)
        for date, entries in self.journal.items():
            for entry in entries:
                if entry.date != date:
                    msg = f"journal entry {entry.id} filed under {date} is dated {entry.date}"
                    raise ValueError(msg)
        if self.preferences:
            Preferences.model_validate(self.preferences)
        return self


@dataclass
class ImportResult:
    """Result of an import."""

    version: int
    blobs_replaced: list[str] = field(default_factory=list)
    records_imported: dict[str, int] = field(default_factory=dict)
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "version": self.version,
            "blobs_replaced": self.blobs_replaced,
            "records_imported": self.records_imported,
            "duration_seconds": round(self.duration_seconds, 3),
        }


def _export_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse(document: str | bytes | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(document, Mapping):
        return dict(document)
    try:
        data = json.loads(document)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidImportFormat.malformed(f"not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise InvalidImportFormat.malformed("top level must be an object")
    return data


def validate_document(document: str | bytes | Mapping[str, Any]) -> ExportDocument:
    """
    Check an import document without writing anything.

    Raises:
        InvalidImportFormat: if the version tag is missing or unsupported,
            the top-level shape is wrong, or any record fails validation.
    """
    data = _parse(document)

    version = data.get("version")
    if not version or isinstance(version, bool) or not isinstance(version, int):
        raise InvalidImportFormat.malformed("missing or invalid version tag")
    if version > CURRENT_SCHEMA_VERSION:
        raise InvalidImportFormat.unsupported_version(version, CURRENT_SCHEMA_VERSION)
    if not isinstance(data.get("reports"), dict):
        raise InvalidImportFormat.malformed("'reports' must be an object")

    try:
        return ExportDocument.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(p) for p in first.get("loc", ())) or "<root>"
        raise InvalidImportFormat.malformed(f"{location}: {first.get('msg', 'invalid')}") from e


class ExportImportCodec:
    """Serializes the whole store to one document and restores it."""

    def __init__(self, handle: StoreHandle, codec: Codec | None = None) -> None:
        self._handle = handle
        self._codec = codec or default_codec

    def _snapshot(self, backend: StorageBackend) -> dict[str, Any]:
        reports = decode_report_map(read_map(backend, BlobKey.REPORTS), self._codec)
        journal = decode_journal_map(read_map(backend, BlobKey.JOURNAL), self._codec)

        collections: dict[str, list[Any]] = {}
        for collection in Collection:
            spec = COLLECTIONS[collection]
            records = decode_rows(spec, backend.all_documents(collection.value), self._codec)
            collections[collection.value] = [self._codec.to_value(r) for r in records]

        return {
            "version": CURRENT_SCHEMA_VERSION,
            "exportDate": _export_timestamp(),
            "reports": {d: self._codec.to_value(r) for d, r in sorted(reports.items())},
            "journal": {
                d: [self._codec.to_value(e) for e in entries]
                for d, entries in sorted(journal.items())
            },
            "preferences": read_blob(backend, BlobKey.PREFERENCES, {}),
            "nudgeSettings": read_blob(backend, BlobKey.NUDGE_SETTINGS, {}),
            "tabGroupingSettings": read_blob(backend, BlobKey.TAB_GROUPING_SETTINGS, {}),
            "collections": collections,
        }

    def export_all(self) -> Future[str]:
        """Resolve to the whole store as an indented JSON document."""

        def job(backend: StorageBackend) -> str:
            start = time.perf_counter()
            snapshot = self._snapshot(backend)
            text = json.dumps(snapshot, indent=2)
            logger.info(
                "data_exported",
                reports=len(snapshot["reports"]),
                journal_days=len(snapshot["journal"]),
                records={k: len(v) for k, v in snapshot["collections"].items()},
                size_bytes=len(text),
                duration_seconds=round(time.perf_counter() - start, 3),
            )
            return text

        return self._handle.submit("export_all", job)

    def import_all(self, document: str | bytes | Mapping[str, Any]) -> Future[ImportResult]:
        """
        Validate ``document`` and replace the stored data with it.

        Validation runs before anything is queued; InvalidImportFormat is
        raised directly and storage is untouched.
        """
        self._handle.ensure_ready("import_all")
        try:
            parsed = validate_document(document)
        except InvalidImportFormat as e:
            logger.warning("import_rejected", **e.to_dict())
            raise

        blobs = {
            BlobKey.REPORTS.value: json.dumps(
                {d: self._codec.to_value(r) for d, r in parsed.reports.items()}
            ),
            BlobKey.JOURNAL.value: json.dumps(
                {d: [self._codec.to_value(e) for e in es] for d, es in parsed.journal.items()}
            ),
            BlobKey.PREFERENCES.value: json.dumps(parsed.preferences),
            BlobKey.NUDGE_SETTINGS.value: json.dumps(parsed.nudge_settings),
            BlobKey.TAB_GROUPING_SETTINGS.value: json.dumps(parsed.tab_grouping_settings),
        }

        collections: dict[str, list[DocumentRow]] = {}
        if parsed.collections is not None:
            for collection in Collection:
                spec = COLLECTIONS[collection]
                records = getattr(parsed.collections, collection.value)
                collections[collection.value] = [spec.to_row(r, self._codec) for r in records]

        def job(backend: StorageBackend) -> ImportResult:
            start = time.perf_counter()
            backend.replace_all(collections, blobs)
            result = ImportResult(
                version=parsed.version,
                blobs_replaced=sorted(blobs),
                records_imported={name: len(rows) for name, rows in collections.items()},
                duration_seconds=time.perf_counter() - start,
            )
            logger.info("data_imported", result=result.to_dict())
            return result

        return self._handle.submit("import_all", job)
