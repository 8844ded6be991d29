"""
Versioned key-value store for whole-value blobs.

Keys come from a small fixed namespace (BlobKey). A key that was never
written reads as the caller-supplied default, since absence is the normal
state of a fresh install.

Read-modify-write: the typed helpers (save_daily_report,
save_journal_entry, update_preferences, ...) read and write back inside
one job on the store's single worker, so two helper calls cannot
interleave. A caller composing get_blob and set_blob itself gets no such
guarantee: a concurrent writer to the same key between the two calls is
silently overwritten (last writer wins). There is no compare-and-swap.
"""

from __future__ import annotations

import copy
import json
from collections.abc import Callable
from concurrent.futures import Future
from enum import Enum
from typing import Any

from pydantic import BaseModel

from behavior_store.exceptions import DecodeError, InvalidKeyError
from behavior_store.logging import get_logger
from behavior_store.models import DailyReport, JournalEntry, Preferences, is_date_key
from behavior_store.storage.backend import StorageBackend
from behavior_store.storage.codec import Codec, default_codec
from behavior_store.storage.handle import StoreHandle

logger = get_logger(__name__)


class BlobKey(str, Enum):
    """The fixed blob namespace. Values are the on-device key strings."""

    REPORTS = "kaizen_reports"
    JOURNAL = "kaizen_journal"
    PREFERENCES = "kaizen_preferences"
    SCHEMA_VERSION = "kaizen_storage_version"
    NUDGE_SETTINGS = "nudgeSettings"
    TAB_GROUPING_SETTINGS = "tabGroupingSettings"


def blob_key(key: BlobKey | str) -> BlobKey:
    """Resolve ``key`` into the namespace or raise InvalidKeyError."""
    try:
        return BlobKey(key)
    except ValueError as e:
        raise InvalidKeyError.unknown_blob(str(key)) from e


def read_blob(backend: StorageBackend, key: BlobKey, default: Any = None) -> Any:
    """Read and parse a blob, returning a copy of ``default`` when absent."""
    body = backend.get_blob(key.value)
    if body is None:
        return copy.deepcopy(default)
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise DecodeError.invalid_record("blob", key.value, str(e)) from e


def write_blob(backend: StorageBackend, key: BlobKey, value: Any) -> None:
    """Serialize and replace a blob's whole value."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True)
    backend.set_blob(key.value, json.dumps(value, separators=(",", ":")))


def read_map(backend: StorageBackend, key: BlobKey) -> dict[str, Any]:
    """Read a date-keyed map blob; anything that is not an object reads as empty."""
    value = read_blob(backend, key, {})
    if not isinstance(value, dict):
        logger.warning("blob_not_a_map", key=key.value, actual=type(value).__name__)
        return {}
    return value


def read_schema_version(backend: StorageBackend) -> int:
    """Persisted schema version (0 when absent). Anything but a non-negative int is a DecodeError."""
    value = read_blob(backend, BlobKey.SCHEMA_VERSION, 0)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise DecodeError.invalid_record(
            "schema_version",
            BlobKey.SCHEMA_VERSION.value,
            f"expected a non-negative integer, got {value!r}",
        )
    return value


def decode_report_map(raw: dict[str, Any], codec: Codec = default_codec) -> dict[str, DailyReport]:
    """Decode a reports-by-date map, skipping entries that fail validation."""
    reports: dict[str, DailyReport] = {}
    for date, value in raw.items():
        try:
            reports[date] = codec.decode(DailyReport, value, key=date)
        except DecodeError as e:
            logger.warning("daily_report_skipped", date=date, reason=e.context.get("reason"))
    return reports


def decode_journal_map(
    raw: dict[str, Any], codec: Codec = default_codec
) -> dict[str, list[JournalEntry]]:
    """Decode a journal-by-date map, skipping entries that fail validation."""
    journal: dict[str, list[JournalEntry]] = {}
    for date, values in raw.items():
        if not isinstance(values, list):
            logger.warning("journal_bucket_skipped", date=date)
            continue
        entries = []
        for value in values:
            try:
                entries.append(codec.decode(JournalEntry, value, key=date))
            except DecodeError as e:
                logger.warning("journal_entry_skipped", date=date, reason=e.context.get("reason"))
        journal[date] = entries
    return journal


class KeyValueStore:
    """Whole-value blob store over the shared handle."""

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
    # Raw blobs
    # ------------------------------------------------------------------

    def get_blob(self, key: BlobKey | str, default: Any = None) -> Future[Any]:
        """Read a blob. Resolves to a copy of ``default`` if never written."""
        resolved = blob_key(key)
        return self._handle.submit(
            f"get_blob:{resolved.value}",
            lambda backend: read_blob(backend, resolved, default),
        )

    def set_blob(self, key: BlobKey | str, value: Any) -> Future[None]:
        """Replace a blob's whole value. Keys outside the namespace are rejected."""
        resolved = blob_key(key)

        def job(backend: StorageBackend) -> None:
            write_blob(backend, resolved, value)
            logger.debug("blob_saved", key=resolved.value)

        return self._write(f"set_blob:{resolved.value}", job)

    def remove_blob(self, *keys: BlobKey | str) -> Future[int]:
        """Remove one or more blobs. Resolves to how many existed."""
        resolved = [blob_key(k).value for k in keys]

        def job(backend: StorageBackend) -> int:
            removed = backend.remove_blobs(resolved)
            logger.info("blobs_removed", keys=resolved, removed=removed)
            return removed

        return self._handle.submit("remove_blob", job)

    # ------------------------------------------------------------------
    # Reports by date
    # ------------------------------------------------------------------

    def save_daily_report(self, report: DailyReport) -> Future[None]:
        """Store ``report`` under its date, replacing any report for that day."""

        def job(backend: StorageBackend) -> None:
            reports = read_map(backend, BlobKey.REPORTS)
            reports[report.date] = self._codec.to_value(report)
            write_blob(backend, BlobKey.REPORTS, reports)
            logger.info("daily_report_saved", date=report.date)

        return self._write("save_daily_report", job)

    def get_daily_report(self, date: str) -> Future[DailyReport | None]:
        if not is_date_key(date):
            raise InvalidKeyError.bad_date(date)

        def job(backend: StorageBackend) -> DailyReport | None:
            value = read_map(backend, BlobKey.REPORTS).get(date)
            if value is None:
                return None
            return self._codec.decode(DailyReport, value, key=date)

        return self._handle.submit("get_daily_report", job)

    def get_daily_reports(self, start_date: str, end_date: str) -> Future[list[DailyReport]]:
        """Reports with start_date <= date <= end_date, oldest first."""
        for bound in (start_date, end_date):
            if not is_date_key(bound):
                raise InvalidKeyError.bad_date(bound)

        def job(backend: StorageBackend) -> list[DailyReport]:
            reports = decode_report_map(read_map(backend, BlobKey.REPORTS), self._codec)
            selected = [r for d, r in reports.items() if start_date <= d <= end_date]
            return sorted(selected, key=lambda r: r.date)

        return self._handle.submit("get_daily_reports", job)

    # ------------------------------------------------------------------
    # Journal
    # ------------------------------------------------------------------

    def save_journal_entry(self, entry: JournalEntry) -> Future[None]:
        """Append ``entry`` to its date bucket. Entries are never rewritten."""

        def job(backend: StorageBackend) -> None:
            journal = read_map(backend, BlobKey.JOURNAL)
            bucket = journal.get(entry.date)
            if not isinstance(bucket, list):
                bucket = []
            bucket.append(self._codec.to_value(entry))
            journal[entry.date] = bucket
            write_blob(backend, BlobKey.JOURNAL, journal)
            logger.info("journal_entry_saved", date=entry.date, entry_id=entry.id)

        return self._write("save_journal_entry", job)

    def get_journal_entries(self, start_date: str, end_date: str) -> Future[list[JournalEntry]]:
        """Entries dated within the range, newest first by timestamp."""
        for bound in (start_date, end_date):
            if not is_date_key(bound):
                raise InvalidKeyError.bad_date(bound)

        def job(backend: StorageBackend) -> list[JournalEntry]:
            journal = decode_journal_map(read_map(backend, BlobKey.JOURNAL), self._codec)
            entries = [
                entry
                for date, bucket in journal.items()
                if start_date <= date <= end_date
                for entry in bucket
            ]
            return sorted(entries, key=lambda e: e.timestamp, reverse=True)

        return self._handle.submit("get_journal_entries", job)

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def get_preferences(self) -> Future[Preferences]:
        """Stored preferences, or defaults when none were saved."""

        def job(backend: StorageBackend) -> Preferences:
            return self._codec.decode(
                Preferences, read_blob(backend, BlobKey.PREFERENCES, {}), key=BlobKey.PREFERENCES.value
            )

        return self._handle.submit("get_preferences", job)

    def set_preferences(self, preferences: Preferences) -> Future[None]:
        return self.set_blob(BlobKey.PREFERENCES, preferences)

    def update_preferences(self, **changes: Any) -> Future[Preferences]:
        """Apply ``changes`` (snake_case names) to the stored preferences and save them."""

        def job(backend: StorageBackend) -> Preferences:
            current = self._codec.decode(
                Preferences, read_blob(backend, BlobKey.PREFERENCES, {}), key=BlobKey.PREFERENCES.value
            )
            updated = Preferences.model_validate({**current.model_dump(), **changes})
            write_blob(backend, BlobKey.PREFERENCES, updated)
            logger.info("preferences_updated", changed=sorted(changes))
            return updated

        return self._write("update_preferences", job)

    def get_schema_version(self) -> Future[int]:
        return self._handle.submit("get_schema_version", read_schema_version)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def get_record_counts(self) -> Future[dict[str, int]]:
        """Number of stored daily reports and journal entries."""

        def job(backend: StorageBackend) -> dict[str, int]:
            reports = read_map(backend, BlobKey.REPORTS)
            journal = read_map(backend, BlobKey.JOURNAL)
            entries = sum(len(v) for v in journal.values() if isinstance(v, list))
            return {"reports": len(reports), "journalEntries": entries}

        return self._handle.submit("get_record_counts", job)

    def clear_all_data(self) -> Future[int]:
        """Remove the reports and journal maps. Preferences and settings stay."""
        return self.remove_blob(BlobKey.REPORTS, BlobKey.JOURNAL)
