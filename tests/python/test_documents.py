"""
Unit tests for the document store.

Tests cover:
- Upsert semantics and primary keys per collection
- Date-range scans over daily metrics
- Secondary index queries and bounded recency
- Immutability of pattern start times and reports
- Skipping of stored records that fail validation
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from conftest import make_metric, make_pattern, make_report, make_site

from behavior_store.exceptions import (
    DecodeError,
    ImmutableRecordError,
    InvalidKeyError,
    StorageIOError,
)
from behavior_store.models import BehaviorType, SiteCategory
from behavior_store.storage.backend import DocumentRow, SQLiteBackend
from behavior_store.storage.documents import (
    COLLECTIONS,
    Collection,
    DocumentStore,
    get_spec,
)
from behavior_store.storage.handle import StoreHandle

TIMEOUT = 5


@pytest.fixture
def documents(handle: StoreHandle) -> DocumentStore:
    return DocumentStore(handle)


class TestCollectionSpecs:
    """Tests for collection definitions."""

    def test_every_collection_defined(self) -> None:
        """Each collection has a spec."""
        assert set(COLLECTIONS) == set(Collection)

    def test_pattern_indexes(self) -> None:
        """Patterns are indexed by type and start time."""
        spec = get_spec("patterns")

        assert set(spec.indexes) == {"type", "startTime"}
        assert spec.immutable_fields == ("start_time",)

    def test_index_values_use_wire_names(self) -> None:
        """Enum values are indexed by their string value."""
        spec = get_spec(Collection.PATTERNS)

        values = spec.index_values(make_pattern(start_time=7))

        assert values == {"type": "doomscrolling", "startTime": 7}

    def test_unknown_collection(self) -> None:
        """Unknown collection names are rejected."""
        with pytest.raises(InvalidKeyError):
            get_spec("journal")


class TestMetrics:
    """Tests for daily metrics."""

    def test_round_trip(self, documents: DocumentStore) -> None:
        """A stored metric reads back equal."""
        metric = make_metric("2025-01-01")

        documents.save_metrics(metric).result(TIMEOUT)

        assert documents.get_metrics("2025-01-01").result(TIMEOUT) == metric

    def test_missing_returns_none(self, documents: DocumentStore) -> None:
        """Absent keys resolve to None."""
        assert documents.get_metrics("2030-01-01").result(TIMEOUT) is None

    def test_upsert_replaces(self, documents: DocumentStore) -> None:
        """A second write for the same date replaces the first."""
        documents.save_metrics(make_metric("2025-01-01", interventions=1)).result(TIMEOUT)
        documents.save_metrics(make_metric("2025-01-01", interventions=5)).result(TIMEOUT)

        stored = documents.get_metrics("2025-01-01").result(TIMEOUT)

        assert stored.interventions == 5
        assert documents.count(Collection.METRICS).result(TIMEOUT) == 1

    def test_range(self, documents: DocumentStore) -> None:
        """Range scans are inclusive and chronological."""
        for day in ["2025-01-05", "2025-01-01", "2025-01-03", "2025-02-01"]:
            documents.save_metrics(make_metric(day)).result(TIMEOUT)

        found = documents.get_metrics_range("2025-01-01", "2025-01-05").result(TIMEOUT)

        assert [m.date for m in found] == ["2025-01-01", "2025-01-03", "2025-01-05"]

    def test_inverted_range_is_empty(self, documents: DocumentStore) -> None:
        """lower > upper yields no records."""
        documents.save_metrics(make_metric("2025-01-02")).result(TIMEOUT)

        assert documents.get_metrics_range("2025-01-03", "2025-01-01").result(TIMEOUT) == []

    @pytest.mark.parametrize("bad", ["2025-1-1", "01-01-2025", "yesterday"])
    def test_bad_date_rejected_synchronously(self, documents: DocumentStore, bad: str) -> None:
        """Malformed date keys never reach the medium."""
        with pytest.raises(InvalidKeyError):
            documents.get_metrics(bad)
        with pytest.raises(InvalidKeyError):
            documents.get_metrics_range(bad, "2025-01-01")


class TestPatterns:
    """Tests for behavior patterns."""

    def test_query_by_type(self, documents: DocumentStore) -> None:
        """Type lookups return every matching pattern."""
        documents.save_pattern(make_pattern("a", pattern_type=BehaviorType.DOOMSCROLLING)).result(TIMEOUT)
        documents.save_pattern(make_pattern("b", pattern_type=BehaviorType.MULTITASKING)).result(TIMEOUT)
        documents.save_pattern(make_pattern("c", pattern_type=BehaviorType.DOOMSCROLLING)).result(TIMEOUT)

        found = documents.get_patterns_by_type("doomscrolling").result(TIMEOUT)

        assert sorted(p.id for p in found) == ["a", "c"]

    def test_recent_patterns_bounded(self, documents: DocumentStore) -> None:
        """Recency returns the newest records, newest first, capped at limit."""
        for i in range(10):
            documents.save_pattern(make_pattern(f"p-{i}", start_time=1_000 + i)).result(TIMEOUT)

        recent = documents.get_recent_patterns(limit=3).result(TIMEOUT)

        assert [p.id for p in recent] == ["p-9", "p-8", "p-7"]

    def test_recent_patterns_default_limit(self, documents: DocumentStore) -> None:
        """The default limit is 50."""
        for i in range(60):
            documents.save_pattern(make_pattern(f"p-{i:02d}", start_time=i)).result(TIMEOUT)

        assert len(documents.get_recent_patterns().result(TIMEOUT)) == 50

    def test_recent_with_zero_limit(self, documents: DocumentStore) -> None:
        """A non-positive limit returns nothing."""
        documents.save_pattern(make_pattern()).result(TIMEOUT)

        assert documents.get_recent_patterns(limit=0).result(TIMEOUT) == []

    def test_unknown_index(self, documents: DocumentStore) -> None:
        """Querying an undeclared index is rejected."""
        with pytest.raises(InvalidKeyError):
            documents.query_by_index(Collection.PATTERNS, "duration", 5)

    def test_start_time_is_immutable(self, documents: DocumentStore) -> None:
        """Rewriting a pattern with a new start time fails."""
        documents.save_pattern(make_pattern("p-1", start_time=100)).result(TIMEOUT)

        with pytest.raises(ImmutableRecordError):
            documents.save_pattern(make_pattern("p-1", start_time=200)).result(TIMEOUT)

        assert documents.get_pattern("p-1").result(TIMEOUT).start_time == 100

    def test_other_fields_may_change(self, documents: DocumentStore) -> None:
        """Duration can be updated while the start time stays."""
        documents.save_pattern(make_pattern("p-1", start_time=100, duration=10)).result(TIMEOUT)
        documents.save_pattern(make_pattern("p-1", start_time=100, duration=99)).result(TIMEOUT)

        assert documents.get_pattern("p-1").result(TIMEOUT).duration == 99

    def test_wrong_record_type(self, documents: DocumentStore) -> None:
        """A record must match its collection."""
        with pytest.raises(InvalidKeyError):
            documents.put(Collection.PATTERNS, make_metric())


class TestSites:
    """Tests for site activity."""

    def test_by_category(self, documents: DocumentStore) -> None:
        """Category lookups use the category index."""
        documents.save_site_activity(make_site("a.com", SiteCategory.WORK)).result(TIMEOUT)
        documents.save_site_activity(make_site("b.com", SiteCategory.SOCIAL)).result(TIMEOUT)
        documents.save_site_activity(make_site("c.com", None)).result(TIMEOUT)

        social = documents.get_sites_by_category(SiteCategory.SOCIAL).result(TIMEOUT)

        assert [s.domain for s in social] == ["b.com"]
        assert len(documents.get_all_sites().result(TIMEOUT)) == 3

    def test_site_activity_lookup(self, documents: DocumentStore) -> None:
        """Sites are keyed by domain."""
        site = make_site("a.com")
        documents.save_site_activity(site).result(TIMEOUT)

        assert documents.get_site_activity("a.com").result(TIMEOUT) == site


class TestReports:
    """Tests for reports."""

    def test_identical_rewrite_is_noop(self, documents: DocumentStore) -> None:
        """Writing the same report twice succeeds."""
        report = make_report()
        documents.save_report(report).result(TIMEOUT)
        documents.save_report(report).result(TIMEOUT)

        assert documents.get_report(report.id).result(TIMEOUT) == report

    def test_changed_report_rejected(self, documents: DocumentStore) -> None:
        """Reports are immutable once written."""
        documents.save_report(make_report("r-1")).result(TIMEOUT)
        changed = make_report("r-1").model_copy(update={"insights": ["different"]})

        with pytest.raises(ImmutableRecordError):
            documents.save_report(changed).result(TIMEOUT)

    def test_all_reports_oldest_first(self, documents: DocumentStore) -> None:
        """get_all_reports orders by generation time."""
        documents.save_report(make_report("late", generated_at=3_000)).result(TIMEOUT)
        documents.save_report(make_report("early", generated_at=1_000)).result(TIMEOUT)

        assert [r.id for r in documents.get_all_reports().result(TIMEOUT)] == ["early", "late"]


class TestDecodeFailures:
    """Tests for stored values that fail validation."""

    def test_get_raises_decode_error(self, documents: DocumentStore, handle: StoreHandle) -> None:
        """A point read of a broken record surfaces DecodeError."""
        handle.backend.put_document(
            "metrics", DocumentRow(key="2025-01-02", body='{"date": "2025-01-02"}')
        )

        with pytest.raises(DecodeError):
            documents.get_metrics("2025-01-02").result(TIMEOUT)

    def test_range_skips_broken_records(self, documents: DocumentStore, handle: StoreHandle) -> None:
        """Scans skip records that fail validation instead of coercing them."""
        documents.save_metrics(make_metric("2025-01-01")).result(TIMEOUT)
        documents.save_metrics(make_metric("2025-01-02")).result(TIMEOUT)
        handle.backend.put_document(
            "metrics", DocumentRow(key="2025-01-03", body='{"date": "2025-01-03", "totalTime": "lots"}')
        )

        found = documents.get_metrics_range("2025-01-01", "2025-01-31").result(TIMEOUT)

        assert [m.date for m in found] == ["2025-01-01", "2025-01-02"]

    def test_recent_skips_broken_and_still_fills_limit(
        self, documents: DocumentStore, handle: StoreHandle
    ) -> None:
        """Invalid rows do not count toward the limit."""
        for i in range(5):
            documents.save_pattern(make_pattern(f"p-{i}", start_time=i)).result(TIMEOUT)
        broken = get_spec("patterns").to_row(make_pattern("bad", start_time=100), documents._codec)
        broken.body = '{"id": "bad"}'
        handle.backend.put_document("patterns", broken)

        recent = documents.get_recent_patterns(limit=2).result(TIMEOUT)

        assert [p.id for p in recent] == ["p-4", "p-3"]


class TestHousekeeping:
    """Tests for deletes and clears."""

    def test_delete(self, documents: DocumentStore) -> None:
        """delete removes one record."""
        documents.save_pattern(make_pattern("p-1")).result(TIMEOUT)

        assert documents.delete(Collection.PATTERNS, "p-1").result(TIMEOUT) is True
        assert documents.get_pattern("p-1").result(TIMEOUT) is None

    def test_clear_all_data(self, documents: DocumentStore) -> None:
        """clear_all_data empties every collection."""
        documents.save_metrics(make_metric()).result(TIMEOUT)
        documents.save_pattern(make_pattern()).result(TIMEOUT)
        documents.save_site_activity(make_site()).result(TIMEOUT)
        documents.save_report(make_report()).result(TIMEOUT)

        removed = documents.clear_all_data().result(TIMEOUT)

        assert removed == {"metrics": 1, "patterns": 1, "sites": 1, "reports": 1}
        assert documents.get_all(Collection.METRICS).result(TIMEOUT) == []


class TestWriteHooks:
    """Tests for the post-write hook and failure propagation."""

    def test_on_write_called_after_success(self, handle: StoreHandle) -> None:
        """Successful writes invoke the hook."""
        hook = MagicMock()
        documents = DocumentStore(handle, on_write=hook)

        documents.save_metrics(make_metric()).result(TIMEOUT)
        handle.submit("barrier", lambda b: None).result(TIMEOUT)

        hook.assert_called()

    def test_on_write_not_called_after_failure(self, handle: StoreHandle) -> None:
        """Failed writes skip the hook."""
        hook = MagicMock()
        documents = DocumentStore(handle, on_write=hook)
        documents.save_pattern(make_pattern("p-1", start_time=1)).result(TIMEOUT)
        hook.reset_mock()

        future = documents.save_pattern(make_pattern("p-1", start_time=2))
        with pytest.raises(ImmutableRecordError):
            future.result(TIMEOUT)
        handle.submit("barrier", lambda b: None).result(TIMEOUT)

        hook.assert_not_called()

    def test_medium_failure_surfaces(self) -> None:
        """Medium errors come back from the future unchanged."""
        medium = MagicMock(spec=SQLiteBackend)
        medium.put_document.side_effect = StorageIOError.write_failed("metrics/x", "disk")
        failing = StoreHandle(medium)
        failing.mark_ready()
        try:
            with pytest.raises(StorageIOError):
                DocumentStore(failing).save_metrics(make_metric()).result(TIMEOUT)
        finally:
            failing.close()
