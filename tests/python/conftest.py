"""Pytest configuration for Python tests."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import date

import pytest
import structlog

from behavior_store.config import Config, LoggingConfig, RetentionSettings, StorageConfig
from behavior_store.models import (
    BehaviorPattern,
    BehaviorType,
    DailyMetric,
    DailyReport,
    JournalEntry,
    Report,
    ReportPeriod,
    SiteActivity,
    SiteCategory,
)
from behavior_store.service import BehaviorDataStore
from behavior_store.storage.backend import SQLiteBackend
from behavior_store.storage.handle import StoreHandle


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


@pytest.fixture
def backend() -> Iterator[SQLiteBackend]:
    """In-memory SQLite backend without quota enforcement."""
    medium = SQLiteBackend()
    yield medium


@pytest.fixture
def handle(backend: SQLiteBackend) -> Iterator[StoreHandle]:
    """A ready handle over the in-memory backend."""
    store_handle = StoreHandle(backend)
    store_handle.mark_ready()
    yield store_handle
    store_handle.close()


@pytest.fixture
def opening_handle(backend: SQLiteBackend) -> Iterator[StoreHandle]:
    """A handle still in the opening state (migrations not yet run)."""
    store_handle = StoreHandle(backend)
    yield store_handle
    store_handle.close()


@pytest.fixture
def store_config() -> Config:
    """In-memory store, hourly background sweeps, no console logging."""
    return Config(
        storage=StorageConfig(path=":memory:", enforce_quota=False),
        retention=RetentionSettings(sweep_interval_seconds=3600.0),
        logging=LoggingConfig(console=False),
    )


@pytest.fixture
def store(store_config: Config) -> Iterator[BehaviorDataStore]:
    """An opened, migrated in-memory store."""
    opened = BehaviorDataStore.open(store_config, backend=SQLiteBackend())
    yield opened
    opened.close()


@pytest.fixture
def reset_logging() -> Iterator[None]:
    """Restore root handlers and structlog defaults after a logging test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


def epoch_ms(day: str, hour: int = 0) -> int:
    """Epoch milliseconds for ``hour`` o'clock UTC on ``day``."""
    parsed = date.fromisoformat(day)
    return (parsed.toordinal() - date(1970, 1, 1).toordinal()) * 86_400_000 + hour * 3_600_000


def make_metric(day: str = "2025-01-01", **overrides: object) -> DailyMetric:
    values: dict[str, object] = {
        "date": day,
        "total_time": 3_600_000,
        "productive_time": 1_800_000,
        "distracted_time": 900_000,
        "interventions": 2,
    }
    values.update(overrides)
    return DailyMetric(**values)


def make_pattern(
    pattern_id: str = "p-1",
    start_time: int = 1_735_689_600_000,
    pattern_type: BehaviorType = BehaviorType.DOOMSCROLLING,
    **overrides: object,
) -> BehaviorPattern:
    return BehaviorPattern(
        id=pattern_id,
        type=pattern_type,
        start_time=start_time,
        duration=overrides.pop("duration", 60_000),
        **overrides,
    )


def make_site(
    domain: str = "example.com",
    category: SiteCategory | None = SiteCategory.WORK,
    last_visit: int = 1_735_689_600_000,
) -> SiteActivity:
    return SiteActivity(
        domain=domain,
        url=f"https://{domain}/",
        title=domain,
        visit_count=3,
        total_time=120_000,
        last_visit=last_visit,
        category=category,
    )


def make_report(report_id: str = "r-1", generated_at: int = 1_735_689_600_000) -> Report:
    return Report(
        id=report_id,
        generated_at=generated_at,
        period=ReportPeriod(start=generated_at - 86_400_000, end=generated_at),
        summary={"totalTime": 3_600_000},
        insights=["Focus peaked in the morning"],
    )


def make_daily_report(day: str = "2025-01-01", score: float = 72.5) -> DailyReport:
    return DailyReport(
        id=f"daily-{day}",
        timestamp=epoch_ms(day, 23),
        date=day,
        productivity_score=score,
        total_time=3_600_000,
        productive_time=1_800_000,
        distracted_time=900_000,
    )


def make_entry(entry_id: str = "j-1", day: str = "2025-01-01", hour: int = 9) -> JournalEntry:
    return JournalEntry(
        id=entry_id,
        timestamp=epoch_ms(day, hour),
        date=day,
        note=f"note {entry_id}",
    )
