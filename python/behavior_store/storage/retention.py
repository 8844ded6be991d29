"""
Retention sweeps for date-partitioned behavior data.

A sweep computes ``cutoff = today - window_days`` and removes:
- daily metrics whose date key sorts before the cutoff
- behavior patterns whose startTime is before the cutoff (epoch ms, UTC midnight)
- reports whose generatedAt is before the cutoff
- reports-by-date and journal-by-date blob entries keyed before the cutoff
- site activity last visited before the cutoff, only when enabled

Deletion is defined purely by comparison against current data, with no
persisted "last swept" marker, so an interrupted sweep is finished by the
next one. A failing target is logged and recorded; the remaining targets
still run.

Design Patterns:
- Observer Pattern: Notify on retention events
- Template Method: Common sweep workflow over targets
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Protocol

from behavior_store.config import RetentionSettings
from behavior_store.exceptions import BehaviorStoreError
from behavior_store.logging import get_logger
from behavior_store.storage.backend import StorageBackend
from behavior_store.storage.blobs import BlobKey, read_blob, read_map, write_blob
from behavior_store.storage.documents import Collection
from behavior_store.storage.handle import StoreHandle

logger = get_logger(__name__)


class RetentionEventType(str, Enum):
    """Types of retention events."""

    SWEEP_STARTED = "sweep_started"
    RECORDS_DELETED = "records_deleted"
    SWEEP_COMPLETED = "sweep_completed"
    SWEEP_ERROR = "sweep_error"


@dataclass
class RetentionEvent:
    """Event emitted during a retention sweep."""

    event_type: RetentionEventType
    target: str | None = None
    deleted: int = 0
    cutoff: str | None = None
    message: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "event_type": self.event_type.value,
            "target": self.target,
            "deleted": self.deleted,
            "cutoff": self.cutoff,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
        }


class RetentionObserver(Protocol):
    """Protocol for retention event observers."""

    def on_retention_event(self, event: RetentionEvent) -> None:
        """Handle a retention event."""
        ...


@dataclass
class RetentionResult:
    """Result of a retention sweep."""

    cutoff: str
    window_days: int
    deleted: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: datetime | None = None

    @property
    def success(self) -> bool:
        """Check if every target was swept without errors."""
        return len(self.errors) == 0

    @property
    def total_deleted(self) -> int:
        return sum(self.deleted.values())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "cutoff": self.cutoff,
            "window_days": self.window_days,
            "deleted": self.deleted,
            "total_deleted": self.total_deleted,
            "errors": self.errors,
            "error_count": len(self.errors),
            "duration_seconds": round(self.duration_seconds, 3),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "success": self.success,
        }


def compute_cutoff(window_days: int, today: date) -> str:
    """Cutoff date key: ``today - window_days`` as YYYY-MM-DD."""
    return (today - timedelta(days=window_days)).isoformat()


def cutoff_epoch_ms(cutoff: str) -> int:
    """Epoch milliseconds of the cutoff day's UTC midnight."""
    midnight = datetime.combine(date.fromisoformat(cutoff), datetime.min.time(), tzinfo=timezone.utc)
    return int(midnight.timestamp() * 1000)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _prune_map(backend: StorageBackend, key: BlobKey, cutoff: str) -> int:
    entries = read_map(backend, key)
    stale = [d for d in entries if d < cutoff]
    if not stale:
        return 0
    for d in stale:
        del entries[d]
    write_blob(backend, key, entries)
    return len(stale)


class RetentionManager:
    """
    Applies the retention window to both stores.

    Runs either on demand (apply_retention) or opportunistically after
    writes (maybe_schedule), throttled by ``sweep_interval_seconds``.
    """

    def __init__(
        self,
        handle: StoreHandle,
        settings: RetentionSettings | None = None,
        observers: Sequence[RetentionObserver] | None = None,
        clock: Callable[[], date] | None = None,
    ) -> None:
        """
        Initialize the retention manager.

        Args:
            handle: Shared store handle.
            settings: Retention configuration.
            observers: Event observers to notify.
            clock: Returns "today"; defaults to the current UTC date.
        """
        self._handle = handle
        self._settings = settings or RetentionSettings()
        self._observers: list[RetentionObserver] = list(observers) if observers else []
        self._clock = clock or _utc_today
        self._schedule_lock = threading.Lock()
        # The first opportunistic sweep waits one full interval after start.
        self._last_scheduled = time.monotonic()
        self._pending: Future[RetentionResult] | None = None

        logger.info(
            "retention_manager_initialized",
            default_days=self._settings.default_days,
            sweep_interval_seconds=self._settings.sweep_interval_seconds,
            include_site_activity=self._settings.include_site_activity,
        )

    def add_observer(self, observer: RetentionObserver) -> None:
        """Add an event observer."""
        self._observers.append(observer)

    def remove_observer(self, observer: RetentionObserver) -> None:
        """Remove an event observer."""
        if observer in self._observers:
            self._observers.remove(observer)

    def _notify_observers(self, event: RetentionEvent) -> None:
        for observer in self._observers:
            try:
                observer.on_retention_event(event)
            except Exception as e:
                logger.warning(
                    "observer_notification_failed",
                    observer=type(observer).__name__,
                    error=str(e),
                )

    def _targets(self, cutoff: str) -> list[tuple[str, Callable[[StorageBackend], int]]]:
        cutoff_ms = cutoff_epoch_ms(cutoff)
        targets: list[tuple[str, Callable[[StorageBackend], int]]] = [
            (
                Collection.METRICS.value,
                lambda b: b.delete_where_key_below(Collection.METRICS.value, cutoff),
            ),
            (
                Collection.PATTERNS.value,
                lambda b: b.delete_where_index_below(Collection.PATTERNS.value, "startTime", cutoff_ms),
            ),
            (
                Collection.REPORTS.value,
                lambda b: b.delete_where_index_below(Collection.REPORTS.value, "generatedAt", cutoff_ms),
            ),
            (BlobKey.REPORTS.value, lambda b: _prune_map(b, BlobKey.REPORTS, cutoff)),
            (BlobKey.JOURNAL.value, lambda b: _prune_map(b, BlobKey.JOURNAL, cutoff)),
        ]
        if self._settings.include_site_activity:
            targets.append(
                (
                    Collection.SITES.value,
                    lambda b: b.delete_where_index_below(Collection.SITES.value, "lastVisit", cutoff_ms),
                )
            )
        return targets

    def _resolve_window(self, backend: StorageBackend, window_days: int | None) -> int:
        if window_days is not None:
            return window_days
        try:
            preferences = read_blob(backend, BlobKey.PREFERENCES, {})
        except BehaviorStoreError as e:
            logger.warning("retention_preferences_unreadable", error=str(e))
            return self._settings.default_days
        days = preferences.get("dataRetentionDays") if isinstance(preferences, dict) else None
        if isinstance(days, int) and not isinstance(days, bool) and days >= 0:
            return days
        return self._settings.default_days

    def _sweep(self, backend: StorageBackend, window_days: int | None, today: date | None) -> RetentionResult:
        start = time.perf_counter()
        window = self._resolve_window(backend, window_days)
        cutoff = compute_cutoff(window, today or self._clock())
        result = RetentionResult(cutoff=cutoff, window_days=window)

        self._notify_observers(
            RetentionEvent(
                event_type=RetentionEventType.SWEEP_STARTED,
                cutoff=cutoff,
                message=f"Starting retention sweep ({window} days)",
            )
        )
        logger.info("retention_started", cutoff=cutoff, window_days=window)

        for target, delete in self._targets(cutoff):
            try:
                deleted = delete(backend)
            except BehaviorStoreError as e:
                # Left in place; the next sweep re-evaluates it.
                result.errors.append(f"{target}: {e}")
                self._notify_observers(
                    RetentionEvent(
                        event_type=RetentionEventType.SWEEP_ERROR,
                        target=target,
                        cutoff=cutoff,
                        message=f"Failed to sweep {target}",
                        error=str(e),
                    )
                )
                logger.warning("retention_target_failed", target=target, **e.to_dict())
                continue

            result.deleted[target] = deleted
            if deleted:
                self._notify_observers(
                    RetentionEvent(
                        event_type=RetentionEventType.RECORDS_DELETED,
                        target=target,
                        deleted=deleted,
                        cutoff=cutoff,
                        message=f"Deleted {deleted} from {target}",
                    )
                )
                logger.debug("retention_target_swept", target=target, deleted=deleted)

        result.end_time = datetime.now(timezone.utc)
        result.duration_seconds = time.perf_counter() - start

        self._notify_observers(
            RetentionEvent(
                event_type=RetentionEventType.SWEEP_COMPLETED,
                deleted=result.total_deleted,
                cutoff=cutoff,
                message=f"Retention completed: {result.total_deleted} records deleted",
            )
        )
        logger.info("retention_completed", result=result.to_dict())
        return result

    def apply_retention(
        self, window_days: int | None = None, today: date | None = None
    ) -> Future[RetentionResult]:
        """
        Sweep everything older than ``window_days``.

        Args:
            window_days: Retention window; defaults to the stored preference
                (dataRetentionDays), then to the configured default.
            today: Reference day; defaults to the clock.
        """
        if window_days is not None and window_days < 0:
            msg = f"window_days must be >= 0, got {window_days}"
            raise ValueError(msg)
        return self._handle.submit(
            "apply_retention",
            lambda backend: self._sweep(backend, window_days, today),
        )

    def maybe_schedule(self) -> Future[RetentionResult] | None:
        """
        Queue a background sweep unless one ran recently or is still pending.

        Returns the queued future, or None if nothing was scheduled.
        """
        if not self._handle.is_ready:
            return None
        with self._schedule_lock:
            if self._pending is not None and not self._pending.done():
                return None
            now = time.monotonic()
            if now - self._last_scheduled < self._settings.sweep_interval_seconds:
                return None
            try:
                self._pending = self.apply_retention()
            except BehaviorStoreError as e:
                logger.debug("retention_not_scheduled", reason=str(e))
                return None
            self._last_scheduled = now
            logger.debug("retention_scheduled")
            return self._pending
