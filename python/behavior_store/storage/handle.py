"""
Shared storage handle and asynchronous dispatch.

The handle is opened once at process start and passed to every store.
Each operation is queued on a single worker thread and returned to the
caller as a concurrent.futures.Future. One worker means operations run in
submission order, so a caller always observes its own earlier writes.

There is no cancellation: a caller that wants a timeout waits with
``future.result(timeout=...)`` and abandons the wait, while the operation
itself still runs to completion.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import TypeVar

from behavior_store.exceptions import BehaviorStoreError, StorageUnavailable
from behavior_store.logging import get_logger, with_context
from behavior_store.storage.backend import StorageBackend

logger = get_logger(__name__)

T = TypeVar("T")


class HandleState(str, Enum):
    """Lifecycle of a store handle."""

    OPENING = "opening"
    READY = "ready"
    CLOSED = "closed"


class StoreHandle:
    """Owns the backend and the worker that serializes access to it."""

    def __init__(self, backend: StorageBackend, name: str = "behavior-store") -> None:
        self._backend = backend
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._state = HandleState.OPENING
        self._lock = threading.Lock()

    @property
    def state(self) -> HandleState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is HandleState.READY

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    def mark_ready(self) -> None:
        """Allow ordinary operations. Called once migrations have finished."""
        with self._lock:
            if self._state is HandleState.CLOSED:
                raise StorageUnavailable.closed("mark_ready")
            self._state = HandleState.READY
        logger.info("store_ready")

    def ensure_ready(self, operation: str, allow_opening: bool = False) -> None:
        """
        Raise StorageUnavailable unless ``operation`` may run now.

        Args:
            operation: Operation name for the error context.
            allow_opening: Permit the call while migrations are running.
        """
        state = self._state
        if state is HandleState.CLOSED:
            raise StorageUnavailable.closed(operation)
        if state is HandleState.OPENING and not allow_opening:
            raise StorageUnavailable.not_ready(state.value, operation)

    def submit(
        self,
        operation: str,
        job: Callable[[StorageBackend], T],
        allow_opening: bool = False,
    ) -> Future[T]:
        """
        Queue ``job`` against the backend.

        Readiness is checked here, synchronously, so nothing is queued for a
        store that cannot serve it.
        """
        with self._lock:
            self.ensure_ready(operation, allow_opening=allow_opening)
            return self._executor.submit(self._run, operation, job)

    def _run(self, operation: str, job: Callable[[StorageBackend], T]) -> T:
        with with_context(operation=operation):
            try:
                return job(self._backend)
            except BehaviorStoreError as e:
                logger.warning("store_operation_failed", **e.to_dict())
                raise
            except Exception as e:
                logger.exception("store_operation_crashed", error=str(e))
                raise

    def close(self) -> None:
        """Stop accepting work, drain queued operations, and close the backend."""
        with self._lock:
            if self._state is HandleState.CLOSED:
                return
            self._state = HandleState.CLOSED
        self._executor.shutdown(wait=True)
        self._backend.close()
        logger.info("store_closed")
