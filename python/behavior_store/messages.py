"""
Request/response contract between the store and its callers.

The store answers read-only aggregate queries by message type. The
aggregation itself belongs to external collaborators, which register a
handler per message type. A handler receives the open store and the
request payload and returns either a value or a Future of one.

A failing handler never propagates to the caller: the failure is logged
and the response degrades to an empty result with the error attached, so
a UI surface can render "no data" instead of breaking.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import Field, ValidationError, model_validator

from behavior_store.exceptions import BehaviorStoreError, ErrorCode
from behavior_store.logging import get_logger
from behavior_store.models import StoreModel

if TYPE_CHECKING:
    from behavior_store.service import BehaviorDataStore

logger = get_logger(__name__)

DEFAULT_HANDLER_TIMEOUT = 10.0


class MessageType(str, Enum):
    """Message type names shared with the extension surfaces."""

    GET_PRODUCTIVITY_STATS = "GET_PRODUCTIVITY_STATS"
    GET_HISTORICAL_ACTIVITY = "GET_HISTORICAL_ACTIVITY"
    GET_KNOWLEDGE_GRAPH = "GET_KNOWLEDGE_GRAPH"
    GET_RAG_CONTEXT = "GET_RAG_CONTEXT"


class StoreRequest(StoreModel):
    """
    A request from a caller context.

    Callers may send parameters either under "payload" or beside "type"
    ({"type": "GET_HISTORICAL_ACTIVITY", "timeRange": "week"}).
    """

    type: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _inline_payload(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and "payload" not in data:
            extras = {k: v for k, v in data.items() if k != "type"}
            return {"type": data.get("type"), "payload": extras}
        return data


class StoreResponse(StoreModel):
    """Reply to a StoreRequest."""

    success: bool
    data: Any = Field(default_factory=dict)
    error: dict[str, Any] | None = None

    @classmethod
    def ok(cls, data: Any) -> StoreResponse:
        return cls(success=True, data=data if data is not None else {})

    @classmethod
    def failed(cls, error_code: ErrorCode, message: str) -> StoreResponse:
        return cls(
            success=False,
            data={},
            error={"error_code": error_code.value, "message": message},
        )


Handler = Callable[["BehaviorDataStore", dict[str, Any]], Any]


@dataclass
class RouterMetrics:
    """Counters for dispatched requests."""

    requests_total: int = 0
    requests_success: int = 0
    requests_failed: int = 0
    start_time: float = field(default_factory=time.time)
    last_request_time: float | None = None

    def record_request(self, success: bool) -> None:
        """Record a request."""
        self.requests_total += 1
        if success:
            self.requests_success += 1
        else:
            self.requests_failed += 1
        self.last_request_time = time.time()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "requests_total": self.requests_total,
            "requests_success": self.requests_success,
            "requests_failed": self.requests_failed,
            "uptime_seconds": round(time.time() - self.start_time, 2),
            "last_request_time": self.last_request_time,
        }


class RequestRouter:
    """Routes typed requests to registered aggregation handlers."""

    def __init__(self, store: BehaviorDataStore, timeout: float = DEFAULT_HANDLER_TIMEOUT) -> None:
        """
        Initialize the router.

        Args:
            store: Open store passed to every handler.
            timeout: Seconds to wait when a handler returns a Future.
        """
        self._store = store
        self._timeout = timeout
        self._handlers: dict[str, Handler] = {}
        self._metrics = RouterMetrics()
        self._lock = threading.Lock()

    @property
    def metrics(self) -> RouterMetrics:
        return self._metrics

    def register(self, message_type: MessageType | str, handler: Handler) -> None:
        """Register (or replace) the handler for ``message_type``."""
        name = message_type.value if isinstance(message_type, MessageType) else str(message_type)
        if name in self._handlers:
            logger.warning("handler_replaced", message_type=name)
        self._handlers[name] = handler
        logger.debug("handler_registered", message_type=name)

    def registered_types(self) -> list[str]:
        return sorted(self._handlers)

    def dispatch(self, request: StoreRequest | Mapping[str, Any]) -> StoreResponse:
        """Answer ``request``. Never raises; failures come back in the response."""
        try:
            parsed = request if isinstance(request, StoreRequest) else StoreRequest.model_validate(request)
        except ValidationError as e:
            logger.warning("request_rejected", error=str(e))
            return self._record(StoreResponse.failed(ErrorCode.UNKNOWN, "malformed request"))

        handler = self._handlers.get(parsed.type)
        if handler is None:
            logger.warning("unsupported_message_type", message_type=parsed.type)
            return self._record(
                StoreResponse.failed(ErrorCode.UNKNOWN, f"unsupported message type: {parsed.type}")
            )

        start = time.perf_counter()
        try:
            result = handler(self._store, parsed.payload)
            if isinstance(result, Future):
                result = result.result(timeout=self._timeout)
        except BehaviorStoreError as e:
            logger.warning("request_failed", message_type=parsed.type, **e.to_dict())
            return self._record(StoreResponse.failed(e.error_code, e.message))
        except FutureTimeoutError:
            logger.warning("request_timed_out", message_type=parsed.type, timeout=self._timeout)
            return self._record(StoreResponse.failed(ErrorCode.UNKNOWN, "request timed out"))
        except Exception as e:
            logger.exception("request_handler_crashed", message_type=parsed.type, error=str(e))
            return self._record(StoreResponse.failed(ErrorCode.UNKNOWN, str(e)))

        logger.debug(
            "request_handled",
            message_type=parsed.type,
            duration_seconds=round(time.perf_counter() - start, 3),
        )
        return self._record(StoreResponse.ok(result))

    def _record(self, response: StoreResponse) -> StoreResponse:
        with self._lock:
            self._metrics.record_request(response.success)
        return response
