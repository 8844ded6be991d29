"""Storage usage reporting against the medium's quota."""

from __future__ import annotations

from concurrent.futures import Future

from behavior_store.config import DEFAULT_QUOTA_BYTES
from behavior_store.logging import get_logger
from behavior_store.models import StorageUsage
from behavior_store.storage.backend import StorageBackend
from behavior_store.storage.handle import StoreHandle

logger = get_logger(__name__)


class QuotaReporter:
    """Reports bytes used and available on the storage medium."""

    def __init__(self, handle: StoreHandle, default_quota_bytes: int = DEFAULT_QUOTA_BYTES) -> None:
        self._handle = handle
        self._default_quota = default_quota_bytes

    def _measure(self, backend: StorageBackend) -> StorageUsage:
        used = backend.bytes_in_use()
        quota = backend.quota_bytes or self._default_quota
        usage = StorageUsage(
            bytes_used=used,
            bytes_available=max(quota - used, 0),
            percentage_used=(used / quota) * 100 if quota else 0.0,
        )
        if used >= quota:
            logger.warning("storage_quota_reached", bytes_used=used, quota_bytes=quota)
        return usage

    def usage(self) -> Future[StorageUsage]:
        """
        Resolve to the current usage.

        The quota is the medium's configured limit, or the default quota
        when the medium reports none.
        """
        return self._handle.submit("storage_usage", self._measure)
