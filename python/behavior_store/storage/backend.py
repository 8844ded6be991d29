"""
Storage medium interface and its SQLite adapter.

StorageBackend names exactly the operations the document and key-value
stores need from the device's embedded storage. SQLiteBackend implements
it with three tables:

- documents: one row per (collection, key) holding the encoded record
- document_index: secondary index entries (collection, index_name, value, key)
- blobs: whole-value key-value entries

Every write runs in its own transaction, so each put/delete is atomic at
the record level. Nothing here retries; failures surface as StorageIOError
(or QuotaExceeded when the medium is full).
"""

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Generator, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from behavior_store.exceptions import QuotaExceeded, StorageIOError
from behavior_store.logging import get_logger

if TYPE_CHECKING:
    from behavior_store.config import StorageConfig

logger = get_logger(__name__)

MEMORY_PATH = ":memory:"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
  collection TEXT NOT NULL,
  key TEXT NOT NULL,
  body TEXT NOT NULL,
  PRIMARY KEY (collection, key)
) WITHOUT ROWID;

CREATE TABLE IF NOT EXISTS document_index (
  collection TEXT NOT NULL,
  index_name TEXT NOT NULL,
  value NOT NULL,
  key TEXT NOT NULL,
  PRIMARY KEY (collection, index_name, value, key)
) WITHOUT ROWID;

CREATE INDEX IF NOT EXISTS idx_document_index_key ON document_index(collection, key);

CREATE TABLE IF NOT EXISTS blobs (
  key TEXT PRIMARY KEY,
  body TEXT NOT NULL
) WITHOUT ROWID;
"""


@dataclass
class DocumentRow:
    """An encoded record plus the values it contributes to secondary indexes."""

    key: str
    body: str
    index_values: dict[str, Any] = field(default_factory=dict)


class StorageBackend(ABC):
    """Operations the stores require from the embedded storage medium."""

    @property
    @abstractmethod
    def quota_bytes(self) -> int | None:
        """Device-reported quota, or None when the device does not report one."""

    @abstractmethod
    def put_document(self, collection: str, row: DocumentRow) -> None:
        """Insert or fully replace a record and its index entries."""

    @abstractmethod
    def get_document(self, collection: str, key: str) -> str | None:
        """Return the stored body for ``key`` or None."""

    @abstractmethod
    def delete_document(self, collection: str, key: str) -> bool:
        """Delete a record. Returns True if it existed."""

    @abstractmethod
    def range_documents(self, collection: str, lower: str, upper: str) -> list[tuple[str, str]]:
        """(key, body) pairs with lower <= key <= upper, ascending by key."""

    @abstractmethod
    def documents_by_index(self, collection: str, index_name: str, value: Any) -> list[tuple[str, str]]:
        """(key, body) pairs whose index entry equals ``value``."""

    @abstractmethod
    def scan_index(
        self, collection: str, index_name: str, descending: bool = True
    ) -> Generator[tuple[str, str], None, None]:
        """Lazily walk records in index order. Stop iterating to stop reading."""

    @abstractmethod
    def all_documents(self, collection: str) -> list[tuple[str, str]]:
        """Every (key, body) pair, ascending by key."""

    @abstractmethod
    def count_documents(self, collection: str) -> int:
        """Number of records in a collection."""

    @abstractmethod
    def delete_where_key_below(self, collection: str, bound: str) -> int:
        """Delete records whose key is strictly less than ``bound``."""

    @abstractmethod
    def delete_where_index_below(self, collection: str, index_name: str, bound: Any) -> int:
        """Delete records whose index value is strictly less than ``bound``."""

    @abstractmethod
    def clear_collection(self, collection: str) -> int:
        """Delete every record in a collection."""

    @abstractmethod
    def get_blob(self, key: str) -> str | None:
        """Return the stored blob text or None."""

    @abstractmethod
    def set_blob(self, key: str, body: str) -> None:
        """Replace a blob's whole value."""

    @abstractmethod
    def remove_blobs(self, keys: Sequence[str]) -> int:
        """Remove blobs. Returns how many existed."""

    @abstractmethod
    def replace_all(
        self,
        collections: Mapping[str, Sequence[DocumentRow]],
        blobs: Mapping[str, str],
    ) -> None:
        """Atomically replace whole collections and blobs (all or nothing)."""

    @abstractmethod
    def bytes_in_use(self) -> int:
        """Bytes currently occupied by stored data."""

    @abstractmethod
    def close(self) -> None:
        """Release the medium."""


def _is_full(error: sqlite3.Error) -> bool:
    code = getattr(error, "sqlite_errorcode", None)
    if code is not None:
        return (code & 0xFF) == sqlite3.SQLITE_FULL
    return "full" in str(error).lower()


class SQLiteBackend(StorageBackend):
    """
    SQLite adapter for StorageBackend.

    The connection is opened once and shared by every operation. When a
    quota is enforced, ``PRAGMA max_page_count`` caps the file so SQLite
    itself rejects writes past the quota with SQLITE_FULL.
    """

    def __init__(
        self,
        path: str | Path = MEMORY_PATH,
        quota_bytes: int | None = None,
        enforce_quota: bool = False,
        timeout_seconds: float = 5.0,
        enforced_default_bytes: int | None = None,
    ) -> None:
        """
        Open (and create if needed) the database.

        Args:
            path: Database file, or ':memory:'.
            quota_bytes: Device-reported quota (None if the device reports none).
            enforce_quota: Cap the database size at the quota.
            timeout_seconds: Busy timeout for the connection.
            enforced_default_bytes: Cap used when enforcing without a reported quota.
        """
        self._path = str(path)
        self._quota_bytes = quota_bytes
        self._lock = threading.RLock()

        if self._path != MEMORY_PATH:
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(
                self._path,
                timeout=timeout_seconds,
                isolation_level=None,
                check_same_thread=False,
            )
            self._conn.executescript(_SCHEMA)
            self._page_size = int(self._conn.execute("PRAGMA page_size").fetchone()[0])

            cap = quota_bytes or enforced_default_bytes
            self._enforced_cap = cap if enforce_quota else None
            if enforce_quota and cap:
                max_pages = max(cap // self._page_size, 1)
                self._conn.execute(f"PRAGMA max_page_count = {max_pages}")
        except sqlite3.DatabaseError as e:
            raise StorageIOError.corrupted(self._path, str(e)) from e

        logger.info(
            "sqlite_backend_opened",
            path=self._path,
            page_size=self._page_size,
            quota_bytes=quota_bytes,
            enforce_quota=enforce_quota,
        )

    @classmethod
    def from_config(cls, config: StorageConfig) -> SQLiteBackend:
        """Create a backend from storage configuration."""
        return cls(
            path=config.path,
            quota_bytes=config.quota_bytes,
            enforce_quota=config.enforce_quota,
            timeout_seconds=config.timeout_seconds,
            enforced_default_bytes=config.effective_quota_bytes,
        )

    @property
    def path(self) -> str:
        return self._path

    @property
    def quota_bytes(self) -> int | None:
        return self._quota_bytes

    def _storage_error(self, error: sqlite3.Error, target: str, write: bool) -> StorageIOError:
        if write and _is_full(error):
            quota = self._enforced_cap or self._quota_bytes or 0
            return QuotaExceeded.rejected(target, quota)
        if write:
            return StorageIOError.write_failed(target, str(error))
        return StorageIOError.read_failed(target, str(error))

    @contextmanager
    def _reading(self, target: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as e:
                raise self._storage_error(e, target, write=False) from e

    @contextmanager
    def _transaction(self, target: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                try:
                    yield self._conn
                except BaseException:
                    if self._conn.in_transaction:
                        self._conn.execute("ROLLBACK")
                    raise
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                raise self._storage_error(e, target, write=True) from e

    @staticmethod
    def _write_row(conn: sqlite3.Connection, collection: str, row: DocumentRow) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO documents (collection, key, body) VALUES (?, ?, ?)",
            (collection, row.key, row.body),
        )
        conn.execute(
            "DELETE FROM document_index WHERE collection = ? AND key = ?",
            (collection, row.key),
        )
        conn.executemany(
            "INSERT INTO document_index (collection, index_name, value, key) VALUES (?, ?, ?, ?)",
            [
                (collection, name, value, row.key)
                for name, value in row.index_values.items()
                if value is not None
            ],
        )

    def put_document(self, collection: str, row: DocumentRow) -> None:
        with self._transaction(f"{collection}/{row.key}") as conn:
            self._write_row(conn, collection, row)

    def get_document(self, collection: str, key: str) -> str | None:
        with self._reading(f"{collection}/{key}") as conn:
            found = conn.execute(
                "SELECT body FROM documents WHERE collection = ? AND key = ?",
                (collection, key),
            ).fetchone()
        return found[0] if found else None

    def delete_document(self, collection: str, key: str) -> bool:
        with self._transaction(f"{collection}/{key}") as conn:
            conn.execute(
                "DELETE FROM document_index WHERE collection = ? AND key = ?",
                (collection, key),
            )
            cursor = conn.execute(
                "DELETE FROM documents WHERE collection = ? AND key = ?",
                (collection, key),
            )
        return cursor.rowcount > 0

    def range_documents(self, collection: str, lower: str, upper: str) -> list[tuple[str, str]]:
        with self._reading(collection) as conn:
            return conn.execute(
                "SELECT key, body FROM documents "
                "WHERE collection = ? AND key >= ? AND key <= ? ORDER BY key ASC",
                (collection, lower, upper),
            ).fetchall()

    def documents_by_index(self, collection: str, index_name: str, value: Any) -> list[tuple[str, str]]:
        with self._reading(f"{collection}.{index_name}") as conn:
            return conn.execute(
                "SELECT d.key, d.body FROM document_index i "
                "JOIN documents d ON d.collection = i.collection AND d.key = i.key "
                "WHERE i.collection = ? AND i.index_name = ? AND i.value = ?",
                (collection, index_name, value),
            ).fetchall()

    def scan_index(
        self, collection: str, index_name: str, descending: bool = True
    ) -> Generator[tuple[str, str], None, None]:
        order = "DESC" if descending else "ASC"
        target = f"{collection}.{index_name}"
        with self._reading(target) as conn:
            cursor = conn.execute(
                "SELECT d.key, d.body FROM document_index i "
                "JOIN documents d ON d.collection = i.collection AND d.key = i.key "
                "WHERE i.collection = ? AND i.index_name = ? "
                f"ORDER BY i.value {order}, i.key {order}",
                (collection, index_name),
            )
        try:
            while True:
                with self._reading(target):
                    batch = cursor.fetchmany(32)
                if not batch:
                    return
                yield from batch
        finally:
            cursor.close()

    def all_documents(self, collection: str) -> list[tuple[str, str]]:
        with self._reading(collection) as conn:
            return conn.execute(
                "SELECT key, body FROM documents WHERE collection = ? ORDER BY key ASC",
                (collection,),
            ).fetchall()

    def count_documents(self, collection: str) -> int:
        with self._reading(collection) as conn:
            return int(
                conn.execute(
                    "SELECT COUNT(*) FROM documents WHERE collection = ?", (collection,)
                ).fetchone()[0]
            )

    def delete_where_key_below(self, collection: str, bound: str) -> int:
        with self._transaction(collection) as conn:
            conn.execute(
                "DELETE FROM document_index WHERE collection = ? AND key < ?",
                (collection, bound),
            )
            cursor = conn.execute(
                "DELETE FROM documents WHERE collection = ? AND key < ?",
                (collection, bound),
            )
        return cursor.rowcount

    def delete_where_index_below(self, collection: str, index_name: str, bound: Any) -> int:
        with self._transaction(f"{collection}.{index_name}") as conn:
            keys = [
                k
                for (k,) in conn.execute(
                    "SELECT key FROM document_index "
                    "WHERE collection = ? AND index_name = ? AND value < ?",
                    (collection, index_name, bound),
                ).fetchall()
            ]
            for key in keys:
                conn.execute(
                    "DELETE FROM document_index WHERE collection = ? AND key = ?",
                    (collection, key),
                )
                conn.execute(
                    "DELETE FROM documents WHERE collection = ? AND key = ?",
                    (collection, key),
                )
        return len(keys)

    def clear_collection(self, collection: str) -> int:
        with self._transaction(collection) as conn:
            conn.execute("DELETE FROM document_index WHERE collection = ?", (collection,))
            cursor = conn.execute("DELETE FROM documents WHERE collection = ?", (collection,))
        return cursor.rowcount

    def get_blob(self, key: str) -> str | None:
        with self._reading(key) as conn:
            found = conn.execute("SELECT body FROM blobs WHERE key = ?", (key,)).fetchone()
        return found[0] if found else None

    def set_blob(self, key: str, body: str) -> None:
        with self._transaction(key) as conn:
            conn.execute("INSERT OR REPLACE INTO blobs (key, body) VALUES (?, ?)", (key, body))

    def remove_blobs(self, keys: Sequence[str]) -> int:
        removed = 0
        with self._transaction(",".join(keys)) as conn:
            for key in keys:
                removed += conn.execute("DELETE FROM blobs WHERE key = ?", (key,)).rowcount
        return removed

    def replace_all(
        self,
        collections: Mapping[str, Sequence[DocumentRow]],
        blobs: Mapping[str, str],
    ) -> None:
        with self._transaction("import") as conn:
            for collection, rows in collections.items():
                conn.execute("DELETE FROM document_index WHERE collection = ?", (collection,))
                conn.execute("DELETE FROM documents WHERE collection = ?", (collection,))
                for row in rows:
                    self._write_row(conn, collection, row)
            for key, body in blobs.items():
                conn.execute("INSERT OR REPLACE INTO blobs (key, body) VALUES (?, ?)", (key, body))

    def bytes_in_use(self) -> int:
        with self._reading("usage") as conn:
            page_count = int(conn.execute("PRAGMA page_count").fetchone()[0])
            free_pages = int(conn.execute("PRAGMA freelist_count").fetchone()[0])
        return (page_count - free_pages) * self._page_size

    def close(self) -> None:
        with self._lock:
            self._conn.close()
        logger.info("sqlite_backend_closed", path=self._path)
