"""
In-memory index store for testing.

This module provides an IndexStore that keeps everything in process memory:
- Unit tests
- Integration tests of the catalog and backfill
- Local development without a data directory

Invariants:
    - All data is lost on process exit
    - Same ordering and idempotency guarantees as the SQLite store
    - Thread-safe for concurrent access

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the IndexStore protocol
    - Add features to help with testing scenarios (fault injection)
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Iterable, Iterator, Optional

from ..errors import StorageError
from ..schema.types import Database
from .base import IndexEntry

logger = logging.getLogger(__name__)


class InMemoryIndexStore:
    """In-memory implementation of IndexStore.

    Testing helpers:
        fail_next(count, transient): make the next `count` apply() calls
        raise StorageError, to exercise retry and downgrade paths.

    Example:
        >>> store = InMemoryIndexStore()
        >>> store.apply("users/fields/age", add=[(b"\\x20...", "u1")])
        >>> list(store.scan("users/fields/age"))
    """

    def __init__(self) -> None:
        self._entries: dict[str, dict[bytes, str]] = {}
        self._cursors: dict[str, str] = {}
        self._databases: dict[bytes, dict] = {}
        self._lock = threading.Lock()
        self._failures_remaining = 0
        self._failure_transient = True
        self.apply_calls = 0

    def fail_next(self, count: int = 1, transient: bool = True) -> None:
        """Make the next `count` apply() calls fail."""
        self._failures_remaining = count
        self._failure_transient = transient

    def apply(
        self,
        storage_id: str,
        remove: Iterable[bytes] = (),
        add: Iterable[IndexEntry] = (),
    ) -> None:
        remove = list(remove)
        add = list(add)
        with self._lock:
            self.apply_calls += 1
            if self._failures_remaining > 0:
                self._failures_remaining -= 1
                raise StorageError(
                    f"Injected failure applying keys to {storage_id}",
                    transient=self._failure_transient,
                )
            entries = self._entries.setdefault(storage_id, {})
            for key in remove:
                entries.pop(key, None)
            for key, doc_id in add:
                entries.setdefault(key, doc_id)

    def scan(
        self,
        storage_id: str,
        start: bytes = b"",
        end: Optional[bytes] = None,
    ) -> Iterator[IndexEntry]:
        with self._lock:
            snapshot = sorted(self._entries.get(storage_id, {}).items())
        for key, doc_id in snapshot:
            if key < start:
                continue
            if end is not None and key >= end:
                break
            yield key, doc_id

    def purge(self, storage_id: str) -> None:
        with self._lock:
            self._entries.pop(storage_id, None)
            self._cursors.pop(storage_id, None)

    def save_cursor(self, storage_id: str, doc_id: str) -> None:
        with self._lock:
            self._cursors[storage_id] = doc_id

    def load_cursor(self, storage_id: str) -> Optional[str]:
        with self._lock:
            return self._cursors.get(storage_id)

    def clear_cursor(self, storage_id: str) -> None:
        with self._lock:
            self._cursors.pop(storage_id, None)

    def save_database(self, database: Database) -> None:
        # Stored as a dict so later mutation of the live record is not visible
        with self._lock:
            self._databases[database.address] = copy.deepcopy(database.to_dict())

    def load_database(self, address: bytes) -> Optional[Database]:
        with self._lock:
            data = self._databases.get(address)
        return Database.from_dict(data) if data is not None else None

    def list_databases(self) -> list[Database]:
        with self._lock:
            records = [self._databases[a] for a in sorted(self._databases)]
        return [Database.from_dict(r) for r in records]

    def close(self) -> None:
        logger.debug("InMemoryIndexStore closed")
