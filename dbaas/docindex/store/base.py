"""
Base protocol for index backing stores.

An IndexStore holds three kinds of derived data:
- Index entries: (storage_id, key) -> doc_id, scanned in key order
- Backfill cursors: storage_id -> last doc_id covered by backfill
- Database records: the persisted catalog (collections and indexes)

Everything in an IndexStore is rebuildable from documents, so a store can be
deleted and recreated at any time.

Invariants:
    - apply() is atomic: removals then additions, all or nothing
    - Adding a key that is already present is a no-op
    - scan() yields entries in ascending memcmp key order
    - Failures are raised as StorageError (transient or not)

How to change safely:
    - Protocol changes require updating every implementation
    - Keep apply() idempotent; backfill relies on it after a restart
"""

from __future__ import annotations

from typing import Iterable, Iterator, Optional, Protocol, runtime_checkable

from ..schema.types import Database

IndexEntry = tuple[bytes, str]


@runtime_checkable
class IndexStore(Protocol):
    """Protocol for index backing stores."""

    def apply(
        self,
        storage_id: str,
        remove: Iterable[bytes] = (),
        add: Iterable[IndexEntry] = (),
    ) -> None:
        """Atomically remove keys, then add (key, doc_id) entries."""
        ...

    def scan(
        self,
        storage_id: str,
        start: bytes = b"",
        end: Optional[bytes] = None,
    ) -> Iterator[IndexEntry]:
        """Yield entries with start <= key < end (end=None: unbounded)."""
        ...

    def purge(self, storage_id: str) -> None:
        """Delete every entry and the backfill cursor of an index."""
        ...

    def save_cursor(self, storage_id: str, doc_id: str) -> None:
        ...

    def load_cursor(self, storage_id: str) -> Optional[str]:
        ...

    def clear_cursor(self, storage_id: str) -> None:
        ...

    def save_database(self, database: Database) -> None:
        ...

    def load_database(self, address: bytes) -> Optional[Database]:
        ...

    def list_databases(self) -> list[Database]:
        ...

    def close(self) -> None:
        ...
