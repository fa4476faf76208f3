"""
Backing stores for index entries, backfill cursors and catalog records.

This module provides a pluggable IndexStore interface supporting:
- SQLite (production; a derived, rebuildable file)
- In-memory (for testing)

Invariants:
    - Key application is atomic and idempotent
    - Scans return keys in memcmp order
    - Store failures surface as StorageError

How to change safely:
    - New backends must implement the IndexStore protocol
    - Verify range scans against the in-memory store's ordering
"""

from .base import IndexEntry, IndexStore
from .memory import InMemoryIndexStore
from .retry import apply_with_retry, retry_delay
from .sqlite_store import SqliteIndexStore

__all__ = [
    "IndexStore",
    "IndexEntry",
    "InMemoryIndexStore",
    "SqliteIndexStore",
    "apply_with_retry",
    "retry_delay",
]
