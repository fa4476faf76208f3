"""
Document store capability consumed by the index core.

The index core does not own documents. It needs two things from the store:
- iterate_documents: a finite, lazy, restartable scan in identity order
- a write path that reports every insert/update/delete (write listeners)

InMemoryDocumentStore is the reference implementation of that capability,
for tests and local development.

Invariants:
    - iterate_documents yields documents by doc_id ascending
    - Passing `after` resumes strictly after that doc_id
    - Write listeners run after the write is visible to iterate_documents

How to change safely:
    - New backends must implement the DocumentSource protocol
    - Listener failures must never undo a document write
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Document:
    """A stored document.

    Attributes:
        doc_id: Unique identity within its collection (the `__name__` path)
        data: Field values
    """

    doc_id: str
    data: dict[str, Any] = field(default_factory=dict)


WriteListener = Callable[[str, Optional[Document], Optional[Document]], None]


@runtime_checkable
class DocumentSource(Protocol):
    """Read capability the index core consumes for backfill."""

    def iterate_documents(
        self, collection: str, after: Optional[str] = None
    ) -> Iterator[Document]:
        """Yield documents of a collection by doc_id ascending, after a cursor."""
        ...


class InMemoryDocumentStore:
    """In-memory document store with write listeners.

    Thread safety:
        Writes and scans are guarded by an internal lock. Listeners are
        called outside the lock so they may take their own locks.

    Example:
        >>> docs = InMemoryDocumentStore()
        >>> docs.add_write_listener(catalog.on_document_write)
        >>> docs.write_document("users", Document("u1", {"age": 20}))
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Document]] = {}
        self._listeners: list[WriteListener] = []
        self._lock = threading.Lock()

    def add_write_listener(self, listener: WriteListener) -> None:
        self._listeners.append(listener)

    def write_document(self, collection: str, document: Document) -> Optional[Document]:
        """Insert or replace a document.

        Returns:
            The previous version, or None for an insert
        """
        stored = Document(document.doc_id, copy.deepcopy(document.data))
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            old = docs.get(document.doc_id)
            docs[document.doc_id] = stored
        self._notify(collection, stored, old)
        return old

    def delete_document(self, collection: str, doc_id: str) -> Optional[Document]:
        """Delete a document. Returns the deleted version, or None if absent."""
        with self._lock:
            old = self._collections.get(collection, {}).pop(doc_id, None)
        if old is not None:
            self._notify(collection, None, old)
        return old

    def get_document(self, collection: str, doc_id: str) -> Optional[Document]:
        with self._lock:
            return self._collections.get(collection, {}).get(doc_id)

    def iterate_documents(
        self, collection: str, after: Optional[str] = None
    ) -> Iterator[Document]:
        with self._lock:
            doc_ids = sorted(self._collections.get(collection, {}))
        for doc_id in doc_ids:
            if after is not None and doc_id <= after:
                continue
            document = self.get_document(collection, doc_id)
            # Deleted since the snapshot of ids was taken
            if document is not None:
                yield document

    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._collections.get(collection, {}))

    def _notify(
        self, collection: str, document: Optional[Document], old: Optional[Document]
    ) -> None:
        for listener in self._listeners:
            listener(collection, document, old)
