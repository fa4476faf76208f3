"""
Index catalog for a database.

The IndexCatalog is the central authority for the collections and indexes of
one Database. It provides:
- Collection creation and removal
- Index creation (validated), removal and listing
- Live maintenance of every writable index from the document write path
- Backfill orchestration for CREATING indexes
- Key-range lookups on READY indexes

Invariants:
    - Collection names are unique within the database
    - No two indexes on a collection match field-for-field and order-for-order
    - Catalog mutations, backfill batches and live writes for one collection
      are mutually exclusive; different collections never share a lock
    - Removals are applied before additions for every document write
    - A failed live write downgrades only the affected index; the document
      write itself always succeeds
    - The Database record is persisted after every catalog mutation

How to change safely:
    - Route every state change through IndexStateMachine
    - Keep on_document_write free of blocking network I/O
    - Test new operations against both the in-memory and SQLite stores

Example:
    >>> catalog = IndexCatalog.load(b"\\x01", store, documents)
    >>> catalog.create_collection("users")
    >>> catalog.create_index("users", [IndexField.ascending("age")])
    >>> await catalog.backfill("users", "age")
    >>> list(catalog.lookup("users", "age", Range(10, 25)))
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

from .config import BackfillConfig
from .documents import Document, DocumentSource
from .encoding.keys import IndexKeyEncoder
from .errors import (
    CollectionNotFoundError,
    DuplicateCollectionError,
    DuplicateIndex,
    EncodingError,
    IndexNotFoundError,
    IndexNotReady,
    SingleFieldPathTaken,
    StorageError,
    ValidationError,
)
from .lifecycle.backfill import Backfiller, BackfillJob, BackfillResult
from .lifecycle.state_machine import IndexStateMachine
from .query import Predicate, key_range
from .schema.types import Collection, Database, Index, IndexDefinition, IndexKind, IndexState
from .schema.validator import FieldInput, IndexDefinitionValidator, SchemaHint
from .store.base import IndexStore
from .store.retry import apply_with_retry

logger = logging.getLogger(__name__)


class IndexCatalog:
    """Owns the collection -> index mapping of one database.

    Thread safety:
        - One re-entrant lock per collection guards its index list, its
          backfill batches and its live writes
        - A database-level lock guards the collection list and persistence

    Attributes:
        database: The live Database record
        store: Backing store for entries, cursors and the record
    """

    def __init__(
        self,
        database: Database,
        store: IndexStore,
        source: DocumentSource,
        config: Optional[BackfillConfig] = None,
        validator: Optional[IndexDefinitionValidator] = None,
        encoder: Optional[IndexKeyEncoder] = None,
    ) -> None:
        """Initialize the catalog.

        Args:
            database: Database record to manage (loaded or new)
            store: Index store
            source: Document source used for backfill
            config: Backfill and retry configuration
            validator: Definition validator
            encoder: Key encoder
        """
        self.database = database
        self.store = store
        self.source = source
        self.config = config or BackfillConfig()
        self.validator = validator or IndexDefinitionValidator()
        self.encoder = encoder or IndexKeyEncoder()
        self.state_machine = IndexStateMachine()
        self.backfiller = Backfiller(source, store, self.encoder, self.config)

        self._lock = threading.RLock()
        self._collection_locks: dict[str, threading.RLock] = {}
        # Bumped on every (re-)creation so stale backfill jobs can tell
        self._generations: dict[str, int] = {}
        self._generation_counter = itertools.count(1)

    @classmethod
    def load(
        cls,
        address: bytes,
        store: IndexStore,
        source: DocumentSource,
        sender: bytes = b"",
        config: Optional[BackfillConfig] = None,
    ) -> IndexCatalog:
        """Load the catalog of a database, creating the record if new."""
        database = store.load_database(address)
        if database is None:
            database = Database(address=address, sender=sender)
            store.save_database(database)
            logger.info(f"Created database record {address.hex()}")
        else:
            logger.info(
                f"Loaded database record {address.hex()}",
                extra={"collections": [c.name for c in database.collections]},
            )
        return cls(database, store, source, config=config)

    # Locking and persistence

    def _collection_lock(self, collection: str) -> threading.RLock:
        with self._lock:
            lock = self._collection_locks.get(collection)
            if lock is None:
                lock = threading.RLock()
                self._collection_locks[collection] = lock
            return lock

    @contextmanager
    def _locked(self, collection: str) -> Iterator[None]:
        with self._collection_lock(collection):
            yield

    def _persist(self) -> None:
        with self._lock:
            self.store.save_database(self.database)

    def _require_collection(self, name: str) -> Collection:
        collection = self.database.get_collection(name)
        if collection is None:
            raise CollectionNotFoundError(name)
        return collection

    def _storage_id(self, collection: str, index: Index) -> str:
        prefix = self.database.address.hex()
        if index.definition.kind == IndexKind.SINGLE_FIELD:
            return f"{prefix}/collections/{collection}/fields/{index.ref}"
        return f"{prefix}/{index.name}"

    def _generation_key(self, collection: str, index_ref: str) -> str:
        return f"{collection}\x00{index_ref}"

    def _set_state(
        self, collection: Collection, index: Index, to_state: IndexState, reason: str
    ) -> Index:
        updated = self.state_machine.transition(index, to_state, reason)
        collection.replace_index(updated)
        self._persist()
        return updated

    # Database and collections

    def record_transaction(self, tx_id: bytes) -> None:
        """Append a transaction reference to the database's audit trail."""
        with self._lock:
            self.database.record_transaction(tx_id)
            self._persist()

    def create_collection(
        self,
        name: str,
        indexes: Sequence[Sequence[FieldInput]] = (),
        schema_hint: Optional[SchemaHint] = None,
    ) -> Collection:
        """Create a collection, optionally together with its initial indexes.

        Every initial definition is validated before the collection is
        added, so a rejected definition leaves the database unchanged.
        Initial indexes start in CREATING.

        Args:
            name: Collection name
            indexes: Field lists of the initial indexes
            schema_hint: Optional field shape hints for validation

        Raises:
            DuplicateCollectionError: If the name is taken
            ValidationError: If the name is empty or a definition is invalid
            DuplicateIndex: If two initial definitions are equivalent
        """
        if not name:
            raise ValidationError("Collection name cannot be empty", code="INVALID_COLLECTION")
        definitions = [self.validator.validate(schema_hint, fields) for fields in indexes]

        with self._locked(name), self._lock:
            if self.database.get_collection(name) is not None:
                raise DuplicateCollectionError(name)
            collection = Collection(name=name)
            for definition in definitions:
                fingerprint = definition.fingerprint()
                for existing in collection.index_list:
                    if existing.definition.fingerprint() == fingerprint:
                        raise DuplicateIndex(name, existing.ref)
                collection.index_list.append(
                    Index(
                        name=self._new_index_name(collection, definition),
                        definition=definition,
                        state=IndexState.CREATING,
                    )
                )
            for index in collection.index_list:
                self.store.purge(self._storage_id(name, index))
                self._bump_generation(name, index.ref)
            self.database.collections.append(collection)
            self._persist()
        logger.info(
            f"Created collection {name}",
            extra={"collection": name, "indexes": [i.ref for i in collection.index_list]},
        )
        return collection

    def drop_collection(self, name: str) -> bool:
        """Drop a collection and purge all of its index entries.

        Returns:
            True if the collection existed
        """
        with self._locked(name), self._lock:
            collection = self.database.get_collection(name)
            if collection is None:
                return False
            for index in collection.index_list:
                self.store.purge(self._storage_id(name, index))
                self._generations.pop(self._generation_key(name, index.ref), None)
            self.database.collections.remove(collection)
            self._persist()
        logger.info(f"Dropped collection {name}")
        return True

    def list_collections(self) -> list[str]:
        with self._lock:
            return [c.name for c in self.database.collections]

    # Indexes

    def create_index(
        self,
        collection: str,
        fields: Sequence[FieldInput],
        schema_hint: Optional[SchemaHint] = None,
    ) -> Index:
        """Validate and register a new index in CREATING state.

        A definition equal to an existing NEEDS_REPAIR index is an explicit
        re-creation: its entries and cursor are purged and it restarts in
        CREATING. The caller then runs backfill() or start_backfill().

        Args:
            collection: Collection name
            fields: Proposed fields in key order
            schema_hint: Optional field shape hints for validation

        Returns:
            The registered Index

        Raises:
            ValidationError: Invalid definition (never retried)
            DuplicateIndex: Equivalent index already exists
            SingleFieldPathTaken: A single-field index on the path already exists
            CollectionNotFoundError: Unknown collection
        """
        definition = self.validator.validate(schema_hint, fields)

        with self._locked(collection):
            coll = self._require_collection(collection)
            fingerprint = definition.fingerprint()
            for existing in coll.index_list:
                if existing.definition.fingerprint() != fingerprint:
                    continue
                if existing.state != IndexState.NEEDS_REPAIR:
                    raise DuplicateIndex(collection, existing.ref)
                return self._recreate(coll, existing)

            name = self._new_index_name(coll, definition)
            index = Index(name=name, definition=definition, state=IndexState.CREATING)
            self.store.purge(self._storage_id(collection, index))
            coll.index_list.append(index)
            self._bump_generation(collection, index.ref)
            self._persist()

        logger.info(
            f"Created index {index.ref} on {collection}",
            extra={
                "collection": collection,
                "index": index.ref,
                "kind": definition.kind.value,
                "fields": [str(f) for f in definition.fields],
            },
        )
        return index

    def _new_index_name(self, coll: Collection, definition: IndexDefinition) -> str:
        """Name for a new index on `coll`; empty for single-field indexes.

        Raises:
            SingleFieldPathTaken: If `coll` has a single-field index on the path
        """
        if definition.kind == IndexKind.SINGLE_FIELD:
            path = definition.fields[0].field_path
            # Single-field indexes are referenced by path
            if coll.find_index(path) is not None:
                raise SingleFieldPathTaken(coll.name, path)
            return ""
        return f"collections/{coll.name}/indexes/{definition.fingerprint()}"

    def _recreate(self, coll: Collection, index: Index) -> Index:
        """NEEDS_REPAIR -> CREATING with prior entries purged."""
        updated = self.state_machine.transition(index, IndexState.CREATING, "explicit re-creation")
        self.store.purge(self._storage_id(coll.name, index))
        coll.replace_index(updated)
        self._bump_generation(coll.name, index.ref)
        self._persist()
        return updated

    def repair_index(self, collection: str, index_ref: str) -> Index:
        """Re-create a NEEDS_REPAIR index by reference.

        Raises:
            IllegalStateTransition: If the index is not NEEDS_REPAIR
        """
        with self._locked(collection):
            coll = self._require_collection(collection)
            index = coll.find_index(index_ref)
            if index is None:
                raise IndexNotFoundError(collection, index_ref)
            return self._recreate(coll, index)

    def _bump_generation(self, collection: str, index_ref: str) -> int:
        key = self._generation_key(collection, index_ref)
        self._generations[key] = next(self._generation_counter)
        return self._generations[key]

    def drop_index(self, collection: str, index_ref: str) -> bool:
        """Remove an index and purge its entries.

        Idempotent: dropping an absent index (or one in an absent
        collection) returns False.
        """
        with self._locked(collection):
            coll = self.database.get_collection(collection)
            if coll is None:
                return False
            index = coll.find_index(index_ref)
            if index is None:
                return False
            coll.index_list.remove(index)
            self._generations.pop(self._generation_key(collection, index.ref), None)
            self.store.purge(self._storage_id(collection, index))
            self._persist()
        logger.info(f"Dropped index {index_ref} on {collection}")
        return True

    def list_indexes(self, collection: str) -> list[Index]:
        """Indexes of a collection in creation order."""
        with self._locked(collection):
            return list(self._require_collection(collection).index_list)

    def get_index(self, collection: str, index_ref: str) -> Index:
        with self._locked(collection):
            index = self._require_collection(collection).find_index(index_ref)
        if index is None:
            raise IndexNotFoundError(collection, index_ref)
        return index

    def queryable_indexes(self, collection: str) -> list[Index]:
        """READY indexes of a collection, the only ones eligible for queries."""
        return [i for i in self.list_indexes(collection) if self.state_machine.is_queryable(i)]

    # Write path

    def on_document_write(
        self,
        collection: str,
        document: Optional[Document],
        old_document: Optional[Document] = None,
    ) -> None:
        """Maintain every writable index of a collection for one document write.

        Insert: document set, old_document None.
        Update: both set. Delete: document None, old_document set.

        Keys of the old version that the new version does not produce are
        removed first; then every key of the new version is added.
        Encoding or storage failures downgrade only the affected index.
        """
        if document is None and old_document is None:
            return

        with self._locked(collection):
            coll = self.database.get_collection(collection)
            if coll is None:
                return

            for index in list(coll.index_list):
                if not self.state_machine.accepts_writes(index):
                    continue
                self._apply_write(coll, index, document, old_document)

    def _apply_write(
        self,
        coll: Collection,
        index: Index,
        document: Optional[Document],
        old_document: Optional[Document],
    ) -> None:
        storage_id = self._storage_id(coll.name, index)
        try:
            old_keys = set(self.encoder.encode(old_document, index.definition)) if old_document else set()
            new_keys = self.encoder.encode(document, index.definition) if document else []
            remove = old_keys.difference(new_keys)
            if not remove and not new_keys:
                return
            add = [(key, document.doc_id) for key in new_keys] if document else []
            apply_with_retry(self.store, storage_id, remove, add, self.config)
        except (EncodingError, StorageError) as e:
            doc_id = (document or old_document).doc_id
            logger.error(
                f"Index update failed, marking {index.ref} NEEDS_REPAIR: {e}",
                extra={
                    "collection": coll.name,
                    "index": index.ref,
                    "doc_id": doc_id,
                    "error_code": e.code,
                },
            )
            self._downgrade(coll, index, f"live write failed: {e.code}")

    def _downgrade(self, coll: Collection, index: Index, reason: str) -> None:
        """Mark an index NEEDS_REPAIR from the live write path.

        The state change is kept in memory even if persisting it fails; the
        next successful persist writes it out.
        """
        updated = self.state_machine.transition(index, IndexState.NEEDS_REPAIR, reason)
        coll.replace_index(updated)
        try:
            self._persist()
        except StorageError as e:
            logger.error(
                f"Could not persist NEEDS_REPAIR for {index.ref}: {e}",
                extra={"collection": coll.name, "index": index.ref, "error_code": e.code},
            )

    # Backfill

    def _backfill_job(self, collection: str, index_ref: str) -> BackfillJob:
        with self._locked(collection):
            coll = self._require_collection(collection)
            index = coll.find_index(index_ref)
            if index is None:
                raise IndexNotFoundError(collection, index_ref)
            if index.state != IndexState.CREATING:
                raise ValidationError(
                    f"Index '{index_ref}' is {index.state.name}, only CREATING indexes are backfilled",
                    code="NOT_CREATING",
                )
            key = self._generation_key(collection, index.ref)
            generation = self._generations.get(key)
            if generation is None:
                generation = self._bump_generation(collection, index.ref)

        def current() -> Optional[Index]:
            if self._generations.get(key) != generation:
                return None
            found = coll.find_index(index.ref)
            if found is None or found.state != IndexState.CREATING:
                return None
            return found

        def finish(to_state: IndexState, reason: str) -> None:
            with self._locked(collection):
                found = current()
                if found is not None:
                    self._set_state(coll, found, to_state, reason)

        return BackfillJob(
            collection=collection,
            index_ref=index.ref,
            storage_id=self._storage_id(collection, index),
            definition=index.definition,
            lock=lambda: self._locked(collection),
            is_active=lambda: current() is not None,
            finish=finish,
        )

    async def backfill(
        self,
        collection: str,
        index_ref: str,
        max_documents: Optional[int] = None,
        pause: Optional[asyncio.Event] = None,
    ) -> BackfillResult:
        """Backfill a CREATING index, resuming from its saved cursor.

        Args:
            collection: Collection name
            index_ref: Index name or single-field path
            max_documents: Pause after this many documents (index stays CREATING)
            pause: Event that pauses the run between batches once set

        Returns:
            BackfillResult (READY on success, NEEDS_REPAIR on failure)
        """
        job = self._backfill_job(collection, index_ref)
        return await self.backfiller.run(job, max_documents=max_documents, pause=pause)

    def start_backfill(
        self,
        collection: str,
        index_ref: str,
        pause: Optional[asyncio.Event] = None,
    ) -> asyncio.Task:
        """Run backfill as a cancellable task.

        Cancelling the task leaves the index NEEDS_REPAIR.
        """
        job = self._backfill_job(collection, index_ref)
        task = asyncio.create_task(
            self.backfiller.run(job, pause=pause),
            name=f"backfill:{collection}:{job.index_ref}",
        )

        def on_done(done: asyncio.Task) -> None:
            # A task cancelled before its first step never reaches run()'s handler
            if done.cancelled():
                job.finish(IndexState.NEEDS_REPAIR, "backfill cancelled")

        task.add_done_callback(on_done)
        return task

    def pending_backfills(self) -> list[tuple[str, str]]:
        """(collection, index_ref) of every index still in CREATING."""
        with self._lock:
            return [
                (coll.name, index.ref)
                for coll in self.database.collections
                for index in coll.index_list
                if index.state == IndexState.CREATING
            ]

    async def resume_backfills(self, pause: Optional[asyncio.Event] = None) -> list[BackfillResult]:
        """Run every pending backfill to completion, one after another."""
        results = []
        for collection, index_ref in self.pending_backfills():
            results.append(await self.backfill(collection, index_ref, pause=pause))
        return results

    # Lookups

    def lookup(
        self,
        collection: str,
        index_ref: str,
        predicate: Optional[Predicate] = None,
        prefix: Sequence[Any] = (),
    ) -> Iterator[str]:
        """Lazily yield ids of documents matching a lookup on a READY index.

        Args:
            collection: Collection name
            index_ref: Composite index name or single-field path
            predicate: Equals, Contains or Range on the field after the prefix
            prefix: Equality values for the leading fields

        Raises:
            IndexNotFoundError: Unknown index
            IndexNotReady: Index is CREATING or NEEDS_REPAIR
            InvalidLookup: Prefix or predicate does not fit the index
        """
        index = self.get_index(collection, index_ref)
        if not self.state_machine.is_queryable(index):
            raise IndexNotReady(index.ref, index.state.name)

        bounds = key_range(index.definition, predicate, prefix)
        return self._scan_ids(self._storage_id(collection, index), bounds.start, bounds.end)

    def _scan_ids(self, storage_id: str, start: bytes, end: Optional[bytes]) -> Iterator[str]:
        seen: set[str] = set()
        for _, doc_id in self.store.scan(storage_id, start, end):
            if doc_id not in seen:
                seen.add(doc_id)
                yield doc_id

    def index_keys(self, collection: str, index_ref: str) -> list[bytes]:
        """All keys currently stored for an index, in order (any state)."""
        index = self.get_index(collection, index_ref)
        return [key for key, _ in self.store.scan(self._storage_id(collection, index))]
