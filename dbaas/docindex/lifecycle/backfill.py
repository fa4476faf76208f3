"""
Backfill of indexes in the CREATING state.

The Backfiller walks a collection's documents by doc_id ascending, encodes
them and applies the keys in batches. After each batch the cursor (last
doc_id covered) is saved, so a process that dies mid-backfill resumes from
the cursor instead of starting over.

Invariants:
    - Each batch is read, encoded and applied while holding the collection lock
    - Key application is idempotent, so re-covering documents after a restart
      or after a concurrent live write is harmless
    - Cancellation leaves the index NEEDS_REPAIR, never half-READY
    - A paused backfill (max_documents reached or pause event set) leaves the
      index CREATING with its cursor saved

How to change safely:
    - Keep the cursor save after the key apply; the reverse order can skip
      documents after a crash
    - Test resume with an interrupted run against a from-scratch run
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from itertools import islice
from typing import Callable, ContextManager, Optional

from ..config import BackfillConfig
from ..documents import Document, DocumentSource
from ..encoding.keys import IndexKeyEncoder
from ..errors import EncodingError, StorageError
from ..schema.types import IndexDefinition, IndexState
from ..store.base import IndexStore
from ..store.retry import retry_delay

logger = logging.getLogger(__name__)


@dataclass
class BackfillJob:
    """Everything a backfill needs to know about the index it builds.

    Attributes:
        collection: Collection name
        index_ref: Index name or single-field path (for logs)
        storage_id: Key space in the IndexStore
        definition: Normalized definition to encode with
        lock: Factory for the collection lock context
        is_active: Whether the index is still this job's CREATING index
        finish: Callback moving the index to READY or NEEDS_REPAIR
    """

    collection: str
    index_ref: str
    storage_id: str
    definition: IndexDefinition
    lock: Callable[[], ContextManager]
    is_active: Callable[[], bool]
    finish: Callable[[IndexState, str], None]


@dataclass
class BackfillResult:
    """Outcome of one backfill run.

    Attributes:
        index_ref: Index name or single-field path
        state: Index state after the run
        processed: Documents covered during this run
        completed: Whether the whole collection was covered
        cursor: Last doc_id covered (None if nothing was covered)
        error: Error message if the run failed
    """

    index_ref: str
    state: IndexState
    processed: int = 0
    completed: bool = False
    cursor: Optional[str] = None
    error: Optional[str] = None


class Backfiller:
    """Builds CREATING indexes from existing documents.

    Thread safety:
        One Backfiller may run many jobs concurrently as asyncio tasks;
        jobs for the same collection serialize on the collection lock
        one batch at a time.

    Example:
        >>> backfiller = Backfiller(documents, store, IndexKeyEncoder(), BackfillConfig())
        >>> result = await backfiller.run(job)
        >>> result.state
        <IndexState.READY: 2>
    """

    def __init__(
        self,
        source: DocumentSource,
        store: IndexStore,
        encoder: IndexKeyEncoder,
        config: Optional[BackfillConfig] = None,
    ) -> None:
        self.source = source
        self.store = store
        self.encoder = encoder
        self.config = config or BackfillConfig()

    async def run(
        self,
        job: BackfillJob,
        max_documents: Optional[int] = None,
        pause: Optional[asyncio.Event] = None,
    ) -> BackfillResult:
        """Run a backfill job until done, paused, failed or cancelled.

        Args:
            job: The index to build
            max_documents: Stop after covering this many documents (index stays CREATING)
            pause: Event that, once set, stops the run between batches

        Returns:
            BackfillResult describing where the run stopped
        """
        cursor = self.store.load_cursor(job.storage_id)
        processed = 0
        if cursor is not None:
            logger.info(
                "Resuming backfill",
                extra={"collection": job.collection, "index": job.index_ref, "cursor": cursor},
            )

        try:
            while True:
                if pause is not None and pause.is_set():
                    return self._paused(job, processed, cursor)

                limit = self.config.batch_size
                if max_documents is not None:
                    remaining = max_documents - processed
                    if remaining <= 0:
                        return self._paused(job, processed, cursor)
                    limit = min(limit, remaining)

                batch = await self._run_batch(job, cursor, limit)
                if batch is None:
                    logger.info(
                        "Backfill abandoned, index was dropped or re-created",
                        extra={"collection": job.collection, "index": job.index_ref},
                    )
                    return BackfillResult(
                        job.index_ref, IndexState.STATE_UNSPECIFIED, processed, cursor=cursor
                    )

                if not batch:
                    job.finish(IndexState.READY, f"backfill covered {processed} documents")
                    self.store.clear_cursor(job.storage_id)
                    return BackfillResult(
                        job.index_ref, IndexState.READY, processed, completed=True, cursor=cursor
                    )

                cursor = batch[-1].doc_id
                processed += len(batch)
                # Let live writes and other tasks in between batches
                await asyncio.sleep(0)

        except EncodingError as e:
            logger.error(
                f"Backfill failed to encode document: {e}",
                extra={
                    "collection": job.collection,
                    "index": job.index_ref,
                    "doc_id": e.doc_id,
                    "field_path": e.field_path,
                },
            )
            job.finish(IndexState.NEEDS_REPAIR, f"encoding error on document {e.doc_id}")
            return BackfillResult(
                job.index_ref, IndexState.NEEDS_REPAIR, processed, cursor=cursor, error=str(e)
            )
        except StorageError as e:
            logger.error(
                f"Backfill storage failure: {e}",
                extra={"collection": job.collection, "index": job.index_ref},
            )
            job.finish(IndexState.NEEDS_REPAIR, "storage error during backfill")
            return BackfillResult(
                job.index_ref, IndexState.NEEDS_REPAIR, processed, cursor=cursor, error=str(e)
            )
        except asyncio.CancelledError:
            logger.warning(
                "Backfill cancelled",
                extra={"collection": job.collection, "index": job.index_ref},
            )
            job.finish(IndexState.NEEDS_REPAIR, "backfill cancelled")
            raise

    async def _run_batch(
        self, job: BackfillJob, cursor: Optional[str], limit: int
    ) -> Optional[list[Document]]:
        """Cover the next batch, retrying transient storage faults.

        Returns:
            The documents covered (empty when the collection is exhausted),
            or None if the job is no longer active.
        """
        attempt = 0
        while True:
            try:
                with job.lock():
                    if not job.is_active():
                        return None
                    batch = list(
                        islice(self.source.iterate_documents(job.collection, after=cursor), limit)
                    )
                    entries = [
                        (key, document.doc_id)
                        for document in batch
                        for key in self.encoder.encode(document, job.definition)
                    ]
                    if entries:
                        self.store.apply(job.storage_id, add=entries)
                    if batch:
                        self.store.save_cursor(job.storage_id, batch[-1].doc_id)
                return batch
            except StorageError as e:
                attempt += 1
                if not e.transient or attempt > self.config.max_retries:
                    raise
                delay = retry_delay(self.config, attempt)
                logger.warning(
                    f"Transient storage error during backfill, retrying in {delay:.3f}s: {e}",
                    extra={"index": job.index_ref, "attempt": attempt},
                )
                # Outside the lock; the batch restarts from the saved cursor
                await asyncio.sleep(delay)

    def _paused(
        self, job: BackfillJob, processed: int, cursor: Optional[str]
    ) -> BackfillResult:
        logger.info(
            "Backfill paused",
            extra={
                "collection": job.collection,
                "index": job.index_ref,
                "processed": processed,
                "cursor": cursor,
            },
        )
        return BackfillResult(job.index_ref, IndexState.CREATING, processed, cursor=cursor)
