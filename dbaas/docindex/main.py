"""
Document index service - Main entry point.

This module starts the index service with all components:
- SQLite index store (entries, backfill cursors, catalog records)
- Index catalog for the configured database
- Backfill tasks for indexes left in CREATING by a previous run

Usage:
    python -m dbaas.docindex.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Backfills interrupted by a crash resume from their saved cursor
    - Graceful shutdown pauses backfills between batches; indexes stay
      CREATING and resume on the next start
    - A backfill that does not pause within the stop timeout is cancelled
      and its index left NEEDS_REPAIR

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import json_log_formatter

from .catalog import IndexCatalog
from .config import IndexServerConfig
from .documents import DocumentSource, InMemoryDocumentStore
from .store import SqliteIndexStore

logger = logging.getLogger(__name__)


def setup_logging(config: IndexServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Service configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


class IndexService:
    """Index service orchestrator.

    Manages the lifecycle of:
    - The SQLite index store
    - The catalog of the configured database
    - Background backfill tasks

    Attributes:
        config: Service configuration
        source: Document source the catalog backfills from and listens to
        store: SQLite index store (set in start())
        catalog: Index catalog (set in start())

    Example:
        >>> service = IndexService(config, source=documents)
        >>> await service.start()
        >>> service.catalog.create_index("users", [IndexField.ascending("age")])
        >>> await service.stop()
    """

    def __init__(
        self,
        config: Optional[IndexServerConfig] = None,
        source: Optional[DocumentSource] = None,
        stop_timeout: float = 10.0,
    ) -> None:
        """Initialize the service.

        Args:
            config: Optional service configuration (loaded from env if not provided)
            source: Document source; an empty in-memory store if not provided
            stop_timeout: Seconds to wait for backfills to pause on stop
        """
        self.config = config or IndexServerConfig.from_env()
        self.source = source if source is not None else InMemoryDocumentStore()
        self.stop_timeout = stop_timeout
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._pause_event = asyncio.Event()

        self.store: Optional[SqliteIndexStore] = None
        self.catalog: Optional[IndexCatalog] = None

        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Open the store, load the catalog and resume pending backfills."""
        if self._running:
            logger.warning("Index service already running")
            return

        logger.info("Starting index service")
        self.config.log_config()

        data_dir = Path(self.config.storage.data_dir)
        data_dir.mkdir(parents=True, exist_ok=True)

        self.store = SqliteIndexStore(
            data_dir=str(data_dir),
            db_filename=self.config.storage.db_filename,
            wal_mode=self.config.storage.wal_mode,
            busy_timeout_ms=self.config.storage.busy_timeout_ms,
            scan_page_size=self.config.storage.scan_page_size,
        )
        self.store.initialize()

        self.catalog = IndexCatalog.load(
            self.config.database.address_bytes,
            self.store,
            self.source,
            sender=self.config.database.sender_bytes,
            config=self.config.backfill,
        )

        add_listener = getattr(self.source, "add_write_listener", None)
        if add_listener is not None:
            add_listener(self.catalog.on_document_write)

        self._pause_event.clear()
        self._running = True

        if self.config.backfill.resume_on_start:
            for collection, index_ref in self.catalog.pending_backfills():
                logger.info(
                    "Resuming backfill left in CREATING",
                    extra={"collection": collection, "index": index_ref},
                )
                self.start_backfill(collection, index_ref)

        logger.info("Index service started successfully")

    def start_backfill(self, collection: str, index_ref: str) -> asyncio.Task:
        """Run a backfill as a service-owned task that pauses on stop."""
        if self.catalog is None:
            raise RuntimeError("Index service is not started")
        task = self.catalog.start_backfill(collection, index_ref, pause=self._pause_event)
        self._tasks.append(task)
        task.add_done_callback(self._forget_task)
        return task

    def _forget_task(self, task: asyncio.Task) -> None:
        if task in self._tasks:
            self._tasks.remove(task)

    async def run(self) -> None:
        """Start and block until shutdown is requested."""
        await self.start()
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the service gracefully."""
        if not self._running:
            return

        logger.info("Stopping index service")
        self._pause_event.set()

        tasks = list(self._tasks)
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self.stop_timeout)
            for task in pending:
                logger.warning(f"Backfill {task.get_name()} did not pause in time, cancelling")
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

        if self.store is not None:
            self.store.close()

        self._running = False
        logger.info("Index service stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    try:
        config = IndexServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    service = IndexService(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        service.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(service.run())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(service.stop())
        loop.close()


if __name__ == "__main__":
    main()
