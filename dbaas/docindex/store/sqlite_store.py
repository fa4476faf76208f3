"""
SQLite index store for docindex.

This module persists the index core's derived data in one SQLite file:
- Index entries keyed by (storage_id, key), key compared as a BLOB (memcmp)
- Backfill cursors, so a crashed backfill resumes instead of restarting
- Database records (collections and index definitions) as JSON

The file is a derived view: deleting it loses nothing that cannot be rebuilt
from documents, except the catalog, which clients re-declare.

Invariants:
    - apply() runs in a single IMMEDIATE transaction
    - INSERT OR IGNORE makes re-adding an existing key a no-op
    - sqlite3 errors surface as StorageError; OperationalError is transient

How to change safely:
    - Schema migrations must be backward compatible
    - Bump SCHEMA_VERSION and add an idempotent migration step

Table schema:
    index_entries:
        - storage_id TEXT
        - key BLOB
        - doc_id TEXT
        - PRIMARY KEY (storage_id, key)

    backfill_cursors:
        - storage_id TEXT PRIMARY KEY
        - last_doc_id TEXT
        - updated_at INTEGER (Unix ms)

    databases:
        - address TEXT PRIMARY KEY (hex)
        - record_json TEXT
        - updated_at INTEGER (Unix ms)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Optional

from ..errors import StorageError
from ..schema.types import Database
from .base import IndexEntry

logger = logging.getLogger(__name__)


class SqliteIndexStore:
    """SQLite-backed IndexStore.

    Thread safety:
        Each operation opens its own connection; SQLite serializes writers
        and WAL mode lets scans run during writes.

    Example:
        >>> store = SqliteIndexStore("/var/lib/docindex")
        >>> store.initialize()
        >>> store.apply("users/fields/age", add=[(key, "u1")])
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        db_filename: str = "docindex.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        scan_page_size: int = 500,
    ) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory for the SQLite file
            db_filename: SQLite file name inside data_dir
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            scan_page_size: Rows fetched per query while scanning
        """
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_filename
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.scan_page_size = scan_page_size

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open index store {self.db_path}: {e}") from e

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        except sqlite3.OperationalError as e:
            raise StorageError(f"Index store operation failed: {e}", transient=True) from e
        except sqlite3.Error as e:
            raise StorageError(f"Index store operation failed: {e}", transient=False) from e
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the schema if it does not exist."""
        with self._get_connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS index_entries (
                    storage_id TEXT NOT NULL,
                    key BLOB NOT NULL,
                    doc_id TEXT NOT NULL,
                    PRIMARY KEY (storage_id, key)
                ) WITHOUT ROWID;

                CREATE TABLE IF NOT EXISTS backfill_cursors (
                    storage_id TEXT PRIMARY KEY,
                    last_doc_id TEXT NOT NULL,
                    updated_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS databases (
                    address TEXT PRIMARY KEY,
                    record_json TEXT NOT NULL,
                    updated_at INTEGER NOT NULL
                );

                INSERT OR IGNORE INTO schema_version (version, applied_at)
                VALUES (1, strftime('%s', 'now') * 1000);
            """)
        logger.info(f"Initialized index store: {self.db_path}")

    def apply(
        self,
        storage_id: str,
        remove: Iterable[bytes] = (),
        add: Iterable[IndexEntry] = (),
    ) -> None:
        remove_rows = [(storage_id, bytes(key)) for key in remove]
        add_rows = [(storage_id, bytes(key), doc_id) for key, doc_id in add]
        if not remove_rows and not add_rows:
            return

        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                if remove_rows:
                    conn.executemany(
                        "DELETE FROM index_entries WHERE storage_id = ? AND key = ?",
                        remove_rows,
                    )
                if add_rows:
                    conn.executemany(
                        "INSERT OR IGNORE INTO index_entries (storage_id, key, doc_id) "
                        "VALUES (?, ?, ?)",
                        add_rows,
                    )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def scan(
        self,
        storage_id: str,
        start: bytes = b"",
        end: Optional[bytes] = None,
    ) -> Iterator[IndexEntry]:
        # Paged so no connection is held open between pages.
        lower = bytes(start)
        inclusive = True
        while True:
            op = ">=" if inclusive else ">"
            sql = f"SELECT key, doc_id FROM index_entries WHERE storage_id = ? AND key {op} ?"
            params: list = [storage_id, lower]
            if end is not None:
                sql += " AND key < ?"
                params.append(bytes(end))
            sql += " ORDER BY key LIMIT ?"
            params.append(self.scan_page_size)

            with self._get_connection() as conn:
                rows = conn.execute(sql, params).fetchall()

            for key, doc_id in rows:
                yield bytes(key), doc_id
            if len(rows) < self.scan_page_size:
                return
            lower = bytes(rows[-1][0])
            inclusive = False

    def purge(self, storage_id: str) -> None:
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute("DELETE FROM index_entries WHERE storage_id = ?", (storage_id,))
            conn.execute("DELETE FROM backfill_cursors WHERE storage_id = ?", (storage_id,))
            conn.execute("COMMIT")
        logger.info("Purged index entries", extra={"storage_id": storage_id})

    def save_cursor(self, storage_id: str, doc_id: str) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO backfill_cursors (storage_id, last_doc_id, updated_at) "
                "VALUES (?, ?, ?) "
                "ON CONFLICT(storage_id) DO UPDATE SET "
                "last_doc_id = excluded.last_doc_id, updated_at = excluded.updated_at",
                (storage_id, doc_id, int(time.time() * 1000)),
            )

    def load_cursor(self, storage_id: str) -> Optional[str]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT last_doc_id FROM backfill_cursors WHERE storage_id = ?",
                (storage_id,),
            ).fetchone()
        return row[0] if row else None

    def clear_cursor(self, storage_id: str) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM backfill_cursors WHERE storage_id = ?", (storage_id,))

    def save_database(self, database: Database) -> None:
        record = json.dumps(database.to_dict(), sort_keys=True)
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO databases (address, record_json, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(address) DO UPDATE SET "
                "record_json = excluded.record_json, updated_at = excluded.updated_at",
                (database.address.hex(), record, int(time.time() * 1000)),
            )

    def load_database(self, address: bytes) -> Optional[Database]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT record_json FROM databases WHERE address = ?",
                (address.hex(),),
            ).fetchone()
        return Database.from_dict(json.loads(row[0])) if row else None

    def list_databases(self) -> list[Database]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT record_json FROM databases ORDER BY address").fetchall()
        return [Database.from_dict(json.loads(row[0])) for row in rows]

    def close(self) -> None:
        logger.debug("SqliteIndexStore closed")
