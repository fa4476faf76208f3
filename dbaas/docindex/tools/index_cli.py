"""
Index CLI tool.

This tool validates index definitions and administers the catalog offline:
- validate: Check an index field list and print the normalized definition
- show-db: List the database records in an index store
- show-collection: Show the collections of one database and their indexes
- create-collection: Add a collection, optionally with initial indexes
- create-index: Register an index from a create-index request

Usage:
    docindex validate --fields '[{"fieldPath": "age", "order": "ASCENDING"}]'
    docindex validate --file index.json
    docindex show-db --data-dir /var/lib/docindex
    docindex show-collection --data-dir /var/lib/docindex --addr 01 [--collection users]
    docindex create-collection --data-dir /var/lib/docindex --addr 01 --name users \
        --index '[{"fieldPath": "age", "order": "ASCENDING"}]'
    docindex create-index --data-dir /var/lib/docindex --addr 01 \
        --request '{"collection": "users", "fields": [{"fieldPath": "name", "order": 1}]}'

Invariants:
    - Invalid definitions cause a non-zero exit code
    - Output is deterministic JSON (sorted keys) in json format
    - validate and show-* only read the store
    - create-* register indexes in CREATING; the server backfills them on start

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripting
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Optional

from ..api.models import (
    CollectionModel,
    DatabaseModel,
    IndexModel,
    parse_create_index_request,
    parse_index_fields,
)
from ..catalog import IndexCatalog
from ..documents import InMemoryDocumentStore
from ..errors import DocIndexError, ValidationError
from ..schema.types import Database, IndexDefinition
from ..schema.validator import IndexDefinitionValidator
from ..store.base import IndexStore
from ..store.sqlite_store import SqliteIndexStore


class IndexCLI:
    """CLI tool for index administration.

    Example:
        >>> cli = IndexCLI()
        >>> cli.validate([{"field_path": "a", "order": "ASCENDING"}, {"field_path": "b", "order": 2}])
        {'kind': 'composite', 'fingerprint': '...', 'fields': [...]}
    """

    def __init__(self, validator: Optional[IndexDefinitionValidator] = None) -> None:
        self.validator = validator or IndexDefinitionValidator()

    def validate(self, data: Any) -> dict[str, Any]:
        """Validate a JSON field list.

        Args:
            data: Parsed JSON, a list of fields or {"fields": [...]}

        Returns:
            The normalized definition as a dictionary

        Raises:
            ValidationError: If the definition is invalid
        """
        definition = self.validator.validate(None, parse_index_fields(data))
        return self.describe(definition)

    @staticmethod
    def describe(definition: IndexDefinition) -> dict[str, Any]:
        return {
            "kind": definition.kind.value,
            "fingerprint": definition.fingerprint(),
            "fields": [f.to_dict() for f in definition.fields],
        }

    def show_databases(self, store: IndexStore) -> list[dict[str, Any]]:
        """Summaries of every database record in a store."""
        return [
            {
                "address": database.address.hex(),
                "sender": database.sender.hex(),
                "transactions": len(database.tx),
                "collections": [c.name for c in database.collections],
            }
            for database in store.list_databases()
        ]

    def show_collection(
        self,
        store: IndexStore,
        address: bytes,
        collection: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """Collections of a database with their indexes.

        Raises:
            KeyError: If the database or the named collection does not exist
        """
        database: Optional[Database] = store.load_database(address)
        if database is None:
            raise KeyError(f"No database with address {address.hex()}")

        collections = DatabaseModel.from_record(database).collections
        if collection is not None:
            collections = [c for c in collections if c.name == collection]
            if not collections:
                raise KeyError(f"No collection '{collection}' in database {address.hex()}")
        return [c.model_dump(mode="json", by_alias=True, exclude_none=True) for c in collections]

    def _catalog(self, store: IndexStore, address: bytes) -> IndexCatalog:
        if store.load_database(address) is None:
            raise KeyError(f"No database with address {address.hex()}")
        # Catalog mutations only; documents are backfilled by the server
        return IndexCatalog.load(address, store, InMemoryDocumentStore())

    def create_collection(
        self,
        store: IndexStore,
        address: bytes,
        name: str,
        indexes: Optional[list[Any]] = None,
    ) -> dict[str, Any]:
        """Create a collection together with its initial indexes.

        Args:
            store: Index store holding the database record
            address: Database address
            name: Collection name
            indexes: Parsed JSON field lists, one per initial index

        Raises:
            KeyError: If the database does not exist
            DocIndexError: If the collection or a definition is rejected
        """
        catalog = self._catalog(store, address)
        collection = catalog.create_collection(
            name, indexes=[parse_index_fields(data) for data in indexes or []]
        )
        return CollectionModel.from_record(collection).model_dump(
            mode="json", by_alias=True, exclude_none=True
        )

    def create_index(self, store: IndexStore, address: bytes, request: Any) -> dict[str, Any]:
        """Register an index from a parsed create-index request body.

        Raises:
            KeyError: If the database does not exist
            DocIndexError: If the request or the definition is rejected
        """
        parsed = parse_create_index_request(request)
        catalog = self._catalog(store, address)
        index = catalog.create_index(parsed.collection, parsed.proposed_fields())
        return IndexModel.from_record(index).model_dump(mode="json", by_alias=True, exclude_none=True)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _open_store(data_dir: str, db_filename: str) -> SqliteIndexStore:
    store = SqliteIndexStore(data_dir=data_dir, db_filename=db_filename)
    store.initialize()
    return store


def _parse_address(value: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except ValueError:
        print(f"Address must be hex: {value}", file=sys.stderr)
        sys.exit(2)


def _load_json(text: Optional[str], path: Optional[str]) -> Any:
    try:
        if path:
            with open(path) as f:
                return json.load(f)
        return json.loads(text)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Could not read JSON input: {e}", file=sys.stderr)
        sys.exit(2)


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point for the index tool."""
    parser = argparse.ArgumentParser(description="Document index administration tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # validate command
    validate_parser = subparsers.add_parser("validate", help="Validate an index definition")
    source = validate_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--fields", help="JSON field list")
    source.add_argument("--file", help="JSON file holding the field list")

    # show-db command
    show_db_parser = subparsers.add_parser("show-db", help="List database records")
    show_db_parser.add_argument("--data-dir", required=True, help="Index store directory")
    show_db_parser.add_argument("--db-filename", default="docindex.db")

    # show-collection command
    show_coll_parser = subparsers.add_parser(
        "show-collection", help="Show collections and their indexes"
    )
    show_coll_parser.add_argument("--data-dir", required=True, help="Index store directory")
    show_coll_parser.add_argument("--db-filename", default="docindex.db")
    show_coll_parser.add_argument("--addr", required=True, help="Database address (hex)")
    show_coll_parser.add_argument("--collection", help="Only this collection")

    # create-collection command
    create_coll_parser = subparsers.add_parser(
        "create-collection", help="Create a collection with optional initial indexes"
    )
    create_coll_parser.add_argument("--data-dir", required=True, help="Index store directory")
    create_coll_parser.add_argument("--db-filename", default="docindex.db")
    create_coll_parser.add_argument("--addr", required=True, help="Database address (hex)")
    create_coll_parser.add_argument("--name", required=True, help="Collection name")
    create_coll_parser.add_argument(
        "--index", action="append", default=[], help="JSON field list (repeatable)"
    )

    # create-index command
    create_index_parser = subparsers.add_parser(
        "create-index", help="Register an index from a create-index request"
    )
    create_index_parser.add_argument("--data-dir", required=True, help="Index store directory")
    create_index_parser.add_argument("--db-filename", default="docindex.db")
    create_index_parser.add_argument("--addr", required=True, help="Database address (hex)")
    request_source = create_index_parser.add_mutually_exclusive_group(required=True)
    request_source.add_argument("--request", help="JSON request body")
    request_source.add_argument("--file", help="JSON file holding the request body")

    args = parser.parse_args(argv)
    cli = IndexCLI()

    if args.command == "validate":
        data = _load_json(args.fields, args.file)

        try:
            result = cli.validate(data)
        except ValidationError as e:
            print(f"Index definition is invalid [{e.code}]: {e.message}")
            sys.exit(1)
        _print_json(result)
        sys.exit(0)

    elif args.command == "show-db":
        store = _open_store(args.data_dir, args.db_filename)
        try:
            databases = cli.show_databases(store)
        finally:
            store.close()
        if not databases:
            print("No databases found")
        else:
            _print_json(databases)

    elif args.command == "show-collection":
        address = _parse_address(args.addr)
        store = _open_store(args.data_dir, args.db_filename)
        try:
            collections = cli.show_collection(store, address, args.collection)
        except KeyError as e:
            print(e.args[0], file=sys.stderr)
            sys.exit(1)
        finally:
            store.close()
        _print_json(collections)

    elif args.command == "create-collection":
        address = _parse_address(args.addr)
        indexes = [_load_json(text, None) for text in args.index]
        store = _open_store(args.data_dir, args.db_filename)
        try:
            result = cli.create_collection(store, address, args.name, indexes)
        except KeyError as e:
            print(e.args[0], file=sys.stderr)
            sys.exit(1)
        except DocIndexError as e:
            print(f"Collection rejected [{e.code}]: {e.message}")
            sys.exit(1)
        finally:
            store.close()
        _print_json(result)

    elif args.command == "create-index":
        address = _parse_address(args.addr)
        request = _load_json(args.request, args.file)
        store = _open_store(args.data_dir, args.db_filename)
        try:
            result = cli.create_index(store, address, request)
        except KeyError as e:
            print(e.args[0], file=sys.stderr)
            sys.exit(1)
        except DocIndexError as e:
            print(f"Index rejected [{e.code}]: {e.message}")
            sys.exit(1)
        finally:
            store.close()
        _print_json(result)


if __name__ == "__main__":
    main()
