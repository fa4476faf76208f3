"""
Error types for the docindex core.

This module defines every exception raised by the index subsystem:
- DocIndexError: Base exception
- ValidationError (+ subclasses): Rejected index definitions
- EncodingError: A document value cannot be encoded into an index key
- StorageError: The backing index store failed to apply keys
- IllegalStateTransition: Lifecycle transition outside the transition table
- Not-found / not-ready errors for catalog lookups
- InvalidLookup: A lookup prefix or predicate that does not fit the index

Invariants:
    - All errors inherit from DocIndexError
    - Validation errors are surfaced synchronously and never retried
    - Encoding and storage errors downgrade an index, never the document store

How to change safely:
    - Add new error codes, never repurpose an existing one
    - Keep `details` JSON-serializable (it is logged via `extra=`)
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DocIndexError(Exception):
    """Base exception for all docindex errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DOCINDEX_ERROR"
        self.details = details or {}


class ValidationError(DocIndexError):
    """Index definition failed validation.

    Raised synchronously from create_index; never retried.
    """

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        field_path: Optional[str] = None,
    ) -> None:
        super().__init__(message, code=code, details={"field_path": field_path})
        self.field_path = field_path


class EmptyFieldList(ValidationError):
    """The proposed index has no fields."""

    def __init__(self) -> None:
        super().__init__("Index definition must contain at least one field", code="EMPTY_FIELD_LIST")


class AmbiguousFieldMode(ValidationError):
    """A field has zero or two value modes, or an UNSPECIFIED enum."""

    def __init__(self, field_path: str, reason: str) -> None:
        super().__init__(
            f"Field '{field_path}' has an ambiguous value mode: {reason}",
            code="AMBIGUOUS_FIELD_MODE",
            field_path=field_path,
        )


class DuplicateFieldPath(ValidationError):
    """The same field path appears more than once."""

    def __init__(self, field_path: str) -> None:
        super().__init__(
            f"Field path '{field_path}' appears more than once in the index definition",
            code="DUPLICATE_FIELD_PATH",
            field_path=field_path,
        )


class MultipleArrayFields(ValidationError):
    """More than one CONTAINS field in a single index."""

    def __init__(self, field_paths: list[str]) -> None:
        super().__init__(
            f"Only one array-contains field is allowed per index, got {field_paths}",
            code="MULTIPLE_ARRAY_FIELDS",
            field_path=field_paths[-1] if field_paths else None,
        )
        self.field_paths = field_paths


class DuplicateIndex(ValidationError):
    """An index with the same fields and orders already exists on the collection."""

    def __init__(self, collection: str, index_name: str) -> None:
        super().__init__(
            f"Collection '{collection}' already has an equivalent index '{index_name}'",
            code="DUPLICATE_INDEX",
        )
        self.details.update({"collection": collection, "index_name": index_name})
        self.collection = collection
        self.index_name = index_name


class SingleFieldPathTaken(ValidationError):
    """The collection already has a single-field index on this path.

    Single-field indexes are referenced by their path, so a path holds at
    most one of them whatever its order.
    """

    def __init__(self, collection: str, field_path: str) -> None:
        super().__init__(
            f"Collection '{collection}' already has a single-field index on '{field_path}'",
            code="SINGLE_FIELD_PATH_TAKEN",
            field_path=field_path,
        )
        self.details["collection"] = collection
        self.collection = collection


class EncodingError(DocIndexError):
    """A document value cannot be encoded into an index key.

    Raised when:
    - The value type is not indexable (mapping, set, datetime, ...)
    - A field path resolves to a non-scalar where a scalar is expected
    - An integer does not fit the shared numeric encoding
    """

    def __init__(
        self,
        message: str,
        field_path: Optional[str] = None,
        doc_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="ENCODING_ERROR",
            details={"field_path": field_path, "doc_id": doc_id},
        )
        self.field_path = field_path
        self.doc_id = doc_id


class StorageError(DocIndexError):
    """The backing index store failed to apply or read keys.

    Attributes:
        transient: Whether a retry may succeed
    """

    def __init__(self, message: str, transient: bool = True) -> None:
        super().__init__(message, code="STORAGE_ERROR", details={"transient": transient})
        self.transient = transient


class IllegalStateTransition(DocIndexError):
    """Attempted lifecycle transition that the transition table forbids."""

    def __init__(self, index_name: str, from_state: str, to_state: str) -> None:
        super().__init__(
            f"Index '{index_name}' cannot move from {from_state} to {to_state}",
            code="ILLEGAL_STATE_TRANSITION",
            details={"index_name": index_name, "from": from_state, "to": to_state},
        )


class CollectionNotFoundError(DocIndexError):
    """Collection does not exist in the database."""

    def __init__(self, collection: str) -> None:
        super().__init__(
            f"Collection not found: {collection}",
            code="NOT_FOUND",
            details={"resource_type": "collection", "resource_id": collection},
        )
        self.collection = collection


class DuplicateCollectionError(DocIndexError):
    """Collection name is already taken within the database."""

    def __init__(self, collection: str) -> None:
        super().__init__(
            f"Collection already exists: {collection}",
            code="ALREADY_EXISTS",
            details={"resource_type": "collection", "resource_id": collection},
        )
        self.collection = collection


class IndexNotFoundError(DocIndexError):
    """No index matches the given name or field path."""

    def __init__(self, collection: str, index_ref: str) -> None:
        super().__init__(
            f"Index '{index_ref}' not found on collection '{collection}'",
            code="NOT_FOUND",
            details={"resource_type": "index", "resource_id": index_ref},
        )
        self.collection = collection
        self.index_ref = index_ref


class IndexNotReady(DocIndexError):
    """Index exists but is not eligible for queries (CREATING or NEEDS_REPAIR)."""

    def __init__(self, index_ref: str, state: str) -> None:
        super().__init__(
            f"Index '{index_ref}' is not ready for queries (state={state})",
            code="INDEX_NOT_READY",
            details={"index": index_ref, "state": state},
        )
        self.state = state


class InvalidLookup(DocIndexError):
    """The lookup does not fit the index's fields."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_LOOKUP")
