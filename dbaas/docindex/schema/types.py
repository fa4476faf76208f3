"""
Core type definitions for the docindex schema.

This module defines the persisted record shapes of the index core:
- IndexField: one field of an index, with a tagged value mode
- IndexDefinition: a validated, normalized, immutable field list
- Index: a named index definition plus its lifecycle state
- Collection / Database: the containers that own indexes

Record field numbers (compatibility contract, never reused):
    Database:   address=1, sender=2, tx=3, collections=4
    Collection: name=1, index_list=2
    Index:      name=1, fields=2, state=3
    IndexField: field_path=1, order=2 | array_config=3 (oneof value_mode)

Invariants:
    - An IndexField carries exactly one value mode (OrderMode or ArrayMode)
    - UNSPECIFIED enum values are never valid on a persisted field
    - A composite index ends with the identity path (IDENTITY_PATH)
    - Enum numbers are part of the on-disk format and never change

How to change safely:
    - Add new enum values at the end with new numbers
    - Add new record attributes as optional with defaults in from_dict
    - Never reuse a field number or enum number for a different meaning

Example:
    >>> from dbaas.docindex.schema.types import IndexField
    >>> fields = (IndexField.ascending("status"), IndexField.contains("tags"))
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, replace
from dataclasses import field as dataclass_field
from enum import Enum, IntEnum
from typing import Any, Optional, Union

# Reserved field path addressing a document's own identity.
IDENTITY_PATH = "__name__"


class Order(IntEnum):
    """Supported orderings for comparison fields."""

    ORDER_UNSPECIFIED = 0
    ASCENDING = 1
    DESCENDING = 2


class ArrayConfig(IntEnum):
    """Supported array value configurations."""

    ARRAY_CONFIG_UNSPECIFIED = 0
    CONTAINS = 1


class IndexState(IntEnum):
    """Lifecycle state of an index.

    CREATING: backfill in progress; live writes are applied; not queryable.
    READY: fully populated; live writes are applied; queryable.
    NEEDS_REPAIR: build or a live write failed; writes are not applied.
    """

    STATE_UNSPECIFIED = 0
    CREATING = 1
    READY = 2
    NEEDS_REPAIR = 3


class IndexKind(Enum):
    """Classification assigned by the validator."""

    SINGLE_FIELD = "single_field"
    COMPOSITE = "composite"


def parse_enum(enum_cls: type[IntEnum], value: Any) -> IntEnum:
    """Parse an enum given by name or by number."""
    if isinstance(value, str):
        try:
            return enum_cls[value]
        except KeyError:
            raise ValueError(f"Invalid {enum_cls.__name__} '{value}'") from None
    try:
        return enum_cls(int(value))
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {enum_cls.__name__} {value!r}") from None


@dataclass(frozen=True)
class OrderMode:
    """Value mode for range, equality and inequality comparisons."""

    order: Order


@dataclass(frozen=True)
class ArrayMode:
    """Value mode for array-membership queries."""

    array_config: ArrayConfig = ArrayConfig.CONTAINS


ValueMode = Union[OrderMode, ArrayMode]


@dataclass(frozen=True)
class IndexField:
    """A single field of an index.

    Attributes:
        field_path: Dot-addressed path into the document, or IDENTITY_PATH
        mode: Exactly one of OrderMode or ArrayMode

    Example:
        >>> IndexField.descending("created_at").order
        <Order.DESCENDING: 2>
    """

    field_path: str
    mode: ValueMode

    @classmethod
    def ascending(cls, field_path: str) -> IndexField:
        return cls(field_path, OrderMode(Order.ASCENDING))

    @classmethod
    def descending(cls, field_path: str) -> IndexField:
        return cls(field_path, OrderMode(Order.DESCENDING))

    @classmethod
    def contains(cls, field_path: str) -> IndexField:
        return cls(field_path, ArrayMode(ArrayConfig.CONTAINS))

    @property
    def order(self) -> Optional[Order]:
        """The ordering, or None for array fields."""
        if isinstance(self.mode, OrderMode):
            return self.mode.order
        return None

    @property
    def array_config(self) -> Optional[ArrayConfig]:
        """The array configuration, or None for ordered fields."""
        if isinstance(self.mode, ArrayMode):
            return self.mode.array_config
        return None

    @property
    def is_array(self) -> bool:
        return isinstance(self.mode, ArrayMode)

    @property
    def is_identity(self) -> bool:
        return self.field_path == IDENTITY_PATH

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {"field_path": self.field_path}
        if isinstance(self.mode, OrderMode):
            result["order"] = self.mode.order.name
        else:
            result["array_config"] = self.mode.array_config.name
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexField:
        """Create from a persisted dictionary.

        Persisted fields were validated before being written, so this only
        checks that exactly one mode key is present.
        """
        has_order = data.get("order") is not None
        has_array = data.get("array_config") is not None
        if has_order == has_array:
            raise ValueError(f"Persisted field {data!r} must have exactly one value mode")
        if has_order:
            return cls(data["field_path"], OrderMode(parse_enum(Order, data["order"])))
        return cls(
            data["field_path"],
            ArrayMode(parse_enum(ArrayConfig, data["array_config"])),
        )

    def __str__(self) -> str:
        mode = self.order.name if self.order is not None else self.array_config.name
        return f"{self.field_path} {mode}"


@dataclass(frozen=True)
class ProposedField:
    """A field as requested by a client, before validation.

    This mirrors the wire shape, where `order` and `array_config` are two
    members of a oneof and either, both or neither may have been sent. The
    validator turns it into an IndexField or rejects it.
    """

    field_path: str
    order: Optional[Order] = None
    array_config: Optional[ArrayConfig] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProposedField:
        order = data.get("order")
        array_config = data.get("array_config")
        return cls(
            field_path=data.get("field_path", ""),
            order=parse_enum(Order, order) if order is not None else None,
            array_config=(
                parse_enum(ArrayConfig, array_config) if array_config is not None else None
            ),
        )


@dataclass(frozen=True)
class IndexDefinition:
    """A validated, normalized field list.

    Produced only by IndexDefinitionValidator. For composite definitions the
    last field is always the identity path.

    Attributes:
        fields: Ordered fields; order is the key's segment order
        kind: SINGLE_FIELD or COMPOSITE
    """

    fields: tuple[IndexField, ...]
    kind: IndexKind

    @property
    def is_composite(self) -> bool:
        return self.kind == IndexKind.COMPOSITE

    @property
    def field_paths(self) -> tuple[str, ...]:
        return tuple(f.field_path for f in self.fields)

    @property
    def value_fields(self) -> tuple[IndexField, ...]:
        """Fields other than the trailing identity field."""
        if self.is_composite:
            return self.fields[:-1]
        return self.fields

    @property
    def array_field(self) -> Optional[IndexField]:
        for f in self.fields:
            if f.is_array:
                return f
        return None

    @property
    def identity_order(self) -> Order:
        """Direction of the identity segment appended to every key."""
        if self.is_composite:
            return self.fields[-1].order or Order.ASCENDING
        return Order.ASCENDING

    def fingerprint(self) -> str:
        """Short, deterministic hash of the normalized field list.

        Two definitions have equal fingerprints iff they match
        field-for-field and mode-for-mode.
        """
        canonical = json.dumps(
            [f.to_dict() for f in self.fields], sort_keys=True, separators=(",", ":")
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]

    @classmethod
    def from_fields(cls, fields: tuple[IndexField, ...]) -> IndexDefinition:
        """Rebuild a definition from persisted, already-normalized fields."""
        if len(fields) == 1 and not fields[0].is_identity:
            return cls(fields, IndexKind.SINGLE_FIELD)
        return cls(fields, IndexKind.COMPOSITE)


@dataclass(frozen=True)
class Index:
    """A named index definition plus its lifecycle state.

    Attributes:
        name: Server-assigned name; empty for single-field indexes
        definition: Normalized definition
        state: Current lifecycle state

    Single-field indexes have no name and are addressed by their field path.
    """

    name: str
    definition: IndexDefinition
    state: IndexState = IndexState.CREATING

    @property
    def fields(self) -> tuple[IndexField, ...]:
        return self.definition.fields

    @property
    def ref(self) -> str:
        """Name for composite indexes, field path for single-field ones."""
        return self.name or self.definition.fields[0].field_path

    def with_state(self, state: IndexState) -> Index:
        return replace(self, state=state)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "fields": [f.to_dict() for f in self.fields],
            "state": self.state.name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Index:
        fields = tuple(IndexField.from_dict(f) for f in data.get("fields", []))
        state = parse_enum(IndexState, data.get("state", IndexState.CREATING))
        if state == IndexState.STATE_UNSPECIFIED:
            raise ValueError(f"Index '{data.get('name', '')}' has unspecified state")
        return cls(
            name=data.get("name", ""),
            definition=IndexDefinition.from_fields(fields),
            state=state,
        )


@dataclass
class Collection:
    """A named collection and its indexes in creation order."""

    name: str
    index_list: list[Index] = dataclass_field(default_factory=list)

    def find_index(self, index_ref: str) -> Optional[Index]:
        """Find an index by composite name or single-field path."""
        for index in self.index_list:
            if index.ref == index_ref:
                return index
        return None

    def replace_index(self, updated: Index) -> None:
        """Swap in a new version of an index, keeping its position."""
        for i, index in enumerate(self.index_list):
            if index.ref == updated.ref:
                self.index_list[i] = updated
                return
        raise KeyError(updated.ref)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "index_list": [i.to_dict() for i in self.index_list],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Collection:
        return cls(
            name=data["name"],
            index_list=[Index.from_dict(i) for i in data.get("index_list", [])],
        )


@dataclass
class Database:
    """A database record.

    Attributes:
        address: Unique binary identifier
        sender: The single owning sender
        tx: Append-only transaction history (insertion order significant)
        collections: Collections, names unique within the database
    """

    address: bytes
    sender: bytes
    tx: list[bytes] = dataclass_field(default_factory=list)
    collections: list[Collection] = dataclass_field(default_factory=list)

    def record_transaction(self, tx_id: bytes) -> None:
        """Append a transaction reference to the audit trail."""
        self.tx.append(bytes(tx_id))

    def get_collection(self, name: str) -> Optional[Collection]:
        for collection in self.collections:
            if collection.name == name:
                return collection
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address.hex(),
            "sender": self.sender.hex(),
            "tx": [t.hex() for t in self.tx],
            "collections": [c.to_dict() for c in self.collections],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Database:
        return cls(
            address=bytes.fromhex(data["address"]),
            sender=bytes.fromhex(data.get("sender", "")),
            tx=[bytes.fromhex(t) for t in data.get("tx", [])],
            collections=[Collection.from_dict(c) for c in data.get("collections", [])],
        )
