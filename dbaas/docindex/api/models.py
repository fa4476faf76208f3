"""
Wire models for external JSON.

Clients and the CLI send index definitions and read catalog records as JSON.
Field names follow proto3 JSON mapping (lowerCamelCase, snake_case also
accepted) and enums may be given by name or by number. Bytes are hex strings.

The models only check shape. Index rules (exactly one value mode, identity
placement, array limits) stay in IndexDefinitionValidator so that every
caller gets the same ValidationError codes.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic import ValidationError as ModelValidationError

from ..errors import ValidationError
from ..schema.types import (
    ArrayConfig,
    Collection,
    Database,
    Index,
    IndexState,
    Order,
    ProposedField,
    parse_enum,
)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class IndexFieldModel(_WireModel):
    """One field of an index as sent on the wire."""

    field_path: str = Field(..., alias="fieldPath", description="Dot-addressed field path")
    order: Optional[Order] = Field(None, description="ASCENDING or DESCENDING")
    array_config: Optional[ArrayConfig] = Field(
        None, alias="arrayConfig", description="CONTAINS"
    )

    @field_validator("order", mode="before")
    @classmethod
    def _parse_order(cls, value: Any) -> Optional[Order]:
        return parse_enum(Order, value) if value is not None else None

    @field_validator("array_config", mode="before")
    @classmethod
    def _parse_array_config(cls, value: Any) -> Optional[ArrayConfig]:
        return parse_enum(ArrayConfig, value) if value is not None else None

    @field_serializer("order", "array_config")
    def _enum_name(self, value: Any) -> Optional[str]:
        return value.name if value is not None else None

    def to_proposed(self) -> ProposedField:
        return ProposedField(self.field_path, self.order, self.array_config)


class CreateIndexRequest(_WireModel):
    """Request to create an index on a collection."""

    collection: str = Field(..., min_length=1, description="Collection name")
    fields: list[IndexFieldModel] = Field(default_factory=list, description="Fields in key order")

    def proposed_fields(self) -> list[ProposedField]:
        return [f.to_proposed() for f in self.fields]


class IndexModel(_WireModel):
    """A persisted index."""

    name: str = Field("", description="Server-assigned name; empty for single-field")
    fields: list[IndexFieldModel] = Field(default_factory=list)
    state: IndexState = Field(IndexState.CREATING)

    @field_validator("state", mode="before")
    @classmethod
    def _parse_state(cls, value: Any) -> IndexState:
        state = parse_enum(IndexState, value)
        if state == IndexState.STATE_UNSPECIFIED:
            raise ValueError("state cannot be STATE_UNSPECIFIED")
        return state

    @field_serializer("state")
    def _state_name(self, value: IndexState) -> str:
        return value.name

    def to_record(self) -> Index:
        return Index.from_dict(
            {
                "name": self.name,
                "fields": [
                    f.model_dump(exclude_none=True, by_alias=False) for f in self.fields
                ],
                "state": self.state,
            }
        )

    @classmethod
    def from_record(cls, index: Index) -> IndexModel:
        return cls.model_validate(index.to_dict())


class CollectionModel(_WireModel):
    name: str = Field(..., min_length=1)
    index_list: list[IndexModel] = Field(default_factory=list, alias="indexList")

    def to_record(self) -> Collection:
        return Collection(name=self.name, index_list=[i.to_record() for i in self.index_list])

    @classmethod
    def from_record(cls, collection: Collection) -> CollectionModel:
        return cls.model_validate(collection.to_dict())


class DatabaseModel(_WireModel):
    """A database record with hex-encoded binary members."""

    address: str = Field(..., min_length=1, description="Hex address")
    sender: str = Field("", description="Hex owning sender")
    tx: list[str] = Field(default_factory=list, description="Hex transaction ids, oldest first")
    collections: list[CollectionModel] = Field(default_factory=list)

    @field_validator("address", "sender")
    @classmethod
    def _check_hex(cls, value: str) -> str:
        bytes.fromhex(value)
        return value.lower()

    @field_validator("tx")
    @classmethod
    def _check_tx(cls, value: list[str]) -> list[str]:
        for tx_id in value:
            bytes.fromhex(tx_id)
        return [tx_id.lower() for tx_id in value]

    def to_record(self) -> Database:
        return Database(
            address=bytes.fromhex(self.address),
            sender=bytes.fromhex(self.sender),
            tx=[bytes.fromhex(t) for t in self.tx],
            collections=[c.to_record() for c in self.collections],
        )

    @classmethod
    def from_record(cls, database: Database) -> DatabaseModel:
        return cls.model_validate(database.to_dict())


def parse_index_fields(data: Any) -> list[ProposedField]:
    """Parse a JSON field list (or {"fields": [...]}) into proposed fields.

    Raises:
        ValidationError: If the JSON does not have the expected shape
    """
    if isinstance(data, dict):
        data = data.get("fields", [])
    if not isinstance(data, list):
        raise ValidationError("Index fields must be a JSON list", code="MALFORMED_REQUEST")
    try:
        return [IndexFieldModel.model_validate(item).to_proposed() for item in data]
    except ModelValidationError as e:
        raise ValidationError(
            f"Malformed index field: {e.errors()[0]['msg']}", code="MALFORMED_REQUEST"
        ) from e


def parse_create_index_request(data: Any) -> CreateIndexRequest:
    """Parse a create-index request body.

    Raises:
        ValidationError: If the JSON does not have the expected shape
    """
    try:
        return CreateIndexRequest.model_validate(data)
    except ModelValidationError as e:
        raise ValidationError(
            f"Malformed create index request: {e.errors()[0]['msg']}", code="MALFORMED_REQUEST"
        ) from e
