"""
Unit tests for catalog records and the JSON wire models.

Tests cover:
- IndexField value modes
- Index, Collection and Database serialization
- Pydantic wire models (camelCase, enum names/numbers, hex)
"""

import pytest
from pydantic import ValidationError as ModelValidationError

from dbaas.docindex.api.models import (
    CollectionModel,
    DatabaseModel,
    IndexFieldModel,
    IndexModel,
    parse_create_index_request,
    parse_index_fields,
)
from dbaas.docindex.errors import ValidationError
from dbaas.docindex.schema.types import (
    ArrayConfig,
    ArrayMode,
    Collection,
    Database,
    Index,
    IndexField,
    IndexKind,
    IndexState,
    Order,
    OrderMode,
)
from dbaas.docindex.schema.validator import IndexDefinitionValidator


@pytest.fixture
def composite_index():
    definition = IndexDefinitionValidator().validate(
        None, [IndexField.ascending("status"), IndexField.contains("tags")]
    )
    return Index(
        name=f"collections/tasks/indexes/{definition.fingerprint()}",
        definition=definition,
        state=IndexState.READY,
    )


class TestIndexField:
    """Tests for IndexField."""

    def test_order_mode(self):
        f = IndexField.descending("created")
        assert f.mode == OrderMode(Order.DESCENDING)
        assert f.order == Order.DESCENDING
        assert f.array_config is None
        assert not f.is_array

    def test_array_mode(self):
        f = IndexField.contains("tags")
        assert f.mode == ArrayMode(ArrayConfig.CONTAINS)
        assert f.order is None
        assert f.is_array

    def test_to_dict_uses_enum_names(self):
        assert IndexField.ascending("a").to_dict() == {"field_path": "a", "order": "ASCENDING"}
        assert IndexField.contains("t").to_dict() == {"field_path": "t", "array_config": "CONTAINS"}

    def test_from_dict_requires_one_mode(self):
        with pytest.raises(ValueError):
            IndexField.from_dict({"field_path": "a"})
        with pytest.raises(ValueError):
            IndexField.from_dict({"field_path": "a", "order": 1, "array_config": 1})

    def test_from_dict_numbers(self):
        assert IndexField.from_dict({"field_path": "a", "order": 2}) == IndexField.descending("a")


class TestRecords:
    """Tests for Index, Collection and Database records."""

    def test_index_round_trip(self, composite_index):
        restored = Index.from_dict(composite_index.to_dict())

        assert restored == composite_index
        assert restored.definition.kind == IndexKind.COMPOSITE

    def test_single_field_ref(self):
        definition = IndexDefinitionValidator().validate(None, [IndexField.ascending("age")])
        index = Index(name="", definition=definition)
        assert index.ref == "age"
        assert Index.from_dict(index.to_dict()).definition.kind == IndexKind.SINGLE_FIELD

    def test_unspecified_state_rejected(self, composite_index):
        data = composite_index.to_dict()
        data["state"] = "STATE_UNSPECIFIED"
        with pytest.raises(ValueError):
            Index.from_dict(data)

    def test_collection_find_and_replace(self, composite_index):
        collection = Collection(name="tasks", index_list=[composite_index])

        assert collection.find_index(composite_index.name) is composite_index
        assert collection.find_index("missing") is None

        broken = composite_index.with_state(IndexState.NEEDS_REPAIR)
        collection.replace_index(broken)
        assert collection.index_list == [broken]

    def test_database_transactions_append(self):
        database = Database(address=b"\x01", sender=b"\xaa")
        database.record_transaction(b"\x02")
        database.record_transaction(b"\x01")
        assert database.tx == [b"\x02", b"\x01"]

    def test_database_dict_is_hex(self, composite_index):
        database = Database(
            address=b"\x01\x02",
            sender=b"\xaa",
            tx=[b"\x10"],
            collections=[Collection("tasks", [composite_index])],
        )
        data = database.to_dict()

        assert data["address"] == "0102"
        assert data["tx"] == ["10"]
        assert Database.from_dict(data) == database


class TestWireModels:
    """Tests for the pydantic wire models."""

    def test_camel_case_and_enum_names(self):
        model = IndexFieldModel.model_validate({"fieldPath": "age", "order": "DESCENDING"})
        assert model.field_path == "age"
        assert model.order == Order.DESCENDING

    def test_snake_case_and_enum_numbers(self):
        model = IndexFieldModel.model_validate({"field_path": "tags", "array_config": 1})
        assert model.array_config == ArrayConfig.CONTAINS

    def test_serializes_enum_names(self):
        model = IndexFieldModel(field_path="age", order=Order.ASCENDING)
        assert model.model_dump(by_alias=True, exclude_none=True) == {
            "fieldPath": "age",
            "order": "ASCENDING",
        }

    def test_parse_index_fields(self):
        proposed = parse_index_fields(
            {"fields": [{"fieldPath": "a", "order": "ASCENDING"}, {"fieldPath": "b", "order": 2}]}
        )
        assert [p.field_path for p in proposed] == ["a", "b"]
        assert proposed[1].order == Order.DESCENDING

    def test_parse_index_fields_malformed(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_index_fields([{"fieldPath": "a", "order": "SIDEWAYS"}])
        assert exc_info.value.code == "MALFORMED_REQUEST"

        with pytest.raises(ValidationError):
            parse_index_fields("not a list")

        with pytest.raises(ValidationError):
            parse_index_fields([{"fieldPath": "a", "unknown": 1}])

    def test_create_index_request(self):
        request = parse_create_index_request(
            {"collection": "users", "fields": [{"fieldPath": "age", "order": "ASCENDING"}]}
        )
        assert request.collection == "users"
        assert request.proposed_fields()[0].order == Order.ASCENDING

        with pytest.raises(ValidationError):
            parse_create_index_request({"collection": "", "fields": []})

    def test_index_model_round_trip(self, composite_index):
        model = IndexModel.from_record(composite_index)
        assert model.state == IndexState.READY
        assert model.to_record() == composite_index

    def test_index_model_rejects_unspecified_state(self):
        with pytest.raises(ModelValidationError):
            IndexModel.model_validate({"name": "x", "fields": [], "state": 0})

    def test_collection_model_aliases(self, composite_index):
        model = CollectionModel.from_record(Collection("tasks", [composite_index]))
        dumped = model.model_dump(mode="json", by_alias=True, exclude_none=True)

        assert dumped["name"] == "tasks"
        assert dumped["indexList"][0]["state"] == "READY"
        assert dumped["indexList"][0]["fields"][1] == {"fieldPath": "tags", "arrayConfig": "CONTAINS"}

    def test_database_model(self, composite_index):
        database = Database(
            address=b"\xab", sender=b"\x01", tx=[b"\x02"], collections=[Collection("tasks", [composite_index])]
        )
        model = DatabaseModel.from_record(database)

        assert model.address == "ab"
        assert model.to_record() == database

    def test_database_model_rejects_bad_hex(self):
        with pytest.raises(ModelValidationError):
            DatabaseModel.model_validate({"address": "zz"})
