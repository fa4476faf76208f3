"""
Unit tests for order-preserving key encoding.

Tests cover:
- Cross-type and within-type ordering
- DESCENDING segments
- Single-field, CONTAINS and composite key generation
- Missing fields and encoding errors
"""

import math

import pytest

from dbaas.docindex.documents import Document
from dbaas.docindex.encoding.keys import (
    MISSING,
    IndexKeyEncoder,
    encode_segment,
    encode_value,
    prefix_successor,
    resolve_path,
    type_bounds,
)
from dbaas.docindex.errors import EncodingError
from dbaas.docindex.schema.types import IndexField, Order
from dbaas.docindex.schema.validator import IndexDefinitionValidator


def definition(*fields):
    return IndexDefinitionValidator().validate(None, list(fields))


class TestValueOrdering:
    """Tests for segment ordering."""

    def test_cross_type_order(self):
        """null < boolean < number < string < bytes."""
        values = [b"\x00", "", 0, False, None]
        encoded = sorted(encode_value(v) for v in values)
        assert encoded == [encode_value(v) for v in (None, False, 0, "", b"\x00")]

    def test_numbers_share_one_order(self):
        """Ints and floats interleave numerically."""
        values = [3, -1.5, 2.25, -10, 0, 1e300, -1e300, float("-inf"), float("inf")]
        encoded = [encode_value(v) for v in values]
        assert sorted(encoded) == [encode_value(v) for v in sorted(values)]

    def test_int_and_float_equal(self):
        """An int and the equal float encode identically."""
        assert encode_value(2) == encode_value(2.0)

    def test_negative_zero(self):
        """-0.0 encodes as 0.0."""
        assert encode_value(-0.0) == encode_value(0.0) == encode_value(0)

    def test_nan_sorts_first(self):
        """NaN sorts before every other number."""
        assert encode_value(math.nan) < encode_value(float("-inf"))
        assert encode_value(math.nan) > encode_value(True)

    def test_integer_out_of_range(self):
        """Integers beyond 2**53 are rejected."""
        assert encode_value(2**53)
        with pytest.raises(EncodingError):
            encode_value(2**53 + 1)
        with pytest.raises(EncodingError):
            encode_value(-(2**53) - 1)

    def test_strings(self):
        """Strings sort by UTF-8 bytes, prefixes first."""
        values = ["b", "a", "ab", "", "a\x00", "é"]
        encoded = [encode_value(v) for v in values]
        assert sorted(encoded) == [encode_value(v) for v in sorted(values, key=lambda s: s.encode())]

    def test_prefix_free(self):
        """No segment is a prefix of a different segment."""
        a = encode_value("a")
        ab = encode_value("ab")
        assert not ab.startswith(a)
        assert not encode_value(b"x\x00").startswith(encode_value(b"x"))

    def test_booleans(self):
        assert encode_value(False) < encode_value(True)

    def test_unsupported_type(self):
        """Mappings and other non-scalars are rejected."""
        with pytest.raises(EncodingError):
            encode_value({"a": 1})
        with pytest.raises(EncodingError):
            encode_value({1, 2})

    def test_descending_inverts(self):
        """DESCENDING segments sort in reverse value order."""
        values = [None, True, -5, 7, "x", "xy", b"z"]
        encoded = [encode_segment(v, Order.DESCENDING) for v in values]
        assert sorted(encoded) == list(reversed(encoded))


class TestRangeHelpers:
    """Tests for lookup bound helpers."""

    def test_type_bounds_ascending(self):
        """Every number lies within the number type bounds."""
        start, end = type_bounds(5, Order.ASCENDING)
        for v in (-1e300, 0, 42, math.nan):
            assert start <= encode_value(v) < end
        assert not start <= encode_value("a") < end

    def test_type_bounds_descending(self):
        start, end = type_bounds("a", Order.DESCENDING)
        for v in ("", "a", "zzz"):
            assert start <= encode_segment(v, Order.DESCENDING) < end
        assert not start <= encode_segment(1, Order.DESCENDING) < end

    def test_prefix_successor(self):
        assert prefix_successor(b"\x01\x02") == b"\x01\x03"
        assert prefix_successor(b"\x01\xff") == b"\x02"
        assert prefix_successor(b"\xff\xff") is None
        assert prefix_successor(b"") is None


class TestResolvePath:
    """Tests for dot-addressed path resolution."""

    def test_nested(self):
        assert resolve_path({"a": {"b": {"c": 3}}}, "a.b.c") == 3

    def test_missing(self):
        assert resolve_path({"a": {"b": 1}}, "a.c") is MISSING
        assert resolve_path({"a": 1}, "a.b") is MISSING

    def test_explicit_null_is_present(self):
        assert resolve_path({"a": None}, "a") is None


class TestIndexKeyEncoder:
    """Tests for IndexKeyEncoder."""

    @pytest.fixture
    def encoder(self):
        return IndexKeyEncoder()

    def test_single_field_one_key(self, encoder):
        """Single-field indexes produce one key per document."""
        keys = encoder.encode(Document("u1", {"age": 20}), definition(IndexField.ascending("age")))

        assert keys == [encode_value(20) + encode_value("u1")]

    def test_single_field_ascending_order(self, encoder):
        """Key order equals value order for distinct values."""
        d = definition(IndexField.ascending("age"))
        ages = [30, 5, 20, -1, 7.5]
        keys = [encoder.encode(Document(f"d{i}", {"age": a}), d)[0] for i, a in enumerate(ages)]

        by_key = [ages[keys.index(k)] for k in sorted(keys)]
        assert by_key == sorted(ages)

    def test_single_field_descending_order(self, encoder):
        """Key order is inverted for DESCENDING."""
        d = definition(IndexField.descending("age"))
        ages = [30, 5, 20]
        keys = [encoder.encode(Document(f"d{i}", {"age": a}), d)[0] for i, a in enumerate(ages)]

        by_key = [ages[keys.index(k)] for k in sorted(keys)]
        assert by_key == [30, 20, 5]

    def test_single_field_identity_ascending(self, encoder):
        """Equal values in a DESCENDING single-field index break ties by id ascending."""
        d = definition(IndexField.descending("age"))
        k1 = encoder.encode(Document("a", {"age": 1}), d)[0]
        k2 = encoder.encode(Document("b", {"age": 1}), d)[0]
        assert k1 < k2

    def test_missing_field(self, encoder):
        """A document missing the field yields no keys."""
        d = definition(IndexField.ascending("age"))
        assert encoder.encode(Document("u1", {"name": "x"}), d) == []

    def test_null_is_indexed(self, encoder):
        """An explicit null is a value, not an absence."""
        d = definition(IndexField.ascending("age"))
        assert len(encoder.encode(Document("u1", {"age": None}), d)) == 1

    def test_nested_path(self, encoder):
        d = definition(IndexField.ascending("profile.age"))
        keys = encoder.encode(Document("u1", {"profile": {"age": 3}}), d)
        assert keys == [encode_value(3) + encode_value("u1")]

    def test_contains_one_key_per_element(self, encoder):
        """CONTAINS yields one key per distinct element."""
        d = definition(IndexField.contains("tags"))
        keys = encoder.encode(Document("u1", {"tags": ["b", "a", "b"]}), d)

        assert keys == [
            encode_value("a") + encode_value("u1"),
            encode_value("b") + encode_value("u1"),
        ]

    def test_contains_empty_or_scalar(self, encoder):
        """An empty array or a non-array value yields no keys."""
        d = definition(IndexField.contains("tags"))
        assert encoder.encode(Document("u1", {"tags": []}), d) == []
        assert encoder.encode(Document("u1", {"tags": "a"}), d) == []

    def test_contains_non_scalar_element(self, encoder):
        d = definition(IndexField.contains("tags"))
        with pytest.raises(EncodingError) as exc_info:
            encoder.encode(Document("u1", {"tags": [{"a": 1}]}), d)
        assert exc_info.value.doc_id == "u1"
        assert exc_info.value.field_path == "tags"

    def test_order_field_non_scalar(self, encoder):
        """A list under an ordered field is an encoding error."""
        d = definition(IndexField.ascending("age"))
        with pytest.raises(EncodingError):
            encoder.encode(Document("u1", {"age": [1, 2]}), d)

    def test_composite_with_contains(self, encoder):
        """Composite keys cross-product over the CONTAINS field."""
        d = definition(IndexField.ascending("status"), IndexField.contains("tags"))
        keys = encoder.encode(Document("d1", {"status": "open", "tags": ["a", "b"]}), d)

        status = encode_value("open")
        assert len(keys) == 2
        assert all(k.startswith(status) for k in keys)
        assert keys[0] == status + encode_value("a") + encode_value("d1")
        assert keys[1] == status + encode_value("b") + encode_value("d1")

    def test_composite_missing_any_field(self, encoder):
        """A composite key needs every value field."""
        d = definition(IndexField.ascending("status"), IndexField.ascending("priority"))
        assert encoder.encode(Document("d1", {"status": "open"}), d) == []

    def test_composite_mixed_directions(self, encoder):
        """Composite order follows each field's direction in turn."""
        d = definition(IndexField.ascending("a"), IndexField.descending("b"))
        docs = [
            Document("1", {"a": 1, "b": 1}),
            Document("2", {"a": 1, "b": 2}),
            Document("3", {"a": 0, "b": 0}),
        ]
        keyed = sorted((encoder.encode(doc, d)[0], doc.doc_id) for doc in docs)
        assert [doc_id for _, doc_id in keyed] == ["3", "2", "1"]

    def test_composite_identity_descending(self, encoder):
        """The identity segment takes the identity field's direction."""
        d = definition(IndexField.ascending("a"), IndexField.descending("b"))
        k1 = encoder.encode(Document("x", {"a": 1, "b": 1}), d)[0]
        k2 = encoder.encode(Document("y", {"a": 1, "b": 1}), d)[0]
        assert k2 < k1

    def test_deterministic(self, encoder):
        d = definition(IndexField.ascending("status"), IndexField.contains("tags"))
        doc = Document("d1", {"status": "open", "tags": ["x", "y", "z"]})
        assert encoder.encode(doc, d) == encoder.encode(doc, d)
