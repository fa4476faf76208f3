"""
Order-preserving index key encoding.

Every key is a byte string whose memcmp order equals the index order of the
documents it was derived from, so a plain sorted key space (a SQLite BLOB
column, a sorted list) can serve range and containment lookups.

Canonical cross-type order, fixed for every index in the system:

    null < boolean < number < string < bytes

Segment layout (ASCENDING):
    null    -> TAG_NULL
    boolean -> TAG_BOOLEAN + 0x00 (false) | 0x01 (true)
    number  -> TAG_NUMBER + 8-byte sortable IEEE-754 double
               ints and floats share one numeric order; NaN sorts first,
               -0.0 encodes as 0.0, ints outside +/-2**53 are rejected
    string  -> TAG_STRING + UTF-8, 0x00 escaped as 0x00 0x01, then 0x00 0x00
    bytes   -> TAG_BYTES + raw, 0x00 escaped as 0x00 0x01, then 0x00 0x00

Segments are prefix-free, so a DESCENDING segment is just the bitwise
complement of the ASCENDING one and keys mixing directions still sort as a
single byte string.

Key layout:
    value segment(s) in field order + identity segment (document id)

Invariants:
    - encode() is deterministic and returns sorted, de-duplicated keys
    - The identity segment is always last, so keys are unique per document
    - A missing field yields no keys, never an error

How to change safely:
    - Any change to a tag or segment layout changes every stored key;
      indexes must be rebuilt (they are disposable derived data)
"""

from __future__ import annotations

import itertools
import logging
import math
import struct
from collections.abc import Mapping
from typing import Any, Optional

from ..documents import Document
from ..errors import EncodingError
from ..schema.types import IndexDefinition, IndexField, Order

logger = logging.getLogger(__name__)

TAG_NULL = 0x05
TAG_BOOLEAN = 0x10
TAG_NUMBER = 0x20
TAG_STRING = 0x30
TAG_BYTES = 0x40

# Largest integer magnitude representable exactly as a double.
MAX_EXACT_INT = 2**53

_NAN_SEGMENT = b"\x00" * 8


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def resolve_path(data: Mapping[str, Any], field_path: str) -> Any:
    """Resolve a dot-addressed path, returning MISSING if any step is absent."""
    current: Any = data
    for part in field_path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return MISSING
    return current


def type_tag(value: Any) -> int:
    """Return the type tag of an indexable scalar.

    Raises:
        EncodingError: If the value is not an indexable scalar
    """
    if value is None:
        return TAG_NULL
    if isinstance(value, bool):
        return TAG_BOOLEAN
    if isinstance(value, (int, float)):
        return TAG_NUMBER
    if isinstance(value, str):
        return TAG_STRING
    if isinstance(value, (bytes, bytearray)):
        return TAG_BYTES
    raise EncodingError(f"Unsupported value type for indexing: {type(value).__name__}")


def _encode_number(value: Any) -> bytes:
    if isinstance(value, int):
        if abs(value) > MAX_EXACT_INT:
            raise EncodingError(f"Integer {value} is outside the indexable range of +/-2**53")
        value = float(value)
    if math.isnan(value):
        return _NAN_SEGMENT
    if value == 0.0:
        value = 0.0
    raw = bytearray(struct.pack(">d", value))
    if raw[0] & 0x80:
        # Negative: flip all bits so larger magnitudes sort first
        for i in range(8):
            raw[i] ^= 0xFF
    else:
        raw[0] ^= 0x80
    return bytes(raw)


def _escape(raw: bytes) -> bytes:
    return raw.replace(b"\x00", b"\x00\x01") + b"\x00\x00"


def encode_value(value: Any) -> bytes:
    """Encode a scalar as an ASCENDING segment.

    Raises:
        EncodingError: If the value is not an indexable scalar
    """
    tag = type_tag(value)
    if tag == TAG_NULL:
        return bytes([TAG_NULL])
    if tag == TAG_BOOLEAN:
        return bytes([TAG_BOOLEAN, 0x01 if value else 0x00])
    if tag == TAG_NUMBER:
        return bytes([TAG_NUMBER]) + _encode_number(value)
    if tag == TAG_STRING:
        return bytes([TAG_STRING]) + _escape(value.encode("utf-8"))
    return bytes([TAG_BYTES]) + _escape(bytes(value))


def complement(segment: bytes) -> bytes:
    """Bitwise complement, used for DESCENDING segments."""
    return bytes(b ^ 0xFF for b in segment)


def encode_segment(value: Any, order: Optional[Order]) -> bytes:
    """Encode a scalar in the given direction (None means ASCENDING)."""
    segment = encode_value(value)
    if order == Order.DESCENDING:
        return complement(segment)
    return segment


def type_bounds(value: Any, order: Optional[Order]) -> tuple[bytes, bytes]:
    """Byte range [start, end) covering every segment of value's type."""
    tag = type_tag(value)
    if order == Order.DESCENDING:
        return bytes([0xFF - tag]), bytes([0x100 - tag])
    return bytes([tag]), bytes([tag + 1])


def prefix_successor(prefix: bytes) -> Optional[bytes]:
    """Smallest byte string greater than every string starting with prefix.

    Returns None when no such string exists (empty or all-0xFF prefix).
    """
    trimmed = prefix.rstrip(b"\xff")
    if not trimmed:
        return None
    return trimmed[:-1] + bytes([trimmed[-1] + 1])


def is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (bool, int, float, str, bytes, bytearray))


class IndexKeyEncoder:
    """Encodes documents into sorted binary index keys.

    Example:
        >>> encoder = IndexKeyEncoder()
        >>> keys = encoder.encode(Document("u1", {"age": 20}), definition)
        >>> len(keys)
        1
    """

    def encode(self, document: Document, index_definition: IndexDefinition) -> list[bytes]:
        """Produce every key the document contributes to the index.

        Args:
            document: The document to encode
            index_definition: Normalized definition

        Returns:
            Sorted, de-duplicated keys; empty if a required field is absent

        Raises:
            EncodingError: Unsupported type or non-scalar where scalar expected
        """
        per_field: list[list[bytes]] = []
        for index_field in index_definition.value_fields:
            segments = self._field_segments(document, index_field)
            if not segments:
                return []
            per_field.append(segments)

        identity = encode_segment(document.doc_id, index_definition.identity_order)
        keys = {b"".join(combo) + identity for combo in itertools.product(*per_field)}
        return sorted(keys)

    def _field_segments(self, document: Document, index_field: IndexField) -> list[bytes]:
        value = resolve_path(document.data, index_field.field_path)
        if value is MISSING:
            return []

        try:
            if index_field.is_array:
                if not isinstance(value, (list, tuple)):
                    return []
                for element in value:
                    if not is_scalar(element):
                        raise EncodingError(
                            f"Array element of type {type(element).__name__} is not indexable"
                        )
                # Array fields have no direction; elements are encoded ASCENDING.
                return sorted({encode_value(element) for element in value})

            if not is_scalar(value):
                raise EncodingError(
                    f"Expected a scalar, got {type(value).__name__}"
                )
            return [encode_segment(value, index_field.order)]
        except EncodingError as e:
            raise EncodingError(
                f"Cannot encode field '{index_field.field_path}' of document "
                f"'{document.doc_id}': {e.message}",
                field_path=index_field.field_path,
                doc_id=document.doc_id,
            ) from e
