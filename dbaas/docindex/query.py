"""
Lookup predicates and their translation into key ranges.

A lookup fixes equality values for a prefix of an index's fields and may put
one predicate on the next field:

    Equals(value)    exact match (ordered fields)
    Contains(value)  array membership (CONTAINS fields)
    Range(lo, hi)    lo <= v < hi by default; either bound may be None

Because every key is order-preserving, each lookup is a single contiguous
byte range [start, end) over the index's key space. A Range with one open
side stays within the type of its other bound (age > 10 never matches
strings).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union

from .encoding.keys import encode_segment, encode_value, prefix_successor, type_bounds
from .errors import InvalidLookup
from .schema.types import IndexDefinition, IndexField, Order


@dataclass(frozen=True)
class Equals:
    value: Any


@dataclass(frozen=True)
class Contains:
    value: Any


@dataclass(frozen=True)
class Range:
    """Range predicate on an ordered field.

    Attributes:
        lower: Lower bound, or None for open
        upper: Upper bound, or None for open
        lower_inclusive: Whether lower itself matches
        upper_inclusive: Whether upper itself matches
    """

    lower: Any = None
    upper: Any = None
    lower_inclusive: bool = True
    upper_inclusive: bool = False


Predicate = Union[Equals, Contains, Range]


@dataclass(frozen=True)
class KeyRange:
    """Half-open byte range [start, end); end=None means unbounded."""

    start: bytes
    end: Optional[bytes]


def _equality_segment(index_field: IndexField, value: Any) -> bytes:
    if index_field.is_array:
        return encode_value(value)
    return encode_segment(value, index_field.order)


def _after(prefix: bytes) -> Optional[bytes]:
    return prefix_successor(prefix)


def key_range(
    definition: IndexDefinition,
    predicate: Optional[Predicate] = None,
    prefix: Sequence[Any] = (),
) -> KeyRange:
    """Translate a lookup into the byte range of matching keys.

    Args:
        definition: The index definition being searched
        predicate: Optional predicate on the field after the prefix
        prefix: Equality values for the leading fields

    Raises:
        InvalidLookup: If the prefix or predicate does not fit the fields
    """
    fields = definition.value_fields
    if len(prefix) > len(fields):
        raise InvalidLookup(f"Prefix has {len(prefix)} values but the index has {len(fields)} fields")

    head = b"".join(_equality_segment(f, v) for f, v in zip(fields, prefix))

    if predicate is None:
        return KeyRange(head, _after(head))

    if len(prefix) == len(fields):
        raise InvalidLookup("No field left for the predicate after the prefix")
    target = fields[len(prefix)]

    if isinstance(predicate, Contains):
        if not target.is_array:
            raise InvalidLookup(f"Field '{target.field_path}' is not a CONTAINS field")
        point = head + encode_value(predicate.value)
        return KeyRange(point, _after(point))

    if target.is_array:
        raise InvalidLookup(f"Field '{target.field_path}' only supports Contains")

    if isinstance(predicate, Equals):
        point = head + encode_segment(predicate.value, target.order)
        return KeyRange(point, _after(point))

    if isinstance(predicate, Range):
        return _range(head, target.order, predicate)

    raise InvalidLookup(f"Unsupported predicate: {predicate!r}")


def _range(head: bytes, order: Optional[Order], predicate: Range) -> KeyRange:
    lower, upper = predicate.lower, predicate.upper
    if lower is None and upper is None:
        return KeyRange(head, _after(head))

    descending = order == Order.DESCENDING
    # In a DESCENDING field the upper value bound becomes the lower byte bound.
    low_value, low_inclusive = (upper, predicate.upper_inclusive) if descending else (
        lower,
        predicate.lower_inclusive,
    )
    high_value, high_inclusive = (lower, predicate.lower_inclusive) if descending else (
        upper,
        predicate.upper_inclusive,
    )

    if low_value is not None:
        low = head + encode_segment(low_value, order)
        start = low if low_inclusive else _after(low)
    else:
        start = head + type_bounds(high_value, order)[0]

    if high_value is not None:
        high = head + encode_segment(high_value, order)
        end = _after(high) if high_inclusive else high
    else:
        end = head + type_bounds(low_value, order)[1]

    # _after only returns None for all-0xFF input, which no segment produces
    return KeyRange(start or b"", end)
