"""
Order-preserving key encoding.

Keys compare with plain memcmp in the same order as the indexed values,
so a lookup is a single byte-range scan.
"""

from .keys import (
    MISSING,
    IndexKeyEncoder,
    complement,
    encode_segment,
    encode_value,
    prefix_successor,
    resolve_path,
    type_bounds,
)

__all__ = [
    "IndexKeyEncoder",
    "MISSING",
    "resolve_path",
    "encode_value",
    "encode_segment",
    "complement",
    "type_bounds",
    "prefix_successor",
]
