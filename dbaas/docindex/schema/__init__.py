"""
Index schema: records, value modes and definition validation.

Invariants:
    - Every persisted IndexField has exactly one value mode
    - Composite definitions always end with the identity field
    - IndexDefinition instances come only from IndexDefinitionValidator
      (or from already-validated persisted records)
"""

from .types import (
    IDENTITY_PATH,
    ArrayConfig,
    ArrayMode,
    Collection,
    Database,
    Index,
    IndexDefinition,
    IndexField,
    IndexKind,
    IndexState,
    Order,
    OrderMode,
    ProposedField,
    ValueMode,
)
from .validator import (
    FieldInput,
    IndexDefinitionValidator,
    SchemaHint,
    ValueShape,
    normalize_identity_field,
)

__all__ = [
    "IDENTITY_PATH",
    "Order",
    "ArrayConfig",
    "IndexState",
    "IndexKind",
    "OrderMode",
    "ArrayMode",
    "ValueMode",
    "IndexField",
    "ProposedField",
    "IndexDefinition",
    "Index",
    "Collection",
    "Database",
    "IndexDefinitionValidator",
    "FieldInput",
    "SchemaHint",
    "ValueShape",
    "normalize_identity_field",
]
