"""
External JSON surface of the index service.

Invariants:
    - Wire models only check shape; index rules live in the validator
    - Enums accept names or numbers; bytes travel as hex
"""

from .models import (
    CollectionModel,
    CreateIndexRequest,
    DatabaseModel,
    IndexFieldModel,
    IndexModel,
    parse_create_index_request,
    parse_index_fields,
)

__all__ = [
    "IndexFieldModel",
    "IndexModel",
    "CollectionModel",
    "DatabaseModel",
    "CreateIndexRequest",
    "parse_index_fields",
    "parse_create_index_request",
]
