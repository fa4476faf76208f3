"""
Index definition validation and normalization.

The validator is the only producer of IndexDefinition. It is pure: it never
touches storage, so it can run on a client, in the CLI or in the catalog.

Rules, applied in order:
    1. The field list is non-empty
    2. Every field has exactly one value mode, and no UNSPECIFIED enum
    3. No field path repeats; the identity path may only be the final entry
    4. One non-identity field -> single-field index, no normalization
    5. Two or more fields -> composite; the identity field is appended if missing
    6. At most one CONTAINS field per index

How to change safely:
    - New rules go after the existing ones so error precedence stays stable
    - Keep normalize_identity_field a pure function over the field tuple
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Union

from ..errors import (
    AmbiguousFieldMode,
    DuplicateFieldPath,
    EmptyFieldList,
    MultipleArrayFields,
    ValidationError,
)
from .types import (
    IDENTITY_PATH,
    ArrayConfig,
    ArrayMode,
    IndexDefinition,
    IndexField,
    IndexKind,
    Order,
    OrderMode,
    ProposedField,
)

logger = logging.getLogger(__name__)

FieldInput = Union[ProposedField, IndexField, Mapping[str, Any]]


class ValueShape(Enum):
    """Shape hint for a collection field, used to catch mode mismatches early."""

    SCALAR = "scalar"
    ARRAY = "array"


SchemaHint = Mapping[str, ValueShape]


def _to_proposed(item: FieldInput) -> ProposedField:
    if isinstance(item, ProposedField):
        return item
    if isinstance(item, IndexField):
        return ProposedField(item.field_path, item.order, item.array_config)
    if isinstance(item, Mapping):
        try:
            return ProposedField.from_dict(dict(item))
        except ValueError as e:
            raise AmbiguousFieldMode(str(item.get("field_path", "")), str(e)) from e
    raise TypeError(f"Unsupported index field input: {type(item).__name__}")


def _check_path(path: str) -> None:
    if not path:
        raise ValidationError("Field path cannot be empty", code="INVALID_FIELD_PATH")
    if any(segment == "" for segment in path.split(".")):
        raise ValidationError(
            f"Field path '{path}' has an empty segment",
            code="INVALID_FIELD_PATH",
            field_path=path,
        )


def _resolve_mode(proposed: ProposedField) -> IndexField:
    """Turn the two optional wire members into the tagged value mode."""
    has_order = proposed.order is not None
    has_array = proposed.array_config is not None

    if has_order and has_array:
        raise AmbiguousFieldMode(proposed.field_path, "both order and array_config are set")
    if not has_order and not has_array:
        raise AmbiguousFieldMode(proposed.field_path, "neither order nor array_config is set")

    try:
        order = Order(proposed.order) if has_order else None
        array_config = ArrayConfig(proposed.array_config) if has_array else None
    except ValueError as e:
        raise AmbiguousFieldMode(proposed.field_path, str(e)) from e

    if order is not None:
        if order == Order.ORDER_UNSPECIFIED:
            raise AmbiguousFieldMode(proposed.field_path, "order is ORDER_UNSPECIFIED")
        return IndexField(proposed.field_path, OrderMode(order))

    if array_config == ArrayConfig.ARRAY_CONFIG_UNSPECIFIED:
        raise AmbiguousFieldMode(proposed.field_path, "array_config is ARRAY_CONFIG_UNSPECIFIED")
    return IndexField(proposed.field_path, ArrayMode(array_config))


def normalize_identity_field(fields: tuple[IndexField, ...]) -> tuple[IndexField, ...]:
    """Append the identity field to a composite field list if it is missing.

    The synthetic field inherits the direction of the field before it, or
    ASCENDING when that field is an array field.

    Args:
        fields: Validated composite fields (two or more)

    Returns:
        Field tuple whose last entry is the identity path

    Example:
        >>> normalize_identity_field((IndexField.ascending("a"), IndexField.descending("b")))[-1]
        IndexField(field_path='__name__', mode=OrderMode(order=<Order.DESCENDING: 2>))
    """
    if fields and fields[-1].is_identity:
        return fields
    previous = fields[-1]
    direction = previous.order if previous.order is not None else Order.ASCENDING
    return fields + (IndexField(IDENTITY_PATH, OrderMode(direction)),)


class IndexDefinitionValidator:
    """Validates proposed field lists and produces normalized definitions.

    Example:
        >>> validator = IndexDefinitionValidator()
        >>> definition = validator.validate(None, [IndexField.ascending("age")])
        >>> definition.kind
        <IndexKind.SINGLE_FIELD: 'single_field'>
    """

    def validate(
        self,
        collection_schema_hint: Optional[SchemaHint],
        proposed_fields: Sequence[FieldInput],
    ) -> IndexDefinition:
        """Validate and normalize a proposed index definition.

        Args:
            collection_schema_hint: Optional field path -> ValueShape mapping
            proposed_fields: Fields in key order

        Returns:
            Normalized IndexDefinition

        Raises:
            EmptyFieldList, AmbiguousFieldMode, DuplicateFieldPath,
            MultipleArrayFields, ValidationError
        """
        # 1. Non-empty
        if not proposed_fields:
            raise EmptyFieldList()

        proposals = [_to_proposed(item) for item in proposed_fields]
        for proposed in proposals:
            _check_path(proposed.field_path)

        # 2. Exactly one value mode per field
        fields = tuple(_resolve_mode(p) for p in proposals)

        # 3. Duplicate paths; identity only as the explicit final entry
        seen: set[str] = set()
        last = len(fields) - 1
        for position, f in enumerate(fields):
            if f.field_path in seen:
                raise DuplicateFieldPath(f.field_path)
            if f.is_identity and position != last:
                raise DuplicateFieldPath(f.field_path)
            seen.add(f.field_path)

        if fields[-1].is_identity and fields[-1].is_array:
            raise ValidationError(
                "The identity field must be ordered, not an array field",
                code="IDENTITY_FIELD_NOT_ORDERED",
                field_path=IDENTITY_PATH,
            )

        # 4. Single-field
        if len(fields) == 1:
            if fields[0].is_identity:
                raise ValidationError(
                    "An index over only the identity path is implicit and cannot be created",
                    code="IDENTITY_ONLY_INDEX",
                    field_path=IDENTITY_PATH,
                )
            definition = IndexDefinition(fields, IndexKind.SINGLE_FIELD)
        else:
            # 5. Composite, with the identity field appended if missing
            definition = IndexDefinition(normalize_identity_field(fields), IndexKind.COMPOSITE)

        # 6. At most one array-contains field
        array_paths = [f.field_path for f in definition.fields if f.is_array]
        if len(array_paths) > 1:
            raise MultipleArrayFields(array_paths)

        if collection_schema_hint:
            self._check_hint(collection_schema_hint, definition)

        logger.debug(
            "Validated index definition",
            extra={"kind": definition.kind.value, "fields": [str(f) for f in definition.fields]},
        )
        return definition

    def _check_hint(self, hint: SchemaHint, definition: IndexDefinition) -> None:
        for f in definition.value_fields:
            shape = hint.get(f.field_path)
            if shape is None:
                continue
            if f.is_array and shape == ValueShape.SCALAR:
                raise ValidationError(
                    f"Field '{f.field_path}' is scalar and cannot use CONTAINS",
                    code="FIELD_SHAPE_MISMATCH",
                    field_path=f.field_path,
                )
            if not f.is_array and shape == ValueShape.ARRAY:
                raise ValidationError(
                    f"Field '{f.field_path}' is an array and cannot be ordered",
                    code="FIELD_SHAPE_MISMATCH",
                    field_path=f.field_path,
                )
