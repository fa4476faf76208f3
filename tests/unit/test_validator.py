"""
Unit tests for index definition validation.

Tests cover:
- Rule order and error types
- Single-field vs composite classification
- Identity field normalization
- Schema hints
"""

import pytest

from dbaas.docindex.errors import (
    AmbiguousFieldMode,
    DuplicateFieldPath,
    EmptyFieldList,
    MultipleArrayFields,
    ValidationError,
)
from dbaas.docindex.schema.types import (
    IDENTITY_PATH,
    ArrayConfig,
    IndexField,
    IndexKind,
    Order,
    ProposedField,
)
from dbaas.docindex.schema.validator import (
    IndexDefinitionValidator,
    ValueShape,
    normalize_identity_field,
)


@pytest.fixture
def validator():
    return IndexDefinitionValidator()


class TestValidationRules:
    """Tests for the validation rules."""

    def test_empty_field_list(self, validator):
        """An empty field list is rejected."""
        with pytest.raises(EmptyFieldList) as exc_info:
            validator.validate(None, [])
        assert exc_info.value.code == "EMPTY_FIELD_LIST"

    def test_both_modes_set(self, validator):
        """A field with both order and array_config is ambiguous."""
        with pytest.raises(AmbiguousFieldMode):
            validator.validate(
                None, [ProposedField("tags", order=Order.ASCENDING, array_config=ArrayConfig.CONTAINS)]
            )

    def test_no_mode_set(self, validator):
        """A field with neither mode is ambiguous."""
        with pytest.raises(AmbiguousFieldMode):
            validator.validate(None, [ProposedField("age")])

    def test_unspecified_order(self, validator):
        """ORDER_UNSPECIFIED is never valid."""
        with pytest.raises(AmbiguousFieldMode):
            validator.validate(None, [ProposedField("age", order=Order.ORDER_UNSPECIFIED)])

    def test_unspecified_array_config(self, validator):
        """ARRAY_CONFIG_UNSPECIFIED is never valid."""
        with pytest.raises(AmbiguousFieldMode):
            validator.validate(
                None, [ProposedField("tags", array_config=ArrayConfig.ARRAY_CONFIG_UNSPECIFIED)]
            )

    def test_out_of_range_enum_number(self, validator):
        """Unknown enum numbers are rejected as ambiguous."""
        with pytest.raises(AmbiguousFieldMode):
            validator.validate(None, [ProposedField("age", order=7)])

    def test_duplicate_field_path(self, validator):
        """The same path may not appear twice."""
        with pytest.raises(DuplicateFieldPath) as exc_info:
            validator.validate(None, [IndexField.ascending("a"), IndexField.descending("a")])
        assert exc_info.value.field_path == "a"

    def test_identity_not_last(self, validator):
        """The identity path may only be the final entry."""
        with pytest.raises(DuplicateFieldPath):
            validator.validate(
                None, [IndexField.ascending(IDENTITY_PATH), IndexField.ascending("a")]
            )

    def test_identity_only(self, validator):
        """An index over only the identity path is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(None, [IndexField.ascending(IDENTITY_PATH)])
        assert exc_info.value.code == "IDENTITY_ONLY_INDEX"

    def test_identity_as_array(self, validator):
        """The identity field cannot be an array field."""
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(None, [IndexField.ascending("a"), IndexField.contains(IDENTITY_PATH)])
        assert exc_info.value.code == "IDENTITY_FIELD_NOT_ORDERED"

    def test_two_array_fields(self, validator):
        """At most one CONTAINS field per index."""
        with pytest.raises(MultipleArrayFields) as exc_info:
            validator.validate(None, [IndexField.contains("tags"), IndexField.contains("labels")])
        assert exc_info.value.code == "MULTIPLE_ARRAY_FIELDS"

    def test_empty_path(self, validator):
        """Empty paths and empty segments are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(None, [IndexField.ascending("")])
        assert exc_info.value.code == "INVALID_FIELD_PATH"

        with pytest.raises(ValidationError):
            validator.validate(None, [IndexField.ascending("a..b")])

    def test_modes_checked_before_duplicates(self, validator):
        """Errors surface in rule order: duplicates are reported after modes."""
        with pytest.raises(AmbiguousFieldMode):
            validator.validate(None, [ProposedField("a"), ProposedField("a")])


class TestClassification:
    """Tests for single-field and composite definitions."""

    def test_single_field(self, validator):
        """One non-identity field is a single-field index."""
        definition = validator.validate(None, [IndexField.ascending("age")])

        assert definition.kind == IndexKind.SINGLE_FIELD
        assert definition.field_paths == ("age",)
        assert definition.identity_order == Order.ASCENDING

    def test_single_contains_field(self, validator):
        """A lone CONTAINS field is a single-field index."""
        definition = validator.validate(None, [IndexField.contains("tags")])

        assert definition.kind == IndexKind.SINGLE_FIELD
        assert definition.array_field.field_path == "tags"

    def test_composite_appends_identity(self, validator):
        """Composite definitions end with the identity field."""
        definition = validator.validate(
            None, [IndexField.ascending("status"), IndexField.descending("created")]
        )

        assert definition.kind == IndexKind.COMPOSITE
        assert definition.field_paths == ("status", "created", IDENTITY_PATH)
        assert definition.fields[-1].order == Order.DESCENDING

    def test_composite_explicit_identity_kept(self, validator):
        """An explicit trailing identity field keeps its own direction."""
        definition = validator.validate(
            None,
            [
                IndexField.ascending("status"),
                IndexField.descending("created"),
                IndexField.ascending(IDENTITY_PATH),
            ],
        )

        assert len(definition.fields) == 3
        assert definition.identity_order == Order.ASCENDING

    def test_mapping_input(self, validator):
        """Fields may be given as JSON-style mappings with enum names or numbers."""
        definition = validator.validate(
            None,
            [
                {"field_path": "status", "order": "ASCENDING"},
                {"field_path": "tags", "array_config": 1},
            ],
        )

        assert definition.field_paths == ("status", "tags", IDENTITY_PATH)
        assert definition.fields[1].array_config == ArrayConfig.CONTAINS

    def test_mapping_with_bad_enum_name(self, validator):
        """Unknown enum names are ambiguous modes."""
        with pytest.raises(AmbiguousFieldMode):
            validator.validate(None, [{"field_path": "a", "order": "SIDEWAYS"}])

    def test_equal_definitions_share_fingerprint(self, validator):
        """Implicit and explicit identity fields normalize to the same definition."""
        implicit = validator.validate(None, [IndexField.ascending("a"), IndexField.ascending("b")])
        explicit = validator.validate(
            None,
            [
                IndexField.ascending("a"),
                IndexField.ascending("b"),
                IndexField.ascending(IDENTITY_PATH),
            ],
        )

        assert implicit == explicit
        assert implicit.fingerprint() == explicit.fingerprint()


class TestNormalizeIdentityField:
    """Tests for the pure identity normalization."""

    def test_inherits_descending(self):
        """The synthetic identity field copies the prior field's direction."""
        fields = normalize_identity_field(
            (IndexField.ascending("a"), IndexField.descending("b"))
        )
        assert fields[-1] == IndexField.descending(IDENTITY_PATH)

    def test_ascending_after_array_field(self):
        """After an array field the identity field is ASCENDING."""
        fields = normalize_identity_field(
            (IndexField.descending("a"), IndexField.contains("tags"))
        )
        assert fields[-1] == IndexField.ascending(IDENTITY_PATH)

    def test_already_normalized(self):
        """A list ending in the identity field is returned unchanged."""
        fields = (IndexField.ascending("a"), IndexField.descending(IDENTITY_PATH))
        assert normalize_identity_field(fields) is fields


class TestSchemaHint:
    """Tests for schema hint checks."""

    def test_contains_on_scalar(self, validator):
        """CONTAINS on a field hinted as scalar is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            validator.validate({"age": ValueShape.SCALAR}, [IndexField.contains("age")])
        assert exc_info.value.code == "FIELD_SHAPE_MISMATCH"

    def test_order_on_array(self, validator):
        """An ordered field hinted as an array is rejected."""
        with pytest.raises(ValidationError):
            validator.validate({"tags": ValueShape.ARRAY}, [IndexField.ascending("tags")])

    def test_matching_hint(self, validator):
        """Consistent hints pass."""
        definition = validator.validate(
            {"status": ValueShape.SCALAR, "tags": ValueShape.ARRAY},
            [IndexField.ascending("status"), IndexField.contains("tags")],
        )
        assert definition.is_composite
