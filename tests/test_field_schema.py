"""
Unit tests for the request field schema.

Covers loading, per-type validation and the "Other" conventions.
"""

import json

import pytest

from core.exceptions import ValidationError
from modules.field_schema import (
    FieldDescriptor,
    FieldSchema,
    FieldType,
    _DEFAULTS,
    _VALIDATORS,
    compose_other,
    is_other,
    load_field_schema,
    other_text,
)


# Tests for Loading

class TestSchemaLoading:
    """Tests for load_field_schema and descriptor parsing."""

    def test_shipped_schema_order(self, schema):
        assert schema.keys == (
            "title", "modelInput", "material", "quantity", "urgencyDays",
            "priceRange", "colors", "shippingOption", "pickupLocation", "description",
        )

    def test_dependent_field_is_not_top_level(self, schema):
        top_level = [f.key for f in schema.top_level_fields()]
        assert "pickupLocation" not in top_level
        assert [f.key for f in schema.dependents_of("shippingOption")] == ["pickupLocation"]

    def test_unknown_type_rejected(self, tmp_path):
        path = tmp_path / "fields.json"
        path.write_text(json.dumps([{"key": "x", "label": "X", "type": "slider"}]))

        with pytest.raises(ValueError, match="Unknown field type 'slider'"):
            load_field_schema(path)

    def test_non_list_rejected(self, tmp_path):
        path = tmp_path / "fields.json"
        path.write_text(json.dumps({"key": "x"}))

        with pytest.raises(ValueError, match="must be a JSON list"):
            load_field_schema(path)

    def test_duplicate_keys_rejected(self):
        field = FieldDescriptor(key="title", label="Title", type=FieldType.TEXT)
        with pytest.raises(ValueError, match="Duplicate"):
            FieldSchema([field, field])

    def test_unknown_dependency_rejected(self):
        data = {"key": "where", "label": "Where", "type": "select",
                "options": ["A"], "dependsOn": {"field": "missing", "value": "x"}}
        with pytest.raises(ValueError, match="unknown field 'missing'"):
            FieldSchema([FieldDescriptor.from_dict(data)])

    def test_every_type_has_handlers(self):
        assert set(_DEFAULTS) == set(FieldType)
        assert set(_VALIDATORS) == set(FieldType)

    def test_descriptor_round_trip_keeps_choices(self, schema):
        shipping = schema.get("shippingOption").to_dict()
        assert shipping["options"][1] == {
            "value": "Pickup", "label": "Local Pickup", "dependentField": "pickupLocation"
        }

    def test_initial_values(self, schema):
        values = schema.initial_values()
        assert values["title"] == ""
        assert values["material"] == "PLA"
        assert values["colors"] == []
        assert values["priceRange"] == {"selectedRange": "$0 - $50", "min": 0.0, "max": 50.0}
        assert values["modelInput"] == {"type": "link", "value": ""}
        assert values["shippingOption"] == "Shipping"


# Tests for Validation

class TestValidate:
    """Tests for FieldSchema.validate."""

    def test_valid_values_cleaned(self, schema, valid_fields):
        cleaned = schema.validate(valid_fields)

        assert cleaned["title"] == "Replacement gear"
        assert cleaned["quantity"] == 2
        assert cleaned["priceRange"] == {"selectedRange": "$50 - $150", "min": 50.0, "max": 150.0}
        assert cleaned["colors"] == ["Black"]
        assert cleaned["modelInput"] == {"type": "link", "value": "thingiverse.com/thing/123"}
        # Inactive dependent and empty optional fields
        assert cleaned["pickupLocation"] is None
        assert cleaned["description"] is None

    @pytest.mark.parametrize("key,blank", [
        ("title", ""),
        ("modelInput", {"type": "link", "value": ""}),
        ("material", ""),
        ("quantity", ""),
        ("urgencyDays", ""),
        ("priceRange", {"selectedRange": ""}),
        ("colors", []),
        ("shippingOption", ""),
    ])
    def test_missing_required_field_named(self, schema, valid_fields, key, blank):
        valid_fields[key] = blank

        with pytest.raises(ValidationError) as exc_info:
            schema.validate(valid_fields)

        assert exc_info.value.field == key

    def test_first_failing_field_in_schema_order(self, schema, valid_fields):
        valid_fields["title"] = ""
        valid_fields["colors"] = []

        with pytest.raises(ValidationError) as exc_info:
            schema.validate(valid_fields)

        assert exc_info.value.field == "title"
        assert str(exc_info.value) == "Project Title is required."

    def test_model_source_message_names_kind(self, schema, valid_fields):
        valid_fields["modelInput"] = {"type": "upload", "value": "  "}

        with pytest.raises(ValidationError, match=r"Model Data \(upload\) is required."):
            schema.validate(valid_fields)

    def test_zero_quantity(self, schema, valid_fields):
        valid_fields["quantity"] = "0"

        with pytest.raises(ValidationError, match="Quantity cannot be zero."):
            schema.validate(valid_fields)

    @pytest.mark.parametrize("value,message", [
        ("abc", "Quantity must be a number."),
        ("-3", "Quantity must be at least 1."),
        ("1.5", "Quantity must be a whole number."),
    ])
    def test_bad_quantity(self, schema, valid_fields, value, message):
        valid_fields["quantity"] = value

        with pytest.raises(ValidationError) as exc_info:
            schema.validate(valid_fields)

        assert exc_info.value.message == message

    def test_unknown_select_option(self, schema, valid_fields):
        valid_fields["urgencyDays"] = "Yesterday"

        with pytest.raises(ValidationError, match="unknown option 'Yesterday'"):
            schema.validate(valid_fields)


class TestOtherValues:
    """Tests for select-with-other, tags and budget "Other" handling."""

    def test_helpers(self):
        assert compose_other("Titanium") == "Other: Titanium"
        assert compose_other("  ") == "Other"
        assert other_text("Other: Titanium") == "Titanium"
        assert other_text("Other") == ""
        assert is_other("Other")
        assert is_other("Other: Gold")
        assert not is_other("PLA")

    def test_material_other_with_text(self, schema, valid_fields):
        valid_fields["material"] = "Other: Titanium"
        assert schema.validate(valid_fields)["material"] == "Other: Titanium"

    def test_material_other_without_text(self, schema, valid_fields):
        valid_fields["material"] = "Other"

        with pytest.raises(ValidationError) as exc_info:
            schema.validate(valid_fields)

        assert exc_info.value.field == "material"
        assert exc_info.value.message == "Please specify the other required material."

    def test_tags_keep_custom_and_drop_bare_other(self, schema, valid_fields):
        valid_fields["colors"] = ["Black", "Other", "Other: Glow", "Black"]
        assert schema.validate(valid_fields)["colors"] == ["Black", "Other: Glow"]

    def test_tags_only_bare_other_is_empty(self, schema, valid_fields):
        valid_fields["colors"] = ["Other"]

        with pytest.raises(ValidationError) as exc_info:
            schema.validate(valid_fields)

        assert exc_info.value.field == "colors"

    def test_custom_budget(self, schema, valid_fields):
        valid_fields["priceRange"] = {"selectedRange": "Other", "min": "20", "max": "80.5"}
        assert schema.validate(valid_fields)["priceRange"] == {
            "selectedRange": "Other", "min": 20.0, "max": 80.5
        }

    @pytest.mark.parametrize("low,high,message", [
        ("0", "50", "Please enter a valid Min/Max budget."),
        ("10", "", "Please enter a valid Min/Max budget."),
        ("-5", "50", "Please enter a valid Min/Max budget."),
        ("100", "50", "Minimum budget cannot exceed maximum budget."),
    ])
    def test_invalid_custom_budget(self, schema, valid_fields, low, high, message):
        valid_fields["priceRange"] = {"selectedRange": "Other", "min": low, "max": high}

        with pytest.raises(ValidationError) as exc_info:
            schema.validate(valid_fields)

        assert exc_info.value.field == "priceRange"
        assert exc_info.value.message == message


class TestDependentFields:
    """Tests for the shipping/pickup pair."""

    def test_pickup_requires_location(self, schema, valid_fields):
        valid_fields["shippingOption"] = "Pickup"

        with pytest.raises(ValidationError) as exc_info:
            schema.validate(valid_fields)

        assert exc_info.value.field == "pickupLocation"
        assert exc_info.value.message == "Please select a pickup location."

    def test_pickup_with_location(self, schema, valid_fields):
        valid_fields["shippingOption"] = "Pickup"
        valid_fields["pickupLocation"] = "Austin, TX"

        assert schema.validate(valid_fields)["pickupLocation"] == "Austin, TX"

    def test_location_ignored_when_shipping(self, schema, valid_fields):
        valid_fields["pickupLocation"] = "Austin, TX"
        assert schema.validate(valid_fields)["pickupLocation"] is None

    def test_clean_text_applied(self, schema, valid_fields):
        valid_fields["title"] = "  gear  "
        cleaned = schema.validate(
            valid_fields,
            clean_text=lambda text, field: text.upper() if field.key == "title" else text
        )
        assert cleaned["title"] == "GEAR"
