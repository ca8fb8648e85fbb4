"""Unit tests for parameter descriptor translation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from mcp_relay.registry import DescriptorError, model_from_descriptor, validate_arguments


class TestModelFromDescriptor:
    """Tests for the descriptor grammar."""

    def test_primitives(self) -> None:
        """Shorthand primitives become required fields."""
        model = model_from_descriptor({"city": "string", "days": "number", "metric": "boolean"})
        args = validate_arguments(model, {"city": "Oslo", "days": 3, "metric": True})
        assert args == {"city": "Oslo", "days": 3, "metric": True}

    def test_number_accepts_floats(self) -> None:
        """number covers both integers and floats."""
        model = model_from_descriptor({"lat": "number"})
        assert validate_arguments(model, {"lat": 59.91}) == {"lat": 59.91}

    def test_strict_types(self) -> None:
        """Values are not coerced across types."""
        model = model_from_descriptor({"days": "number", "city": "string"})
        with pytest.raises(ValidationError):
            validate_arguments(model, {"days": "3", "city": "Oslo"})
        with pytest.raises(ValidationError):
            validate_arguments(model, {"days": 3, "city": 42})

    def test_optional_fields_are_omitted(self) -> None:
        """Optional fields may be absent and stay absent after validation."""
        model = model_from_descriptor({
            "city": "string",
            "days": {"type": "number", "optional": True},
        })
        assert validate_arguments(model, {"city": "Oslo"}) == {"city": "Oslo"}

    def test_missing_required_field(self) -> None:
        """A required field must be supplied."""
        model = model_from_descriptor({"city": "string"})
        with pytest.raises(ValidationError):
            validate_arguments(model, None)

    def test_array_and_object(self) -> None:
        """Arrays and nested objects validate recursively."""
        model = model_from_descriptor({
            "tags": {"type": "array", "items": "string"},
            "location": {
                "type": "object",
                "properties": {
                    "lat": "number",
                    "lon": "number",
                    "label": {"type": "string", "optional": True},
                },
            },
        })
        args = validate_arguments(model, {"tags": ["a", "b"], "location": {"lat": 1, "lon": 2.5}})
        assert args == {"tags": ["a", "b"], "location": {"lat": 1, "lon": 2.5}}

        with pytest.raises(ValidationError):
            validate_arguments(model, {"tags": [1], "location": {"lat": 1, "lon": 2}})

    def test_schema_lists_required(self) -> None:
        """The generated JSON schema marks required fields."""
        model = model_from_descriptor({
            "city": "string",
            "days": {"type": "number", "optional": True},
        })
        schema = model.model_json_schema()
        assert schema["required"] == ["city"]
        assert set(schema["properties"]) == {"city", "days"}

    @pytest.mark.parametrize(
        "descriptors",
        [
            {"when": "date"},
            {"when": {"type": "date"}},
            {"tags": {"type": "array"}},
            {"location": {"type": "object"}},
            {"count": 5},
        ],
    )
    def test_unsupported_descriptors(self, descriptors) -> None:
        """Anything outside the grammar raises DescriptorError."""
        with pytest.raises(DescriptorError):
            model_from_descriptor(descriptors)

    def test_parameters_must_be_an_object(self) -> None:
        """A non-mapping parameters value is rejected."""
        with pytest.raises(DescriptorError):
            model_from_descriptor(["city"])
