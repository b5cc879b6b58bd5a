"""Unit tests for validation.py - JSON Schema validation."""

from validation import (
    apply_defaults,
    sensitive_attributes,
    validate_config_against_schema,
    validate_schema,
)

SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "required": ["name", "namespace_id"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "namespace_id": {"type": "string"},
        "enabled": {"type": "boolean", "default": True},
        "secret": {"type": ["string", "null"], "x-sensitive": True},
    },
}


class TestValidateSchema:
    """Tests for validate_schema function."""

    def test_valid_schema(self):
        valid, error = validate_schema(SCHEMA)
        assert valid is True
        assert error is None

    def test_invalid_schema(self):
        valid, error = validate_schema({"type": "not-a-type"})
        assert valid is False
        assert error.startswith("Invalid schema:")


class TestValidateConfigAgainstSchema:
    """Tests for validate_config_against_schema function."""

    def test_valid_config(self):
        valid, error = validate_config_against_schema(
            {"name": "a", "namespace_id": "ns"}, SCHEMA
        )
        assert valid is True
        assert error is None

    def test_missing_required(self):
        valid, error = validate_config_against_schema({"name": "a"}, SCHEMA)
        assert valid is False
        assert "(root): 'namespace_id' is a required property" in error

    def test_wrong_type_reports_path(self):
        valid, error = validate_config_against_schema(
            {"name": "a", "namespace_id": "ns", "enabled": "yes"}, SCHEMA
        )
        assert valid is False
        assert error.startswith("enabled:")

    def test_multiple_errors_joined(self):
        valid, error = validate_config_against_schema({"name": ""}, SCHEMA)
        assert valid is False
        assert "; " in error

    def test_unknown_keys_are_skipped(self):
        valid, error = validate_config_against_schema(
            {"name": "a", "namespace_id": object()},
            SCHEMA,
            unknown_keys=["namespace_id"],
        )
        assert valid is True, error

    def test_unknown_keys_satisfy_required(self):
        valid, _ = validate_config_against_schema(
            {"name": "a"}, SCHEMA, unknown_keys=["namespace_id"]
        )
        assert valid is True

    def test_unknown_keys_do_not_modify_schema(self):
        validate_config_against_schema({"name": "a"}, SCHEMA, unknown_keys=["namespace_id"])
        assert SCHEMA["required"] == ["name", "namespace_id"]


class TestApplyDefaults:
    def test_fills_missing(self):
        assert apply_defaults({"name": "a"}, SCHEMA) == {"name": "a", "enabled": True}

    def test_keeps_explicit_values(self):
        assert apply_defaults({"enabled": False}, SCHEMA) == {"enabled": False}

    def test_does_not_mutate_input(self):
        config = {"name": "a"}
        apply_defaults(config, SCHEMA)
        assert config == {"name": "a"}


def test_sensitive_attributes():
    assert sensitive_attributes(SCHEMA) == {"secret"}
