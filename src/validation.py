"""
Schema Validation - JSON Schema validation for resource configurations.

Every resource handler and data source declares a Draft 7 JSON Schema
for its attribute model. Configurations are checked against it before
any API call is made.
"""

import copy
import logging
from typing import Any, Dict, Iterable, Optional, Tuple

from jsonschema import Draft7Validator, SchemaError, ValidationError

logger = logging.getLogger(__name__)


def validate_schema(schema: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate that a schema is a valid Draft 7 JSON Schema.

    Args:
        schema: The schema to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        Draft7Validator.check_schema(schema)
        return True, None
    except SchemaError as e:
        return False, f"Invalid schema: {e.message}"


def validate_config_against_schema(
    config: Dict[str, Any],
    schema: Dict[str, Any],
    unknown_keys: Iterable[str] = (),
) -> Tuple[bool, Optional[str]]:
    """
    Validate a resource configuration against its JSON Schema.

    Attributes listed in ``unknown_keys`` hold values that are only known
    after apply. They are skipped, and they satisfy ``required``.

    Args:
        config: The resource configuration to validate
        schema: The JSON Schema to validate against
        unknown_keys: Attribute names whose values are not yet known

    Returns:
        Tuple of (is_valid, error_message)
    """
    unknown = set(unknown_keys)
    if unknown:
        config = {k: v for k, v in config.items() if k not in unknown}
        schema = copy.deepcopy(schema)
        schema["required"] = [k for k in schema.get("required", []) if k not in unknown]

    try:
        validator = Draft7Validator(schema, format_checker=Draft7Validator.FORMAT_CHECKER)
        errors = sorted(validator.iter_errors(config), key=lambda e: list(e.path))

        if not errors:
            return True, None

        # Collect all validation errors
        error_messages = []
        for error in errors:
            path = ".".join(str(p) for p in error.absolute_path) or "(root)"
            error_messages.append(f"{path}: {error.message}")

        return False, "; ".join(error_messages)

    except ValidationError as e:
        return False, f"Validation error: {e.message}"


def apply_defaults(config: Dict[str, Any], schema: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of ``config`` with schema defaults filled in.

    Only top-level properties with a ``default`` are filled, and only when
    the attribute is absent from the configuration.
    """
    result = dict(config)
    for name, prop in schema.get("properties", {}).items():
        if name not in result and "default" in prop:
            result[name] = copy.deepcopy(prop["default"])
    return result


def sensitive_attributes(schema: Dict[str, Any]) -> set:
    """Names of attributes marked ``x-sensitive`` in the schema."""
    return {
        name
        for name, prop in schema.get("properties", {}).items()
        if prop.get("x-sensitive")
    }
