"""JSON Schema validation utilities."""

from typing import Any

from jsonschema import Draft7Validator


# Shape of a function descriptor accepted by the registry. Parameter
# properties must carry a type and a description so the provider can
# explain them to the model.
FUNCTION_DESCRIPTOR_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["type", "function"],
    "properties": {
        "type": {"const": "function"},
        "function": {
            "type": "object",
            "required": ["name", "description", "parameters"],
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "description": {"type": "string"},
                "parameters": {
                    "type": "object",
                    "properties": {
                        "type": {"const": "object"},
                        "properties": {
                            "type": "object",
                            "additionalProperties": {
                                "type": "object",
                                "required": ["type", "description"],
                                "properties": {
                                    "type": {"type": "string"},
                                    "description": {"type": "string"},
                                    "examples": {
                                        "type": "array",
                                        "items": {"type": "string"},
                                    },
                                },
                            },
                        },
                    },
                },
            },
        },
        "strict": {"type": "boolean"},
        "return": {
            "type": "object",
            "required": ["type", "description"],
            "properties": {
                "type": {"type": "string"},
                "description": {"type": "string"},
            },
        },
        "usageExamples": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["command", "trigger", "description"],
                "properties": {
                    "command": {"type": "string"},
                    "trigger": {"type": "string"},
                    "description": {"type": "string"},
                },
            },
        },
    },
}


def validate_schema(data: Any, schema: dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate data against a JSON Schema.

    Args:
        data: The data to validate
        schema: JSON Schema to validate against

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    if not schema:
        return True, []

    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.path])

    if not errors:
        return True, []

    error_messages = [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]

    return False, error_messages


def validate_function_descriptor(data: Any) -> tuple[bool, list[str]]:
    """Validate a raw function descriptor mapping."""
    return validate_schema(data, FUNCTION_DESCRIPTOR_SCHEMA)
