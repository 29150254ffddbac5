"""Input validation utilities for the Excel Image Mapper."""

from typing import Any, Dict, Sequence

from jsonschema import ValidationError as JsonSchemaValidationError
from jsonschema import validate

from .exceptions import ValidationError

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "version": {"type": "string"},
        "matching": {
            "type": "object",
            "properties": {
                "type_sample_size": {"type": "integer", "minimum": 1},
                "preview_rows": {"type": "integer", "minimum": 0},
                "max_workers": {"type": "integer", "minimum": 1, "maximum": 64},
            },
            "additionalProperties": False,
        },
        "output": {
            "type": "object",
            "properties": {
                "thumbnail_px": {"type": "integer", "minimum": 8, "maximum": 1024},
                "image_column_label": {"type": "string", "minLength": 1},
                "sheet_title": {"type": "string", "minLength": 1, "maxLength": 31},
                "base_filename": {"type": "string", "minLength": 1},
            },
            "additionalProperties": False,
        },
    },
}

MATCH_COLUMN_REQUEST_SCHEMA = {
    "type": "object",
    "properties": {"match_column": {"type": "string", "minLength": 1}},
    "required": ["match_column"],
}


def validate_json_schema(data: Dict[str, Any], schema: Dict[str, Any]) -> None:
    """Validate data against JSON schema."""
    try:
        validate(instance=data, schema=schema)
    except JsonSchemaValidationError as e:
        raise ValidationError(f"Schema validation failed: {e.message}")


def validate_config_structure(config: Dict[str, Any]) -> None:
    """Validate the matching/output configuration block."""
    validate_json_schema(config, CONFIG_SCHEMA)


def validate_match_column_request(
    payload: Any, column_keys: Sequence[str]
) -> str:
    """Validate a match-column update and return the requested key."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    validate_json_schema(payload, MATCH_COLUMN_REQUEST_SCHEMA)

    match_column = payload["match_column"]
    if match_column not in column_keys:
        raise ValidationError(
            f"Unknown column '{match_column}'. Available: {', '.join(column_keys)}"
        )
    return match_column
