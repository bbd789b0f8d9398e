"""
Spec Validation - JSON Schema shape checks for Ingress specs.

Only the shape of a spec is checked here; whether its hosts can actually be
served is up to the translator.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator, ValidationError

logger = logging.getLogger(__name__)

VISIBILITIES = ["ExternalIP", "ClusterLocal"]

INGRESS_SPEC_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "visibility": {"type": "string", "enum": VISIBILITIES},
        "tls": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "hosts": {"type": "array", "items": {"type": "string"}},
                    "secret_name": {"type": "string"},
                    "secret_namespace": {"type": "string"},
                },
            },
        },
        "rules": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["hosts"],
                "properties": {
                    "hosts": {
                        "type": "array",
                        "minItems": 1,
                        "items": {"type": "string", "minLength": 1},
                    },
                    "visibility": {"type": "string", "enum": VISIBILITIES},
                    "http": {
                        "type": "object",
                        "properties": {
                            "paths": {
                                "type": "array",
                                "items": {
                                    "type": "object",
                                    "properties": {
                                        "path": {"type": "string"},
                                        "timeout_seconds": {
                                            "type": "integer",
                                            "minimum": 0,
                                        },
                                        "splits": {
                                            "type": "array",
                                            "items": {
                                                "type": "object",
                                                "required": ["service_name"],
                                                "properties": {
                                                    "service_name": {"type": "string"},
                                                    "service_namespace": {
                                                        "type": "string"
                                                    },
                                                    "service_port": {
                                                        "type": ["integer", "string"]
                                                    },
                                                    "percent": {
                                                        "type": "integer",
                                                        "minimum": 0,
                                                        "maximum": 100,
                                                    },
                                                },
                                            },
                                        },
                                        "append_headers": {
                                            "type": "object",
                                            "additionalProperties": {"type": "string"},
                                        },
                                    },
                                },
                            }
                        },
                    },
                },
            },
        },
    },
}


def validate_spec_against_schema(
    spec: Dict[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate a spec against a JSON Schema.

    Args:
        spec: The Ingress spec to validate
        schema: The JSON Schema to validate against

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        validator = Draft7Validator(schema)
        errors = list(validator.iter_errors(spec))

        if not errors:
            return True, None

        # Collect all validation errors
        error_messages = []
        for error in errors:
            path = ".".join(str(p) for p in error.absolute_path) or "(root)"
            error_messages.append(f"{path}: {error.message}")

        return False, "; ".join(error_messages)

    except ValidationError as e:
        return False, f"Validation error: {str(e)}"


def validate_ingress_spec(spec: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """Validate the shape of an Ingress spec."""
    return validate_spec_against_schema(spec, INGRESS_SPEC_SCHEMA)
