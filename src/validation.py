"""
Manifest Validation - JSON schema checks for declared resources.

Only the identity fields are checked here; the cluster validates the rest
of the object when it is applied.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator

logger = logging.getLogger(__name__)

# Minimal shape every declared object must have
MANIFEST_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["apiVersion", "kind", "metadata"],
    "properties": {
        "apiVersion": {"type": "string", "minLength": 1},
        "kind": {"type": "string", "minLength": 1},
        "metadata": {
            "type": "object",
            "required": ["name"],
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "namespace": {"type": "string"},
                "annotations": {
                    "type": "object",
                    "additionalProperties": {"type": "string"},
                },
            },
        },
    },
}

_validator = Draft7Validator(MANIFEST_SCHEMA)


def validate_manifest(obj: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate a declared object against the manifest schema.

    Args:
        obj: The declared object

    Returns:
        Tuple of (is_valid, error_message)
    """
    errors = list(_validator.iter_errors(obj))
    if not errors:
        return True, None

    # Collect all validation errors
    error_messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        error_messages.append(f"{path}: {error.message}")

    return False, "; ".join(error_messages)
