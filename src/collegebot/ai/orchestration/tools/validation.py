"""JSON Schema validation of tool parameters."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

import jsonschema
from jsonschema.exceptions import SchemaError

__all__ = ["MAX_SCHEMA_ERRORS", "validate_parameters"]

MAX_SCHEMA_ERRORS = 10


def validate_parameters(parameters: Mapping[str, Any], schema: Mapping[str, Any] | None) -> list[str]:
    """Return human-readable problems with ``parameters``; empty when valid."""

    if not schema:
        return []

    validator_cls = jsonschema.validators.validator_for(schema, default=jsonschema.Draft202012Validator)
    try:
        validator_cls.check_schema(schema)
    except SchemaError as exc:
        return [f"Invalid parameter schema: {exc.message}"]

    errors: list[str] = []
    validator = validator_cls(schema)
    for issue in sorted(validator.iter_errors(dict(parameters)), key=lambda item: list(item.absolute_path)):
        path = _format_schema_path(issue.absolute_path)
        message = issue.message
        if path:
            message = f"{path}: {message}"
        errors.append(message)
        if len(errors) >= MAX_SCHEMA_ERRORS:
            errors.append("Too many validation errors; stopping early.")
            break
    return errors


def _format_schema_path(path: Sequence[Any]) -> str:
    if not path:
        return ""
    parts: list[str] = []
    for segment in path:
        if isinstance(segment, int):
            parts.append(f"[{segment}]")
        elif parts:
            parts.append(f".{segment}")
        else:
            parts.append(str(segment))
    return "".join(parts)
