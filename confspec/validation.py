from __future__ import annotations

from enum import Enum
from datetime import timedelta
from typing import Any, Dict, List, Mapping

import jsonschema

from .exceptions import ConfigurationError, ConstraintViolationError
from .utils import split_path


def constraint_violations(value: Any, constraints: Mapping[str, Any] | None) -> List[str]:
    """
    Check a single coerced value against a JSON Schema fragment.

    :param value: coerced item value.
    :param constraints: JSON Schema mapping such as ``{"minimum": 1}``. If None,
                        the check is skipped.
    :returns: one message per violation, empty when the value is valid.
    """
    if not constraints:
        return []
    validator = _validator(constraints)
    return [error.message for error in validator.iter_errors(_json_compatible(value))]


def validate_config(
    data: Mapping[str, Any], schema: Mapping[str, Any] | None
) -> List[ConstraintViolationError]:
    """
    Validate nested configuration data against a JSON Schema.

    Unlike a plain ``jsonschema.validate`` call every violation is reported, so
    that a resolution pass can list all of them at once.

    :param data: nested configuration mapping to validate.
    :param schema: JSON Schema mapping. If None, validation is skipped.
    :raises ConfigurationError: if the schema itself is invalid.
    """
    if schema is None:
        return []

    validator = _validator(schema)

    errors = []
    for error in sorted(validator.iter_errors(_json_compatible(data)), key=str):
        path = ".".join(str(p) for p in error.absolute_path) or "<root>"
        errors.append(ConstraintViolationError(path, error.message))
    return errors


def _validator(schema: Mapping[str, Any]) -> Any:
    validator_cls = jsonschema.validators.validator_for(schema)
    try:
        validator_cls.check_schema(schema)
    except jsonschema.SchemaError as exc:
        path = ".".join(str(p) for p in exc.absolute_path) or "<root>"
        raise ConfigurationError(
            f"Invalid JSON Schema at '{path}': {exc.message}"
        ) from exc
    return validator_cls(schema)


def json_schema_for_spec(spec: Any) -> Dict[str, Any]:
    """Build a JSON Schema describing the nested configuration of a spec."""
    root: Dict[str, Any] = {"type": "object", "properties": {}}
    if getattr(spec, "description", ""):
        root["description"] = spec.description

    for path, item in spec.iter_items():
        *parents, leaf = split_path(path)
        node = root
        for part in parents:
            node = node["properties"].setdefault(
                part, {"type": "object", "properties": {}}
            )
        if item.required and not item.nullable:
            node.setdefault("required", []).append(leaf)

        schema = dict(item.type.json_schema())
        if item.constraints:
            schema.update(item.constraints)
        if item.nullable:
            schema = {"anyOf": [schema, {"type": "null"}]}
        if item.description:
            schema["description"] = item.description
        if not item.required and not item.is_lazy:
            schema["default"] = _json_compatible(item.default)
        node["properties"][leaf] = schema
    return root


def _json_compatible(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, Mapping):
        return {str(k): _json_compatible(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_compatible(v) for v in value]
    return value
