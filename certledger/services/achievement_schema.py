# certledger/services/achievement_schema.py
"""
Validation of a certificate's achievement payload against the schema declared
by its certificate type.

A type schema is a JSON Schema subset:

    {"required": ["gpa"],
     "properties": {"gpa": {"type": "number", "minimum": 0, "maximum": 4}}}

Required fields must be present *and* non-empty (None, "", blank strings,
empty lists/dicts). Zero and False are values, not absence. Typed constraints
on `properties` are checked with jsonschema (Draft 2020-12). Every violation is
reported, never only the first one.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from pydantic import BaseModel


class Violation(BaseModel):
    field: str
    message: str


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _constraint_schema(schema: Mapping[str, Any]) -> Dict[str, Any]:
    # "required" is handled by the non-empty rule; jsonschema only sees the rest
    out = {k: v for k, v in schema.items() if k != "required"}
    out.setdefault("type", "object")
    return out


def required_fields(schema: Mapping[str, Any] | None) -> List[str]:
    return [str(f) for f in (schema or {}).get("required", [])]


def validate_achievement(payload: Mapping[str, Any] | None, schema: Mapping[str, Any] | None) -> List[Violation]:
    schema = schema or {}
    violations: List[Violation] = []

    if payload is not None and not isinstance(payload, Mapping):
        return [Violation(field="", message="achievement payload must be an object")]
    payload = payload or {}

    missing = set()
    for name in required_fields(schema):
        if name not in payload or _is_empty(payload[name]):
            missing.add(name)
            violations.append(Violation(field=name, message=f"required field missing: {name}"))

    constraints = _constraint_schema(schema)
    try:
        Draft202012Validator.check_schema(constraints)
    except SchemaError as exc:
        violations.append(Violation(field="", message=f"invalid achievement schema: {exc.message}"))
        return violations

    validator = Draft202012Validator(constraints)
    for err in sorted(validator.iter_errors(dict(payload)), key=lambda e: [str(p) for p in e.absolute_path]):
        field = ".".join(str(p) for p in err.absolute_path)
        if field in missing:
            continue
        violations.append(Violation(field=field, message=err.message))
    return violations


def describe(violations: List[Violation]) -> str:
    parts = []
    for v in violations:
        parts.append(v.message if not v.field or v.message.endswith(v.field) else f"{v.field}: {v.message}")
    return "; ".join(parts)
