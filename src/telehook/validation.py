from decimal import Decimal
from typing import Any, Protocol

_TYPE_CHECKS = {
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
    "string": lambda v: isinstance(v, str),
    "boolean": lambda v: isinstance(v, bool),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "number": lambda v: isinstance(v, int | float | Decimal) and not isinstance(v, bool),
    "null": lambda v: v is None,
}


class PayloadValidator(Protocol):
    def validate(self, payload: Any, schema: dict[str, Any] | None) -> list[str]: ...


class SchemaValidator:
    def validate(self, payload: Any, schema: dict[str, Any] | None) -> list[str]:
        if schema is None:
            if not isinstance(payload, dict | list):
                return ["Payload must be a JSON object or array"]
            return []
        return self._check(payload, schema, "$")

    def _check(self, value: Any, schema: dict[str, Any], path: str) -> list[str]:
        expected = schema.get("type")
        if expected is not None:
            check = _TYPE_CHECKS.get(expected)
            if check is None:
                return [f"{path}: unknown schema type '{expected}'"]
            if not check(value):
                return [f"{path}: expected {expected}"]

        violations: list[str] = []
        if isinstance(value, dict):
            for name in schema.get("required", []):
                if name not in value:
                    violations.append(f"{path}.{name}: required property missing")
            for name, sub_schema in schema.get("properties", {}).items():
                if name in value:
                    violations.extend(self._check(value[name], sub_schema, f"{path}.{name}"))
        return violations
