import json
from decimal import Decimal
from typing import Any

RenderContext = dict[str, Any]


def loads_payload(raw: str | bytes) -> Any:
    return json.loads(raw, parse_float=Decimal)


def nesting_depth(value: Any) -> int:
    depth = 0
    level = [value]
    while level:
        containers = [v for v in level if isinstance(v, dict | list)]
        if not containers:
            break
        depth += 1
        level = [child for c in containers for child in (c.values() if isinstance(c, dict) else c)]
    return depth


def _convert_number(value: int | float | Decimal) -> int | Decimal:
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        value = Decimal(repr(value))
    # 1e2 decodes as Decimal('1E+2'); integral exponent forms render as plain integers
    if value.is_finite() and value.as_tuple().exponent > 0:
        return int(value)
    return value


def convert_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(key): convert_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [convert_value(item) for item in value]
    if isinstance(value, bool) or value is None or isinstance(value, str):
        return value
    if isinstance(value, int | float | Decimal):
        return _convert_number(value)
    raise TypeError(f"Unsupported JSON value of type {type(value).__name__}")


def to_context(payload: Any) -> RenderContext:
    """Build the render context for ``payload``.

    Object payloads expose their keys as top-level variables. Any other JSON
    value is bound to ``payload`` so templates can still iterate or print it.
    """
    converted = convert_value(payload)
    if isinstance(converted, dict):
        return converted
    return {"payload": converted}
