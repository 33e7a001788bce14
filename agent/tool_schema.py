"""
Tool schema adapter.

Catalog declarations (``agent/tools.py``) are written with uppercase type
tokens (``"OBJECT"``, ``"STRING"``, ...). Provider function-calling APIs want
lowercase JSON-schema types; this module converts between the two. The
conversion is pure, idempotent and recursive; unknown type tokens pass
through untouched.
"""

from .llm.base import FunctionSchema

SUPPORTED_TYPES = ("string", "number", "integer", "boolean", "array", "object")


def _convert_type(token, upper: bool):
    if not isinstance(token, str) or token.lower() not in SUPPORTED_TYPES:
        return token
    return token.upper() if upper else token.lower()


def normalize_parameters(schema, upper: bool = False):
    """Return a copy of ``schema`` with every ``type`` token re-cased.

    Args:
        schema: A parameter schema dict (``type``/``properties``/``items``/
            ``required``). Non-dict values are returned unchanged.
        upper: Convert to uppercase tokens instead of lowercase.
    """
    if isinstance(schema, list):
        return [normalize_parameters(item, upper) for item in schema]
    if not isinstance(schema, dict):
        return schema

    result = {}
    for key, value in schema.items():
        if key == "type":
            result[key] = _convert_type(value, upper)
        elif key == "properties" and isinstance(value, dict):
            result[key] = {name: normalize_parameters(prop, upper) for name, prop in value.items()}
        elif key in ("items", "anyOf", "oneOf"):
            result[key] = normalize_parameters(value, upper)
        else:
            result[key] = value
    return result


def to_function_schema(declaration: dict) -> FunctionSchema:
    """Convert one catalog declaration to the provider-agnostic FunctionSchema."""
    return FunctionSchema(
        name=declaration["name"],
        description=declaration.get("description", ""),
        parameters=normalize_parameters(
            declaration.get("parameters") or {"type": "object", "properties": {}}
        ),
    )


def to_function_schemas(declarations: list[dict]) -> list[FunctionSchema]:
    return [to_function_schema(d) for d in declarations]
