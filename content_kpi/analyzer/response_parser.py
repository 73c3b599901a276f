"""Content KPI Engine — Reasoning Response Parsing.

Extracts the JSON object from raw model text, checks it against the
request schema, and coerces individual fields for rules.
"""

from __future__ import annotations

import json
import re
from typing import Any

from content_kpi.errors import InvocationError

_TYPE_CHECKS: dict[str, tuple[type, ...]] = {
    "int": (int, float, str),
    "float": (int, float, str),
    "str": (str,),
    "list": (list, str),
    "bool": (bool, int, str),
    "dict": (dict,),
}


def clean_json_text(text: str) -> str:
    """Strip markdown fences and leading prose from a model response.

    Returns the first balanced JSON object when the text does not start
    with one.

    Args:
        text: Raw response text from the API.

    Returns:
        Cleaned text ready for JSON parsing.
    """
    text = text.strip()
    text = re.sub(r"^```(?:json)?\s*\n?", "", text)
    text = re.sub(r"\n?```\s*$", "", text)
    text = text.strip()

    if text.startswith("{"):
        return text

    brace_start = text.find("{")
    if brace_start != -1:
        depth = 0
        for i in range(brace_start, len(text)):
            if text[i] == "{":
                depth += 1
            elif text[i] == "}":
                depth -= 1
                if depth == 0:
                    return text[brace_start : i + 1]
        return text[brace_start:]

    return text


def parse_json_output(text: str, target: str) -> dict[str, Any]:
    """Parse model text into a dict.

    Raises:
        InvocationError: If the text is not a JSON object.
    """
    try:
        result = json.loads(clean_json_text(text))
    except json.JSONDecodeError as e:
        raise InvocationError(
            f"{target} returned unparseable JSON: {e} (first 200 chars: {text[:200]!r})",
            target=target,
        ) from e
    if not isinstance(result, dict):
        raise InvocationError(
            f"{target} returned {type(result).__name__}, expected a JSON object",
            target=target,
        )
    return result


def validate_schema(output: dict[str, Any], schema: dict[str, str], target: str) -> None:
    """Check required keys and loose types.

    Raises:
        InvocationError: If a key is missing or has an incompatible type.
    """
    missing = [key for key in schema if key not in output]
    if missing:
        raise InvocationError(
            f"{target} output missing required keys: {', '.join(missing)}",
            target=target,
        )
    for key, type_name in schema.items():
        allowed = _TYPE_CHECKS.get(type_name)
        if allowed is not None and not isinstance(output[key], allowed):
            raise InvocationError(
                f"{target} output key '{key}' is {type(output[key]).__name__}, "
                f"expected {type_name}",
                target=target,
            )


def to_int(value: Any, default: int = 0) -> int:
    """Coerce a value to int, returning default on failure.

    Handles: int, float, str("85"), str("85.5"), None.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except (ValueError, TypeError):
            return default
    return default


def clamp(value: int, low: int = 0, high: int = 100) -> int:
    """Clamp an integer to [low, high]."""
    return max(low, min(high, value))


def to_list(value: Any) -> list[str]:
    """Coerce a value to a list of strings.

    Handles: list, str (wrapped in a list), None (empty list).
    """
    if value is None:
        return []
    if isinstance(value, list):
        return [str(item) for item in value if str(item).strip()]
    if isinstance(value, str):
        return [value] if value.strip() else []
    return []
