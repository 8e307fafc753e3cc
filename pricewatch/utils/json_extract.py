"""
Pulls a JSON value out of free-form model output.

Models wrap their JSON in commentary or markdown fences, so the first opening
bracket to the last closing bracket is taken as the candidate span.
"""

import json
import re
from typing import Any, Dict, List

from pricewatch.core.errors import MalformedJson, NoJsonFound

_ARRAY_PATTERN = re.compile(r"\[.*\]", re.DOTALL)
_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


def _extract(text: str, pattern: re.Pattern, expected: type, kind: str) -> Any:
    match = pattern.search(text or "")
    if not match:
        raise NoJsonFound(f"No JSON {kind} found in response")
    try:
        value = json.loads(match.group(0))
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedJson(f"Invalid JSON {kind} in response: {e}") from e
    if not isinstance(value, expected):
        raise MalformedJson(f"Expected a JSON {kind}, got {type(value).__name__}")
    return value


def extract_json_array(text: str) -> List[Any]:
    """
    Extract the outermost JSON array from ``text``.

    Raises:
        NoJsonFound: If the text contains no ``[ ... ]`` span
        MalformedJson: If the span does not decode to a list
    """
    return _extract(text, _ARRAY_PATTERN, list, "array")


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Extract the outermost JSON object from ``text``.

    Raises:
        NoJsonFound: If the text contains no ``{ ... }`` span
        MalformedJson: If the span does not decode to a dict
    """
    return _extract(text, _OBJECT_PATTERN, dict, "object")
