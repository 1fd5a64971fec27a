"""
Recover a JSON object from free-form model output.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Union

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
# Control characters other than tab / newline / carriage return break json.loads
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


@dataclass(frozen=True)
class ParsedJson:
    data: dict[str, Any]


@dataclass(frozen=True)
class ParseFailed:
    reason: str


JsonExtraction = Union[ParsedJson, ParseFailed]


def extract_json_block(text: Any) -> JsonExtraction:
    """Return the first well-formed JSON object found in `text`."""
    if not isinstance(text, str) or not text.strip():
        return ParseFailed("empty response")

    cleaned = _CONTROL_CHARS.sub("", _FENCE.sub("", text))
    decoder = json.JSONDecoder(strict=False)

    index = cleaned.find("{")
    while index != -1:
        try:
            value, _ = decoder.raw_decode(cleaned, index)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict):
            return ParsedJson(value)
        index = cleaned.find("{", index + 1)

    return ParseFailed("no JSON object in response")
