from __future__ import annotations

import json
from typing import Any


def extract_json_object(text: str | None) -> dict[str, Any] | None:
    """Parse a JSON object from model output.

    The whole text is tried first. Otherwise the first balanced ``{...}``
    region is parsed, which covers prose around the object and fenced code
    blocks. Returns ``None`` when nothing parses to an object.
    """
    if not text:
        return None

    stripped = text.strip()
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed

    region = _first_balanced_object(stripped)
    if region is None:
        return None
    try:
        parsed = json.loads(region)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _first_balanced_object(text: str) -> str | None:
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None
