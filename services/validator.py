"""Parsing and schema checks for model-generated draft payloads."""

from __future__ import annotations

import json
import re
from typing import Any

from jsonschema import ValidationError, validate

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?\s*```")


class ContentValidationError(ValueError):
    """Raised when generated content fails parsing or schema checks."""


def extract_json_payload(raw_text: str) -> dict[str, Any]:
    """Pull the first JSON object out of model output.

    Tries, in order: the whole text, a markdown code fence, then the first
    balanced ``{...}`` block found by brace-depth scanning.
    """
    text = raw_text.strip()
    if not text:
        raise ContentValidationError("Model returned empty response")

    candidates: list[str] = [text]
    fence_match = _FENCE_PATTERN.search(text)
    if fence_match:
        candidates.append(fence_match.group(1).strip())

    for candidate in candidates:
        parsed = _loads_object(candidate)
        if parsed is not None:
            return parsed

    start = text.find("{")
    while start != -1:
        block = _balanced_block(text, start)
        if block is None:
            break
        parsed = _loads_object(block)
        if parsed is not None:
            return parsed
        start = text.find("{", start + 1)

    raise ContentValidationError("No JSON object found in model output")


def validate_json_payload(payload: dict[str, Any], schema: dict[str, object]) -> None:
    """Validate payload against schema and surface a clean error message."""
    try:
        validate(instance=payload, schema=schema)
    except ValidationError as exc:
        path = ".".join(str(part) for part in exc.path)
        context = f" at {path}" if path else ""
        raise ContentValidationError(f"Schema validation failed{context}: {exc.message}") from exc


def _loads_object(candidate: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _balanced_block(text: str, start: int) -> str | None:
    """Return the balanced ``{...}`` starting at ``start``, ignoring braces in strings."""
    depth = 0
    in_string = False
    escape_next = False

    for idx in range(start, len(text)):
        char = text[idx]
        if escape_next:
            escape_next = False
            continue
        if char == "\\" and in_string:
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : idx + 1]
    return None
