"""Parsing helpers for JSON produced by agent completions."""

import json
import re
from typing import Any

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL | re.IGNORECASE)


def strip_code_fences(raw_output: str) -> str:
    """Return the body of the first ```json fence, or the trimmed text."""
    cleaned = (raw_output or "").strip()

    fence_match = _FENCE_PATTERN.search(cleaned)
    if fence_match:
        return fence_match.group(1).strip()

    # Unterminated fence
    if cleaned.lower().startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    return cleaned.strip()


def parse_json_payload(raw_output: str) -> Any:
    """
    Parse agent output as JSON, tolerating markdown fences.

    Raises:
        json.JSONDecodeError: If the cleaned text is not JSON
    """
    return json.loads(strip_code_fences(raw_output))


def try_parse_json(raw_output: str | None) -> Any | None:
    """Like parse_json_payload, but None for empty or invalid output."""
    if not raw_output or not raw_output.strip():
        return None
    try:
        return parse_json_payload(raw_output)
    except json.JSONDecodeError:
        return None

