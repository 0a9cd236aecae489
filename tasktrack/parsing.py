"""Helpers for pulling structured data out of free-form model output."""

from __future__ import annotations

import json
from typing import Any


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```lang ... ``` fence if present."""
    content = text.strip()
    if content.startswith("```"):
        lines = content.split("\n")
        lines = lines[1:]
        if lines and lines[-1].strip().startswith("```"):
            lines = lines[:-1]
        content = "\n".join(lines).strip()
    return content


def _unwrap(obj: Any) -> Any:
    # CLI style envelope: {"type": "result", "result": "<json text>"}
    if isinstance(obj, dict) and obj.get("type") == "result" and isinstance(obj.get("result"), str):
        inner = extract_json_object(obj["result"])
        return inner if inner is not None else obj
    return obj


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Return the first JSON object found in text, or None.

    Tries the whole (fence-stripped) text first, then scans for the
    first `{` that starts a decodable object.
    """
    if not text:
        return None

    content = strip_code_fences(text)
    try:
        obj = json.loads(content)
    except json.JSONDecodeError:
        obj = None
    if isinstance(obj, dict):
        return _unwrap(obj)

    decoder = json.JSONDecoder()
    idx = content.find("{")
    while idx != -1:
        try:
            obj, _ = decoder.raw_decode(content, idx)
        except json.JSONDecodeError:
            idx = content.find("{", idx + 1)
            continue
        if isinstance(obj, dict):
            return _unwrap(obj)
        idx = content.find("{", idx + 1)
    return None
