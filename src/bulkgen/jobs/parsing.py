"""Best-effort JSON recovery from free-form model replies."""

from __future__ import annotations

import json
import re

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


def find_fenced_json(text: str) -> tuple[dict[str, object], re.Match[str]] | None:
    """First fenced ```json block that decodes to an object, with its match span."""

    for match in _FENCED_JSON.finditer(text):
        payload = _try_load_dict(match.group(1))
        if payload is not None:
            return payload, match
    return None


def parse_json_object(text: str) -> dict[str, object] | None:
    """Try fenced block, then whole text, then the first-brace to last-brace span."""

    stripped = text.strip()
    if not stripped:
        return None

    fenced = find_fenced_json(stripped)
    if fenced is not None:
        return fenced[0]

    direct = _try_load_dict(stripped)
    if direct is not None:
        return direct

    start = stripped.find("{")
    end = stripped.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return _try_load_dict(stripped[start : end + 1])


def _try_load_dict(raw: str) -> dict[str, object] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed
