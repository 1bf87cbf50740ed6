"""Pull the JSON object out of an LLM reply (code fences, prose, trailing text)."""

from __future__ import annotations

import json
import logging
import re

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def extract_json_object(text: str | None) -> dict | None:
    """Return the first JSON object found in *text*, or ``None``.

    Tries the whole reply first, then every ``{`` in turn with a
    string-aware brace counter. Arrays and scalars are not accepted.
    """
    if not text or not text.strip():
        return None

    stripped = text.strip()
    fenced = _FENCE_RE.match(stripped)
    if fenced:
        stripped = fenced.group(1)

    parsed = _loads(stripped)
    if isinstance(parsed, dict):
        return parsed

    start = stripped.find("{")
    while start != -1:
        candidate = _balanced_object(stripped, start)
        if candidate is not None:
            parsed = _loads(candidate)
            if isinstance(parsed, dict):
                return parsed
        start = stripped.find("{", start + 1)

    logger.debug("No JSON object found in %d chars of model output", len(text))
    return None


def _loads(candidate: str):
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None


def _balanced_object(text: str, start: int) -> str | None:
    depth = 0
    in_string = False
    escape = False

    for index in range(start, len(text)):
        ch = text[index]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]

    return None
