"""
Locate and parse the JSON object embedded in free-form model text.

Model output is an untrusted, semi-structured payload: sometimes clean JSON,
sometimes wrapped in ```json fences, sometimes preceded by commentary or
broken by trailing commas. Layered fallbacks, cheapest first:

  1. The whole (stripped) text
  2. Each fenced code block
  3. Each balanced {...} object found by a string-aware brace scan

Every candidate is tried as-is, then with trailing commas repaired. The
first candidate that decodes to a JSON *object* wins.
"""

from __future__ import annotations

import json
import re
from typing import Iterator, Optional

from .exceptions import MalformedResponseError

_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n?(.*?)```", re.DOTALL | re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")

# Keep diagnostic payloads bounded
_RAW_PREVIEW_CHARS = 2_000


def parse_json_payload(text: Optional[str]) -> dict:
    """Return the first JSON object found in `text`.

    Raises:
        MalformedResponseError: if no candidate decodes to a JSON object.
            The raw text is preserved in `details["raw"]`.
    """
    if text is None or not text.strip():
        raise MalformedResponseError("Model returned an empty response", {"raw": ""})

    for candidate in _candidates(text):
        parsed = _loads_lenient(candidate)
        if isinstance(parsed, dict):
            return parsed

    raise MalformedResponseError(
        "No JSON object found in model response",
        {"raw": text[:_RAW_PREVIEW_CHARS]},
    )


def repair_trailing_commas(text: str) -> str:
    """Drop commas directly before a closing brace or bracket."""
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def iter_balanced_objects(text: str) -> Iterator[str]:
    """Yield each top-level balanced {...} substring, left to right.

    Braces inside JSON strings (including escaped quotes) are ignored.
    """
    pos = 0
    while True:
        start = text.find("{", pos)
        if start == -1:
            return
        end = _matching_brace(text, start)
        if end is None:
            pos = start + 1
            continue
        yield text[start : end + 1]
        pos = end + 1


# ─── Internals ───────────────────────────────────────────────────────


def _candidates(text: str) -> Iterator[str]:
    stripped = text.strip()
    yield stripped
    for match in _FENCE_RE.finditer(stripped):
        yield match.group(1).strip()
    yield from iter_balanced_objects(stripped)


def _loads_lenient(candidate: str) -> object:
    for attempt in (candidate, repair_trailing_commas(candidate)):
        try:
            return json.loads(attempt)
        except json.JSONDecodeError:
            continue
    return None


def _matching_brace(text: str, start: int) -> Optional[int]:
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
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
                return i
    return None
