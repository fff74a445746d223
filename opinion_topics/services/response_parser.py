"""Parse completion-service output into a ParseResult.

LLM responses are not reliably bare JSON. Strategies are tried in order until
one yields a JSON object:

1. the whole body
2. the body with a surrounding code fence removed
3. the first balanced {...} or [...] span, whichever opens first

Anything else becomes Unstructured. Raw text never flows past this module.
"""

import json
import logging
from typing import Any, Iterator, Optional, Tuple

from ..models import ParseResult, Structured, Unstructured

logger = logging.getLogger(__name__)


def parse_response(text: Optional[str]) -> ParseResult:
    """Turn raw completion text into Structured or Unstructured."""
    if text is None or not text.strip():
        return Unstructured(raw_text=text or "", reason="empty-response")

    for strategy, candidate in _candidates(text):
        data = _load(candidate)
        if data is None:
            continue
        payload = _as_payload(data)
        if payload is not None:
            if strategy != "direct":
                logger.debug(f"Parsed completion response via {strategy}")
            return Structured(payload=payload, strategy=strategy)

    logger.warning(f"Completion response is not structured ({len(text)} chars)")
    return Unstructured(raw_text=text, reason="no-structured-data")


def _candidates(text: str) -> Iterator[Tuple[str, str]]:
    yield "direct", text
    stripped = strip_code_fence(text)
    if stripped is not None:
        yield "fence-stripped", stripped

    # Whichever bracket opens first is the outermost structure.
    spans = [
        ("bracket-extracted", extract_first_object(text)),
        ("array-extracted", extract_first_array(text)),
    ]
    for strategy, span in sorted((s for s in spans if s[1] is not None), key=lambda s: text.find(s[1])):
        yield strategy, span


def _load(candidate: str) -> Any:
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None


def _as_payload(data: Any) -> Optional[dict]:
    """Objects pass through; a list of objects is taken as the assignment list."""
    if isinstance(data, dict):
        return data
    if isinstance(data, list) and all(isinstance(item, dict) for item in data):
        return {"assignments": data}
    return None


def strip_code_fence(text: str) -> Optional[str]:
    """Remove a leading ```lang line and a trailing ``` line.

    Returns None when the text is not fenced.
    """
    content = text.strip()
    if not content.startswith("```"):
        return None

    lines = content.split("\n")
    lines = lines[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def extract_first_object(text: str) -> Optional[str]:
    """Return the first balanced {...} span, ignoring braces inside strings."""
    return _extract_first(text, "{", "}")


def extract_first_array(text: str) -> Optional[str]:
    """Return the first balanced [...] span, ignoring brackets inside strings."""
    return _extract_first(text, "[", "]")


def _extract_first(text: str, opening: str, closing: str) -> Optional[str]:
    start = text.find(opening)
    while start != -1:
        end = _matching_close(text, start, opening, closing)
        if end is not None:
            return text[start:end + 1]
        start = text.find(opening, start + 1)
    return None


def _matching_close(text: str, start: int, opening: str, closing: str) -> Optional[int]:
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
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
        elif char == opening:
            depth += 1
        elif char == closing:
            depth -= 1
            if depth == 0:
                return i
    return None
