"""Find the materials/tools recommendation block in assistant text.

The assistant is asked to answer with a fenced JSON block, but in practice
it may also inline a bare object in its prose or reply with nothing but
JSON. Extraction tries, in order:

1. a fenced code block tagged ``json``
2. the first ``{...}`` object that decodes and has ``materials`` and ``tools``
3. the whole message as JSON

Most chat turns carry no recommendations at all, so a miss returns None
rather than raising.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator
from typing import Any

import structlog

from diy_assistant.models.contracts import ExtractedRecommendations

log = structlog.get_logger("json_extract")

_FENCED_JSON_RE = re.compile(r"```json[^\S\n]*\n?(.*?)```", re.DOTALL | re.IGNORECASE)
_OPEN_FENCE_RE = re.compile(r"```json\s*\Z", re.IGNORECASE)
_BLANK_RUN_RE = re.compile(r"\n[ \t]*\n(?:[ \t]*\n)+")

REQUIRED_KEYS = ("materials", "tools")

_decoder = json.JSONDecoder()


def _candidate_objects(text: str) -> Iterator[tuple[int, int, Any]]:
    """Yield (start, end, parsed) for every object that decodes at a ``{``, left to right.

    Each attempt stops at the first character that is not valid JSON, so
    prose full of stray braces is rejected quickly.
    """
    start = text.find("{")
    while start != -1:
        try:
            parsed, end = _decoder.raw_decode(text, start)
        except (json.JSONDecodeError, RecursionError):
            pass
        else:
            yield start, end, parsed
        start = text.find("{", start + 1)


def _has_required_keys(data: Any) -> bool:
    return isinstance(data, dict) and all(key in data for key in REQUIRED_KEYS)


def _validate(data: Any) -> ExtractedRecommendations | None:
    """Accept only ``{"materials": [{...}], "tools": [{...}]}`` shapes.

    Item objects without a usable ``name`` are dropped.
    """
    if not _has_required_keys(data):
        return None
    groups: dict[str, list[dict[str, Any]]] = {}
    for key in REQUIRED_KEYS:
        items = data[key]
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            return None
        named = [
            item for item in items if isinstance(item.get("name"), str) and item["name"].strip()
        ]
        if len(named) < len(items):
            log.warning(
                "recommendation_items_dropped",
                group=key,
                raw=len(items),
                dropped=len(items) - len(named),
            )
        groups[key] = named
    return ExtractedRecommendations(materials=groups["materials"], tools=groups["tools"])


def _find_bare_object(text: str) -> tuple[int, int, Any] | None:
    for start, end, parsed in _candidate_objects(text):
        if _has_required_keys(parsed):
            return start, end, parsed
    return None


def extract_recommendations(text: str) -> ExtractedRecommendations | None:
    """Parse the recommendation block out of assistant text, or return None."""
    if not text or not text.strip():
        return None

    for match in _FENCED_JSON_RE.finditer(text):
        try:
            parsed = json.loads(match.group(1).strip())
        except json.JSONDecodeError:
            log.debug("fenced_json_unparseable", length=len(match.group(1)))
            continue
        if (result := _validate(parsed)) is not None:
            return result

    bare = _find_bare_object(text)
    if bare is not None and (result := _validate(bare[2])) is not None:
        return result

    try:
        return _validate(json.loads(text))
    except (json.JSONDecodeError, RecursionError):
        return None


def _is_recommendation_fence(match: re.Match[str]) -> bool:
    body = match.group(1)
    return all(f'"{key}"' in body for key in REQUIRED_KEYS)


def strip_recommendation_json(text: str) -> str:
    """Return ``text`` without its recommendation block, for the chat transcript.

    Fenced blocks are removed first; a bare object is only removed when no
    fenced block was found, along with an unclosed json fence opener right
    in front of it. Blank lines left behind are collapsed and the result is
    trimmed.
    """
    stripped = _FENCED_JSON_RE.sub(
        lambda m: "" if _is_recommendation_fence(m) else m.group(0),
        text,
    )
    if stripped == text:
        bare = _find_bare_object(text)
        if bare is not None:
            start, end, _ = bare
            stripped = _OPEN_FENCE_RE.sub("", text[:start]) + text[end:]
    stripped = _BLANK_RUN_RE.sub("\n\n", stripped)
    return stripped.strip()
