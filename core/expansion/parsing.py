# Path: core/expansion/parsing.py
# Purpose: Parse untrusted LLM output into a list of extension phrases.
# Layer: core/expansion.
# Details: Tagged result (ParsedExtensions | ParseFailure); never raises past this module.

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

MAX_ITEMS = 6
LIST_FIELDS = ("extensions", "expansions", "array", "items", "groundings", "values")

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


@dataclass(frozen=True)
class ParsedExtensions:
    items: Tuple[str, ...]


@dataclass(frozen=True)
class ParseFailure:
    reason: str


ParseResult = Union[ParsedExtensions, ParseFailure]


def _strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip()).strip()


def _loads(text: str) -> Optional[Any]:
    try:
        return json.loads(text)
    except ValueError:
        pass
    # Prose around the payload: retry on the outermost bracketed span.
    for opener, closer in (("[", "]"), ("{", "}")):
        start, end = text.find(opener), text.rfind(closer)
        if start != -1 and end > start:
            try:
                return json.loads(text[start:end + 1])
            except ValueError:
                continue
    return None


def _as_list(parsed: Any) -> Optional[List[Any]]:
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for name in LIST_FIELDS:
            value = parsed.get(name)
            if isinstance(value, list):
                return value
    return None


def _item_text(item: Any) -> str:
    if isinstance(item, str):
        return item.strip()
    if isinstance(item, (int, float)) and not isinstance(item, bool):
        return str(item)
    if isinstance(item, dict):
        return " ".join(str(value).strip() for value in item.values() if isinstance(value, (str, int, float))).strip()
    return ""


def parse_extensions(text: Optional[str]) -> ParseResult:
    """Parse a JSON array (possibly fenced or wrapped in an object) of extension phrases."""

    if not text or not text.strip():
        return ParseFailure("empty response")

    parsed = _loads(_strip_fences(text))
    if parsed is None:
        return ParseFailure("response is not JSON")

    raw_items = _as_list(parsed)
    if raw_items is None:
        return ParseFailure(f"expected an array, got {type(parsed).__name__}")

    items = tuple(item for item in (_item_text(raw) for raw in raw_items) if item)[:MAX_ITEMS]
    if not items:
        return ParseFailure("array contained no usable phrases")
    return ParsedExtensions(items)
