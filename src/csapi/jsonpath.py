"""Path-addressed lookups into parsed JSON documents.

Paths use the dotted syntax common to JSON query tools:

    rooms.join.!abc:example.org.timeline.events

- ``.`` separates path segments
- ``*`` and ``?`` inside a segment match any run of characters / any single
  character of an object key (first match in document order wins)
- a numeric segment indexes into an array; ``#`` yields an array's length
- ``\\`` escapes the next character, so keys containing
  ``.``, ``*``, ``?`` or ``\\`` must be passed through `escape()` before
  being embedded in a path

Lookups never raise for a missing key; they return a `PathResult` which
distinguishes "absent" from "present with value None (JSON null)".
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

_MISSING = object()
_SPECIAL = re.compile(r"[\\.*?]")


def escape(key: str) -> str:
    """Escape `key` so it can be embedded in a path as one literal segment."""
    return _SPECIAL.sub(r"\\\g<0>", key)


@dataclass(frozen=True)
class _Segment:
    text: str
    is_pattern: bool


@dataclass(frozen=True)
class PathResult:
    """Outcome of a path lookup."""

    value: Any = None
    exists: bool = False

    def is_array(self) -> bool:
        return self.exists and isinstance(self.value, list)

    def is_object(self) -> bool:
        return self.exists and isinstance(self.value, dict)

    @property
    def string(self) -> str:
        """The value if it is a string, otherwise an empty string."""
        if self.exists and isinstance(self.value, str):
            return self.value
        return ""


def split_path(path: str) -> list[_Segment]:
    """Split a path into segments, honouring backslash escapes."""
    segments = []
    buf: list[str] = []
    is_pattern = False
    i = 0
    while i < len(path):
        ch = path[i]
        if ch == "\\" and i + 1 < len(path):
            buf.append(path[i + 1])
            i += 2
            continue
        if ch == ".":
            segments.append(_Segment("".join(buf), is_pattern))
            buf = []
            is_pattern = False
        else:
            if ch in "*?":
                # keep the wildcard recognisable after unescaping
                buf.append("\x00" + ch)
                is_pattern = True
            else:
                buf.append(ch)
        i += 1
    segments.append(_Segment("".join(buf), is_pattern))
    return segments


def _pattern_to_regex(segment: _Segment) -> re.Pattern[str]:
    parts = []
    i = 0
    text = segment.text
    while i < len(text):
        if text[i] == "\x00" and i + 1 < len(text):
            parts.append(".*" if text[i + 1] == "*" else ".")
            i += 2
        else:
            parts.append(re.escape(text[i]))
            i += 1
    return re.compile("".join(parts), re.DOTALL)


def _step(node: Any, segment: _Segment) -> Any:
    if isinstance(node, dict):
        if segment.is_pattern:
            regex = _pattern_to_regex(segment)
            for key, value in node.items():
                if regex.fullmatch(key):
                    return value
            return _MISSING
        return node.get(segment.text, _MISSING)

    if isinstance(node, list):
        if segment.text == "#" and not segment.is_pattern:
            return len(node)
        if segment.text.isdigit():
            index = int(segment.text)
            if index < len(node):
                return node[index]
        return _MISSING

    return _MISSING


def lookup(document: Any, path: str) -> PathResult:
    """Resolve `path` against `document`.

    Example:
        >>> lookup({"a": {"b.c": [1, 2]}}, "a." + escape("b.c") + ".1")
        PathResult(value=2, exists=True)
    """
    node = document
    for segment in split_path(path):
        node = _step(node, segment)
        if node is _MISSING:
            return PathResult()
    return PathResult(value=node, exists=True)


def get(document: Any, path: str, default: Any = None) -> Any:
    """Return the value at `path`, or `default` when absent."""
    result = lookup(document, path)
    return result.value if result.exists else default
