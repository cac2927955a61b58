"""Inline tool-call detection and artifact cleaning.

Models announce a tool call by emitting::

    <tool_call>{"name": "web_search", "query": "weather Paris"}</tool_call>

and sometimes quote a previous result back as ``<tool_result>...</tool_result>``.
The two marker families share the ``<tool_`` prefix, so detection has to be
re-evaluated as characters arrive.

All functions here are pure and operate on the accumulated response text.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Callable

from localgrok.types import ToolInvocation, ToolInvocationPayload

if TYPE_CHECKING:
    from localgrok.tools.registry import ToolRegistry

_logger = logging.getLogger(__name__)

TOOL_CALL_OPEN = "<tool_call>"
TOOL_CALL_CLOSE = "</tool_call>"
TOOL_RESULT_OPEN = "<tool_result>"
TOOL_RESULT_CLOSE = "</tool_result>"

_CALL = "tool_call"
_RESULT = "tool_result"

_MARKER_RE = re.compile(r"<(/?)(tool_call|tool_result)>", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Early detection
# ---------------------------------------------------------------------------

def is_starting_with_tool_call(text: str) -> bool:
    """True if *text* opens with ``<tool_call>`` or could still become it.

    A non-empty buffer that is a strict prefix of the marker (``"<to"``)
    counts, so the caller can hide output before the tag is complete.
    Once the buffer diverges (``"<tool_r"``) this returns False again.
    """
    trimmed = text.lstrip().lower()
    if not trimmed:
        return False
    return trimmed.startswith(TOOL_CALL_OPEN) or TOOL_CALL_OPEN.startswith(trimmed)


def is_starting_with_tool_result(text: str) -> bool:
    return text.lstrip().lower().startswith(TOOL_RESULT_OPEN)


def contains_tool_call_marker(text: str) -> bool:
    return _find_marker(text, TOOL_CALL_OPEN) != -1


def _find_marker(text: str, marker: str, start: int = 0) -> int:
    """Case-insensitive ``str.find`` for an ASCII marker."""
    m = re.compile(re.escape(marker), re.IGNORECASE).search(text, start)
    return m.start() if m else -1


# ---------------------------------------------------------------------------
# Full extraction
# ---------------------------------------------------------------------------

def _extract_balanced_json(text: str, start: int) -> str | None:
    """Extract a balanced JSON object starting at *start* (must be ``{``).

    Handles nested braces and quoted strings so that
    ``{"query": "say {hi}"}`` is captured in full.
    """
    if start >= len(text) or text[start] != "{":
        return None
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def is_balanced_json(text: str) -> bool:
    """True if *text* is exactly one brace-balanced object."""
    return bool(text) and _extract_balanced_json(text, 0) == text


def extract_tool_call_json(text: str) -> str | None:
    """Return the JSON object following ``<tool_call>`` in *text*.

    The closing ``</tool_call>`` is optional.  If the object is still
    arriving, the tentative tail from ``{`` to the end of the buffer is
    returned; use :func:`is_balanced_json` to tell the two apart.
    Returns None when there is no marker or no ``{`` after it yet.
    """
    tag = _find_marker(text, TOOL_CALL_OPEN)
    if tag == -1:
        return None
    inner_start = tag + len(TOOL_CALL_OPEN)
    close = _find_marker(text, TOOL_CALL_CLOSE, inner_start)
    inner = text[inner_start:close] if close != -1 else text[inner_start:]

    brace = inner.find("{")
    if brace == -1:
        return None
    obj = _extract_balanced_json(inner, brace)
    if obj is not None:
        return obj
    return inner[brace:]


# ---------------------------------------------------------------------------
# Payload parsing / resolution
# ---------------------------------------------------------------------------

def parse_tool_payload(json_text: str | None) -> ToolInvocationPayload | None:
    """Parse ``{"name": ..., "query": ...}``.  None if malformed or nameless."""
    if not json_text:
        return None
    try:
        data = json.loads(json_text)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        return None

    query = data.get("query")
    if isinstance(query, (int, float)) and not isinstance(query, bool):
        query = str(query)
    elif not isinstance(query, str):
        query = None
    return ToolInvocationPayload(name=name.strip(), query=query)


def detect_tool_call(text: str, registry: ToolRegistry) -> ToolInvocation | None:
    """Extract, parse and validate a tool call from accumulated *text*."""
    json_text = extract_tool_call_json(text)
    if json_text is None or not is_balanced_json(json_text):
        return None
    payload = parse_tool_payload(json_text)
    if payload is None:
        return None
    return registry.resolve(payload)


# ---------------------------------------------------------------------------
# Artifact cleaning
# ---------------------------------------------------------------------------

def _strip_blocks(text: str, families: frozenset[str]) -> str:
    """Single left-to-right pass removing marker blocks of *families*.

    Markers of both families delimit blocks.  An opening marker spans up
    to its matching closing marker, or to the end of the text when
    unclosed; the block is removed if its family is in *families* and
    kept verbatim otherwise, inner markers included.  A stray closing
    marker of a removed family is dropped on its own.
    """
    out: list[str] = []
    pos = 0
    while True:
        m = _MARKER_RE.search(text, pos)
        if m is None:
            out.append(text[pos:])
            break
        family = m.group(2).lower()
        remove = family in families
        out.append(text[pos : m.start()])
        if m.group(1):
            if not remove:
                out.append(m.group(0))
            pos = m.end()
            continue
        closer = f"</{family}>"
        close = _find_marker(text, closer, m.end())
        end = len(text) if close == -1 else close + len(closer)
        if not remove:
            out.append(text[m.start() : end])
        pos = end
    return "".join(out)


def _fixed_point(fn: Callable[[str], str], text: str) -> str:
    # Removing a block can splice a new marker together ("<tool_" + "call>").
    while True:
        cleaned = fn(text)
        if cleaned == text:
            return cleaned
        text = cleaned


def strip_tool_calls(text: str) -> str:
    """Remove ``<tool_call>`` blocks (closed or trailing)."""
    return _fixed_point(lambda t: _strip_blocks(t, frozenset({_CALL})), text)


def strip_tool_results(text: str) -> str:
    """Remove ``<tool_result>`` blocks (closed or trailing)."""
    return _fixed_point(lambda t: _strip_blocks(t, frozenset({_RESULT})), text)


def clean_tool_artifacts(text: str) -> str:
    """Remove all tool protocol markup from text shown to the user.

    Idempotent: ``clean_tool_artifacts(clean_tool_artifacts(x))`` equals
    ``clean_tool_artifacts(x)``.
    """
    both = frozenset({_CALL, _RESULT})
    return _fixed_point(lambda t: _strip_blocks(t, both).strip(), text)


def strip_markers(text: str) -> str:
    """Remove only the marker tags, keeping what they wrapped."""
    return _MARKER_RE.sub("", text).strip()
