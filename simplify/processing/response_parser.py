"""
Post-processing of provider responses.

- ``normalize_text``: strips code fences and excess blank lines, and for
  structured (JSON) field types drops commentary after the JSON document
- ``compact_json``: re-serializes structured field output compactly
- ``parse_grouped_response``: splits a grouped multi-field response back
  into fields, falling back to positional splitting when the model ignored
  the ``Field:/Content:`` format
"""

from __future__ import annotations

import json
import re
from typing import Dict, List

from ..logging_utils import log

STRUCTURED_FIELD_TYPES = frozenset({"blocks", "layout", "structure", "object"})

_LEADING_FENCE = re.compile(r"^```.*\n")
_TRAILING_FENCE = re.compile(r"\n```$")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")
_GREEDY_JSON = re.compile(r"^(\[.*\]|\{.*\})", re.DOTALL)
_GROUPED_FIELD = re.compile(r"Field:\s*(\S+)\s*\nContent:\s*(.*?)(?=\n\nField:|\Z)", re.DOTALL)
_BLANK_LINES = re.compile(r"\n\n+")


class MalformedResponseError(Exception):
    """Provider output could not be mapped onto the expected fields."""

    pass


def is_structured(field_type: str) -> bool:
    return field_type in STRUCTURED_FIELD_TYPES


def _leading_json(text: str) -> str:
    """First balanced JSON array/object at the start of ``text``."""
    try:
        _, end = json.JSONDecoder().raw_decode(text)
        return text[:end]
    except ValueError:
        match = _GREEDY_JSON.match(text)
        return match.group(1) if match else text


def normalize_text(text: str, field_type: str) -> str:
    text = text.strip()
    text = _LEADING_FENCE.sub("", text, count=1)
    text = _TRAILING_FENCE.sub("", text, count=1)
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    if is_structured(field_type) and text[:1] in ("[", "{"):
        text = _leading_json(text)
    return text


def compact_json(text: str, field_type: str) -> str:
    """Compact JSON for structured types; anything that does not parse is returned as-is."""
    if not is_structured(field_type):
        return text
    try:
        decoded = json.loads(text)
    except ValueError:
        return text
    if decoded is None:
        return text
    return json.dumps(decoded, ensure_ascii=False, separators=(",", ":"))


def parse_grouped_response(text: str, expected_fields: List[str]) -> Dict[str, str]:
    """
    Map a grouped response back to field names.

    Primary format::

        Field: headline
        Content: translated headline

        Field: body
        Content: translated body

    Fallback: split on blank lines and assign parts to ``expected_fields`` in
    order; fields without a part get ``''``.

    Raises:
        MalformedResponseError: If the response is empty
    """
    if not text or not text.strip():
        raise MalformedResponseError("Empty response for grouped fields")

    fields: Dict[str, str] = {}
    for match in _GROUPED_FIELD.finditer(text):
        fields[match.group(1).strip()] = match.group(2).strip()
    if fields:
        return fields

    log("Could not parse grouped response, using positional fallback", level="warning")
    parts = [p.strip() for p in _BLANK_LINES.split(text.strip()) if p.strip()]
    if len(parts) != len(expected_fields):
        log(
            f"Positional fallback got {len(parts)} parts for {len(expected_fields)} fields",
            level="warning",
        )
    for index, name in enumerate(expected_fields):
        fields[name] = parts[index] if index < len(parts) else ""
    if len(parts) > len(expected_fields) and expected_fields:
        # Keep surplus output on the last field instead of discarding it
        last = expected_fields[-1]
        fields[last] = "\n\n".join([fields[last]] + parts[len(expected_fields):])
    return fields
