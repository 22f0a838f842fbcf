"""
Field grouping and per-field masking for grouped (one call per field type)
translation requests.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Tuple

from ..host import Page, field_text
from .content_masker import ContentMasker, MaskingSettings


def group_fields_by_type(page: Page, field_names: List[str]) -> Dict[str, List[str]]:
    """Group field names by schema type, preserving order. Unknown types are skipped."""
    groups: Dict[str, List[str]] = {}
    for name in field_names:
        field_type = page.field_type(name)
        if not field_type:
            continue
        groups.setdefault(field_type, []).append(name)
    return groups


def get_field_contents(content: Mapping[str, Any], field_names: List[str]) -> Dict[str, str]:
    return {name: field_text(content.get(name)) for name in field_names}


def mask_field_contents(
    contents: Mapping[str, str], config: MaskingSettings = None
) -> Tuple[Dict[str, str], Dict[str, Dict[str, str]]]:
    """Mask each field independently. Returns (masked contents, maps by field)."""
    masked: Dict[str, str] = {}
    maps: Dict[str, Dict[str, str]] = {}
    for name, text in contents.items():
        result = ContentMasker.mask(text, config)
        masked[name] = result.masked
        maps[name] = result.mapping
    return masked, maps


def demask_field_contents(
    contents: Mapping[str, str], maps: Mapping[str, Mapping[str, str]]
) -> Dict[str, str]:
    return {
        name: ContentMasker.demask(text, maps.get(name) or {})
        for name, text in contents.items()
    }
