"""
Contracts with the hosting content layer, plus a file-backed implementation.

The pipeline only needs a handful of operations from the host: look up a
page, read field values for a language, resolve a field's schema type, and
write translated fields back. ``ContentStore`` names that contract;
``FileContentStore`` implements it over a plain directory tree::

    content/
      blog/post-1/
        page.yml            uuid, title, template, field types
        content.json        source-language field values
        content.de-x-ls.json
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set

import yaml

from .logging_utils import log

# Built-in fields every page has even when the schema does not list them
STANDARD_FIELD_TYPES = {"title": "text", "slug": "text", "uuid": "text"}


def field_text(value: Any) -> str:
    """Field value as text; structured values are JSON-encoded."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


@dataclass
class Page:
    """A content page as seen by the pipeline."""

    id: str
    uuid: Optional[str] = None
    title: str = ""
    template: str = "default"
    field_types: Dict[str, str] = field(default_factory=dict)

    def field_type(self, field_name: str) -> Optional[str]:
        """Schema type for a field (case-insensitive), None if unknown."""
        lowered = field_name.lower()
        for name, ftype in self.field_types.items():
            if name.lower() == lowered:
                return ftype
        return STANDARD_FIELD_TYPES.get(lowered)


class ContentStore(Protocol):
    def get_page(self, page_id: str) -> Optional[Page]: ...

    def list_pages(self) -> List[Page]: ...

    def read_content(self, page_id: str, language: Optional[str] = None) -> Dict[str, Any]: ...

    def has_translation(self, page_id: str, language: str) -> bool: ...

    def write_content(self, page_id: str, language: str, fields: Dict[str, Any]) -> None: ...


class FileContentStore:
    """``ContentStore`` over ``content/<page id>/`` directories."""

    META_FILE = "page.yml"
    SOURCE_FILE = "content.json"

    def __init__(self, content_dir: Path):
        self.content_dir = Path(content_dir)

    def _page_dir(self, page_id: str) -> Path:
        return self.content_dir / page_id

    def _content_file(self, page_id: str, language: Optional[str]) -> Path:
        if language is None:
            return self._page_dir(page_id) / self.SOURCE_FILE
        return self._page_dir(page_id) / f"content.{language}.json"

    def get_page(self, page_id: str) -> Optional[Page]:
        meta_path = self._page_dir(page_id) / self.META_FILE
        if not meta_path.exists():
            return None
        try:
            meta = yaml.safe_load(meta_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            log(f"Invalid page metadata {meta_path}: {e}", level="warning")
            return None
        return Page(
            id=page_id,
            uuid=meta.get("uuid"),
            title=str(meta.get("title") or ""),
            template=str(meta.get("template") or "default"),
            field_types={str(k): str(v) for k, v in (meta.get("fields") or {}).items()},
        )

    def list_pages(self) -> List[Page]:
        if not self.content_dir.exists():
            return []
        pages = []
        for meta_path in sorted(self.content_dir.rglob(self.META_FILE)):
            page_id = meta_path.parent.relative_to(self.content_dir).as_posix()
            page = self.get_page(page_id)
            if page is not None:
                pages.append(page)
        return pages

    def read_content(self, page_id: str, language: Optional[str] = None) -> Dict[str, Any]:
        path = self._content_file(page_id, language)
        if not path.exists():
            return {}
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        return data if isinstance(data, dict) else {}

    def has_translation(self, page_id: str, language: str) -> bool:
        return self._content_file(page_id, language).exists()

    def write_content(self, page_id: str, language: str, fields: Dict[str, Any]) -> None:
        """Merge ``fields`` over the existing target file (new values win)."""
        path = self._content_file(page_id, language)
        merged = self.read_content(page_id, language)
        merged.update(fields)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as fh:
            json.dump(merged, fh, indent=2, ensure_ascii=False)
        log(f"Written {len(merged)} fields to page {page_id} for language {language}")


class RuleRegistry:
    """
    Field types that have a registered default-instruction rule.

    Rules live in ``<rules dir>/fieldtypes/<type>.json``; an explicit set of
    types can be supplied instead (used by tests and embedded setups).
    """

    def __init__(self, rules_dir: Optional[Path] = None, field_types: Optional[Iterable[str]] = None):
        self.rules_dir = Path(rules_dir) if rules_dir is not None else None
        self._explicit: Optional[Set[str]] = set(field_types) if field_types is not None else None

    def has_rule(self, field_type: str) -> bool:
        if self._explicit is not None:
            return field_type in self._explicit
        if self.rules_dir is None:
            return False
        return (self.rules_dir / "fieldtypes" / f"{field_type}.json").exists()

    def registered_types(self) -> List[str]:
        if self._explicit is not None:
            return sorted(self._explicit)
        if self.rules_dir is None:
            return []
        return sorted(p.stem for p in (self.rules_dir / "fieldtypes").glob("*.json"))
