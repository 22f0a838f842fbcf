"""
Five-level filter deciding which fields of a page are translated.

Levels, in order (short-circuiting):
    1. Page mode (``pages[].mode`` in the variant config; absent = auto)
    2. Template opt-out (exact match)
    3. Candidate fields (all fields, or only changed ones)
    4. Field type eligibility (registered rule, enabled, not opted out)
    5. Field name opt-out (wildcard patterns such as ``seo_*``)

Fields whose type cannot be resolved from the schema, or whose content is
empty, are dropped silently.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, List, Mapping, Optional

from ..host import Page, RuleRegistry, field_text
from ..models.variant import PageMode, VariantConfig


def wildcard_match(pattern: str, name: str) -> bool:
    """Case-insensitive match where only ``*`` is a wildcard."""
    parts = (re.escape(part) for part in pattern.lower().split("*"))
    return re.fullmatch(".*".join(parts), name.lower(), flags=re.DOTALL) is not None


class FieldFilterPipeline:
    """Applies a variant's opt-outs and field type whitelist to a page."""

    def __init__(self, rules: RuleRegistry):
        self.rules = rules

    # Level 1
    def check_page_mode(self, page: Page, config: VariantConfig) -> bool:
        if not page.uuid:
            return False
        return config.page_mode(page.uuid) == PageMode.AUTO

    # Level 2
    def check_template(self, page: Page, config: VariantConfig) -> bool:
        return page.template not in config.opt_out_templates

    # Level 4
    def check_field_type(self, field_type: str, config: VariantConfig) -> bool:
        if not self.rules.has_rule(field_type):
            return False
        if field_type in config.opt_out_fieldtypes:
            return False
        instruction = config.field_type_instructions.get(field_type)
        if instruction is None:
            return False
        return instruction.enabled is True

    # Level 5
    def is_field_excluded(self, field_name: str, config: VariantConfig) -> bool:
        name = field_name.lower()
        return any(wildcard_match(pattern, name) for pattern in config.opt_out_fields)

    def _eligible(
        self, page: Page, field_name: str, content: Mapping[str, Any], config: VariantConfig
    ) -> bool:
        field_type = page.field_type(field_name)
        if not field_type:
            return False
        if self.is_field_excluded(field_name, config):
            return False
        if not field_text(content.get(field_name)).strip():
            return False
        return self.check_field_type(field_type, config)

    def filter_fields(
        self,
        page: Page,
        field_names: Iterable[str],
        content: Mapping[str, Any],
        config: VariantConfig,
    ) -> List[str]:
        """
        Filter candidate fields for one page (levels 2, 4 and 5 plus the
        unknown/empty checks). Page mode is not consulted: explicit requests
        bypass it.
        """
        if not self.check_template(page, config):
            return []
        return [
            name for name in field_names if self._eligible(page, name, content, config)
        ]

    def get_translatable_fields(
        self,
        page: Page,
        content: Mapping[str, Any],
        config: VariantConfig,
        candidates: Optional[Iterable[str]] = None,
    ) -> List[str]:
        """All five levels. ``candidates`` defaults to every field in ``content``."""
        if not self.check_page_mode(page, config):
            return []
        if not self.check_template(page, config):
            return []
        names = list(candidates) if candidates is not None else list(content.keys())
        if not names:
            return []
        return [name for name in names if self._eligible(page, name, content, config)]

    def get_skip_reason(
        self,
        page: Page,
        field_name: str,
        content: Mapping[str, Any],
        config: VariantConfig,
    ) -> Optional[str]:
        """Human-readable reason a field would be skipped, or None if it is eligible."""
        field_type = page.field_type(field_name)
        if not field_type:
            return f"Field '{field_name}' is not defined in the page schema"
        if not self.check_template(page, config):
            return f"Template '{page.template}' is in opt_out_templates"
        if self.is_field_excluded(field_name, config):
            return f"Field name '{field_name}' matches opt_out_fields pattern"
        if not field_text(content.get(field_name)).strip():
            return "Field is empty"
        if not self.rules.has_rule(field_type):
            return f"Field type '{field_type}' has no registered rule"
        if field_type in config.opt_out_fieldtypes:
            return f"Field type '{field_type}' is in opt_out_fieldtypes"
        if not self.check_field_type(field_type, config):
            return f"Field type '{field_type}' is disabled for this variant"
        return None
