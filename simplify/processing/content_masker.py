"""
Reversible masking of e-mail addresses and phone numbers.

Personal data is swapped for ordinal placeholders before field content is
sent to a third-party provider and restored afterwards. Each field gets its
own placeholder map, so placeholders never collide across fields.

Example:
    >>> result = ContentMasker.mask("Mail info@example.org")
    >>> result.masked
    'Mail ___EMAIL_MASK_1___'
    >>> ContentMasker.demask(result.masked, result.mapping)
    'Mail info@example.org'
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

from ..models.variant import MaskingConfig

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}")
PHONE_PATTERN = re.compile(r"(\+?\d{1,3}[\s\-]?)?(\(?\d{2,4}\)?[\s\-]?)[\d\s\-]{4,}")

EMAIL_PLACEHOLDER = "___EMAIL_MASK_{}___"
PHONE_PLACEHOLDER = "___TEL_MASK_{}___"

MaskingSettings = Union[MaskingConfig, Mapping[str, Any], None]


@dataclass
class MaskResult:
    masked: str
    mapping: Dict[str, str] = field(default_factory=dict)


def _flags(config: MaskingSettings) -> MaskingConfig:
    if config is None:
        return MaskingConfig()
    if isinstance(config, MaskingConfig):
        return config
    return MaskingConfig(
        mask_emails=bool(config.get("mask_emails", True)),
        mask_phones=bool(config.get("mask_phones", True)),
    )


class ContentMasker:
    """Email/phone placeholder substitution for a single field's content."""

    @staticmethod
    def _substitute(pattern: re.Pattern, template: str, text: str, mapping: Dict[str, str]) -> str:
        counter = 0

        def replace(match: re.Match) -> str:
            nonlocal counter
            counter += 1
            placeholder = template.format(counter)
            mapping[placeholder] = match.group(0)
            return placeholder

        return pattern.sub(replace, text)

    @classmethod
    def mask(cls, text: str, config: MaskingSettings = None) -> MaskResult:
        """Mask emails first, then phone numbers; numbering restarts per kind."""
        flags = _flags(config)
        mapping: Dict[str, str] = {}
        masked = text
        if flags.mask_emails:
            masked = cls._substitute(EMAIL_PATTERN, EMAIL_PLACEHOLDER, masked, mapping)
        if flags.mask_phones:
            masked = cls._substitute(PHONE_PATTERN, PHONE_PLACEHOLDER, masked, mapping)
        return MaskResult(masked=masked, mapping=mapping)

    @staticmethod
    def demask(text: str, mapping: Optional[Mapping[str, str]]) -> str:
        """Literal placeholder -> original substitution."""
        if not mapping:
            return text
        for placeholder, original in mapping.items():
            text = text.replace(placeholder, original)
        return text
