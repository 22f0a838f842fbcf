"""
System prompt assembly for single-field translation requests.
"""

from __future__ import annotations

import hashlib
from typing import Optional

from ..models.variant import FieldTypeInstruction, VariantConfig

PROJECT_PROMPT_HEADER = "\n\n**Projekt-Anweisungen:**\n"

# Typographic quotes that models tend to drop or rewrite inside JSON payloads
_DOUBLE_QUOTES = ("„", "“", "”")
_SINGLE_QUOTES = ("‚", "‘", "’")


def build_system_prompt(
    config: VariantConfig, field_instruction: str = "", category_prompt: str = ""
) -> str:
    """
    ai_system_prompt [+ project instructions] + field instruction + category prompt.

    The exact string is hashed for cache validation, so formatting changes
    here invalidate cached translations.
    """
    prompt = config.ai_system_prompt or ""
    if config.project_prompt:
        prompt += PROJECT_PROMPT_HEADER + config.project_prompt
    return f"{prompt}\n\n{field_instruction}\n\n{category_prompt}"


def category_prompt_for(
    config: VariantConfig, field_type_config: Optional[FieldTypeInstruction]
) -> str:
    category = (field_type_config.category if field_type_config else None) or "default"
    prompts = config.category_prompts
    return prompts.get(category) or prompts.get("default") or ""


def prompt_hash(prompt: str) -> str:
    return hashlib.md5(prompt.encode("utf-8")).hexdigest()


def normalize_quotes(text: str) -> str:
    """Replace typographic quotes with escaped ASCII double quotes / apostrophes."""
    for quote in _DOUBLE_QUOTES:
        text = text.replace(quote, '\\"')
    for quote in _SINGLE_QUOTES:
        text = text.replace(quote, "'")
    return text
