"""
Variant (translation target) configuration documents.

One JSON document per variant, e.g. ``config/de-x-ls.json``. Unknown keys are
kept so the document can be written back without losing host-owned settings.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PageMode(str, Enum):
    """Per-page translation mode within a variant."""
    AUTO = "auto"
    MANUAL = "manual"
    OFF = "off"


class PageModeEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    uuid: str
    mode: PageMode = PageMode.AUTO


class FieldTypeInstruction(BaseModel):
    """Instruction and prompt category for one field type (e.g. ``blocks``)."""
    model_config = ConfigDict(extra="allow")

    instruction: str = ""
    category: Optional[str] = None
    enabled: bool = True


class MaskingConfig(BaseModel):
    mask_emails: bool = True
    mask_phones: bool = True


class VariantConfig(BaseModel):
    """Configuration for one translation target."""
    model_config = ConfigDict(extra="allow")

    language_code: str
    source_language: Optional[str] = None
    provider: Optional[str] = Field(None, description="Model config id, e.g. 'openai/gpt-4o'")
    ai_system_prompt: str = ""
    project_prompt: str = ""
    temperature: Optional[float] = None
    category_prompts: Dict[str, str] = Field(default_factory=dict)
    field_type_instructions: Dict[str, FieldTypeInstruction] = Field(default_factory=dict)
    opt_out_templates: List[str] = Field(default_factory=list)
    opt_out_fields: List[str] = Field(default_factory=list)
    opt_out_fieldtypes: List[str] = Field(default_factory=list)
    masking: MaskingConfig = Field(default_factory=MaskingConfig)
    pages: List[PageModeEntry] = Field(default_factory=list)

    def page_mode(self, page_uuid: str) -> PageMode:
        """Mode for a page; pages without an entry default to auto."""
        for entry in self.pages:
            if entry.uuid == page_uuid:
                return entry.mode
        return PageMode.AUTO

    def set_page_mode(self, page_uuid: str, mode: PageMode) -> None:
        for entry in self.pages:
            if entry.uuid == page_uuid:
                entry.mode = PageMode(mode)
                return
        self.pages.append(PageModeEntry(uuid=page_uuid, mode=PageMode(mode)))
