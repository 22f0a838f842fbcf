"""
Data models for the translation job pipeline.
"""
from __future__ import annotations

from .job import Job, JobProgress, JobResult, JobStatus, Strategy
from .provider import (
    CompletionOptions,
    ModelConfig,
    Pricing,
    ProviderResult,
    ProviderType,
)
from .variant import (
    FieldTypeInstruction,
    MaskingConfig,
    PageMode,
    PageModeEntry,
    VariantConfig,
)

__all__ = [
    "CompletionOptions",
    "FieldTypeInstruction",
    "Job",
    "JobProgress",
    "JobResult",
    "JobStatus",
    "MaskingConfig",
    "ModelConfig",
    "PageMode",
    "PageModeEntry",
    "Pricing",
    "ProviderResult",
    "ProviderType",
    "Strategy",
    "VariantConfig",
]
