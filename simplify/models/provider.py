"""
Provider-facing value types: model configuration and completion results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_PER_TOKENS = 1_000_000


class ProviderType(str, Enum):
    """Wire protocols supported by the provider gateway."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    MISTRAL = "mistral"


class Pricing(BaseModel):
    """Price per ``per_tokens`` input/output tokens (USD)."""
    input: float = 0.0
    output: float = 0.0
    per_tokens: int = Field(DEFAULT_PER_TOKENS, gt=0)


class ModelConfig(BaseModel):
    """A configured model, stored as ``<provider_type>/<model>.json``."""
    model_config = ConfigDict(extra="allow", protected_namespaces=())

    provider_type: ProviderType = ProviderType.OPENAI
    model: str
    pricing: Optional[Pricing] = None
    supports_temperature: bool = False
    output_token_limit: Optional[int] = None

    @property
    def config_id(self) -> str:
        return build_model_config_id(self.provider_type, self.model)


def build_model_config_id(provider_type: ProviderType, model: str) -> str:
    """``openai`` + ``gpt-4o`` -> ``openai/gpt-4o``."""
    return f"{ProviderType(provider_type).value}/{model}"


@dataclass
class CompletionOptions:
    """Per-call generation options passed to ``Provider.complete``."""

    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    output_token_limit: Optional[int] = None

    @property
    def token_limit(self) -> Optional[int]:
        return self.max_tokens if self.max_tokens is not None else self.output_token_limit


@dataclass
class ProviderResult:
    """Normalized completion result, identical across wire protocols."""

    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    model: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens
