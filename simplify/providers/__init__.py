"""
Provider gateway: one ``complete()`` call over OpenAI, Anthropic, Gemini and
Mistral wire protocols.
"""

from .anthropic import AnthropicProvider
from .base import (
    Provider,
    ProviderConfigError,
    ProviderError,
    ProviderFatalError,
    ProviderRetryableError,
)
from .factory import PROVIDER_REGISTRY, create_provider, create_provider_for_variant
from .gemini import GeminiProvider
from .mistral import MistralProvider
from .openai import OpenAIProvider

__all__ = [
    "AnthropicProvider",
    "GeminiProvider",
    "MistralProvider",
    "OpenAIProvider",
    "PROVIDER_REGISTRY",
    "Provider",
    "ProviderConfigError",
    "ProviderError",
    "ProviderFatalError",
    "ProviderRetryableError",
    "create_provider",
    "create_provider_for_variant",
]
