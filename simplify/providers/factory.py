"""
Provider construction from settings and variant configuration.

Usage:
    provider, model_config = create_provider_for_variant(variant, store, settings)
    result = provider.complete(messages, model_config.model, options)
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple, Type

from ..errors import NotFoundError
from ..models.provider import ModelConfig, ProviderType
from ..models.variant import VariantConfig
from .anthropic import AnthropicProvider
from .base import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT,
    Provider,
    ProviderConfigError,
)
from .gemini import GeminiProvider
from .mistral import MistralProvider
from .openai import OpenAIProvider

PROVIDER_REGISTRY: Dict[ProviderType, Type[Provider]] = {
    ProviderType.OPENAI: OpenAIProvider,
    ProviderType.ANTHROPIC: AnthropicProvider,
    ProviderType.GEMINI: GeminiProvider,
    ProviderType.MISTRAL: MistralProvider,
}


def create_provider(provider_type: ProviderType, settings: Optional[Dict[str, Any]] = None) -> Provider:
    """
    Build a provider adapter from the ``providers.<type>`` and ``http`` settings.

    Raises:
        ProviderConfigError: If the provider type is unknown
    """
    try:
        ptype = ProviderType(provider_type)
    except ValueError as e:
        raise ProviderConfigError(f"Unknown provider type: {provider_type}") from e

    settings = settings or {}
    section = (settings.get("providers") or {}).get(ptype.value) or {}
    http = settings.get("http") or {}
    provider_cls = PROVIDER_REGISTRY[ptype]
    return provider_cls(
        api_key=section.get("api_key") or "",
        endpoint=section.get("endpoint"),
        headers=section.get("headers"),
        timeout=http.get("timeout", DEFAULT_TIMEOUT),
        connect_timeout=http.get("connect_timeout", DEFAULT_CONNECT_TIMEOUT),
        max_retries=http.get("retries", DEFAULT_MAX_RETRIES),
    )


def create_provider_for_variant(
    variant_config: VariantConfig, store, settings: Optional[Dict[str, Any]] = None
) -> Tuple[Provider, ModelConfig]:
    """
    Resolve ``variant.provider`` (a model config id) to an adapter.

    Raises:
        ProviderConfigError: If the variant has no provider configured
        NotFoundError: If the model config document does not exist
    """
    if not variant_config.provider:
        raise ProviderConfigError(
            f"No provider configured for variant {variant_config.language_code}"
        )
    model_config = store.load_model_config(variant_config.provider)
    if model_config is None:
        raise NotFoundError("Model config", variant_config.provider)
    return create_provider(model_config.provider_type, settings), model_config
