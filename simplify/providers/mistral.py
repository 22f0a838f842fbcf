"""Mistral speaks the OpenAI chat-completions protocol on its own endpoint."""

from __future__ import annotations

from ..models.provider import ProviderType
from .openai import OpenAIProvider


class MistralProvider(OpenAIProvider):
    provider_type = ProviderType.MISTRAL
    DEFAULT_ENDPOINT = "https://api.mistral.ai/v1"
