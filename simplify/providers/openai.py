"""
OpenAI chat-completions adapter (also the wire format for Mistral).
"""

from __future__ import annotations

import re
from datetime import date
from typing import Any, Dict, List, Tuple

from ..models.provider import CompletionOptions, ProviderResult, ProviderType
from .base import Message, Provider

# Dated gpt-4o snapshots from this release onward reject ``max_tokens``
MAX_COMPLETION_TOKENS_SINCE = date(2024, 8, 6)
_DATED_GPT4O = re.compile(r"^gpt-4o-(\d{4})-(\d{2})-(\d{2})$")


def uses_max_completion_tokens(model: str) -> bool:
    """True for models that take ``max_completion_tokens`` instead of ``max_tokens``."""
    if model.startswith("o1-") or model == "chatgpt-4o-latest":
        return True
    match = _DATED_GPT4O.match(model)
    if not match:
        return False
    try:
        released = date(*(int(part) for part in match.groups()))
    except ValueError:
        return False
    return released >= MAX_COMPLETION_TOKENS_SINCE


class OpenAIProvider(Provider):
    provider_type = ProviderType.OPENAI
    DEFAULT_ENDPOINT = "https://api.openai.com/v1"

    def build_request(
        self, messages: List[Message], model: str, options: CompletionOptions
    ) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        payload: Dict[str, Any] = {"model": model, "messages": list(messages)}
        if options.temperature is not None:
            payload["temperature"] = options.temperature
        limit = options.token_limit
        if limit is not None:
            key = "max_completion_tokens" if uses_max_completion_tokens(model) else "max_tokens"
            payload[key] = limit
        headers = {"Authorization": f"Bearer {self.api_key}"}
        return f"{self.endpoint}/chat/completions", payload, headers

    def parse_response(self, data: Dict[str, Any], model: str) -> ProviderResult:
        usage = data.get("usage") or {}
        return ProviderResult(
            text=data["choices"][0]["message"]["content"] or "",
            prompt_tokens=int(usage.get("prompt_tokens") or 0),
            completion_tokens=int(usage.get("completion_tokens") or 0),
            model=data.get("model") or model,
            raw=data,
        )
