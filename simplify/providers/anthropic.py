"""
Anthropic messages API adapter.
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from ..models.provider import CompletionOptions, ProviderResult, ProviderType
from .base import Message, Provider, ProviderConfigError

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(Provider):
    provider_type = ProviderType.ANTHROPIC
    DEFAULT_ENDPOINT = "https://api.anthropic.com/v1/messages"

    def build_request(
        self, messages: List[Message], model: str, options: CompletionOptions
    ) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        # The messages API has no default output limit
        if not options.output_token_limit:
            raise ProviderConfigError(
                "output_token_limit is required for Anthropic models. "
                "Please configure this in the model settings."
            )

        system_parts = [m["content"] for m in messages if m.get("role") == "system"]
        turns = [
            {"role": m["role"], "content": m["content"]}
            for m in messages
            if m.get("role") != "system"
        ]
        payload: Dict[str, Any] = {
            "model": model,
            "messages": turns,
            "max_tokens": options.output_token_limit,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        if options.temperature is not None:
            payload["temperature"] = options.temperature

        headers = {"x-api-key": self.api_key, "anthropic-version": ANTHROPIC_VERSION}
        return self.endpoint, payload, headers

    def parse_response(self, data: Dict[str, Any], model: str) -> ProviderResult:
        blocks = data["content"]
        text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        usage = data.get("usage") or {}
        return ProviderResult(
            text=text,
            prompt_tokens=int(usage.get("input_tokens") or 0),
            completion_tokens=int(usage.get("output_tokens") or 0),
            model=data.get("model") or model,
            raw=data,
        )
