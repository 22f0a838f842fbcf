"""
Google Gemini ``generateContent`` adapter.

Gemini has no system role here: system messages are folded into a leading
``user`` turn and ``assistant`` turns are sent as ``model``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from ..models.provider import CompletionOptions, ProviderResult, ProviderType
from .base import Message, Provider


def to_gemini_contents(messages: List[Message]) -> List[Dict[str, Any]]:
    system_text = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
    contents: List[Dict[str, Any]] = []
    if system_text:
        contents.append({"role": "user", "parts": [{"text": system_text}]})
    for message in messages:
        role = message.get("role")
        if role == "system":
            continue
        contents.append(
            {
                "role": "model" if role == "assistant" else "user",
                "parts": [{"text": message["content"]}],
            }
        )
    return contents


class GeminiProvider(Provider):
    provider_type = ProviderType.GEMINI
    DEFAULT_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta"

    def build_request(
        self, messages: List[Message], model: str, options: CompletionOptions
    ) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        payload: Dict[str, Any] = {"contents": to_gemini_contents(messages)}
        generation: Dict[str, Any] = {}
        if options.temperature is not None:
            generation["temperature"] = options.temperature
        if options.token_limit is not None:
            generation["maxOutputTokens"] = options.token_limit
        if generation:
            payload["generationConfig"] = generation
        url = f"{self.endpoint}/models/{model}:generateContent?key={self.api_key}"
        return url, payload, {}

    def parse_response(self, data: Dict[str, Any], model: str) -> ProviderResult:
        parts = data["candidates"][0]["content"]["parts"]
        usage = data.get("usageMetadata") or {}
        return ProviderResult(
            text="".join(p.get("text", "") for p in parts),
            prompt_tokens=int(usage.get("promptTokenCount") or 0),
            completion_tokens=int(usage.get("candidatesTokenCount") or 0),
            model=data.get("modelVersion") or model,
            raw=data,
        )
