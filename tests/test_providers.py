"""
Tests for the provider gateway: wire formats, retry policy and error mapping.
"""

import json
import re
from unittest.mock import MagicMock, patch

import pytest
import requests
import responses

from simplify.errors import NotFoundError
from simplify.models import ModelConfig
from simplify.models.provider import CompletionOptions, ProviderType
from simplify.providers import (
    AnthropicProvider,
    GeminiProvider,
    MistralProvider,
    OpenAIProvider,
    ProviderConfigError,
    ProviderFatalError,
    ProviderRetryableError,
    create_provider,
    create_provider_for_variant,
)
from simplify.providers.gemini import to_gemini_contents
from simplify.providers.openai import uses_max_completion_tokens

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"

MESSAGES = [
    {"role": "system", "content": "Be brief."},
    {"role": "user", "content": "Hallo Welt"},
]


def _openai_body(text="Hallo", model="gpt-4o-2024-08-06"):
    return {
        "model": model,
        "choices": [{"message": {"role": "assistant", "content": text}}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 3},
    }


def _sent_json(index=0):
    return json.loads(responses.calls[index].request.body)


class TestOpenAIProvider:
    @responses.activate
    def test_complete_success(self):
        responses.add(responses.POST, OPENAI_URL, json=_openai_body(), status=200)
        provider = OpenAIProvider(api_key="sk-test")

        result = provider.complete(MESSAGES, "gpt-4o", CompletionOptions(temperature=0.2, max_tokens=50))

        assert result.text == "Hallo"
        assert result.prompt_tokens == 12
        assert result.completion_tokens == 3
        assert result.total_tokens == 15
        assert result.model == "gpt-4o-2024-08-06"
        sent = _sent_json()
        assert sent["messages"] == MESSAGES
        assert sent["temperature"] == 0.2
        assert sent["max_tokens"] == 50
        assert responses.calls[0].request.headers["Authorization"] == "Bearer sk-test"

    @responses.activate
    def test_optional_parameters_are_omitted(self):
        responses.add(responses.POST, OPENAI_URL, json=_openai_body(), status=200)

        OpenAIProvider(api_key="sk-test").complete(MESSAGES, "gpt-4o")

        sent = _sent_json()
        assert "temperature" not in sent
        assert "max_tokens" not in sent
        assert "max_completion_tokens" not in sent

    @responses.activate
    def test_newer_models_use_max_completion_tokens(self):
        responses.add(responses.POST, OPENAI_URL, json=_openai_body(), status=200)

        OpenAIProvider(api_key="sk-test").complete(
            MESSAGES, "gpt-4o-2024-08-06", CompletionOptions(output_token_limit=1000)
        )

        sent = _sent_json()
        assert sent["max_completion_tokens"] == 1000
        assert "max_tokens" not in sent

    def test_max_completion_tokens_model_detection(self):
        assert uses_max_completion_tokens("o1-preview") is True
        assert uses_max_completion_tokens("chatgpt-4o-latest") is True
        assert uses_max_completion_tokens("gpt-4o-2024-11-20") is True
        assert uses_max_completion_tokens("gpt-4o-2024-05-13") is False
        assert uses_max_completion_tokens("gpt-4o") is False
        assert uses_max_completion_tokens("gpt-4o-mini") is False

    @responses.activate
    def test_custom_headers_are_sent(self):
        responses.add(responses.POST, OPENAI_URL, json=_openai_body(), status=200)
        provider = OpenAIProvider(api_key="sk-test", headers={"OpenAI-Organization": "org-1"})

        provider.complete(MESSAGES, "gpt-4o")

        assert responses.calls[0].request.headers["OpenAI-Organization"] == "org-1"

    def test_missing_api_key(self):
        with pytest.raises(ProviderConfigError) as exc_info:
            OpenAIProvider(api_key="").complete(MESSAGES, "gpt-4o")

        assert "API key" in str(exc_info.value)
        assert exc_info.value.code == "config_error"


class TestRetryPolicy:
    @responses.activate
    @patch("simplify.providers.base._sleep")
    def test_retries_on_rate_limit_then_succeeds(self, mock_sleep):
        responses.add(responses.POST, OPENAI_URL, json={"error": {"message": "Slow down"}}, status=429)
        responses.add(responses.POST, OPENAI_URL, json=_openai_body("Ok"), status=200)

        result = OpenAIProvider(api_key="sk-test").complete(MESSAGES, "gpt-4o")

        assert result.text == "Ok"
        assert len(responses.calls) == 2
        assert mock_sleep.call_count == 1

    @responses.activate
    @patch("simplify.providers.base._sleep")
    def test_server_errors_exhaust_retries(self, mock_sleep):
        for _ in range(3):
            responses.add(responses.POST, OPENAI_URL, json={"error": {"message": "Overloaded"}}, status=503)

        with pytest.raises(ProviderRetryableError) as exc_info:
            OpenAIProvider(api_key="sk-test", max_retries=3).complete(MESSAGES, "gpt-4o")

        assert exc_info.value.status_code == 503
        assert "API error (HTTP 503): Overloaded" in str(exc_info.value)
        assert len(responses.calls) == 3
        assert mock_sleep.call_count == 2

    @responses.activate
    @patch("simplify.providers.base._sleep")
    def test_client_errors_are_not_retried(self, mock_sleep):
        responses.add(responses.POST, OPENAI_URL, json={"error": {"message": "Bad key"}}, status=401)

        with pytest.raises(ProviderFatalError) as exc_info:
            OpenAIProvider(api_key="sk-test").complete(MESSAGES, "gpt-4o")

        assert exc_info.value.retryable is False
        assert str(exc_info.value) == "API error (HTTP 401): Bad key"
        assert len(responses.calls) == 1
        mock_sleep.assert_not_called()

    @responses.activate
    @patch("simplify.providers.base._sleep")
    def test_error_body_without_message(self, mock_sleep):
        responses.add(responses.POST, OPENAI_URL, body="<html>oops</html>", status=400)

        with pytest.raises(ProviderFatalError) as exc_info:
            OpenAIProvider(api_key="sk-test").complete(MESSAGES, "gpt-4o")

        assert "Unknown error" in str(exc_info.value)

    @responses.activate
    @patch("simplify.providers.base._sleep")
    def test_network_errors_are_retried(self, mock_sleep):
        responses.add(responses.POST, OPENAI_URL, body=requests.ConnectionError("reset"))
        responses.add(responses.POST, OPENAI_URL, json=_openai_body("Back"), status=200)

        result = OpenAIProvider(api_key="sk-test").complete(MESSAGES, "gpt-4o")

        assert result.text == "Back"

    @responses.activate
    @patch("simplify.providers.base._sleep")
    def test_unexpected_payload_is_fatal(self, mock_sleep):
        responses.add(responses.POST, OPENAI_URL, json={"choices": []}, status=200)

        with pytest.raises(ProviderFatalError) as exc_info:
            OpenAIProvider(api_key="sk-test").complete(MESSAGES, "gpt-4o")

        assert "Unexpected response format" in str(exc_info.value)
        assert len(responses.calls) == 1


class TestAnthropicProvider:
    @responses.activate
    def test_system_prompt_and_headers(self):
        responses.add(
            responses.POST,
            ANTHROPIC_URL,
            json={
                "model": "claude-3-5-sonnet",
                "content": [{"type": "text", "text": "Hallo "}, {"type": "text", "text": "Welt"}],
                "usage": {"input_tokens": 20, "output_tokens": 4},
            },
            status=200,
        )
        provider = AnthropicProvider(api_key="ak-test")

        result = provider.complete(
            MESSAGES, "claude-3-5-sonnet", CompletionOptions(temperature=0.1, output_token_limit=800)
        )

        assert result.text == "Hallo Welt"
        assert (result.prompt_tokens, result.completion_tokens) == (20, 4)
        sent = _sent_json()
        assert sent["system"] == "Be brief."
        assert sent["messages"] == [{"role": "user", "content": "Hallo Welt"}]
        assert sent["max_tokens"] == 800
        headers = responses.calls[0].request.headers
        assert headers["x-api-key"] == "ak-test"
        assert headers["anthropic-version"] == "2023-06-01"

    def test_output_token_limit_is_required(self):
        provider = AnthropicProvider(api_key="ak-test")

        with pytest.raises(ProviderConfigError) as exc_info:
            provider.complete(MESSAGES, "claude-3-5-sonnet", CompletionOptions())

        assert "output_token_limit is required" in str(exc_info.value)


class TestGeminiProvider:
    def test_contents_conversion(self):
        contents = to_gemini_contents(
            MESSAGES + [{"role": "assistant", "content": "Hi"}]
        )

        assert contents == [
            {"role": "user", "parts": [{"text": "Be brief."}]},
            {"role": "user", "parts": [{"text": "Hallo Welt"}]},
            {"role": "model", "parts": [{"text": "Hi"}]},
        ]

    @responses.activate
    def test_complete_success(self):
        responses.add(
            responses.POST,
            re.compile(r"https://generativelanguage\.googleapis\.com/v1beta/models/gemini-1\.5-pro:generateContent.*"),
            json={
                "candidates": [{"content": {"parts": [{"text": "Hallo"}]}}],
                "usageMetadata": {"promptTokenCount": 9, "candidatesTokenCount": 2},
            },
            status=200,
        )
        provider = GeminiProvider(api_key="g-key")

        result = provider.complete(MESSAGES, "gemini-1.5-pro", CompletionOptions(temperature=0.5, max_tokens=64))

        assert result.text == "Hallo"
        assert result.model == "gemini-1.5-pro"
        assert (result.prompt_tokens, result.completion_tokens) == (9, 2)
        assert "key=g-key" in responses.calls[0].request.url
        assert _sent_json()["generationConfig"] == {"temperature": 0.5, "maxOutputTokens": 64}


class TestMistralProvider:
    @responses.activate
    def test_uses_openai_wire_format(self):
        responses.add(
            responses.POST,
            "https://api.mistral.ai/v1/chat/completions",
            json=_openai_body("Salut", model="mistral-large"),
            status=200,
        )

        result = MistralProvider(api_key="m-key").complete(MESSAGES, "mistral-large")

        assert result.text == "Salut"
        assert result.model == "mistral-large"


class TestProviderFactory:
    def test_create_provider_reads_settings(self):
        settings = {
            "providers": {"anthropic": {"api_key": "ak", "endpoint": "https://proxy.local/v1/messages/"}},
            "http": {"timeout": 30, "connect_timeout": 2, "retries": 5},
        }

        provider = create_provider(ProviderType.ANTHROPIC, settings)

        assert isinstance(provider, AnthropicProvider)
        assert provider.api_key == "ak"
        assert provider.endpoint == "https://proxy.local/v1/messages"
        assert (provider.timeout, provider.connect_timeout, provider.max_retries) == (30, 2, 5)

    def test_create_provider_defaults(self):
        provider = create_provider("gemini")

        assert isinstance(provider, GeminiProvider)
        assert provider.endpoint == GeminiProvider.DEFAULT_ENDPOINT

    def test_unknown_provider_type(self):
        with pytest.raises(ProviderConfigError):
            create_provider("cohere")

    def test_create_for_variant(self, variant):
        store = MagicMock()
        store.load_model_config.return_value = ModelConfig(provider_type="openai", model="gpt-4o")

        provider, model_config = create_provider_for_variant(variant, store, {"providers": {}})

        store.load_model_config.assert_called_once_with("openai/gpt-4o")
        assert isinstance(provider, OpenAIProvider)
        assert model_config.model == "gpt-4o"

    def test_variant_without_provider(self, variant):
        variant.provider = None

        with pytest.raises(ProviderConfigError):
            create_provider_for_variant(variant, MagicMock(), {})

    def test_missing_model_config(self, variant):
        store = MagicMock()
        store.load_model_config.return_value = None

        with pytest.raises(NotFoundError) as exc_info:
            create_provider_for_variant(variant, store, {})

        assert exc_info.value.identifier == "openai/gpt-4o"
