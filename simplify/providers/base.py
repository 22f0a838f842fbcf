"""
Shared transport, retry policy and error taxonomy for provider adapters.

Every adapter turns ``(messages, model, options)`` into one HTTP POST and
normalizes the JSON reply into a ``ProviderResult``. Transport concerns live
here so the adapters only describe their wire format:

- ``requests.post`` with a (connect, read) timeout tuple
- ``tenacity`` retry on ``ProviderRetryableError`` (network errors, 429, 5xx)
  with exponential backoff (2s, 4s, ...)
- any other non-2xx status becomes ``ProviderFatalError`` immediately
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import requests
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..logging_utils import log
from ..models.provider import CompletionOptions, ProviderResult, ProviderType

DEFAULT_TIMEOUT = 120
DEFAULT_CONNECT_TIMEOUT = 10
DEFAULT_MAX_RETRIES = 3

Message = Dict[str, str]


class ProviderError(Exception):
    """Provider API error (non-retryable by default)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.retryable = retryable


class ProviderRetryableError(ProviderError):
    """Transient provider error (429, 5xx, network)."""

    def __init__(
        self, message: str, *, status_code: Optional[int] = None, code: Optional[str] = None
    ) -> None:
        super().__init__(message, status_code=status_code, code=code, retryable=True)


class ProviderFatalError(ProviderError):
    """Provider rejected the request (auth, bad request, unexpected payload)."""

    def __init__(
        self, message: str, *, status_code: Optional[int] = None, code: Optional[str] = None
    ) -> None:
        super().__init__(message, status_code=status_code, code=code, retryable=False)


class ProviderConfigError(ProviderError):
    """Provider cannot be used as configured (missing key, endpoint, token limit)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="config_error", retryable=False)


def _sleep(seconds: float) -> None:
    time.sleep(seconds)


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def error_message(response: requests.Response) -> str:
    """``error.message`` from a provider error body, or ``'Unknown error'``."""
    try:
        body = response.json()
    except ValueError:
        return "Unknown error"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message") or "Unknown error"
    if isinstance(error, str) and error:
        return error
    return "Unknown error"


class Provider(ABC):
    """
    Base class for chat-completion adapters.

    Subclasses implement ``build_request`` and ``parse_response``; retries,
    timeouts and HTTP error mapping are handled by ``_post``.
    """

    provider_type: ProviderType
    DEFAULT_ENDPOINT = ""

    def __init__(
        self,
        api_key: str,
        endpoint: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        self.api_key = api_key or ""
        self.endpoint = (endpoint or self.DEFAULT_ENDPOINT).rstrip("/")
        self.extra_headers = dict(headers or {})
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.max_retries = max(1, int(max_retries))

    def validate_config(self) -> None:
        """
        Raises:
            ProviderConfigError: If the API key or endpoint is missing
        """
        name = self.provider_type.value
        if not self.api_key:
            raise ProviderConfigError(f"API key is not configured for provider {name}")
        if not self.endpoint:
            raise ProviderConfigError(f"Endpoint is not configured for provider {name}")

    @abstractmethod
    def build_request(
        self, messages: List[Message], model: str, options: CompletionOptions
    ) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        """Return ``(url, payload, headers)`` for one completion call."""

    @abstractmethod
    def parse_response(self, data: Dict[str, Any], model: str) -> ProviderResult:
        """Normalize a successful response body."""

    def complete(
        self,
        messages: List[Message],
        model: str,
        options: Optional[CompletionOptions] = None,
    ) -> ProviderResult:
        """
        Run one chat completion.

        Args:
            messages: ``[{"role": ..., "content": ...}]`` in OpenAI form
            model: Provider model name
            options: Temperature and token limits

        Returns:
            ProviderResult with text and token usage

        Raises:
            ProviderConfigError: Adapter is not usable as configured
            ProviderRetryableError: Transient failure after all retries
            ProviderFatalError: Non-retryable API error or unexpected payload
        """
        self.validate_config()
        url, payload, headers = self.build_request(messages, model, options or CompletionOptions())
        data = self._post(url, payload, headers)
        try:
            return self.parse_response(data, model)
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderFatalError(
                f"Unexpected response format from {self.provider_type.value}: {e}",
                code="invalid_payload",
            ) from e

    def _headers(self, headers: Dict[str, str]) -> Dict[str, str]:
        merged = {"Content-Type": "application/json"}
        merged.update(self.extra_headers)
        merged.update(headers)
        return merged

    def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=2),
            retry=retry_if_exception_type(ProviderRetryableError),
            sleep=_sleep,
            reraise=True,
        )
        return retrying(self._send, url, payload, headers)

    def _send(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        try:
            resp = requests.post(
                url,
                json=payload,
                headers=self._headers(headers),
                timeout=(self.connect_timeout, self.timeout),
            )
        except requests.RequestException as e:
            log(f"{self.provider_type.value} request failed: {e}", level="warning")
            raise ProviderRetryableError(f"API request failed: {e}", code="network_error") from e

        if not resp.ok:
            message = f"API error (HTTP {resp.status_code}): {error_message(resp)}"
            if is_retryable_status(resp.status_code):
                log(f"{self.provider_type.value} {message}, retrying", level="warning")
                raise ProviderRetryableError(message, status_code=resp.status_code)
            raise ProviderFatalError(message, status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderRetryableError(
                f"Malformed response from {self.provider_type.value} (invalid JSON)",
                status_code=resp.status_code,
                code="invalid_json",
            ) from e
        if not isinstance(data, dict):
            raise ProviderFatalError(
                f"Unexpected response format from {self.provider_type.value}",
                status_code=resp.status_code,
                code="invalid_payload",
            )
        return data
