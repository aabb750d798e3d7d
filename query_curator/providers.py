"""
Pluggable generation providers for Query Curator.

Three interchangeable backends perform text generation: the default gateway
(OpenAI-compatible, keyed by a server-side secret) and two direct vendor APIs
(OpenAI and Gemini) that need a user-supplied key. Each provider owns its
request shaping, response normalization and error mapping, so callers only
ever see a Completion or one of the ProviderError subclasses.
"""

from __future__ import annotations
from typing import Optional, Dict, Any, List, Protocol, Literal
from dataclasses import dataclass, field
import logging

import openai
import requests
from openai import OpenAI
from pydantic import BaseModel, Field, field_validator

from .models import TokenUsage
from .exceptions import (
    ProviderError,
    InvalidAPIKeyError,
    RateLimitExceededError,
    QuotaExceededError,
    UpstreamError,
    InputValidationError,
    ConfigurationError,
)

logger = logging.getLogger(__name__)

ProviderName = Literal["gateway", "openai", "gemini"]

DEFAULT_GATEWAY_URL = "https://ai.gateway.lovable.dev/v1"
OPENAI_BASE_URL = "https://api.openai.com/v1"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

GATEWAY_MODELS = [
    "google/gemini-2.5-flash",
    "google/gemini-2.5-pro",
    "openai/gpt-5-mini",
    "openai/gpt-5",
]

OPENAI_MODELS = [
    "gpt-4o-mini",
    "gpt-4o",
    "gpt-4.1-2025-04-14",
    "gpt-4.1-mini-2025-04-14",
    "gpt-5-2025-08-07",
    "gpt-5-mini-2025-08-07",
]

# These take max_completion_tokens and reject a temperature
NEWER_OPENAI_MODELS = [
    "gpt-5-2025-08-07",
    "gpt-5-mini-2025-08-07",
    "gpt-4.1-2025-04-14",
    "gpt-4.1-mini-2025-04-14",
]

GEMINI_MODELS = [
    "gemini-2.5-flash",
    "gemini-2.5-pro",
    "gemini-2.0-flash",
    "gemini-1.5-pro",
    "gemini-1.5-flash",
]

DEFAULT_MODELS: Dict[str, str] = {
    "gateway": "google/gemini-2.5-flash",
    "openai": "gpt-4o-mini",
    "gemini": "gemini-2.5-flash",
}

ALLOWED_MODELS: Dict[str, List[str]] = {
    "gateway": GATEWAY_MODELS,
    "openai": OPENAI_MODELS,
    "gemini": GEMINI_MODELS,
}

MIN_API_KEY_LENGTH = 10


@dataclass
class Completion:
    """Normalized provider response."""
    text: str
    usage: Optional[TokenUsage] = None


class GenerationProvider(Protocol):
    """Protocol for all generation providers."""

    name: str
    model: str

    @property
    def engine(self) -> str:
        """Label recorded on generated queries and answers."""
        ...

    def build_request(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 2048,
        temperature: float = 0.7
    ) -> Dict[str, Any]:
        """Build the provider-specific request body."""
        ...

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 2048,
        temperature: float = 0.7
    ) -> Completion:
        """Send the request and return the normalized completion."""
        ...


def map_status_error(provider: str, status: int, code: Optional[str] = None, detail: Optional[str] = None) -> ProviderError:
    """Translate an upstream HTTP status into the provider error taxonomy."""
    if status == 429 and code == "insufficient_quota":
        return QuotaExceededError(provider, detail)
    if status in (401, 403):
        return InvalidAPIKeyError(provider, detail)
    if status == 402:
        return QuotaExceededError(provider, detail)
    if status == 429:
        return RateLimitExceededError(provider, detail)
    return UpstreamError(provider, f"HTTP {status}: {detail}" if detail else f"HTTP {status}")


class ChatCompletionsProvider:
    """
    Provider for OpenAI-compatible chat completion endpoints.
    Works with the default gateway and with the OpenAI API directly.
    """

    name = "openai-compatible"

    def __init__(self, base_url: str, api_key: str, model: str, client: Optional[Any] = None):
        self.base_url = base_url
        self.model = model
        # no automatic retries on 429, 5xx or connection failures
        self.client = client or OpenAI(base_url=base_url, api_key=api_key, max_retries=0)

    @property
    def engine(self) -> str:
        return f"{self.name}:{self.model}"

    def build_request(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 2048,
        temperature: float = 0.7
    ) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 2048,
        temperature: float = 0.7
    ) -> Completion:
        body = self.build_request(system_prompt, user_prompt, max_tokens, temperature)

        try:
            response = self.client.chat.completions.create(**body)
        except openai.APIStatusError as e:
            logger.error(f"{self.name} API error: HTTP {e.status_code}")
            raise map_status_error(self.name, e.status_code, getattr(e, "code", None))
        except openai.APIConnectionError as e:
            logger.error(f"{self.name} connection failed: {type(e).__name__}")
            raise UpstreamError(self.name, "connection failed")

        if not response.choices:
            return Completion(text="", usage=self._usage(response))
        content = response.choices[0].message.content or ""
        return Completion(text=content.strip(), usage=self._usage(response))

    @staticmethod
    def _usage(response) -> Optional[TokenUsage]:
        usage = getattr(response, "usage", None)
        if usage is None:
            return None
        return TokenUsage(
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
        )


class GatewayProvider(ChatCompletionsProvider):
    """Default provider. Users need no key; the server holds the gateway secret."""

    name = "gateway"

    def __init__(self, api_key: Optional[str], model: str = DEFAULT_MODELS["gateway"],
                 base_url: str = DEFAULT_GATEWAY_URL, client: Optional[Any] = None):
        if not api_key and client is None:
            raise ConfigurationError("The AI gateway key is not configured")
        super().__init__(base_url, api_key or "", model, client)


class OpenAIProvider(ChatCompletionsProvider):
    """Direct OpenAI API with a user-supplied key."""

    name = "openai"

    def __init__(self, api_key: str, model: str = DEFAULT_MODELS["openai"], client: Optional[Any] = None):
        super().__init__(OPENAI_BASE_URL, api_key, model, client)

    def build_request(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 2048,
        temperature: float = 0.7
    ) -> Dict[str, Any]:
        body = super().build_request(system_prompt, user_prompt, max_tokens, temperature)
        if self.model in NEWER_OPENAI_MODELS:
            body["max_completion_tokens"] = max_tokens
        else:
            body["max_tokens"] = max_tokens
            body["temperature"] = temperature
        return body


class GeminiProvider:
    """Direct Gemini generateContent API with a user-supplied key."""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODELS["gemini"],
        timeout: float = 60.0,
        http: Optional[requests.Session] = None
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.http = http or requests.Session()

    @property
    def engine(self) -> str:
        return f"{self.name}:{self.model}"

    @property
    def url(self) -> str:
        return f"{GEMINI_BASE_URL}/models/{self.model}:generateContent"

    def build_request(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 2048,
        temperature: float = 0.7
    ) -> Dict[str, Any]:
        # Gemini takes a single text part, so the system prompt is prepended
        return {
            "contents": [
                {"parts": [{"text": f"{system_prompt}\n\n{user_prompt}"}]}
            ],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
            },
        }

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 2048,
        temperature: float = 0.7
    ) -> Completion:
        body = self.build_request(system_prompt, user_prompt, max_tokens, temperature)

        try:
            response = self.http.post(
                self.url,
                params={"key": self.api_key},
                json=body,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"gemini request failed: {type(e).__name__}")
            raise UpstreamError(self.name, "connection failed")

        if response.status_code >= 400:
            raise self._map_error(response)

        try:
            data = response.json()
        except ValueError:
            raise UpstreamError(self.name, "response body is not JSON")

        return Completion(text=self._extract_text(data).strip(), usage=self._usage(data))

    def _map_error(self, response: requests.Response) -> ProviderError:
        try:
            message = (response.json().get("error") or {}).get("message", "")
        except (ValueError, AttributeError):
            message = ""
        logger.error(f"gemini API error: HTTP {response.status_code}")

        if response.status_code == 400:
            if "api key" in message.lower():
                return InvalidAPIKeyError(self.name, message)
            return UpstreamError(self.name, f"bad request: {message}" if message else "bad request")
        return map_status_error(self.name, response.status_code, detail=message or None)

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"] or ""
        except (KeyError, IndexError, TypeError):
            return ""

    @staticmethod
    def _usage(data: Dict[str, Any]) -> Optional[TokenUsage]:
        meta = data.get("usageMetadata")
        if not meta:
            return None
        return TokenUsage(
            prompt_tokens=meta.get("promptTokenCount"),
            completion_tokens=meta.get("candidatesTokenCount"),
            total_tokens=meta.get("totalTokenCount"),
        )


class MockProvider:
    """Mock provider for testing - returns predefined responses."""

    name = "mock"

    def __init__(
        self,
        responses: Dict[str, str],
        errors: Optional[Dict[str, ProviderError]] = None,
        model: str = "mock-model",
        usage: Optional[TokenUsage] = None
    ):
        """
        Args:
            responses: Map from prompt keywords to mock responses
            errors: Map from prompt keywords to errors to raise instead
        """
        self.responses = responses
        self.errors = errors or {}
        self.model = model
        self.usage = usage
        self.calls: List[Dict[str, Any]] = []

    @property
    def engine(self) -> str:
        return f"{self.name}:{self.model}"

    def build_request(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 2048,
        temperature: float = 0.7
    ) -> Dict[str, Any]:
        return {
            "system": system_prompt,
            "prompt": user_prompt,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 2048,
        temperature: float = 0.7
    ) -> Completion:
        self.calls.append(self.build_request(system_prompt, user_prompt, max_tokens, temperature))

        for keyword, error in self.errors.items():
            if keyword.lower() in user_prompt.lower():
                raise error

        for keyword, response in self.responses.items():
            if keyword.lower() in user_prompt.lower():
                return Completion(text=response, usage=self.usage)

        return Completion(text="", usage=self.usage)


# ==================== Provider Selection ====================

class ProviderSettings(BaseModel):
    """Which provider to call and with which model and key."""
    provider: ProviderName = Field("gateway", description="Provider name")
    model: Optional[str] = Field(None, description="Model id; the provider default if None")
    api_key: Optional[str] = Field(None, description="User key for direct providers")

    @field_validator('provider', mode='before')
    @classmethod
    def accept_legacy_names(cls, v):
        # Older clients call the gateway "lovable" and OpenAI "chatgpt"
        aliases = {"lovable": "gateway", "chatgpt": "openai"}
        return aliases.get(v, v) if isinstance(v, str) else v

    @property
    def resolved_model(self) -> str:
        return self.model or DEFAULT_MODELS[self.provider]


def validate_provider_settings(settings: ProviderSettings) -> None:
    """Reject unknown models and missing keys before any network call."""
    provider = settings.provider
    if settings.resolved_model not in ALLOWED_MODELS[provider]:
        raise InputValidationError(f"Model '{settings.resolved_model}' is not allowed for provider '{provider}'")

    if provider in ("openai", "gemini"):
        key = settings.api_key or ""
        if len(key.strip()) < MIN_API_KEY_LENGTH:
            raise InputValidationError(f"A valid {provider} API key is required")


def create_provider(
    settings: ProviderSettings,
    gateway_api_key: Optional[str] = None,
    gateway_url: str = DEFAULT_GATEWAY_URL
) -> GenerationProvider:
    """
    Create the provider selected by the settings.

    Args:
        settings: Provider, model and user key
        gateway_api_key: Server-side secret for the default gateway
        gateway_url: Base URL of the default gateway

    Raises:
        InputValidationError: If the model or key is unacceptable
        ConfigurationError: If the gateway secret is missing
    """
    validate_provider_settings(settings)
    model = settings.resolved_model

    if settings.provider == "openai":
        return OpenAIProvider(api_key=settings.api_key.strip(), model=model)
    if settings.provider == "gemini":
        return GeminiProvider(api_key=settings.api_key.strip(), model=model)
    return GatewayProvider(api_key=gateway_api_key, model=model, base_url=gateway_url)
