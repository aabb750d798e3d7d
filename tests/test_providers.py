"""Test generation providers: request shaping, response handling and error mapping."""

from types import SimpleNamespace
from unittest.mock import Mock

import httpx
import openai
import pytest
import requests

from query_curator.exceptions import (
    ConfigurationError,
    InputValidationError,
    InvalidAPIKeyError,
    QuotaExceededError,
    RateLimitExceededError,
    UpstreamError,
)
from query_curator.providers import (
    GatewayProvider,
    GeminiProvider,
    MockProvider,
    OpenAIProvider,
    ProviderSettings,
    create_provider,
    map_status_error,
)

VALID_KEY = "sk-test-0123456789"


def chat_response(content, usage=True):
    """Build an object shaped like an openai ChatCompletion."""
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15) if usage else None,
    )


def fake_client(response=None, error=None):
    client = Mock()
    if error is not None:
        client.chat.completions.create.side_effect = error
    else:
        client.chat.completions.create.return_value = response
    return client


def status_error(status, code=None):
    request = httpx.Request("POST", "https://api.example.com/v1/chat/completions")
    response = httpx.Response(status, request=request)
    return openai.APIStatusError("upstream failure", response=response, body={"code": code} if code else None)


def gemini_response(status, payload):
    response = Mock(status_code=status)
    response.json.return_value = payload
    return response


class TestMapStatusError:
    """Test the HTTP status taxonomy."""

    @pytest.mark.parametrize("status,code,expected", [
        (401, None, InvalidAPIKeyError),
        (403, None, InvalidAPIKeyError),
        (402, None, QuotaExceededError),
        (429, None, RateLimitExceededError),
        (429, "insufficient_quota", QuotaExceededError),
        (500, None, UpstreamError),
        (503, None, UpstreamError),
    ])
    def test_mapping(self, status, code, expected):
        error = map_status_error("openai", status, code)
        assert type(error) is expected
        assert error.provider == "openai"

    def test_status_codes_for_callers(self):
        assert map_status_error("gateway", 401).status_code == 401
        assert map_status_error("gateway", 402).status_code == 402
        assert map_status_error("gateway", 429).status_code == 429
        assert map_status_error("gateway", 500).status_code == 502


class TestOpenAIProvider:
    """Test OpenAI request shaping and error handling."""

    def test_older_model_gets_max_tokens_and_temperature(self):
        provider = OpenAIProvider(VALID_KEY, model="gpt-4o-mini", client=fake_client())
        body = provider.build_request("sys", "user", max_tokens=100, temperature=0.8)

        assert body["max_tokens"] == 100
        assert body["temperature"] == 0.8
        assert "max_completion_tokens" not in body
        assert body["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "user"},
        ]

    def test_newer_model_gets_max_completion_tokens_only(self):
        provider = OpenAIProvider(VALID_KEY, model="gpt-5-2025-08-07", client=fake_client())
        body = provider.build_request("sys", "user", max_tokens=100, temperature=0.8)

        assert body["max_completion_tokens"] == 100
        assert "temperature" not in body
        assert "max_tokens" not in body

    def test_complete_returns_text_and_usage(self):
        client = fake_client(chat_response("  Clear skies.  "))
        provider = OpenAIProvider(VALID_KEY, client=client)

        completion = provider.complete("sys", "user")

        assert completion.text == "Clear skies."
        assert completion.usage.total_tokens == 15
        assert provider.engine == "openai:gpt-4o-mini"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"

    def test_empty_choices(self):
        response = SimpleNamespace(choices=[], usage=None)
        provider = OpenAIProvider(VALID_KEY, client=fake_client(response))
        completion = provider.complete("sys", "user")
        assert completion.text == ""
        assert completion.usage is None

    def test_rate_limit_mapped(self):
        provider = OpenAIProvider(VALID_KEY, client=fake_client(error=status_error(429)))
        with pytest.raises(RateLimitExceededError):
            provider.complete("sys", "user")

    def test_insufficient_quota_mapped(self):
        provider = OpenAIProvider(VALID_KEY, client=fake_client(error=status_error(429, "insufficient_quota")))
        with pytest.raises(QuotaExceededError):
            provider.complete("sys", "user")

    def test_connection_error_is_upstream(self):
        error = openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1"))
        provider = OpenAIProvider(VALID_KEY, client=fake_client(error=error))
        with pytest.raises(UpstreamError):
            provider.complete("sys", "user")


class TestNoAutomaticRetries:
    """Upstream failures reach the caller after a single request."""

    def make_provider(self, provider_class, status, calls, **kwargs):
        def handler(request):
            calls.append(request)
            return httpx.Response(status, json={"error": {"message": "upstream says no", "code": None}})

        provider = provider_class(**kwargs)
        # keep the provider's own client settings, only swap the transport
        provider.client = provider.client.with_options(http_client=httpx.Client(transport=httpx.MockTransport(handler)))
        return provider

    @pytest.mark.parametrize("status,expected", [
        (429, RateLimitExceededError),
        (500, UpstreamError),
        (503, UpstreamError),
    ])
    def test_openai_single_request(self, status, expected):
        calls = []
        provider = self.make_provider(OpenAIProvider, status, calls, api_key=VALID_KEY)

        with pytest.raises(expected):
            provider.complete("sys", "user")

        assert len(calls) == 1

    def test_gateway_single_request(self):
        calls = []
        provider = self.make_provider(GatewayProvider, 429, calls, api_key="secret")

        with pytest.raises(RateLimitExceededError):
            provider.complete("sys", "user")

        assert len(calls) == 1
        assert str(calls[0].url).startswith("https://ai.gateway.lovable.dev/v1/")


class TestGatewayProvider:
    """Test the default gateway provider."""

    def test_missing_secret(self):
        with pytest.raises(ConfigurationError):
            GatewayProvider(api_key=None)

    def test_request_has_no_sampling_parameters(self):
        provider = GatewayProvider(api_key="secret", client=fake_client())
        body = provider.build_request("sys", "user", max_tokens=50, temperature=0.1)
        assert set(body) == {"model", "messages"}
        assert body["model"] == "google/gemini-2.5-flash"

    def test_payment_required_is_quota(self):
        provider = GatewayProvider(api_key="secret", client=fake_client(error=status_error(402)))
        with pytest.raises(QuotaExceededError) as exc_info:
            provider.complete("sys", "user")
        assert exc_info.value.provider == "gateway"


class TestGeminiProvider:
    """Test Gemini request shaping and error handling."""

    def test_request_body(self):
        provider = GeminiProvider(VALID_KEY, http=Mock())
        body = provider.build_request("system rules", "the question", max_tokens=256, temperature=0.7)

        assert body["contents"][0]["parts"][0]["text"] == "system rules\n\nthe question"
        assert body["generationConfig"] == {"temperature": 0.7, "maxOutputTokens": 256}

    def test_complete(self):
        http = Mock()
        http.post.return_value = gemini_response(200, {
            "candidates": [{"content": {"parts": [{"text": " Sunny and 21 degrees. "}]}}],
            "usageMetadata": {"promptTokenCount": 8, "candidatesTokenCount": 6, "totalTokenCount": 14},
        })
        provider = GeminiProvider(VALID_KEY, model="gemini-2.5-pro", http=http)

        completion = provider.complete("sys", "user")

        assert completion.text == "Sunny and 21 degrees."
        assert completion.usage.completion_tokens == 6
        args, kwargs = http.post.call_args
        assert args[0].endswith("/models/gemini-2.5-pro:generateContent")
        assert kwargs["params"] == {"key": VALID_KEY}

    def test_missing_candidates_gives_empty_text(self):
        http = Mock()
        http.post.return_value = gemini_response(200, {"candidates": []})
        completion = GeminiProvider(VALID_KEY, http=http).complete("sys", "user")
        assert completion.text == ""
        assert completion.usage is None

    def test_bad_api_key(self):
        http = Mock()
        http.post.return_value = gemini_response(400, {"error": {"message": "API key not valid. Please pass a valid API key."}})
        with pytest.raises(InvalidAPIKeyError):
            GeminiProvider(VALID_KEY, http=http).complete("sys", "user")

    def test_other_bad_request_is_upstream(self):
        http = Mock()
        http.post.return_value = gemini_response(400, {"error": {"message": "Invalid JSON payload"}})
        with pytest.raises(UpstreamError):
            GeminiProvider(VALID_KEY, http=http).complete("sys", "user")

    def test_rate_limit(self):
        http = Mock()
        http.post.return_value = gemini_response(429, {})
        with pytest.raises(RateLimitExceededError):
            GeminiProvider(VALID_KEY, http=http).complete("sys", "user")

    def test_network_failure(self):
        http = Mock()
        http.post.side_effect = requests.ConnectionError("down")
        with pytest.raises(UpstreamError):
            GeminiProvider(VALID_KEY, http=http).complete("sys", "user")


class TestMockProvider:
    """Test the keyword-matching mock."""

    def test_keyword_match_and_call_log(self):
        provider = MockProvider({"rain": "Yes"}, errors={"boom": RateLimitExceededError("mock")})

        assert provider.complete("sys", "Will it RAIN?").text == "Yes"
        assert provider.complete("sys", "Anything else").text == ""
        with pytest.raises(RateLimitExceededError):
            provider.complete("sys", "boom")
        assert len(provider.calls) == 3


class TestCreateProvider:
    """Test provider selection and validation."""

    def test_default_is_gateway(self):
        provider = create_provider(ProviderSettings(), gateway_api_key="secret")
        assert isinstance(provider, GatewayProvider)
        assert provider.model == "google/gemini-2.5-flash"

    def test_legacy_names(self):
        assert ProviderSettings(provider="lovable").provider == "gateway"
        assert ProviderSettings(provider="chatgpt").provider == "openai"

    def test_openai_with_key(self):
        provider = create_provider(ProviderSettings(provider="openai", model="gpt-4o", api_key=f"  {VALID_KEY}  "))
        assert isinstance(provider, OpenAIProvider)
        assert provider.engine == "openai:gpt-4o"

    def test_gemini_default_model(self):
        provider = create_provider(ProviderSettings(provider="gemini", api_key=VALID_KEY))
        assert isinstance(provider, GeminiProvider)
        assert provider.model == "gemini-2.5-flash"

    @pytest.mark.parametrize("api_key", [None, "", "short"])
    def test_direct_provider_needs_key(self, api_key):
        with pytest.raises(InputValidationError, match="API key is required"):
            create_provider(ProviderSettings(provider="openai", api_key=api_key))

    def test_model_must_belong_to_provider(self):
        with pytest.raises(InputValidationError, match="not allowed"):
            create_provider(ProviderSettings(provider="gemini", model="gpt-4o", api_key=VALID_KEY))

    def test_gateway_without_secret(self):
        with pytest.raises(ConfigurationError):
            create_provider(ProviderSettings(provider="gateway"))
