"""Tests for LLM client module."""

import json
import os
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import pytest

from conftest import ScriptedClient
from dashbench.experiments.exceptions import ConfigurationError
from dashbench.experiments.llm_client import (
    OPENROUTER_BASE_URL,
    AnthropicClient,
    GeminiClient,
    GenerationSettings,
    MockClient,
    OllamaClient,
    OpenAIClient,
    OpenRouterClient,
    ProviderSettings,
    classify_provider_error,
    create_client,
    generate,
    infer_provider,
)
from dashbench.experiments.records import ModelRef

NO_WAIT = GenerationSettings(retry_attempts=3, retry_min_wait=0, retry_max_wait=0)


# Stand-ins named like the provider SDK exception classes
class RateLimitError(Exception):
    pass


class APITimeoutError(Exception):
    pass


class AuthenticationError(Exception):
    pass


class SubclassedRateLimit(RateLimitError):
    pass


class StatusError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


class TestClassifyProviderError:
    """Tests for provider error normalisation."""

    @pytest.mark.parametrize(
        "error,error_type,retryable",
        [
            (RateLimitError("slow down"), "rate_limit", True),
            (SubclassedRateLimit("slow down"), "rate_limit", True),
            (APITimeoutError("request"), "timeout", True),
            (httpx.ReadTimeout("read"), "timeout", True),
            (TimeoutError(), "timeout", True),
            (AuthenticationError("bad key"), "auth", False),
            (ConfigurationError("OPENAI_API_KEY not set"), "auth", False),
            (StatusError("nope", 429), "rate_limit", True),
            (StatusError("nope", 401), "auth", False),
            (RuntimeError("Request timed out after 120s"), "timeout", True),
            (RuntimeError("HTTP 429 Too Many Requests"), "rate_limit", True),
            (RuntimeError("Incorrect API key provided"), "auth", False),
            (RuntimeError("Invalid JSON in response body"), "invalid_response", True),
            (RuntimeError("boom"), "unknown", False),
        ],
    )
    def test_classification(self, error, error_type, retryable):
        classified = classify_provider_error(error, "gpt-4o")
        assert classified.error_type == error_type
        assert classified.retryable is retryable
        assert classified.model_id == "gpt-4o"

    def test_message_falls_back_to_class_name(self):
        classified = classify_provider_error(TimeoutError())
        assert classified.message == "TimeoutError"
        assert str(classified) == "timeout: TimeoutError"


class TestGenerate:
    """Tests for generate()."""

    def test_success(self):
        client = ScriptedClient(["hello"], model="gen")
        result = generate(client, "prompt")
        assert result.success
        assert result.content == "hello"
        assert result.tokens_used == 10
        assert result.latency_ms >= 0
        assert result.model == "gen"
        assert result.error is None

    def test_exception_becomes_error_value(self):
        client = ScriptedClient([RateLimitError("slow down")])
        result = generate(client, "prompt")
        assert not result.success
        assert result.content is None
        assert result.error.error_type == "rate_limit"
        assert result.error.retryable

    def test_empty_completion_is_invalid_response(self):
        result = generate(ScriptedClient([""]), "prompt")
        assert not result.success
        assert result.error.error_type == "invalid_response"
        assert result.error.message == "No content generated"

    def test_single_attempt_by_default(self):
        client = ScriptedClient([TimeoutError("timed out"), "late"])
        result = generate(client, "prompt")
        assert not result.success
        assert len(client.prompts) == 1

    def test_retries_retryable_errors(self):
        client = ScriptedClient([TimeoutError("timed out"), "", "ok"])
        result = generate(client, "prompt", NO_WAIT)
        assert result.success
        assert result.content == "ok"
        assert len(client.prompts) == 3

    def test_does_not_retry_auth_errors(self):
        client = ScriptedClient([AuthenticationError("bad key"), "ok"])
        result = generate(client, "prompt", NO_WAIT)
        assert not result.success
        assert result.error.error_type == "auth"
        assert len(client.prompts) == 1

    def test_returns_last_failure_when_attempts_exhausted(self):
        client = ScriptedClient([RateLimitError("a"), RateLimitError("b"), RateLimitError("c")])
        result = generate(client, "prompt", NO_WAIT)
        assert not result.success
        assert result.error.message == "c"
        assert len(client.prompts) == 3

    def test_json_mode_forwarded(self):
        client = ScriptedClient(["{}"])
        generate(client, "prompt", json_mode=True)
        assert client.json_modes == [True]


class TestCreateClient:
    """Tests for create_client factory function."""

    @pytest.mark.parametrize(
        "provider,client_class",
        [
            ("openai", OpenAIClient),
            ("openrouter", OpenRouterClient),
            ("anthropic", AnthropicClient),
            ("google", GeminiClient),
            ("ollama", OllamaClient),
            ("mock", MockClient),
        ],
    )
    def test_routes_on_provider(self, provider, client_class):
        model = ModelRef(id="local", name="Local", provider=provider, provider_model="remote-name")
        client = create_client(model)
        assert type(client) is client_class
        assert client.model_id == "remote-name"

    def test_dry_run_returns_mock(self):
        model = ModelRef(id="x", name="x", provider="openai", provider_model="gpt-4o")
        assert isinstance(create_client(model, dry_run=True), MockClient)

    def test_unknown_provider(self):
        model = ModelRef(id="x", name="x", provider="carrier-pigeon", provider_model="x")
        with pytest.raises(ConfigurationError, match="Unknown provider"):
            create_client(model)

    def test_provider_settings_applied(self):
        model = ModelRef(id="x", name="x", provider="openrouter", provider_model="meta/llama")
        client = create_client(
            model, providers={"openrouter": ProviderSettings(api_key="k", base_url="http://proxy")}, timeout=5
        )
        assert client.api_key == "k"
        assert client.base_url == "http://proxy"
        assert client.timeout == 5

    def test_openrouter_default_base_url(self):
        client = create_client(ModelRef(id="x", name="x", provider="openrouter", provider_model="a/b"))
        assert client.base_url == OPENROUTER_BASE_URL

    @pytest.mark.parametrize(
        "name,provider",
        [
            ("google/gemini-2.5-flash", "openrouter"),
            ("claude-sonnet-4-20250514", "anthropic"),
            ("gpt-4o", "openai"),
            ("o3-mini", "openai"),
            ("gemini-2.0-flash", "google"),
            ("llama3.1:8b", "ollama"),
        ],
    )
    def test_infer_provider(self, name, provider):
        assert infer_provider(name) == provider

    def test_bare_model_name(self):
        assert isinstance(create_client("claude-sonnet-4-20250514"), AnthropicClient)


class TestProviderClients:
    """Tests for the SDK-backed clients with the SDK client mocked out."""

    def test_openai_call(self):
        client = OpenAIClient("gpt-4o", api_key="k")
        sdk = MagicMock()
        sdk.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content='{"layers": []}'))],
            usage=SimpleNamespace(total_tokens=42),
        )
        client._client = sdk

        response = client.call("prompt", max_tokens=100, temperature=0.2, json_mode=True)

        assert response.content == '{"layers": []}'
        assert response.tokens_used == 42
        kwargs = sdk.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["max_tokens"] == 100
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]

    def test_openai_image_input(self):
        client = OpenAIClient("gpt-4o", api_key="k")
        sdk = MagicMock()
        sdk.chat.completions.create.return_value = SimpleNamespace(choices=[], usage=None)
        client._client = sdk

        response = client.call("describe", image_url="https://example.com/map.png")

        content = sdk.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert content[1] == {"type": "image_url", "image_url": {"url": "https://example.com/map.png"}}
        assert "response_format" not in sdk.chat.completions.create.call_args.kwargs
        assert response.content == ""
        assert response.tokens_used == 0

    def test_missing_api_key(self):
        client = OpenAIClient("gpt-4o")
        with patch.dict(os.environ, {}, clear=True):
            result = generate(client, "prompt")
        assert not result.success
        assert result.error.error_type == "auth"
        assert "OPENAI_API_KEY not set" in result.error.message

    def test_anthropic_call(self):
        client = AnthropicClient("claude-sonnet-4-20250514", api_key="k")
        sdk = MagicMock()
        sdk.messages.create.return_value = SimpleNamespace(
            content=[SimpleNamespace(text="<score>7</score>")],
            usage=SimpleNamespace(input_tokens=3, output_tokens=4),
        )
        client._client = sdk

        response = client.call("judge this")

        assert response.content == "<score>7</score>"
        assert response.tokens_used == 7

    def test_ollama_call(self):
        client = OllamaClient("llama3.1:8b", base_url="http://ollama:11434")
        http = MagicMock()
        http.post.return_value.json.return_value = {
            "message": {"content": "{}"},
            "prompt_eval_count": 5,
            "eval_count": 6,
        }
        client._client = http

        response = client.call("prompt", json_mode=True)

        assert response.content == "{}"
        assert response.tokens_used == 11
        url = http.post.call_args.args[0]
        payload = http.post.call_args.kwargs["json"]
        assert url == "http://ollama:11434/api/chat"
        assert payload["format"] == "json"


class TestMockClient:
    """Tests for MockClient."""

    def test_generation_returns_dashboard(self):
        response = MockClient().call("Build a dashboard for: rain")
        assert json.loads(response.content)["layers"][0]["kind"] == "BackgroundMapDescription"

    def test_judge_prompt_returns_verdict(self):
        response = MockClient().call("Reply with <score>N</score>")
        assert response.content.startswith("<score>5</score>")
