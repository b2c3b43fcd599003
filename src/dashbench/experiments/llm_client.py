"""
LLM client abstraction for generation and judge calls.

Provides a unified interface for calling different LLM providers:
- OpenAI (GPT)
- OpenRouter (any hosted model, OpenAI-compatible API)
- Anthropic (Claude)
- Google (Gemini)
- Ollama (local models)

Clients raise whatever their SDK raises. ``generate`` wraps a single call,
times it, and normalises failures into a ProviderError value instead of
raising, so the run loop can record them per test case.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Protocol

from tenacity import Retrying, retry_if_result, stop_after_attempt, wait_exponential

from .exceptions import ConfigurationError
from .records import ModelRef

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

# Provider error types
TIMEOUT = "timeout"
RATE_LIMIT = "rate_limit"
AUTH = "auth"
INVALID_RESPONSE = "invalid_response"
UNKNOWN = "unknown"

RETRYABLE_ERROR_TYPES = frozenset({TIMEOUT, RATE_LIMIT, INVALID_RESPONSE})


@dataclass
class LLMResponse:
    """Response from an LLM call."""
    content: str
    model: str
    tokens_used: int = 0


@dataclass
class ProviderError:
    """A provider failure, classified."""

    error_type: str
    message: str
    retryable: bool
    model_id: str | None = None

    def __str__(self) -> str:
        return f"{self.error_type}: {self.message}"


@dataclass
class GenerationResult:
    """Outcome of one generation or judge call."""

    success: bool
    content: str | None = None
    tokens_used: int = 0
    latency_ms: int = 0
    error: ProviderError | None = None
    model: str | None = None


@dataclass
class GenerationSettings:
    """Per-call settings shared by every client."""

    max_tokens: int = 4000
    temperature: float = 0.7
    request_timeout: float = 120.0
    retry_attempts: int = 1
    retry_min_wait: float = 1.0
    retry_max_wait: float = 30.0


@dataclass
class ProviderSettings:
    """Credentials and endpoint for one provider. Unset fields fall back to env vars."""

    api_key: str | None = None
    base_url: str | None = None


class LLMClient(Protocol):
    """Protocol for LLM clients."""

    def call(
        self,
        prompt: str,
        max_tokens: int = 4000,
        temperature: float = 0.7,
        json_mode: bool = False,
        image_url: str | None = None,
    ) -> LLMResponse:
        """Call the LLM with a prompt."""
        ...

    @property
    def model_id(self) -> str:
        """Return the model identifier."""
        ...


def _require_key(api_key: str | None, env_var: str) -> str:
    key = api_key or os.environ.get(env_var)
    if not key:
        raise ConfigurationError(f"{env_var} not set")
    return key


class OpenAIClient:
    """Client for OpenAI chat completion models."""

    env_var = "OPENAI_API_KEY"
    default_base_url: str | None = None

    def __init__(
        self,
        model: str = "gpt-4o",
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 120.0,
    ):
        self.model = model
        self.api_key = api_key
        self.base_url = base_url or self.default_base_url
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        if self._client is None:
            from openai import OpenAI

            self._client = OpenAI(
                api_key=_require_key(self.api_key, self.env_var),
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    @property
    def model_id(self) -> str:
        return self.model

    def call(
        self,
        prompt: str,
        max_tokens: int = 4000,
        temperature: float = 0.7,
        json_mode: bool = False,
        image_url: str | None = None,
    ) -> LLMResponse:
        client = self._get_client()
        content: str | list[dict] = prompt
        if image_url:
            content = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": image_url}},
            ]
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = client.chat.completions.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": content}],
            **kwargs,
        )
        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        tokens = response.usage.total_tokens if response.usage else 0
        return LLMResponse(content=text, model=self.model, tokens_used=tokens)


class OpenRouterClient(OpenAIClient):
    """Client for models hosted on OpenRouter (OpenAI-compatible API)."""

    env_var = "OPENROUTER_API_KEY"
    default_base_url = OPENROUTER_BASE_URL

    def __init__(
        self,
        model: str = "google/gemini-2.5-flash",
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 120.0,
    ):
        super().__init__(model, api_key=api_key, base_url=base_url, timeout=timeout)


class AnthropicClient:
    """Client for Anthropic Claude models."""

    def __init__(
        self,
        model: str = "claude-sonnet-4-20250514",
        api_key: str | None = None,
        timeout: float = 120.0,
    ):
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        if self._client is None:
            from anthropic import Anthropic

            self._client = Anthropic(
                api_key=_require_key(self.api_key, "ANTHROPIC_API_KEY"),
                timeout=self.timeout,
            )
        return self._client

    @property
    def model_id(self) -> str:
        return self.model

    def call(
        self,
        prompt: str,
        max_tokens: int = 4000,
        temperature: float = 0.7,
        json_mode: bool = False,
        image_url: str | None = None,
    ) -> LLMResponse:
        if image_url:
            logger.warning(f"Image input not supported for {self.model}, ignoring {image_url}")
        client = self._get_client()
        message = client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        text = "".join(block.text for block in message.content if getattr(block, "text", None))
        return LLMResponse(
            content=text,
            model=self.model,
            tokens_used=message.usage.input_tokens + message.usage.output_tokens,
        )


class GeminiClient:
    """Client for Google Gemini models."""

    def __init__(
        self,
        model: str = "gemini-2.5-flash",
        api_key: str | None = None,
        timeout: float = 120.0,
    ):
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        if self._client is None:
            from google import genai
            from google.genai import types

            self._client = genai.Client(
                api_key=_require_key(self.api_key, "GOOGLE_API_KEY"),
                http_options=types.HttpOptions(timeout=int(self.timeout * 1000)),
            )
        return self._client

    @property
    def model_id(self) -> str:
        return self.model

    def call(
        self,
        prompt: str,
        max_tokens: int = 4000,
        temperature: float = 0.7,
        json_mode: bool = False,
        image_url: str | None = None,
    ) -> LLMResponse:
        from google.genai import types

        if image_url:
            logger.warning(f"Image input not supported for {self.model}, ignoring {image_url}")
        client = self._get_client()
        config = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
            response_mime_type="application/json" if json_mode else None,
        )
        response = client.models.generate_content(
            model=self.model,
            contents=prompt,
            config=config,
        )

        tokens = 0
        if response.usage_metadata:
            tokens = (response.usage_metadata.prompt_token_count or 0) + \
                     (response.usage_metadata.candidates_token_count or 0)
        return LLMResponse(content=response.text or "", model=self.model, tokens_used=tokens)


class OllamaClient:
    """Client for local Ollama models."""

    def __init__(self, model: str = "llama3.1:8b", base_url: str | None = None, timeout: float = 300.0):
        self.model = model
        self.base_url = base_url or os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434")
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        if self._client is None:
            import httpx

            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    @property
    def model_id(self) -> str:
        return self.model

    def call(
        self,
        prompt: str,
        max_tokens: int = 4000,
        temperature: float = 0.7,
        json_mode: bool = False,
        image_url: str | None = None,
    ) -> LLMResponse:
        client = self._get_client()
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        if json_mode:
            payload["format"] = "json"
        response = client.post(f"{self.base_url}/api/chat", json=payload)
        response.raise_for_status()
        data = response.json()
        content = data.get("message", {}).get("content", "")
        tokens = data.get("prompt_eval_count", 0) + data.get("eval_count", 0)
        return LLMResponse(content=content, model=self.model, tokens_used=tokens)


class MockClient:
    """Mock client for dry runs and testing.

    Returns a fixed minimal dashboard for generation prompts and a fixed
    tagged verdict for judge prompts.
    """

    def __init__(self, model: str = "mock"):
        self.model = model
        self._dashboard = {
            "layers": [
                {
                    "kind": "BackgroundMapDescription",
                    "style": "topographique",
                    "index": 0,
                },
            ],
        }

    @property
    def model_id(self) -> str:
        return self.model

    def call(
        self,
        prompt: str,
        max_tokens: int = 4000,
        temperature: float = 0.7,
        json_mode: bool = False,
        image_url: str | None = None,
    ) -> LLMResponse:
        if "<score>" in prompt:
            content = "<score>5</score>\n<details>Mock evaluation</details>"
        else:
            content = json.dumps(self._dashboard)
        return LLMResponse(content=content, model=self.model)


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

# SDK exception class names (any class in the MRO counts)
_ERROR_CLASS_TYPES = {
    "APITimeoutError": TIMEOUT,
    "TimeoutException": TIMEOUT,
    "TimeoutError": TIMEOUT,
    "RateLimitError": RATE_LIMIT,
    "AuthenticationError": AUTH,
    "PermissionDeniedError": AUTH,
    "ConfigurationError": AUTH,
}


def classify_provider_error(error: BaseException, model_id: str | None = None) -> ProviderError:
    """
    Normalise a provider exception into a ProviderError.

    Checks the exception's class hierarchy first, then its HTTP status code,
    then falls back to message heuristics.
    """
    message = str(error) or type(error).__name__
    error_type = None

    for cls in type(error).__mro__:
        if cls.__name__ in _ERROR_CLASS_TYPES:
            error_type = _ERROR_CLASS_TYPES[cls.__name__]
            break

    if error_type is None:
        status = getattr(error, "status_code", None)
        if status == 429:
            error_type = RATE_LIMIT
        elif status in (401, 403):
            error_type = AUTH

    if error_type is None:
        lowered = message.lower()
        if "timeout" in lowered or "timed out" in lowered:
            error_type = TIMEOUT
        elif "rate limit" in lowered or "too many requests" in lowered or "429" in lowered:
            error_type = RATE_LIMIT
        elif "api key" in lowered or "unauthorized" in lowered or "authentication" in lowered:
            error_type = AUTH
        elif "invalid" in lowered and "response" in lowered:
            error_type = INVALID_RESPONSE
        else:
            error_type = UNKNOWN

    return ProviderError(
        error_type=error_type,
        message=message,
        retryable=error_type in RETRYABLE_ERROR_TYPES,
        model_id=model_id,
    )


def _call_once(
    client: LLMClient,
    prompt: str,
    settings: GenerationSettings,
    json_mode: bool,
    image_url: str | None,
) -> GenerationResult:
    start = time.time()
    try:
        response = client.call(
            prompt,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            json_mode=json_mode,
            image_url=image_url,
        )
    except Exception as e:
        latency_ms = int((time.time() - start) * 1000)
        error = classify_provider_error(e, client.model_id)
        logger.warning(f"{client.model_id} call failed ({error.error_type}): {error.message}")
        return GenerationResult(success=False, latency_ms=latency_ms, error=error, model=client.model_id)

    latency_ms = int((time.time() - start) * 1000)
    if not response.content:
        return GenerationResult(
            success=False,
            latency_ms=latency_ms,
            error=ProviderError(
                error_type=INVALID_RESPONSE,
                message="No content generated",
                retryable=True,
                model_id=client.model_id,
            ),
            model=client.model_id,
        )
    return GenerationResult(
        success=True,
        content=response.content,
        tokens_used=response.tokens_used,
        latency_ms=latency_ms,
        model=client.model_id,
    )


def generate(
    client: LLMClient,
    prompt: str,
    settings: GenerationSettings | None = None,
    json_mode: bool = False,
    image_url: str | None = None,
) -> GenerationResult:
    """
    Make one completion call and report its outcome without raising.

    Retryable failures (timeout, rate limit, empty completion) are retried with
    exponential backoff up to ``settings.retry_attempts`` total attempts; the
    last failure is returned as is.

    Args:
        client: LLM client to call
        prompt: Fully rendered prompt
        settings: Token limit, temperature and retry policy
        json_mode: Ask the provider for a JSON object response
        image_url: Optional image to attach (OpenAI-compatible providers only)

    Returns:
        GenerationResult with content on success, a ProviderError otherwise
    """
    settings = settings or GenerationSettings()
    retrying = Retrying(
        stop=stop_after_attempt(max(1, settings.retry_attempts)),
        wait=wait_exponential(multiplier=1, min=settings.retry_min_wait, max=settings.retry_max_wait),
        retry=retry_if_result(lambda r: not r.success and r.error is not None and r.error.retryable),
        retry_error_callback=lambda state: state.outcome.result(),
    )
    return retrying(_call_once, client, prompt, settings, json_mode, image_url)


# ---------------------------------------------------------------------------
# Client factory
# ---------------------------------------------------------------------------


def infer_provider(model: str) -> str:
    """Guess the provider from a bare model name."""
    model_lower = model.lower()
    if "/" in model_lower:
        return "openrouter"
    if "claude" in model_lower:
        return "anthropic"
    if "gpt" in model_lower or model_lower.startswith(("o1", "o3", "o4")):
        return "openai"
    if "gemini" in model_lower:
        return "google"
    return "ollama"


def create_client(
    model: ModelRef | str,
    providers: dict[str, ProviderSettings] | None = None,
    timeout: float = 120.0,
    dry_run: bool = False,
) -> LLMClient:
    """
    Create an LLM client for a model.

    Args:
        model: ModelRef, or a bare model name whose provider is inferred
        providers: Per-provider credentials and endpoints
        timeout: Request timeout in seconds
        dry_run: If True, return a mock client

    Returns:
        Appropriate LLM client instance
    """
    if isinstance(model, str):
        model = ModelRef(id=model, name=model, provider=infer_provider(model), provider_model=model)

    if dry_run:
        return MockClient(model.provider_model)

    settings = (providers or {}).get(model.provider) or ProviderSettings()
    name = model.provider_model

    if model.provider == "openai":
        return OpenAIClient(name, api_key=settings.api_key, base_url=settings.base_url, timeout=timeout)
    elif model.provider == "openrouter":
        return OpenRouterClient(name, api_key=settings.api_key, base_url=settings.base_url, timeout=timeout)
    elif model.provider == "anthropic":
        return AnthropicClient(name, api_key=settings.api_key, timeout=timeout)
    elif model.provider == "google":
        return GeminiClient(name, api_key=settings.api_key, timeout=timeout)
    elif model.provider == "ollama":
        return OllamaClient(name, base_url=settings.base_url, timeout=timeout)
    elif model.provider == "mock":
        return MockClient(name)
    raise ConfigurationError(f"Unknown provider '{model.provider}' for model {model.id}")
