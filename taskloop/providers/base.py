"""
TaskLoop Provider Base - Completion clients for LLM providers.

This module defines the interface every completion provider implements,
the concrete providers, and a factory that picks one from a model name.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

from taskloop.errors import ProviderError
from taskloop.validation.config import Config

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimitExceeded(ProviderError):
    """Raised by a provider call when the API answers with HTTP 429."""


def retry_rate_limited(
    call: Callable[[], T],
    name: str,
    retry_count: int,
    wait: float,
    sleep: Callable[[float], None] = time.sleep,
    error_class: Type[Exception] = ProviderError,
) -> T:
    """
    Run ``call``, waiting ``wait`` seconds and retrying on RateLimitExceeded.

    Raises:
        error_class: If the call is still rate limited after
            ``retry_count`` retries.
    """
    attempt = 0
    while True:
        try:
            return call()
        except RateLimitExceeded as e:
            if attempt >= retry_count:
                raise error_class(f"{name} rate limit still exceeded after {attempt} retries") from e
            attempt += 1
            logger.warning(
                "The %s API rate limit has been exceeded. Waiting %s seconds and trying again.",
                name,
                wait,
            )
            sleep(wait)


@dataclass
class ProviderResponse:
    """Response from an LLM provider."""

    content: str
    model: str
    provider: str
    token_usage: int = 0
    finish_reason: str = "stop"
    metadata: Dict[str, Any] = None

    def __post_init__(self):
        if self.metadata is None:
            self.metadata = {}


class Provider(ABC):
    """
    Abstract base class for LLM providers.

    Subclasses implement ``_complete``; ``complete`` wraps it with the
    rate-limit retry policy from the agent configuration.

    Example:
        >>> provider = ProviderFactory.create("gpt-3.5-turbo", Config.load())
        >>> provider.complete("Say hi").content
        'Hi!'
    """

    def __init__(self, model: str, config: Config, sleep: Callable[[float], None] = time.sleep):
        """
        Initialize the provider.

        Args:
            model: The model identifier.
            config: TaskLoop configuration.
            sleep: Called with the wait in seconds between rate-limited attempts.
        """
        self.model = model
        self.config = config
        self._sleep = sleep

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    def _complete(self, prompt: str, max_tokens: int, temperature: float) -> ProviderResponse:
        """Perform a single completion request."""
        pass

    def complete(self, prompt: str, **kwargs) -> ProviderResponse:
        """
        Generate a completion for the given prompt.

        Args:
            prompt: The prompt to complete.
            **kwargs: ``max_tokens`` and ``temperature`` overrides.

        Returns:
            ProviderResponse with the completion.

        Raises:
            ProviderError: If the request fails or stays rate limited
                after ``retry_count`` retries.
        """
        agent = self.config.merged.agent
        default_max_tokens, default_temperature = self.sampling_defaults()
        max_tokens = kwargs.get("max_tokens", default_max_tokens)
        temperature = kwargs.get("temperature", default_temperature)

        def call() -> ProviderResponse:
            logger.debug("Calling %s (%s)", self.provider_name, self.model)
            return self._complete(prompt, max_tokens=max_tokens, temperature=temperature)

        return retry_rate_limited(
            call,
            self.provider_name,
            retry_count=agent.retry_count,
            wait=agent.rate_limit_wait,
            sleep=self._sleep,
        )

    def sampling_defaults(self) -> Tuple[int, float]:
        """(max_tokens, temperature) used when the caller passes neither."""
        agent = self.config.merged.agent
        return agent.max_tokens, agent.temperature

    def get_api_key(self) -> Optional[str]:
        """Get the API key for this provider."""
        return self.config.get_api_key(self.provider_name)

    def _require_api_key(self) -> str:
        api_key = self.get_api_key()
        if not api_key:
            raise ProviderError(f"{self.provider_name} API key not configured")
        return api_key


class OpenAIProvider(Provider):
    """
    OpenAI API provider.

    Chat models (``gpt-*``, ``o1*``) go through the chat completions
    endpoint; anything else (``text-davinci-003``, ...) uses the legacy
    completions endpoint.
    """

    CHAT_PREFIXES = ("gpt-", "o1")

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def is_chat_model(self) -> bool:
        return self.model.lower().startswith(self.CHAT_PREFIXES)

    def sampling_defaults(self) -> Tuple[int, float]:
        if self.is_chat_model:
            return super().sampling_defaults()
        agent = self.config.merged.agent
        return agent.legacy_max_tokens, agent.legacy_temperature

    def _complete(self, prompt: str, max_tokens: int, temperature: float) -> ProviderResponse:
        try:
            import openai
        except ImportError:
            raise ImportError("openai package required. Install with: pip install openai")

        client = openai.OpenAI(
            api_key=self._require_api_key(),
            timeout=self.config.merged.agent.timeout,
            max_retries=0,
        )

        try:
            if self.is_chat_model:
                response = client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    max_tokens=max_tokens,
                    temperature=temperature,
                    n=1,
                )
                choice = response.choices[0]
                content = choice.message.content or ""
            else:
                response = client.completions.create(
                    model=self.model,
                    prompt=prompt,
                    max_tokens=max_tokens,
                    temperature=temperature,
                )
                choice = response.choices[0]
                content = choice.text
        except openai.RateLimitError as e:
            raise RateLimitExceeded(str(e)) from e
        except openai.OpenAIError as e:
            raise ProviderError(f"OpenAI request failed: {e}") from e

        return ProviderResponse(
            content=content,
            model=response.model,
            provider=self.provider_name,
            token_usage=response.usage.total_tokens if response.usage else 0,
            finish_reason=choice.finish_reason or "stop",
        )


class AnthropicProvider(Provider):
    """Anthropic API provider implementation."""

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _complete(self, prompt: str, max_tokens: int, temperature: float) -> ProviderResponse:
        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "anthropic package required. Install with: pip install taskloop[anthropic]"
            )

        client = anthropic.Anthropic(
            api_key=self._require_api_key(),
            timeout=self.config.merged.agent.timeout,
            max_retries=0,
        )

        try:
            response = client.messages.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except anthropic.RateLimitError as e:
            raise RateLimitExceeded(str(e)) from e
        except anthropic.AnthropicError as e:
            raise ProviderError(f"Anthropic request failed: {e}") from e

        return ProviderResponse(
            content=response.content[0].text,
            model=response.model,
            provider=self.provider_name,
            token_usage=response.usage.input_tokens + response.usage.output_tokens,
            finish_reason=response.stop_reason or "stop",
        )


def _post_json(url: str, payload: Dict[str, Any], headers: Dict[str, str], timeout: int) -> Dict[str, Any]:
    """POST a JSON body, mapping 429 and transport failures onto provider errors."""
    import httpx

    try:
        response = httpx.post(url, headers=headers, json=payload, timeout=timeout)
    except httpx.HTTPError as e:
        raise ProviderError(f"Request to {url} failed: {e}") from e

    if response.status_code == 429:
        raise RateLimitExceeded(f"429 from {url}")
    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise ProviderError(f"Request to {url} failed: {e}") from e
    try:
        return response.json()
    except ValueError as e:
        raise ProviderError(f"Response from {url} is not valid JSON: {e}") from e


def _malformed(provider_name: str, data: Any, error: Exception) -> ProviderError:
    return ProviderError(f"Unexpected {provider_name} response ({error!r}): {str(data)[:200]}")


class OllamaProvider(Provider):
    """Ollama local provider implementation."""

    DEFAULT_BASE = "http://localhost:11434"

    @property
    def provider_name(self) -> str:
        return "ollama"

    def _complete(self, prompt: str, max_tokens: int, temperature: float) -> ProviderResponse:
        provider_config = self.config.get_provider_config("ollama")
        base_url = (provider_config.api_base if provider_config else None) or self.DEFAULT_BASE

        data = _post_json(
            f"{base_url}/api/chat",
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "stream": False,
                "options": {"temperature": temperature, "num_predict": max_tokens},
            },
            headers={},
            timeout=self.config.merged.agent.timeout,
        )

        try:
            return ProviderResponse(
                content=data["message"]["content"] or "",
                model=data.get("model", self.model),
                provider=self.provider_name,
                token_usage=data.get("eval_count", 0),
                finish_reason="stop",
            )
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise _malformed(self.provider_name, data, e) from e


class OpenAICompatibleProvider(Provider):
    """
    Base for providers that expose an OpenAI-compatible chat completions API.

    Subclasses only need to set _base_url and provider_name.
    Uses httpx so no extra packages are required.
    """

    _base_url: str = ""

    @property
    def provider_name(self) -> str:
        raise NotImplementedError

    def _complete(self, prompt: str, max_tokens: int, temperature: float) -> ProviderResponse:
        provider_config = self.config.get_provider_config(self.provider_name)
        base_url = (provider_config.api_base if provider_config else None) or self._base_url

        data = _post_json(
            f"{base_url}/chat/completions",
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": max_tokens,
                "temperature": temperature,
            },
            headers={
                "Authorization": f"Bearer {self._require_api_key()}",
                "Content-Type": "application/json",
            },
            timeout=self.config.merged.agent.timeout,
        )

        try:
            choice = data["choices"][0]
            usage = data.get("usage") or {}
            return ProviderResponse(
                content=choice["message"]["content"] or "",
                model=data.get("model", self.model),
                provider=self.provider_name,
                token_usage=usage.get("total_tokens", 0),
                finish_reason=choice.get("finish_reason") or "stop",
            )
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise _malformed(self.provider_name, data, e) from e


class OpenRouterProvider(OpenAICompatibleProvider):
    """OpenRouter - unified API for 100+ open and commercial models."""

    _base_url = "https://openrouter.ai/api/v1"

    @property
    def provider_name(self) -> str:
        return "openrouter"


class TogetherProvider(OpenAICompatibleProvider):
    """Together AI - fast inference for open-source models."""

    _base_url = "https://api.together.xyz/v1"

    @property
    def provider_name(self) -> str:
        return "together"


class GroqProvider(OpenAICompatibleProvider):
    """Groq - ultra-fast inference for open models."""

    _base_url = "https://api.groq.com/openai/v1"

    @property
    def provider_name(self) -> str:
        return "groq"


class ProviderFactory:
    """Factory for creating provider instances."""

    _providers: Dict[str, Type[Provider]] = {
        "openai": OpenAIProvider,
        "anthropic": AnthropicProvider,
        "ollama": OllamaProvider,
        "openrouter": OpenRouterProvider,
        "together": TogetherProvider,
        "groq": GroqProvider,
    }

    @classmethod
    def create(cls, model: str, config: Config, **kwargs) -> Provider:
        """
        Create a provider instance for the given model.

        Args:
            model: Model identifier (e.g., "openai/gpt-4" or "gpt-4").
            config: TaskLoop configuration.
            **kwargs: Passed through to the provider constructor.

        Returns:
            Provider instance.

        Raises:
            ValueError: If the provider is not recognized.
        """
        provider_name, sep, model_name = model.partition("/")
        if not sep or provider_name not in cls._providers:
            provider_name = cls._infer_provider(model)
            model_name = model

        if provider_name not in cls._providers:
            raise ValueError(f"Unknown provider: {provider_name}")

        provider_class = cls._providers[provider_name]
        return provider_class(model=model_name, config=config, **kwargs)

    @classmethod
    def _infer_provider(cls, model: str) -> str:
        """Infer the provider from the model name."""
        model_lower = model.lower()

        if model_lower.startswith(("gpt", "o1", "text-", "davinci")):
            return "openai"
        elif model_lower.startswith("claude"):
            return "anthropic"
        elif model_lower.startswith("llama") or model_lower.startswith("deepseek"):
            return "groq"
        elif model_lower.startswith("mixtral") or model_lower.startswith("qwen"):
            return "together"
        elif model_lower in ("codellama", "phi", "phi-2", "mistral"):
            return "ollama"

        # Default to openrouter (broadest model catalog)
        return "openrouter"

    @classmethod
    def available_providers(cls) -> List[str]:
        """Get list of available provider names."""
        return list(cls._providers.keys())
