"""LiteLLM provider implementation.

Supports any provider litellm knows:
- Mistral: "mistral/codestral-latest"
- Anthropic: "claude-3-5-sonnet-20241022"
- OpenAI: "gpt-4o"
- Local: "ollama/qwen2.5-coder"

See https://docs.litellm.ai/docs/providers for full list.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import litellm

from companion.config.secrets import fetch_secret
from companion.core.llm.provider import CompletionResult, Message

if TYPE_CHECKING:
    from companion.config.schema import LLMConfig


class LiteLLMProvider:
    """LLM provider using litellm for multi-provider support.

    Usage:
        provider = LiteLLMProvider("mistral/codestral-latest")

        # With custom base URL
        provider = LiteLLMProvider("gpt-4o", api_base="http://localhost:8000/v1")
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        temperature: float | None = None,
        request_timeout: float | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the provider.

        Args:
            model: Model identifier
            api_key: API key (litellm falls back to provider env vars if omitted)
            api_base: Custom API base URL
            temperature: Sampling temperature, omitted from requests when None
            request_timeout: Per-request timeout in seconds
            **kwargs: Additional litellm options
        """
        self._model = model
        self._api_key = api_key
        self._api_base = api_base
        self._temperature = temperature
        self._request_timeout = request_timeout
        self._kwargs = kwargs

    @classmethod
    def from_config(cls, config: LLMConfig) -> LiteLLMProvider:
        api_key = fetch_secret(config.api_key_env) if config.api_key_env else None
        return cls(
            config.model,
            api_key=api_key,
            api_base=config.api_base,
            temperature=config.temperature,
            request_timeout=config.request_timeout,
        )

    @property
    def model(self) -> str:
        return self._model

    def _build_kwargs(
        self,
        messages: list[Message],
        *,
        max_tokens: int,
        stop: list[str] | None,
    ) -> dict[str, Any]:
        """Build kwargs for litellm call."""
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": m.role.value, "content": m.content} for m in messages],
            "max_tokens": max_tokens,
            **self._kwargs,
        }

        if self._temperature is not None:
            kwargs["temperature"] = self._temperature
        if self._request_timeout is not None:
            kwargs["timeout"] = self._request_timeout
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base
        if stop:
            kwargs["stop"] = stop

        return kwargs

    async def complete(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 4096,
        stop: list[str] | None = None,
    ) -> CompletionResult:
        """Generate a completion (non-streaming)."""
        kwargs = self._build_kwargs(messages, max_tokens=max_tokens, stop=stop)

        response = await litellm.acompletion(**kwargs)

        content = response.choices[0].message.content or ""
        finish_reason = response.choices[0].finish_reason

        usage = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return CompletionResult(
            content=content,
            finish_reason=finish_reason,
            usage=usage,
        )
