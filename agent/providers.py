"""Model provider contract and the OpenAI-compatible reference adapter.

The execution loop only needs two calls from a provider:

    await provider.complete(system_prompt, messages)  -> ModelResponse
    async for chunk in provider.stream(system_prompt, messages): ...

``OpenAIProvider`` speaks the chat-completions API through the ``openai`` SDK,
which covers OpenRouter (the default), OpenAI itself and local Ollama. SDK
errors are translated into ``ProviderError`` so the retry engine can classify
them by type tag.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, runtime_checkable

import openai
from openai import AsyncOpenAI

from agent.error_handler import (
    OVERLOADED_ERROR_TYPE,
    RATE_LIMIT_ERROR_TYPE,
    ProviderError,
)
from hive_constants import (
    DEFAULT_MODEL,
    MAX_OUTPUT_TOKENS,
    OLLAMA_BASE_URL,
    OPENAI_BASE_URL,
    OPENROUTER_BASE_URL,
)

logger = logging.getLogger(__name__)

_OVERLOADED_STATUS_CODES = (503, 529)


@dataclass
class StreamChunk:
    """One increment of a streamed response."""

    type: str  # "text" | "reasoning" | "usage"
    text: str = ""
    reasoning: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    cache_write_tokens: int = 0
    cache_read_tokens: int = 0


@dataclass
class ModelResponse:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


@runtime_checkable
class ModelProvider(Protocol):
    model_id: str
    supports_usage: bool

    async def complete(self, system_prompt: str, messages: List[Dict[str, Any]]) -> ModelResponse:
        ...

    def stream(self, system_prompt: str, messages: List[Dict[str, Any]]) -> AsyncIterator[StreamChunk]:
        ...


def _body_error_type(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    inner = body.get("error")
    if isinstance(inner, dict) and isinstance(inner.get("type"), str):
        return inner["type"]
    if isinstance(body.get("type"), str):
        return body["type"]
    return None


def translate_error(error: Exception) -> ProviderError:
    """Map an ``openai`` SDK exception onto a classifiable ``ProviderError``."""
    if isinstance(error, ProviderError):
        return error

    status = getattr(error, "status_code", None)
    body_type = _body_error_type(getattr(error, "body", None))
    message = getattr(error, "message", None) or str(error)

    if isinstance(error, openai.RateLimitError) or status == 429:
        error_type = RATE_LIMIT_ERROR_TYPE
    elif body_type == OVERLOADED_ERROR_TYPE or status in _OVERLOADED_STATUS_CODES:
        error_type = OVERLOADED_ERROR_TYPE
    elif body_type:
        error_type = body_type
    else:
        error_type = "api_error"

    return ProviderError(message, type=error_type, status_code=status)


def _to_chat_messages(system_prompt: str, messages: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    chat = [{"role": "system", "content": system_prompt}]
    for message in messages:
        content = message.get("content", "")
        if not isinstance(content, str):
            content = json.dumps(content, ensure_ascii=False, default=str)
        chat.append({"role": message.get("role", "user"), "content": content})
    return chat


class OpenAIProvider:
    """Chat-completions provider backed by ``openai.AsyncOpenAI``.

    Args:
        model: Model name as the endpoint knows it.
        base_url: API base URL. Defaults to OpenRouter.
        api_key: API key for the endpoint.
        max_tokens: Output cap per call.
        temperature: Sampling temperature.
        client: Pre-built ``AsyncOpenAI`` client (tests inject a mock here).
    """

    supports_usage = True

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        max_tokens: int = MAX_OUTPUT_TOKENS,
        temperature: float = 0,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model_id = model
        self.base_url = base_url or OPENROUTER_BASE_URL
        self.max_tokens = max_tokens
        self.temperature = temperature

        if client is not None:
            self.client = client
            return

        client_kwargs: Dict[str, Any] = {"base_url": self.base_url, "api_key": api_key or ""}
        # OpenRouter app attribution
        if "openrouter" in self.base_url.lower():
            client_kwargs["default_headers"] = {
                "X-OpenRouter-Title": "Hive Agent",
                "X-OpenRouter-Categories": "browser-agent",
            }
        self.client = AsyncOpenAI(**client_kwargs)

    def _request_kwargs(self, system_prompt: str, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "model": self.model_id,
            "messages": _to_chat_messages(system_prompt, messages),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }

    async def complete(self, system_prompt: str, messages: List[Dict[str, Any]]) -> ModelResponse:
        try:
            response = await self.client.chat.completions.create(
                **self._request_kwargs(system_prompt, messages)
            )
        except openai.OpenAIError as e:
            raise translate_error(e) from e

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        return ModelResponse(
            text=text,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )

    async def stream(self, system_prompt: str, messages: List[Dict[str, Any]]) -> AsyncIterator[StreamChunk]:
        try:
            response = await self.client.chat.completions.create(
                **self._request_kwargs(system_prompt, messages),
                stream=True,
                stream_options={"include_usage": True},
            )
            async for chunk in response:
                if chunk.choices:
                    delta = chunk.choices[0].delta
                    reasoning = getattr(delta, "reasoning", None) or getattr(delta, "reasoning_content", None)
                    if reasoning:
                        yield StreamChunk(type="reasoning", reasoning=reasoning)
                    if getattr(delta, "content", None):
                        yield StreamChunk(type="text", text=delta.content)

                usage = getattr(chunk, "usage", None)
                if usage:
                    details = getattr(usage, "prompt_tokens_details", None)
                    yield StreamChunk(
                        type="usage",
                        input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                        output_tokens=getattr(usage, "completion_tokens", 0) or 0,
                        cache_read_tokens=getattr(details, "cached_tokens", 0) or 0,
                    )
        except openai.OpenAIError as e:
            raise translate_error(e) from e


def create_provider(config) -> OpenAIProvider:
    """Build a provider from an ``AgentConfig``-like object."""
    provider = (config.provider or "openrouter").lower()
    max_tokens = getattr(config, "max_output_tokens", MAX_OUTPUT_TOKENS)

    if provider == "openrouter":
        base_url = config.base_url or OPENROUTER_BASE_URL
        api_key = config.api_key
    elif provider == "openai":
        base_url = config.base_url or OPENAI_BASE_URL
        api_key = config.api_key
    elif provider == "ollama":
        base_url = config.base_url or OLLAMA_BASE_URL
        # Ollama ignores the key but the SDK insists on one.
        api_key = config.api_key or "ollama"
    else:
        raise ValueError(f"Unknown provider: {config.provider}")

    logger.info("Using %s provider with model %s", provider, config.model)
    return OpenAIProvider(
        model=config.model or DEFAULT_MODEL,
        base_url=base_url,
        api_key=api_key,
        max_tokens=max_tokens,
    )
