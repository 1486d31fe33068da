"""Tests for agent/providers.py -- the OpenAI-compatible provider adapter.

Covers:
    - translate_error: SDK exceptions become classifiable ProviderErrors
    - complete(): request shape, text and usage extraction, error translation
    - stream(): text / reasoning / usage chunks
    - create_provider(): base URL and key selection per provider
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from agent.error_handler import ErrorKind, ProviderError, classify_error
from agent.providers import (
    ModelProvider,
    OpenAIProvider,
    create_provider,
    translate_error,
)
from agent.config import AgentConfig
from hive_constants import OLLAMA_BASE_URL, OPENAI_BASE_URL, OPENROUTER_BASE_URL


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _status_error(status, body=None, cls=openai.APIStatusError):
    request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")
    response = httpx.Response(status, request=request)
    return cls(f"HTTP {status}", response=response, body=body)


def _mock_client(create):
    client = MagicMock()
    client.chat.completions.create = create
    return client


def _completion(text="Done.", prompt_tokens=12, completion_tokens=3):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def _stream_chunk(content=None, reasoning=None, usage=None):
    choices = []
    if content is not None or reasoning is not None:
        choices = [SimpleNamespace(delta=SimpleNamespace(content=content, reasoning=reasoning))]
    return SimpleNamespace(choices=choices, usage=usage)


def _async_iter(items):
    async def gen():
        for item in items:
            yield item
    return gen()


# ---------------------------------------------------------------------------
# translate_error
# ---------------------------------------------------------------------------

class TestTranslateError:
    def test_rate_limit_error(self):
        error = translate_error(_status_error(429, cls=openai.RateLimitError))
        assert error.type == "rate_limit_error"
        assert error.status_code == 429
        assert classify_error(error) is ErrorKind.RATE_LIMITED

    @pytest.mark.parametrize("status", [503, 529])
    def test_overloaded_status(self, status):
        error = translate_error(_status_error(status))
        assert classify_error(error) is ErrorKind.OVERLOADED

    def test_overloaded_body_type(self):
        error = translate_error(_status_error(500, body={"error": {"type": "overloaded_error"}}))
        assert error.type == "overloaded_error"

    def test_body_type_preserved(self):
        error = translate_error(_status_error(400, body={"error": {"type": "invalid_request_error"}}))
        assert error.type == "invalid_request_error"
        assert classify_error(error) is ErrorKind.OTHER

    def test_untyped_error_is_api_error(self):
        error = translate_error(_status_error(500))
        assert error.type == "api_error"
        assert error.message == "HTTP 500"

    def test_provider_error_passes_through(self):
        original = ProviderError("slow down", type="rate_limit_error")
        assert translate_error(original) is original


# ---------------------------------------------------------------------------
# OpenAIProvider
# ---------------------------------------------------------------------------

class TestOpenAIProvider:
    def test_satisfies_protocol(self):
        provider = OpenAIProvider(client=_mock_client(AsyncMock()))
        assert isinstance(provider, ModelProvider)
        assert provider.base_url == OPENROUTER_BASE_URL

    @pytest.mark.asyncio
    async def test_complete_sends_system_prompt_first(self):
        create = AsyncMock(return_value=_completion("Clicked it."))
        provider = OpenAIProvider(model="test/model", max_tokens=256, client=_mock_client(create))

        response = await provider.complete("SYSTEM", [
            {"role": "user", "content": "click buy"},
            {"role": "assistant", "content": {"structured": True}},
        ])

        assert response.text == "Clicked it."
        assert (response.input_tokens, response.output_tokens) == (12, 3)
        kwargs = create.await_args.kwargs
        assert kwargs["model"] == "test/model"
        assert kwargs["max_tokens"] == 256
        assert kwargs["messages"][0] == {"role": "system", "content": "SYSTEM"}
        assert kwargs["messages"][1] == {"role": "user", "content": "click buy"}
        assert kwargs["messages"][2]["content"] == '{"structured": true}'

    @pytest.mark.asyncio
    async def test_complete_without_choices(self):
        create = AsyncMock(return_value=SimpleNamespace(choices=[], usage=None))
        response = await OpenAIProvider(client=_mock_client(create)).complete("S", [])
        assert response.text == ""
        assert response.input_tokens == 0

    @pytest.mark.asyncio
    async def test_complete_translates_sdk_errors(self):
        create = AsyncMock(side_effect=_status_error(429, cls=openai.RateLimitError))
        provider = OpenAIProvider(client=_mock_client(create))

        with pytest.raises(ProviderError) as exc_info:
            await provider.complete("S", [{"role": "user", "content": "hi"}])
        assert exc_info.value.type == "rate_limit_error"

    @pytest.mark.asyncio
    async def test_stream_yields_text_reasoning_and_usage(self):
        chunks = [
            _stream_chunk(reasoning="thinking"),
            _stream_chunk(content="Hel"),
            _stream_chunk(content="lo"),
            _stream_chunk(usage=SimpleNamespace(
                prompt_tokens=40, completion_tokens=2,
                prompt_tokens_details=SimpleNamespace(cached_tokens=30),
            )),
        ]
        create = AsyncMock(return_value=_async_iter(chunks))
        provider = OpenAIProvider(client=_mock_client(create))

        received = [c async for c in provider.stream("S", [{"role": "user", "content": "hi"}])]

        assert [c.type for c in received] == ["reasoning", "text", "text", "usage"]
        assert "".join(c.text for c in received) == "Hello"
        usage = received[-1]
        assert (usage.input_tokens, usage.output_tokens, usage.cache_read_tokens) == (40, 2, 30)
        assert create.await_args.kwargs["stream"] is True
        assert create.await_args.kwargs["stream_options"] == {"include_usage": True}

    @pytest.mark.asyncio
    async def test_stream_translates_sdk_errors(self):
        create = AsyncMock(side_effect=_status_error(529))
        provider = OpenAIProvider(client=_mock_client(create))

        with pytest.raises(ProviderError) as exc_info:
            async for _ in provider.stream("S", []):
                pass
        assert exc_info.value.type == "overloaded_error"


# ---------------------------------------------------------------------------
# create_provider
# ---------------------------------------------------------------------------

class TestCreateProvider:
    def test_openrouter_default(self):
        provider = create_provider(AgentConfig(api_key="sk-or-test"))
        assert provider.base_url == OPENROUTER_BASE_URL
        assert provider.client.api_key == "sk-or-test"

    def test_openai(self):
        provider = create_provider(AgentConfig(provider="openai", model="gpt-4o", api_key="sk-test"))
        assert provider.base_url == OPENAI_BASE_URL
        assert provider.model_id == "gpt-4o"

    def test_ollama_needs_no_key(self):
        provider = create_provider(AgentConfig(provider="ollama", model="llama3.1"))
        assert provider.base_url == OLLAMA_BASE_URL
        assert provider.client.api_key == "ollama"

    def test_custom_base_url_wins(self):
        provider = create_provider(AgentConfig(base_url="http://localhost:8000/v1", api_key="k"))
        assert provider.base_url == "http://localhost:8000/v1"

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            create_provider(AgentConfig(provider="acme", api_key="k"))
