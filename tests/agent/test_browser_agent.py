"""Tests for agent/browser_agent.py -- composition and per-session state.

Covers:
    - memories injected once per domain change
    - tool swaps reach the prompt and the memory injector
    - cancel() rejects this session's pending approvals
    - config limits flow into the engine
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from agent.browser_agent import BrowserAgent
from agent.config import AgentConfig
from agent.providers import ModelResponse
from gateway.message_bus import MessageBus
from hive_constants import APPROVAL_REQUEST_EVENT
from tools.approval import ApprovalCorrelator
from tools.memory_tool import MemoryRecord, MemoryStore, build_memory_tools
from tools.registry import Tool


class EchoProvider:
    """Replies from a script, then "ok" forever."""

    model_id = "fake/model"
    supports_usage = True

    def __init__(self, replies=()):
        self.replies = list(replies)
        self.calls = []

    async def complete(self, system_prompt, messages):
        self.calls.append((system_prompt, [dict(m) for m in messages]))
        text = self.replies.pop(0) if self.replies else "ok"
        return ModelResponse(text=text, input_tokens=4, output_tokens=1)


def _store():
    store = MemoryStore()
    store.store_memory(MemoryRecord(domain="google.com", task_description="Search",
                                    tool_sequence=["browser_click | q"]))
    store.store_memory(MemoryRecord(domain="github.com", task_description="Star",
                                    tool_sequence=["browser_click | .star"]))
    return store


def _agent(provider=None, tools=None, **kwargs):
    provider = provider or EchoProvider()
    if tools is None:
        tools = build_memory_tools(_store())
    kwargs.setdefault("correlator", ApprovalCorrelator())
    return BrowserAgent(provider, tools, AsyncMock(return_value=True), platform="Linux", **kwargs), provider


def _injected(provider, call_index):
    return any("I found" in m["content"] for m in provider.calls[call_index][1])


class TestDomainMemories:
    @pytest.mark.asyncio
    async def test_injected_once_per_domain(self):
        agent, provider = _agent()
        agent.set_current_page_context("https://www.google.com/", "Google")
        assert agent.current_domain == "google.com"

        await agent.execute_prompt("search hats")
        await agent.execute_prompt("search shoes")
        assert _injected(provider, 0)
        assert not _injected(provider, 1)

        agent.set_current_page_context("https://github.com/x/y", "Repo")
        await agent.execute_prompt("star it")
        assert _injected(provider, 2)
        assert "github.com" in provider.calls[2][1][1]["content"]

    @pytest.mark.asyncio
    async def test_no_page_context_no_injection(self):
        agent, provider = _agent()
        await agent.execute_prompt("hello")
        assert len(provider.calls[0][1]) == 1

    @pytest.mark.asyncio
    async def test_refresh_page_context_from_live_page(self):
        agent, _ = _agent()
        page = MagicMock()
        page.url = "https://github.com/x/y"
        page.title = AsyncMock(return_value="")

        assert await agent.refresh_page_context(page) is True
        assert agent.current_domain == "github.com"
        prompt = agent.prompt_assembler.get_system_prompt()
        assert "You are currently on https://github.com/x/y (https://github.com/x/y)." in prompt

    @pytest.mark.asyncio
    async def test_refresh_page_context_keeps_old_context_on_failure(self):
        agent, _ = _agent()
        agent.set_current_page_context("https://www.google.com/", "Google")
        page = MagicMock()
        page.url = "https://github.com/"
        page.title = AsyncMock(side_effect=RuntimeError("target closed"))

        assert await agent.refresh_page_context(page) is False
        assert await agent.refresh_page_context(None) is False
        assert agent.current_domain == "google.com"

    def test_page_context_in_prompt(self):
        agent, _ = _agent()
        agent.set_current_page_context("https://example.com/a", "A")
        assert "You are currently on https://example.com/a (A)." in agent.prompt_assembler.get_system_prompt()


class TestTools:
    def test_update_tools_refreshes_everything(self):
        agent, _ = _agent(tools=[])
        assert agent.memory_injector.memory_tool is None

        agent.update_tools([Tool(name="browser_click", description="Click", func=str)]
                           + build_memory_tools(MemoryStore()))

        assert [t.name for t in agent.get_tools()][0] == "browser_click"
        assert agent.memory_injector.memory_tool.name == "lookup_memories"
        assert "browser_click: Click" in agent.prompt_assembler.get_system_prompt()

    def test_config_limits_reach_engine(self):
        config = AgentConfig(max_steps=3, max_retry_attempts=1, client_identifier="problematic-browser")
        agent, _ = _agent(config=config)
        assert agent.engine.max_steps == 3
        assert agent.engine.max_retry_attempts == 1
        assert agent.is_streaming_supported() is False

    def test_session_ids_are_unique(self):
        first, _ = _agent()
        second, _ = _agent()
        assert first.session_id != second.session_id
        assert first.session_id.startswith("session_")


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_rejects_pending_approval(self):
        bus = MessageBus()
        correlator = ApprovalCorrelator(bus=bus)
        clicked = []
        tools = [Tool(name="browser_click", description="", func=lambda i, ctx=None: clicked.append(i) or "ok")]
        provider = EchoProvider([
            "<tool>browser_click</tool><input>#pay</input><requires_approval>true</requires_approval>",
        ])
        agent, _ = _agent(provider, tools=tools, correlator=correlator, session_id="tab-1")

        # The user closes the panel instead of answering.
        bus.subscribe(APPROVAL_REQUEST_EVENT, lambda e, p: agent.cancel())

        result = await agent.execute_prompt("pay now")

        assert clicked == []
        assert result.cancelled
        assert result.messages[-1]["content"] == "Tool result: Action cancelled by user."
        assert correlator.pending_count() == 0
        assert len(provider.calls) == 1

    def test_cancel_flag(self):
        agent, _ = _agent()
        agent.cancel()
        assert agent.is_cancelled()
        agent.reset_cancel()
        assert not agent.is_cancelled()

    @pytest.mark.asyncio
    async def test_usage_totals(self):
        agent, _ = _agent()
        await agent.execute_prompt("hi")
        assert agent.usage_totals()["total_tokens"] == 5
