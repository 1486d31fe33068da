#!/usr/bin/env python3
"""
Hive Agent Runner

Runs one prompt through the browser-agent execution loop from the terminal.
There is no browser attached here: the session probe always reports healthy,
the in-process memory tools are the only tools, and ``--url``/``--title``
stand in for the page the user is looking at. Approval requests are asked on
the terminal (or auto-approved with ``--auto_approve``).

Usage:
    python run_agent.py --query "What did I do on this site last time?" \\
        --url https://www.google.com --title Google

    python run_agent.py --query "hello" --provider ollama --model llama3.1 --stream
"""

import asyncio
import logging
import sys

import fire

from agent.browser_agent import BrowserAgent
from agent.config import ConfigValidationError, load_config, require_valid
from agent.execution_engine import ExecutionCallbacks
from agent.providers import create_provider
from gateway.message_bus import MessageBus
from hive_constants import APPROVAL_REQUEST_EVENT
from tools.approval import configure as configure_approvals
from tools.browser_session import always_healthy
from tools.memory_tool import MemoryStore, build_memory_tools

logger = logging.getLogger(__name__)

_APPROVE_ANSWERS = ("y", "yes")
_RESULT_PREVIEW_CHARS = 200


def _setup_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        )
        # Keep third-party libraries at WARNING level to reduce noise
        for noisy in ('openai', 'openai._base_client', 'httpx', 'httpcore', 'asyncio'):
            logging.getLogger(noisy).setLevel(logging.WARNING)
        logger.info("Verbose logging enabled (third-party library logs suppressed)")
    else:
        logging.basicConfig(
            level=logging.WARNING,
            format='%(asctime)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        )
        for noisy in ('openai', 'openai._base_client', 'httpx', 'httpcore'):
            logging.getLogger(noisy).setLevel(logging.ERROR)


def _terminal_callbacks(stream: bool) -> ExecutionCallbacks:
    def on_llm_chunk(chunk: str) -> None:
        print(chunk, end="", flush=True)

    def on_llm_output(text: str) -> None:
        print(text)

    def on_tool_output(text: str) -> None:
        print(f"  {text}")

    def on_tool_end(result: str) -> None:
        preview = result if len(result) <= _RESULT_PREVIEW_CHARS else result[:_RESULT_PREVIEW_CHARS] + "..."
        print(f"  📄 result: {preview}")

    def on_segment_complete(segment: str) -> None:
        print()

    def on_fallback_started() -> None:
        print("\n⚠️  Streaming failed, retrying without streaming...")

    return ExecutionCallbacks(
        on_llm_chunk=on_llm_chunk if stream else None,
        on_llm_output=on_llm_output,
        on_tool_output=on_tool_output,
        on_tool_end=on_tool_end,
        on_segment_complete=on_segment_complete,
        on_fallback_started=on_fallback_started,
    )


def _approval_handler(correlator, auto_approve: bool):
    async def handle(event_type: str, payload: dict) -> None:
        request_id = payload["requestId"]
        if auto_approve:
            print(f"  ✅ Auto-approving {payload['toolName']}")
            correlator.handle_approval_response(request_id, True)
            return

        question = (
            f"\n🔐 Approve {payload['toolName']} | {payload['toolInput']}?\n"
            f"   {payload['reason']}\n   [y/N]: "
        )
        answer = await asyncio.to_thread(input, question)
        correlator.handle_approval_response(request_id, answer.strip().lower() in _APPROVE_ANSWERS)

    return handle


async def _run(agent: BrowserAgent, query: str, stream: bool):
    callbacks = _terminal_callbacks(stream)
    if stream:
        return await agent.execute_prompt_with_fallback(query, callbacks)
    return await agent.execute_prompt(query, callbacks)


def main(
    query: str = None,
    model: str = None,
    provider: str = None,
    base_url: str = None,
    api_key: str = None,
    url: str = None,
    title: str = None,
    max_steps: int = None,
    stream: bool = False,
    auto_approve: bool = False,
    list_tools: bool = False,
    verbose: bool = False,
):
    """
    Run a single prompt through the agent.

    Args:
        query (str): What the agent should do. Asked interactively when omitted.
        model (str): Model name (OpenRouter format: vendor/model for OpenRouter).
        provider (str): openrouter, openai or ollama. Defaults to config.yaml / openrouter.
        base_url (str): Override the provider's API base URL.
        api_key (str): API key. Uses OPENROUTER_API_KEY / OPENAI_API_KEY / HIVE_API_KEY when omitted.
        url (str): URL of the page the user is on (enables memory injection for its domain).
        title (str): Title of that page. Defaults to the URL.
        max_steps (int): Maximum model calls for this run. Defaults to 50.
        stream (bool): Stream model output, falling back to a non-streaming run on failure.
        auto_approve (bool): Approve every action that asks for approval.
        list_tools (bool): Just list available tools and exit.
        verbose (bool): Enable verbose logging for debugging.
    """
    _setup_logging(verbose)

    store = MemoryStore()
    tools = build_memory_tools(store)

    if list_tools:
        print("📋 Available Tools:")
        print("-" * 50)
        for tool in tools:
            print(f"  {tool.name}: {tool.description}")
        return

    print("🐝 Hive Agent")
    print("=" * 50)

    try:
        config = require_valid(load_config(
            provider=provider,
            model=model,
            base_url=base_url,
            api_key=api_key,
            max_steps=max_steps,
        ))
    except ConfigValidationError as e:
        print(f"❌ Configuration error: {e}")
        sys.exit(1)

    bus = MessageBus()
    bus.discover_and_load()
    correlator = configure_approvals(bus=bus, timeout=config.approval_timeout)
    bus.subscribe(APPROVAL_REQUEST_EVENT, _approval_handler(correlator, auto_approve))

    agent = BrowserAgent(create_provider(config), tools, always_healthy, config=config,
                         correlator=correlator)
    if url:
        agent.set_current_page_context(url, title or url)

    print(f"🤖 Model: {config.model} via {config.provider}")

    if not query:
        query = input("🐝 What should I do? ").strip()
        if not query:
            print("Nothing to do.")
            return

    try:
        result = asyncio.run(_run(agent, query, stream))
    except KeyboardInterrupt:
        agent.cancel()
        print("\n⚡ Interrupted.")
        return

    print("\n" + "-" * 50)
    print(f"🏁 {result.stop_reason or 'finished'} after {result.steps} step(s)")
    totals = agent.usage_totals()
    print(f"📊 Tokens: {totals['input_tokens']} in / {totals['output_tokens']} out")
    print("\n👋 Agent execution completed!")


def main_cli():
    fire.Fire(main)


if __name__ == "__main__":
    main_cli()
