"""BrowserAgent - one agent per browser session.

Composes the pieces the execution loop needs and keeps them in sync:

    ToolManager       wrapped tools (authoritative list)
    PromptAssembler   system prompt over a copy of the tool list
    MemoryInjector    resolves lookup_memories from the same list
    ExecutionState    this agent's cancellation flag
    UsageTracker      token accounting across runs
    ExecutionEngine   the loop itself

Usage:
    agent = BrowserAgent(provider, tools, PageProbe(page), session_id="tab-1")
    await agent.refresh_page_context(page)
    result = await agent.execute_prompt_with_fallback("search for hats", callbacks)
"""

import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional

from agent.config import AgentConfig
from agent.error_handler import ExecutionState
from agent.execution_engine import ExecutionCallbacks, ExecutionEngine, ExecutionResult
from agent.memory_injector import MemoryInjector
from agent.prompt_assembler import PromptAssembler
from agent.tool_executor import Probe, ToolManager
from agent.usage_tracker import UsageTracker
from tools.approval import ApprovalCorrelator, get_correlator
from tools.browser_session import read_page_context
from tools.memory_tool import normalize_domain

logger = logging.getLogger(__name__)


class BrowserAgent:
    """Orchestrates prompts against one browser session.

    Args:
        provider: ``ModelProvider`` implementation.
        tools: Raw tools; they are wrapped with the health guard here.
        probe: Liveness probe for the browser session.
        session_id: Key for this agent's approvals. Random when omitted.
        config: Loop limits and client details. Defaults apply when omitted.
        correlator: Approval correlator; the process default when omitted.
        platform: Client platform override for the modifier-key hint.
    """

    def __init__(
        self,
        provider,
        tools: Iterable,
        probe: Probe,
        session_id: Optional[str] = None,
        config: Optional[AgentConfig] = None,
        correlator: Optional[ApprovalCorrelator] = None,
        platform: Optional[str] = None,
    ):
        self.config = config or AgentConfig()
        self.session_id = session_id or f"session_{uuid.uuid4().hex[:12]}"
        self.correlator = correlator if correlator is not None else get_correlator()

        self.tool_manager = ToolManager(probe, tools)
        wrapped = self.tool_manager.get_tools()
        self.prompt_assembler = PromptAssembler(
            wrapped, platform=platform or self.config.client_platform
        )
        self.memory_injector = MemoryInjector(wrapped)
        self.state = ExecutionState()
        self.usage = UsageTracker()

        self.engine = ExecutionEngine(
            provider,
            self.tool_manager,
            self.prompt_assembler,
            self.memory_injector,
            self.state,
            usage=self.usage,
            correlator=self.correlator,
            session_id=self.session_id,
            max_steps=self.config.max_steps,
            max_context_tokens=self.config.max_context_tokens,
            max_retry_attempts=self.config.max_retry_attempts,
            client_identifier=self.config.client_identifier,
        )

        self._domain: Optional[str] = None
        self._injected_domain: Optional[str] = None

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Stop the current run at the next step boundary.

        Outstanding approvals for this session are rejected so a run blocked
        on the user can observe the flag.
        """
        self.state.cancel()
        self.correlator.cancel_session(self.session_id)

    def reset_cancel(self) -> None:
        self.state.reset_cancel()

    def is_cancelled(self) -> bool:
        return self.state.is_cancelled()

    # ------------------------------------------------------------------
    # Tools and page context
    # ------------------------------------------------------------------

    def is_streaming_supported(self) -> bool:
        return self.engine.is_streaming_supported()

    def get_tools(self) -> List:
        return self.tool_manager.get_tools()

    def update_tools(self, tools: Iterable) -> None:
        """Swap the tool set (e.g. after a tab switch or MCP reconnect)."""
        self.tool_manager.update_tools(tools)
        wrapped = self.tool_manager.get_tools()
        self.prompt_assembler.update_tools(wrapped)
        self.memory_injector.update_memory_tool(wrapped)

    def set_current_page_context(self, url: str, title: str) -> None:
        self.prompt_assembler.set_current_page_context(url, title)
        self._domain = normalize_domain(url) or None

    async def refresh_page_context(self, page: Any) -> bool:
        """Take the page context from a live page. False when it can't be read."""
        context = await read_page_context(page)
        if context is None:
            return False
        url, title = context
        self.set_current_page_context(url, title or url)
        return True

    @property
    def current_domain(self) -> Optional[str]:
        return self._domain

    def _domain_for_injection(self) -> Optional[str]:
        # Memories are injected once per domain change.
        if self._domain and self._domain != self._injected_domain:
            self._injected_domain = self._domain
            return self._domain
        return None

    def usage_totals(self) -> Dict[str, int]:
        return self.usage.totals()

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def execute_prompt(
        self,
        prompt: str,
        callbacks: Optional[ExecutionCallbacks] = None,
        initial_messages: Optional[List[Dict[str, Any]]] = None,
        is_streaming: bool = False,
    ) -> ExecutionResult:
        return await self.engine.execute_prompt(
            prompt, callbacks, initial_messages, is_streaming, self._domain_for_injection()
        )

    async def execute_prompt_with_fallback(
        self,
        prompt: str,
        callbacks: Optional[ExecutionCallbacks] = None,
        initial_messages: Optional[List[Dict[str, Any]]] = None,
    ) -> ExecutionResult:
        return await self.engine.execute_prompt_with_fallback(
            prompt, callbacks, initial_messages, self._domain_for_injection()
        )
