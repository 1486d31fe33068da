"""Tool execution with a connection-health guard.

Wraps every session-dependent tool so that a liveness probe runs against the
active browser session before the real tool does. Tab-lifecycle tools are
passed through untouched: they are how the model recovers from a dead
session, so they must keep working when everything else is refused.

Failure attribution:
    probe fails          -> recovery message, underlying tool NOT invoked
    probe ok, tool raises with a connection-lost marker in the message
                         -> connection recovery message
    probe ok, tool raises anything else
                         -> "Error executing tool: <message>"
"""

import logging
from typing import Awaitable, Callable, Iterable, List, Optional

from hive_constants import TAB_RECOVERY_TOOLS
from tools.registry import Tool, ToolExecutionContext, coerce_tool

logger = logging.getLogger(__name__)

Probe = Callable[[], Awaitable[bool]]

# Closed set of substrings (matched case-insensitively) that mark a tool
# failure as a lost browser connection. Anything else is an ordinary tool error.
CONNECTION_LOST_MARKERS: frozenset = frozenset({
    "target closed",
    "session closed",
    "has been closed",
    "connection closed",
    "browser closed",
    "page closed",
    "detached",
    "destroyed",
})

_NAVIGATION_TOOLS = frozenset({"browser_navigate"})
_OBSERVATION_HINTS = ("screenshot", "read", "title")

_TAB_TOOLS_HINT = ", ".join(TAB_RECOVERY_TOOLS)

SESSION_CLOSED_MESSAGE = (
    f"Error: Debug session was closed. Please use tab tools ({_TAB_TOOLS_HINT}, etc.) "
    "to create and work with a new tab."
)
CONNECTION_LOST_MESSAGE = (
    f"Error: Debug session appears to be closed. Please use tab tools ({_TAB_TOOLS_HINT}, etc.) "
    "to create and work with a new tab."
)


def is_connection_error(error: BaseException) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in CONNECTION_LOST_MARKERS)


def session_closed_message(tool_name: str, tool_input: str) -> str:
    """Recovery guidance for a tool refused because the probe failed."""
    if tool_name in _NAVIGATION_TOOLS:
        return (
            "Error: Debug session was closed. Please use browser_tab_new instead with the URL "
            f"as input. Example: browser_tab_new | {tool_input}"
        )
    if any(hint in tool_name for hint in _OBSERVATION_HINTS):
        return (
            "Error: Debug session was closed. Please create a new tab first using "
            "browser_tab_new, then select it with browser_tab_select, and try again."
        )
    return SESSION_CLOSED_MESSAGE


async def run_probe(probe: Optional[Probe]) -> bool:
    """Run the liveness probe; a missing or raising probe counts as unhealthy."""
    if probe is None:
        return False
    try:
        return bool(await probe())
    except Exception as e:
        logger.info("Connection health probe raised: %s", e)
        return False


def wrap_tool(tool: Tool, probe: Probe, on_probe_result: Optional[Callable[[bool], None]] = None) -> Tool:
    """Return ``tool`` guarded by ``probe``. Tab tools come back unchanged."""
    if tool.is_tab_tool:
        return tool

    original = tool

    async def guarded(tool_input: str, context: Optional[ToolExecutionContext] = None) -> str:
        healthy = await run_probe(probe)
        if on_probe_result is not None:
            on_probe_result(healthy)
        if not healthy:
            logger.info("Refusing %s: browser session failed health probe", original.name)
            return session_closed_message(original.name, tool_input)

        try:
            return await original.invoke(tool_input, context)
        except Exception as e:
            if is_connection_error(e):
                logger.warning("Tool %s lost the browser connection: %s", original.name, e)
                if on_probe_result is not None:
                    on_probe_result(False)
                return CONNECTION_LOST_MESSAGE
            logger.warning("Tool %s failed: %s", original.name, e)
            return f"Error executing tool: {e}"

    return original.with_func(guarded)


def wrap_tools(tools: Iterable[Tool], probe: Probe) -> List[Tool]:
    """Wrap a tool list, keeping names, descriptions and order."""
    return [wrap_tool(coerce_tool(t), probe) for t in tools]


class ToolManager:
    """Authoritative, wrapped tool list for one agent.

    Args:
        probe: Async no-argument callable returning True when the active
            browser session is alive.
        tools: Raw (unwrapped) tools in registration order.
    """

    def __init__(self, probe: Probe, tools: Iterable = ()):
        self._probe = probe
        self._tools: List[Tool] = []
        # True after a failed probe or a connection-lost error, until the
        # next successful probe.
        self.tab_tools_only = False
        self.update_tools(tools)

    def _record_probe(self, healthy: bool) -> None:
        self.tab_tools_only = not healthy

    def _wrap(self, tool) -> Tool:
        return wrap_tool(coerce_tool(tool), self._probe, on_probe_result=self._record_probe)

    def get_tools(self) -> List[Tool]:
        return list(self._tools)

    def update_tools(self, tools: Iterable) -> None:
        self._tools = [self._wrap(t) for t in tools]

    def update_tool(self, tool) -> None:
        """Replace the tool with the same name, or append it."""
        wrapped = self._wrap(tool)
        for i, existing in enumerate(self._tools):
            if existing.name == wrapped.name:
                self._tools[i] = wrapped
                return
        self._tools.append(wrapped)

    def find_tool(self, name: str) -> Optional[Tool]:
        for tool in self._tools:
            if tool.name == name:
                return tool
        return None

    async def is_connection_healthy(self) -> bool:
        healthy = await run_probe(self._probe)
        if not healthy:
            logger.info("Agent connection health check failed")
        self._record_probe(healthy)
        return healthy
